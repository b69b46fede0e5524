"""
Tests for the symmetric key ring and RSA key exchange.
"""

import hashlib
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from cryptography.hazmat.primitives.asymmetric import rsa

from blockvault.config import BlockConfig
from blockvault.errors import ConfigurationError, UnwrapFailure
from blockvault.exchange import (
    AsymmetricExchange,
    WrappedKey,
    export_private_key,
    export_public_key,
    import_private_key,
    import_public_key,
    public_key_from_modulus,
    public_key_modulus,
    recipient_id,
)
from blockvault.keyring import SymmetricKey, SymmetricKeyRing

EXCHANGE = AsymmetricExchange()
ALICE = EXCHANGE.generate_keypair()
BOB = EXCHANGE.generate_keypair()


def test_new_key_is_random_32_bytes():
    ring = SymmetricKeyRing()
    a, b = ring.new_key(), ring.new_key()
    assert len(a.to_bytes()) == 32
    assert a != b
    print("  [PASS] Fresh 32-byte keys")


def test_dispose_overwrites():
    key = SymmetricKeyRing().new_key()
    assert any(key._material)
    key.dispose()
    assert key.disposed
    assert key._material == bytearray(32)
    try:
        key.to_bytes()
    except ValueError:
        pass
    else:
        raise AssertionError("Disposed key should not yield bytes")
    print("  [PASS] Dispose overwrites key bytes")


def test_key_context_manager():
    with SymmetricKeyRing().new_key() as key:
        assert not key.disposed
    assert key.disposed
    assert "disposed" in repr(key)
    print("  [PASS] Context manager disposes")


def test_key_rejects_wrong_length():
    try:
        SymmetricKey(b"short")
    except ValueError:
        pass
    else:
        raise AssertionError("Short key material should be rejected")
    print("  [PASS] Wrong-length key rejected")


def test_rotate_never_reuses():
    ring = SymmetricKeyRing()
    original = ring.new_key()
    material = original.to_bytes()
    rotated = ring.rotate(original)

    assert original.disposed
    assert rotated.to_bytes() != material

    # Imported material is also remembered
    imported = ring.import_key(os.urandom(32))
    seen = {imported.to_bytes(), rotated.to_bytes()}
    for _ in range(20):
        rotated = ring.rotate(rotated)
        assert rotated.to_bytes() not in seen
        seen.add(rotated.to_bytes())
    print("  [PASS] Rotation never reuses a key")


def test_issued_window_is_bounded_and_keyed():
    ring = SymmetricKeyRing(max_tracked=3)
    keys = [ring.import_key(os.urandom(32)) for _ in range(10)]
    assert len(ring._issued) == 3

    # Recent keys are refused, evicted ones are forgotten
    assert not ring._register(keys[-1])
    assert ring._register(keys[0])

    # Nothing remembered is a plain hash of key material
    plain = {hashlib.sha256(k.to_bytes()).digest() for k in keys}
    assert not plain & set(ring._issued)
    assert SymmetricKeyRing()._tracking_key != ring._tracking_key
    print("  [PASS] Issued-key window bounded and keyed")


def test_nonce_deterministic_and_unique():
    ring = SymmetricKeyRing()
    key = ring.new_key()
    other = ring.new_key()

    assert ring.derive_block_nonce(key, 5) == ring.derive_block_nonce(key, 5)
    assert ring.derive_block_nonce(key, 5) != ring.derive_block_nonce(other, 5)

    nonces = {ring.derive_block_nonce(key, i) for i in range(2000)}
    assert len(nonces) == 2000
    assert all(len(n) == 12 for n in nonces)

    nonce_key = ring.nonce_key(key)
    assert ring.derive_block_nonce(key, 9, nonce_key) == ring.derive_block_nonce(key, 9)
    print("  [PASS] Nonce derivation (2000 indices)")


def test_nonce_index_bounds():
    ring = SymmetricKeyRing()
    key = ring.new_key()
    ring.derive_block_nonce(key, 2 ** 64 - 1)
    for bad in [-1, 2 ** 64]:
        try:
            ring.derive_block_nonce(key, bad)
        except ValueError:
            continue
        raise AssertionError(f"Index {bad} should be rejected")
    print("  [PASS] Nonce index bounds")


def test_subkeys_domain_separated():
    ring = SymmetricKeyRing()
    key = ring.new_key()
    assert ring.derive_subkey(key, b"nonce") == ring.nonce_key(key)
    assert ring.derive_subkey(key, b"nonce") != ring.derive_subkey(key, b"other")
    assert ring.derive_subkey(key, b"nonce") != key.to_bytes()
    print("  [PASS] Sub-key domain separation")


def test_wrap_unwrap():
    key = SymmetricKeyRing().new_key()
    wrapped = EXCHANGE.wrap(key, ALICE.public_key())
    assert wrapped.recipient_id == recipient_id(ALICE.public_key())
    assert len(wrapped.ciphertext) == 256

    recovered = EXCHANGE.unwrap(wrapped, ALICE)
    assert recovered == key
    print("  [PASS] Wrap/unwrap")


def test_wrap_is_randomized():
    key = SymmetricKeyRing().new_key()
    first = EXCHANGE.wrap(key, ALICE.public_key())
    second = EXCHANGE.wrap(key, ALICE.public_key())
    assert first.ciphertext != second.ciphertext
    print("  [PASS] OAEP wrapping is randomized")


def test_unwrap_wrong_key_fails_closed():
    key = SymmetricKeyRing().new_key()
    wrapped = EXCHANGE.wrap(key, ALICE.public_key())
    try:
        EXCHANGE.unwrap(wrapped, BOB)
    except UnwrapFailure:
        pass
    else:
        raise AssertionError("Unwrap with the wrong private key should fail")
    print("  [PASS] Wrong private key fails closed")


def test_unwrap_tampered_fails_closed():
    key = SymmetricKeyRing().new_key()
    wrapped = EXCHANGE.wrap(key, ALICE.public_key())
    tampered = bytearray(wrapped.ciphertext)
    tampered[100] ^= 0x01
    try:
        EXCHANGE.unwrap(WrappedKey(wrapped.recipient_id, bytes(tampered)), ALICE)
    except UnwrapFailure:
        pass
    else:
        raise AssertionError("Tampered wrapped key should fail")
    print("  [PASS] Tampered wrapped key fails closed")


def test_unwrap_wrong_length_payload():
    """A well-formed OAEP payload that is not a 32-byte key is refused."""
    from blockvault.exchange import _oaep
    not_a_key = ALICE.public_key().encrypt(b"sixteen byte msg", _oaep())
    try:
        EXCHANGE.unwrap(WrappedKey(recipient_id(ALICE.public_key()), not_a_key), ALICE)
    except UnwrapFailure:
        pass
    else:
        raise AssertionError("Wrong-length payload should be refused")
    print("  [PASS] Wrong-length unwrapped payload refused")


def test_wrap_rejects_weak_keys():
    key = SymmetricKeyRing().new_key()
    small = rsa.generate_private_key(public_exponent=65537, key_size=1024)
    odd_exponent = rsa.generate_private_key(public_exponent=3, key_size=2048)
    for public_key in [small.public_key(), odd_exponent.public_key()]:
        try:
            EXCHANGE.wrap(key, public_key)
        except ConfigurationError:
            continue
        raise AssertionError("Weak RSA key should be refused")
    print("  [PASS] Weak RSA keys refused")


def test_wrap_for_all_deduplicates():
    key = SymmetricKeyRing().new_key()
    wrapped = EXCHANGE.wrap_for_all(key, [ALICE.public_key(), BOB.public_key(), ALICE.public_key()])
    assert set(wrapped) == {recipient_id(ALICE.public_key()), recipient_id(BOB.public_key())}
    assert EXCHANGE.unwrap(wrapped[recipient_id(BOB.public_key())], BOB) == key
    print("  [PASS] One wrapped key per distinct recipient")


def test_public_key_from_modulus():
    modulus = public_key_modulus(ALICE.public_key())
    assert len(modulus) == 256
    rebuilt = public_key_from_modulus(modulus)
    assert recipient_id(rebuilt) == recipient_id(ALICE.public_key())

    key = SymmetricKeyRing().new_key()
    assert EXCHANGE.unwrap(EXCHANGE.wrap(key, rebuilt), ALICE) == key
    print("  [PASS] Public key from modulus")


def test_pem_round_trip():
    public_pem = export_public_key(ALICE.public_key())
    assert recipient_id(import_public_key(public_pem)) == recipient_id(ALICE.public_key())

    private_pem = export_private_key(ALICE, passphrase="test-passphrase")
    restored = import_private_key(private_pem, passphrase="test-passphrase")
    key = SymmetricKeyRing().new_key()
    assert EXCHANGE.unwrap(EXCHANGE.wrap(key, ALICE.public_key()), restored) == key
    print("  [PASS] PEM export/import")


def test_wrapped_key_dict_round_trip():
    key = SymmetricKeyRing().new_key()
    wrapped = EXCHANGE.wrap(key, ALICE.public_key())
    assert WrappedKey.from_dict(wrapped.to_dict()) == wrapped
    print("  [PASS] WrappedKey serialization")


def test_config_exchange_parameters():
    for bad in [dict(rsa_key_size=1024), dict(rsa_public_exponent=3)]:
        try:
            BlockConfig(**bad)
        except ConfigurationError:
            continue
        raise AssertionError(f"{bad} should be rejected")
    print("  [PASS] RSA parameters validated in config")


def main():
    print("=" * 50)
    print("  Blockvault Key Tests")
    print("=" * 50)
    print()

    tests = [
        test_new_key_is_random_32_bytes,
        test_dispose_overwrites,
        test_key_context_manager,
        test_key_rejects_wrong_length,
        test_rotate_never_reuses,
        test_issued_window_is_bounded_and_keyed,
        test_nonce_deterministic_and_unique,
        test_nonce_index_bounds,
        test_subkeys_domain_separated,
        test_wrap_unwrap,
        test_wrap_is_randomized,
        test_unwrap_wrong_key_fails_closed,
        test_unwrap_tampered_fails_closed,
        test_unwrap_wrong_length_payload,
        test_wrap_rejects_weak_keys,
        test_wrap_for_all_deduplicates,
        test_public_key_from_modulus,
        test_pem_round_trip,
        test_wrapped_key_dict_round_trip,
        test_config_exchange_parameters,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"  [FAIL] {test.__name__}: {e}")
            failed += 1

    print()
    print(f"Results: {passed} passed, {failed} failed")
    return failed == 0


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
