"""
Tests for the block codec, the chunker and content addressing.
"""

import io
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from blockvault.aead import AeadCodec
from blockvault.address import ContentAddress, address, matches
from blockvault.chunker import split, join, iter_split, chunk_count, chunk_span
from blockvault.config import BlockConfig
from blockvault.errors import AuthenticationFailure, EncodingInvariantViolation
from blockvault.keyring import SymmetricKeyRing

SMALL = BlockConfig(max_block_size=128)


def test_seal_framing():
    """Sealed blocks are nonce || ciphertext || tag and respect the ceiling."""
    codec = AeadCodec(SMALL)
    ring = SymmetricKeyRing(SMALL)
    key = ring.new_key()

    for size in [0, 1, 50, SMALL.max_payload]:
        plaintext = os.urandom(size)
        nonce = ring.derive_block_nonce(key, size)
        block = codec.seal(key, nonce, plaintext)

        assert 12 + 16 <= len(block) <= SMALL.max_block_size
        assert len(block) == size + 28
        nonce_part, body, tag = codec.split_frame(block)
        assert nonce_part == nonce
        assert len(body) == size
        assert len(tag) == 16
        assert codec.open(key, block) == plaintext
    print("  [PASS] Seal framing and block-size bounds")


def test_seal_rejects_oversized_chunk():
    codec = AeadCodec(SMALL)
    key = SymmetricKeyRing(SMALL).new_key()
    try:
        codec.seal(key, bytes(12), bytes(SMALL.max_payload + 1))
    except EncodingInvariantViolation as e:
        assert e.details["max_payload"] == SMALL.max_payload
    else:
        raise AssertionError("Oversized chunk should have been refused")
    print("  [PASS] Oversized chunk refused")


def test_seal_rejects_bad_nonce_length():
    codec = AeadCodec(SMALL)
    key = SymmetricKeyRing(SMALL).new_key()
    try:
        codec.seal(key, bytes(8), b"data")
    except ValueError:
        pass
    else:
        raise AssertionError("Short nonce should have been refused")
    print("  [PASS] Short nonce refused")


def test_tamper_any_bit_fails():
    """Flipping any single bit of a block makes open fail, never return altered data."""
    codec = AeadCodec(SMALL)
    ring = SymmetricKeyRing(SMALL)
    key = ring.new_key()
    block = codec.seal(key, ring.derive_block_nonce(key, 0), b"attack at dawn")

    for bit in range(len(block) * 8):
        tampered = bytearray(block)
        tampered[bit // 8] ^= 1 << (bit % 8)
        try:
            codec.open(key, bytes(tampered))
        except AuthenticationFailure:
            continue
        raise AssertionError(f"Bit {bit} flip was not detected")
    print(f"  [PASS] Tamper detection ({len(block) * 8} bit flips)")


def test_wrong_key_fails():
    codec = AeadCodec(SMALL)
    ring = SymmetricKeyRing(SMALL)
    key, other = ring.new_key(), ring.new_key()
    block = codec.seal(key, ring.derive_block_nonce(key, 0), b"secret")
    try:
        codec.open(other, block)
    except AuthenticationFailure:
        pass
    else:
        raise AssertionError("Wrong key should fail authentication")
    print("  [PASS] Wrong key fails")


def test_associated_data_bound():
    codec = AeadCodec(SMALL)
    ring = SymmetricKeyRing(SMALL)
    key = ring.new_key()
    block = codec.seal(key, ring.derive_block_nonce(key, 3), b"chunk", b"position-3")
    assert codec.open(key, block, b"position-3") == b"chunk"
    try:
        codec.open(key, block, b"position-4")
    except AuthenticationFailure:
        pass
    else:
        raise AssertionError("Associated data mismatch should fail")
    print("  [PASS] Associated data bound to the tag")


def test_truncated_block_fails():
    codec = AeadCodec(SMALL)
    key = SymmetricKeyRing(SMALL).new_key()
    for size in [0, 5, 27]:
        try:
            codec.open(key, bytes(size))
        except AuthenticationFailure:
            continue
        raise AssertionError(f"{size}-byte block should be rejected")
    print("  [PASS] Short blocks rejected")


def test_address_deterministic():
    """Same (key, nonce, chunk) → same block → same address."""
    codec = AeadCodec(SMALL)
    ring = SymmetricKeyRing(SMALL)
    key = ring.new_key()
    nonce = ring.derive_block_nonce(key, 7)

    first = address(codec.seal(key, nonce, b"same content"))
    second = address(codec.seal(key, nonce, b"same content"))
    assert first == second
    assert first != address(codec.seal(key, ring.derive_block_nonce(key, 8), b"same content"))
    print("  [PASS] Address determinism")


def test_address_text_form():
    addr = address(b"some block")
    text = addr.to_hex()
    assert text.startswith("sha256:")
    assert ContentAddress.from_hex(text) == addr
    assert str(addr) == text
    assert matches(addr, b"some block")
    assert not matches(addr, b"some blocK")
    try:
        ContentAddress.from_hex("md5:abcd")
    except ValueError:
        pass
    else:
        raise AssertionError("Unknown algorithm should be rejected")
    print("  [PASS] Address text form")


def test_split_exact_multiple():
    """An exact multiple produces full chunks only, no empty trailer."""
    chunks = split(b"x" * 30, 10)
    assert [len(c) for c in chunks] == [10, 10, 10]
    assert chunk_count(30, 10) == 3
    print("  [PASS] Exact multiple boundary")


def test_split_remainder_and_empty():
    chunks = split(b"y" * 31, 10)
    assert [len(c) for c in chunks] == [10, 10, 10, 1]
    assert split(b"", 10) == [b""]
    assert chunk_count(0, 10) == 1
    assert split(b"abc", 10) == [b"abc"]
    print("  [PASS] Remainder and empty content")


def test_split_join_round_trip():
    for size in [0, 1, 99, 100, 101, 1000, 4097]:
        data = os.urandom(size)
        chunks = split(data, 100)
        assert join(chunks) == data
        assert all(len(c) <= 100 for c in chunks)
        assert all(len(c) == 100 for c in chunks[:-1])
        assert len(chunks) == chunk_count(size, 100)
    print("  [PASS] Split/join round trip")


def test_split_stream_matches_bytes():
    """File-like input chunks exactly like the same bytes."""
    for size in [0, 10, 25, 40]:
        data = os.urandom(size)
        assert list(iter_split(io.BytesIO(data), 10)) == split(data, 10)
    print("  [PASS] Stream chunking matches bytes")


def test_chunk_span():
    assert chunk_span(0, 25, 10) == (0, 10)
    assert chunk_span(2, 25, 10) == (20, 25)
    try:
        chunk_span(3, 25, 10)
    except IndexError:
        pass
    else:
        raise AssertionError("Out-of-range chunk should raise")
    print("  [PASS] Chunk spans")


def main():
    print("=" * 50)
    print("  Blockvault Codec Tests")
    print("=" * 50)
    print()

    tests = [
        test_seal_framing,
        test_seal_rejects_oversized_chunk,
        test_seal_rejects_bad_nonce_length,
        test_tamper_any_bit_fails,
        test_wrong_key_fails,
        test_associated_data_bound,
        test_truncated_block_fails,
        test_address_deterministic,
        test_address_text_form,
        test_split_exact_multiple,
        test_split_remainder_and_empty,
        test_split_join_round_trip,
        test_split_stream_matches_bytes,
        test_chunk_span,
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
