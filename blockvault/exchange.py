"""
Asymmetric Key Exchange
Wrap a file's content key for each recipient's RSA public key.

Every recipient gets an independent WrappedKey: RSA-OAEP (MGF1-SHA256,
SHA-256) over the raw 32-byte content key. Any one wrapped key plus the
matching private key recovers the content key; none of them reveals
anything to a holder of a different private key.

Recipients are identified by the SHA-256 of their DER-encoded public key,
so the recipient list is plain data: (recipient_id, WrappedKey) pairs.
"""

import base64
import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from blockvault.config import BlockConfig, DEFAULT_CONFIG
from blockvault.errors import ConfigurationError, UnwrapFailure
from blockvault.keyring import SymmetricKey

logger = logging.getLogger(__name__)


def _oaep() -> asym_padding.OAEP:
    return asym_padding.OAEP(
        mgf=asym_padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


@dataclass(frozen=True)
class WrappedKey:
    """A content key encrypted to one recipient's public key."""
    recipient_id: str
    ciphertext: bytes

    def to_dict(self) -> dict:
        return {
            "recipient_id": self.recipient_id,
            "ciphertext": base64.b64encode(self.ciphertext).decode(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WrappedKey":
        return cls(
            recipient_id=data["recipient_id"],
            ciphertext=base64.b64decode(data["ciphertext"]),
        )


def recipient_id(public_key: RSAPublicKey) -> str:
    """Stable identifier for a public key: hex SHA-256 of its DER SubjectPublicKeyInfo."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


def public_key_modulus(public_key: RSAPublicKey) -> bytes:
    """Big-endian modulus bytes, the form recipients publish their exchange key in."""
    n = public_key.public_numbers().n
    return n.to_bytes((n.bit_length() + 7) // 8, "big")


def public_key_from_modulus(modulus: bytes, config: BlockConfig = None) -> RSAPublicKey:
    """
    Rebuild an RSA public key from its published modulus.

    The exponent is always the configured public exponent (65537).
    """
    config = config or DEFAULT_CONFIG
    n = int.from_bytes(modulus, "big")
    try:
        return rsa.RSAPublicNumbers(config.rsa_public_exponent, n).public_key()
    except ValueError as e:
        raise ConfigurationError("Invalid RSA public key modulus", {"bits": n.bit_length()}) from e


def export_public_key(public_key: RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def import_public_key(pem: bytes) -> RSAPublicKey:
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, RSAPublicKey):
        raise ConfigurationError("PEM does not contain an RSA public key")
    return key


def export_private_key(private_key: RSAPrivateKey, passphrase: str = None) -> bytes:
    """Serialize a private key to PKCS#8 PEM, encrypted when a passphrase is given."""
    if passphrase:
        enc = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
    else:
        enc = serialization.NoEncryption()
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=enc,
    )


def import_private_key(pem: bytes, passphrase: str = None) -> RSAPrivateKey:
    pwd = passphrase.encode("utf-8") if passphrase else None
    key = serialization.load_pem_private_key(pem, password=pwd)
    if not isinstance(key, RSAPrivateKey):
        raise ConfigurationError("PEM does not contain an RSA private key")
    return key


class AsymmetricExchange:
    """
    Wraps and unwraps content keys with RSA-OAEP.

    Args:
        config: RSA key size and exponent, worker count for multi-recipient wrapping.
    """

    def __init__(self, config: BlockConfig = None):
        self.config = config or DEFAULT_CONFIG

    def generate_keypair(self) -> RSAPrivateKey:
        """Generate a recipient key pair (2048-bit modulus, e=65537)."""
        return rsa.generate_private_key(
            public_exponent=self.config.rsa_public_exponent,
            key_size=self.config.rsa_key_size,
        )

    def check_public_key(self, public_key: RSAPublicKey):
        """
        Reject public keys outside the exchange parameters.

        Raises:
            ConfigurationError: Wrong key type, modulus too small, or wrong exponent.
        """
        if not isinstance(public_key, RSAPublicKey):
            raise ConfigurationError("Recipient key is not an RSA public key",
                                     {"type": type(public_key).__name__})
        if public_key.key_size < self.config.rsa_key_size:
            raise ConfigurationError("Recipient RSA modulus is too small",
                                     {"key_size": public_key.key_size})
        exponent = public_key.public_numbers().e
        if exponent != self.config.rsa_public_exponent:
            raise ConfigurationError("Recipient RSA exponent is not supported",
                                     {"exponent": exponent})

    def wrap(self, key: SymmetricKey, public_key: RSAPublicKey) -> WrappedKey:
        """Encrypt a content key to one recipient."""
        self.check_public_key(public_key)
        ciphertext = public_key.encrypt(key.to_bytes(), _oaep())
        rid = recipient_id(public_key)
        logger.debug(f"Wrapped key {key.fingerprint} for recipient {rid[:16]}")
        return WrappedKey(recipient_id=rid, ciphertext=ciphertext)

    def wrap_for_all(self, key: SymmetricKey, public_keys) -> dict[str, WrappedKey]:
        """
        Wrap a content key for every distinct recipient, in parallel.

        Returns:
            {recipient_id: WrappedKey}, one entry per distinct public key.
        """
        distinct = {}
        for public_key in public_keys:
            self.check_public_key(public_key)
            distinct.setdefault(recipient_id(public_key), public_key)

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            wrapped = list(pool.map(lambda pk: self.wrap(key, pk), distinct.values()))
        return {w.recipient_id: w for w in wrapped}

    def unwrap(self, wrapped: WrappedKey, private_key: RSAPrivateKey) -> SymmetricKey:
        """
        Recover the content key.

        Raises:
            UnwrapFailure: Any padding failure, wrong private key, or wrong key length.
        """
        try:
            material = private_key.decrypt(wrapped.ciphertext, _oaep())
        except ValueError as e:
            raise UnwrapFailure("RSA unwrap failed",
                                {"recipient_id": wrapped.recipient_id[:16]}) from e
        if len(material) != self.config.key_size:
            raise UnwrapFailure("Unwrapped key has the wrong length",
                                {"recipient_id": wrapped.recipient_id[:16]})
        return SymmetricKey(material)
