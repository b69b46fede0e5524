"""
Content Addressing
A block's address is the SHA-256 digest of its full framed bytes.

Identical ciphertexts always land on the same address, which is what lets
the block store deduplicate. Nonce and tag are part of the digest input.
"""

import hashlib
from dataclasses import dataclass

ADDRESS_ALGORITHM = "sha256"
DIGEST_SIZE = 32


@dataclass(frozen=True, order=True)
class ContentAddress:
    """Opaque lookup key for one block in the external block store."""
    algorithm: str
    digest: bytes

    def __post_init__(self):
        if self.algorithm != ADDRESS_ALGORITHM:
            raise ValueError(f"Unsupported address algorithm: {self.algorithm}")
        if len(self.digest) != DIGEST_SIZE:
            raise ValueError(f"Digest must be {DIGEST_SIZE} bytes, got {len(self.digest)}")

    @property
    def hex(self) -> str:
        return self.digest.hex()

    def to_hex(self) -> str:
        """Serialize to a portable string, e.g. 'sha256:ab12...'."""
        return f"{self.algorithm}:{self.hex}"

    @classmethod
    def from_hex(cls, text: str) -> "ContentAddress":
        """Parse the form produced by to_hex()."""
        algorithm, _, digest_hex = text.partition(":")
        if not digest_hex:
            raise ValueError(f"Malformed content address: {text!r}")
        return cls(algorithm=algorithm, digest=bytes.fromhex(digest_hex))

    def __str__(self) -> str:
        return self.to_hex()


def address(block: bytes) -> ContentAddress:
    """Derive the content address of a framed block. Pure and deterministic."""
    return ContentAddress(ADDRESS_ALGORITHM, hashlib.sha256(block).digest())


def matches(addr: ContentAddress, block: bytes) -> bool:
    """True if `block` hashes to `addr`."""
    return address(block) == addr
