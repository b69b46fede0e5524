"""
AEAD Codec
AES-256-GCM over a single block, framed as nonce || ciphertext || tag.

    +-----------+------------------------+----------+
    | nonce(12) | encrypted payload (n)  | tag(16)  |
    +-----------+------------------------+----------+

The whole frame is at most the block ceiling, so the payload is at most
max_block_size - 28. The nonce is read back from the frame on open; the tag
covers the nonce (as GCM's IV) and the ciphertext, plus any associated data.
Nothing is returned until the tag verifies.
"""

import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from blockvault.config import BlockConfig, DEFAULT_CONFIG
from blockvault.errors import AuthenticationFailure, EncodingInvariantViolation
from blockvault.keyring import SymmetricKey

logger = logging.getLogger(__name__)


def _key_bytes(key, config: BlockConfig) -> bytes:
    raw = key.to_bytes() if isinstance(key, SymmetricKey) else bytes(key)
    if len(raw) != config.key_size:
        raise ValueError(f"Key must be {config.key_size} bytes, got {len(raw)}")
    return raw


class AeadCodec:
    """
    Seals and opens single blocks.

    Args:
        config: Block ceiling and framing sizes.
    """

    def __init__(self, config: BlockConfig = None):
        self.config = config or DEFAULT_CONFIG

    @property
    def overhead(self) -> int:
        return self.config.overhead

    def split_frame(self, block: bytes) -> tuple[bytes, bytes, bytes]:
        """Split a framed block into (nonce, encrypted payload, tag) by position."""
        nonce_size = self.config.nonce_size
        tag_size = self.config.tag_size
        return block[:nonce_size], block[nonce_size:-tag_size], block[-tag_size:]

    def seal(self, key, nonce: bytes, plaintext: bytes, associated_data: bytes = None) -> bytes:
        """
        Encrypt one chunk into a framed block.

        Args:
            key: SymmetricKey (or raw 32 bytes).
            nonce: 12-byte nonce, unique for this key.
            plaintext: Chunk of at most max_payload bytes.
            associated_data: Authenticated but unencrypted context, e.g. block position.

        Returns:
            nonce || ciphertext || tag

        Raises:
            EncodingInvariantViolation: If the chunk would overflow the block ceiling.
            ValueError: If the key or nonce has the wrong length.
        """
        if len(plaintext) > self.config.max_payload:
            raise EncodingInvariantViolation(
                "Chunk exceeds the block payload ceiling",
                {"chunk_size": len(plaintext), "max_payload": self.config.max_payload},
            )
        if len(nonce) != self.config.nonce_size:
            raise ValueError(f"Nonce must be {self.config.nonce_size} bytes, got {len(nonce)}")

        aesgcm = AESGCM(_key_bytes(key, self.config))
        # AESGCM returns ciphertext || tag
        block = bytes(nonce) + aesgcm.encrypt(bytes(nonce), bytes(plaintext), associated_data)

        if len(block) > self.config.max_block_size:
            raise EncodingInvariantViolation(
                "Sealed block exceeds the block ceiling",
                {"block_size": len(block), "max_block_size": self.config.max_block_size},
            )
        return block

    def open(self, key, block: bytes, associated_data: bytes = None) -> bytes:
        """
        Verify and decrypt a framed block.

        Raises:
            AuthenticationFailure: Malformed frame, tag mismatch, or wrong key.
        """
        if len(block) < self.overhead:
            raise AuthenticationFailure(
                "Block is shorter than its framing",
                {"block_size": len(block), "overhead": self.overhead},
            )
        if len(block) > self.config.max_block_size:
            raise AuthenticationFailure(
                "Block exceeds the block ceiling",
                {"block_size": len(block), "max_block_size": self.config.max_block_size},
            )

        nonce = block[:self.config.nonce_size]
        aesgcm = AESGCM(_key_bytes(key, self.config))
        try:
            return aesgcm.decrypt(nonce, bytes(block[self.config.nonce_size:]), associated_data)
        except InvalidTag as e:
            raise AuthenticationFailure("Block failed authentication") from e
