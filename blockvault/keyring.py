"""
Symmetric Key Ring
Per-revision content keys, their derived sub-keys, and per-block nonces.

Key lifecycle:
  new_key()  → random 32-byte SymmetricKey, owned by the ring's caller
  rotate()   → fresh key for the next revision, old key overwritten
  dispose()  → key bytes overwritten with zeros

Nonce derivation:
  key ──HKDF("nonce")──> nonce key ──HMAC-SHA256(index)──> first 12 bytes

The nonce is a pure function of (key, block index). No counter or random
source is shared across calls, so sealing is reproducible and safe to run
on many threads at once. Since every revision gets a fresh key, a given
(key, nonce) pair never covers two different plaintexts.
"""

import hashlib
import hmac
import logging
import os
import threading
from collections import OrderedDict

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from blockvault.config import BlockConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)

MAX_BLOCK_INDEX = 2 ** 64 - 1
MAX_TRACKED_KEYS = 4096

# HKDF context prefix for every sub-key derived from a content key
_SUBKEY_CONTEXT = b"blockvault-subkey-v1:"
_NONCE_INFO = b"nonce"


class SymmetricKey:
    """
    32 bytes of secret key material held in a mutable buffer.

    The buffer is overwritten on dispose(). Use as a context manager to
    dispose automatically when the block operations are done.
    """

    def __init__(self, material: bytes):
        if len(material) != DEFAULT_CONFIG.key_size:
            raise ValueError(f"Symmetric keys are {DEFAULT_CONFIG.key_size} bytes, got {len(material)}")
        self._material = bytearray(material)
        self._digest = hashlib.sha256(self._material).hexdigest()
        self._disposed = False

    def to_bytes(self) -> bytes:
        """Copy of the key bytes. Raises ValueError after dispose()."""
        if self._disposed:
            raise ValueError("Key has been disposed")
        return bytes(self._material)

    @property
    def fingerprint(self) -> str:
        """Short non-secret identifier, safe to log."""
        return self._digest[:16]

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self):
        """Overwrite the key bytes with zeros."""
        if not self._disposed:
            self._material[:] = bytes(len(self._material))
            self._disposed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()
        return False

    def __eq__(self, other):
        if not isinstance(other, SymmetricKey):
            return NotImplemented
        return hmac.compare_digest(self._material, other._material)

    __hash__ = None

    def __len__(self):
        return len(self._material)

    def __repr__(self):
        state = "disposed" if self._disposed else self.fingerprint
        return f"SymmetricKey({state})"


class SymmetricKeyRing:
    """
    Issues content keys and derives everything a block operation needs from them.

    The ring remembers a keyed digest of the most recent keys it has issued
    or imported, so rotate() never hands back a key still in that window.
    The digests are keyed with a per-ring secret and the window is bounded
    by `max_tracked`.

    Args:
        config: Key and nonce sizes.
        max_tracked: How many issued-key digests to remember.
    """

    def __init__(self, config: BlockConfig = None, max_tracked: int = MAX_TRACKED_KEYS):
        self.config = config or DEFAULT_CONFIG
        self.max_tracked = max_tracked
        self._tracking_key = os.urandom(32)
        self._issued: OrderedDict[bytes, None] = OrderedDict()
        self._lock = threading.Lock()

    def _register(self, key: SymmetricKey) -> bool:
        digest = hmac.new(self._tracking_key, key.to_bytes(), hashlib.sha256).digest()
        with self._lock:
            if digest in self._issued:
                return False
            self._issued[digest] = None
            while len(self._issued) > self.max_tracked:
                self._issued.popitem(last=False)
            return True

    def new_key(self) -> SymmetricKey:
        """Generate a fresh random content key."""
        while True:
            key = SymmetricKey(os.urandom(self.config.key_size))
            if self._register(key):
                logger.debug(f"Issued content key {key.fingerprint}")
                return key
            key.dispose()

    def import_key(self, material: bytes) -> SymmetricKey:
        """Adopt existing key material (e.g. freshly unwrapped) into the ring."""
        key = SymmetricKey(material)
        self._register(key)
        return key

    def rotate(self, old_key: SymmetricKey) -> SymmetricKey:
        """
        Replace a revision's key with a fresh one.

        The old key is disposed; the new one is guaranteed not to be any key
        this ring has issued or imported before.
        """
        new_key = self.new_key()
        old_fingerprint = old_key.fingerprint
        old_key.dispose()
        logger.info(f"Rotated content key {old_fingerprint} -> {new_key.fingerprint}")
        return new_key

    def dispose(self, key: SymmetricKey):
        key.dispose()

    def derive_subkey(self, key: SymmetricKey, info: bytes, length: int = None) -> bytes:
        """
        Derive a domain-separated sub-key from a content key with HKDF-SHA256.

        Different `info` values yield independent sub-keys.
        """
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=length or self.config.key_size,
            salt=None,
            info=_SUBKEY_CONTEXT + info,
        )
        return hkdf.derive(key.to_bytes())

    def nonce_key(self, key: SymmetricKey) -> bytes:
        """The PRF key behind derive_block_nonce()."""
        return self.derive_subkey(key, _NONCE_INFO)

    def derive_block_nonce(self, key: SymmetricKey, block_index: int, nonce_key: bytes = None) -> bytes:
        """
        Derive the 12-byte nonce for a block position.

        Args:
            key: The file's content key.
            block_index: Position of the block in stream order (0 ≤ i < 2^64).
            nonce_key: Precomputed nonce_key(key), to skip the HKDF step per block.

        Returns:
            HMAC-SHA256(nonce_key, index as 8 bytes big-endian), truncated to 12 bytes.
        """
        if not 0 <= block_index <= MAX_BLOCK_INDEX:
            raise ValueError(f"Block index out of range: {block_index}")
        prf_key = nonce_key if nonce_key is not None else self.nonce_key(key)
        mac = hmac.new(prf_key, block_index.to_bytes(8, "big"), hashlib.sha256).digest()
        return mac[:self.config.nonce_size]
