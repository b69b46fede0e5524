"""
Blockvault: Encrypted Block Layer
Client-side encryption of file content into content-addressed blocks.

Blockvault splits content into fixed-size chunks, seals each with
AES-256-GCM under a per-revision key, and addresses every sealed block by
its SHA-256 digest. The content key is wrapped with RSA-OAEP for each
recipient, so any of them can decrypt without sharing a long-lived secret.

Any single block can be decrypted on its own, so reads can seek without
decrypting the whole file.

Usage:
    from blockvault import AsymmetricExchange, MemoryBlockStore, encode, decode
    store = MemoryBlockStore()
    alice = AsymmetricExchange().generate_keypair()
    file = encode(b"hello", [alice.public_key()], store)
    assert decode(file, alice, store) == b"hello"
"""

import logging

from blockvault.config import BlockConfig, DEFAULT_CONFIG, MAX_BLOCK_SIZE
from blockvault.errors import (
    BlockVaultError,
    AuthenticationFailure,
    UnwrapFailure,
    AccessDenied,
    NotFound,
    StoreError,
    EncodingInvariantViolation,
    ConfigurationError,
)
from blockvault.aead import AeadCodec
from blockvault.address import ContentAddress, address
from blockvault.chunker import split, join
from blockvault.keyring import SymmetricKey, SymmetricKeyRing
from blockvault.exchange import AsymmetricExchange, WrappedKey, recipient_id
from blockvault.private_file import PrivateFile
from blockvault.store import BlockStore, MemoryBlockStore, DiskBlockStore
from blockvault.encoder import PrivateFileEncoder, PrivateFileDecoder, encode, decode, seek

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
__all__ = [
    "BlockConfig",
    "DEFAULT_CONFIG",
    "MAX_BLOCK_SIZE",
    "BlockVaultError",
    "AuthenticationFailure",
    "UnwrapFailure",
    "AccessDenied",
    "NotFound",
    "StoreError",
    "EncodingInvariantViolation",
    "ConfigurationError",
    "AeadCodec",
    "ContentAddress",
    "address",
    "split",
    "join",
    "SymmetricKey",
    "SymmetricKeyRing",
    "AsymmetricExchange",
    "WrappedKey",
    "recipient_id",
    "PrivateFile",
    "BlockStore",
    "MemoryBlockStore",
    "DiskBlockStore",
    "PrivateFileEncoder",
    "PrivateFileDecoder",
    "encode",
    "decode",
    "seek",
]
