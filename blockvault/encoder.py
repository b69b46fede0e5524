"""
Private File Encoder / Decoder
Turns plaintext into addressed, encrypted blocks and back again.

Encode:
  1. Generate a content key (SymmetricKeyRing)
  2. Wrap it for every recipient (AsymmetricExchange)
  3. Split plaintext into offset-aligned chunks (chunker)
  4. Seal chunk i with nonce(key, i), bound to its position (AeadCodec)
  5. Address each block and put it in the store (ContentAddresser, BlockStore)
  6. Assemble the block index in stream order, dispose the key

Decode:
  1. Find this principal's wrapped key and unwrap it (AccessDenied otherwise)
  2. Fetch, check and open each block (NotFound / AuthenticationFailure)
  3. Join chunks in order, dispose the key

Blocks are independent given the key, so steps 4-5 and the decode fetches
run on a thread pool. Results are collected in indexed order, never in
completion order, and the first failure by block order is the one raised.

Every block carries associated data index(8, big-endian) || final(1). A
block moved to another position, or a chain cut short or extended, fails
authentication.
"""

import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from blockvault.address import address, matches
from blockvault.aead import AeadCodec
from blockvault.chunker import iter_split, join
from blockvault.config import BlockConfig, DEFAULT_CONFIG
from blockvault.errors import (
    AccessDenied,
    AuthenticationFailure,
    EncodingInvariantViolation,
    NotFound,
    StoreError,
    UnwrapFailure,
)
from blockvault.exchange import AsymmetricExchange, recipient_id
from blockvault.keyring import SymmetricKey, SymmetricKeyRing
from blockvault.private_file import PrivateFile
from blockvault.store.base import BlockStore

logger = logging.getLogger(__name__)


def block_associated_data(index: int, is_last: bool) -> bytes:
    """Position binding authenticated with every block."""
    return index.to_bytes(8, "big") + (b"\x01" if is_last else b"\x00")


def with_retries(operation, config: BlockConfig, what: str, details: dict = None):
    """
    Run a block store operation, retrying retryable StoreErrors with backoff.

    Non-retryable errors and the final failed attempt propagate unchanged.
    """
    delay = config.retry_backoff
    attempt = 0
    while True:
        try:
            return operation()
        except StoreError as e:
            if not e.retryable or attempt >= config.store_retries:
                raise
            attempt += 1
            logger.warning(f"{what} failed (attempt {attempt}/{config.store_retries + 1}), "
                           f"retrying in {delay:.2f}s: {e}")
            time.sleep(delay)
            delay *= 2


def as_fetch(fetch):
    """
    Normalize a block source into a callable ContentAddress -> bytes.

    Accepts a BlockStore or any callable. Plain callables that signal a
    missing block with KeyError or FileNotFoundError get those translated
    to NotFound, and other OSErrors to StoreError.
    """
    if isinstance(fetch, BlockStore):
        return fetch.get
    if not callable(fetch):
        raise TypeError("fetch must be a BlockStore or a callable")

    def _fetch(addr):
        try:
            return fetch(addr)
        except (KeyError, FileNotFoundError) as e:
            raise NotFound("Block not found", {"address": addr.to_hex()}) from e
        except OSError as e:
            raise StoreError("Block fetch failed", {"address": addr.to_hex()}) from e

    return _fetch


def _mark_last(chunks):
    """Yield (index, chunk, is_last) with one chunk of lookahead."""
    iterator = iter(chunks)
    try:
        current = next(iterator)
    except StopIteration:
        return
    index = 0
    for following in iterator:
        yield index, current, False
        current = following
        index += 1
    yield index, current, True


def _cancel(pending):
    for future in pending:
        future.cancel()


def unwrap_for(file: PrivateFile, private_key, exchange: AsymmetricExchange) -> SymmetricKey:
    """
    Recover a file's content key for the holder of `private_key`.

    Raises:
        AccessDenied: No wrapped key for this principal, or it would not unwrap.
    """
    rid = recipient_id(private_key.public_key())
    wrapped = file.wrapped_key_for(rid)
    if wrapped is None:
        raise AccessDenied("No wrapped key for this principal", {"recipient_id": rid[:16]})
    try:
        return exchange.unwrap(wrapped, private_key)
    except UnwrapFailure as e:
        raise AccessDenied("Wrapped key could not be unwrapped",
                           {"recipient_id": rid[:16]}) from e


class PrivateFileEncoder:
    """
    Encodes plaintext into a PrivateFile, persisting every block first.

    Args:
        store: Destination block store.
        config: Block ceiling, workers and retry policy.
        keyring: Content key source. A private ring is created if omitted.
        exchange: RSA wrapping. Created from config if omitted.
    """

    def __init__(
        self,
        store: BlockStore,
        config: BlockConfig = None,
        keyring: SymmetricKeyRing = None,
        exchange: AsymmetricExchange = None,
    ):
        self.store = store
        self.config = config or DEFAULT_CONFIG
        self.keyring = keyring or SymmetricKeyRing(self.config)
        self.exchange = exchange or AsymmetricExchange(self.config)
        self.codec = AeadCodec(self.config)

    def encode(self, plaintext, recipients) -> PrivateFile:
        """
        Encrypt, address and store content for a set of recipients.

        Args:
            plaintext: bytes or a binary file-like object.
            recipients: Iterable of RSA public keys; at least one.

        Returns:
            The PrivateFile. Every block it references is in the store.

        Raises:
            ValueError: No recipients.
            StoreError: A block could not be stored; the encode is void.
        """
        recipients = list(recipients)
        if not recipients:
            raise ValueError("At least one recipient is required")

        with self.keyring.new_key() as key:
            return self._encode_with_key(key, plaintext, recipients)

    def _encode_with_key(self, key: SymmetricKey, plaintext, recipients) -> PrivateFile:
        wrapped_keys = self.exchange.wrap_for_all(key, recipients)
        block_index, content_length = self._seal_and_store(key, plaintext)

        private_file = PrivateFile(
            block_index=tuple(block_index),
            wrapped_keys=wrapped_keys,
            content_length=content_length,
            chunk_count=len(block_index),
            max_block_size=self.config.max_block_size,
        )
        private_file.validate()
        logger.info(f"Encoded {content_length} bytes into {len(block_index)} blocks "
                    f"for {len(wrapped_keys)} recipient(s) with key {key.fingerprint}")
        return private_file

    def _seal_block(self, key: SymmetricKey, index: int, nonce: bytes, chunk: bytes, is_last: bool):
        block = self.codec.seal(key, nonce, chunk, block_associated_data(index, is_last))
        addr = address(block)
        with_retries(lambda: self.store.put(addr, block), self.config,
                     f"Storing block {index}")
        logger.debug(f"Sealed block {index} -> {addr.hex[:16]} ({len(block)} bytes)")
        return addr

    def _seal_and_store(self, key: SymmetricKey, plaintext) -> tuple[list, int]:
        """Seal and put every chunk; returns (addresses in stream order, content length)."""
        nonce_key = self.keyring.nonce_key(key)
        seen_nonces = set()
        addresses = []
        content_length = 0
        window = self.config.workers * 2

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            pending = deque()
            try:
                for index, chunk, is_last in _mark_last(iter_split(plaintext, self.config.max_payload)):
                    if len(chunk) > self.config.max_payload:
                        raise EncodingInvariantViolation(
                            "Chunk exceeds the block payload ceiling",
                            {"block": index, "chunk_size": len(chunk)},
                        )
                    nonce = self.keyring.derive_block_nonce(key, index, nonce_key)
                    if nonce in seen_nonces:
                        raise EncodingInvariantViolation("Nonce collision within one file",
                                                         {"block": index})
                    seen_nonces.add(nonce)
                    content_length += len(chunk)

                    pending.append(pool.submit(self._seal_block, key, index, nonce, chunk, is_last))
                    # Bound memory: drain the oldest slot once the window is full
                    while len(pending) >= window:
                        addresses.append(pending.popleft().result())

                while pending:
                    addresses.append(pending.popleft().result())
            except BaseException:
                _cancel(pending)
                raise

        return addresses, content_length

    def share(self, file: PrivateFile, private_key, new_recipient) -> PrivateFile:
        """
        Grant another recipient access to an existing revision.

        The caller must already be a recipient. Blocks are untouched.
        """
        with unwrap_for(file, private_key, self.exchange) as key:
            wrapped = self.exchange.wrap(key, new_recipient)
        logger.info(f"Shared file with recipient {wrapped.recipient_id[:16]}")
        return file.with_wrapped_key(wrapped)

    def revoke(self, file: PrivateFile, recipient: str) -> PrivateFile:
        """
        Drop a recipient's wrapped key from this revision.

        A recipient who already unwrapped the key keeps it; use reencode()
        to cut them off from future content.
        """
        if file.wrapped_key_for(recipient) is None:
            raise KeyError(recipient)
        logger.info(f"Revoked recipient {recipient[:16]}")
        return file.without_recipient(recipient)

    def reencode(self, file: PrivateFile, private_key, recipients, fetch=None) -> PrivateFile:
        """
        Produce a new revision of the same content under a rotated key.

        Args:
            file: Current revision.
            private_key: A current recipient's private key.
            recipients: Public keys for the new revision.
            fetch: Block source for the current revision; defaults to this encoder's store.

        Returns:
            A new PrivateFile with a new key and new block addresses.
        """
        recipients = list(recipients)
        if not recipients:
            raise ValueError("At least one recipient is required")

        decoder = PrivateFileDecoder(fetch if fetch is not None else self.store,
                                     self.config, self.exchange)
        old_key = unwrap_for(file, private_key, self.exchange)
        try:
            plaintext = decoder.decode_with_key(file, old_key)
        except BaseException:
            old_key.dispose()
            raise
        with self.keyring.rotate(old_key) as new_key:
            return self._encode_with_key(new_key, plaintext, recipients)


class PrivateFileDecoder:
    """
    Decodes PrivateFiles, whole or by block or byte range.

    Args:
        fetch: BlockStore or callable ContentAddress -> bytes.
        config: Workers and retry policy. The block ceiling comes from each file.
        exchange: RSA unwrapping. Created from config if omitted.
    """

    def __init__(self, fetch, config: BlockConfig = None, exchange: AsymmetricExchange = None):
        self.fetch = as_fetch(fetch)
        self.config = config or DEFAULT_CONFIG
        self.exchange = exchange or AsymmetricExchange(self.config)
        self.keyring = SymmetricKeyRing(self.config)

    def _config_for(self, file: PrivateFile) -> BlockConfig:
        if file.max_block_size == self.config.max_block_size:
            return self.config
        return replace(self.config, max_block_size=file.max_block_size)

    def _open_block(self, file: PrivateFile, key: SymmetricKey, nonce_key: bytes,
                    codec: AeadCodec, index: int) -> bytes:
        addr = file.block_index[index]
        try:
            block = with_retries(lambda: self.fetch(addr), self.config, f"Fetching block {index}")
        except AuthenticationFailure as e:
            # Stores that re-hash on read report tamper before we see the bytes
            raise AuthenticationFailure("Stored block failed verification",
                                        {"block": index, "address": addr.to_hex()}) from e

        if not matches(addr, block):
            raise AuthenticationFailure("Fetched block does not match its address",
                                        {"block": index, "address": addr.to_hex()})
        expected_nonce = self.keyring.derive_block_nonce(key, index, nonce_key)
        if block[:codec.config.nonce_size] != expected_nonce:
            raise AuthenticationFailure("Block nonce does not match its position",
                                        {"block": index})

        is_last = index == file.chunk_count - 1
        try:
            chunk = codec.open(key, block, block_associated_data(index, is_last))
        except AuthenticationFailure as e:
            raise AuthenticationFailure("Block failed authentication", {"block": index}) from e

        if not is_last and len(chunk) != file.max_payload:
            raise EncodingInvariantViolation("Inner block is not full",
                                             {"block": index, "chunk_size": len(chunk)})
        return chunk

    def _open_range(self, file: PrivateFile, key: SymmetricKey, indices) -> list[bytes]:
        """Open the given blocks concurrently; results and errors in block order."""
        codec = AeadCodec(self._config_for(file))
        nonce_key = self.keyring.nonce_key(key)
        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            pending = deque(pool.submit(self._open_block, file, key, nonce_key, codec, i)
                            for i in indices)
            chunks = []
            try:
                while pending:
                    chunks.append(pending.popleft().result())
            except BaseException:
                _cancel(pending)
                raise
        return chunks

    def decode_with_key(self, file: PrivateFile, key: SymmetricKey) -> bytes:
        """Decode with an already-unwrapped content key. The key is not disposed."""
        file.validate()
        data = join(self._open_range(file, key, range(file.chunk_count)))
        if len(data) != file.content_length:
            raise EncodingInvariantViolation(
                "Decoded length does not match metadata",
                {"decoded": len(data), "content_length": file.content_length},
            )
        return data

    def decode(self, file: PrivateFile, private_key) -> bytes:
        """
        Reconstruct the full plaintext.

        Raises:
            AccessDenied: This principal cannot unwrap the content key.
            NotFound: A block is missing from the store.
            AuthenticationFailure: A block was tampered with.
        """
        with unwrap_for(file, private_key, self.exchange) as key:
            data = self.decode_with_key(file, key)
        logger.info(f"Decoded {len(data)} bytes from {file.chunk_count} blocks")
        return data

    def seek(self, file: PrivateFile, private_key, block_index: int) -> bytes:
        """
        Decrypt a single block without touching any other.

        Returns:
            The same bytes as chunk `block_index` of a full decode.
        """
        file.validate()
        if not 0 <= block_index < file.chunk_count:
            raise IndexError(f"Block index {block_index} out of range for {file.chunk_count} blocks")
        with unwrap_for(file, private_key, self.exchange) as key:
            codec = AeadCodec(self._config_for(file))
            return self._open_block(file, key, self.keyring.nonce_key(key), codec, block_index)

    def read_at(self, file: PrivateFile, private_key, offset: int, length: int) -> bytes:
        """
        Read a byte range, fetching only the blocks that span it.

        Reads past the end are truncated to the content length.
        """
        if offset < 0 or length < 0:
            raise ValueError("Offset and length must be non-negative")
        file.validate()
        end = min(offset + length, file.content_length)
        if offset >= end:
            return b""

        payload = file.max_payload
        first, last = offset // payload, (end - 1) // payload
        with unwrap_for(file, private_key, self.exchange) as key:
            data = join(self._open_range(file, key, range(first, last + 1)))
        start = offset - first * payload
        return data[start:start + (end - offset)]

    def iter_chunks(self, file: PrivateFile, private_key):
        """Yield plaintext chunks one block at a time, for bounded-memory streaming."""
        file.validate()
        codec = AeadCodec(self._config_for(file))
        with unwrap_for(file, private_key, self.exchange) as key:
            nonce_key = self.keyring.nonce_key(key)
            for index in range(file.chunk_count):
                yield self._open_block(file, key, nonce_key, codec, index)


def encode(plaintext, recipients, store: BlockStore, config: BlockConfig = None) -> PrivateFile:
    """Encode plaintext for `recipients` into `store`."""
    return PrivateFileEncoder(store, config).encode(plaintext, recipients)


def decode(file: PrivateFile, private_key, fetch, config: BlockConfig = None) -> bytes:
    """Decode a whole PrivateFile, fetching blocks through `fetch`."""
    return PrivateFileDecoder(fetch, config).decode(file, private_key)


def seek(file: PrivateFile, private_key, fetch, block_index: int, config: BlockConfig = None) -> bytes:
    """Decode only block `block_index` of a PrivateFile."""
    return PrivateFileDecoder(fetch, config).seek(file, private_key, block_index)
