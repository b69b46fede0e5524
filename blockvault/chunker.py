"""
Block Chunker
Split content into fixed-size plaintext chunks and put them back together.

Boundaries depend only on byte offset, never on content: chunk i always
covers [i * max_payload, (i + 1) * max_payload). Every chunk is exactly
max_payload long except the last, which holds the remainder.

End-of-stream is carried by the file's metadata (length and chunk count), so
no empty marker chunk follows an exact multiple. The one exception is empty
content, which becomes a single empty chunk so every file has a block to
authenticate.
"""

from blockvault.config import DEFAULT_CONFIG


def _payload(max_payload: int) -> int:
    max_payload = DEFAULT_CONFIG.max_payload if max_payload is None else max_payload
    if max_payload < 1:
        raise ValueError(f"max_payload must be positive, got {max_payload}")
    return max_payload


def chunk_count(length: int, max_payload: int = None) -> int:
    """Number of chunks split() produces for content of this length."""
    max_payload = _payload(max_payload)
    if length < 0:
        raise ValueError("Length cannot be negative")
    if length == 0:
        return 1
    return -(-length // max_payload)


def chunk_span(index: int, length: int, max_payload: int = None) -> tuple[int, int]:
    """Byte range [start, end) that chunk `index` covers in content of `length` bytes."""
    max_payload = _payload(max_payload)
    if not 0 <= index < chunk_count(length, max_payload):
        raise IndexError(f"Chunk index {index} out of range")
    start = index * max_payload
    return start, min(start + max_payload, length)


def iter_split(stream, max_payload: int = None):
    """
    Yield chunks from bytes or a binary file-like object.

    File-like input is read max_payload bytes at a time, so arbitrarily
    large content never has to sit in memory at once.
    """
    max_payload = _payload(max_payload)

    if isinstance(stream, (bytes, bytearray, memoryview)):
        data = bytes(stream)
        if not data:
            yield b""
            return
        for offset in range(0, len(data), max_payload):
            yield data[offset:offset + max_payload]
        return

    emitted = False
    while True:
        chunk = _read_exact(stream, max_payload)
        if not chunk:
            break
        emitted = True
        yield chunk
        if len(chunk) < max_payload:
            break
    if not emitted:
        yield b""


def _read_exact(stream, size: int) -> bytes:
    """Read up to `size` bytes, looping over short reads until EOF."""
    parts = []
    remaining = size
    while remaining > 0:
        part = stream.read(remaining)
        if not part:
            break
        parts.append(part)
        remaining -= len(part)
    return b"".join(parts)


def split(stream, max_payload: int = None) -> list[bytes]:
    """
    Split content into offset-aligned chunks.

    Args:
        stream: bytes or a binary file-like object.
        max_payload: Chunk size; defaults to the default config's payload ceiling.

    Returns:
        List of chunks; all but the last are exactly max_payload bytes.
    """
    return list(iter_split(stream, max_payload))


def join(chunks) -> bytes:
    """Concatenate chunks in order."""
    return b"".join(chunks)
