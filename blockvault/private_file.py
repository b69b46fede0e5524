"""
Private File
The aggregate a revision of encrypted content is described by.

    PrivateFile
    ├── block_index     ordered content addresses, one per block
    ├── wrapped_keys    WrappedKeys sorted by recipient_id, one per recipient
    ├── content_length  total plaintext bytes
    ├── chunk_count     number of blocks
    └── max_block_size  block ceiling the file was encoded under

A PrivateFile is a value. Granting or revoking a recipient returns a new
PrivateFile; changing content produces a new revision with a new key and
new addresses, never an in-place update.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from blockvault.address import ContentAddress
from blockvault.chunker import chunk_count as expected_chunk_count
from blockvault.config import NONCE_SIZE, TAG_SIZE
from blockvault.errors import EncodingInvariantViolation
from blockvault.exchange import WrappedKey

FORMAT_VERSION = 1


@dataclass(frozen=True)
class PrivateFile:
    """
    Block index, recipient capabilities and content metadata for one revision.

    wrapped_keys accepts a {recipient_id: WrappedKey} mapping or any iterable
    of WrappedKey, and is held as a tuple sorted by recipient id.
    """
    block_index: tuple[ContentAddress, ...]
    wrapped_keys: tuple[WrappedKey, ...]
    content_length: int
    chunk_count: int
    max_block_size: int
    version: int = field(default=FORMAT_VERSION)

    def __post_init__(self):
        wrapped = self.wrapped_keys
        if isinstance(wrapped, Mapping):
            wrapped = wrapped.values()
        distinct = {w.recipient_id: w for w in wrapped}
        object.__setattr__(self, "wrapped_keys",
                           tuple(distinct[rid] for rid in sorted(distinct)))
        object.__setattr__(self, "block_index", tuple(self.block_index))

    @property
    def max_payload(self) -> int:
        return self.max_block_size - NONCE_SIZE - TAG_SIZE

    @property
    def recipients(self) -> list[str]:
        return [w.recipient_id for w in self.wrapped_keys]

    def wrapped_key_for(self, recipient_id: str) -> WrappedKey | None:
        for wrapped in self.wrapped_keys:
            if wrapped.recipient_id == recipient_id:
                return wrapped
        return None

    def with_wrapped_key(self, wrapped: WrappedKey) -> "PrivateFile":
        """Return a copy that also grants access to wrapped.recipient_id."""
        keys = [w for w in self.wrapped_keys if w.recipient_id != wrapped.recipient_id]
        return replace(self, wrapped_keys=keys + [wrapped])

    def without_recipient(self, recipient_id: str) -> "PrivateFile":
        """Return a copy with one recipient's wrapped key removed."""
        keys = [w for w in self.wrapped_keys if w.recipient_id != recipient_id]
        return replace(self, wrapped_keys=keys)

    def validate(self) -> bool:
        """
        Check metadata agrees with the block index.

        Raises:
            EncodingInvariantViolation: Count, length or ceiling inconsistency.
        """
        if self.version != FORMAT_VERSION:
            raise EncodingInvariantViolation("Unsupported private file version",
                                             {"version": self.version})
        if self.max_payload < 1:
            raise EncodingInvariantViolation("Block ceiling leaves no room for payload",
                                             {"max_block_size": self.max_block_size})
        if self.chunk_count != len(self.block_index):
            raise EncodingInvariantViolation(
                "Chunk count does not match the block index",
                {"chunk_count": self.chunk_count, "blocks": len(self.block_index)},
            )
        if self.content_length < 0:
            raise EncodingInvariantViolation("Negative content length",
                                             {"content_length": self.content_length})
        expected = expected_chunk_count(self.content_length, self.max_payload)
        if self.chunk_count != expected:
            raise EncodingInvariantViolation(
                "Chunk count does not match the content length",
                {"chunk_count": self.chunk_count, "expected": expected},
            )
        return True

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "content_length": self.content_length,
            "chunk_count": self.chunk_count,
            "max_block_size": self.max_block_size,
            "blocks": [addr.to_hex() for addr in self.block_index],
            "wrapped_keys": [w.to_dict() for w in self.wrapped_keys],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PrivateFile":
        wrapped = [WrappedKey.from_dict(w) for w in data["wrapped_keys"]]
        return cls(
            block_index=tuple(ContentAddress.from_hex(a) for a in data["blocks"]),
            wrapped_keys=wrapped,
            content_length=int(data["content_length"]),
            chunk_count=int(data["chunk_count"]),
            max_block_size=int(data["max_block_size"]),
            version=int(data.get("version", FORMAT_VERSION)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "PrivateFile":
        return cls.from_dict(json.loads(text))
