"""
In-memory block store.
A thread-safe dict keyed by content address. The reference collaborator
for tests and for callers that hold everything in process.
"""

import threading

from blockvault.address import ContentAddress
from blockvault.config import BlockConfig
from blockvault.errors import NotFound
from blockvault.store.base import BlockStore


class MemoryBlockStore(BlockStore):
    """Blocks live in a dict for the lifetime of the object."""

    def __init__(self, config: BlockConfig = None):
        super().__init__(config)
        self._blocks: dict[ContentAddress, bytes] = {}
        self._lock = threading.Lock()

    def put(self, addr: ContentAddress, block: bytes) -> None:
        self.check_block(addr, block)
        with self._lock:
            self._blocks.setdefault(addr, bytes(block))

    def get(self, addr: ContentAddress) -> bytes:
        with self._lock:
            block = self._blocks.get(addr)
        if block is None:
            raise NotFound("Block not found", {"address": addr.to_hex()})
        return block

    def has(self, addr: ContentAddress) -> bool:
        with self._lock:
            return addr in self._blocks

    def addresses(self) -> list[ContentAddress]:
        with self._lock:
            return list(self._blocks)

    def __len__(self):
        with self._lock:
            return len(self._blocks)
