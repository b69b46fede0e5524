"""
Block stores for encrypted, content-addressed blocks.
The storage medium is an external collaborator; these are the interface
and two reference implementations.
"""

from blockvault.store.base import BlockStore
from blockvault.store.memory import MemoryBlockStore
from blockvault.store.disk import DiskBlockStore

__all__ = [
    "BlockStore",
    "MemoryBlockStore",
    "DiskBlockStore",
]
