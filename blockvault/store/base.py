"""
Base class for all block stores.
Every storage medium the encoder writes to implements this interface.
"""

from abc import ABC, abstractmethod

from blockvault.address import ContentAddress, address
from blockvault.config import BlockConfig, DEFAULT_CONFIG
from blockvault.errors import StoreError


class BlockStore(ABC):
    """
    Abstract content-addressed block store.

    Blocks are immutable: putting the same bytes twice is a no-op, and a
    put whose bytes do not hash to the given address is refused.

    Args:
        config: Supplies the block ceiling enforced on put.
    """

    def __init__(self, config: BlockConfig = None):
        self.config = config or DEFAULT_CONFIG

    def check_block(self, addr: ContentAddress, block: bytes):
        """
        Validate a block before it is written.

        Raises:
            StoreError: (not retryable) Oversized block or address mismatch.
        """
        if len(block) > self.config.max_block_size:
            raise StoreError(
                "Maximum block size exceeded",
                {"block_size": len(block), "max_block_size": self.config.max_block_size},
                retryable=False,
            )
        if address(block) != addr:
            raise StoreError("Block does not match its address",
                             {"address": addr.to_hex()}, retryable=False)

    @abstractmethod
    def put(self, addr: ContentAddress, block: bytes) -> None:
        """
        Persist a block under its address.

        Raises:
            StoreError: The block could not be durably stored.
        """

    @abstractmethod
    def get(self, addr: ContentAddress) -> bytes:
        """
        Fetch a block by address.

        Raises:
            NotFound: Nothing is stored under this address.
            StoreError: The medium failed while reading.
        """

    @abstractmethod
    def has(self, addr: ContentAddress) -> bool:
        """Check whether a block is stored under this address."""

    def fetch(self, addr: ContentAddress) -> bytes:
        """Alias of get(), so a store can be passed wherever a fetch callable is expected."""
        return self.get(addr)

    def __call__(self, addr: ContentAddress) -> bytes:
        return self.get(addr)
