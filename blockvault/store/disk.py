"""
Disk block store.
One file per block, named by the hex digest of its address, fanned out
into two-character subdirectories.

Writes go to a temp file and are moved into place with os.replace, so a
block is either fully present under its address or absent. Reads re-hash
the bytes and report anything that no longer matches its address as an
AuthenticationFailure.
"""

import logging
import os
import threading
from pathlib import Path

from blockvault.address import ContentAddress, matches
from blockvault.config import BlockConfig
from blockvault.errors import AuthenticationFailure, NotFound, StoreError
from blockvault.store.base import BlockStore

logger = logging.getLogger(__name__)


class DiskBlockStore(BlockStore):
    """
    Content-addressed blocks on the local filesystem.

    Args:
        storage_dir: Root directory for block files. Created if missing.
        config: Supplies the block ceiling.
    """

    def __init__(self, storage_dir: str | Path, config: BlockConfig = None):
        super().__init__(config)
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, addr: ContentAddress) -> Path:
        digest = addr.hex
        return self.storage_dir / digest[:2] / f"{digest}.block"

    def put(self, addr: ContentAddress, block: bytes) -> None:
        self.check_block(addr, block)
        path = self.path_for(addr)
        if path.exists():
            return

        tmp = path.with_name(f"{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as f:
                f.write(block)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StoreError("Failed to write block", {"address": addr.to_hex()}) from e
        logger.debug(f"Stored block {addr.hex[:16]} ({len(block)} bytes)")

    def get(self, addr: ContentAddress) -> bytes:
        path = self.path_for(addr)
        try:
            block = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound("Block not found", {"address": addr.to_hex()}) from e
        except OSError as e:
            raise StoreError("Failed to read block", {"address": addr.to_hex()}) from e

        if not matches(addr, block):
            raise AuthenticationFailure("Stored block does not match its address",
                                        {"address": addr.to_hex()})
        return block

    def has(self, addr: ContentAddress) -> bool:
        return self.path_for(addr).exists()

    def stats(self) -> dict:
        """Get store statistics."""
        total_bytes = 0
        count = 0
        for f in self.storage_dir.glob("*/*.block"):
            total_bytes += f.stat().st_size
            count += 1
        return {
            "storage_dir": str(self.storage_dir),
            "total_blocks": count,
            "total_bytes_on_disk": total_bytes,
        }
