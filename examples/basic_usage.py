"""
Blockvault: Basic Usage Example

Encrypts a file's content into content-addressed blocks for two
recipients, reads it back whole and by block, then re-encodes it for one
recipient under a rotated key.
"""

import os
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from blockvault import (
    AccessDenied,
    AsymmetricExchange,
    DiskBlockStore,
    PrivateFile,
    PrivateFileDecoder,
    PrivateFileEncoder,
)


def main():
    print("=" * 50)
    print("  Blockvault: Encrypted Content-Addressed Blocks")
    print("=" * 50)

    exchange = AsymmetricExchange()
    alice = exchange.generate_keypair()
    bob = exchange.generate_keypair()

    store = DiskBlockStore("./example-blocks")
    encoder = PrivateFileEncoder(store)
    decoder = PrivateFileDecoder(store)

    content = os.urandom(600_000)

    print("\n[1] Encoding 600,000 bytes for Alice and Bob...")
    private_file = encoder.encode(content, [alice.public_key(), bob.public_key()])
    print(f"    Blocks: {private_file.chunk_count}")
    print(f"    Recipients: {len(private_file.wrapped_keys)}")
    for addr in private_file.block_index:
        print(f"    {addr.to_hex()[:40]}...")

    # The PrivateFile is plain data; persist it wherever metadata lives
    manifest = Path("./example-blocks/manifest.json")
    manifest.write_text(private_file.to_json())

    print("\n[2] Decoding as Bob...")
    restored = PrivateFile.from_json(manifest.read_text())
    assert decoder.decode(restored, bob) == content
    print("    Match: True")

    print("\n[3] Random access to block 1 as Alice...")
    chunk = decoder.seek(restored, alice, 1)
    print(f"    Block 1: {len(chunk)} bytes")

    print("\n[4] Re-encoding for Alice only (new key, new addresses)...")
    revision = encoder.reencode(restored, alice, [alice.public_key()])
    try:
        decoder.decode(revision, bob)
        print("    Bob can still read: unexpected")
    except AccessDenied:
        print("    Bob denied on the new revision")

    print(f"\n    Store: {store.stats()}")
    print("\nDone.")


if __name__ == "__main__":
    main()
