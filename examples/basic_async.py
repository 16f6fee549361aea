#!/usr/bin/env python3
"""
Basic example showing a one-off snapshot of a directory with LiveDirectory.

This example demonstrates:
- Scanning a directory once with snapshot_directory()
- Ignoring directories by name
- Telling cached (strong ETag) files from streamed (weak ETag) ones
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path for development
sys.path.insert(0, str(Path(__file__).parent.parent))

from livedirectory import snapshot_directory


async def main():
    """Demonstrate a one-off snapshot."""
    # Get the root path from command line or use current directory
    root_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path.cwd()

    print(f"Scanning: {root_path}")
    print("-" * 50)

    snapshots = await snapshot_directory(
        root_path,
        filter={'ignore': {'names': ['.git', '__pycache__', 'node_modules']}},
    )

    cached = [path for path, snapshot in snapshots.items() if snapshot.cached]
    total_size = sum(snapshot.stats.size for snapshot in snapshots.values())
    large_files = sorted(
        ((path, snapshot.stats.size) for path, snapshot in snapshots.items() if not snapshot.cached),
        key=lambda x: x[1],
        reverse=True,
    )

    # Print summary
    print(f"\nSnapshot Summary:")
    print(f"  Files: {len(snapshots):,}")
    print(f"  Held in memory: {len(cached):,}")
    print(f"  Total Size: {total_size / 1024 / 1024:.1f} MB")

    if large_files:
        print(f"\nStreamed from disk (weak ETag):")
        for path, size in large_files[:5]:
            print(f"  {size / 1024:.1f} KB: {path}  {snapshots[path].etag}")


if __name__ == "__main__":
    asyncio.run(main())
