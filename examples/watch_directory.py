#!/usr/bin/env python3
"""
Follow a directory live and print every change.

Usage:
    python examples/watch_directory.py [path]

Press Ctrl+C to stop.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for development
sys.path.insert(0, str(Path(__file__).parent.parent))

from livedirectory import DirectoryMap, EventKind


async def main():
    root_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path.cwd()

    async with DirectoryMap(root_path, filter={'ignore': {'names': ['.git']}}) as directory_map:
        stats = directory_map.get_stats()
        print(f"Watching {directory_map.path}: {stats['files']} files, "
              f"{stats['cache']['cached']} cached")

        @directory_map.on(EventKind.ADD, EventKind.UPDATE)
        def show_change(event):
            print(f"{event.kind.value:>7} {event.path}  {event.snapshot.etag}")

        @directory_map.on(EventKind.DELETE, EventKind.DIRECTORY_CREATE, EventKind.DIRECTORY_DESTROY)
        def show_path(event):
            print(f"{event.kind.value:>7} {event.path}")

        async for event in directory_map.events(EventKind.ERROR):
            print(f"  error {event.path}: {event.error}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
