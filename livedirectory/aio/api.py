"""High-level async API for LiveDirectory.

This module provides simple functions for the two common uses of a directory
map: keeping one open while serving files, and taking a one-off snapshot.
"""

from typing import Any, Dict

from .core.entry import FileSnapshot
from .core.index import PathLike
from .directory_map import DirectoryMap


async def open_directory(path: PathLike, **options: Any) -> DirectoryMap:
    """Open a live directory map and wait for its initial scan.

    Args:
        path: Root directory to mirror
        **options: DirectoryMap options, e.g. ``static=True``

    Returns:
        A ready DirectoryMap; the caller destroys it when done

    Example:
        >>> assets = await open_directory('static', cache={'max_file_count': 500})
        >>> entry = assets.get('/index.html')
        >>> assets.destroy()
    """
    directory_map = DirectoryMap(path, **options)
    try:
        return await directory_map.ready()
    except BaseException:
        directory_map.destroy()
        raise


async def snapshot_directory(path: PathLike, **options: Any) -> Dict[str, FileSnapshot]:
    """Scan a directory once and return the snapshot of every file.

    The map is static and torn down before returning.

    Args:
        path: Root directory to scan
        **options: DirectoryMap options (``static`` is always True)

    Returns:
        Dictionary mapping relative path to FileSnapshot
    """
    options['static'] = True
    async with DirectoryMap(path, **options) as directory_map:
        return {
            relative_path: entry.snapshot
            for relative_path, entry in directory_map.files.items()
            if entry.snapshot is not None
        }