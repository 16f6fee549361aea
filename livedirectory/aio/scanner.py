"""Recursive directory scanning for the initial load of a directory map.

Uses os.scandir with DirEntry objects for cached stat information, run in a
worker thread so the event loop never blocks on directory listings.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Set, Tuple

from ..errors import PathIOError, PathNotFoundError
from .core.filter import PathFilter
from .core.index import forward_slashes
from .core.stats import FileStats

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, BaseException], None]


@dataclass(frozen=True)
class ScanItem:
    """A file or directory discovered by a scan."""

    path: str
    stats: FileStats

    @property
    def is_directory(self) -> bool:
        return self.stats.is_directory


def _scan_directory_sync(path: str, follow_symlinks: bool) -> List[Tuple[str, os.stat_result]]:
    """Synchronous listing to be run in a worker thread."""
    entries = []
    with os.scandir(path) as iterator:
        for entry in iterator:
            try:
                # Eagerly cache stat result to avoid issues with DirEntry lifetime
                result = entry.stat(follow_symlinks=follow_symlinks)
            except OSError:
                # Skip entries we can't access (e.g., broken symlinks)
                continue
            entries.append((forward_slashes(entry.path), result))
    return entries


class DirectoryScanner:
    """
    Depth-first scanner applying a PathFilter.

    Excluded directories are pruned: nothing below them is listed.
    Directory cycles through symlinks are skipped by device/inode.
    """

    def __init__(
        self,
        path_filter: PathFilter,
        semaphore: Optional[asyncio.Semaphore] = None,
        follow_symlinks: bool = True,
    ):
        """
        Args:
            path_filter: Keep/ignore rules
            semaphore: Optional limit on concurrent filesystem operations
            follow_symlinks: Whether symlinks are resolved when listing
        """
        self.path_filter = path_filter
        self.semaphore = semaphore
        self.follow_symlinks = follow_symlinks
        self.directories_scanned = 0

    async def list_directory(self, path: str) -> List[Tuple[str, os.stat_result]]:
        """
        List one directory.

        Raises:
            PathNotFoundError: If the directory vanished
            PathIOError: If the directory cannot be read
        """
        try:
            if self.semaphore is None:
                entries = await asyncio.to_thread(_scan_directory_sync, path, self.follow_symlinks)
            else:
                async with self.semaphore:
                    entries = await asyncio.to_thread(_scan_directory_sync, path, self.follow_symlinks)
        except FileNotFoundError as e:
            raise PathNotFoundError(path, 'scan', e) from e
        except OSError as e:
            raise PathIOError(path, 'scan', e) from e
        self.directories_scanned += 1
        return entries

    async def walk(self, root: str, on_error: Optional[ErrorCallback] = None) -> AsyncIterator[ScanItem]:
        """
        Walk the tree below ``root`` in depth-first pre-order.

        A directory is always yielded before anything it contains. ``root``
        itself is not yielded.

        Args:
            root: Absolute forward-slash directory path
            on_error: Called with (path, error) for directories that cannot be
                listed; when None such errors propagate

        Yields:
            ScanItem for every file and directory passing the filter
        """
        visited: Set[Tuple[int, int]] = set()
        try:
            root_stat = await asyncio.to_thread(os.stat, root)
            visited.add((root_stat.st_dev, root_stat.st_ino))
        except OSError:
            # Listing the root below reports the failure
            pass

        async def dfs(directory: str) -> AsyncIterator[ScanItem]:
            try:
                entries = await self.list_directory(directory)
            except PathIOError as e:
                if on_error is None:
                    raise
                on_error(directory, e)
                return

            for path, result in sorted(entries, key=lambda item: item[0]):
                stats = FileStats.from_stat_result(result)
                if self.path_filter.should_exclude(path, stats):
                    logger.debug("Filtered out %s", path)
                    continue
                if stats.is_directory:
                    key = (result.st_dev, result.st_ino)
                    if key in visited:
                        continue
                    visited.add(key)
                    yield ScanItem(path, stats)
                    async for item in dfs(path):
                        yield item
                else:
                    yield ScanItem(path, stats)

        async for item in dfs(root):
            yield item
