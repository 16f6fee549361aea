"""Per-file records of the directory map.

A FileEntry is a stable handle for one file. Everything that changes on
reload lives in an immutable FileSnapshot which is swapped in as a whole, so
readers never observe a half-updated entry.
"""

import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional, Tuple, Union

from ...config import RetryConfig
from ...errors import PathIOError, PathNotFoundError
from .filter import split_name
from .ledger import CacheLedger
from .stats import FileStats

logger = logging.getLogger(__name__)

ReloadListener = Callable[['FileEntry', 'FileSnapshot'], None]


def _md5_hex(data: bytes) -> str:
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def strong_etag(content: bytes, stats: FileStats) -> str:
    """ETag derived from the full content of a file and its metadata.

    The content hash is extended with ``size,ctime,mtime`` so that touching
    a file changes its ETag even when the bytes are unchanged.
    """
    digest = hashlib.md5(content, usedforsecurity=False)
    digest.update(stats.fingerprint().encode("ascii"))
    return f'"{digest.hexdigest()}"'


def weak_etag(stats: FileStats) -> str:
    """ETag derived from the size and timestamps of a file."""
    return f'W/"{_md5_hex(stats.fingerprint().encode("ascii"))}"'


@dataclass(frozen=True)
class FileSnapshot:
    """State of a file as of one completed reload."""

    stats: FileStats
    etag: str
    cached: bool
    content: Optional[bytes] = None
    loaded_at: float = 0.0

    def __post_init__(self):
        if self.cached != (self.content is not None):
            raise ValueError("content must be present if and only if the snapshot is cached")

    @property
    def is_weak(self) -> bool:
        return self.etag.startswith('W/')


def _stat_sync(path: str) -> os.stat_result:
    return os.stat(path)


def _read_sync(path: str) -> Tuple[os.stat_result, bytes]:
    """Read a whole file together with the stats of the opened descriptor."""
    with open(path, 'rb') as handle:
        result = os.fstat(handle.fileno())
        return result, handle.read()


class FileEntry:
    """A file tracked by the directory map.

    Attributes:
        relative_path: Canonical key, forward slashes with a leading ``/``
        absolute_path: Filesystem path of the file
    """

    def __init__(
        self,
        relative_path: str,
        absolute_path: str,
        ledger: CacheLedger,
        retry: Optional[RetryConfig] = None,
        semaphore: Optional[asyncio.Semaphore] = None,
    ):
        """
        Args:
            relative_path: Canonical relative path
            absolute_path: Filesystem path
            ledger: Ledger deciding whether content is cached
            retry: Retry policy for empty reads (disabled by default)
            semaphore: Optional limit on concurrent filesystem operations
        """
        self.relative_path = relative_path
        self.absolute_path = absolute_path
        self._ledger = ledger
        self._retry = retry or RetryConfig()
        self._semaphore = semaphore
        self._snapshot: Optional[FileSnapshot] = None
        self._alive = True
        self._listeners: List[ReloadListener] = []

    # Snapshot accessors

    @property
    def snapshot(self) -> Optional[FileSnapshot]:
        """The last successfully loaded state, or None before the first reload."""
        return self._snapshot

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def alive(self) -> bool:
        """False once the entry was removed from its index."""
        return self._alive

    @property
    def stats(self) -> Optional[FileStats]:
        snapshot = self._snapshot
        return snapshot.stats if snapshot else None

    @property
    def etag(self) -> Optional[str]:
        snapshot = self._snapshot
        return snapshot.etag if snapshot else None

    @property
    def cached(self) -> bool:
        snapshot = self._snapshot
        return bool(snapshot and snapshot.cached)

    @property
    def last_update(self) -> Optional[float]:
        snapshot = self._snapshot
        return snapshot.loaded_at if snapshot else None

    @property
    def name(self) -> str:
        return split_name(self.relative_path)[0]

    @property
    def extension(self) -> str:
        return split_name(self.relative_path)[1]

    # Content access

    def content(self) -> Union[bytes, BinaryIO]:
        """
        Get the content of the file.

        Returns:
            The cached bytes when the file is held in memory, otherwise a new
            binary file object opened on every call (the caller closes it)

        Raises:
            PathIOError: If the file cannot be opened
        """
        snapshot = self._snapshot
        if snapshot is not None and snapshot.cached:
            return snapshot.content
        try:
            return open(self.absolute_path, 'rb')
        except FileNotFoundError as e:
            raise PathNotFoundError(self.absolute_path, 'open', e) from e
        except OSError as e:
            raise PathIOError(self.absolute_path, 'open', e) from e

    async def read(self) -> bytes:
        """Get the content as bytes, reading from disk when not cached."""
        snapshot = self._snapshot
        if snapshot is not None and snapshot.cached:
            return snapshot.content
        _, data = await self._read()
        return data

    # Reload

    def on_reload(self, listener: ReloadListener) -> Callable[[], None]:
        """Register ``listener(entry, snapshot)`` for successful reloads.

        Returns:
            A callable removing the listener
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    async def reload(
        self,
        stats: Optional[FileStats] = None,
        allow_cache: bool = True,
    ) -> Tuple[str, bool]:
        """
        Recompute stats, ETag and (when admitted) content from disk.

        Args:
            stats: Pre-fetched stats; fetched from disk when None
            allow_cache: When False the file is never held in memory

        Returns:
            Tuple of (etag, cached)

        Raises:
            PathNotFoundError: If the file no longer exists
            PathIOError: If stat or read fails
        """
        if not self._alive:
            raise PathNotFoundError(self.absolute_path, 'reload')

        if stats is None:
            stats = await self._stat()
        if stats.is_directory:
            raise PathIOError(self.absolute_path, 'reload', IsADirectoryError(self.absolute_path))

        previous = self._snapshot
        was_cached = previous is not None and previous.cached

        content = None
        cached = allow_cache and self._ledger.try_admit(self.relative_path, stats.size)
        if cached:
            try:
                stats, content = await self._read_content(stats)
            except PathIOError:
                if not was_cached:
                    self._ledger.release(self.relative_path)
                raise
            # The file may have grown between stat and read
            if stats.size > self._ledger.max_file_size:
                cached, content = False, None

        if cached:
            etag = strong_etag(content, stats)
        else:
            self._ledger.release(self.relative_path)
            etag = weak_etag(stats)

        snapshot = FileSnapshot(
            stats=stats,
            etag=etag,
            cached=cached,
            content=content,
            loaded_at=time.time(),
        )
        self._snapshot = snapshot
        logger.debug("Reloaded %s (etag=%s, cached=%s)", self.relative_path, etag, cached)

        for listener in list(self._listeners):
            try:
                listener(self, snapshot)
            except Exception:
                logger.exception("Reload listener failed for %s", self.relative_path)

        return etag, cached

    def detach(self):
        """Mark the entry as removed. Its last snapshot stays readable."""
        self._alive = False
        self._listeners.clear()

    # Filesystem access

    async def _stat(self) -> FileStats:
        try:
            result = await self._run(_stat_sync, self.absolute_path)
        except FileNotFoundError as e:
            raise PathNotFoundError(self.absolute_path, 'stat', e) from e
        except OSError as e:
            raise PathIOError(self.absolute_path, 'stat', e) from e
        return FileStats.from_stat_result(result)

    async def _read(self) -> Tuple[FileStats, bytes]:
        try:
            result, data = await self._run(_read_sync, self.absolute_path)
        except FileNotFoundError as e:
            raise PathNotFoundError(self.absolute_path, 'read', e) from e
        except OSError as e:
            raise PathIOError(self.absolute_path, 'read', e) from e
        return FileStats.from_stat_result(result), data

    async def _read_content(self, stats: FileStats) -> Tuple[FileStats, bytes]:
        """Read the content, retrying empty reads when configured."""
        read_stats, data = await self._read()
        attempts = 0
        while (not data and stats.size > 0
               and attempts < self._retry.max_attempts):
            attempts += 1
            logger.debug("Empty read of %s, retry %d/%d",
                         self.relative_path, attempts, self._retry.max_attempts)
            await asyncio.sleep(self._retry.delay)
            read_stats, data = await self._read()
        return read_stats, data

    async def _run(self, func, *args):
        if self._semaphore is None:
            return await asyncio.to_thread(func, *args)
        async with self._semaphore:
            return await asyncio.to_thread(func, *args)

    def __repr__(self) -> str:
        return f"FileEntry({self.relative_path!r}, etag={self.etag!r}, cached={self.cached})"
