"""
DirectoryMap: the public face of a live directory mirror.

Example:
    async with DirectoryMap('static', filter={'ignore': {'names': ['.git']}}) as assets:
        entry = assets.get('/css/site.css')
        if entry is not None:
            body = await entry.read()
"""

import asyncio
import logging
import os
from typing import Any, AsyncIterator, BinaryIO, Callable, Dict, Mapping, Optional, Union

from ..config import DirectoryMapConfig
from ..errors import ConfigError
from .core.entry import FileEntry, FileSnapshot
from .core.filter import PathFilter
from .core.index import DirectoryIndex, PathLike
from .core.ledger import CacheLedger
from .error_policies import ErrorPolicy
from .events import Event, EventChannel, EventKind, Listener, Subscription
from .watch.reconciler import DirectoryState, WatchReconciler
from .watch.source import WatchSource

logger = logging.getLogger(__name__)


class DirectoryMap:
    """
    In-memory, continuously updated mirror of a directory tree.

    Files are looked up by root-relative path. Small files (within the cache
    limits) are held in memory with a strong ETag; everything else is read
    from disk on demand and carries a weak ETag derived from its stats.

    The map starts scanning as soon as it is constructed inside a running
    event loop, otherwise on start() or ready().
    """

    def __init__(
        self,
        path: PathLike,
        config: Optional[DirectoryMapConfig] = None,
        *,
        source: Optional[WatchSource] = None,
        error_policy: Optional[ErrorPolicy] = None,
        **options: Any,
    ):
        """
        Args:
            path: Root directory to mirror
            config: Complete configuration; ``options`` are merged over it
            source: Event source to use instead of watching with watchfiles
            error_policy: Policy for per-path errors (ContinueOnErrorsPolicy)
            **options: Configuration as keyword options, e.g.
                ``static=True`` or ``cache={'max_file_count': 10}``

        Raises:
            ConfigError: If the configuration is invalid or the root is not a
                readable directory
        """
        config = (config or DirectoryMapConfig()).merged(**options)

        problems = config.validate()
        root = os.path.abspath(os.fspath(path))
        if not os.path.exists(root):
            problems.append(f"path does not exist: {root}")
        elif not os.path.isdir(root):
            problems.append(f"path is not a directory: {root}")
        elif not os.access(root, os.R_OK | os.X_OK):
            problems.append(f"path is not readable: {root}")
        if problems:
            raise ConfigError(problems)

        self.config = config
        self._index = DirectoryIndex(root)
        self._ledger = CacheLedger(config.cache.max_file_count, config.cache.max_file_size)
        self._filter = PathFilter(self._index.root, config.filter)
        self._channel = EventChannel()
        self._reconciler = WatchReconciler(
            self._index,
            self._ledger,
            self._filter,
            self._channel,
            config,
            source_factory=(lambda: source) if source is not None else None,
            error_policy=error_policy,
        )

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s starts on start() or ready()", root)
        else:
            self.start()

    # Lifecycle

    def start(self) -> 'DirectoryMap':
        """Begin the initial scan. Must be called from inside an event loop."""
        self._reconciler.start()
        return self

    async def ready(self) -> 'DirectoryMap':
        """Start the map if needed and wait for the initial scan."""
        if self._reconciler.state is DirectoryState.PENDING:
            self.start()
        await self._reconciler.wait_ready()
        return self

    def destroy(self):
        """Stop watching and release all entries. Safe to call repeatedly."""
        self._reconciler.destroy()

    async def aclose(self):
        await self._reconciler.aclose()

    async def __aenter__(self) -> 'DirectoryMap':
        return await self.ready()

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # Retrieval

    def get(self, path: PathLike) -> Optional[FileEntry]:
        """
        Look up a file.

        Args:
            path: Absolute path below the root, ``/``-relative path or bare
                relative path

        Returns:
            The FileEntry, or None if the file is not indexed
        """
        return self._index.lookup(path)

    def info(self, path: PathLike) -> Optional[FileSnapshot]:
        """Current snapshot (stats, ETag, cached content) of a file."""
        entry = self._index.lookup(path)
        return entry.snapshot if entry is not None else None

    def content(self, path: PathLike) -> Optional[Union[bytes, BinaryIO]]:
        """
        Cached bytes or a fresh binary file object for a file.

        Raises:
            PathIOError: If an uncached file cannot be opened
        """
        entry = self._index.lookup(path)
        return entry.content() if entry is not None else None

    def __contains__(self, path: PathLike) -> bool:
        return path in self._index

    def __len__(self) -> int:
        return len(self._index)

    # Properties

    @property
    def path(self) -> str:
        return self._index.root

    @property
    def static(self) -> bool:
        return self.config.static

    @property
    def watcher(self) -> Optional[WatchSource]:
        """The active event source; None while static, not watching or destroyed."""
        if self._reconciler.destroyed:
            return None
        return self._reconciler.source

    @property
    def files(self) -> Mapping[str, FileEntry]:
        return self._index.files()

    @property
    def cached(self) -> Dict[str, float]:
        """Relative path -> time the content was last cached."""
        return self._ledger.snapshot()

    @property
    def state(self) -> DirectoryState:
        return self._reconciler.state

    @property
    def error_policy(self) -> ErrorPolicy:
        return self._reconciler.error_policy

    # Notifications

    def subscribe(self, listener: Listener, *kinds: EventKind) -> Subscription:
        return self._channel.subscribe(listener, *kinds)

    def on(self, *kinds: EventKind) -> Callable[[Listener], Listener]:
        return self._channel.on(*kinds)

    def events(self, *kinds: EventKind) -> AsyncIterator[Event]:
        """Async iterator over notifications; ends when the map is destroyed."""
        return self._channel.stream(*kinds)

    def get_stats(self) -> Dict[str, Any]:
        stats = self._reconciler.get_stats()
        stats['cache'] = self._ledger.get_stats()
        stats['errors'] = self._reconciler.error_policy.get_statistics()
        stats['events'] = {kind.value: count for kind, count in self._channel.emitted.items()}
        return stats

    def __repr__(self) -> str:
        return f"DirectoryMap({self.path!r}, state={self.state.value}, files={len(self)})"
