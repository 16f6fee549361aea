"""Filesystem event sources feeding the reconciler.

A source turns raw change notifications into WatchEvents that say what
happened to which path (file or directory), with stats where the path still
exists. The default source wraps ``watchfiles.awatch``.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Tuple

from watchfiles import Change, awatch

from ...config import WatcherConfig
from ..core.index import forward_slashes
from ..core.stats import FileStats

logger = logging.getLogger(__name__)

ExcludePredicate = Callable[[str, Optional[FileStats]], bool]


class WatchEventKind(Enum):
    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"
    ADD_DIR = "add_dir"
    UNLINK_DIR = "unlink_dir"


@dataclass(frozen=True)
class WatchEvent:
    """A filesystem change for one absolute forward-slash path."""

    kind: WatchEventKind
    path: str
    stats: Optional[FileStats] = None


_ORDER = {
    WatchEventKind.UNLINK_DIR: 0,
    WatchEventKind.UNLINK: 1,
    WatchEventKind.ADD_DIR: 2,
    WatchEventKind.ADD: 3,
    WatchEventKind.CHANGE: 3,
}


def order_events(events: Iterable[WatchEvent]) -> List[WatchEvent]:
    """
    Order one batch of events so that it can be applied front to back.

    Removals come first (deepest directories first), then created
    directories (shallowest first), then files.
    """
    def key(event: WatchEvent) -> Tuple[int, int, str]:
        depth = event.path.count('/')
        if event.kind is WatchEventKind.UNLINK_DIR:
            depth = -depth
        return _ORDER[event.kind], depth, event.path

    return sorted(events, key=key)


async def stat_or_none(path: str) -> Optional[FileStats]:
    """Stat ``path`` in a worker thread; None if it does not exist."""
    try:
        result = await asyncio.to_thread(os.stat, path)
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("Cannot stat %s: %s", path, e)
        return None
    return FileStats.from_stat_result(result)


class WatchSource(ABC):
    """Abstract event source."""

    @abstractmethod
    def events(self, root: str, is_excluded: ExcludePredicate) -> AsyncIterator[WatchEvent]:
        """
        Stream changes below ``root``.

        Args:
            root: Absolute forward-slash root directory
            is_excluded: ``(path, stats) -> bool``; excluded paths are not reported

        Yields:
            WatchEvent objects until the source is closed
        """

    @abstractmethod
    def close(self):
        """Stop producing events. Must be safe to call more than once."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


class WatchfilesSource(WatchSource):
    """
    Event source backed by ``watchfiles.awatch``.

    watchfiles reports (Change, path) pairs without telling files and
    directories apart, so every changed path is stat-ed. Paths that still
    exist become ADD/CHANGE (or ADD_DIR), vanished paths become UNLINK (or
    UNLINK_DIR for directories this source has reported). With
    ``await_write_finish`` a file is only reported once its size and mtime
    have been stable for ``stability_threshold`` seconds.
    """

    def __init__(self, config: Optional[WatcherConfig] = None):
        self.config = config or WatcherConfig()
        self._stop_event: Optional[asyncio.Event] = None
        self._directories: Set[str] = set()
        self._closed = False
        self.batches = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def events(self, root: str, is_excluded: ExcludePredicate) -> AsyncIterator[WatchEvent]:
        self._stop_event = asyncio.Event()
        if self._closed:
            return

        def watch_filter(change: Change, path: str) -> bool:
            return not is_excluded(forward_slashes(path), None)

        async for changes in awatch(
            root,
            watch_filter=watch_filter,
            debounce=self.config.debounce_ms,
            step=self.config.step_ms,
            stop_event=self._stop_event,
            force_polling=self.config.force_polling,
            poll_delay_ms=self.config.poll_delay_ms,
            recursive=True,
            ignore_permission_denied=True,
        ):
            if self._closed:
                break
            self.batches += 1
            for event in await self._translate(changes, is_excluded):
                yield event

    def close(self):
        self._closed = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def _translate(self, changes: Set[Tuple[Change, str]],
                         is_excluded: ExcludePredicate) -> List[WatchEvent]:
        grouped: Dict[str, Set[Change]] = {}
        for change, raw_path in changes:
            grouped.setdefault(forward_slashes(raw_path), set()).add(change)

        resolved = await asyncio.gather(*(
            self._resolve(path, kinds, is_excluded) for path, kinds in grouped.items()
        ))
        return order_events(event for event in resolved if event is not None)

    async def _resolve(self, path: str, changes: Set[Change],
                       is_excluded: ExcludePredicate) -> Optional[WatchEvent]:
        """Turn the changes seen for one path into at most one event."""
        stats = await stat_or_none(path)
        if stats is None:
            if path in self._directories:
                self._forget_directory(path)
                return WatchEvent(WatchEventKind.UNLINK_DIR, path)
            return WatchEvent(WatchEventKind.UNLINK, path)

        if is_excluded(path, stats):
            return None

        if stats.is_directory:
            # A modified directory only means its listing changed
            if Change.added not in changes:
                return None
            self._directories.add(path)
            return WatchEvent(WatchEventKind.ADD_DIR, path, stats)

        if self.config.await_write_finish:
            stats = await self._await_write_finish(path, stats)
            if stats is None:
                return WatchEvent(WatchEventKind.UNLINK, path)

        kind = WatchEventKind.ADD if Change.added in changes else WatchEventKind.CHANGE
        return WatchEvent(kind, path, stats)

    async def _await_write_finish(self, path: str, stats: FileStats) -> Optional[FileStats]:
        """
        Poll until size and mtime stay unchanged for the stability threshold.

        Returns:
            The settled stats, or None if the file vanished meanwhile
        """
        loop = asyncio.get_running_loop()
        threshold = self.config.stability_threshold
        stable_since = loop.time()
        last = stats
        while loop.time() - stable_since < threshold:
            await asyncio.sleep(self.config.poll_interval)
            current = await stat_or_none(path)
            if current is None:
                return None
            if (current.size, current.mtime_ns) != (last.size, last.mtime_ns):
                last = current
                stable_since = loop.time()
        return last

    def _forget_directory(self, path: str):
        prefix = path + '/'
        self._directories = {d for d in self._directories if d != path and not d.startswith(prefix)}
