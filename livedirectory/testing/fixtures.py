"""Test fixtures for LiveDirectory consumers.

These fixtures give tests control over filesystem events and access to the
internal state of a directory map, without exposing implementation details
as part of the public API.
"""

import asyncio
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..aio.core.index import PathLike, forward_slashes
from ..aio.core.stats import FileStats
from ..aio.directory_map import DirectoryMap
from ..aio.events import Event, EventKind
from ..aio.watch.source import ExcludePredicate, WatchEvent, WatchEventKind, WatchSource

_STOP = object()


class ManualWatchSource(WatchSource):
    """Event source driven by the test instead of the operating system.

    Example:
        source = ManualWatchSource()
        directory_map = DirectoryMap(tmp_path, source=source)
        await directory_map.ready()

        (tmp_path / 'new.txt').write_text('hello')
        source.push(WatchEventKind.ADD, tmp_path / 'new.txt')
        await DirectoryMapTestHelper(directory_map).settle()
    """

    def __init__(self):
        self._queue: Optional[asyncio.Queue] = None
        self._closed = False
        self.root: Optional[str] = None
        self.is_excluded: Optional[ExcludePredicate] = None
        self.pushed: List[WatchEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events pushed but not yet taken by the consumer."""
        return self._queue.qsize() if self._queue is not None else 0

    def push(self, kind: WatchEventKind, path: PathLike,
             stats: Optional[FileStats] = None) -> WatchEvent:
        """Queue an event for an absolute path. Ignored once closed."""
        event = WatchEvent(kind, forward_slashes(os.fspath(path)), stats)
        if not self._closed:
            self.pushed.append(event)
            self._ensure_queue().put_nowait(event)
        return event

    async def events(self, root: str, is_excluded: ExcludePredicate):
        self.root = root
        self.is_excluded = is_excluded
        queue = self._ensure_queue()
        while not self._closed:
            event = await queue.get()
            if event is _STOP:
                return
            yield event

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._queue is not None:
            self._queue.put_nowait(_STOP)

    def _ensure_queue(self) -> asyncio.Queue:
        # Created on first use so the queue belongs to the running loop
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue


class EventRecorder:
    """Records events and lets tests wait for specific ones.

    Example:
        recorder = EventRecorder(directory_map)
        event = await recorder.wait_for(EventKind.UPDATE, '/a.txt')
    """

    def __init__(self, directory_map: Optional[DirectoryMap] = None, *kinds: EventKind):
        """Initialize, optionally subscribing to a map right away.

        Args:
            directory_map: Map to record events from
            *kinds: Kinds to record (all kinds if none)
        """
        self.events: List[Event] = []
        self._waiters: List[Tuple[Callable[[Event], bool], int, asyncio.Future]] = []
        self.subscription = None
        if directory_map is not None:
            self.subscription = directory_map.subscribe(self, *kinds)

    def __call__(self, event: Event):
        self.events.append(event)
        for waiter in list(self._waiters):
            matches, count, future = waiter
            if future.done():
                self._waiters.remove(waiter)
                continue
            found = [e for e in self.events if matches(e)]
            if len(found) >= count:
                future.set_result(found[count - 1])
                self._waiters.remove(waiter)

    def of_kind(self, kind: EventKind) -> List[Event]:
        return [e for e in self.events if e.kind is kind]

    def paths(self, kind: EventKind) -> List[str]:
        return [e.path for e in self.of_kind(kind)]

    def count(self, kind: EventKind, path: Optional[str] = None) -> int:
        return sum(1 for e in self.of_kind(kind) if path is None or e.path == path)

    def kinds(self) -> List[EventKind]:
        return [e.kind for e in self.events]

    async def wait_for(self, kind: EventKind, path: Optional[str] = None,
                       count: int = 1, timeout: float = 5.0) -> Event:
        """Wait until ``count`` matching events were recorded.

        Args:
            kind: Event kind to wait for
            path: Only count events for this relative path
            count: Number of matching events required
            timeout: Seconds before asyncio.TimeoutError is raised

        Returns:
            The ``count``-th matching event
        """
        def matches(event: Event) -> bool:
            return event.kind is kind and (path is None or getattr(event, 'path', None) == path)

        found = [e for e in self.events if matches(e)]
        if len(found) >= count:
            return found[count - 1]

        future = asyncio.get_running_loop().create_future()
        self._waiters.append((matches, count, future))
        return await asyncio.wait_for(future, timeout)

    def clear(self):
        self.events.clear()

    def unsubscribe(self):
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None


class DirectoryMapTestHelper:
    """Public test fixture for cache and index verification.

    Example:
        helper = DirectoryMapTestHelper(directory_map)
        assert helper.get_summary()['cached'] <= 250
        assert helper.check_invariants() == []
    """

    def __init__(self, directory_map: DirectoryMap):
        self._map = directory_map

    @property
    def source(self) -> Optional[WatchSource]:
        return self._map._reconciler.source

    def get_summary(self) -> Dict[str, Any]:
        """High-level state for testing.

        Returns:
            Dictionary containing:
            - state: Lifecycle state name
            - files: Number of indexed files
            - directories: Number of indexed directories (root included)
            - cached: Number of files held in memory
            - strong_etags: Files carrying a content hash ETag
            - weak_etags: Files carrying a metadata ETag
        """
        entries = [entry for _, entry in self._map._index.all()]
        return {
            'state': self._map.state.value,
            'files': len(entries),
            'directories': len(self._map._index.directories()),
            'cached': self._map._ledger.count(),
            'strong_etags': sum(1 for e in entries if e.etag and not e.etag.startswith('W/')),
            'weak_etags': sum(1 for e in entries if e.etag and e.etag.startswith('W/')),
        }

    def was_path_cached(self, path: PathLike) -> bool:
        key = self._map._index.to_relative_path(path)
        return key in self._map._ledger

    def etag_kind(self, path: PathLike) -> Optional[str]:
        """'strong', 'weak' or None when the file is not indexed."""
        entry = self._map.get(path)
        if entry is None or entry.etag is None:
            return None
        return 'weak' if entry.etag.startswith('W/') else 'strong'

    def check_invariants(self) -> List[str]:
        """Check cache bookkeeping against the index.

        Returns:
            List of violations (empty when consistent)
        """
        problems = []
        ledger = self._map._ledger
        index = self._map._index
        if ledger.count() > ledger.max_file_count:
            problems.append(f"{ledger.count()} cached files exceed {ledger.max_file_count}")
        for path in ledger.snapshot():
            entry = index.lookup(path)
            if entry is None:
                problems.append(f"{path} is cached but not indexed")
            elif not entry.cached:
                problems.append(f"{path} is in the ledger but holds no content")
            elif entry.stats.size > ledger.max_file_size:
                problems.append(f"{path} is cached but larger than {ledger.max_file_size}")
        for path, entry in index.all():
            if entry.cached and path not in ledger:
                problems.append(f"{path} holds content outside the ledger")
        return problems

    async def settle(self, timeout: float = 5.0, interval: float = 0.005):
        """Wait until no events are queued and no path is being processed."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            source = self.source
            pending = source.pending if isinstance(source, ManualWatchSource) else 0
            if not pending and not self._map._reconciler.in_flight:
                # One more pass lets a just-woken consumer submit its event
                await asyncio.sleep(interval)
                source_pending = source.pending if isinstance(source, ManualWatchSource) else 0
                if not source_pending and not self._map._reconciler.in_flight:
                    return
            if loop.time() > deadline:
                raise asyncio.TimeoutError("directory map did not settle")
            await asyncio.sleep(interval)
