"""
Reconciliation of filesystem events into a DirectoryIndex.

The reconciler owns the lifecycle of a directory map:

    PENDING -> SCANNING -> READY -> WATCHING
        any state -> DESTROYED

Events are processed in a per-path critical section. At most one worker task
runs for a path; events arriving while it is busy are coalesced so that only
the latest one is applied once the worker finishes. Workers for different
paths run concurrently, bounded by a shared semaphore on filesystem I/O.
"""

import asyncio
import logging
import os
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ...config import DirectoryMapConfig
from ...errors import ErrorThresholdExceeded, PathIOError, PathNotFoundError
from ..core.entry import FileEntry
from ..core.filter import PathFilter
from ..core.index import DirectoryIndex
from ..core.ledger import CacheLedger
from ..core.stats import FileStats
from ..error_policies import ContinueOnErrorsPolicy, ErrorPolicy
from ..events import (
    AddEvent,
    DeleteEvent,
    DestroyEvent,
    DirectoryCreateEvent,
    DirectoryDestroyEvent,
    ErrorEvent,
    EventChannel,
    ReadyEvent,
    UpdateEvent,
)
from ..scanner import DirectoryScanner
from .source import WatchEvent, WatchEventKind, WatchfilesSource, WatchSource

logger = logging.getLogger(__name__)

SourceFactory = Callable[[], WatchSource]


class DirectoryState(Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    READY = "ready"
    WATCHING = "watching"
    DESTROYED = "destroyed"


class WatchReconciler:
    """
    Applies scan results and watch events to an index, a ledger and a channel.

    Results of work started before destroy() are discarded: every worker
    carries the generation it was started in and publishes nothing once the
    generation has moved on.
    """

    def __init__(
        self,
        index: DirectoryIndex,
        ledger: CacheLedger,
        path_filter: PathFilter,
        channel: EventChannel,
        config: DirectoryMapConfig,
        source_factory: Optional[SourceFactory] = None,
        error_policy: Optional[ErrorPolicy] = None,
    ):
        """
        Args:
            index: Index to populate
            ledger: Ledger shared by all entries of the index
            path_filter: Keep/ignore rules
            channel: Channel receiving all notifications
            config: Map configuration
            source_factory: Creates the event source once watching starts;
                defaults to a WatchfilesSource
            error_policy: Policy for path level errors
        """
        self.index = index
        self.ledger = ledger
        self.path_filter = path_filter
        self.channel = channel
        self.config = config
        self.error_policy = error_policy or ContinueOnErrorsPolicy()
        self._source_factory = source_factory or (lambda: WatchfilesSource(config.watcher))

        self.state = DirectoryState.PENDING
        self.source: Optional[WatchSource] = None
        self._generation = 0
        self._workers: Dict[str, asyncio.Future] = {}
        self._pending: Dict[str, WatchEvent] = {}
        self._task: Optional[asyncio.Task] = None
        self._consumer: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Event] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._scanner: Optional[DirectoryScanner] = None

        self.events_processed = 0
        self.events_coalesced = 0

    @property
    def destroyed(self) -> bool:
        return self.state is DirectoryState.DESTROYED

    @property
    def in_flight(self) -> int:
        """Number of paths with a running worker."""
        return len(self._workers)

    # Lifecycle

    def start(self) -> Optional[asyncio.Task]:
        """
        Start the initial scan in the running loop. Idempotent.

        Returns:
            The task driving the scan, or None when already destroyed
        """
        if self.destroyed:
            return None
        if self._task is None:
            self._prepare()
            self._transition(DirectoryState.SCANNING)
            self._task = asyncio.ensure_future(self._run(self._generation))
        return self._task

    async def _run(self, generation: int):
        """Scan the root, publish ready and start watching unless static."""
        try:
            await self.scan(self.index.root)
        except Exception as e:
            if generation != self._generation:
                return
            self._report(DirectoryIndex.ROOT, e, 'scan')
        if generation != self._generation:
            return

        self._transition(DirectoryState.READY)
        self._ready.set()
        logger.info("Directory map for %s ready: %d files, %d cached",
                    self.index.root, len(self.index), self.ledger.count())
        self.channel.emit(ReadyEvent())

        if not self.config.static and generation == self._generation:
            self.watch()

    async def wait_ready(self):
        """Wait for the initial scan. Returns immediately once destroyed."""
        if self.destroyed:
            return
        self._prepare()
        await self._ready.wait()

    def watch(self):
        """Attach the event source. Called once the initial scan is published."""
        if self.destroyed or self.source is not None:
            return
        self.source = self._source_factory()
        self._consumer = asyncio.ensure_future(self._consume(self.source, self._generation))
        self._transition(DirectoryState.WATCHING)

    def destroy(self):
        """
        Stop watching and release everything. Idempotent.

        In-flight work is cancelled; anything it would still publish is
        discarded. A destroy event is emitted and all streams end.
        """
        if self.destroyed:
            return
        self._generation += 1
        self._transition(DirectoryState.DESTROYED)

        if self.source is not None:
            self.source.close()
        for task in self._tasks():
            task.cancel()
        self._workers.clear()
        self._pending.clear()

        self.index.clear()
        self.ledger.clear()
        if self._ready is not None:
            self._ready.set()

        self.channel.emit(DestroyEvent())
        self.channel.close()
        logger.debug("Directory map for %s destroyed", self.index.root)

    async def aclose(self):
        """destroy() and wait for cancelled tasks to finish."""
        tasks = self._tasks()
        self.destroy()
        current = asyncio.current_task()
        tasks = [task for task in tasks if task is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Scanning

    async def scan(self, directory: str):
        """
        Index everything below ``directory`` and wait until it is loaded.

        Args:
            directory: Absolute forward-slash path of an indexed directory
        """
        generation = self._generation
        pending: List[asyncio.Future] = []

        def on_error(path: str, error: BaseException):
            if isinstance(error, PathNotFoundError) and path != self.index.root:
                return
            self._report(self.index.to_relative_path(path), error, 'scan')

        async for item in self._scanner.walk(directory, on_error=on_error):
            if generation != self._generation:
                return
            if item.is_directory:
                self._add_directory(item.path, item.stats)
            else:
                pending.append(self.submit(WatchEvent(WatchEventKind.ADD, item.path, item.stats)))

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # Event processing

    def submit(self, event: WatchEvent) -> asyncio.Future:
        """
        Queue ``event`` for its path.

        Returns:
            The future of the worker that will apply the event
        """
        if self.destroyed:
            future = asyncio.get_running_loop().create_future()
            future.set_result(None)
            return future

        key = self.index.to_relative_path(event.path)
        worker = self._workers.get(key)
        if worker is not None:
            if key in self._pending:
                self.events_coalesced += 1
            self._pending[key] = event
            return worker

        worker = asyncio.ensure_future(self._drain(key, event, self._generation))
        self._workers[key] = worker
        return worker

    async def _drain(self, key: str, event: Optional[WatchEvent], generation: int):
        try:
            while event is not None and generation == self._generation:
                try:
                    await self._apply(key, event, generation)
                except Exception as e:
                    if generation == self._generation:
                        self._report(key, e, 'reload')
                self.events_processed += 1
                event = self._pending.pop(key, None)
        finally:
            if self._workers.get(key) is asyncio.current_task():
                del self._workers[key]

    async def _consume(self, source: WatchSource, generation: int):
        try:
            async for event in source.events(self.index.root, self.path_filter.should_exclude):
                if generation != self._generation:
                    break
                self.submit(event)
        except Exception as e:
            if generation == self._generation:
                logger.error("Watcher for %s stopped: %s", self.index.root, e)
                self._report(DirectoryIndex.ROOT, e, 'watch')

    async def _apply(self, key: str, event: WatchEvent, generation: int):
        kind = event.kind
        if kind is WatchEventKind.ADD_DIR:
            await self._directory_created(key, event, generation)
        elif kind is WatchEventKind.UNLINK_DIR:
            self._directory_removed(key)
        elif kind is WatchEventKind.UNLINK:
            if key not in self.index and self.index.has_directory(key):
                self._directory_removed(key)
            else:
                self._file_removed(key)
        else:
            await self._file_changed(key, event, generation)

    async def _file_changed(self, key: str, event: WatchEvent, generation: int):
        stats = event.stats
        if stats is None:
            stats = await self._stat(event.path)
            if stats is None:
                self._file_removed(key)
                return
        if stats.is_directory:
            await self._directory_created(key, replace(event, stats=stats), generation)
            return
        if self.path_filter.should_exclude(event.path, stats):
            self._file_removed(key)
            return
        if not self.index.parent_indexed(key):
            return

        entry = self.index.lookup(key)
        is_new = entry is None
        if is_new:
            entry = FileEntry(
                key,
                self.index.to_absolute_path(key),
                self.ledger,
                retry=self.config.retry,
                semaphore=self._semaphore,
            )
        previous = entry.snapshot

        try:
            await entry.reload(stats)
        except PathNotFoundError:
            if generation == self._generation:
                self._file_removed(key)
            return

        if generation != self._generation or not entry.alive:
            # Destroyed or removed with its directory while reading
            self.ledger.release(key)
            return

        snapshot = entry.snapshot
        if is_new:
            if not self.index.parent_indexed(key):
                self.ledger.release(key)
                entry.detach()
                return
            self.index.upsert(key, entry)
            self.channel.emit(AddEvent(key, entry, snapshot))
        elif previous is None or previous.etag != snapshot.etag or previous.stats != snapshot.stats:
            self.channel.emit(UpdateEvent(key, entry, snapshot))

    def _file_removed(self, key: str):
        entry = self.index.remove(key)
        if entry is None:
            return
        self.ledger.release(key)
        self.channel.emit(DeleteEvent(key))

    async def _directory_created(self, key: str, event: WatchEvent, generation: int):
        if key == DirectoryIndex.ROOT:
            return
        stats = event.stats
        if stats is None:
            stats = await self._stat(event.path)
            if stats is None:
                return
        if not stats.is_directory:
            await self._file_changed(key, replace(event, kind=WatchEventKind.CHANGE, stats=stats), generation)
            return
        if generation != self._generation:
            return
        if self.path_filter.should_exclude(event.path, stats) or not self.index.parent_indexed(key):
            return
        if self.index.has_directory(key):
            return
        if key in self.index:
            # A file was replaced by a directory of the same name
            self._file_removed(key)

        self._add_directory(event.path, stats)
        await self.scan(self.index.to_absolute_path(key))

    def _directory_removed(self, key: str):
        directories, entries = self.index.remove_directory(key)
        for entry in entries:
            self.ledger.release(entry.relative_path)
            self.channel.emit(DeleteEvent(entry.relative_path))
        for node in directories:
            self.channel.emit(DirectoryDestroyEvent(node.relative_path))

    def _add_directory(self, path: str, stats: FileStats):
        key = self.index.to_relative_path(path)
        if self.index.has_directory(key):
            return
        self.index.add_directory(key, stats)
        self.channel.emit(DirectoryCreateEvent(key))

    # Helpers

    def _report(self, path: str, error: BaseException, operation: str):
        if self.destroyed:
            return
        self.channel.emit(ErrorEvent(path, error))
        try:
            self.error_policy.handle(error, operation, path)
        except ErrorThresholdExceeded as e:
            logger.error("%s; destroying directory map for %s", e, self.index.root)
            self.destroy()

    async def _stat(self, path: str) -> Optional[FileStats]:
        try:
            if self._semaphore is None:
                result = await asyncio.to_thread(os.stat, path)
            else:
                async with self._semaphore:
                    result = await asyncio.to_thread(os.stat, path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PathIOError(path, 'stat', e) from e
        return FileStats.from_stat_result(result)

    def _prepare(self):
        # asyncio primitives are created lazily so they bind to the running loop
        if self._ready is None:
            self._ready = asyncio.Event()
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
            self._scanner = DirectoryScanner(self.path_filter, self._semaphore)

    def _tasks(self) -> List[asyncio.Future]:
        tasks = list(self._workers.values())
        for task in (self._task, self._consumer):
            if task is not None and not task.done():
                tasks.append(task)
        return tasks

    def _transition(self, state: DirectoryState):
        logger.debug("%s: %s -> %s", self.index.root, self.state.value, state.value)
        self.state = state

    def get_stats(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'files': len(self.index),
            'directories': len(self.index.directories()),
            'events_processed': self.events_processed,
            'events_coalesced': self.events_coalesced,
            'in_flight': self.in_flight,
            'directories_scanned': self._scanner.directories_scanned if self._scanner else 0,
        }
