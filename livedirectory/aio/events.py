"""
Typed notifications emitted by a directory map.

Every notification is a frozen dataclass tagged with an EventKind. Consumers
either register callbacks on an EventChannel or iterate over a stream of
events.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, ClassVar, Dict, List, Optional, Set, Union

from .core.entry import FileEntry, FileSnapshot

logger = logging.getLogger(__name__)


class EventKind(Enum):
    READY = "ready"
    DIRECTORY_CREATE = "directory_create"
    DIRECTORY_DESTROY = "directory_destroy"
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    ERROR = "error"
    DESTROY = "destroy"


@dataclass(frozen=True)
class ReadyEvent:
    kind: ClassVar[EventKind] = EventKind.READY


@dataclass(frozen=True)
class DirectoryCreateEvent:
    path: str
    kind: ClassVar[EventKind] = EventKind.DIRECTORY_CREATE


@dataclass(frozen=True)
class DirectoryDestroyEvent:
    path: str
    kind: ClassVar[EventKind] = EventKind.DIRECTORY_DESTROY


@dataclass(frozen=True)
class AddEvent:
    """A file entered the index. ``snapshot`` is its state at publish time."""

    path: str
    entry: FileEntry
    snapshot: FileSnapshot
    kind: ClassVar[EventKind] = EventKind.ADD


@dataclass(frozen=True)
class UpdateEvent:
    path: str
    entry: FileEntry
    snapshot: FileSnapshot
    kind: ClassVar[EventKind] = EventKind.UPDATE


@dataclass(frozen=True)
class DeleteEvent:
    path: str
    kind: ClassVar[EventKind] = EventKind.DELETE


@dataclass(frozen=True)
class ErrorEvent:
    path: str
    error: BaseException
    kind: ClassVar[EventKind] = EventKind.ERROR


@dataclass(frozen=True)
class DestroyEvent:
    kind: ClassVar[EventKind] = EventKind.DESTROY


Event = Union[
    ReadyEvent,
    DirectoryCreateEvent,
    DirectoryDestroyEvent,
    AddEvent,
    UpdateEvent,
    DeleteEvent,
    ErrorEvent,
    DestroyEvent,
]

Listener = Callable[[Any], Any]

_CLOSED = object()


class Subscription:
    """Handle returned by EventChannel.subscribe()."""

    def __init__(self, channel: 'EventChannel', listener: Listener, kinds: Optional[Set[EventKind]]):
        self._channel = channel
        self.listener = listener
        self.kinds = kinds

    def accepts(self, event: Event) -> bool:
        return self.kinds is None or event.kind in self.kinds

    def unsubscribe(self):
        self._channel._remove(self)


class EventChannel:
    """
    Delivers events to callbacks and streams.

    Callbacks run synchronously in emit order. A callback returning an
    awaitable has it scheduled as a task. Failing callbacks are logged and
    never interrupt delivery to the others.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._streams: List[asyncio.Queue] = []
        self._tasks: Set[asyncio.Task] = set()
        self.emitted: Dict[EventKind, int] = {kind: 0 for kind in EventKind}
        self.closed = False

    def subscribe(self, listener: Listener, *kinds: EventKind) -> Subscription:
        """
        Register ``listener(event)`` for the given kinds (all kinds if none).

        Returns:
            Subscription whose ``unsubscribe()`` removes the listener
        """
        subscription = Subscription(self, listener, set(kinds) or None)
        self._subscriptions.append(subscription)
        return subscription

    def on(self, *kinds: EventKind) -> Callable[[Listener], Listener]:
        """Decorator form of subscribe()."""
        def decorator(listener: Listener) -> Listener:
            self.subscribe(listener, *kinds)
            return listener
        return decorator

    def emit(self, event: Event):
        self.emitted[event.kind] += 1
        for subscription in list(self._subscriptions):
            if not subscription.accepts(event):
                continue
            try:
                result = subscription.listener(event)
            except Exception:
                logger.exception("Listener failed for %s event", event.kind.value)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(result, event)

        for queue in list(self._streams):
            queue.put_nowait(event)

    async def stream(self, *kinds: EventKind) -> AsyncIterator[Event]:
        """
        Iterate over events as they are emitted.

        Events are buffered from the first iteration step on. The iteration
        ends when the channel is closed.
        """
        if self.closed:
            return
        wanted = set(kinds)
        queue: asyncio.Queue = asyncio.Queue()
        self._streams.append(queue)
        try:
            while True:
                event = await queue.get()
                if event is _CLOSED:
                    return
                if not wanted or event.kind in wanted:
                    yield event
        finally:
            if queue in self._streams:
                self._streams.remove(queue)

    def close(self):
        """End all streams. Callbacks stay registered."""
        self.closed = True
        for queue in list(self._streams):
            queue.put_nowait(_CLOSED)

    def listener_count(self) -> int:
        return len(self._subscriptions)

    def _schedule(self, coro, event: Event):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(finished: asyncio.Task):
            self._tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("Async listener failed for %s event", event.kind.value,
                             exc_info=finished.exception())
        task.add_done_callback(done)

    def _remove(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
