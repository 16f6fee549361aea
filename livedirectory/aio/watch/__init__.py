"""Change detection: event sources and the reconciler applying their events."""

from .source import (
    WatchEvent,
    WatchEventKind,
    WatchSource,
    WatchfilesSource,
    order_events,
    stat_or_none,
)
from .reconciler import DirectoryState, WatchReconciler

__all__ = [
    'WatchEvent',
    'WatchEventKind',
    'WatchSource',
    'WatchfilesSource',
    'order_events',
    'stat_or_none',
    'DirectoryState',
    'WatchReconciler',
]
