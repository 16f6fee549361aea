"""Asynchronous implementation of LiveDirectory.

Everything here runs on an asyncio event loop. Blocking filesystem calls are
moved to worker threads so lookups never wait on disk I/O.
"""

# Core data structures
from .core import (
    FileStats,
    PathFilter,
    CacheLedger,
    FileEntry,
    FileSnapshot,
    DirectoryIndex,
    DirectoryNode,
    strong_etag,
    weak_etag,
)

# Notifications
from .events import (
    EventKind,
    EventChannel,
    Subscription,
    Event,
    ReadyEvent,
    DirectoryCreateEvent,
    DirectoryDestroyEvent,
    AddEvent,
    UpdateEvent,
    DeleteEvent,
    ErrorEvent,
    DestroyEvent,
)

# Error policies
from .error_policies import (
    ErrorPolicy,
    ContinueOnErrorsPolicy,
    CollectErrorsPolicy,
    ThresholdPolicy,
)

# Scanning and watching
from .scanner import DirectoryScanner, ScanItem
from .watch import (
    WatchEvent,
    WatchEventKind,
    WatchSource,
    WatchfilesSource,
    DirectoryState,
    WatchReconciler,
)

# Facade and high-level API
from .directory_map import DirectoryMap
from .api import open_directory, snapshot_directory

__all__ = [
    # Core
    'FileStats',
    'PathFilter',
    'CacheLedger',
    'FileEntry',
    'FileSnapshot',
    'DirectoryIndex',
    'DirectoryNode',
    'strong_etag',
    'weak_etag',
    # Events
    'EventKind',
    'EventChannel',
    'Subscription',
    'Event',
    'ReadyEvent',
    'DirectoryCreateEvent',
    'DirectoryDestroyEvent',
    'AddEvent',
    'UpdateEvent',
    'DeleteEvent',
    'ErrorEvent',
    'DestroyEvent',
    # Error policies
    'ErrorPolicy',
    'ContinueOnErrorsPolicy',
    'CollectErrorsPolicy',
    'ThresholdPolicy',
    # Scanning and watching
    'DirectoryScanner',
    'ScanItem',
    'WatchEvent',
    'WatchEventKind',
    'WatchSource',
    'WatchfilesSource',
    'DirectoryState',
    'WatchReconciler',
    # API
    'DirectoryMap',
    'open_directory',
    'snapshot_directory',
]
