"""LiveDirectory - in-memory live mirror of a directory tree.

LiveDirectory scans a directory once, then follows filesystem change
notifications so that file metadata, ETags and (for small files) content can
be looked up without touching the disk on every request.

    from livedirectory import DirectoryMap

    async with DirectoryMap('static') as assets:
        entry = assets.get('/index.html')
"""

import logging

__version__ = "0.1.0"

from .config import (
    CacheConfig,
    DirectoryMapConfig,
    FilterConfig,
    FilterRule,
    RetryConfig,
    WatcherConfig,
)
from .errors import (
    ConfigError,
    ErrorThresholdExceeded,
    LiveDirectoryError,
    PathIOError,
    PathNotFoundError,
)
from . import aio
from .aio import DirectoryMap, EventKind, open_directory, snapshot_directory

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "aio",
    # Configuration
    "CacheConfig",
    "DirectoryMapConfig",
    "FilterConfig",
    "FilterRule",
    "RetryConfig",
    "WatcherConfig",
    # Errors
    "ConfigError",
    "ErrorThresholdExceeded",
    "LiveDirectoryError",
    "PathIOError",
    "PathNotFoundError",
    # API
    "DirectoryMap",
    "EventKind",
    "open_directory",
    "snapshot_directory",
]
