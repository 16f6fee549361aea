"""Core data structures of the directory map.

These components hold no I/O loop of their own: the filter is a pure
predicate, the ledger and index are owned mappings, and FileEntry performs
its own non-blocking reads when asked to reload.
"""

from .stats import FileStats
from .filter import PathFilter, split_name
from .ledger import CacheLedger
from .entry import FileEntry, FileSnapshot, strong_etag, weak_etag
from .index import DirectoryIndex, DirectoryNode, forward_slashes, resolve_root

__all__ = [
    'FileStats',
    # Filtering
    'PathFilter',
    'split_name',
    # Caching
    'CacheLedger',
    # Entries
    'FileEntry',
    'FileSnapshot',
    'strong_etag',
    'weak_etag',
    # Index
    'DirectoryIndex',
    'DirectoryNode',
    'forward_slashes',
    'resolve_root',
]
