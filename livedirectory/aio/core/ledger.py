"""
Bookkeeping of which files hold their content in memory.

The ledger is the single authority for the "should this file be cached"
decision. It enforces two ceilings:
- max_file_count: how many files may be cached at once
- max_file_size: the largest file that may be cached

There is no LRU eviction. A path leaves the ledger only through release(),
which happens when the file is deleted or a reload finds it ineligible.
"""

import threading
import time
from collections import OrderedDict
from typing import Dict


class CacheLedger:
    """Admission control for in-memory file content.

    Members are kept in an OrderedDict keyed by relative path, mapping to
    the time of their last admission. Admission is guarded by a lock so the
    count can never exceed ``max_file_count`` even when called from
    several threads.
    """

    def __init__(self, max_file_count: int = 250, max_file_size: int = 1024 * 1024):
        """
        Args:
            max_file_count: Maximum number of cached files
            max_file_size: Maximum size in bytes of a cached file
        """
        self.max_file_count = max_file_count
        self.max_file_size = max_file_size
        self._cached: 'OrderedDict[str, float]' = OrderedDict()
        self._lock = threading.Lock()

        self.admitted = 0
        self.rejected = 0

    def try_admit(self, path: str, size: int) -> bool:
        """
        Decide whether the file at ``path`` may hold its content in memory.

        An existing member is re-admitted (its timestamp refreshed) while it
        stays within the size ceiling. A member that outgrew the ceiling is
        released.

        Args:
            path: Canonical relative path
            size: Current size of the file in bytes

        Returns:
            True if the file is (still) admitted, False otherwise
        """
        with self._lock:
            if size > self.max_file_size:
                self._cached.pop(path, None)
                self.rejected += 1
                return False

            if path in self._cached:
                self._cached[path] = time.time()
                self._cached.move_to_end(path)
                return True

            if len(self._cached) >= self.max_file_count:
                self.rejected += 1
                return False

            self._cached[path] = time.time()
            self.admitted += 1
            return True

    def release(self, path: str) -> bool:
        """Remove ``path`` from the ledger. Returns True if it was a member."""
        with self._lock:
            return self._cached.pop(path, None) is not None

    def count(self) -> int:
        return len(self._cached)

    def __contains__(self, path: str) -> bool:
        return path in self._cached

    def __len__(self) -> int:
        return len(self._cached)

    def snapshot(self) -> Dict[str, float]:
        """Copy of the members, mapped to their last admission time."""
        with self._lock:
            return dict(self._cached)

    def clear(self):
        with self._lock:
            self._cached.clear()

    def get_stats(self) -> Dict[str, int]:
        return {
            'cached': len(self._cached),
            'max_file_count': self.max_file_count,
            'max_file_size': self.max_file_size,
            'admitted': self.admitted,
            'rejected': self.rejected,
        }
