"""Immutable filesystem metadata used throughout the directory map."""

import os
import stat as stat_module  # To avoid name collision with stat results
from dataclasses import dataclass


@dataclass(frozen=True)
class FileStats:
    """Last observed metadata of a file or directory.

    Timestamps are kept in integer nanoseconds so that equality checks and
    weak ETags are exact.
    """

    size: int
    mtime_ns: int
    ctime_ns: int
    is_directory: bool = False
    mode: int = 0

    @classmethod
    def from_stat_result(cls, result: os.stat_result) -> 'FileStats':
        return cls(
            size=result.st_size,
            mtime_ns=result.st_mtime_ns,
            ctime_ns=result.st_ctime_ns,
            is_directory=stat_module.S_ISDIR(result.st_mode),
            mode=result.st_mode,
        )

    @property
    def is_file(self) -> bool:
        return not self.is_directory

    @property
    def mtime(self) -> float:
        """Modification time as Unix timestamp."""
        return self.mtime_ns / 1e9

    @property
    def ctime(self) -> float:
        """Creation (metadata change on POSIX) time as Unix timestamp."""
        return self.ctime_ns / 1e9

    def fingerprint(self) -> str:
        """Comma-joined ``size,ctime,mtime`` used for weak ETags."""
        return f"{self.size},{self.ctime_ns},{self.mtime_ns}"
