"""Exception hierarchy for LiveDirectory.

Configuration problems are fatal and raised at construction time. Path level
I/O problems are raised by FileEntry reloads and isolated by the reconciler,
which reports them through ``error`` events instead of propagating them.
"""

from typing import Iterable, List, Optional


class LiveDirectoryError(Exception):
    """Base class for all LiveDirectory errors."""


class ConfigError(LiveDirectoryError, ValueError):
    """Invalid configuration or inaccessible root directory.

    Attributes:
        problems: Every problem found during validation
    """

    def __init__(self, problems: Iterable[str]):
        self.problems: List[str] = list(problems)
        super().__init__("; ".join(self.problems) or "invalid configuration")


class PathIOError(LiveDirectoryError):
    """A stat or read failure for one path.

    The original ``OSError`` is chained as ``__cause__`` and kept on
    ``cause`` for callers that inspect the errno.
    """

    def __init__(self, path: str, operation: str, cause: Optional[BaseException] = None):
        self.path = path
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed for '{path}'{detail}")


class PathNotFoundError(PathIOError):
    """The path vanished; callers treat this as a delete."""


class ErrorThresholdExceeded(LiveDirectoryError):
    """Raised by ThresholdPolicy once too many path errors were seen."""

    def __init__(self, max_errors: int):
        self.max_errors = max_errors
        super().__init__(f"Error threshold exceeded ({max_errors} errors)")
