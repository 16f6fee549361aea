"""
Error handling policies for LiveDirectory.

Path level I/O errors never stop a directory map: the reconciler always
emits an ``error`` event for them. A policy decides what else happens:
whether the error is logged, how it is recorded, and whether too many errors
should tear the map down.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..errors import ErrorThresholdExceeded, PathNotFoundError

logger = logging.getLogger(__name__)


def _record(error: BaseException, operation: str, path: str) -> Dict[str, Any]:
    return {
        'path': path,
        'operation': operation,
        'error': error,
        'error_type': type(error).__name__,
        'error_message': str(error),
    }


def _is_permission_error(error: BaseException) -> bool:
    # PathIOError keeps the original OSError on ``cause``
    return isinstance(error, PermissionError) or isinstance(getattr(error, 'cause', None), PermissionError)


class ErrorPolicy(ABC):
    """
    Base class for error handling policies.

    Subclasses implement different strategies for errors that occur while a
    path is scanned or reloaded.
    """

    @abstractmethod
    def handle(self, error: BaseException, operation: str, path: str) -> None:
        """
        Handle an error that occurred for one path.

        Args:
            error: The exception that was raised
            operation: What failed (e.g. 'scan', 'reload')
            path: Relative path being processed

        Raises:
            ErrorThresholdExceeded: To request that the map be destroyed
        """

    def get_statistics(self) -> Dict[str, Any]:
        return {}


class ContinueOnErrorsPolicy(ErrorPolicy):
    """
    Policy that logs errors and continues.

    Errors are collected for later inspection. This is the default policy.
    """

    def __init__(self, verbose: bool = True, max_records: int = 1000):
        """
        Args:
            verbose: If True, log a warning for every error
            max_records: Number of most recent errors kept in ``errors``
        """
        self.errors: List[Dict[str, Any]] = []
        self.skipped_paths: List[str] = []
        self.verbose = verbose
        self.max_records = max_records
        self.total = 0

    def handle(self, error: BaseException, operation: str, path: str) -> None:
        self.total += 1
        self.errors.append(_record(error, operation, path))
        if len(self.errors) > self.max_records:
            del self.errors[0]

        if _is_permission_error(error):
            self.skipped_paths.append(path)

        if self.verbose:
            if isinstance(error, PathNotFoundError):
                logger.debug("Path vanished during %s: '%s'", operation, path)
            else:
                logger.warning("Error in %s for '%s': %s", operation, path, error)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'total_errors': self.total,
            'permission_errors': sum(1 for e in self.errors if _is_permission_error(e['error'])),
            'skipped_paths': len(self.skipped_paths),
            'errors': list(self.errors),
        }


class CollectErrorsPolicy(ErrorPolicy):
    """
    Policy that collects all errors without logging.

    Useful for collecting all errors and presenting them at the end.
    """

    def __init__(self):
        self.errors: List[Dict[str, Any]] = []

    def handle(self, error: BaseException, operation: str, path: str) -> None:
        self.errors.append(_record(error, operation, path))

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'total_errors': len(self.errors),
            'errors': list(self.errors),
        }


class ThresholdPolicy(ErrorPolicy):
    """
    Policy that tolerates errors up to a threshold.

    Useful when some errors are expected but too many indicate a systemic
    problem (e.g. the root directory was unmounted). Once exceeded, the map
    is destroyed.
    """

    def __init__(self, max_errors: int = 10, verbose: bool = True):
        """
        Args:
            max_errors: Maximum errors to tolerate
            verbose: If True, log a warning for every error
        """
        self.max_errors = max_errors
        self.error_count = 0
        self.verbose = verbose
        self.errors: List[Dict[str, Any]] = []

    def handle(self, error: BaseException, operation: str, path: str) -> None:
        self.error_count += 1
        self.errors.append(_record(error, operation, path))

        if self.error_count > self.max_errors:
            raise ErrorThresholdExceeded(self.max_errors) from error

        if self.verbose:
            logger.warning("[%d/%d] Error in %s for '%s': %s",
                           self.error_count, self.max_errors, operation, path, error)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'total_errors': self.error_count,
            'max_errors': self.max_errors,
            'errors': list(self.errors),
        }
