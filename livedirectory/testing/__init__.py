"""Testing utilities for LiveDirectory consumers."""

from .fixtures import DirectoryMapTestHelper, EventRecorder, ManualWatchSource

__all__ = ['DirectoryMapTestHelper', 'EventRecorder', 'ManualWatchSource']
