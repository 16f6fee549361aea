"""Mapping from canonical relative paths to file entries and directory nodes."""

import operator
import os
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from cachetools import LRUCache, cachedmethod

from .entry import FileEntry
from .stats import FileStats

PathLike = Union[str, 'os.PathLike[str]']


def forward_slashes(path: PathLike) -> str:
    return os.fspath(path).replace('\\', '/')


def _strip_trailing_slash(path: str) -> str:
    if len(path) > 1 and path.endswith('/') and not path.endswith(':/'):
        path = path.rstrip('/')
    return path


def resolve_root(path: PathLike) -> str:
    """
    Canonical forward-slash form of a root directory without trailing slash.

    Symlinks are resolved, matching the paths watchers report (FSEvents
    gives ``/private/var/...`` for a root under ``/var``).
    """
    return _strip_trailing_slash(forward_slashes(os.path.realpath(os.fspath(path))))


@dataclass(frozen=True)
class DirectoryNode:
    """A directory in the index. Directories carry no content or ETag."""

    relative_path: str
    absolute_path: str
    stats: Optional[FileStats] = None


class DirectoryIndex:
    """
    Owned mapping of relative path -> FileEntry plus directory nodes.

    Every key is canonical: a leading ``/``, forward slashes and no
    trailing ``/`` (except for the root itself, ``/``). Normalized keys are
    memoized because lookups sit on the request path.
    """

    ROOT = '/'

    def __init__(self, root: PathLike, key_cache_size: int = 4096):
        """
        Args:
            root: Root directory of the map
            key_cache_size: Number of normalized paths to memoize
        """
        self.root = resolve_root(root)
        # The unresolved spelling of the root is accepted too
        given = _strip_trailing_slash(forward_slashes(os.path.abspath(os.fspath(root))))
        self._roots = (self.root,) if given == self.root else (self.root, given)
        self._entries: Dict[str, FileEntry] = {}
        self._directories: Dict[str, DirectoryNode] = {
            self.ROOT: DirectoryNode(self.ROOT, self.root)
        }
        self._key_cache = LRUCache(maxsize=key_cache_size)
        self._key_lock = threading.Lock()

    # Path normalization

    @cachedmethod(operator.attrgetter('_key_cache'), lock=operator.attrgetter('_key_lock'))
    def to_relative_path(self, path: PathLike) -> str:
        """
        Convert an absolute, root-relative or bare relative path to its key.

        Args:
            path: Path as given by the OS or by a caller

        Returns:
            Canonical relative path
        """
        path = forward_slashes(path)
        for root in self._roots:
            if root == '/':
                break
            if path == root or path.startswith(root + '/'):
                path = path[len(root):]
                break

        while path.startswith('./'):
            path = path[2:]
        path = '/' + path.lstrip('/')
        if len(path) > 1:
            path = path.rstrip('/')
        return path

    def to_absolute_path(self, relative_path: str) -> str:
        if relative_path == self.ROOT:
            return self.root
        if self.root == '/':
            return relative_path
        return self.root + relative_path

    # Files

    def upsert(self, path: PathLike, entry: FileEntry) -> FileEntry:
        self._entries[self.to_relative_path(path)] = entry
        return entry

    def remove(self, path: PathLike) -> Optional[FileEntry]:
        """Remove and detach the entry at ``path``, returning it if present."""
        entry = self._entries.pop(self.to_relative_path(path), None)
        if entry is not None:
            entry.detach()
        return entry

    def lookup(self, path: PathLike) -> Optional[FileEntry]:
        return self._entries.get(self.to_relative_path(path))

    def all(self) -> List[Tuple[str, FileEntry]]:
        """Stable copy of all (relative_path, entry) pairs."""
        return list(self._entries.items())

    def files(self) -> Mapping[str, FileEntry]:
        """Read-only live view of the entries."""
        return MappingProxyType(self._entries)

    def __contains__(self, path: PathLike) -> bool:
        return self.to_relative_path(path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    # Directories

    def add_directory(self, path: PathLike, stats: Optional[FileStats] = None) -> DirectoryNode:
        relative_path = self.to_relative_path(path)
        node = DirectoryNode(relative_path, self.to_absolute_path(relative_path), stats)
        self._directories[relative_path] = node
        return node

    def has_directory(self, path: PathLike) -> bool:
        return self.to_relative_path(path) in self._directories

    def directory(self, path: PathLike) -> Optional[DirectoryNode]:
        return self._directories.get(self.to_relative_path(path))

    def directories(self) -> List[str]:
        return list(self._directories)

    def parent_indexed(self, path: PathLike) -> bool:
        """Check whether the directory containing ``path`` is indexed."""
        relative_path = self.to_relative_path(path)
        parent = relative_path.rsplit('/', 1)[0] or self.ROOT
        return parent in self._directories

    def remove_directory(self, path: PathLike) -> Tuple[List[DirectoryNode], List[FileEntry]]:
        """
        Remove a directory and everything below it.

        The root directory itself is never removed, only emptied.

        Returns:
            Tuple of (removed directories deepest first, removed entries)
        """
        relative_path = self.to_relative_path(path)
        if relative_path == self.ROOT:
            prefix = '/'
        else:
            prefix = relative_path + '/'

        removed_entries = []
        for key in [k for k in self._entries if k.startswith(prefix)]:
            entry = self._entries.pop(key)
            entry.detach()
            removed_entries.append(entry)

        removed_dirs = []
        for key in [k for k in self._directories
                    if k != self.ROOT and (k == relative_path or k.startswith(prefix))]:
            removed_dirs.append(self._directories.pop(key))
        removed_dirs.sort(key=lambda node: node.relative_path.count('/'), reverse=True)

        return removed_dirs, removed_entries

    def clear(self):
        for entry in self._entries.values():
            entry.detach()
        self._entries.clear()
        self._directories = {self.ROOT: DirectoryNode(self.ROOT, self.root)}
        self._key_cache.clear()
