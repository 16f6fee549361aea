"""
Keep/ignore filtering for the directory map.

A path is indexed when it passes the keep filter (whitelist) and does not
match the ignore filter (blacklist). Keep is evaluated first.
"""

from typing import Callable, Mapping, Optional, Tuple

from ...config import FilterConfig, FilterRule, FilterSource
from .stats import FileStats

Predicate = Callable[[str, Optional[FileStats]], bool]


def split_name(path: str) -> Tuple[str, str]:
    """Return ``(name, extension)`` of a forward-slash path.

    The extension is the text after the last dot, or ``""`` when the name
    has no dot or only a leading one (``.gitignore``).
    """
    name = path.rstrip('/').rsplit('/', 1)[-1]
    stem, dot, extension = name.rpartition('.')
    if not dot or not stem:
        return name, ''
    return name, extension


def _compile(value: FilterSource) -> Tuple[Optional[FilterRule], Optional[Callable]]:
    if value is None:
        return None, None
    if isinstance(value, FilterRule):
        return value, None
    if isinstance(value, Mapping):
        return FilterRule.from_mapping(value), None
    return None, value


class PathFilter:
    """Compiled keep and ignore rules.

    Rules are either structural (FilterRule) or custom predicates receiving
    ``(absolute_path, stats)``. Directories always pass the keep check and
    are exempt from extension matching; name rules and custom ignore
    predicates still apply to them.
    """

    def __init__(self, root: str, config: Optional[FilterConfig] = None):
        """
        Args:
            root: Absolute forward-slash root path, never excluded
            config: Keep and ignore filters
        """
        config = config or FilterConfig()
        self.root = root
        self._keep_rule, self._keep_predicate = _compile(config.keep)
        self._ignore_rule, self._ignore_predicate = _compile(config.ignore)

    @property
    def is_active(self) -> bool:
        return any((self._keep_rule, self._keep_predicate,
                    self._ignore_rule, self._ignore_predicate))

    def should_exclude(self, path: str, stats: Optional[FileStats]) -> bool:
        """
        Check whether ``path`` must be left out of the index.

        Args:
            path: Absolute forward-slash path
            stats: Metadata of the path; when None nothing is excluded yet

        Returns:
            True if the path is filtered out
        """
        if path == self.root or stats is None or not self.is_active:
            return False

        if not self._passes_keep(path, stats):
            return True
        return self._matches_ignore(path, stats)

    def __call__(self, path: str, stats: Optional[FileStats]) -> bool:
        return self.should_exclude(path, stats)

    def _passes_keep(self, path: str, stats: FileStats) -> bool:
        # Directories must be traversed to reach the files they contain
        if stats.is_directory:
            return True
        if self._keep_predicate is not None:
            return bool(self._keep_predicate(path, stats))
        rule = self._keep_rule
        if rule is None or rule.is_empty:
            return True
        name, extension = split_name(path)
        return name in rule.names or extension in rule.extensions

    def _matches_ignore(self, path: str, stats: FileStats) -> bool:
        if self._ignore_predicate is not None:
            return bool(self._ignore_predicate(path, stats))
        rule = self._ignore_rule
        if rule is None:
            return False
        name, extension = split_name(path)
        if name in rule.names:
            return True
        return not stats.is_directory and extension in rule.extensions
