"""Configuration system for LiveDirectory.

This module defines how users specify a directory map: which files to keep or
ignore, how much content to hold in memory, how the filesystem watcher
behaves and how reads are retried.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from .errors import ConfigError

# (absolute_path, stats) -> bool
FilterPredicate = Callable[[str, Any], bool]


def _normalize_extension(extension: str) -> str:
    return extension[1:] if extension.startswith('.') else extension


def _check_number(errors: List[str], name: str, value: Any,
                  integer: bool = True, positive: bool = False):
    """Append a problem unless ``value`` is a non-negative (or positive) number.

    Booleans are rejected even though they are ints.
    """
    kinds = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, kinds):
        errors.append(f"{name} must be {'an integer' if integer else 'a number'}, "
                      f"got {type(value).__name__}")
    elif positive and value <= 0:
        errors.append(f"{name} must be positive")
    elif value < 0:
        errors.append(f"{name} cannot be negative")


@dataclass(frozen=True)
class FilterRule:
    """Structural filter rule matching file names and extensions.

    Extensions may be given with or without the leading dot.
    """

    names: FrozenSet[str] = frozenset()
    extensions: FrozenSet[str] = frozenset()

    def __post_init__(self):
        # Accept any iterable of strings but store frozensets
        object.__setattr__(self, 'names', frozenset(self.names))
        object.__setattr__(
            self, 'extensions',
            frozenset(_normalize_extension(ext) for ext in self.extensions)
        )

    @property
    def is_empty(self) -> bool:
        return not self.names and not self.extensions

    @classmethod
    def from_mapping(cls, value: Mapping[str, Iterable[str]]) -> 'FilterRule':
        """Build a rule from ``{'names': [...], 'extensions': [...]}``.

        Raises:
            TypeError: If the mapping has unknown keys or string values
        """
        unknown = set(value) - {'names', 'extensions'}
        if unknown:
            raise TypeError(f"unknown filter keys: {', '.join(sorted(unknown))}")
        names = value.get('names') or ()
        extensions = value.get('extensions') or ()
        if isinstance(names, str) or isinstance(extensions, str):
            raise TypeError("filter names and extensions must be lists of strings")
        return cls(names=frozenset(names), extensions=frozenset(extensions))


FilterSource = Union[None, FilterRule, Mapping[str, Iterable[str]], FilterPredicate]


@dataclass
class FilterConfig:
    """Keep (whitelist) and ignore (blacklist) filters.

    Each side is absent, a FilterRule (or equivalent mapping), or a
    predicate ``(path, stats) -> bool``.
    """

    keep: FilterSource = None
    ignore: FilterSource = None

    def validate(self) -> List[str]:
        errors = []
        for role in ('keep', 'ignore'):
            value = getattr(self, role)
            if value is None or isinstance(value, FilterRule) or callable(value):
                continue
            if isinstance(value, Mapping):
                try:
                    FilterRule.from_mapping(value)
                except TypeError as e:
                    errors.append(f"filter.{role}: {e}")
                continue
            errors.append(f"filter.{role} must be a rule, a mapping or a callable")
        return errors


@dataclass
class CacheConfig:
    """Limits for in-memory content caching."""

    max_file_count: int = 250            # Files held in memory at once
    max_file_size: int = 1024 * 1024     # Largest cacheable file in bytes

    def validate(self) -> List[str]:
        errors = []
        _check_number(errors, "cache.max_file_count", self.max_file_count)
        _check_number(errors, "cache.max_file_size", self.max_file_size)
        return errors


@dataclass
class WatcherConfig:
    """Options passed through to the filesystem event source."""

    debounce_ms: int = 200                # Batch window for raw notifications
    step_ms: int = 50                     # Polling step inside the debounce window
    await_write_finish: bool = True       # Wait for sizes to settle before reporting
    stability_threshold: float = 0.5      # Seconds a file must stay unchanged
    poll_interval: float = 0.1            # Seconds between stability polls
    force_polling: Optional[bool] = None  # None lets watchfiles decide
    poll_delay_ms: int = 300              # Delay between polls when polling

    def validate(self) -> List[str]:
        errors = []
        _check_number(errors, "watcher.debounce_ms", self.debounce_ms)
        _check_number(errors, "watcher.step_ms", self.step_ms, positive=True)
        _check_number(errors, "watcher.stability_threshold", self.stability_threshold,
                      integer=False)
        _check_number(errors, "watcher.poll_interval", self.poll_interval,
                      integer=False, positive=True)
        _check_number(errors, "watcher.poll_delay_ms", self.poll_delay_ms, positive=True)
        if not isinstance(self.await_write_finish, bool):
            errors.append("watcher.await_write_finish must be a boolean")
        if self.force_polling is not None and not isinstance(self.force_polling, bool):
            errors.append("watcher.force_polling must be a boolean or None")
        return errors


@dataclass
class RetryConfig:
    """Retry policy for reads that return no bytes mid-write.

    Disabled unless ``max_attempts`` is positive.
    """

    max_attempts: int = 0
    delay: float = 0.05

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 0

    def validate(self) -> List[str]:
        errors = []
        _check_number(errors, "retry.max_attempts", self.max_attempts)
        _check_number(errors, "retry.delay", self.delay, integer=False)
        return errors


_SECTIONS = {
    'cache': CacheConfig,
    'filter': FilterConfig,
    'watcher': WatcherConfig,
    'retry': RetryConfig,
}


@dataclass
class DirectoryMapConfig:
    """Complete configuration for a DirectoryMap.

    This is the primary way users specify how a directory is mirrored.
    """

    static: bool = False  # One-shot scan, never watch
    cache: CacheConfig = field(default_factory=CacheConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    max_concurrent: int = 100  # Concurrent scandir/stat/read operations

    @classmethod
    def from_options(cls, **options: Any) -> 'DirectoryMapConfig':
        """Create a config from keyword options merged over the defaults."""
        return cls().merged(**options)

    def merged(self, **options: Any) -> 'DirectoryMapConfig':
        """Return a copy with keyword options merged over this config.

        Nested sections may be given as dataclass instances or as partial
        dicts, e.g. ``cache={'max_file_count': 10}`` keeps the current
        ``max_file_size``.

        Raises:
            ConfigError: For unknown option or section keys
        """
        config = replace(self)
        problems = []
        for key, value in options.items():
            if key in _SECTIONS:
                section_cls = _SECTIONS[key]
                if value is None:
                    continue
                if isinstance(value, section_cls):
                    setattr(config, key, value)
                elif isinstance(value, Mapping):
                    allowed = {f.name for f in fields(section_cls)}
                    unknown = set(value) - allowed
                    if unknown:
                        problems.append(f"unknown {key} options: {', '.join(sorted(unknown))}")
                        continue
                    setattr(config, key, replace(getattr(config, key), **dict(value)))
                else:
                    problems.append(f"{key} must be a mapping or {section_cls.__name__}")
            elif key in ('static', 'max_concurrent'):
                setattr(config, key, value)
            else:
                problems.append(f"unknown option: {key}")
        if problems:
            raise ConfigError(problems)
        return config

    def validate(self) -> List[str]:
        """Validate configuration for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        if not isinstance(self.static, bool):
            errors.append("static must be a boolean")
        _check_number(errors, "max_concurrent", self.max_concurrent, positive=True)
        errors.extend(self.cache.validate())
        errors.extend(self.filter.validate())
        errors.extend(self.watcher.validate())
        errors.extend(self.retry.validate())
        return errors

    def as_dict(self) -> Dict[str, Any]:
        return {
            'static': self.static,
            'max_concurrent': self.max_concurrent,
            'cache': {
                'max_file_count': self.cache.max_file_count,
                'max_file_size': self.cache.max_file_size,
            },
            'retry': {
                'max_attempts': self.retry.max_attempts,
                'delay': self.retry.delay,
            },
        }
