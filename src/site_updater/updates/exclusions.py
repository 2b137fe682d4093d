"""
Exclusion rules shared by snapshot capture and installation.

The same ExclusionSet instance is consulted by SnapshotManager and Installer,
so whatever is protected during backup is exactly what is protected during
overwrite.

Matching is a prefix match on whole path segments after separators are
normalized to "/" and surrounding slashes are trimmed:

    >>> exclusions = ExclusionSet(["storage", "bootstrap/cache"])
    >>> exclusions.is_excluded("storage/logs/app.log")
    True
    >>> exclusions.is_excluded("storage-old/file")
    False
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig

# Always protected regardless of configuration.
DEFAULT_EXCLUSIONS: tuple[str, ...] = (".env", "storage")


def normalize_path(path: str) -> str:
    """Normalize separators to '/' and trim leading/trailing slashes."""
    normalized = path.replace("\\", "/")
    while "//" in normalized:
        normalized = normalized.replace("//", "/")
    normalized = normalized.strip("/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


class ExclusionSet:
    """
    Ordered set of excluded path prefixes.

    The built-in defaults are always present; configured patterns are appended
    after them in order, without duplicates.
    """

    def __init__(
        self,
        patterns: Iterable[str] = (),
        *,
        defaults: Iterable[str] = DEFAULT_EXCLUSIONS,
    ) -> None:
        self._patterns: list[str] = []
        for pattern in (*defaults, *patterns):
            self.add(pattern)

    @classmethod
    def from_config(cls, config: UpdaterConfig) -> ExclusionSet:
        """
        Build the exclusion set for an updater configuration.

        Besides the configured paths, the updater's own scratch directory,
        recovery containers and version record are protected so an artifact
        can never overwrite them.
        """
        exclusions = cls(config.excluded_paths)
        exclusions.add(config.tmp_directory)
        exclusions.add(config.recovery_directory)
        exclusions.add(config.version_file)
        return exclusions

    def add(self, pattern: str) -> None:
        """Append a pattern if it is not already present."""
        normalized = normalize_path(pattern)
        if normalized and normalized not in self._patterns:
            self._patterns.append(normalized)

    @property
    def patterns(self) -> tuple[str, ...]:
        """Normalized patterns in evaluation order."""
        return tuple(self._patterns)

    def is_excluded(self, path: str) -> bool:
        """
        Decide whether a relative path must be left untouched.

        Args:
            path: Path relative to the application root.

        Returns:
            True if the path equals an excluded prefix or lies beneath one.
        """
        candidate = normalize_path(path)
        if not candidate:
            return False
        for pattern in self._patterns:
            if candidate == pattern or candidate.startswith(pattern + "/"):
                return True
        return False

    def overlaps(self, path: str) -> bool:
        """Whether the path is excluded or contains an excluded path."""
        candidate = normalize_path(path)
        if not candidate:
            return False
        if self.is_excluded(candidate):
            return True
        return any(pattern.startswith(candidate + "/") for pattern in self._patterns)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.is_excluded(path)

    def __iter__(self) -> Iterator[str]:
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def __repr__(self) -> str:
        return f"ExclusionSet({self._patterns!r})"
