"""Ownership resolution: which side is authoritative for a path.

Translates the glob-based ownership config into concrete path sets and
classifies individual paths.

Classification precedence (first match wins):

1. **ignored**      -- matches ``templateIgnoredFiles``; never synced.
2. **override**     -- listed verbatim in ``projectOverrides``.
3. **owned**        -- matches ``templatePaths``.
4. **out-of-scope** -- everything else.

Glob semantics:

* ``*`` matches within one path segment.
* ``**`` matches across segments; ``**/`` also matches zero directories.
* A wildcard-free pattern matches itself and everything below it
  (``docs`` owns ``docs/a.md``).
* Ignore patterns without wildcards or ``/`` also match any single path
  segment (``.DS_Store`` ignores ``a/b/.DS_Store``).
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from template_sync.validators import (
    normalize_relative_path,
    validate_override_path,
    validate_pattern,
)

logger = logging.getLogger(__name__)

_SKIP_DIRS = frozenset({".git"})


class Ownership(str, Enum):
    """Ownership classification of a single path."""

    IGNORED = "ignored"
    OVERRIDE = "override"
    OWNED = "owned"
    OUT_OF_SCOPE = "out-of-scope"


class OwnershipConfig(BaseModel):
    """Ownership rules for one project.

    Accepts both the on-disk camelCase keys and snake_case names.

    Attributes:
        template_paths: Globs the template owns.
        template_ignored_files: Globs never synced in either direction.
        project_overrides: Exact paths the project may keep different.
    """

    template_paths: list[str] = Field(
        default_factory=list, alias="templatePaths"
    )
    template_ignored_files: list[str] = Field(
        default_factory=list, alias="templateIgnoredFiles"
    )
    project_overrides: list[str] = Field(
        default_factory=list, alias="projectOverrides"
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("template_paths", "template_ignored_files")
    @classmethod
    def _check_patterns(cls, value: list[str]) -> list[str]:
        result = []
        for pattern in value:
            ok, reason = validate_pattern(pattern)
            if not ok:
                raise ValueError(reason)
            result.append(normalize_relative_path(pattern))
        return result

    @field_validator("project_overrides")
    @classmethod
    def _check_overrides(cls, value: list[str]) -> list[str]:
        result = []
        for path in value:
            ok, reason = validate_override_path(path)
            if not ok:
                raise ValueError(reason)
            normalized = normalize_relative_path(path)
            if normalized not in result:
                result.append(normalized)
        return result


# ---------------------------------------------------------------------------
# Glob matching
# ---------------------------------------------------------------------------


def has_wildcard(pattern: str) -> bool:
    return "*" in pattern


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a glob *pattern* into an anchored regular expression.

    Every regex metacharacter is escaped except ``*``.
    """
    parts: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def matches_pattern(path: str, pattern: str, *, any_segment: bool = False) -> bool:
    """Return ``True`` if *path* matches *pattern*.

    Args:
        path: Relative POSIX path.
        pattern: Glob pattern (already normalised).
        any_segment: Also accept a wildcard-free, slash-free pattern that
            equals any segment of *path*.
    """
    if has_wildcard(pattern):
        return glob_to_regex(pattern).match(path) is not None

    if path == pattern or path.startswith(pattern + "/"):
        return True

    if any_segment and "/" not in pattern:
        return pattern in path.split("/")

    return False


def matches_any(
    path: str, patterns: list[str], *, any_segment: bool = False
) -> bool:
    """Return ``True`` if *path* matches at least one of *patterns*."""
    return any(
        matches_pattern(path, p, any_segment=any_segment) for p in patterns
    )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def is_ignored(path: str, config: OwnershipConfig) -> bool:
    return matches_any(path, config.template_ignored_files, any_segment=True)


def is_override(path: str, config: OwnershipConfig) -> bool:
    return path in config.project_overrides


def is_owned(path: str, config: OwnershipConfig) -> bool:
    return matches_any(path, config.template_paths)


def classify(path: str, config: OwnershipConfig) -> Ownership:
    """Classify *path* under *config* using strict precedence."""
    if is_ignored(path, config):
        return Ownership.IGNORED
    if is_override(path, config):
        return Ownership.OVERRIDE
    if is_owned(path, config):
        return Ownership.OWNED
    return Ownership.OUT_OF_SCOPE


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


def walk_tree(root: Path) -> list[str]:
    """Return every non-directory entry under *root* as a POSIX path.

    Directory symlinks are reported as entries and never descended into.
    ``.git`` directories are skipped.  Unreadable directories are logged
    and skipped.

    Returns:
        Sorted list of relative paths.
    """
    if not root.is_dir():
        return []

    results: list[str] = []

    def _on_error(exc: OSError) -> None:
        logger.warning("Cannot scan %s: %s", exc.filename, exc.strerror)

    for dirpath, dirnames, filenames in os.walk(
        root, onerror=_on_error, followlinks=False
    ):
        rel_dir = os.path.relpath(dirpath, root)
        prefix = "" if rel_dir == "." else rel_dir.replace(os.sep, "/") + "/"

        kept_dirs = []
        for name in dirnames:
            if name in _SKIP_DIRS:
                continue
            if os.path.islink(os.path.join(dirpath, name)):
                results.append(prefix + name)
            else:
                kept_dirs.append(name)
        dirnames[:] = sorted(kept_dirs)

        for name in filenames:
            results.append(prefix + name)

    return sorted(results)


def expand_patterns(
    patterns: list[str],
    root: Path,
    *,
    entries: list[str] | None = None,
) -> set[str]:
    """Expand glob *patterns* into the concrete paths present under *root*.

    Args:
        patterns: Ownership globs.
        root: Tree root to expand against.
        entries: Pre-scanned ``walk_tree(root)`` result, to avoid walking
            the same tree twice in one pass.

    Returns:
        Set of relative POSIX paths.
    """
    if not patterns:
        return set()
    candidates = entries if entries is not None else walk_tree(root)
    return {path for path in candidates if matches_any(path, patterns)}
