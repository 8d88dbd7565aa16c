"""Field-level merge for structured configuration manifests.

Manifests (``package.json`` by default) are never copied whole.  Each
top-level key is merged on its own, either two-way (no merge base, first
sync) or three-way against the manifest content recorded at the last
sync.

Three-way rules, comparing each side against the base:

* New on one side only -> take it.
* Removed from the template -> drop it if the project left it alone,
  otherwise keep the project value.
* Removed from the project -> the deletion sticks; never re-added.
* Changed on one side only -> that side wins.
* Changed on both sides to the same value -> no conflict.
* Changed on both sides differently -> recurse one level for
  deep-mergeable fields, otherwise record a ``FieldConflict`` and keep the
  project value until the conflict is resolved explicitly.

The merge is a pure function of its three inputs.  Reporting lists are
sorted so results never depend on key iteration order.  The merged
object keeps the project's key order, with template-only keys appended in
template order.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from template_sync.file_handler import read_file_with_encoding

from .errors import ManifestError
from .models import FieldConflict, FieldResolution, MergeResult

logger = logging.getLogger(__name__)

DEFAULT_DEEP_MERGE_FIELDS: frozenset[str] = frozenset(
    {
        "scripts",
        "dependencies",
        "devDependencies",
        "peerDependencies",
        "optionalDependencies",
        "engines",
        "config",
    }
)

_ABSENT = object()


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def json_equal(a: Any, b: Any) -> bool:
    """Structural equality for JSON values.

    Booleans never equal numbers (``True != 1``) while ``1 == 1.0`` holds.
    Object comparison ignores key order.
    """
    if a is _ABSENT or b is _ABSENT:
        return a is b
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(
            json_equal(a[key], b[key]) for key in a
        )
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(
            json_equal(x, y) for x, y in zip(a, b)
        )
    if type(a) is not type(b):
        return False
    return a == b


def _ordered_keys(*objects: Mapping[str, Any]) -> list[str]:
    """Union of keys, first object's order first, later objects appended."""
    seen: dict[str, None] = {}
    for obj in objects:
        for key in obj:
            seen.setdefault(key, None)
    return list(seen)


def _value(obj: Mapping[str, Any], key: str) -> Any:
    return obj[key] if key in obj else _ABSENT


def _plain(value: Any) -> Any:
    return None if value is _ABSENT else copy.deepcopy(value)


# ---------------------------------------------------------------------------
# Merge core
# ---------------------------------------------------------------------------


class _Outcome:
    """Mutable accumulator for one merge pass."""

    def __init__(self) -> None:
        self.auto_merged: list[str] = []
        self.project_kept: list[str] = []
        self.template_only: list[str] = []
        self.project_only: list[str] = []
        self.conflicts: list[FieldConflict] = []

    def result(self, merged: dict[str, Any]) -> MergeResult:
        return MergeResult(
            success=True,
            merged=merged,
            auto_merged_fields=sorted(self.auto_merged),
            project_kept_fields=sorted(self.project_kept),
            template_only_fields=sorted(self.template_only),
            project_only_fields=sorted(self.project_only),
            conflicts=sorted(self.conflicts, key=lambda c: c.name),
        )


def _conflict(
    field: str,
    key: str | None,
    base: Any,
    template: Any,
    project: Any,
) -> FieldConflict:
    return FieldConflict(
        field=field,
        key=key,
        base=_plain(base),
        template=_plain(template),
        project=_plain(project),
        has_base=base is not _ABSENT,
    )


def _two_way(
    template: Mapping[str, Any],
    project: Mapping[str, Any],
    deep_fields: frozenset[str],
    outcome: _Outcome,
    parent: str | None = None,
) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for key in _ordered_keys(project, template):
        t = _value(template, key)
        p = _value(project, key)

        name = key if parent is None else f"{parent}.{key}"
        if t is _ABSENT:
            merged[key] = copy.deepcopy(p)
            outcome.project_only.append(name)
        elif p is _ABSENT:
            merged[key] = copy.deepcopy(t)
            outcome.template_only.append(name)
        elif json_equal(t, p):
            merged[key] = copy.deepcopy(p)
        elif key in deep_fields and isinstance(t, dict) and isinstance(p, dict):
            added = len(outcome.template_only)
            merged[key] = _two_way(t, p, frozenset(), outcome, parent=key)
            if len(outcome.template_only) > added:
                outcome.auto_merged.append(f"{key} (deep merged)")
        else:
            merged[key] = copy.deepcopy(p)
            if parent is None:
                outcome.conflicts.append(_conflict(key, None, _ABSENT, t, p))
            else:
                outcome.project_kept.append(name)
    return merged


def _three_way(
    base: Mapping[str, Any],
    template: Mapping[str, Any],
    project: Mapping[str, Any],
    deep_fields: frozenset[str],
    outcome: _Outcome,
    parent: str | None = None,
) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    top = parent is None

    def _field(key: str) -> str:
        return key if top else f"{parent}.{key}"

    for key in _ordered_keys(project, template, base):
        b = _value(base, key)
        t = _value(template, key)
        p = _value(project, key)
        in_b, in_t, in_p = b is not _ABSENT, t is not _ABSENT, p is not _ABSENT

        if not in_b:
            if in_t and not in_p:
                merged[key] = copy.deepcopy(t)
                outcome.template_only.append(_field(key))
                continue
            if in_p and not in_t:
                merged[key] = copy.deepcopy(p)
                outcome.project_only.append(_field(key))
                continue
            # Added on both sides; handled below as "changed on both".

        if in_b and not in_t:
            if not in_p:
                continue
            if json_equal(b, p):
                outcome.auto_merged.append(f"{_field(key)} (removed)")
            else:
                merged[key] = copy.deepcopy(p)
                outcome.project_kept.append(_field(key))
            continue

        if in_b and not in_p:
            outcome.project_kept.append(f"{_field(key)} (removed)")
            continue

        template_changed = not json_equal(b, t)
        project_changed = not json_equal(b, p)

        if not template_changed and not project_changed:
            merged[key] = copy.deepcopy(p)
        elif template_changed and not project_changed:
            merged[key] = copy.deepcopy(t)
            outcome.auto_merged.append(_field(key))
        elif project_changed and not template_changed:
            merged[key] = copy.deepcopy(p)
            outcome.project_kept.append(_field(key))
        elif json_equal(t, p):
            merged[key] = copy.deepcopy(p)
            outcome.auto_merged.append(_field(key))
        elif (
            top
            and key in deep_fields
            and isinstance(t, dict)
            and isinstance(p, dict)
            and (not in_b or isinstance(b, dict))
        ):
            nested_base = b if in_b else {}
            taken = len(outcome.auto_merged) + len(outcome.template_only)
            merged[key] = _three_way(
                nested_base, t, p, frozenset(), outcome, parent=key
            )
            if len(outcome.auto_merged) + len(outcome.template_only) > taken:
                outcome.auto_merged.append(f"{key} (deep merged)")
        else:
            merged[key] = copy.deepcopy(p)
            outcome.conflicts.append(
                _conflict(
                    parent if parent is not None else key,
                    None if top else key,
                    b,
                    t,
                    p,
                )
            )
    return merged


def merge_manifest(
    base: Mapping[str, Any] | None,
    template: Mapping[str, Any],
    project: Mapping[str, Any],
    deep_merge_fields: Iterable[str] = DEFAULT_DEEP_MERGE_FIELDS,
) -> MergeResult:
    """Merge a template manifest into a project manifest.

    Args:
        base: Template manifest at the last sync, or ``None`` for a
            two-way merge.
        template: Current template manifest.
        project: Current project manifest.
        deep_merge_fields: Top-level keys whose object values are merged
            key by key instead of as a whole.

    Returns:
        A ``MergeResult``.  Unresolved conflicts keep the project value.
    """
    deep = frozenset(deep_merge_fields)
    outcome = _Outcome()
    if base is None:
        merged = _two_way(template, project, deep, outcome)
    else:
        merged = _three_way(base, template, project, deep, outcome)
    return outcome.result(merged)


def resolve_field_conflicts(
    result: MergeResult,
    resolutions: Mapping[str, FieldResolution | str],
) -> MergeResult:
    """Apply per-field choices to the conflicts in *result*.

    Args:
        result: Output of ``merge_manifest``.
        resolutions: Conflict display name (``field`` or ``field.key``) to
            ``FieldResolution``.  Conflicts not listed are deferred.

    Returns:
        A new ``MergeResult`` whose ``conflicts`` holds only the deferred
        ones.
    """
    if not result.success or result.merged is None:
        return result

    merged = copy.deepcopy(result.merged)
    auto_merged = list(result.auto_merged_fields)
    project_kept = list(result.project_kept_fields)
    remaining: list[FieldConflict] = []

    for conflict in result.conflicts:
        choice = FieldResolution(
            resolutions.get(conflict.name, FieldResolution.DEFER)
        )
        if choice == FieldResolution.USE_TEMPLATE:
            if conflict.key is None:
                merged[conflict.field] = copy.deepcopy(conflict.template)
            else:
                target = merged.get(conflict.field)
                if not isinstance(target, dict):
                    target = {}
                    merged[conflict.field] = target
                target[conflict.key] = copy.deepcopy(conflict.template)
            auto_merged.append(f"{conflict.name} (template)")
        elif choice == FieldResolution.USE_PROJECT:
            project_kept.append(conflict.name)
        else:
            remaining.append(conflict)

    return result.model_copy(
        update={
            "merged": merged,
            "auto_merged_fields": sorted(auto_merged),
            "project_kept_fields": sorted(project_kept),
            "conflicts": remaining,
        }
    )


# ---------------------------------------------------------------------------
# Manifest I/O
# ---------------------------------------------------------------------------


def parse_manifest(text: str, source: str = "<manifest>") -> dict[str, Any]:
    """Parse manifest *text* into an ordered dict.

    Raises:
        ManifestError: If the text is not JSON or the root is not an object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestError(f"{source}: invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(
            f"{source}: expected a JSON object, got {type(data).__name__}"
        )
    return data


def read_manifest(path: Path) -> dict[str, Any]:
    """Read and parse the manifest at *path*.

    Raises:
        ManifestError: On malformed content.
        OSError: If the file cannot be read.
    """
    content, _ = read_file_with_encoding(path)
    return parse_manifest(content, source=str(path))


def dump_manifest(data: Mapping[str, Any]) -> str:
    """Serialise a manifest as two-space indented JSON with a final newline."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def merge_manifest_files(
    template_path: Path,
    project_path: Path,
    base: Mapping[str, Any] | None = None,
    deep_merge_fields: Iterable[str] = DEFAULT_DEEP_MERGE_FIELDS,
) -> MergeResult:
    """Read both manifests and merge them.

    Malformed content on either side yields ``success=False`` with the
    parse error and no merged object; neither file is touched.

    Raises:
        OSError: If either file cannot be read.
    """
    try:
        template = read_manifest(template_path)
        project = read_manifest(project_path)
    except ManifestError as e:
        logger.warning("Manifest merge failed: %s", e)
        return MergeResult(success=False, error=str(e))
    return merge_manifest(base, template, project, deep_merge_fields)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_value(value: Any) -> str:
    """Compact one-line rendering of a JSON value."""
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    rendered = json.dumps(value, ensure_ascii=False)
    if len(rendered) > 60:
        return rendered[:57] + "..."
    return rendered


def format_merge_summary(result: MergeResult) -> str:
    """Human-readable summary of a merge result."""
    if not result.success:
        return f"Merge failed: {result.error}"

    lines: list[str] = []
    sections = (
        ("Auto-merged from template", result.auto_merged_fields),
        ("Kept project changes", result.project_kept_fields),
        ("Added from template", result.template_only_fields),
        ("Project-only fields", result.project_only_fields),
    )
    for title, fields in sections:
        if fields:
            lines.append(f"{title}: {', '.join(fields)}")
    if result.conflicts:
        names = ", ".join(c.name for c in result.conflicts)
        lines.append(f"Conflicts ({len(result.conflicts)}): {names}")
    if not lines:
        lines.append("No changes")
    return "\n".join(lines)


def format_conflict_message(conflict: FieldConflict) -> str:
    """Describe one field conflict, base first when known."""
    lines = [f'Conflict in "{conflict.name}":']
    if conflict.has_base:
        lines.append(f"  base:     {format_value(conflict.base)}")
    lines.append(f"  template: {format_value(conflict.template)}")
    lines.append(f"  project:  {format_value(conflict.project)}")
    return "\n".join(lines)
