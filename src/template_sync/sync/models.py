"""Pydantic models for the template sync engine.

Defines the core data contracts used across all sync modules:

- ``EntryKind``: What a path is on disk (file, symlink flavours, directory).
- ``SyncAction``: Enum of possible per-path sync decisions.
- ``SyncDecision``: The planner's verdict for one path.
- ``SyncPlan``: All decisions for one planning pass, bucketed by action.
- ``Resolution`` / ``FieldResolution``: Caller choices replayed by the
  executor and the manifest merge engine.
- ``FieldConflict`` / ``MergeResult``: Output of the manifest merge engine.
- ``ExecutionReport``: Aggregate effects of applying a plan.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel

JsonValue = Union[
    str, int, float, bool, None, list["JsonValue"], dict[str, "JsonValue"]
]


class EntryKind(str, Enum):
    """What a path resolves to inside a tree."""

    FILE = "file"
    SYMLINK_FILE = "symlink-to-file"
    SYMLINK_DIR = "symlink-to-dir"
    BROKEN_SYMLINK = "broken-symlink"
    DIRECTORY = "directory"


class SyncAction(str, Enum):
    """Possible sync decisions for a path."""

    COPY = "copy"
    DELETE = "delete"
    SKIP = "skip"
    CONFLICT = "conflict"
    MERGE = "merge"
    DIVERGED = "diverged"


class Resolution(str, Enum):
    """Caller choice for a conflict, diverged, or reviewed override path."""

    OVERRIDE = "override"
    KEEP = "keep"
    MERGE = "merge"
    CONTRIBUTE = "contribute"
    NONE = "none"


class FieldResolution(str, Enum):
    """Caller choice for a single manifest field conflict."""

    USE_PROJECT = "use-project"
    USE_TEMPLATE = "use-template"
    DEFER = "defer"


class SyncDecision(BaseModel):
    """The planner's decision for one path.

    Attributes:
        path: Relative POSIX path.
        action: What the executor should do.
        reason: Human-readable explanation.
        in_template: Path exists in the template tree.
        in_project: Path exists in the project tree.
        is_override: Path is listed in ``projectOverrides``.
        template_changed_since_override: For overrides, the template
            fingerprint differs from the baseline (or no baseline exists).
        template_kind: Entry kind in the template tree, if present.
        project_kind: Entry kind in the project tree, if present.
    """

    path: str
    action: SyncAction
    reason: str
    in_template: bool
    in_project: bool
    is_override: bool = False
    template_changed_since_override: bool = False
    template_kind: EntryKind | None = None
    project_kind: EntryKind | None = None

    model_config = {"frozen": True}

    @property
    def needs_review(self) -> bool:
        """True for override paths whose template copy moved on."""
        return (
            self.action == SyncAction.SKIP
            and self.is_override
            and self.template_changed_since_override
        )

    @property
    def resolvable(self) -> bool:
        """True if a ``Resolution`` can be applied to this decision."""
        return (
            self.action in (SyncAction.CONFLICT, SyncAction.DIVERGED)
            or self.needs_review
        )


class FieldConflict(BaseModel):
    """A manifest field both sides changed to different values.

    Attributes:
        field: Top-level manifest key.
        key: Nested key for conflicts inside a deep-mergeable field.
        base: Value at the merge base (``None`` with ``has_base=False``
            when there was no base or the key was absent there).
        template: Template value.
        project: Project value.
        has_base: Whether the key existed in the merge base.
    """

    field: str
    key: str | None = None
    base: Any = None
    template: Any = None
    project: Any = None
    has_base: bool = False

    model_config = {"frozen": True}

    @property
    def name(self) -> str:
        """Display name: ``field`` or ``field.key``."""
        if self.key is None:
            return self.field
        return f"{self.field}.{self.key}"


class MergeResult(BaseModel):
    """Outcome of a field-level manifest merge.

    Attributes:
        success: ``False`` if either input could not be parsed.
        merged: The merged object (``None`` when ``success`` is False).
        auto_merged_fields: Fields taken from the template automatically.
        project_kept_fields: Fields where the project's change was kept.
        template_only_fields: Fields added from the template.
        project_only_fields: Fields only the project has.
        conflicts: Unresolved field conflicts (project value kept).
        error: Parse error description when ``success`` is False.
    """

    success: bool = True
    merged: dict[str, Any] | None = None
    auto_merged_fields: list[str] = []
    project_kept_fields: list[str] = []
    template_only_fields: list[str] = []
    project_only_fields: list[str] = []
    conflicts: list[FieldConflict] = []
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def changes_project(self, project: dict[str, Any]) -> bool:
        """Return ``True`` if writing ``merged`` would alter *project*."""
        if not self.success or self.merged is None:
            return False
        return list(self.merged.items()) != list(project.items())


class SyncPlan(BaseModel):
    """All decisions for one planning pass.

    Attributes:
        decisions: One decision per candidate path, sorted by path.
        errors: Per-path errors as ``"path: message"``.
        expanded_template_paths: Owned template paths after ignores.
        merge_results: Dry-run manifest merges keyed by path.
    """

    decisions: list[SyncDecision] = []
    errors: list[str] = []
    expanded_template_paths: list[str] = []
    merge_results: dict[str, MergeResult] = {}

    model_config = {"frozen": True}

    def _with_action(self, action: SyncAction) -> list[SyncDecision]:
        return [d for d in self.decisions if d.action == action]

    @property
    def to_copy(self) -> list[SyncDecision]:
        return self._with_action(SyncAction.COPY)

    @property
    def to_delete(self) -> list[SyncDecision]:
        return self._with_action(SyncAction.DELETE)

    @property
    def to_merge(self) -> list[SyncDecision]:
        return self._with_action(SyncAction.MERGE)

    @property
    def conflicts(self) -> list[SyncDecision]:
        return self._with_action(SyncAction.CONFLICT)

    @property
    def diverged(self) -> list[SyncDecision]:
        return self._with_action(SyncAction.DIVERGED)

    @property
    def skipped(self) -> list[SyncDecision]:
        return self._with_action(SyncAction.SKIP)

    @property
    def needs_review(self) -> list[SyncDecision]:
        """Override paths kept as-is although the template changed."""
        return [d for d in self.decisions if d.needs_review]

    @property
    def is_noop(self) -> bool:
        """True if every decision is ``skip``."""
        return all(d.action == SyncAction.SKIP for d in self.decisions)

    def get(self, path: str) -> SyncDecision | None:
        """Return the decision for *path*, or ``None``."""
        for decision in self.decisions:
            if decision.path == path:
                return decision
        return None


class ExecutionReport(BaseModel):
    """Aggregate effects of applying a plan.

    Attributes:
        dry_run: Whether effects were only simulated.
        copied: Paths written from the template.
        deleted: Paths removed from the project.
        merged: Manifest paths written with a field-level merge.
        skipped: Paths left untouched.
        kept: Paths whose project content was kept and acknowledged.
        conflicts: Paths still awaiting a decision after this run.
        template_artifacts: ``<path>.template`` files written for manual
            reconciliation.
        added_to_overrides: Paths newly added to ``projectOverrides``.
        removed_from_overrides: Paths dropped from ``projectOverrides``.
        contributions: Paths queued for upstream contribution.
        field_conflicts: Unresolved manifest field conflicts by path.
        errors: Per-path errors as ``"path: message"``.
        started_at: ISO 8601 timestamp when execution started.
        completed_at: ISO 8601 timestamp when execution completed.
    """

    dry_run: bool = False
    copied: list[str] = []
    deleted: list[str] = []
    merged: list[str] = []
    skipped: list[str] = []
    kept: list[str] = []
    conflicts: list[str] = []
    template_artifacts: list[str] = []
    added_to_overrides: list[str] = []
    removed_from_overrides: list[str] = []
    contributions: list[str] = []
    field_conflicts: dict[str, list[FieldConflict]] = {}
    errors: list[str] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def applied(self) -> list[str]:
        """Paths whose project content changed."""
        return self.copied + self.deleted + self.merged

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by bucket.
        """
        lines = [
            "Template sync" + (" (dry run)" if self.dry_run else ""),
            f"  Copied:     {len(self.copied)}",
            f"  Deleted:    {len(self.deleted)}",
            f"  Merged:     {len(self.merged)}",
            f"  Skipped:    {len(self.skipped)}",
            f"  Kept:       {len(self.kept)}",
            f"  Conflicts:  {len(self.conflicts)}",
            f"  Errors:     {len(self.errors)}",
        ]
        return "\n".join(lines)
