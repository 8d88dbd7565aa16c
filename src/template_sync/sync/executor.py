"""Apply a ``SyncPlan`` and caller resolutions to the project tree.

Buckets are applied in a fixed order -- copy, delete, merge, conflict,
diverged, then overrides flagged for review -- so a manifest merge never
sees a tree already changed by an unrelated copy in the same run.

Every filesystem effect for a path is followed immediately by a save of
the store, and the baseline is only written once the effect succeeded.
Re-running the executor after an interruption is safe: effects are
idempotent and the next plan only contains what is left to do.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from template_sync.file_handler import (
    copy_entry,
    remove_entry,
    remove_tree,
    write_file,
)

from .errors import ManifestError
from .fingerprint import classify_entry, exists, fingerprint
from .manifest import dump_manifest, read_manifest, resolve_field_conflicts
from .models import (
    EntryKind,
    ExecutionReport,
    FieldConflict,
    FieldResolution,
    Resolution,
    SyncAction,
    SyncDecision,
    SyncPlan,
)
from .planner import TEMPLATE_ARTIFACT_SUFFIX
from .store import SyncStore

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def next_manifest_base(
    template: dict[str, Any], deferred: list[FieldConflict]
) -> dict[str, Any]:
    """Snapshot *template* as the next merge base, keeping deferred fields open.

    A deferred conflict keeps its old base value so the next merge sees
    both sides as changed and reports the conflict again.
    """
    base = copy.deepcopy(template)
    for conflict in deferred:
        if conflict.key is None:
            target: Any = base
            key = conflict.field
        else:
            target = base.get(conflict.field)
            key = conflict.key
            if not isinstance(target, dict):
                continue
        if conflict.has_base:
            target[key] = copy.deepcopy(conflict.base)
        else:
            target.pop(key, None)
    return base


class _Run:
    """Mutable report buckets for one ``execute`` call."""

    def __init__(self, dry_run: bool) -> None:
        self.dry_run = dry_run
        self.started_at = _now()
        self.copied: list[str] = []
        self.deleted: list[str] = []
        self.merged: list[str] = []
        self.skipped: list[str] = []
        self.kept: list[str] = []
        self.conflicts: list[str] = []
        self.template_artifacts: list[str] = []
        self.added_to_overrides: list[str] = []
        self.removed_from_overrides: list[str] = []
        self.contributions: list[str] = []
        self.field_conflicts: dict[str, list[FieldConflict]] = {}
        self.errors: list[str] = []

    def report(self) -> ExecutionReport:
        return ExecutionReport(
            dry_run=self.dry_run,
            copied=self.copied,
            deleted=self.deleted,
            merged=self.merged,
            skipped=self.skipped,
            kept=self.kept,
            conflicts=self.conflicts,
            template_artifacts=self.template_artifacts,
            added_to_overrides=self.added_to_overrides,
            removed_from_overrides=self.removed_from_overrides,
            contributions=self.contributions,
            field_conflicts=self.field_conflicts,
            errors=self.errors,
            started_at=self.started_at,
            completed_at=_now(),
        )


class ResolutionExecutor:
    """Turn plan decisions and resolutions into filesystem and state changes.

    Args:
        template_root: Root of the template tree snapshot.
        project_root: Root of the project tree.
        store: Persistence for *state*.
        state: Loaded store state; mutated in place and saved per path.
    """

    def __init__(
        self,
        template_root: Path,
        project_root: Path,
        store: SyncStore,
        state: dict[str, Any],
    ) -> None:
        self.template_root = template_root
        self.project_root = project_root
        self.store = store
        self.state = state

    def execute(
        self,
        plan: SyncPlan,
        resolutions: Mapping[str, Resolution | str] | None = None,
        field_resolutions: Mapping[str, FieldResolution | str] | None = None,
        dry_run: bool = False,
        default_resolution: Resolution | str = Resolution.NONE,
    ) -> ExecutionReport:
        """Apply *plan*.

        Args:
            plan: Output of ``SyncPlanner.plan``.
            resolutions: Path to ``Resolution`` for ``conflict``,
                ``diverged`` and review-flagged override paths.  Missing
                paths use *default_resolution*.
            field_resolutions: Field conflict name to ``FieldResolution``,
                applied to every manifest merge.  Missing names defer.
            dry_run: Compute the report without touching disk or state.
            default_resolution: Choice for resolvable paths missing from
                *resolutions*.

        Returns:
            An ``ExecutionReport``; per-path errors are collected, not
            raised.

        Raises:
            StoreError: If the store cannot be written.  Raised before any
                filesystem change when the store is unwritable up front.
        """
        resolutions = {
            path: Resolution(choice) for path, choice in (resolutions or {}).items()
        }
        field_resolutions = dict(field_resolutions or {})
        default_resolution = Resolution(default_resolution)

        if not dry_run:
            self.store.ensure_writable()

        run = _Run(dry_run)
        run.errors.extend(plan.errors)

        for decision in plan.to_copy:
            self._guard(run, decision, lambda d: self._copy(run, d))
        for decision in plan.to_delete:
            self._guard(run, decision, lambda d: self._delete(run, d))
        for decision in plan.to_merge:
            self._guard(
                run, decision, lambda d: self._merge(run, d, plan, field_resolutions)
            )
        for decision in plan.conflicts + plan.diverged + plan.needs_review:
            choice = resolutions.get(decision.path, default_resolution)
            self._guard(run, decision, lambda d: self._resolve(run, d, choice))

        for decision in plan.skipped:
            if not decision.needs_review:
                run.skipped.append(decision.path)

        if not dry_run:
            pruned = self._prune_baselines()
            if pruned:
                logger.info("Pruned %d stale baseline(s)", len(pruned))
                self.store.save(self.state)

        report = run.report()
        logger.info(
            "Applied %d path(s), %d awaiting a decision, %d error(s)",
            len(report.applied),
            len(report.conflicts),
            len(report.errors),
        )
        return report

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    def _guard(
        self,
        run: _Run,
        decision: SyncDecision,
        action: Callable[[SyncDecision], None],
    ) -> None:
        """Run *action* for one path, recording recoverable failures."""
        try:
            action(decision)
        except (OSError, ManifestError) as e:
            logger.error("Failed to apply %s: %s", decision.path, e)
            run.errors.append(f"{decision.path}: {e}")

    def _copy(self, run: _Run, decision: SyncDecision) -> None:
        path = decision.path
        if not run.dry_run:
            self._install_template(decision)
            self._commit_baseline(path, fingerprint(self.project_root / path))
            logger.info("Copied %s", path)
        run.copied.append(path)

    def _delete(self, run: _Run, decision: SyncDecision) -> None:
        path = decision.path
        if not run.dry_run:
            remove_entry(self.project_root / path, self.project_root)
            if self.store.remove_baseline(self.state, path):
                self.store.save(self.state)
            logger.info("Deleted %s", path)
        run.deleted.append(path)

    def _merge(
        self,
        run: _Run,
        decision: SyncDecision,
        plan: SyncPlan,
        field_resolutions: Mapping[str, FieldResolution | str],
    ) -> None:
        path = decision.path
        result = plan.merge_results.get(path)
        if result is None:
            run.errors.append(f"{path}: no merge result in plan")
            return
        if not result.success or result.merged is None:
            run.errors.append(f"{path}: {result.error}")
            return

        resolved = resolve_field_conflicts(result, field_resolutions)
        if resolved.conflicts:
            run.field_conflicts[path] = list(resolved.conflicts)
            run.conflicts.append(path)

        if not run.dry_run:
            template_obj = read_manifest(self.template_root / path)
            target = self.project_root / path
            write_file(target, dump_manifest(resolved.merged))
            self.store.set_manifest_base(
                self.state, path, next_manifest_base(template_obj, resolved.conflicts)
            )
            self._commit_baseline(path, fingerprint(target))
            logger.info(
                "Merged %s (%d field conflict(s) deferred)",
                path,
                len(resolved.conflicts),
            )
        run.merged.append(path)

    def _resolve(
        self, run: _Run, decision: SyncDecision, choice: Resolution
    ) -> None:
        path = decision.path

        if choice == Resolution.NONE:
            if decision.action == SyncAction.SKIP:
                run.skipped.append(path)
            else:
                run.conflicts.append(path)
            return

        if choice == Resolution.OVERRIDE:
            if not run.dry_run:
                self._install_template(decision)
                if self.store.remove_override(self.state, path):
                    run.removed_from_overrides.append(path)
                if decision.in_template:
                    self._commit_baseline(path, fingerprint(self.project_root / path))
                else:
                    self.store.remove_baseline(self.state, path)
                    self.store.save(self.state)
                logger.info("Adopted template version of %s", path)
            elif path in self.state.get("projectOverrides", []):
                run.removed_from_overrides.append(path)
            if decision.in_template:
                run.copied.append(path)
            else:
                run.deleted.append(path)
            return

        template_fp = fingerprint(self.template_root / path)

        if choice == Resolution.MERGE:
            artifact = path + TEMPLATE_ARTIFACT_SUFFIX
            if not run.dry_run:
                copy_entry(self.template_root / path, self.project_root / artifact)
                logger.info("Wrote %s for manual merge", artifact)
            run.template_artifacts.append(artifact)
        else:
            run.kept.append(path)

        if choice == Resolution.CONTRIBUTE:
            run.contributions.append(path)
            if not run.dry_run:
                self.store.add_contribution(self.state, path)

        if run.dry_run:
            if path not in self.state.get("projectOverrides", []):
                run.added_to_overrides.append(path)
            return

        if self.store.add_override(self.state, path):
            run.added_to_overrides.append(path)
        self._commit_baseline(path, template_fp)
        logger.info("Acknowledged %s as %s", path, choice.value)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _install_template(self, decision: SyncDecision) -> None:
        """Make the project entry at the decision's path match the template."""
        source = self.template_root / decision.path
        target = self.project_root / decision.path
        source_kind = classify_entry(source)
        if source_kind is None:
            remove_entry(target, self.project_root)
            return
        blocker = self._blocking_entry(decision.path)
        if blocker is not None:
            remove_entry(blocker, self.project_root)
            logger.info("Removed %s to make room for %s", blocker, decision.path)
        if source_kind == EntryKind.DIRECTORY:
            if classify_entry(target) != EntryKind.DIRECTORY:
                remove_entry(target, self.project_root)
                target.mkdir(parents=True, exist_ok=True)
            return
        if decision.project_kind == EntryKind.DIRECTORY:
            remove_tree(target)
        copy_entry(source, target)

    def _blocking_entry(self, path: str) -> Path | None:
        """Return the project ancestor of *path* that is not a directory."""
        current = self.project_root
        for part in PurePosixPath(path).parts[:-1]:
            current = current / part
            kind = classify_entry(current)
            if kind is None:
                return None
            if kind != EntryKind.DIRECTORY:
                return current
        return None

    def _commit_baseline(self, path: str, value: str) -> None:
        self.store.set_baseline(self.state, path, value)
        self.store.save(self.state)

    def _prune_baselines(self) -> list[str]:
        keep = {
            path
            for path in self.store.baselines(self.state)
            if exists(self.template_root / path) or exists(self.project_root / path)
        }
        return self.store.prune_baselines(self.state, keep)
