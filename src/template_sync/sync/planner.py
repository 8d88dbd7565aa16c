"""Per-path sync decisions between a template tree and a project tree.

The planner is read-only: it scans both trees, classifies every
candidate path, compares fingerprints against the baseline map and
produces a ``SyncPlan``.  Nothing is written; the ``ResolutionExecutor``
applies the plan.

Decision rules, in order:

1. Ignored paths never enter the plan.
2. Designated manifest files present in both trees are merged field by
   field (``skip`` when the merge would not change the project).
3. Project-only override -> ``skip``.
4. Project-only owned path -> ``delete``.
5. Template-only path -> ``copy``.
6. Override present in both -> ``skip``; flags whether the template moved
   on since the override was acknowledged.
7. Present in both -> ``skip`` when identical, ``diverged`` when the
   project edited its copy since the baseline, otherwise ``copy``.
8. No baseline, contents differ and the path already existed in the
   template at the last sync -> ``conflict`` (configurable).

A directory on one side and a file on the other is a ``conflict`` unless
the path is an override.  Paths below such a file follow it: ``conflict``
too, or ``skip`` inside an override, never ``copy`` or ``delete``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from .errors import ManifestError
from .fingerprint import classify_entry, fingerprint
from .manifest import (
    DEFAULT_DEEP_MERGE_FIELDS,
    merge_manifest,
    parse_manifest,
    read_manifest,
)
from .models import EntryKind, MergeResult, SyncAction, SyncDecision, SyncPlan
from .ownership import Ownership, OwnershipConfig, classify, expand_patterns, walk_tree

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_FILES: tuple[str, ...] = ("package.json",)
TEMPLATE_ARTIFACT_SUFFIX = ".template"


class NoBaselinePolicy(str, Enum):
    """What to do with an unexplained difference on a path never baselined."""

    CONFLICT = "conflict"
    COPY = "copy"


class TemplateHistory(Protocol):
    """Read access to the template as it was at the last recorded sync."""

    def existed_at_last_sync(self, path: str) -> bool:
        """Return ``True`` if *path* existed in the template at that point."""
        ...

    def read_at_last_sync(self, path: str) -> str | None:
        """Return the content of *path* at that point, or ``None``."""
        ...


class SyncPlanner:
    """Build a ``SyncPlan`` for one template/project pair.

    Args:
        template_root: Root of the template tree snapshot.
        project_root: Root of the project tree.
        ownership: Validated ownership rules.
        baselines: Path to baseline fingerprint.
        history: Optional version-control view of the template at the last
            sync; enables rule 8 and supplies manifest merge bases.
        manifest_files: Paths merged field by field instead of copied.
        deep_merge_fields: Manifest keys merged one level deep.
        manifest_bases: Stored manifest snapshots used as merge base when
            *history* has none.
        no_baseline_policy: Rule 8 behaviour.
        exclude: Paths never planned (the project's own state file).
    """

    def __init__(
        self,
        template_root: Path,
        project_root: Path,
        ownership: OwnershipConfig,
        baselines: Mapping[str, str],
        *,
        history: TemplateHistory | None = None,
        manifest_files: Iterable[str] = DEFAULT_MANIFEST_FILES,
        deep_merge_fields: Iterable[str] = DEFAULT_DEEP_MERGE_FIELDS,
        manifest_bases: Mapping[str, dict[str, Any]] | None = None,
        no_baseline_policy: NoBaselinePolicy | str = NoBaselinePolicy.CONFLICT,
        exclude: Iterable[str] = (),
    ) -> None:
        self.template_root = template_root
        self.project_root = project_root
        self.ownership = ownership
        self.baselines = dict(baselines)
        self.history = history
        self.manifest_files = tuple(manifest_files)
        self.deep_merge_fields = frozenset(deep_merge_fields)
        self.manifest_bases = dict(manifest_bases or {})
        self.no_baseline_policy = NoBaselinePolicy(no_baseline_policy)
        self.exclude = frozenset(exclude)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def candidates(self) -> tuple[list[str], list[str]]:
        """Return ``(candidate_paths, expanded_template_paths)``, both sorted.

        Candidates are owned paths found in either tree plus every
        manifest file present in both, minus ignored and excluded paths.
        """
        patterns = self.ownership.template_paths
        template_owned = expand_patterns(
            patterns, self.template_root, entries=walk_tree(self.template_root)
        )
        project_owned = expand_patterns(
            patterns, self.project_root, entries=walk_tree(self.project_root)
        )

        paths = template_owned | project_owned
        for manifest in self.manifest_files:
            if os.path.lexists(self.template_root / manifest) and os.path.lexists(
                self.project_root / manifest
            ):
                paths.add(manifest)

        keep = sorted(
            p
            for p in paths
            if p not in self.exclude
            and classify(p, self.ownership) != Ownership.IGNORED
        )
        expanded = sorted(
            p
            for p in template_owned
            if classify(p, self.ownership) != Ownership.IGNORED
        )
        return keep, expanded

    def plan(self) -> SyncPlan:
        """Decide every candidate path.

        Per-path ``OSError``s are collected in ``SyncPlan.errors`` and the
        path is left out of the plan.
        """
        paths, expanded = self.candidates()
        decisions: list[SyncDecision] = []
        errors: list[str] = []
        merge_results: dict[str, MergeResult] = {}

        for path in paths:
            try:
                decision = self.decide(path, merge_results)
            except OSError as e:
                logger.warning("Cannot plan %s: %s", path, e)
                errors.append(f"{path}: {e}")
                continue
            logger.debug(
                "%s -> %s (%s)", path, decision.action.value, decision.reason
            )
            decisions.append(decision)

        return SyncPlan(
            decisions=decisions,
            errors=errors,
            expanded_template_paths=expanded,
            merge_results=merge_results,
        )

    def decide(
        self,
        path: str,
        merge_results: dict[str, MergeResult] | None = None,
    ) -> SyncDecision:
        """Decide a single path.

        Args:
            path: Relative POSIX path, already known not to be ignored.
            merge_results: Receives the dry-run merge for manifest paths.

        Raises:
            OSError: If either side cannot be inspected or hashed.
        """
        template_path = self.template_root / path
        project_path = self.project_root / path
        template_kind = classify_entry(template_path)
        project_kind = classify_entry(project_path)
        in_template = template_kind is not None
        in_project = project_kind is not None
        is_override = classify(path, self.ownership) == Ownership.OVERRIDE

        def _decision(action: SyncAction, reason: str, **extra: Any) -> SyncDecision:
            return SyncDecision(
                path=path,
                action=action,
                reason=reason,
                in_template=in_template,
                in_project=in_project,
                is_override=is_override,
                template_kind=template_kind,
                project_kind=project_kind,
                **extra,
            )

        if in_template and in_project and (
            (template_kind == EntryKind.DIRECTORY)
            != (project_kind == EntryKind.DIRECTORY)
        ):
            if is_override:
                baseline = self.baselines.get(path)
                changed = baseline is None or fingerprint(template_path) != baseline
                return _decision(
                    SyncAction.SKIP,
                    f"Project override, {project_kind.value} kept over template "
                    f"{template_kind.value}",
                    template_changed_since_override=changed,
                )
            return _decision(
                SyncAction.CONFLICT,
                f"Kind mismatch: {template_kind.value} in template, "
                f"{project_kind.value} in project",
            )

        if (
            path in self.manifest_files
            and template_kind == EntryKind.FILE
            and project_kind == EntryKind.FILE
        ):
            result, project_obj = self.dry_merge(path)
            if merge_results is not None:
                merge_results[path] = result
            if not result.success:
                return _decision(
                    SyncAction.MERGE, f"Manifest cannot be merged: {result.error}"
                )
            if result.has_conflicts:
                return _decision(
                    SyncAction.MERGE,
                    f"Manifest merge has {len(result.conflicts)} field conflict(s)",
                )
            if not result.changes_project(project_obj):
                return _decision(SyncAction.SKIP, "Already up to date")
            return _decision(SyncAction.MERGE, "Manifest uses field-level merge")

        if in_project and not in_template:
            if is_override:
                return _decision(SyncAction.SKIP, "Project override, template absent")
            owner = self._artifact_owner(path)
            if owner is not None:
                return _decision(
                    SyncAction.SKIP, f"Template copy of override {owner}"
                )
            blocker = self._blocking_file(path, self.template_root)
            if blocker is not None:
                return self._blocked(_decision, blocker, "template")
            return _decision(SyncAction.DELETE, "Removed from template")

        if in_template and not in_project:
            if is_override:
                return _decision(
                    SyncAction.SKIP, "Project override, removed in project"
                )
            blocker = self._blocking_file(path, self.project_root)
            if blocker is not None:
                return self._blocked(_decision, blocker, "project")
            return _decision(SyncAction.COPY, "New file from template")

        template_fp = fingerprint(template_path)
        baseline = self.baselines.get(path)

        if is_override:
            changed = baseline is None or template_fp != baseline
            return _decision(
                SyncAction.SKIP,
                "Project override (template changed - review)"
                if changed
                else "Project override, template unchanged",
                template_changed_since_override=changed,
            )

        project_fp = fingerprint(project_path)
        if template_fp == project_fp:
            return _decision(SyncAction.SKIP, "Already up to date")

        if baseline is not None and project_fp != baseline:
            return _decision(
                SyncAction.DIVERGED,
                "Project modified a template-owned file without declaring "
                "an override",
            )

        if baseline is None and self._predates_baseline(path):
            return _decision(
                SyncAction.CONFLICT,
                "No baseline and contents differ; file existed in template "
                "at last sync",
            )

        return _decision(SyncAction.COPY, "Updated in template")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _predates_baseline(self, path: str) -> bool:
        if self.no_baseline_policy == NoBaselinePolicy.COPY:
            return False
        if self.history is None:
            return False
        return self.history.existed_at_last_sync(path)

    def _artifact_owner(self, path: str) -> str | None:
        """Return the override a ``<path>.template`` artifact belongs to."""
        if not path.endswith(TEMPLATE_ARTIFACT_SUFFIX):
            return None
        owner = path[: -len(TEMPLATE_ARTIFACT_SUFFIX)]
        if owner in self.ownership.project_overrides:
            return owner
        return None

    @staticmethod
    def _blocking_file(path: str, root: Path) -> str | None:
        """Return the first ancestor of *path* under *root* that is not a directory."""
        parents = list(PurePosixPath(path).parents)[:-1]
        for parent in reversed(parents):
            kind = classify_entry(root / parent)
            if kind is None:
                return None
            if kind != EntryKind.DIRECTORY:
                return str(parent)
        return None

    def _blocked(
        self,
        make: Callable[..., SyncDecision],
        blocker: str,
        side: str,
    ) -> SyncDecision:
        """Decide a path that sits below a non-directory *blocker* on *side*.

        The path follows its ancestor: left alone when the ancestor is a
        project override, otherwise a conflict settled together with the
        ancestor's own kind mismatch.
        """
        if classify(blocker, self.ownership) == Ownership.OVERRIDE:
            return make(SyncAction.SKIP, f"Inside project override {blocker}")
        return make(
            SyncAction.CONFLICT,
            f"Kind mismatch: {blocker} is not a directory in {side}",
        )

    def _merge_base(self, path: str) -> dict[str, Any] | None:
        if self.history is not None:
            text = self.history.read_at_last_sync(path)
            if text:
                try:
                    return parse_manifest(text, source=f"{path}@last-sync")
                except ManifestError as e:
                    logger.warning("Ignoring unusable merge base: %s", e)
        return self.manifest_bases.get(path)

    def dry_merge(self, path: str) -> tuple[MergeResult, dict[str, Any]]:
        """Merge the manifest at *path* without writing it.

        Returns:
            ``(result, project_manifest)``.  Malformed content yields
            ``success=False`` and an empty project manifest.
        """
        try:
            template_obj = read_manifest(self.template_root / path)
            project_obj = read_manifest(self.project_root / path)
        except ManifestError as e:
            logger.warning("Manifest merge failed: %s", e)
            return MergeResult(success=False, error=str(e)), {}
        result = merge_manifest(
            self._merge_base(path),
            template_obj,
            project_obj,
            self.deep_merge_fields,
        )
        return result, project_obj

