"""Tests for sync/planner.py -- per-path sync decisions.

Covers:
- Ignored paths never enter the plan
- Copy / delete / skip / diverged against the baseline map
- Override handling, including review flagging
- The no-baseline rule with and without a template history
- Manifest files: skip when unchanged, merge otherwise
- Kind mismatches and template artifact files
- Per-path read errors collected instead of aborting
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from template_sync.sync.fingerprint import fingerprint
from template_sync.sync.models import SyncAction
from template_sync.sync.ownership import OwnershipConfig
from template_sync.sync.planner import NoBaselinePolicy, SyncPlanner


class FakeHistory:
    """In-memory TemplateHistory."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files = files or {}

    def existed_at_last_sync(self, path: str) -> bool:
        return path in self.files

    def read_at_last_sync(self, path: str) -> str | None:
        return self.files.get(path)


@pytest.fixture
def build(trees):
    """Factory returning a SyncPlanner over the ``trees`` fixture."""
    template, project = trees

    def _build(
        template_paths: list[str],
        *,
        ignored: list[str] | None = None,
        overrides: list[str] | None = None,
        baselines: dict[str, str] | None = None,
        **kwargs,
    ) -> SyncPlanner:
        ownership = OwnershipConfig(
            templatePaths=template_paths,
            templateIgnoredFiles=ignored or [],
            projectOverrides=overrides or [],
        )
        return SyncPlanner(template, project, ownership, baselines or {}, **kwargs)

    return _build


def _action(planner: SyncPlanner, path: str) -> SyncAction:
    decision = planner.plan().get(path)
    assert decision is not None, f"{path} missing from plan"
    return decision.action


# ---------------------------------------------------------------------------
# Basic decisions
# ---------------------------------------------------------------------------


class TestBasicDecisions:
    """Copy, delete and skip for owned paths."""

    def test_template_only_copies(self, trees, write_tree, build):
        template, _ = trees
        write_tree(template, {"src/new.ts": "x"})
        assert _action(build(["src"]), "src/new.ts") == SyncAction.COPY

    def test_project_only_deletes(self, trees, write_tree, build):
        _, project = trees
        write_tree(project, {"src/old.ts": "x"})
        assert _action(build(["src"]), "src/old.ts") == SyncAction.DELETE

    def test_identical_skips(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/a.ts": "same"})
        write_tree(project, {"src/a.ts": "same"})
        plan = build(["src"]).plan()
        assert plan.get("src/a.ts").action == SyncAction.SKIP
        assert plan.is_noop

    def test_out_of_scope_not_planned(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"README.md": "t"})
        write_tree(project, {"README.md": "p", "notes.txt": "n"})
        assert build(["src"]).plan().decisions == []

    def test_ignored_path_excluded(self, trees, write_tree, build):
        """A differing ignored path does not appear at all."""
        template, project = trees
        write_tree(template, {"src/local.ts": "template"})
        write_tree(project, {"src/local.ts": "project"})
        plan = build(["src"], ignored=["src/local.ts"]).plan()
        assert plan.get("src/local.ts") is None
        assert "src/local.ts" not in plan.expanded_template_paths

    def test_excluded_paths(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"state.json": "{}"})
        planner = build(["state.json"], exclude=["state.json"])
        assert planner.plan().decisions == []

    def test_decisions_sorted(self, trees, write_tree, build):
        template, _ = trees
        write_tree(template, {"src/b.ts": "", "src/a.ts": "", "src/c/d.ts": ""})
        paths = [d.path for d in build(["src"]).plan().decisions]
        assert paths == sorted(paths)


class TestBaselineComparison:
    """Three-way comparison against stored baselines."""

    def test_template_changed_project_untouched_copies(
        self, trees, write_tree, build
    ):
        template, project = trees
        write_tree(template, {"src/a.ts": "v2"})
        write_tree(project, {"src/a.ts": "v1"})
        baselines = {"src/a.ts": fingerprint(project / "src/a.ts")}
        assert _action(build(["src"], baselines=baselines), "src/a.ts") == (
            SyncAction.COPY
        )

    def test_both_changed_diverges(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/a.ts": "v2"})
        write_tree(project, {"src/a.ts": "v1"})
        baselines = {"src/a.ts": fingerprint(project / "src/a.ts")}
        write_tree(project, {"src/a.ts": "local edit"})
        assert _action(build(["src"], baselines=baselines), "src/a.ts") == (
            SyncAction.DIVERGED
        )

    def test_project_edit_with_template_unchanged_diverges(
        self, trees, write_tree, build
    ):
        template, project = trees
        write_tree(template, {"src/a.ts": "v1"})
        write_tree(project, {"src/a.ts": "edit"})
        baselines = {"src/a.ts": fingerprint(template / "src/a.ts")}
        assert _action(build(["src"], baselines=baselines), "src/a.ts") == (
            SyncAction.DIVERGED
        )


class TestNoBaseline:
    """Differing content with no baseline recorded."""

    @pytest.fixture
    def differing(self, trees, write_tree):
        template, project = trees
        write_tree(template, {"src/a.ts": "template"})
        write_tree(project, {"src/a.ts": "project"})

    def test_without_history_copies(self, differing, build):
        assert _action(build(["src"]), "src/a.ts") == SyncAction.COPY

    def test_existed_at_last_sync_conflicts(self, differing, build):
        history = FakeHistory({"src/a.ts": "older"})
        decision = build(["src"], history=history).plan().get("src/a.ts")
        assert decision.action == SyncAction.CONFLICT
        assert "No baseline" in decision.reason

    def test_new_in_template_copies(self, differing, build):
        assert _action(build(["src"], history=FakeHistory()), "src/a.ts") == (
            SyncAction.COPY
        )

    def test_copy_policy(self, differing, build):
        planner = build(
            ["src"],
            history=FakeHistory({"src/a.ts": "older"}),
            no_baseline_policy=NoBaselinePolicy.COPY,
        )
        assert _action(planner, "src/a.ts") == SyncAction.COPY


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------


class TestOverrides:
    """Project overrides are never overwritten."""

    def test_override_unchanged_template(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/app.ts": "template"})
        write_tree(project, {"src/app.ts": "custom"})
        baselines = {"src/app.ts": fingerprint(template / "src/app.ts")}
        decision = (
            build(["src"], overrides=["src/app.ts"], baselines=baselines)
            .plan()
            .get("src/app.ts")
        )
        assert decision.action == SyncAction.SKIP
        assert decision.is_override
        assert not decision.needs_review

    def test_override_template_moved_on(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/app.ts": "template v1"})
        write_tree(project, {"src/app.ts": "custom"})
        baselines = {"src/app.ts": fingerprint(template / "src/app.ts")}
        write_tree(template, {"src/app.ts": "template v2"})
        plan = build(["src"], overrides=["src/app.ts"], baselines=baselines).plan()
        decision = plan.get("src/app.ts")
        assert decision.action == SyncAction.SKIP
        assert decision.needs_review
        assert decision.resolvable
        assert plan.needs_review == [decision]

    def test_override_without_baseline_needs_review(
        self, trees, write_tree, build
    ):
        template, project = trees
        write_tree(template, {"src/app.ts": "t"})
        write_tree(project, {"src/app.ts": "p"})
        decision = build(["src"], overrides=["src/app.ts"]).plan().get("src/app.ts")
        assert decision.template_changed_since_override

    def test_project_only_override_kept(self, trees, write_tree, build):
        _, project = trees
        write_tree(project, {"src/extra.ts": "mine"})
        assert _action(build(["src"], overrides=["src/extra.ts"]), "src/extra.ts") == (
            SyncAction.SKIP
        )

    def test_override_removed_in_project_not_restored(
        self, trees, write_tree, build
    ):
        template, _ = trees
        write_tree(template, {"src/app.ts": "t"})
        assert _action(build(["src"], overrides=["src/app.ts"]), "src/app.ts") == (
            SyncAction.SKIP
        )

    def test_template_artifact_kept(self, trees, write_tree, build):
        """``<override>.template`` files are not treated as stale."""
        template, project = trees
        write_tree(template, {"src/app.ts": "t"})
        write_tree(project, {"src/app.ts": "p", "src/app.ts.template": "t"})
        decision = (
            build(["src"], overrides=["src/app.ts"])
            .plan()
            .get("src/app.ts.template")
        )
        assert decision.action == SyncAction.SKIP
        assert "src/app.ts" in decision.reason

    def test_artifact_without_override_deleted(self, trees, write_tree, build):
        _, project = trees
        write_tree(project, {"src/app.ts.template": "t"})
        assert _action(build(["src"]), "src/app.ts.template") == SyncAction.DELETE


# ---------------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------------


class TestManifestDecisions:
    """Manifest files are merged field by field."""

    def _write(self, root: Path, data: dict) -> None:
        (root / "package.json").write_text(json.dumps(data, indent=2))

    def test_unchanged_manifest_skips(self, trees, build):
        template, project = trees
        self._write(template, {"name": "t", "license": "MIT"})
        self._write(project, {"name": "p", "license": "MIT"})
        planner = build(
            [], manifest_bases={"package.json": {"name": "t", "license": "MIT"}}
        )
        assert _action(planner, "package.json") == SyncAction.SKIP

    def test_changed_manifest_merges(self, trees, build):
        template, project = trees
        self._write(template, {"name": "t", "license": "MIT"})
        self._write(project, {"name": "p"})
        plan = build([]).plan()
        assert plan.get("package.json").action == SyncAction.MERGE
        assert plan.merge_results["package.json"].merged == {
            "name": "p",
            "license": "MIT",
        }

    def test_override_rules_do_not_apply_to_manifests(self, trees, build):
        """Override rules do not apply to manifest files."""
        template, project = trees
        self._write(template, {"a": 2})
        self._write(project, {"a": 1})
        planner = build(
            ["package.json"],
            overrides=["package.json"],
            manifest_bases={"package.json": {"a": 1}},
        )
        assert _action(planner, "package.json") == SyncAction.MERGE

    def test_history_base_preferred(self, trees, build):
        template, project = trees
        self._write(template, {"a": 2})
        self._write(project, {"a": 1})
        history = FakeHistory({"package.json": json.dumps({"a": 1})})
        planner = build(
            [], history=history, manifest_bases={"package.json": {"a": 0}}
        )
        plan = planner.plan()
        result = plan.merge_results["package.json"]
        assert result.merged == {"a": 2}
        assert not result.has_conflicts

    def test_malformed_manifest_reported(self, trees, build):
        template, project = trees
        self._write(template, {"a": 1})
        (project / "package.json").write_text("{oops")
        plan = build([]).plan()
        decision = plan.get("package.json")
        assert decision.action == SyncAction.MERGE
        assert "cannot be merged" in decision.reason
        assert plan.merge_results["package.json"].success is False

    def test_conflicting_manifest(self, trees, build):
        template, project = trees
        self._write(template, {"a": 2})
        self._write(project, {"a": 3})
        planner = build([], manifest_bases={"package.json": {"a": 1}})
        decision = planner.plan().get("package.json")
        assert decision.action == SyncAction.MERGE
        assert "1 field conflict" in decision.reason

    def test_manifest_missing_on_one_side_not_merged(self, trees, build):
        template, _ = trees
        self._write(template, {"a": 1})
        assert build([]).plan().get("package.json") is None


# ---------------------------------------------------------------------------
# Kinds and errors
# ---------------------------------------------------------------------------


class TestKindMismatch:
    """Directory on one side, file on the other."""

    def test_file_vs_directory(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/lib": "a file"})
        write_tree(project, {"src/lib/x.ts": ""})
        decision = build(["src"]).plan().get("src/lib")
        assert decision.action == SyncAction.CONFLICT
        assert "Kind mismatch" in decision.reason

    def test_template_path_blocked_by_project_file(
        self, trees, write_tree, build
    ):
        template, project = trees
        write_tree(template, {"src/lib/x.ts": ""})
        write_tree(project, {"src/lib": "a file"})
        decision = build(["src"]).plan().get("src/lib/x.ts")
        assert decision.action == SyncAction.CONFLICT
        assert "src/lib is not a directory" in decision.reason

    def test_project_subtree_under_template_file_not_deleted(
        self, trees, write_tree, build
    ):
        template, project = trees
        write_tree(template, {"src/lib": "a file"})
        write_tree(project, {"src/lib/a.ts": "", "src/lib/deep/b.ts": ""})
        plan = build(["src"]).plan()
        assert plan.to_delete == []
        for path in ("src/lib/a.ts", "src/lib/deep/b.ts"):
            decision = plan.get(path)
            assert decision.action == SyncAction.CONFLICT
            assert "src/lib is not a directory in template" in decision.reason

    def test_override_directory_over_template_file(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/lib": "a file"})
        write_tree(project, {"src/lib/a.ts": ""})
        plan = build(["src"], overrides=["src/lib"]).plan()
        lib = plan.get("src/lib")
        assert lib.action == SyncAction.SKIP
        assert lib.needs_review
        assert plan.get("src/lib/a.ts").action == SyncAction.SKIP
        assert "Inside project override src/lib" in plan.get("src/lib/a.ts").reason

    def test_override_file_over_template_directory(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/lib/x.ts": ""})
        write_tree(project, {"src/lib": "a file"})
        plan = build(["src"], overrides=["src/lib"]).plan()
        assert plan.get("src/lib").action == SyncAction.SKIP
        assert plan.get("src/lib/x.ts").action == SyncAction.SKIP
        assert plan.is_noop


class TestErrors:
    """Per-path failures are collected."""

    def test_unreadable_file_collected(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/a.ts": "t", "src/b.ts": "t"})
        write_tree(project, {"src/a.ts": "p", "src/b.ts": "p"})

        real = fingerprint

        def flaky(path):
            if path.name == "a.ts":
                raise PermissionError(13, "Permission denied")
            return real(path)

        with patch("template_sync.sync.planner.fingerprint", side_effect=flaky):
            plan = build(["src"]).plan()

        assert plan.get("src/a.ts") is None
        assert plan.get("src/b.ts").action == SyncAction.COPY
        assert len(plan.errors) == 1
        assert plan.errors[0].startswith("src/a.ts: ")


class TestIdempotence:
    """Planning twice without changes gives the same plan."""

    def test_stable(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/a.ts": "1", "src/b.ts": "2"})
        write_tree(project, {"src/a.ts": "1", "src/c.ts": "3"})
        planner = build(["src"])
        assert planner.plan() == planner.plan()

    @pytest.mark.skipif(os.name == "nt", reason="symlinks not available")
    def test_symlink_to_dir_is_a_leaf(self, trees, write_tree, build):
        template, project = trees
        write_tree(template, {"src/real/a.ts": ""})
        os.symlink("real", template / "src" / "link")
        decision = build(["src"]).plan().get("src/link")
        assert decision.action == SyncAction.COPY
