"""Template sync engine that orchestrates a full plan/apply cycle.

The ``TemplateSyncEngine`` ties together store, ownership, planner,
manifest merge and executor into a complete run.  It:

1. Checks the store is writable (before any mutation).
2. Loads persisted state and applies the template tree's own config in
   memory, so dry runs plan with the same ownership rules.
3. Refreshes the project's copy of the template-owned config.
4. Plans every candidate path.
5. Applies the plan with the caller's resolutions.
6. Records a history entry and persists state.

Error handling is per path: a single file failure does not abort the
run.  Only ``StoreError`` propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from template_sync.file_handler import read_file_with_encoding

from .executor import ResolutionExecutor
from .models import (
    ExecutionReport,
    FieldResolution,
    MergeResult,
    Resolution,
    SyncPlan,
)
from .planner import SyncPlanner, TemplateHistory
from .reporter import diff_summary, preview_text_merge
from .store import SyncStore

if TYPE_CHECKING:
    from template_sync.config_schema import EngineConfig

logger = logging.getLogger(__name__)


class TemplateSyncEngine:
    """Orchestrate template sync for one project.

    Args:
        template_root: Root of the template tree snapshot.
        project_root: Root of the project tree.
        config: Engine settings; defaults when ``None``.
        history: Optional version-control view of the template at the
            last sync.
    """

    def __init__(
        self,
        template_root: Path,
        project_root: Path,
        config: EngineConfig | None = None,
        history: TemplateHistory | None = None,
    ) -> None:
        if config is None:
            # Imported here: config_schema imports from this package.
            from template_sync.config_schema import EngineConfig

            config = EngineConfig()

        self.template_root = template_root
        self.project_root = project_root
        self.config = config
        self.history = history
        self.store = SyncStore(
            project_root,
            template_config_file=config.template_config_file,
            project_config_file=config.project_config_file,
        )

    # ------------------------------------------------------------------
    # Main entry points
    # ------------------------------------------------------------------

    def load_state(self) -> dict[str, Any]:
        """Load store state with the template tree's own config applied.

        Reads only; the project's copy of the template config is refreshed
        on disk by ``run()`` once this has succeeded.
        """
        template_cfg = self.store.read_template_source(self.template_root)
        return self.store.load(template_source=template_cfg)

    def planner(self, state: dict[str, Any]) -> SyncPlanner:
        """Build a ``SyncPlanner`` for *state*."""
        return SyncPlanner(
            self.template_root,
            self.project_root,
            self.store.ownership(state),
            self.store.baselines(state),
            history=self.history,
            manifest_files=self.config.manifest_files,
            deep_merge_fields=self.config.deep_merge_fields,
            manifest_bases=state.get("manifestBases", {}),
            no_baseline_policy=self.config.no_baseline_policy,
            exclude=(
                self.config.project_config_file,
                self.config.template_config_file,
            ),
        )

    def plan(self, state: dict[str, Any] | None = None) -> SyncPlan:
        """Compute the sync plan without changing anything."""
        if state is None:
            state = self.load_state()
        plan = self.planner(state).plan()
        logger.info(
            "Planned %d path(s): %d copy, %d delete, %d merge, "
            "%d conflict, %d diverged",
            len(plan.decisions),
            len(plan.to_copy),
            len(plan.to_delete),
            len(plan.to_merge),
            len(plan.conflicts),
            len(plan.diverged),
        )
        return plan

    def run(
        self,
        resolutions: Mapping[str, Resolution | str] | None = None,
        field_resolutions: Mapping[str, FieldResolution | str] | None = None,
        dry_run: bool = False,
        only: Iterable[str] | None = None,
        template_commit: str | None = None,
        default_resolution: Resolution | str = Resolution.NONE,
    ) -> ExecutionReport:
        """Plan and apply in one call.

        Args:
            resolutions: Path to ``Resolution`` for paths needing a decision.
            field_resolutions: Manifest field conflict name to choice.
            dry_run: Report what would happen without changing anything.
            only: Restrict the run to these paths.
            template_commit: Template revision recorded in the history.
            default_resolution: Choice for paths needing a decision that
                are missing from *resolutions*.

        Returns:
            The ``ExecutionReport``.

        Raises:
            StoreError: If the store is missing, malformed or unwritable.
        """
        if not dry_run:
            self.store.ensure_writable()

        state = self.load_state()
        if not dry_run:
            self.store.sync_template_config(self.template_root)
        plan = self.plan(state)
        if only is not None:
            wanted = set(only)
            plan = plan.model_copy(
                update={
                    "decisions": [d for d in plan.decisions if d.path in wanted]
                }
            )

        executor = ResolutionExecutor(
            self.template_root, self.project_root, self.store, state
        )
        report = executor.execute(
            plan,
            resolutions=resolutions,
            field_resolutions=field_resolutions,
            dry_run=dry_run,
            default_resolution=default_resolution,
        )

        if not dry_run:
            self.store.record_sync(state, report, template_commit=template_commit)
            self.store.save(state)
        return report

    def preview_manifest(self, path: str) -> MergeResult:
        """Dry-run the field-level merge of one manifest.

        Malformed content yields ``success=False``.

        Raises:
            OSError: If either side cannot be read.
        """
        result, _ = self.planner(self.load_state()).dry_merge(path)
        return result

    def describe_path(self, path: str) -> dict[str, Any]:
        """Diff one path between the trees.

        Returns:
            ``diff_summary`` output plus ``merge_preview``: a line-level
            merge description when the template history has the content
            at the last sync, else ``None``.
        """
        summary = diff_summary(self.template_root / path, self.project_root / path)
        summary["merge_preview"] = None
        if self.history is not None:
            base = self.history.read_at_last_sync(path)
            if base is not None:
                summary["merge_preview"] = preview_text_merge(
                    base,
                    _read_text(self.template_root / path),
                    _read_text(self.project_root / path),
                )
        return summary


def _read_text(path: Path) -> str:
    if not path.is_file():
        return ""
    content, _ = read_file_with_encoding(path)
    return content
