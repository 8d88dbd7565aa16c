"""Template-to-project reconciliation engine.

Public API for keeping a project derived from a template repository in
step with that template, without losing the project's own edits.

Architecture
------------
The engine uses **baseline-based reconciliation**: for every path it has
synced or the user has acknowledged, the store records the fingerprint
the path had at that moment.  Comparing the current template and project
fingerprints against that baseline tells which side changed, so template
updates flow in while unexplained local edits surface as ``diverged``
instead of being overwritten.

Modules:

- ``fingerprint`` -- SHA-256 digests of files and symlinks.
- ``ownership``   -- ``OwnershipConfig``, glob expansion, classification.
- ``planner``     -- ``SyncPlanner``: per-path decisions.
- ``manifest``    -- Field-level 2-way/3-way merge for ``package.json``.
- ``executor``    -- ``ResolutionExecutor``: applies a plan and choices.
- ``store``       -- ``SyncStore``: ownership config and baseline map.
- ``textmerge``   -- Line-level merge preview via ``merge3``.
- ``reporter``    -- Human-readable and JSON formatting.
- ``engine``      -- ``TemplateSyncEngine``: one full plan/apply cycle.

Usage example
-------------
::

    from pathlib import Path
    from template_sync.sync import TemplateSyncEngine, format_plan

    engine = TemplateSyncEngine(
        template_root=Path("../template"),
        project_root=Path("."),
    )

    # Preview first
    print(format_plan(engine.plan()))

    # Apply, keeping local edits on one diverged file
    report = engine.run(resolutions={"src/app.ts": "keep"})
    print(report.summary())
"""

from .engine import TemplateSyncEngine
from .errors import ConfigError, ManifestError, StoreError, TemplateSyncError
from .executor import ResolutionExecutor
from .fingerprint import fingerprint
from .manifest import merge_manifest, resolve_field_conflicts
from .models import (
    EntryKind,
    ExecutionReport,
    FieldConflict,
    FieldResolution,
    MergeResult,
    Resolution,
    SyncAction,
    SyncDecision,
    SyncPlan,
)
from .ownership import Ownership, OwnershipConfig, classify, expand_patterns
from .planner import NoBaselinePolicy, SyncPlanner, TemplateHistory
from .reporter import (
    format_execution_report,
    format_plan,
    plan_to_json,
    report_to_json,
)
from .store import SyncStore

__all__ = [
    "ConfigError",
    "EntryKind",
    "ExecutionReport",
    "FieldConflict",
    "FieldResolution",
    "ManifestError",
    "MergeResult",
    "NoBaselinePolicy",
    "Ownership",
    "OwnershipConfig",
    "Resolution",
    "ResolutionExecutor",
    "StoreError",
    "SyncAction",
    "SyncDecision",
    "SyncPlan",
    "SyncPlanner",
    "SyncStore",
    "TemplateHistory",
    "TemplateSyncEngine",
    "TemplateSyncError",
    "classify",
    "expand_patterns",
    "fingerprint",
    "format_execution_report",
    "format_plan",
    "merge_manifest",
    "plan_to_json",
    "report_to_json",
    "resolve_field_conflicts",
]
