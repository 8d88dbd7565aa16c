"""Sync plan and execution report formatting.

Provides human-readable and machine-readable output:

- ``format_plan`` -- plan preview grouped by action.
- ``format_execution_report`` -- post-apply summary with next steps.
- ``diff_summary`` -- line counts, short preview and unified diff for one
  path.
- ``preview_text_merge`` -- whether a clean line-level merge exists for a
  diverged text file.
- ``plan_to_json`` / ``report_to_json`` -- structured dicts for ``--json``.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from template_sync.file_handler import read_file_with_encoding

from .manifest import format_conflict_message, format_merge_summary
from .models import SyncAction
from .textmerge import START_MARKER, attempt_merge, count_changes, generate_diff

if TYPE_CHECKING:
    from .models import ExecutionReport, SyncPlan

_PREVIEW_LINES = 5

_PLAN_SECTIONS = (
    (SyncAction.COPY, "Copy from template"),
    (SyncAction.DELETE, "Delete (removed from template)"),
    (SyncAction.MERGE, "Merge manifest"),
    (SyncAction.CONFLICT, "Conflicts (decision needed)"),
    (SyncAction.DIVERGED, "Diverged (project edited template-owned file)"),
)


# ------------------------------------------------------------------
# Plan preview
# ------------------------------------------------------------------


def format_plan(plan: SyncPlan, verbose: bool = False) -> str:
    """Format a plan as a preview grouped by action.

    Skipped paths are summarised by count unless *verbose*.  Overrides
    whose template changed are listed separately since they need a
    review even though nothing will be written.

    Args:
        plan: The plan to format.
        verbose: Include reasons and every skipped path.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    for action, title in _PLAN_SECTIONS:
        decisions = [d for d in plan.decisions if d.action == action]
        if not decisions:
            continue
        lines.append(f"{title} ({len(decisions)}):")
        for d in decisions:
            if verbose or action in (SyncAction.CONFLICT, SyncAction.DIVERGED):
                lines.append(f"  {d.path}  -- {d.reason}")
            else:
                lines.append(f"  {d.path}")
            if action == SyncAction.MERGE and d.path in plan.merge_results:
                summary = format_merge_summary(plan.merge_results[d.path])
                for summary_line in summary.splitlines():
                    lines.append(f"      {summary_line}")
        lines.append("")

    review = plan.needs_review
    if review:
        lines.append(f"Overrides to review (template changed) ({len(review)}):")
        for d in review:
            lines.append(f"  {d.path}")
        lines.append("")

    skipped = [d for d in plan.skipped if not d.needs_review]
    if skipped:
        if verbose:
            lines.append(f"Skipped ({len(skipped)}):")
            for d in skipped:
                lines.append(f"  {d.path}  -- {d.reason}")
        else:
            lines.append(f"Skipped: {len(skipped)} files")
        lines.append("")

    if plan.errors:
        lines.append("Errors:")
        for error in plan.errors:
            lines.append(f"  {error}")
        lines.append("")

    if plan.is_noop and not review and not plan.errors:
        lines.append("Everything is in sync with the template.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Execution report
# ------------------------------------------------------------------


def format_execution_report(report: ExecutionReport) -> str:
    """Format an execution report as human-readable text.

    Sections are only included when they contain at least one path.
    """
    lines: list[str] = [report.summary(), ""]

    sections = (
        ("Copied", report.copied),
        ("Deleted", report.deleted),
        ("Merged", report.merged),
        ("Kept (added to overrides)", report.kept),
        ("Template copies written", report.template_artifacts),
        ("Removed from overrides", report.removed_from_overrides),
        ("Queued for contribution", report.contributions),
        ("Awaiting a decision", report.conflicts),
    )
    for title, paths in sections:
        if not paths:
            continue
        lines.append(f"{title}:")
        for path in paths:
            lines.append(f"  {path}")
        lines.append("")

    for path, conflicts in sorted(report.field_conflicts.items()):
        lines.append(f"Unresolved fields in {path}:")
        for conflict in conflicts:
            for message_line in format_conflict_message(conflict).splitlines():
                lines.append(f"  {message_line}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  {error}")
        lines.append("")

    if report.template_artifacts:
        lines.append("Next steps:")
        lines.append(
            "  Compare each file with its .template copy, merge by hand,"
        )
        lines.append("  then delete the .template file.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Diffs
# ------------------------------------------------------------------


def diff_summary(template_file: Path, project_file: Path) -> dict[str, Any]:
    """Summarise how *project_file* differs from *template_file*.

    A missing side is treated as empty.

    Returns:
        Dict with ``added``, ``removed``, ``preview`` (first changed lines)
        and ``diff`` (unified diff, project to template).
    """
    template_text = _read_or_empty(template_file)
    project_text = _read_or_empty(project_file)

    added, removed = count_changes(project_text, template_text)
    diff = generate_diff(project_text, template_text)
    preview = [
        line.rstrip("\n")
        for line in diff.splitlines(True)
        if line[:1] in "+-" and not line.startswith(("+++", "---"))
    ][:_PREVIEW_LINES]

    return {
        "added": added,
        "removed": removed,
        "preview": preview,
        "diff": diff,
    }


def preview_text_merge(base: str, template: str, project: str) -> str:
    """Describe the line-level merge of a diverged text file.

    The merge is never written; this only tells the user whether picking
    ``merge`` and reconciling by hand is likely to be easy.
    """
    merged, has_conflicts = attempt_merge(base, project, template)
    if not has_conflicts:
        return "Clean merge possible: project and template edits do not overlap."

    conflict_lines = merged.count(START_MARKER)
    lines = [f"Merge has {conflict_lines} conflicting region(s):", ""]
    preview = merged.splitlines()
    lines.extend(f"  {line}" for line in preview[:20])
    if len(preview) > 20:
        lines.append(f"  ... ({len(preview) - 20} more lines)")
    return "\n".join(lines)


def _read_or_empty(path: Path) -> str:
    if not path.is_file():
        return ""
    content, _ = read_file_with_encoding(path)
    return content


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def plan_to_json(plan: SyncPlan) -> dict:
    """Convert a plan to a structured dict for JSON serialisation."""
    return {
        "counts": {
            action.value: sum(1 for d in plan.decisions if d.action == action)
            for action in SyncAction
        },
        "decisions": [d.model_dump(mode="json") for d in plan.decisions],
        "needs_review": [d.path for d in plan.needs_review],
        "merge_results": {
            path: result.model_dump(mode="json")
            for path, result in sorted(plan.merge_results.items())
        },
        "expanded_template_paths": plan.expanded_template_paths,
        "errors": plan.errors,
    }


def report_to_json(report: ExecutionReport) -> dict:
    """Convert an execution report to a structured dict."""
    data = report.model_dump(mode="json")
    data["counts"] = {
        "copied": len(report.copied),
        "deleted": len(report.deleted),
        "merged": len(report.merged),
        "skipped": len(report.skipped),
        "kept": len(report.kept),
        "conflicts": len(report.conflicts),
        "errors": len(report.errors),
    }
    return data
