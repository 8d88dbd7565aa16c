"""Line-level three-way merge and diff helpers.

Uses ``merge3`` (the Bazaar/Breezy merge algorithm) to tell the user
whether a diverged text file could be merged cleanly, and ``difflib`` for
unified diffs in reports.  Nothing here writes to disk; a text merge is
only ever a preview; applying it stays the caller's decision.

Conflict markers follow Git convention, labelled by side:
``<<<<<<< PROJECT``, ``=======``, ``>>>>>>> TEMPLATE``.
"""

from __future__ import annotations

import difflib

from merge3 import Merge3

START_MARKER = "<<<<<<< PROJECT"
MID_MARKER = "======="
END_MARKER = ">>>>>>> TEMPLATE"


def attempt_merge(
    base_content: str,
    project_content: str,
    template_content: str,
) -> tuple[str, bool]:
    """Three-way merge project and template edits against a base.

    Args:
        base_content: Template content at the last sync.
        project_content: Current project file content.
        template_content: Current template file content.

    Returns:
        ``(merged_text, has_conflicts)``.  *merged_text* may contain
        conflict markers when *has_conflicts* is ``True``.
    """
    m3 = Merge3(
        base_content.splitlines(True),
        project_content.splitlines(True),
        template_content.splitlines(True),
    )

    merged_text = "".join(
        m3.merge_lines(
            name_a="PROJECT",
            name_b="TEMPLATE",
            start_marker="<<<<<<<",
            mid_marker=MID_MARKER,
            end_marker=">>>>>>>",
        )
    )
    has_conflicts = any(
        region[0] == "conflict" for region in m3.merge_regions()
    )

    return merged_text, has_conflicts


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "project",
    label_new: str = "template",
) -> str:
    """Unified diff between two strings; empty when they are identical."""
    return "".join(
        difflib.unified_diff(
            old_content.splitlines(True),
            new_content.splitlines(True),
            fromfile=label_old,
            tofile=label_new,
        )
    )


def count_changes(old_content: str, new_content: str) -> tuple[int, int]:
    """Return ``(added, removed)`` line counts between two strings."""
    added = removed = 0
    for line in difflib.ndiff(
        old_content.splitlines(), new_content.splitlines()
    ):
        if line.startswith("+ "):
            added += 1
        elif line.startswith("- "):
            removed += 1
    return added, removed
