"""Sync result formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_result`` -- post-sync summary.
- ``format_preview`` -- per-branch preview of what a sync would apply.
- ``result_to_json`` -- structured dict for MCP tool output.
- ``preview_to_json`` -- structured dict for preview tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BranchDiff, SyncResult

from .models import FileStatus

_STATUS_MARKS = {
    FileStatus.ADDED: "A",
    FileStatus.MODIFIED: "M",
    FileStatus.DELETED: "D",
    FileStatus.RENAMED: "R",
}

# Preview lists stop after this many files per branch
_MAX_LISTED_FILES = 50

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_result(result: SyncResult) -> str:
    """Format a sync result as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        result: The aggregate result of one sync call.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    status = "succeeded" if result.success else "FAILED"
    lines.append(
        f"Sync of '{result.repository_id}' ({result.sync_direction.value}) {status}"
    )
    lines.append(f"At: {result.timestamp.isoformat()}")
    lines.append("")

    changes = result.changes
    lines.append(
        f"Changes: {changes.added} added, {changes.modified} modified, "
        f"{changes.deleted} deleted; {len(result.commits)} commits"
    )
    lines.append("")

    if len(result.branches) > 1:
        lines.append("Branches:")
        for branch in result.branches:
            mark = "ok" if branch.success else "failed"
            lines.append(
                f"  {branch.branch}: {mark} "
                f"(+{branch.changes.added} ~{branch.changes.modified} -{branch.changes.deleted})"
            )
        lines.append("")

    if result.commits:
        lines.append("Commits:")
        for commit in result.commits:
            lines.append(f"  {commit.hash[:10]} {commit.message} ({commit.author})")
        lines.append("")

    if result.conflicts:
        lines.append("Conflicts:")
        for conflict in result.conflicts:
            where = f"[{conflict.branch}] " if conflict.branch else ""
            lines.append(f"  {where}{conflict.file}: {conflict.description}")
        lines.append("")

    if result.errors:
        lines.append("Errors:")
        for error in result.errors:
            lines.append(f"  {error}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Preview
# ------------------------------------------------------------------


def format_preview(repository_id: str, previews: list[BranchDiff]) -> str:
    """Format a preview grouped by branch.

    Each file is shown as ``<mark> path (+adds -dels)``.
    """
    lines: list[str] = []
    lines.append("PREVIEW -- No changes will be made")
    lines.append(f"Repository: {repository_id}")
    lines.append("")

    for preview in previews:
        diff = preview.diff
        lines.append(
            f"[{preview.branch}] {len(diff.files)} files, {len(diff.commits)} commits"
        )
        for change in diff.files[:_MAX_LISTED_FILES]:
            path = change.path
            if change.old_path:
                path = f"{change.old_path} -> {change.path}"
            lines.append(
                f"  {_STATUS_MARKS[change.status]} {path} "
                f"(+{change.additions} -{change.deletions})"
            )
        if len(diff.files) > _MAX_LISTED_FILES:
            lines.append(f"  ... ({len(diff.files) - _MAX_LISTED_FILES} more files)")
        lines.append("")

    if all(p.diff.is_empty for p in previews):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: SyncResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.
    """
    data = result.model_dump(mode="json")
    data["counts"] = {
        "total": result.changes.total,
        "commits": len(result.commits),
        "conflicts": len(result.conflicts),
        "errors": len(result.errors),
    }
    return data


def preview_to_json(repository_id: str, previews: list[BranchDiff]) -> dict:
    return {
        "repository_id": repository_id,
        "branches": [
            {
                **p.model_dump(mode="json"),
                "changes": p.diff.summary().model_dump(),
            }
            for p in previews
        ],
    }
