"""Tests for the repo_sync and repo_sync_preview tool handlers.

Covers:
- Tool definitions have valid schemas and annotations
- Several repositories are synced and reported together
- A failed repository marks the whole response as an error
- Id validation happens before any sync starts
- Preview output and engine error translation through the registry
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import mcp.types as types
import pytest

from git_sync_manager.engine.errors import CloneError
from git_sync_manager.engine.models import (
    BranchDiff,
    ChangeSummary,
    FileChange,
    FileStatus,
    SyncDiff,
    SyncDirection,
    SyncResult,
)
from git_sync_manager.mcp.tools import SYNC_SPECS, ToolRegistry
from git_sync_manager.mcp.tools.sync import SYNC_TOOLS

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(repository_id: str, success: bool = True) -> SyncResult:
    if success:
        return SyncResult(
            success=True,
            repository_id=repository_id,
            sync_direction=SyncDirection.A_TO_B,
            changes=ChangeSummary(added=1),
        )
    return SyncResult.failure(repository_id, SyncDirection.A_TO_B, "push rejected")


@pytest.fixture
def context():
    ctx = MagicMock()
    ctx.service.sync_repository = AsyncMock(side_effect=lambda rid: _result(rid))
    ctx.service.preview_repository = AsyncMock()
    return ctx


@pytest.fixture
def registry():
    return ToolRegistry(SYNC_SPECS)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class TestSyncToolDefinitions:
    def test_names(self):
        assert [t.name for t in SYNC_TOOLS] == ["repo_sync", "repo_sync_preview"]

    def test_required_parameters(self):
        schemas = {t.name: t.inputSchema for t in SYNC_TOOLS}
        assert schemas["repo_sync"]["required"] == ["repository_ids"]
        assert schemas["repo_sync_preview"]["required"] == ["repository_id"]

    def test_preview_is_read_only(self):
        preview = SYNC_TOOLS[1]
        assert preview.annotations.readOnlyHint is True
        assert SYNC_TOOLS[0].annotations.destructiveHint is True


# ---------------------------------------------------------------------------
# repo_sync
# ---------------------------------------------------------------------------


class TestRepoSync:
    async def test_syncs_every_repository(self, registry, context):
        result = await registry.call_tool(
            "repo_sync", {"repository_ids": ["repo-1", "repo-2"]}, context
        )

        assert isinstance(result, types.CallToolResult)
        assert not result.isError
        assert [c.args[0] for c in context.service.sync_repository.call_args_list] == [
            "repo-1",
            "repo-2",
        ]
        assert result.structuredContent["success"] is True
        assert [r["repository_id"] for r in result.structuredContent["results"]] == [
            "repo-1",
            "repo-2",
        ]
        assert "Sync of 'repo-1' (a-to-b) succeeded" in result.content[0].text

    async def test_failed_repository_marks_error(self, registry, context):
        context.service.sync_repository = AsyncMock(
            side_effect=lambda rid: _result(rid, success=rid != "repo-2")
        )

        result = await registry.call_tool(
            "repo_sync", {"repository_ids": ["repo-1", "repo-2"]}, context
        )

        assert result.isError
        assert result.structuredContent["success"] is False
        assert "push rejected" in result.content[0].text

    @pytest.mark.parametrize(
        "args",
        [{}, {"repository_ids": []}, {"repository_ids": "repo-1"}, {"repository_ids": ["../x"]}],
    )
    async def test_invalid_ids_rejected_before_sync(self, registry, context, args):
        result = await registry.call_tool("repo_sync", args, context)

        assert result.isError
        assert result.content[0].text.startswith("Error (validation_error):")
        context.service.sync_repository.assert_not_called()


# ---------------------------------------------------------------------------
# repo_sync_preview
# ---------------------------------------------------------------------------


class TestRepoSyncPreview:
    async def test_preview_output(self, registry, context):
        diff = SyncDiff(files=[FileChange(path="new.txt", status=FileStatus.ADDED, additions=2)])
        context.service.preview_repository.return_value = [BranchDiff(branch="main", diff=diff)]

        result = await registry.call_tool("repo_sync_preview", {"repository_id": "repo-1"}, context)

        assert not result.isError
        assert "  A new.txt (+2 -0)" in result.content[0].text
        assert result.structuredContent["branches"][0]["changes"]["added"] == 1
        context.service.preview_repository.assert_awaited_once_with("repo-1")

    async def test_engine_error_translated(self, registry, context):
        context.service.preview_repository.side_effect = CloneError(
            "Failed to clone: Remote branch nope not found"
        )

        result = await registry.call_tool("repo_sync_preview", {"repository_id": "repo-1"}, context)

        assert result.isError
        assert result.content[0].text.startswith("Error (clone_error): Failed to clone")

    async def test_missing_id(self, registry, context):
        result = await registry.call_tool("repo_sync_preview", {}, context)
        assert "repository_id is required" in result.content[0].text
