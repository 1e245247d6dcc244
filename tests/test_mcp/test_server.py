"""Tests for tool registration and routing in the MCP server.

Verifies:
- All tools appear in handle_list_tools with object schemas
- Tool calls route to the correct handler via ToolRegistry
- Unknown or filtered tools return an error response
- ping reports version, store and scheduler state
- build_registry honours a permissions file

Note: Detailed handler behavior is tested in tests/test_mcp/tools/ --
this file only tests the server routing layer.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from git_sync_manager import __version__
from git_sync_manager.mcp.server import (
    PING_SPEC,
    build_registry,
    get_context,
    get_registry,
    handle_call_tool,
    handle_list_tools,
    set_context,
    set_registry,
)
from git_sync_manager.mcp.tools import ALL_SPECS
from git_sync_manager.mcp.tools.registry import ToolRegistry


def _make_context():
    ctx = MagicMock()
    ctx.config.store_path = "/srv/git-sync/storage.json"
    ctx.store.list_jobs.return_value = [MagicMock(), MagicMock()]
    ctx.scheduler.is_running = True
    ctx.scheduler.active_job_ids.return_value = ["job-1"]
    return ctx


class TestGlobalAccessors:
    def teardown_method(self):
        set_context(None)
        set_registry(None)

    def test_context_not_initialized(self):
        with pytest.raises(RuntimeError, match="AppContext not initialized"):
            get_context()

    def test_registry_not_initialized(self):
        with pytest.raises(RuntimeError, match="ToolRegistry not initialized"):
            get_registry()

    def test_set_and_get(self):
        ctx = _make_context()
        registry = ToolRegistry([PING_SPEC])
        set_context(ctx)
        set_registry(registry)

        assert get_context() is ctx
        assert get_registry() is registry


class TestToolRouting:
    """Test tool listing and dispatch through the server handlers."""

    def setup_method(self):
        set_registry(ToolRegistry([PING_SPEC] + ALL_SPECS))
        self.context = _make_context()
        set_context(self.context)

    def teardown_method(self):
        set_context(None)
        set_registry(None)

    def test_all_tools_registered(self):
        tools = asyncio.run(handle_list_tools())
        names = [t.name for t in tools]

        assert names[0] == "ping"
        for name in (
            "repo_sync",
            "repo_sync_preview",
            "credentials_validate",
            "scheduler_status",
            "scheduler_start_job",
            "scheduler_stop_job",
            "scheduler_trigger_job",
            "cron_validate",
            "cron_next_run",
        ):
            assert name in names

    def test_tool_schemas(self):
        for tool in asyncio.run(handle_list_tools()):
            assert tool.inputSchema["type"] == "object"
            assert "properties" in tool.inputSchema
            assert "required" in tool.inputSchema

    def test_ping(self):
        result = asyncio.run(handle_call_tool("ping", {}))

        assert not result.isError
        assert result.content[0].text == (
            f"git-sync-manager {__version__} ready. "
            "Store: /srv/git-sync/storage.json; "
            "scheduler running with 1 of 2 jobs armed; "
            "0 syncs running."
        )

    def test_ping_unreadable_store(self):
        self.context.store.list_jobs.side_effect = OSError("permission denied")

        result = asyncio.run(handle_call_tool("ping", {}))

        assert result.isError
        assert "unreadable: permission denied" in result.content[0].text

    def test_routes_to_handler(self):
        self.context.scheduler.stop_job.return_value = True

        result = asyncio.run(handle_call_tool("scheduler_stop_job", {"job_id": "job-1"}))

        self.context.scheduler.stop_job.assert_called_once_with("job-1")
        assert result.content[0].text == "Job job-1 stopped"

    def test_routes_async_service(self):
        self.context.service.preview_repository = AsyncMock(return_value=[])

        result = asyncio.run(handle_call_tool("repo_sync_preview", {"repository_id": "repo-1"}))

        assert "No changes needed." in result.content[0].text

    def test_unknown_tool(self):
        result = asyncio.run(handle_call_tool("repo_delete", {}))

        assert result.isError
        assert result.content[0].text.startswith("Error (unknown_tool):")
        assert "list_tools" in result.content[0].text


class TestBuildRegistry:
    def test_all_tools_without_permissions_file(self):
        registry = build_registry()
        assert registry.tool_count() == len(ALL_SPECS) + 1

    def test_permissions_file_filters_tools(self, tmp_path, capsys):
        perms = tmp_path / "read-only.permissions"
        perms.write_text("# viewers\nSYNC_VIEW\nSCHEDULER_VIEW\n")

        registry = build_registry(str(perms))

        names = {t.name for t in registry.list_tools()}
        assert names == {
            "ping",
            "repo_sync_preview",
            "scheduler_status",
            "cron_validate",
            "cron_next_run",
        }
        assert "(5 of 10 tools enabled)" in capsys.readouterr().err

    def test_filtered_tool_call_is_unknown(self, tmp_path):
        perms = tmp_path / "view.permissions"
        perms.write_text("SYNC_VIEW\n")
        set_registry(build_registry(str(perms)))
        set_context(_make_context())
        try:
            result = asyncio.run(handle_call_tool("repo_sync", {"repository_ids": ["r"]}))
        finally:
            set_context(None)
            set_registry(None)

        assert result.content[0].text.startswith("Error (unknown_tool):")
