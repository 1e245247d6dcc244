"""MCP Server for git-sync-manager using stdio transport.

This module implements the Model Context Protocol server that lets AI agents
run and preview branch syncs between paired remotes, check credentials and
manage scheduled sync jobs.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config
from ..core.async_utils import busy_slots, run_sync
from ..logger import setup_logging
from .lifespan import AppContext, server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("git-sync-manager")

# Global context (initialized in lifespan)
_context: AppContext | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available)
# ---------------------------------------------------------------------------


async def _handle_ping(context: AppContext, args: dict) -> types.CallToolResult:
    """Handle ping tool -- report server version and store state."""
    try:
        jobs = await run_sync(context.store.list_jobs)
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Store {context.config.store_path} unreadable: {e}",
                )
            ],
            isError=True,
        )
    scheduler = context.scheduler
    text = (
        f"git-sync-manager {__version__} ready. "
        f"Store: {context.config.store_path}; "
        f"scheduler {'running' if scheduler.is_running else 'stopped'} "
        f"with {len(scheduler.active_job_ids())} of {len(jobs)} jobs armed; "
        f"{busy_slots()} syncs running."
    )
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Check that git-sync-manager is up and its store is readable",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> AppContext:
    """Get the global AppContext.

    Raises:
        RuntimeError: If the context is not initialized
    """
    if _context is None:
        raise RuntimeError("AppContext not initialized. Server lifespan not started.")
    return _context


def set_context(context: AppContext | None) -> None:
    global _context
    _context = context


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(name: str, arguments: dict | None) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    context = get_context()
    try:
        return await get_registry().call_tool(name, arguments, context)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info("Registered %d tools (of %d total)", registry.tool_count(), len(all_specs))

    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging goes to a file only, never stdout, because stdout carries the
    JSON-RPC stream.
    """
    overrides = config_overrides or {}
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    set_registry(build_registry(overrides.get("permissions_file")))

    # set_context() is called here rather than in the lifespan so that running
    # via `python -m git_sync_manager.mcp.server` updates this module's global
    # and not a second copy imported under the package name.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_context(ctx)
        try:
            async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
                init_options = InitializationOptions(
                    server_name="git-sync-manager",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="git-sync-manager - keep branches of paired git remotes in sync (MCP server)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .git_sync/config.yml)
  git-sync-manager

  # Use a different store and working-copy root
  git-sync-manager --store-path /srv/git-sync/storage.json --temp-dir /srv/git-sync/work

  # Serve tools without arming scheduled jobs
  git-sync-manager --no-scheduler

  # Restrict tools by permission
  git-sync-manager --permissions-file /etc/git-sync/read-only.permissions

  # Write a starter config file and exit
  git-sync-manager --init-config

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )

    parser.add_argument(
        "--temp-dir",
        help="Root directory for working copies (overrides GIT_SYNC_TEMP_DIR and config files)",
    )
    parser.add_argument(
        "--store-path",
        help="JSON store file (overrides GIT_SYNC_STORE_PATH and config files)",
    )
    parser.add_argument(
        "--log-file",
        default="/tmp/git-sync-manager.log",
        help="Log file path (default: /tmp/git-sync-manager.log)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (e.g., SYNC_VIEW), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not arm scheduled jobs at startup",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a starter .git_sync/config.yml if no config file exists, then exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"git-sync-manager version {__version__}",
    )

    args = parser.parse_args()

    if args.init_config:
        path = ensure_config()
        print(f"Config file: {Path(path)}", file=sys.stderr)
        return

    config_overrides = {}
    if args.temp_dir:
        config_overrides["temp_dir"] = args.temp_dir
    if args.store_path:
        config_overrides["store_path"] = args.store_path
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file
    if args.no_scheduler:
        config_overrides["no_scheduler"] = True
    if args.debug:
        config_overrides["debug"] = True

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
