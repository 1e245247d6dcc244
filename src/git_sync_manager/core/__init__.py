"""Runtime helpers shared by the sync engine, scheduler and MCP server."""

from .async_utils import run_sync, run_sync_limited

__all__ = ["run_sync", "run_sync_limited"]
