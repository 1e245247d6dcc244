"""MCP tool handlers for git-sync-manager.

This package wraps the sync service and scheduler with async handlers,
text reports and structured error responses.
"""

from .credentials import CREDENTIAL_SPECS
from .errors import build_error_response, translate_sync_error
from .registry import KNOWN_PERMISSIONS, ToolRegistry, ToolSpec, load_permissions_file
from .scheduler import SCHEDULER_SPECS
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = SYNC_SPECS + CREDENTIAL_SPECS + SCHEDULER_SPECS

__all__ = [
    "build_error_response",
    "translate_sync_error",
    # Registry
    "KNOWN_PERMISSIONS",
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "SYNC_TOOLS",
    "CREDENTIAL_SPECS",
    "SCHEDULER_SPECS",
]
