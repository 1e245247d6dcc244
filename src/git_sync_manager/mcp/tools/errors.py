"""Error response builders and shared utilities for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover without human intervention.
"""

from datetime import datetime

import mcp.types as types

from ...engine.errors import ConflictsUnresolved, SyncError
from ...engine.models import ErrorKind


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error, auth_error,
            conflicts, timeout, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Repository r1 not found", "Check the repository id.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def format_timestamp(timestamp: datetime | None) -> str:
    """Format timestamp for display (YYYY-MM-DD HH:MM UTC), or 'never'."""
    if timestamp is None:
        return "never"
    return timestamp.strftime("%Y-%m-%d %H:%M %Z").strip()


# ---------------------------------------------------------------------------
# Engine error translation
# ---------------------------------------------------------------------------

_KIND_RESPONSES: dict[ErrorKind, tuple[str, str]] = {
    ErrorKind.AUTH: (
        "auth_error",
        "Check the credential with credentials_validate and rotate the token if needed.",
    ),
    ErrorKind.CLONE: (
        "clone_error",
        "Check the source URL and that the branch exists on the source remote.",
    ),
    ErrorKind.FETCH: (
        "fetch_error",
        "Check the target URL and network access to the target remote.",
    ),
    ErrorKind.PUSH: (
        "push_error",
        "Check branch protection rules and write access on the target remote.",
    ),
    ErrorKind.PULL: (
        "pull_error",
        "Preview the repository with repo_sync_preview, then retry.",
    ),
    ErrorKind.CONFLICTS_UNRESOLVED: (
        "conflicts",
        "Resolve the listed files manually or switch the conflict policy, then retry.",
    ),
    ErrorKind.TIMEOUT: (
        "timeout",
        "Retry later or raise GIT_SYNC_SYNC_TIMEOUT / GIT_SYNC_GIT_TIMEOUT.",
    ),
    ErrorKind.CANCELLED: (
        "cancelled",
        "Retry the operation.",
    ),
}


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate an engine error into a structured error response."""
    error_type, action = _KIND_RESPONSES.get(
        error.kind, ("server_error", "Check the server log and retry later.")
    )
    message = str(error)
    if isinstance(error, ConflictsUnresolved) and error.conflicts:
        files = ", ".join(c.file for c in error.conflicts)
        message = f"{message} Files: {files}"
    return build_error_response(error_type, message, action)
