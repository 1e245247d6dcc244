"""MCP tool handlers for repository sync.

Defines two tools:

- ``repo_sync`` -- sync one or more stored repositories now.
- ``repo_sync_preview`` -- show what a sync would change, without pushing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import gather_limited
from ...engine.reporter import (
    format_preview,
    format_sync_result,
    preview_to_json,
    result_to_json,
)
from ...validators import validate_record_id
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import AppContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="repo_sync",
        description=(
            "Synchronize the configured branch pairs of one or more repositories "
            "between their two remotes, applying each repository's sync direction "
            "and conflict policy. Several repositories are synced concurrently."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "repository_ids": {
                    "type": "array",
                    "items": {"type": "string"},
                    "minItems": 1,
                    "description": "Ids of the repositories to sync",
                },
            },
            "required": ["repository_ids"],
        },
    ),
    types.Tool(
        name="repo_sync_preview",
        description=(
            "Preview a repository sync: files and commits each branch pair would "
            "bring to the target. Never pushes or pulls."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "repository_id": {
                    "type": "string",
                    "description": "Id of the repository to preview",
                },
            },
            "required": ["repository_id"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _check_id(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{key} is required and must be a string")
    is_valid, error = validate_record_id(value, key)
    if not is_valid:
        raise ValueError(error)
    return value


async def _handle_repo_sync(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``repo_sync`` tool."""
    repository_ids = args.get("repository_ids")
    if not isinstance(repository_ids, list) or not repository_ids:
        raise ValueError("repository_ids must be a non-empty list of ids")
    for repository_id in repository_ids:
        _check_id(repository_id, "repository_id")

    results = await gather_limited(
        [context.service.sync_repository(rid) for rid in repository_ids]
    )

    text = "\n\n".join(format_sync_result(r) for r in results)
    structured = {
        "success": all(r.success for r in results),
        "results": [result_to_json(r) for r in results],
    }
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
        isError=not structured["success"],
    )


async def _handle_repo_sync_preview(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``repo_sync_preview`` tool."""
    repository_id = _check_id(args.get("repository_id"), "repository_id")
    previews = await context.service.preview_repository(repository_id)
    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_preview(repository_id, previews))
        ],
        structuredContent=preview_to_json(repository_id, previews),
    )


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({"SYNC_RUN"}),
        handler=_handle_repo_sync,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({"SYNC_VIEW"}),
        handler=_handle_repo_sync_preview,
    ),
]
