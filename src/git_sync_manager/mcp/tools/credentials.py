"""MCP tool handler for credential checks.

``credentials_validate`` lists the remote's branches with the given
username/token (no clone) and reports whether git accepted them. Either a
stored credential id or an explicit username/token pair may be given.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...engine.models import CredentialKind
from ...validators import validate_remote_url
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import AppContext

logger = logging.getLogger(__name__)


async def _handle_credentials_validate(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``credentials_validate`` tool."""
    url = args.get("url")
    if not isinstance(url, str):
        raise ValueError("url is required")
    is_valid, error = validate_remote_url(url)
    if not is_valid:
        raise ValueError(error)

    credential_id = args.get("credential_id")
    if credential_id:
        credential = await run_sync(context.store.get_credential, credential_id)
        if credential is None:
            raise KeyError(f"Credential not found: {credential_id}")
        username, token, kind = credential.username, credential.token, credential.kind
    else:
        username = args.get("username") or ""
        token = args.get("token") or ""
        kind = CredentialKind(args.get("kind", CredentialKind.SYSTEM_A.value))
        if not username or not token:
            raise ValueError("Provide credential_id, or both username and token")

    check = await context.service.validate_credentials(url, username, token, kind)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=check.message)],
        structuredContent=check.model_dump(mode="json"),
        isError=not check.valid,
    )


CREDENTIAL_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=types.Tool(
            name="credentials_validate",
            description=(
                "Check that a username/token pair can list a remote repository "
                "(no clone is made). Use credential_id for a stored credential."
            ),
            annotations=types.ToolAnnotations(readOnlyHint=True, openWorldHint=True),
            inputSchema={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "Remote repository URL"},
                    "credential_id": {
                        "type": "string",
                        "description": "Stored credential to check",
                    },
                    "username": {"type": "string"},
                    "token": {"type": "string", "description": "Access token or password"},
                    "kind": {
                        "type": "string",
                        "enum": [k.value for k in CredentialKind],
                        "default": CredentialKind.SYSTEM_A.value,
                    },
                },
                "required": ["url"],
            },
        ),
        permissions=frozenset({"CREDENTIAL_CHECK"}),
        handler=_handle_credentials_validate,
    ),
]
