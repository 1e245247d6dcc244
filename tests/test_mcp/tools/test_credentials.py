"""Tests for the credentials_validate tool handler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from git_sync_manager.engine.models import CredentialCheck, CredentialKind
from git_sync_manager.mcp.tools import CREDENTIAL_SPECS, ToolRegistry

URL = "https://dev.example.com/org/_git/repo"


@pytest.fixture
def context():
    ctx = MagicMock()
    ctx.service.validate_credentials = AsyncMock(
        return_value=CredentialCheck(valid=True, message="Credentials are valid")
    )
    ctx.store.get_credential.return_value = None
    return ctx


@pytest.fixture
def registry():
    return ToolRegistry(CREDENTIAL_SPECS)


class TestCredentialsValidate:
    async def test_explicit_username_and_token(self, registry, context):
        result = await registry.call_tool(
            "credentials_validate",
            {"url": URL, "username": "bot", "token": "t0k", "kind": "system-b"},
            context,
        )

        assert not result.isError
        assert result.content[0].text == "Credentials are valid"
        assert result.structuredContent == {"valid": True, "message": "Credentials are valid"}
        context.service.validate_credentials.assert_awaited_once_with(
            URL, "bot", "t0k", CredentialKind.SYSTEM_B
        )

    async def test_stored_credential(self, registry, context, credential_factory):
        context.store.get_credential.return_value = credential_factory("cred-b", CredentialKind.SYSTEM_B)

        await registry.call_tool(
            "credentials_validate", {"url": URL, "credential_id": "cred-b"}, context
        )

        context.store.get_credential.assert_called_once_with("cred-b")
        context.service.validate_credentials.assert_awaited_once_with(
            URL, "sync-bot", "s3cr3t-token", CredentialKind.SYSTEM_B
        )

    async def test_unknown_stored_credential(self, registry, context):
        result = await registry.call_tool(
            "credentials_validate", {"url": URL, "credential_id": "nope"}, context
        )

        assert result.isError
        assert "Error (not_found): Credential not found: nope" in result.content[0].text

    async def test_rejected_credentials_are_an_error(self, registry, context):
        context.service.validate_credentials.return_value = CredentialCheck(
            valid=False, message="Invalid credentials: Authentication failed"
        )

        result = await registry.call_tool(
            "credentials_validate", {"url": URL, "username": "bot", "token": "bad"}, context
        )

        assert result.isError
        assert result.content[0].text == "Invalid credentials: Authentication failed"
        assert context.service.validate_credentials.await_args[0][3] == CredentialKind.SYSTEM_A

    @pytest.mark.parametrize(
        "args, message",
        [
            ({}, "url is required"),
            ({"url": "ftp://h/r.git", "username": "u", "token": "t"}, "Remote URL must use one of"),
            ({"url": URL, "username": "u"}, "Provide credential_id, or both username and token"),
            ({"url": URL, "username": "u", "token": "t", "kind": "system-c"}, "system-c"),
        ],
    )
    async def test_invalid_arguments(self, registry, context, args, message):
        result = await registry.call_tool("credentials_validate", args, context)

        assert result.isError
        assert "Error (validation_error):" in result.content[0].text
        assert message in result.content[0].text
        context.service.validate_credentials.assert_not_called()
