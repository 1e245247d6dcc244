"""Store-aware entry points used by the scheduler and the MCP tools.

``SyncService`` looks repositories up by id, runs the orchestrator on the
worker pool and records the outcome: ``last_sync_at``/``last_sync_status``
on the repository plus one ``SyncLogEntry`` per sync.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from ..core.async_utils import run_sync
from ..store.base import ConfigStore, StoreError
from .models import (
    BranchDiff,
    CredentialCheck,
    CredentialKind,
    ErrorKind,
    RepositoryConfig,
    SyncDirection,
    SyncLogEntry,
    SyncResult,
    SyncStatus,
    utc_now,
)
from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class RepositoryNotFoundError(LookupError):
    """No repository with the requested id exists in the store."""


class SyncService:
    """Run syncs and previews for repositories held in a ``ConfigStore``.

    Args:
        store: Configuration store.
        orchestrator: Engine that performs the git work.
    """

    def __init__(self, store: ConfigStore, orchestrator: SyncOrchestrator) -> None:
        self.store = store
        self.orchestrator = orchestrator

    async def _load(self, repository_id: str) -> RepositoryConfig:
        config = await run_sync(self.store.get_repository, repository_id)
        if config is None:
            raise RepositoryNotFoundError(f"Repository not found: {repository_id}")
        return config

    async def sync_repository(self, repository_id: str) -> SyncResult:
        """Sync one stored repository. Failures come back as a failed result."""
        started_at = utc_now()
        try:
            config = await self._load(repository_id)
        except (RepositoryNotFoundError, StoreError) as exc:
            logger.error("Cannot sync %s: %s", repository_id, exc)
            return SyncResult.failure(
                repository_id, SyncDirection.A_TO_B, str(exc), ErrorKind.UNKNOWN
            )

        await run_sync(
            self.store.update_repository_status,
            repository_id,
            None,
            SyncStatus.IN_PROGRESS,
        )
        try:
            result = await self.orchestrator.async_perform_sync(config)
        except asyncio.CancelledError:
            result = SyncResult.failure(
                repository_id, config.sync_direction, "Sync cancelled", ErrorKind.CANCELLED
            )
            await self._record(config, started_at, result)
            raise
        await self._record(config, started_at, result)
        return result

    async def _record(
        self, config: RepositoryConfig, started_at: datetime, result: SyncResult
    ) -> None:
        status = SyncStatus.SUCCESS if result.success else SyncStatus.FAILED
        completed_at = utc_now()
        await run_sync(
            self.store.update_repository_status, config.id, completed_at, status
        )
        entry = SyncLogEntry(
            id=uuid.uuid4().hex,
            repository_id=config.id,
            status=status,
            started_at=started_at,
            completed_at=completed_at,
            message=_log_message(config, result),
            error=result.error,
            changes=result.changes,
            commits=result.commits,
            conflicts=result.conflicts,
        )
        await run_sync(self.store.append_sync_log, entry)

    async def preview_repository(self, repository_id: str) -> list[BranchDiff]:
        """Preview one stored repository.

        Raises:
            RepositoryNotFoundError: Unknown id.
            StoreError: The repository record or its credentials are unusable.
            SyncError: Setup or diff failed.
        """
        config = await self._load(repository_id)
        return await self.orchestrator.async_preview_sync(config)

    async def validate_credentials(
        self,
        url: str,
        username: str,
        token: str,
        kind: CredentialKind | str = CredentialKind.SYSTEM_A,
    ) -> CredentialCheck:
        return await self.orchestrator.async_validate_credentials(
            url, username, token, kind
        )


def _log_message(config: RepositoryConfig, result: SyncResult) -> str:
    if result.error_kind == ErrorKind.CANCELLED:
        return f"Sync of {config.name} cancelled"
    if not result.success:
        return f"Sync of {config.name} failed"
    changes = result.changes
    return (
        f"Synced {config.name}: {changes.added} added, {changes.modified} modified, "
        f"{changes.deleted} deleted"
    )
