"""Configuration store contract used by the engine and the scheduler.

Reads return frozen models; writes touch only the record they name, so a
scheduler update and an interactive update of different records never
clobber each other. Concurrent writes to the *same* record are
last-write-wins.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..engine.models import (
        Credential,
        RepositoryConfig,
        ScheduledJob,
        SyncLogEntry,
        SyncStatus,
    )


class StoreError(Exception):
    """The store could not be read or written, or a record is inconsistent."""


class ConfigStore(Protocol):
    """Protocol that every configuration store must satisfy."""

    def get_repository(self, repository_id: str) -> RepositoryConfig | None:
        """Return the repository with its credentials resolved, or ``None``.

        Raises:
            StoreError: If a referenced credential is missing or unreadable.
        """
        ...  # pragma: no cover

    def get_credential(self, credential_id: str) -> Credential | None: ...  # pragma: no cover

    def list_jobs(self) -> list[ScheduledJob]: ...  # pragma: no cover

    def get_job(self, job_id: str) -> ScheduledJob | None: ...  # pragma: no cover

    def update_repository_status(
        self,
        repository_id: str,
        last_sync_at: datetime | None,
        last_sync_status: SyncStatus,
    ) -> None: ...  # pragma: no cover

    def update_job_run(
        self,
        job_id: str,
        *,
        last_run_at: datetime | None = None,
        next_run_at: datetime | None = None,
        last_run_status: SyncStatus | None = None,
        increment_run_count: bool = False,
    ) -> None:
        """Update only the given fields of one job; ``None`` leaves a field as is."""
        ...  # pragma: no cover

    def append_sync_log(self, entry: SyncLogEntry) -> None: ...  # pragma: no cover

    def save_credential(self, credential: Credential) -> None: ...  # pragma: no cover

    def save_repository(self, repository: RepositoryConfig) -> None: ...  # pragma: no cover

    def save_job(self, job: ScheduledJob) -> None: ...  # pragma: no cover

    def delete_job(self, job_id: str) -> bool: ...  # pragma: no cover
