"""JSON-file configuration store.

A single document holds every record::

    {
      "credentials":    [...],
      "repositories":   [...],
      "scheduled_jobs": [...],
      "sync_logs":      [...]
    }

Key design choices:

* **Atomic writes** -- every write goes to a temp file in the same
  directory and is moved into place with ``os.replace()``.
* **Targeted updates** -- each write re-reads the file under a lock and
  rewrites only the record it names.
* **Migrations on load** -- legacy job and repository shapes are upgraded
  in memory and written back once.
* **Secrets** -- with a ``SecretBox`` configured, credential tokens are
  encrypted before they reach the disk.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from ..engine.models import (
    Credential,
    RepositoryConfig,
    ScheduledJob,
    SyncLogEntry,
    SyncStatus,
)
from .base import StoreError
from .secrets import SecretBox, SecretError

logger = logging.getLogger(__name__)

DEFAULT_CRON_EXPRESSION = "0 0 * * *"
DEFAULT_MAX_SYNC_LOGS = 500

_SECTIONS = ("credentials", "repositories", "scheduled_jobs", "sync_logs")

_LEGACY_DIRECTIONS = {
    "tfs-to-github": "a-to-b",
    "github-to-tfs": "b-to-a",
}
_LEGACY_KINDS = {
    "tfs": "system-a",
    "github": "system-b",
}


# ------------------------------------------------------------------
# Migrations
# ------------------------------------------------------------------


def migrate_job(job: dict) -> bool:
    """Upgrade one job record in place. Returns whether anything changed."""
    changed = False
    job_id = job.get("id")

    if "repository_id" in job and not job.get("repository_ids"):
        logger.info("Migrating job %s: repository_id -> repository_ids", job_id)
        job["repository_ids"] = [job.pop("repository_id")]
        changed = True
    elif "repository_id" in job:
        job.pop("repository_id")
        changed = True

    if not isinstance(job.get("repository_ids"), list):
        job["repository_ids"] = []
        changed = True

    if job.get("schedule") and not job.get("cron_expression"):
        logger.info("Migrating job %s: schedule -> cron_expression", job_id)
        job["cron_expression"] = job.pop("schedule")
        changed = True

    if not job.get("cron_expression"):
        logger.info("Setting default cron expression for job %s", job_id)
        job["cron_expression"] = DEFAULT_CRON_EXPRESSION
        changed = True

    return changed


def migrate_repository(repo: dict) -> bool:
    """Upgrade one repository record in place. Returns whether anything changed."""
    changed = False
    legacy_branch = repo.pop("branch", None) or repo.pop("source_branch", None)
    repo.pop("target_branch", None)
    if not repo.get("branch_pairs"):
        if legacy_branch:
            logger.info(
                "Migrating repository %s: single branch -> branch_pairs",
                repo.get("id"),
            )
            repo["branch_pairs"] = [{"name": legacy_branch}]
            changed = True
    elif legacy_branch:
        changed = True

    direction = repo.get("sync_direction")
    if direction in _LEGACY_DIRECTIONS:
        repo["sync_direction"] = _LEGACY_DIRECTIONS[direction]
        changed = True
    return changed


def migrate_credential(credential: dict) -> bool:
    if "kind" not in credential and credential.get("type") in _LEGACY_KINDS:
        credential["kind"] = _LEGACY_KINDS[credential.pop("type")]
        return True
    return False


def migrate_document(data: dict) -> bool:
    """Apply every migration to a loaded document. Returns whether anything changed."""
    changed = False
    for section in _SECTIONS:
        if not isinstance(data.get(section), list):
            data[section] = []
            changed = True
    for job in data["scheduled_jobs"]:
        changed = migrate_job(job) or changed
    for repo in data["repositories"]:
        changed = migrate_repository(repo) or changed
    for credential in data["credentials"]:
        changed = migrate_credential(credential) or changed
    return changed


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------


class JsonFileStore:
    """``ConfigStore`` backed by one JSON file.

    Args:
        path: Location of the JSON document. Created on first write.
        secret_box: Encrypts credential tokens at rest when given.
        max_sync_logs: Oldest sync log entries beyond this count are dropped.
    """

    def __init__(
        self,
        path: Path,
        secret_box: SecretBox | None = None,
        max_sync_logs: int = DEFAULT_MAX_SYNC_LOGS,
    ) -> None:
        self.path = Path(path)
        self._secret_box = secret_box
        self.max_sync_logs = max_sync_logs
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"JsonFileStore({str(self.path)!r})"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict:
        if not self.path.exists():
            return {section: [] for section in _SECTIONS}
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Failed to read store {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"Store {self.path} does not contain a JSON object")
        if migrate_document(data):
            logger.info("Saving migrated store %s", self.path)
            self._save(data)
        return data

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    @staticmethod
    def _find(records: list[dict], record_id: str) -> dict | None:
        for record in records:
            if record.get("id") == record_id:
                return record
        return None

    @staticmethod
    def _upsert(records: list[dict], record: dict) -> None:
        for i, existing in enumerate(records):
            if existing.get("id") == record["id"]:
                records[i] = record
                return
        records.append(record)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _credential_from_record(self, record: dict) -> Credential:
        token = record.get("token", "")
        if SecretBox.is_encrypted(token):
            if self._secret_box is None:
                raise StoreError(
                    f"Credential {record.get('id')} is encrypted but no encryption key is configured"
                )
            try:
                token = self._secret_box.decrypt(token)
            except SecretError as exc:
                raise StoreError(f"Credential {record.get('id')}: {exc}") from None
        try:
            return Credential.model_validate({**record, "token": token})
        except ValidationError as exc:
            raise StoreError(f"Invalid credential record {record.get('id')}: {exc}") from None

    def get_credential(self, credential_id: str) -> Credential | None:
        with self._lock:
            record = self._find(self._load()["credentials"], credential_id)
        if record is None:
            return None
        return self._credential_from_record(record)

    def save_credential(self, credential: Credential) -> None:
        record = credential.model_dump(mode="json")
        if self._secret_box is not None:
            try:
                record["token"] = self._secret_box.encrypt(credential.token)
            except SecretError as exc:
                raise StoreError(str(exc)) from None
        with self._lock:
            data = self._load()
            self._upsert(data["credentials"], record)
            self._save(data)
        logger.debug("Saved credential %s", credential.id)

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def get_repository(self, repository_id: str) -> RepositoryConfig | None:
        with self._lock:
            data = self._load()
        record = self._find(data["repositories"], repository_id)
        if record is None:
            return None

        credentials = {}
        for role in ("source", "target"):
            credential_id = record.get(f"{role}_credential_id")
            cred_record = self._find(data["credentials"], credential_id or "")
            if cred_record is None:
                raise StoreError(
                    f"Repository {repository_id}: {role} credential '{credential_id}' not found"
                )
            credentials[f"{role}_credential"] = self._credential_from_record(cred_record)

        fields = {
            k: v
            for k, v in record.items()
            if k not in ("source_credential_id", "target_credential_id", "created_at")
        }
        try:
            return RepositoryConfig.model_validate({**fields, **credentials})
        except ValidationError as exc:
            raise StoreError(f"Invalid repository record {repository_id}: {exc}") from None

    def save_repository(self, repository: RepositoryConfig) -> None:
        """Persist *repository*, storing its credentials by id only.

        The referenced credentials must already be saved.
        """
        record = repository.model_dump(
            mode="json", exclude={"source_credential", "target_credential"}
        )
        record["source_credential_id"] = repository.source_credential.id
        record["target_credential_id"] = repository.target_credential.id
        with self._lock:
            data = self._load()
            self._upsert(data["repositories"], record)
            self._save(data)

    def update_repository_status(
        self,
        repository_id: str,
        last_sync_at: datetime | None,
        last_sync_status: SyncStatus,
    ) -> None:
        with self._lock:
            data = self._load()
            record = self._find(data["repositories"], repository_id)
            if record is None:
                logger.warning(
                    "Cannot update status of unknown repository %s", repository_id
                )
                return
            if last_sync_at is not None:
                record["last_sync_at"] = last_sync_at.isoformat()
            record["last_sync_status"] = SyncStatus(last_sync_status).value
            self._save(data)

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def list_jobs(self) -> list[ScheduledJob]:
        with self._lock:
            records = self._load()["scheduled_jobs"]
        jobs = []
        for record in records:
            try:
                jobs.append(ScheduledJob.model_validate(record))
            except ValidationError as exc:
                logger.error("Skipping invalid job record %s: %s", record.get("id"), exc)
        return jobs

    def get_job(self, job_id: str) -> ScheduledJob | None:
        with self._lock:
            record = self._find(self._load()["scheduled_jobs"], job_id)
        if record is None:
            return None
        try:
            return ScheduledJob.model_validate(record)
        except ValidationError as exc:
            raise StoreError(f"Invalid job record {job_id}: {exc}") from None

    def save_job(self, job: ScheduledJob) -> None:
        with self._lock:
            data = self._load()
            self._upsert(data["scheduled_jobs"], job.model_dump(mode="json"))
            self._save(data)

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            data = self._load()
            before = len(data["scheduled_jobs"])
            data["scheduled_jobs"] = [
                j for j in data["scheduled_jobs"] if j.get("id") != job_id
            ]
            if len(data["scheduled_jobs"]) == before:
                return False
            self._save(data)
        return True

    def update_job_run(
        self,
        job_id: str,
        *,
        last_run_at: datetime | None = None,
        next_run_at: datetime | None = None,
        last_run_status: SyncStatus | None = None,
        increment_run_count: bool = False,
    ) -> None:
        with self._lock:
            data = self._load()
            record = self._find(data["scheduled_jobs"], job_id)
            if record is None:
                logger.warning("Cannot update run info of unknown job %s", job_id)
                return
            if last_run_at is not None:
                record["last_run_at"] = last_run_at.isoformat()
            if next_run_at is not None:
                record["next_run_at"] = next_run_at.isoformat()
            if last_run_status is not None:
                record["last_run_status"] = SyncStatus(last_run_status).value
            if increment_run_count:
                record["run_count"] = int(record.get("run_count") or 0) + 1
            self._save(data)

    # ------------------------------------------------------------------
    # Sync logs
    # ------------------------------------------------------------------

    def append_sync_log(self, entry: SyncLogEntry) -> None:
        with self._lock:
            data = self._load()
            logs = data["sync_logs"]
            logs.append(entry.model_dump(mode="json"))
            if self.max_sync_logs and len(logs) > self.max_sync_logs:
                del logs[: len(logs) - self.max_sync_logs]
            self._save(data)

    def list_sync_logs(
        self, repository_id: str | None = None, limit: int | None = None
    ) -> list[SyncLogEntry]:
        """Return sync logs, newest first."""
        with self._lock:
            records = self._load()["sync_logs"]
        entries = [
            SyncLogEntry.model_validate(r)
            for r in reversed(records)
            if repository_id is None or r.get("repository_id") == repository_id
        ]
        return entries[:limit] if limit else entries
