"""Pydantic models for the repository sync engine.

Defines the data contracts shared by the engine, the scheduler, the
configuration store and the MCP tools:

- ``Credential``, ``BranchPair``, ``RepositoryConfig``: sync inputs.
- ``SyncDiff``, ``BranchDiff``: read-only diff snapshots (preview output).
- ``SyncConflict``: a conflicted path found during a pull.
- ``BranchSyncResult``, ``SyncResult``: outcome of one sync call.
- ``ScheduledJob``, ``JobRunReport``: scheduler records.
- ``SyncLogEntry``, ``CredentialCheck``: history and validation records.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CredentialKind(str, Enum):
    """Which hosting system a credential belongs to."""

    SYSTEM_A = "system-a"
    SYSTEM_B = "system-b"


class SyncDirection(str, Enum):
    """Which remote is authoritative for a sync call."""

    A_TO_B = "a-to-b"
    B_TO_A = "b-to-a"
    BIDIRECTIONAL = "bidirectional"


class ConflictPolicy(str, Enum):
    """Strategy applied when source and target diverged.

    ``MANUAL`` and ``PREFER_TARGET`` behave the same on conflict (report and
    abort) but state different intent, so they stay separate values.
    """

    AUTO_RESOLVE = "auto-resolve"
    MANUAL = "manual"
    PREFER_SOURCE = "prefer-source"
    PREFER_TARGET = "prefer-target"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    IN_PROGRESS = "in-progress"


class FileStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class ErrorKind(str, Enum):
    """Category of a failed sync, surfaced next to the raw message."""

    AUTH = "auth"
    CLONE = "clone"
    FETCH = "fetch"
    PUSH = "push"
    PULL = "pull"
    CONFLICTS_UNRESOLVED = "conflicts-unresolved"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Configuration records
# ---------------------------------------------------------------------------


class Credential(BaseModel):
    """Username/token pair for one hosting system.

    Attributes:
        id: Store identifier.
        name: Display name.
        kind: Hosting system the credential is for.
        username: Account name embedded into remote URLs.
        token: Personal access token or password. Never logged.
        url: Optional base URL of the hosting system.
    """

    id: str
    name: str = ""
    kind: CredentialKind
    username: str
    token: str = Field(repr=False)
    url: str | None = None
    created_at: datetime | None = None

    model_config = {"frozen": True}

    def rotated(self, token: str, url: str | None = None) -> Credential:
        """Return a copy with a new secret (and optionally a new base URL)."""
        updates: dict = {"token": token}
        if url is not None:
            updates["url"] = url
        return self.model_copy(update=updates)


class BranchPair(BaseModel):
    """A branch name that exists under the same name on both remotes."""

    name: str

    model_config = {"frozen": True}


class RepositoryConfig(BaseModel):
    """Everything the engine needs to sync one repository pair.

    ``source_url``/``source_credential`` always refer to system A and
    ``target_url``/``target_credential`` to system B; the sync direction
    decides which of them acts as the source of a given call.
    """

    id: str
    name: str
    source_url: str
    target_url: str
    source_credential: Credential
    target_credential: Credential
    branch_pairs: list[BranchPair]
    sync_direction: SyncDirection = SyncDirection.A_TO_B
    conflict_policy: ConflictPolicy = ConflictPolicy.MANUAL
    ignore_rules: list[str] = []
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None

    model_config = {"frozen": True}

    @field_validator("branch_pairs")
    @classmethod
    def _require_branch_pairs(cls, value: list[BranchPair]) -> list[BranchPair]:
        if not value:
            raise ValueError("at least one branch pair is required")
        return value


# ---------------------------------------------------------------------------
# Diff snapshots
# ---------------------------------------------------------------------------


class FileChange(BaseModel):
    """One changed path between two refs."""

    path: str
    status: FileStatus
    additions: int = 0
    deletions: int = 0
    old_path: str | None = None

    model_config = {"frozen": True}


class CommitInfo(BaseModel):
    hash: str
    message: str
    author: str
    date: str

    model_config = {"frozen": True}


class SyncDiff(BaseModel):
    """Snapshot of the differences between two branch refs."""

    files: list[FileChange] = []
    commits: list[CommitInfo] = []

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.commits

    def summary(self) -> ChangeSummary:
        """Count files by status. Renames count as modifications."""
        added = modified = deleted = 0
        for change in self.files:
            if change.status == FileStatus.ADDED:
                added += 1
            elif change.status == FileStatus.DELETED:
                deleted += 1
            else:
                modified += 1
        return ChangeSummary(added=added, modified=modified, deleted=deleted)


class BranchDiff(BaseModel):
    """Preview output for one branch pair."""

    branch: str
    diff: SyncDiff

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Sync outcome
# ---------------------------------------------------------------------------


class SyncConflict(BaseModel):
    file: str
    description: str
    resolved: bool = False
    branch: str | None = None

    model_config = {"frozen": True}


class ChangeSummary(BaseModel):
    added: int = 0
    modified: int = 0
    deleted: int = 0

    model_config = {"frozen": True}

    def __add__(self, other: ChangeSummary) -> ChangeSummary:
        return ChangeSummary(
            added=self.added + other.added,
            modified=self.modified + other.modified,
            deleted=self.deleted + other.deleted,
        )

    @property
    def total(self) -> int:
        return self.added + self.modified + self.deleted


class BranchSyncResult(BaseModel):
    """Outcome of syncing one branch pair."""

    branch: str
    success: bool
    changes: ChangeSummary = ChangeSummary()
    commits: list[CommitInfo] = []
    conflicts: list[SyncConflict] = []
    error: str | None = None
    error_kind: ErrorKind | None = None

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Aggregate outcome of one ``perform_sync`` call.

    ``changes`` is the element-wise sum over branch pairs, ``commits`` and
    ``conflicts`` the concatenation in configuration order. ``error`` keeps
    the message of the last failing pair; ``errors`` keeps all of them.

    Attributes:
        success: True only if every branch pair succeeded.
        repository_id: Repository the call was made for.
        sync_direction: Direction used for the call.
        branches: Per-pair results, in configuration order.
        timestamp: When the result was produced.
    """

    success: bool
    repository_id: str
    sync_direction: SyncDirection
    changes: ChangeSummary = ChangeSummary()
    commits: list[CommitInfo] = []
    conflicts: list[SyncConflict] = []
    error: str | None = None
    error_kind: ErrorKind | None = None
    errors: list[str] = []
    branches: list[BranchSyncResult] = []
    timestamp: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

    @classmethod
    def aggregate(
        cls,
        repository_id: str,
        sync_direction: SyncDirection,
        branches: list[BranchSyncResult],
    ) -> SyncResult:
        """Fold per-pair results into one aggregate result."""
        changes = ChangeSummary()
        commits: list[CommitInfo] = []
        conflicts: list[SyncConflict] = []
        errors: list[str] = []
        error: str | None = None
        error_kind: ErrorKind | None = None
        for branch in branches:
            changes = changes + branch.changes
            commits.extend(branch.commits)
            conflicts.extend(branch.conflicts)
            if not branch.success:
                error = branch.error
                error_kind = branch.error_kind
                errors.append(f"{branch.branch}: {branch.error}")
        return cls(
            success=all(b.success for b in branches),
            repository_id=repository_id,
            sync_direction=sync_direction,
            changes=changes,
            commits=commits,
            conflicts=conflicts,
            error=error,
            error_kind=error_kind,
            errors=errors,
            branches=branches,
        )

    @classmethod
    def failure(
        cls,
        repository_id: str,
        sync_direction: SyncDirection,
        error: str,
        error_kind: ErrorKind = ErrorKind.UNKNOWN,
    ) -> SyncResult:
        """Build a failed result that never reached any branch pair."""
        return cls(
            success=False,
            repository_id=repository_id,
            sync_direction=sync_direction,
            error=error,
            error_kind=error_kind,
            errors=[error],
        )


class CredentialCheck(BaseModel):
    valid: bool
    message: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Scheduler records
# ---------------------------------------------------------------------------


class ScheduledJob(BaseModel):
    """A cron-driven batch of repository syncs."""

    id: str
    name: str
    description: str | None = None
    cron_expression: str
    repository_ids: list[str] = []
    enabled: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: SyncStatus | None = None
    run_count: int = 0
    created_at: datetime | None = None

    model_config = {"frozen": True}


class RepositoryRunOutcome(BaseModel):
    repository_id: str
    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class JobRunReport(BaseModel):
    """What happened during one firing of a scheduled job."""

    job_id: str
    started_at: datetime
    completed_at: datetime
    results: list[RepositoryRunOutcome] = []
    next_run_at: datetime | None = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> list[RepositoryRunOutcome]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[RepositoryRunOutcome]:
        return [r for r in self.results if not r.success]

    @property
    def status(self) -> SyncStatus:
        return SyncStatus.FAILED if self.failed else SyncStatus.SUCCESS


class SyncLogEntry(BaseModel):
    """History record written after each repository sync."""

    id: str
    repository_id: str
    status: SyncStatus
    started_at: datetime
    completed_at: datetime | None = None
    message: str = ""
    error: str | None = None
    changes: ChangeSummary | None = None
    commits: list[CommitInfo] = []
    conflicts: list[SyncConflict] = []

    model_config = {"frozen": True}
