"""Sync orchestration: one call, one set of working copies, one result.

For every branch pair ``SyncOrchestrator.perform_sync`` walks::

    clone source -> add target remote -> fetch target -> target branch exists?
        -> diff -> apply conflict policy -> (bidirectional back-push)? -> done

Per-pair outcomes are folded into a single ``SyncResult``. Nothing raised
inside a pair escapes ``perform_sync``: errors become failed results whose
``error_kind`` names the category. ``preview_sync`` runs the same setup, stops
after the diff, and never pushes or pulls.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path

from git import GitCommandError

from ..core.async_utils import run_sync_limited
from ..validators import validate_branch_name
from .auth import build_authenticated_url, redact_url
from .deadline import Deadline
from .diff import DiffInspector
from .errors import CloneError, ConflictsUnresolved, SyncError, UnknownError
from .models import (
    BranchDiff,
    BranchSyncResult,
    Credential,
    CredentialCheck,
    CredentialKind,
    RepositoryConfig,
    SyncDiff,
    SyncDirection,
    SyncResult,
)
from .resolver import UNRESOLVED_MESSAGES, ConflictResolver, create_resolver
from .working_copy import WorkingCopy, classify_git_error

logger = logging.getLogger(__name__)

SOURCE_REMOTE = "origin"
TARGET_REMOTE = "target"
BACK_PUSH_REMOTE = "source"


class _Roles:
    """Source/target endpoints of one call, resolved from the sync direction."""

    def __init__(self, config: RepositoryConfig) -> None:
        if config.sync_direction == SyncDirection.B_TO_A:
            self.source_url = config.target_url
            self.source_credential = config.target_credential
            self.target_url = config.source_url
            self.target_credential = config.source_credential
        else:
            # a-to-b, and the primary leg of bidirectional
            self.source_url = config.source_url
            self.source_credential = config.source_credential
            self.target_url = config.target_url
            self.target_credential = config.target_credential
        self.back_push = config.sync_direction == SyncDirection.BIDIRECTIONAL


class SyncOrchestrator:
    """Run syncs and previews for ``RepositoryConfig`` objects.

    Args:
        temp_root: Directory under which working copies are created.
        git_timeout: Seconds allowed per git command.
        sync_timeout: Seconds allowed per ``perform_sync``/``preview_sync``
            call (``None`` for no limit).
        preview_cleanup_delay: Seconds to keep preview working copies
            before removing them.
        diff_inspector: Override for tests.
    """

    def __init__(
        self,
        temp_root: Path,
        git_timeout: float | None = 300,
        sync_timeout: float | None = 1800,
        preview_cleanup_delay: float = 5.0,
        diff_inspector: DiffInspector | None = None,
    ) -> None:
        self.temp_root = Path(temp_root)
        self.git_timeout = git_timeout
        self.sync_timeout = sync_timeout
        self.preview_cleanup_delay = preview_cleanup_delay
        self.diff_inspector = diff_inspector or DiffInspector(SOURCE_REMOTE)

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Working copies
    # ------------------------------------------------------------------

    def _repository_lock(self, repository_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(repository_id)
            if lock is None:
                lock = self._locks[repository_id] = threading.Lock()
            return lock

    def _new_working_copy(
        self, repository_id: str, index: int, deadline: Deadline, prefix: str = ""
    ) -> WorkingCopy:
        name = f"{prefix}{repository_id}-{time.time_ns()}-{index}"
        return WorkingCopy(
            self.temp_root / name, timeout=self.git_timeout, deadline=deadline
        )

    def _prepare(
        self, working_copy: WorkingCopy, roles: _Roles, branch: str
    ) -> bool:
        """Clone, add and fetch the target; return whether the target branch exists."""
        is_valid, error = validate_branch_name(branch)
        if not is_valid:
            raise CloneError(f"Failed to clone: {error}")
        working_copy.clone(roles.source_url, roles.source_credential, branch)
        working_copy.add_remote(TARGET_REMOTE, roles.target_url, roles.target_credential)
        working_copy.fetch(TARGET_REMOTE)
        exists = working_copy.branch_exists(branch, TARGET_REMOTE)
        logger.info(
            "Target branch %s exists on %s: %s",
            branch,
            redact_url(roles.target_url),
            exists,
        )
        return exists

    @staticmethod
    def _discard_in_background(working_copies: list[WorkingCopy]) -> None:
        if not working_copies:
            return

        def _discard_all() -> None:
            for wc in working_copies:
                wc.discard()

        threading.Thread(
            target=_discard_all, name="git-sync-discard", daemon=True
        ).start()

    def _discard_later(self, working_copies: list[WorkingCopy]) -> None:
        if not working_copies:
            return

        def _discard_all() -> None:
            for wc in working_copies:
                wc.discard()

        timer = threading.Timer(self.preview_cleanup_delay, _discard_all)
        timer.daemon = True
        timer.start()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def perform_sync(
        self,
        config: RepositoryConfig,
        cancel_event: threading.Event | None = None,
    ) -> SyncResult:
        """Sync every branch pair of *config* and return the aggregate result.

        Never raises. Calls for the same repository id are serialized.
        """
        logger.info(
            "Starting sync for %s (%s): direction=%s policy=%s pairs=%d",
            config.name,
            config.id,
            config.sync_direction.value,
            config.conflict_policy.value,
            len(config.branch_pairs),
        )
        lock = self._repository_lock(config.id)
        if not lock.acquire(blocking=False):
            logger.info("Sync for %s already running, waiting for it", config.id)
            lock.acquire()

        working_copies: list[WorkingCopy] = []
        try:
            try:
                resolver = create_resolver(config.conflict_policy)
            except ValueError as exc:
                return SyncResult.failure(
                    config.id, config.sync_direction, str(exc)
                )

            roles = _Roles(config)
            deadline = Deadline(self.sync_timeout, cancel_event)
            branches: list[BranchSyncResult] = []
            for index, pair in enumerate(config.branch_pairs):
                wc = self._new_working_copy(config.id, index, deadline)
                working_copies.append(wc)
                branches.append(self._sync_pair(wc, roles, pair.name, resolver, config))

            result = SyncResult.aggregate(config.id, config.sync_direction, branches)
            if result.success:
                logger.info(
                    "Sync for %s completed: +%d ~%d -%d, %d commits",
                    config.id,
                    result.changes.added,
                    result.changes.modified,
                    result.changes.deleted,
                    len(result.commits),
                )
            else:
                logger.warning(
                    "Sync for %s failed: %s", config.id, "; ".join(result.errors)
                )
            return result
        finally:
            lock.release()
            self._discard_in_background(working_copies)

    def _sync_pair(
        self,
        wc: WorkingCopy,
        roles: _Roles,
        branch: str,
        resolver: ConflictResolver,
        config: RepositoryConfig,
    ) -> BranchSyncResult:
        diff = SyncDiff()
        try:
            target_exists = self._prepare(wc, roles, branch)

            try:
                diff = self.diff_inspector.diff(
                    wc, f"{SOURCE_REMOTE}/{branch}", f"{TARGET_REMOTE}/{branch}"
                )
            except GitCommandError as exc:
                logger.warning("Could not compute diff for %s: %s", branch, exc.status)

            outcome = resolver.apply(wc, TARGET_REMOTE, branch, target_exists)
            if outcome.conflicts:
                raise ConflictsUnresolved(
                    UNRESOLVED_MESSAGES.get(
                        config.conflict_policy, "Conflicts detected."
                    ),
                    outcome.conflicts,
                )

            if roles.back_push:
                self._back_push(wc, roles, branch)

            return BranchSyncResult(
                branch=branch,
                success=True,
                changes=diff.summary(),
                commits=diff.commits,
            )
        except ConflictsUnresolved as exc:
            return BranchSyncResult(
                branch=branch,
                success=False,
                changes=diff.summary(),
                commits=diff.commits,
                conflicts=exc.conflicts,
                error=str(exc),
                error_kind=exc.kind,
            )
        except SyncError as exc:
            logger.error("Branch %s of %s failed: %s", branch, config.id, exc)
            return BranchSyncResult(
                branch=branch,
                success=False,
                changes=diff.summary(),
                commits=diff.commits,
                error=str(exc),
                error_kind=exc.kind,
            )
        except Exception as exc:
            wrapped = UnknownError.wrap(exc)
            logger.exception("Branch %s of %s failed unexpectedly", branch, config.id)
            return BranchSyncResult(
                branch=branch,
                success=False,
                changes=diff.summary(),
                commits=diff.commits,
                error=str(wrapped),
                error_kind=wrapped.kind,
            )

    def _back_push(self, wc: WorkingCopy, roles: _Roles, branch: str) -> None:
        """Push the final local state back to the source. Failures are logged only."""
        try:
            wc.add_remote(BACK_PUSH_REMOTE, roles.source_url, roles.source_credential)
            wc.push(BACK_PUSH_REMOTE, branch)
        except (SyncError, GitCommandError) as exc:
            logger.warning("Back-push of %s to source failed: %s", branch, exc)

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview_sync(
        self,
        config: RepositoryConfig,
        cancel_event: threading.Event | None = None,
    ) -> list[BranchDiff]:
        """Return the diff each branch pair would apply. Never mutates a remote.

        Raises:
            SyncError: Setup or diff failed (``UnknownError`` wraps anything
                that is not already a ``SyncError``).
        """
        logger.info("Starting preview for %s (%s)", config.name, config.id)
        roles = _Roles(config)
        deadline = Deadline(self.sync_timeout, cancel_event)
        working_copies: list[WorkingCopy] = []
        previews: list[BranchDiff] = []
        try:
            for index, pair in enumerate(config.branch_pairs):
                wc = self._new_working_copy(config.id, index, deadline, prefix="preview-")
                working_copies.append(wc)
                self._prepare(wc, roles, pair.name)
                diff = self.diff_inspector.diff(
                    wc, f"{SOURCE_REMOTE}/{pair.name}", f"{TARGET_REMOTE}/{pair.name}"
                )
                previews.append(BranchDiff(branch=pair.name, diff=diff))
        except SyncError:
            logger.error("Preview for %s failed", config.id)
            raise
        except Exception as exc:
            logger.exception("Preview for %s failed unexpectedly", config.id)
            raise UnknownError.wrap(exc) from exc
        finally:
            self._discard_later(working_copies)

        logger.info(
            "Preview for %s: %s",
            config.id,
            ", ".join(
                f"{p.branch}={len(p.diff.files)} files/{len(p.diff.commits)} commits"
                for p in previews
            ),
        )
        return previews

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def validate_credentials(
        self,
        url: str,
        username: str,
        token: str,
        kind: CredentialKind | str = CredentialKind.SYSTEM_A,
    ) -> CredentialCheck:
        """List the remote's refs without cloning to check the credentials."""
        kind = CredentialKind(kind)
        wc = self._new_working_copy(f"validate-{kind.value}", 0, Deadline(self.git_timeout))
        credential = Credential(id="validation", kind=kind, username=username, token=token)
        auth_url = build_authenticated_url(url, credential.username, credential.token)
        logger.info("Validating %s credentials for %s", kind.value, redact_url(url))
        try:
            wc.run_git("ls-remote", "--heads", auth_url, in_repo=False)
        except GitCommandError as exc:
            error = classify_git_error(exc, UnknownError, "Invalid credentials")
            logger.info("Credential validation failed for %s", redact_url(url))
            return CredentialCheck(valid=False, message=str(error))
        except SyncError as exc:
            return CredentialCheck(valid=False, message=str(exc))
        finally:
            wc.discard()
        return CredentialCheck(valid=True, message="Credentials are valid")

    # ------------------------------------------------------------------
    # Async bridges
    # ------------------------------------------------------------------

    async def async_perform_sync(self, config: RepositoryConfig) -> SyncResult:
        """Run ``perform_sync`` on the worker pool.

        Cancelling the awaiting task sets the call's cancel event, so the
        worker stops before its next git command.
        """
        cancel_event = threading.Event()
        try:
            return await run_sync_limited(self.perform_sync, config, cancel_event)
        except asyncio.CancelledError:
            logger.warning("Sync of %s cancelled", config.id)
            cancel_event.set()
            raise

    async def async_preview_sync(self, config: RepositoryConfig) -> list[BranchDiff]:
        cancel_event = threading.Event()
        try:
            return await run_sync_limited(self.preview_sync, config, cancel_event)
        except asyncio.CancelledError:
            cancel_event.set()
            raise

    async def async_validate_credentials(
        self, url: str, username: str, token: str, kind: CredentialKind | str
    ) -> CredentialCheck:
        return await run_sync_limited(
            self.validate_credentials, url, username, token, kind
        )
