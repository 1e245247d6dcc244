"""Ephemeral local clone used for exactly one sync or preview call.

``WorkingCopy`` wraps a single directory and drives the ``git`` command line
through GitPython. Lifecycle::

    uninitialized -> cloned -> (remote added)* -> (fetched)* -> (checked out)* -> discarded

Every git invocation runs with prompts disabled, a per-command timeout
(``kill_after_timeout``) and the call's ``Deadline``, so a hung network
operation cannot occupy a worker forever.

Authenticated URLs only ever appear in the git argument list; messages and
log lines go through ``redact_url``/``mask_secrets`` first.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path

import git
from git import GitCommandError

from ..logger import mask_secrets
from .auth import build_authenticated_url, redact_url
from .deadline import Deadline
from .errors import (
    AuthError,
    CloneError,
    ConflictDetected,
    FetchError,
    PullError,
    PushError,
    SyncError,
    SyncTimeoutError,
)
from .models import Credential, SyncConflict

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_NAME = "git-sync-manager"
DEFAULT_AUTHOR_EMAIL = "git-sync-manager@localhost"

_AUTH_TOKENS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "invalid username or password",
    "terminal prompts disabled",
    "access denied",
    "permission denied",
    "http 401",
    "http 403",
    "returned error: 401",
    "returned error: 403",
)

_PUSH_RETRY_TOKENS = ("no matching refs", "no changes")


def _error_text(exc: GitCommandError) -> str:
    return mask_secrets(str(exc))


def classify_git_error(exc: GitCommandError, default: type[SyncError], context: str) -> SyncError:
    """Map a git failure to the engine's error taxonomy."""
    text = _error_text(exc)
    lowered = text.lower()
    if "did not complete in" in lowered:
        return SyncTimeoutError(f"{context}: {text}")
    if any(token in lowered for token in _AUTH_TOKENS):
        return AuthError(f"{context}: {text}")
    return default(f"{context}: {text}")


class WorkingCopy:
    """One local clone in its own directory.

    Args:
        path: Directory owned by this working copy. Removed on ``clone()``
            if it already exists, and on ``discard()``.
        timeout: Seconds allowed per git command (``None`` for no limit).
        deadline: Budget for the whole call; checked before every command.
        author_name: Identity used for commits created by the engine.
        author_email: Identity used for commits created by the engine.
    """

    def __init__(
        self,
        path: Path,
        timeout: float | None = 300,
        deadline: Deadline | None = None,
        author_name: str = DEFAULT_AUTHOR_NAME,
        author_email: str = DEFAULT_AUTHOR_EMAIL,
    ) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self.deadline = deadline or Deadline()

        self._env = {
            # Fail fast instead of waiting on a credential prompt
            "GIT_TERMINAL_PROMPT": "0",
            "GCM_INTERACTIVE": "never",
            "GIT_ASKPASS": "echo",
            "GIT_EDITOR": "true",
            "GIT_AUTHOR_NAME": author_name,
            "GIT_AUTHOR_EMAIL": author_email,
            "GIT_COMMITTER_NAME": author_name,
            "GIT_COMMITTER_EMAIL": author_email,
        }

    def __repr__(self) -> str:
        return f"WorkingCopy({str(self.path)!r})"

    # ------------------------------------------------------------------
    # Command runner
    # ------------------------------------------------------------------

    def run_git(self, *args: str, in_repo: bool = True) -> str:
        """Run ``git <args>`` and return its stdout.

        Raises:
            GitCommandError: On a non-zero exit status.
            SyncTimeoutError: If the call deadline has already passed.
            SyncCancelledError: If the call was cancelled.
        """
        timeout = self.deadline.remaining(self.timeout)
        runner = git.Git(str(self.path)) if in_repo else git.Git()
        return runner.execute(
            ["git", *args],
            env=self._env,
            kill_after_timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Clone / remotes / fetch
    # ------------------------------------------------------------------

    def clone(self, url: str, credentials: Credential, branch: str) -> None:
        """Shallow, single-branch clone of *branch* from *url*."""
        self.discard()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        auth_url = build_authenticated_url(
            url, credentials.username, credentials.token
        )
        logger.info(
            "Cloning %s (branch %s) into %s", redact_url(url), branch, self.path
        )
        try:
            self.run_git(
                "clone",
                "--branch",
                branch,
                "--single-branch",
                "--depth",
                "1",
                auth_url,
                str(self.path),
                in_repo=False,
            )
        except GitCommandError as exc:
            raise classify_git_error(
                exc, CloneError, f"Failed to clone {redact_url(url)} ({branch})"
            ) from None
        logger.debug("Clone of %s completed", redact_url(url))

    def remotes(self) -> list[str]:
        output = self.run_git("remote")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def add_remote(self, name: str, url: str, credentials: Credential) -> None:
        """Point remote *name* at *url*, replacing any existing remote of that name."""
        auth_url = build_authenticated_url(
            url, credentials.username, credentials.token
        )
        if name in self.remotes():
            self.run_git("remote", "remove", name)
            logger.debug("Removed existing remote %s", name)
        self.run_git("remote", "add", name, auth_url)
        logger.info("Added remote %s -> %s", name, redact_url(url))

    def fetch(self, remote_name: str = "origin") -> None:
        """Fetch all branches and tags from *remote_name*."""
        logger.info("Fetching from remote %s", remote_name)
        try:
            self.run_git(
                "fetch",
                remote_name,
                "--tags",
                f"+refs/heads/*:refs/remotes/{remote_name}/*",
            )
        except GitCommandError as exc:
            raise classify_git_error(
                exc, FetchError, f"Failed to fetch from {remote_name}"
            ) from None

    # ------------------------------------------------------------------
    # Refs
    # ------------------------------------------------------------------

    def ref_exists(self, ref: str) -> bool:
        try:
            self.run_git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        except GitCommandError:
            return False
        return True

    def branch_exists(self, branch: str, remote_name: str | None = None) -> bool:
        """Check a remote-tracking branch, or a local/``origin`` branch when no remote is given."""
        if remote_name:
            candidates = [f"refs/remotes/{remote_name}/{branch}"]
        else:
            candidates = [f"refs/heads/{branch}", f"refs/remotes/origin/{branch}"]
        try:
            output = self.run_git(
                "for-each-ref", "--format=%(refname)", *candidates
            )
        except GitCommandError:
            return False
        return bool(output.strip())

    def current_branch(self) -> str:
        try:
            return self.run_git("symbolic-ref", "--short", "HEAD").strip()
        except GitCommandError:
            return "HEAD"

    def head_sha(self) -> str:
        return self.run_git("rev-parse", "HEAD").strip()

    def checkout(self, branch: str, create: bool = False) -> None:
        if create:
            self.run_git("checkout", "-b", branch)
        else:
            self.run_git("checkout", branch)

    # ------------------------------------------------------------------
    # Push / pull
    # ------------------------------------------------------------------

    def push(self, remote_name: str, branch: str, force: bool = False) -> None:
        """Push local HEAD to ``<remote_name>/<branch>``.

        Non-forced pushes first try with ``-u``; if the remote answers with a
        "no matching refs" class error the push is retried once without it.
        """
        refspec = f"HEAD:refs/heads/{branch}"
        context = f"Failed to push to {remote_name}/{branch}"
        first = ["push", "--force"] if force else ["push", "-u"]
        try:
            self.run_git(*first, remote_name, refspec)
        except GitCommandError as exc:
            text = _error_text(exc).lower()
            if not any(token in text for token in _PUSH_RETRY_TOKENS):
                raise classify_git_error(exc, PushError, context) from None
            logger.info("Retrying push to %s/%s without -u", remote_name, branch)
            retry = ["push", "--force"] if force else ["push"]
            try:
                self.run_git(*retry, remote_name, refspec)
            except GitCommandError as retry_exc:
                raise classify_git_error(retry_exc, PushError, context) from None
        logger.info(
            "Pushed to %s/%s%s", remote_name, branch, " (forced)" if force else ""
        )

    def pull(self, remote_name: str, branch: str) -> None:
        """Rebase the local *branch* onto ``<remote_name>/<branch>``.

        Raises:
            ConflictDetected: The rebase stopped on overlapping changes; the
                working copy is left mid-rebase for ``list_conflicts()``.
            PullError: Any other failure.
        """
        try:
            self.checkout(branch)
        except GitCommandError:
            try:
                self.run_git("checkout", "-b", branch, f"{remote_name}/{branch}")
            except GitCommandError:
                # Detached or already tracking; the pull below decides
                logger.debug("Could not check out %s before pull", branch)

        try:
            self.run_git("pull", "--rebase", remote_name, branch)
        except GitCommandError as exc:
            if "CONFLICT" in str(exc):
                logger.info(
                    "Pull from %s/%s stopped on conflicts", remote_name, branch
                )
                raise ConflictDetected(
                    f"Conflicts pulling {remote_name}/{branch}"
                ) from None
            raise classify_git_error(
                exc, PullError, f"Failed to pull {remote_name}/{branch}"
            ) from None

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def rebase_in_progress(self) -> bool:
        git_dir = self.path / ".git"
        return (git_dir / "rebase-merge").exists() or (
            git_dir / "rebase-apply"
        ).exists()

    def list_conflicts(self) -> list[SyncConflict]:
        output = self.run_git("diff", "--name-only", "--diff-filter=U")
        files = [line.strip() for line in output.splitlines() if line.strip()]
        return [
            SyncConflict(file=f, description=f"Conflict in file: {f}")
            for f in files
        ]

    def resolve_conflict(self, file: str, strategy: str) -> None:
        """Stage one side of a conflicted path.

        ``ours`` keeps the local (source) side and ``theirs`` the incoming
        (target) side. git swaps the two during a rebase, so the flag passed
        to ``git checkout`` is flipped while one is in progress.
        """
        if strategy not in ("ours", "theirs"):
            raise ValueError(f"Unknown conflict strategy: '{strategy}'")
        side = strategy
        if self.rebase_in_progress():
            side = "theirs" if strategy == "ours" else "ours"
        try:
            self.run_git("checkout", f"--{side}", "--", file)
        except GitCommandError:
            # Deleted on the chosen side
            self.run_git("rm", "--quiet", "--", file)
            return
        self.run_git("add", "--", file)

    def commit(self, message: str) -> None:
        """Commit staged changes.

        While a rebase is stopped on resolved conflicts the rebase is
        continued first, then *message* is recorded as its own commit on top.
        """
        if not self.rebase_in_progress():
            self.run_git("commit", "-m", message)
            return

        # A resolution identical to the upstream side leaves nothing to
        # continue with; that commit is skipped instead.
        step = "--continue" if self._has_staged_changes() else "--skip"
        try:
            self.run_git("rebase", step)
        except GitCommandError as exc:
            if "CONFLICT" in str(exc):
                raise ConflictDetected("Conflicts continuing rebase") from None
            raise PullError(
                f"Failed to continue rebase: {_error_text(exc)}"
            ) from None
        self.run_git("commit", "--allow-empty", "-m", message)

    def _has_staged_changes(self) -> bool:
        try:
            self.run_git("diff", "--cached", "--quiet")
        except GitCommandError:
            return True
        return False

    def abort_rebase(self) -> None:
        if self.rebase_in_progress():
            try:
                self.run_git("rebase", "--abort")
            except GitCommandError as exc:
                logger.warning("Could not abort rebase in %s: %s", self.path, _error_text(exc))

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def discard(self) -> None:
        """Remove the working directory. Never raises."""
        if not self.path.exists():
            return
        try:
            shutil.rmtree(self.path)
            logger.debug("Removed working copy %s", self.path)
        except OSError as exc:
            logger.warning(
                "Could not remove working copy %s: %s (left for sweep)",
                self.path,
                exc,
            )


def sweep_stale_working_copies(
    root: Path, max_age_seconds: float, now: float | None = None
) -> int:
    """Remove working-copy directories under *root* older than *max_age_seconds*.

    Returns:
        Number of directories removed.
    """
    root = Path(root)
    if not root.is_dir():
        return 0
    current = now if now is not None else time.time()
    removed = 0
    for entry in root.iterdir():
        if not entry.is_dir():
            continue
        try:
            age = current - entry.stat().st_mtime
        except OSError:
            continue
        if age < max_age_seconds:
            continue
        try:
            shutil.rmtree(entry)
            removed += 1
        except OSError as exc:
            logger.warning("Sweep could not remove %s: %s", entry, exc)
    if removed:
        logger.info("Swept %d stale working copies from %s", removed, root)
    return removed
