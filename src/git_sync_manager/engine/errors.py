"""Error taxonomy for the sync engine.

Every exception carries an ``ErrorKind`` so the orchestrator can turn it into
a failed ``SyncResult`` without inspecting exception types twice. Messages
are already redacted: no exception raised here ever contains a token.
"""

from __future__ import annotations

from .models import ErrorKind, SyncConflict


class SyncError(Exception):
    """Base exception for sync engine failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class AuthError(SyncError):
    """Remote rejected the credentials (or looked like it did)."""

    kind = ErrorKind.AUTH


class CloneError(SyncError):
    """Failed to clone the source repository or branch."""

    kind = ErrorKind.CLONE


class FetchError(SyncError):
    """Failed to fetch from a remote."""

    kind = ErrorKind.FETCH


class PushError(SyncError):
    """Remote rejected a push."""

    kind = ErrorKind.PUSH


class PullError(SyncError):
    """Pull/rebase failed for a reason other than conflicting changes."""

    kind = ErrorKind.PULL


class ConflictDetected(SyncError):
    """Internal signal: a pull stopped on overlapping changes.

    Raised by ``WorkingCopy.pull`` and consumed by the conflict resolvers;
    it is not a failure on its own.
    """

    kind = ErrorKind.CONFLICTS_UNRESOLVED


class ConflictsUnresolved(SyncError):
    """Conflicts were found and the policy does not resolve them."""

    kind = ErrorKind.CONFLICTS_UNRESOLVED

    def __init__(self, message: str, conflicts: list[SyncConflict]):
        super().__init__(message)
        self.conflicts = conflicts


class SyncTimeoutError(SyncError):
    """The call ran past its deadline."""

    kind = ErrorKind.TIMEOUT


class SyncCancelledError(SyncError):
    """The caller cancelled the call."""

    kind = ErrorKind.CANCELLED


class UnknownError(SyncError):
    """Wraps any other exception, preserving its message."""

    kind = ErrorKind.UNKNOWN

    @classmethod
    def wrap(cls, exc: BaseException) -> UnknownError:
        message = str(exc) or type(exc).__name__
        wrapped = cls(message)
        wrapped.__cause__ = exc
        return wrapped
