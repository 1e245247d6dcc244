"""Conflict policies for the sync engine.

Each policy decides how the local (source) state of a working copy reaches
the target remote:

- ``PreferSourceResolver``: force-push the source state; never pulls, so
  no conflicts are possible.
- ``PreferTargetResolver``: rebase onto the target first; on conflicts,
  hand the unresolved list back to the caller.
- ``ManualResolver``: same mechanics as prefer-target; the difference is
  intent (a human resolves offline).
- ``AutoResolveResolver``: rebase onto the target; on conflicts keep the
  source side of every file, record an "auto-resolved" commit, then push.

When the target branch does not exist yet every policy creates it with a
plain (non-forced) push. The ``create_resolver()`` factory maps
``ConflictPolicy`` values to resolver instances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from .errors import ConflictDetected
from .models import ConflictPolicy, SyncConflict
from .working_copy import WorkingCopy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyOutcome:
    """What a policy did to the target.

    Attributes:
        pushed: Whether the target branch was updated.
        forced: Whether the update was a force-push.
        conflicts: Conflicts left unresolved (non-empty means abort).
        auto_resolved: Number of files resolved automatically.
    """

    pushed: bool
    forced: bool = False
    conflicts: list[SyncConflict] = field(default_factory=list)
    auto_resolved: int = 0


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict policies must satisfy."""

    policy: ConflictPolicy

    def apply(
        self,
        working_copy: WorkingCopy,
        remote: str,
        branch: str,
        target_exists: bool,
    ) -> PolicyOutcome:
        """Bring the working copy's HEAD to ``<remote>/<branch>``.

        Args:
            working_copy: Clone of the source branch with *remote* fetched.
            remote: Name of the target remote.
            branch: Branch name on the target.
            target_exists: Whether ``<remote>/<branch>`` already exists.

        Returns:
            A ``PolicyOutcome``; unresolved conflicts mean nothing was pushed.
        """
        ...  # pragma: no cover


def _create_branch(working_copy: WorkingCopy, remote: str, branch: str) -> PolicyOutcome:
    logger.info("%s/%s does not exist yet, creating it", remote, branch)
    working_copy.push(remote, branch, force=False)
    return PolicyOutcome(pushed=True)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class PreferSourceResolver:
    """Overwrite the target with the source state."""

    policy = ConflictPolicy.PREFER_SOURCE

    def apply(
        self,
        working_copy: WorkingCopy,
        remote: str,
        branch: str,
        target_exists: bool,
    ) -> PolicyOutcome:
        logger.info("prefer-source: force pushing to %s/%s", remote, branch)
        working_copy.push(remote, branch, force=True)
        return PolicyOutcome(pushed=True, forced=True)


class _ReportingResolver:
    """Rebase onto the target; report conflicts instead of resolving them."""

    policy: ConflictPolicy

    def apply(
        self,
        working_copy: WorkingCopy,
        remote: str,
        branch: str,
        target_exists: bool,
    ) -> PolicyOutcome:
        if not target_exists:
            return _create_branch(working_copy, remote, branch)

        logger.info("%s: pulling %s/%s", self.policy.value, remote, branch)
        try:
            working_copy.pull(remote, branch)
        except ConflictDetected:
            conflicts = [
                c.model_copy(update={"branch": branch})
                for c in working_copy.list_conflicts()
            ]
            logger.warning(
                "%s: %d conflicting files on %s, not pushing",
                self.policy.value,
                len(conflicts),
                branch,
            )
            working_copy.abort_rebase()
            return PolicyOutcome(pushed=False, conflicts=conflicts)

        working_copy.push(remote, branch)
        return PolicyOutcome(pushed=True)


class PreferTargetResolver(_ReportingResolver):
    """Keep target changes; conflicts are reported for the caller to handle."""

    policy = ConflictPolicy.PREFER_TARGET


class ManualResolver(_ReportingResolver):
    """Leave conflicts to a human."""

    policy = ConflictPolicy.MANUAL


class AutoResolveResolver:
    """Resolve every conflict with the source side and push."""

    policy = ConflictPolicy.AUTO_RESOLVE

    def apply(
        self,
        working_copy: WorkingCopy,
        remote: str,
        branch: str,
        target_exists: bool,
    ) -> PolicyOutcome:
        if not target_exists:
            return _create_branch(working_copy, remote, branch)

        logger.info("auto-resolve: pulling %s/%s", remote, branch)
        resolved = 0
        try:
            working_copy.pull(remote, branch)
        except ConflictDetected:
            conflicts = working_copy.list_conflicts()
            logger.info(
                "auto-resolve: keeping source side of %d files", len(conflicts)
            )
            for conflict in conflicts:
                working_copy.resolve_conflict(conflict.file, "ours")
            working_copy.commit(
                f"Auto-resolved conflicts: {len(conflicts)} files"
            )
            resolved = len(conflicts)

        working_copy.push(remote, branch)
        return PolicyOutcome(pushed=True, auto_resolved=resolved)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_POLICY_MAP: dict[ConflictPolicy, type] = {
    ConflictPolicy.PREFER_SOURCE: PreferSourceResolver,
    ConflictPolicy.PREFER_TARGET: PreferTargetResolver,
    ConflictPolicy.MANUAL: ManualResolver,
    ConflictPolicy.AUTO_RESOLVE: AutoResolveResolver,
}

UNRESOLVED_MESSAGES: dict[ConflictPolicy, str] = {
    ConflictPolicy.PREFER_TARGET: "Conflicts detected. Please resolve manually.",
    ConflictPolicy.MANUAL: "Conflicts detected. Manual resolution required.",
}


def create_resolver(policy: ConflictPolicy | str) -> ConflictResolver:
    """Create the resolver for a conflict policy.

    Args:
        policy: A ``ConflictPolicy`` or its string value (``"auto-resolve"``,
            ``"manual"``, ``"prefer-source"``, ``"prefer-target"``).

    Returns:
        A ``ConflictResolver`` implementation instance.

    Raises:
        ValueError: If the policy is not recognised.
    """
    try:
        key = ConflictPolicy(policy)
    except ValueError:
        raise ValueError(
            f"Unknown conflict policy: '{policy}'. Valid policies: {sorted(p.value for p in ConflictPolicy)}"
        ) from None
    return _POLICY_MAP[key]()  # type: ignore[return-value]
