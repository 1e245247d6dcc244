"""Tests for SyncOrchestrator.

Git scenarios run against two local bare repositories standing in for the
two hosted remotes; aggregation, locking and error wrapping use mocks.
"""

import asyncio
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from git_sync_manager.engine.errors import SyncError
from git_sync_manager.engine.models import (
    BranchSyncResult,
    ChangeSummary,
    ConflictPolicy,
    ErrorKind,
    SyncDirection,
)
from git_sync_manager.engine.orchestrator import SyncOrchestrator


def _wait_until_empty(root, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not root.exists() or not any(root.iterdir()):
            return True
        time.sleep(0.05)
    return False


@pytest.fixture
def orchestrator(tmp_path):
    return SyncOrchestrator(
        tmp_path / "work", git_timeout=60, sync_timeout=300, preview_cleanup_delay=0
    )


@pytest.fixture
def local_repository(git_remotes, repository_factory):
    """Repository config pointing at the local bare remotes."""

    def _make(**overrides):
        return repository_factory(
            source_url=str(git_remotes.remote_a),
            target_url=str(git_remotes.remote_b),
            **overrides,
        )

    return _make


# -------------------------------------------------------------------------
# perform_sync against real repositories
# -------------------------------------------------------------------------


@pytest.mark.git
class TestPerformSyncGit:
    def test_prefer_source_copies_new_file(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_a, {"new.txt": "new\n"}, "add new file")
        config = local_repository(policy=ConflictPolicy.PREFER_SOURCE)

        result = orchestrator.perform_sync(config)

        assert result.success, result.errors
        assert result.changes == ChangeSummary(added=1)
        assert [c.message for c in result.commits] == ["add new file"]
        assert git_remotes.read(git_remotes.remote_b, "new.txt") == "new"
        assert git_remotes.head(git_remotes.remote_b) == git_remotes.head(git_remotes.remote_a)

    def test_second_sync_reports_no_changes(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_a, {"new.txt": "new\n"}, "add new file")
        config = local_repository(policy=ConflictPolicy.PREFER_SOURCE)

        assert orchestrator.perform_sync(config).success
        again = orchestrator.perform_sync(config)

        assert again.success
        assert again.changes == ChangeSummary()
        assert again.commits == []

    def test_prefer_source_overwrites_diverged_target(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_a, {"README.md": "from a\n"}, "edit a")
        git_remotes.change(git_remotes.remote_b, {"README.md": "from b\n"}, "edit b")

        result = orchestrator.perform_sync(local_repository(policy=ConflictPolicy.PREFER_SOURCE))

        assert result.success
        assert git_remotes.read(git_remotes.remote_b, "README.md") == "from a"

    def test_first_sync_creates_target_branch(self, git_remotes, local_repository, orchestrator):
        git_remotes.create_branch(git_remotes.remote_a, "feature", {"f.txt": "feature\n"})
        config = local_repository(branches=("feature",), policy=ConflictPolicy.MANUAL)

        result = orchestrator.perform_sync(config)

        assert result.success, result.errors
        assert result.changes == ChangeSummary()
        assert git_remotes.has_branch(git_remotes.remote_b, "feature")
        assert git_remotes.read(git_remotes.remote_b, "f.txt", "feature") == "feature"

    def test_auto_resolve_keeps_source_content(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_a, {"README.md": "from a\n"}, "edit a")
        git_remotes.change(git_remotes.remote_b, {"README.md": "from b\n"}, "edit b")

        result = orchestrator.perform_sync(local_repository(policy=ConflictPolicy.AUTO_RESOLVE))

        assert result.success, result.errors
        assert result.conflicts == []
        assert git_remotes.read(git_remotes.remote_b, "README.md") == "from a"
        log = git_remotes.run("--git-dir", str(git_remotes.remote_b), "log", "--format=%s", "main")
        assert log.splitlines()[0] == "Auto-resolved conflicts: 1 files"
        assert "edit b" in log.splitlines()

    @pytest.mark.parametrize(
        "policy, message",
        [
            (ConflictPolicy.MANUAL, "Conflicts detected. Manual resolution required."),
            (ConflictPolicy.PREFER_TARGET, "Conflicts detected. Please resolve manually."),
        ],
    )
    def test_reporting_policies_fail_without_pushing(
        self, git_remotes, local_repository, orchestrator, policy, message
    ):
        git_remotes.change(git_remotes.remote_a, {"README.md": "from a\n"}, "edit a")
        git_remotes.change(git_remotes.remote_b, {"README.md": "from b\n"}, "edit b")
        target_head = git_remotes.head(git_remotes.remote_b)

        result = orchestrator.perform_sync(local_repository(policy=policy))

        assert not result.success
        assert result.error == message
        assert result.error_kind == ErrorKind.CONFLICTS_UNRESOLVED
        assert [(c.file, c.branch, c.resolved) for c in result.conflicts] == [
            ("README.md", "main", False)
        ]
        assert result.changes == ChangeSummary(modified=1)
        assert git_remotes.head(git_remotes.remote_b) == target_head

    def test_manual_without_conflict_rebases_and_pushes(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_a, {"a.txt": "a\n"}, "on a")
        git_remotes.change(git_remotes.remote_b, {"b.txt": "b\n"}, "on b")

        result = orchestrator.perform_sync(local_repository(policy=ConflictPolicy.MANUAL))

        assert result.success, result.errors
        assert git_remotes.read(git_remotes.remote_b, "a.txt") == "a"
        assert git_remotes.read(git_remotes.remote_b, "b.txt") == "b"

    def test_b_to_a_swaps_roles(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_b, {"from-b.txt": "b\n"}, "on b")

        result = orchestrator.perform_sync(
            local_repository(direction=SyncDirection.B_TO_A, policy=ConflictPolicy.MANUAL)
        )

        assert result.success, result.errors
        assert result.sync_direction == SyncDirection.B_TO_A
        assert result.changes == ChangeSummary(added=1)
        assert git_remotes.read(git_remotes.remote_a, "from-b.txt") == "b"

    def test_bidirectional_pushes_back_to_source(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_b, {"from-b.txt": "b\n"}, "on b")

        result = orchestrator.perform_sync(
            local_repository(direction=SyncDirection.BIDIRECTIONAL, policy=ConflictPolicy.MANUAL)
        )

        assert result.success, result.errors
        assert git_remotes.read(git_remotes.remote_a, "from-b.txt") == "b"
        assert git_remotes.head(git_remotes.remote_a) == git_remotes.head(git_remotes.remote_b)

    def test_missing_source_branch_fails_only_that_pair(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_a, {"new.txt": "new\n"}, "add new file")

        result = orchestrator.perform_sync(
            local_repository(branches=("main", "missing"), policy=ConflictPolicy.PREFER_SOURCE)
        )

        assert not result.success
        assert [b.success for b in result.branches] == [True, False]
        assert result.error_kind == ErrorKind.CLONE
        assert result.errors[0].startswith("missing: ")
        assert git_remotes.read(git_remotes.remote_b, "new.txt") == "new"

    def test_working_copies_are_removed(self, git_remotes, local_repository, orchestrator):
        orchestrator.perform_sync(local_repository())
        assert _wait_until_empty(orchestrator.temp_root)

    def test_cancelled_sync_fails_with_cancelled_kind(self, local_repository, orchestrator):
        event = threading.Event()
        event.set()

        result = orchestrator.perform_sync(local_repository(), cancel_event=event)

        assert not result.success
        assert result.error_kind == ErrorKind.CANCELLED


# -------------------------------------------------------------------------
# preview_sync
# -------------------------------------------------------------------------


@pytest.mark.git
class TestPreviewSync:
    def test_preview_reports_changes_without_pushing(self, git_remotes, local_repository, orchestrator):
        git_remotes.change(git_remotes.remote_a, {"new.txt": "new\n"}, "add new file")
        target_head = git_remotes.head(git_remotes.remote_b)

        previews = orchestrator.preview_sync(local_repository())

        assert [p.branch for p in previews] == ["main"]
        assert [f.path for f in previews[0].diff.files] == ["new.txt"]
        assert git_remotes.head(git_remotes.remote_b) == target_head

    def test_preview_of_missing_target_branch_is_empty(self, git_remotes, local_repository, orchestrator):
        git_remotes.create_branch(git_remotes.remote_a, "feature", {"f.txt": "x\n"})

        previews = orchestrator.preview_sync(local_repository(branches=("feature",)))

        assert previews[0].diff.is_empty
        assert not git_remotes.has_branch(git_remotes.remote_b, "feature")

    def test_preview_raises_sync_error(self, local_repository, orchestrator):
        with pytest.raises(SyncError) as exc_info:
            orchestrator.preview_sync(local_repository(branches=("missing",)))
        assert exc_info.value.kind == ErrorKind.CLONE

    def test_preview_copies_removed_after_delay(self, git_remotes, local_repository, orchestrator):
        orchestrator.preview_sync(local_repository())
        assert _wait_until_empty(orchestrator.temp_root)


# -------------------------------------------------------------------------
# validate_credentials
# -------------------------------------------------------------------------


@pytest.mark.git
class TestValidateCredentials:
    def test_reachable_remote_is_valid(self, git_remotes, orchestrator):
        check = orchestrator.validate_credentials(str(git_remotes.remote_a), "bot", "tok", "system-a")
        assert check.valid
        assert check.message == "Credentials are valid"

    def test_unreachable_remote_is_invalid(self, tmp_path, orchestrator):
        check = orchestrator.validate_credentials(str(tmp_path / "nope.git"), "bot", "tok", "system-b")
        assert not check.valid
        assert check.message.startswith("Invalid credentials")


# -------------------------------------------------------------------------
# Aggregation, locking and error wrapping (mocked)
# -------------------------------------------------------------------------


class TestPerformSyncMocked:
    def test_aggregates_branch_results_in_order(self, orchestrator, repository_factory):
        config = repository_factory(branches=("main", "dev", "release"))
        outcomes = [
            BranchSyncResult(branch="main", success=True, changes=ChangeSummary(added=2)),
            BranchSyncResult(branch="dev", success=False, error="boom", error_kind=ErrorKind.PUSH),
            BranchSyncResult(branch="release", success=True, changes=ChangeSummary(deleted=1)),
        ]
        with patch.object(orchestrator, "_sync_pair", side_effect=outcomes):
            result = orchestrator.perform_sync(config)

        assert not result.success
        assert [b.branch for b in result.branches] == ["main", "dev", "release"]
        assert result.changes == ChangeSummary(added=2, deleted=1)
        assert result.error == "boom"
        assert result.errors == ["dev: boom"]

    def test_unexpected_exception_becomes_unknown_error(self, orchestrator, repository_factory):
        with patch.object(orchestrator, "_prepare", side_effect=RuntimeError("disk full")):
            result = orchestrator.perform_sync(repository_factory())

        assert not result.success
        assert result.error == "disk full"
        assert result.error_kind == ErrorKind.UNKNOWN

    def test_option_like_branch_rejected_before_clone(self, orchestrator, repository_factory):
        config = repository_factory(branches=("--upload-pack=touch",))
        with patch("git_sync_manager.engine.orchestrator.WorkingCopy.clone") as clone:
            result = orchestrator.perform_sync(config)

        assert not result.success
        assert result.error_kind == ErrorKind.CLONE
        assert result.error == "Failed to clone: Branch name cannot start with '-'"
        clone.assert_not_called()

    def test_diff_failure_does_not_stop_sync(self, tmp_path, repository_factory):
        from git import GitCommandError

        inspector = MagicMock()
        inspector.diff.side_effect = GitCommandError(["git", "diff"], 128, b"bad", b"")
        orchestrator = SyncOrchestrator(tmp_path / "work", diff_inspector=inspector)
        resolver = MagicMock()
        resolver.apply.return_value = MagicMock(conflicts=[])

        with (
            patch.object(orchestrator, "_prepare", return_value=True),
            patch("git_sync_manager.engine.orchestrator.create_resolver", return_value=resolver),
        ):
            result = orchestrator.perform_sync(repository_factory())

        assert result.success
        assert result.changes == ChangeSummary()
        resolver.apply.assert_called_once()

    def test_same_repository_is_serialized(self, orchestrator, repository_factory):
        active = 0
        peak = 0
        guard = threading.Lock()

        def _slow_pair(*args, **kwargs):
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.1)
            with guard:
                active -= 1
            return BranchSyncResult(branch="main", success=True)

        config = repository_factory()
        with patch.object(orchestrator, "_sync_pair", side_effect=_slow_pair):
            threads = [
                threading.Thread(target=orchestrator.perform_sync, args=(config,))
                for _ in range(3)
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        assert peak == 1

    def test_different_repositories_run_concurrently(self, orchestrator, repository_factory):
        both_inside = threading.Barrier(2, timeout=5)

        def _pair(*args, **kwargs):
            both_inside.wait()
            return BranchSyncResult(branch="main", success=True)

        results = []
        with patch.object(orchestrator, "_sync_pair", side_effect=_pair):
            threads = [
                threading.Thread(
                    target=lambda rid=rid: results.append(
                        orchestrator.perform_sync(repository_factory(repo_id=rid))
                    )
                )
                for rid in ("r1", "r2")
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        assert [r.success for r in results] == [True, True]

    async def test_async_perform_sync(self, orchestrator, repository_factory):
        with patch.object(
            orchestrator,
            "_sync_pair",
            return_value=BranchSyncResult(branch="main", success=True),
        ):
            result = await orchestrator.async_perform_sync(repository_factory())
        assert result.success

    async def test_cancelling_async_preview_reaches_worker(self, orchestrator, repository_factory):
        entered = threading.Event()
        saw_cancel = threading.Event()

        def _prepare(wc, roles, branch):
            entered.set()
            for _ in range(250):
                if wc.deadline.cancelled:
                    saw_cancel.set()
                    wc.deadline.check()
                time.sleep(0.02)
            return True

        with patch.object(orchestrator, "_prepare", side_effect=_prepare):
            task = asyncio.ensure_future(orchestrator.async_preview_sync(repository_factory()))
            assert await asyncio.to_thread(entered.wait, 5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert await asyncio.to_thread(saw_cancel.wait, 5)
