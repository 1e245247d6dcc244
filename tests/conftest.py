"""Shared pytest fixtures for git-sync-manager tests."""

import shutil
from pathlib import Path
from unittest.mock import MagicMock

import git
import pytest

from git_sync_manager.config import Config
from git_sync_manager.engine.models import (
    BranchPair,
    ConflictPolicy,
    Credential,
    CredentialKind,
    RepositoryConfig,
    SyncDirection,
)

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "author@example.com",
    "GIT_COMMITTER_NAME": "Test Author",
    "GIT_COMMITTER_EMAIL": "author@example.com",
    "GIT_TERMINAL_PROMPT": "0",
}


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that talk to real hosted remotes",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring real hosted remotes"
    )
    config.addinivalue_line(
        "markers", "git: mark test as requiring a git executable"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed; skip git tests without git."""
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    skip_git = pytest.mark.skip(reason="git executable not found")
    has_git = shutil.which("git") is not None
    for item in items:
        if "live" in item.keywords and not config.getoption("--run-live"):
            item.add_marker(skip_live)
        if "git" in item.keywords and not has_git:
            item.add_marker(skip_git)


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def make_credential(cred_id="cred-a", kind=CredentialKind.SYSTEM_A, **overrides):
    defaults = {
        "id": cred_id,
        "name": f"{cred_id} name",
        "kind": kind,
        "username": "sync-bot",
        "token": "s3cr3t-token",
    }
    defaults.update(overrides)
    return Credential(**defaults)


def make_repository(
    source_url="https://a.example.com/org/repo.git",
    target_url="https://b.example.com/org/repo.git",
    branches=("main",),
    direction=SyncDirection.A_TO_B,
    policy=ConflictPolicy.PREFER_SOURCE,
    repo_id="repo-1",
    **overrides,
):
    defaults = {
        "id": repo_id,
        "name": "Example repository",
        "source_url": source_url,
        "target_url": target_url,
        "source_credential": make_credential("cred-a", CredentialKind.SYSTEM_A),
        "target_credential": make_credential("cred-b", CredentialKind.SYSTEM_B),
        "branch_pairs": [BranchPair(name=b) for b in branches],
        "sync_direction": direction,
        "conflict_policy": policy,
    }
    defaults.update(overrides)
    return RepositoryConfig(**defaults)


@pytest.fixture
def credential_factory():
    return make_credential


@pytest.fixture
def repository_factory():
    return make_repository


@pytest.fixture
def mock_config(tmp_path):
    """A Config pointing every path into tmp_path."""
    return Config(
        temp_dir=str(tmp_path / "work"),
        store_path=str(tmp_path / "data" / "storage.json"),
        git_timeout=30,
        sync_timeout=120,
        preview_cleanup_delay=0,
        max_parallel_syncs=2,
    )


@pytest.fixture
def mock_working_copy():
    """A MagicMock standing in for a WorkingCopy."""
    from git_sync_manager.engine.working_copy import WorkingCopy

    return MagicMock(spec=WorkingCopy)


# ---------------------------------------------------------------------------
# Local git remotes
# ---------------------------------------------------------------------------


class GitRemotes:
    """Two bare repositories ("A" and "B") plus a scratch clone for edits.

    Both start from the same initial commit on ``main`` so they share
    history, the way a real mirrored pair does.
    """

    def __init__(self, root: Path):
        self.root = root
        self.remote_a = root / "remote-a.git"
        self.remote_b = root / "remote-b.git"
        self._git = git.Git()

        seed = root / "seed"
        self.run("init", "-q", "-b", "main", str(seed))
        self.write(seed, "README.md", "hello\n")
        self.commit(seed, "initial commit")
        self.run("clone", "-q", "--bare", str(seed), str(self.remote_a))
        self.run("clone", "-q", "--bare", str(seed), str(self.remote_b))
        shutil.rmtree(seed)

    def run(self, *args: str, cwd: Path | None = None) -> str:
        runner = git.Git(str(cwd)) if cwd else self._git
        return runner.execute(["git", *args], env=GIT_ENV)

    @staticmethod
    def write(checkout: Path, path: str, content: str) -> None:
        target = checkout / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)

    def commit(self, checkout: Path, message: str) -> None:
        self.run("add", "-A", cwd=checkout)
        self.run("commit", "-q", "-m", message, cwd=checkout)

    def checkout(self, remote: Path, name: str, branch: str = "main") -> Path:
        path = self.root / f"edit-{name}"
        if path.exists():
            shutil.rmtree(path)
        self.run("clone", "-q", "--branch", branch, str(remote), str(path))
        return path

    def change(self, remote: Path, files: dict, message: str, branch: str = "main") -> None:
        """Commit *files* (path -> content, None deletes) onto *branch* of *remote*."""
        path = self.checkout(remote, "change", branch)
        for name, content in files.items():
            if content is None:
                (path / name).unlink()
            else:
                self.write(path, name, content)
        self.commit(path, message)
        self.run("push", "-q", "origin", branch, cwd=path)
        shutil.rmtree(path)

    def create_branch(self, remote: Path, branch: str, files: dict | None = None) -> None:
        path = self.checkout(remote, "branch")
        self.run("checkout", "-q", "-b", branch, cwd=path)
        for name, content in (files or {}).items():
            self.write(path, name, content)
        if files:
            self.commit(path, f"start {branch}")
        self.run("push", "-q", "origin", branch, cwd=path)
        shutil.rmtree(path)

    def read(self, remote: Path, path: str, branch: str = "main") -> str:
        return self.run("--git-dir", str(remote), "show", f"{branch}:{path}")

    def head(self, remote: Path, branch: str = "main") -> str:
        return self.run("--git-dir", str(remote), "rev-parse", branch)

    def has_branch(self, remote: Path, branch: str) -> bool:
        output = self.run(
            "--git-dir", str(remote), "for-each-ref", f"refs/heads/{branch}"
        )
        return bool(output.strip())


@pytest.fixture
def git_remotes(tmp_path):
    """Two bare remotes sharing one initial commit on main."""
    return GitRemotes(tmp_path / "remotes")
