"""Repository sync engine.

Components:

- ``SyncOrchestrator`` -- runs syncs, previews and credential checks.
- ``SyncService`` -- the same operations for repositories held in a store.
- ``WorkingCopy`` -- one ephemeral local clone driven through GitPython.
- ``DiffInspector`` -- what a sync from one ref onto another would change.
- ``create_resolver`` -- conflict policy factory.

Usage example
-------------
::

    from pathlib import Path
    from git_sync_manager.engine import SyncOrchestrator
    from git_sync_manager.engine.reporter import format_sync_result

    orchestrator = SyncOrchestrator(temp_root=Path("/tmp/git-sync"))

    # Look first: no remote is touched
    for preview in orchestrator.preview_sync(config):
        print(preview.branch, preview.diff.summary())

    result = orchestrator.perform_sync(config)
    print(format_sync_result(result))
"""

from .diff import DiffInspector
from .errors import (
    AuthError,
    CloneError,
    ConflictsUnresolved,
    FetchError,
    PullError,
    PushError,
    SyncCancelledError,
    SyncError,
    SyncTimeoutError,
    UnknownError,
)
from .orchestrator import SyncOrchestrator
from .resolver import create_resolver
from .service import RepositoryNotFoundError, SyncService
from .working_copy import WorkingCopy

__all__ = [
    "AuthError",
    "CloneError",
    "ConflictsUnresolved",
    "DiffInspector",
    "FetchError",
    "PullError",
    "PushError",
    "RepositoryNotFoundError",
    "SyncCancelledError",
    "SyncError",
    "SyncOrchestrator",
    "SyncService",
    "SyncTimeoutError",
    "UnknownError",
    "WorkingCopy",
    "create_resolver",
]
