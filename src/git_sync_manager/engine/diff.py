"""File- and commit-level differences between two refs of a working copy.

The diff answers "what would syncing *from_ref* onto *to_ref* change":

* files come from ``git diff <to>...<from>`` (changes on the source side
  since the merge base), falling back to the direct ``git diff <to> <from>``
  when the refs share no merge base (shallow clones, unrelated histories);
* commits come from ``git log <to>..<from>``.

File status uses git's own rename detection (``--name-status -M``). When a
path has no status entry the status is guessed from its line counts: pure
additions mean added, pure deletions mean deleted, anything else modified.
That guess cannot tell a rename from an add plus a delete.
"""

from __future__ import annotations

import logging

from git import GitCommandError

from .models import CommitInfo, FileChange, FileStatus, SyncDiff
from .working_copy import WorkingCopy

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = f"%H{_FIELD_SEP}%s{_FIELD_SEP}%an{_FIELD_SEP}%aI{_RECORD_SEP}"

_STATUS_LETTERS = {
    "A": FileStatus.ADDED,
    "C": FileStatus.ADDED,
    "D": FileStatus.DELETED,
    "M": FileStatus.MODIFIED,
    "T": FileStatus.MODIFIED,
    "R": FileStatus.RENAMED,
}


def normalize_ref(ref: str, remote: str = "origin") -> str:
    """Turn a bare branch name into ``<remote>/<branch>``."""
    return ref if "/" in ref else f"{remote}/{ref}"


def classify_by_counts(additions: int, deletions: int) -> FileStatus:
    if additions > 0 and deletions == 0:
        return FileStatus.ADDED
    if additions == 0 and deletions > 0:
        return FileStatus.DELETED
    return FileStatus.MODIFIED


def parse_numstat(output: str) -> dict[str, tuple[int, int, str | None]]:
    """Parse ``git diff --numstat -z -M`` output.

    Returns:
        Mapping of path -> (additions, deletions, old_path). Binary files
        report ``-`` counts, which become 0.
    """
    result: dict[str, tuple[int, int, str | None]] = {}
    tokens = output.split("\0")
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if not token.strip():
            continue
        parts = token.split("\t")
        if len(parts) < 3:
            continue
        adds = int(parts[0]) if parts[0].isdigit() else 0
        dels = int(parts[1]) if parts[1].isdigit() else 0
        path = parts[2]
        old_path = None
        if path == "" and i + 1 < len(tokens):
            # rename: "<a>\t<d>\t\0<old>\0<new>\0"
            old_path, path = tokens[i], tokens[i + 1]
            i += 2
        result[path] = (adds, dels, old_path)
    return result


def parse_name_status(output: str) -> dict[str, FileStatus]:
    """Parse ``git diff --name-status -z -M`` output into path -> status."""
    result: dict[str, FileStatus] = {}
    tokens = [t for t in output.split("\0")]
    i = 0
    while i < len(tokens):
        code = tokens[i]
        i += 1
        if not code:
            continue
        letter = code[0]
        if letter in ("R", "C"):
            if i + 1 >= len(tokens):
                break
            path = tokens[i + 1]
            i += 2
        else:
            if i >= len(tokens):
                break
            path = tokens[i]
            i += 1
        result[path] = _STATUS_LETTERS.get(letter, FileStatus.MODIFIED)
    return result


def parse_log(output: str) -> list[CommitInfo]:
    commits = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record:
            continue
        fields = record.split(_FIELD_SEP)
        if len(fields) < 4:
            continue
        commits.append(
            CommitInfo(
                hash=fields[0],
                message=fields[1],
                author=fields[2],
                date=fields[3],
            )
        )
    return commits


class DiffInspector:
    """Compute ``SyncDiff`` snapshots inside a ``WorkingCopy``.

    Args:
        default_remote: Remote prepended to bare branch names.
    """

    def __init__(self, default_remote: str = "origin") -> None:
        self.default_remote = default_remote

    def diff(self, working_copy: WorkingCopy, from_ref: str, to_ref: str) -> SyncDiff:
        """Return the changes *from_ref* would bring to *to_ref*.

        A missing *to_ref* (first sync of a branch) yields an empty diff.
        """
        from_ref = normalize_ref(from_ref, self.default_remote)
        to_ref = normalize_ref(to_ref, self.default_remote)
        logger.info("Comparing %s -> %s", from_ref, to_ref)

        if not working_copy.ref_exists(to_ref):
            logger.info("%s does not exist yet (first sync)", to_ref)
            return SyncDiff()

        try:
            return self._compare(working_copy, f"{to_ref}...{from_ref}", from_ref, to_ref)
        except GitCommandError as exc:
            logger.info(
                "Merge-base comparison failed (%s), using direct comparison",
                exc.status,
            )
        return self._compare(working_copy, to_ref, from_ref, to_ref, direct=True)

    def _compare(
        self,
        working_copy: WorkingCopy,
        range_spec: str,
        from_ref: str,
        to_ref: str,
        direct: bool = False,
    ) -> SyncDiff:
        spec = [range_spec, from_ref] if direct else [range_spec]
        numstat = parse_numstat(
            working_copy.run_git("diff", "--numstat", "-z", "-M", *spec)
        )
        statuses = parse_name_status(
            working_copy.run_git("diff", "--name-status", "-z", "-M", *spec)
        )
        log_output = working_copy.run_git(
            "log", f"--format={_LOG_FORMAT}", f"{to_ref}..{from_ref}"
        )

        files = []
        for path, (adds, dels, old_path) in numstat.items():
            status = statuses.get(path) or classify_by_counts(adds, dels)
            files.append(
                FileChange(
                    path=path,
                    status=status,
                    additions=adds,
                    deletions=dels,
                    old_path=old_path,
                )
            )
        diff = SyncDiff(files=files, commits=parse_log(log_output))
        logger.info(
            "Diff %s -> %s: %d files, %d commits",
            from_ref,
            to_ref,
            len(diff.files),
            len(diff.commits),
        )
        return diff
