"""
Input validation for git-sync-manager.

Checks branch names, remote URLs, cron expressions and ids before any git
process is started, so bad input fails with a readable message instead of
a git error.
"""

import re
from urllib.parse import urlsplit

from croniter import croniter

_REMOTE_SCHEMES = ("http", "https", "ssh", "git", "file")
# user@host:path (scp-like ssh syntax)
_SCP_LIKE = re.compile(r"^[\w.-]+@[\w.-]+:.+$")
_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Branch name")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_branch_name(branch: str) -> tuple[bool, str]:
    """
    Validate a branch name against git's ref-name rules.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules (subset of ``git check-ref-format``):
        - Cannot be empty or whitespace-only
        - Cannot start with '-' or '/' or end with '/' or '.lock'
        - Cannot contain '..', '//', '@{', whitespace, or any of ~^:?*[\\
    """
    if not branch or not branch.strip():
        return (False, format_validation_error("Branch name", "cannot be empty"))

    if branch.startswith("-"):
        return (False, format_validation_error("Branch name", "cannot start with '-'"))

    if branch.startswith("/") or branch.endswith("/"):
        return (
            False,
            format_validation_error("Branch name", "cannot start or end with '/'"),
        )

    if branch.endswith(".lock") or branch.endswith("."):
        return (
            False,
            format_validation_error("Branch name", "cannot end with '.lock' or '.'"),
        )

    for token in ("..", "//", "@{"):
        if token in branch:
            return (
                False,
                format_validation_error("Branch name", f"cannot contain '{token}'"),
            )

    if any(ch.isspace() or ch in "~^:?*[\\" or ord(ch) < 32 for ch in branch):
        return (
            False,
            format_validation_error(
                "Branch name", "cannot contain whitespace or any of ~^:?*[\\"
            ),
        )

    return (True, "")


def validate_remote_url(url: str) -> tuple[bool, str]:
    """
    Validate a remote repository URL.

    Accepts http(s), ssh, git and file URLs, scp-like ``user@host:path``
    and absolute local paths.
    """
    if not url or not url.strip():
        return (False, format_validation_error("Remote URL", "cannot be empty"))

    url = url.strip()
    if url.startswith("-"):
        return (False, format_validation_error("Remote URL", "cannot start with '-'"))

    if url.startswith("/") or _SCP_LIKE.match(url):
        return (True, "")

    try:
        parts = urlsplit(url)
    except ValueError:
        return (False, format_validation_error("Remote URL", "is malformed"))

    if parts.scheme not in _REMOTE_SCHEMES:
        return (
            False,
            format_validation_error(
                "Remote URL",
                f"must use one of {', '.join(_REMOTE_SCHEMES)} or be an absolute path",
            ),
        )

    if parts.scheme != "file" and not parts.hostname:
        return (False, format_validation_error("Remote URL", "must include a hostname"))

    return (True, "")


def croniter_expression(expression: str) -> str:
    """Reorder a 6-field expression (leading seconds) into croniter's order."""
    fields = expression.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    return " ".join(fields)


def is_valid_cron_expression(expression: str) -> bool:
    """Return True for a 5- or 6-field expression croniter can evaluate."""
    if not isinstance(expression, str):
        return False
    if len(expression.split()) not in (5, 6):
        return False
    return croniter.is_valid(croniter_expression(expression))


def validate_cron_expression(expression: str) -> tuple[bool, str]:
    if not expression or not expression.strip():
        return (False, format_validation_error("Cron expression", "cannot be empty"))
    fields = len(expression.split())
    if fields not in (5, 6):
        return (
            False,
            format_validation_error(
                "Cron expression", f"must have 5 or 6 fields, got {fields}"
            ),
        )
    if not is_valid_cron_expression(expression):
        return (False, format_validation_error("Cron expression", "is not valid"))
    return (True, "")


def validate_record_id(record_id: str, field_name: str = "Id") -> tuple[bool, str]:
    """Ids end up in directory names, so only a safe character set is allowed."""
    if not record_id or not record_id.strip():
        return (False, format_validation_error(field_name, "cannot be empty"))
    if not _ID_PATTERN.match(record_id):
        return (
            False,
            format_validation_error(
                field_name, "may only contain letters, digits, '.', '_' and '-'"
            ),
        )
    return (True, "")
