"""
Input validation functions for docbranch.

Validates collection names, document ids, branch and remote names, and
commit messages before they are interpolated into Dolt commands or SQL.
"""

import re

from .errors import ValidationError

# Dolt refs share git's rules; a leading "-" would be read as a CLI flag
_REF_FORBIDDEN = re.compile(r"[\s~^:?*\[\\]|\.\.|@\{|//")
_REMOTE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_COLLECTION_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*[A-Za-z0-9]$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


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


def ensure_valid(result: tuple[bool, str]) -> None:
    """Raise ``ValidationError`` for a failed ``(is_valid, reason)`` pair."""
    is_valid, reason = result
    if not is_valid:
        raise ValidationError(reason)


def validate_collection_name(name: str) -> tuple[bool, str]:
    """
    Validate a document-store collection name.

    Returns:
        Tuple of (is_valid, error_message).

    Validation rules:
        - 3 to 63 characters
        - Starts and ends with an alphanumeric character
        - Only alphanumerics, '_', '-' and '.'
        - No '..'
    """
    if not name or not name.strip():
        return (False, format_validation_error("Collection name", "cannot be empty"))

    if not 3 <= len(name) <= 63:
        return (
            False,
            format_validation_error(
                "Collection name", "must be between 3 and 63 characters"
            ),
        )

    if ".." in name:
        return (False, format_validation_error("Collection name", "cannot contain '..'"))

    if not _COLLECTION_NAME.match(name):
        return (
            False,
            format_validation_error(
                "Collection name",
                "may only contain letters, digits, '_', '-' and '.'",
            ),
        )

    return (True, "")


def validate_document_id(doc_id: str) -> tuple[bool, str]:
    if not doc_id or not doc_id.strip():
        return (False, format_validation_error("Document id", "cannot be empty"))
    if "\x00" in doc_id:
        return (False, format_validation_error("Document id", "cannot contain NUL"))
    return (True, "")


def validate_branch_name(branch: str) -> tuple[bool, str]:
    """
    Validate a branch or ref name passed to the Dolt CLI.

    Validation rules:
        - Cannot be empty
        - Cannot start with '-' (would be parsed as an option)
        - Cannot contain whitespace, '..', '@{', '//' or any of ``~^:?*[\\``
        - Cannot end with '/', '.' or '.lock'
    """
    if not branch or not branch.strip():
        return (False, format_validation_error("Branch name", "cannot be empty"))

    if branch.startswith("-"):
        return (False, format_validation_error("Branch name", "cannot start with '-'"))

    if _REF_FORBIDDEN.search(branch):
        return (
            False,
            format_validation_error(
                "Branch name", f"contains forbidden characters: {branch!r}"
            ),
        )

    if branch.endswith(("/", ".", ".lock")):
        return (
            False,
            format_validation_error("Branch name", "cannot end with '/', '.' or '.lock'"),
        )

    return (True, "")


def validate_remote_name(name: str) -> tuple[bool, str]:
    if not name or not name.strip():
        return (False, format_validation_error("Remote name", "cannot be empty"))
    if not _REMOTE_NAME.match(name):
        return (
            False,
            format_validation_error(
                "Remote name", "may only contain letters, digits, '_', '-' and '.'"
            ),
        )
    return (True, "")


def validate_remote_url(url: str) -> tuple[bool, str]:
    if not url or not url.strip():
        return (False, format_validation_error("Remote URL", "cannot be empty"))
    if url.startswith("-"):
        return (False, format_validation_error("Remote URL", "cannot start with '-'"))
    return (True, "")


def validate_commit_message(
    message: str, max_size: int = 65_536
) -> tuple[bool, str]:
    """
    Validate a commit message.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot exceed max_size bytes
    """
    if not message or not message.strip():
        return (False, format_validation_error("Commit message", "cannot be empty"))

    if len(message.encode("utf-8")) > max_size:
        return (
            False,
            format_validation_error(
                "Commit message", f"exceeds maximum size of {max_size} bytes"
            ),
        )

    return (True, "")
