"""Exception hierarchy and structured error responses.

Every failure that crosses the engine boundary carries a stable string
``code`` intended for programmatic branching by the caller (for example
``NOT_INITIALIZED`` or ``LOCAL_CHANGES_EXIST``), a human-readable message,
and, where the engine knows them, a list of remediating actions.
"""

from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Stable error codes
# ---------------------------------------------------------------------------

NOT_INITIALIZED = "NOT_INITIALIZED"
LOCAL_CHANGES_EXIST = "LOCAL_CHANGES_EXIST"
DOLT_EXECUTABLE_NOT_FOUND = "DOLT_EXECUTABLE_NOT_FOUND"
NO_CHANGES = "NO_CHANGES"
MERGE_CONFLICT = "MERGE_CONFLICT"
COLLECTION_CONFLICT = "COLLECTION_CONFLICT"
COMMAND_TIMEOUT = "COMMAND_TIMEOUT"
COMMAND_FAILED = "COMMAND_FAILED"
NETWORK_UNREACHABLE = "NETWORK_UNREACHABLE"
DUPLICATE_REMOTE = "DUPLICATE_REMOTE"
INVALID_PARAMETERS = "INVALID_PARAMETERS"
COLLECTION_NOT_FOUND = "COLLECTION_NOT_FOUND"
OPERATION_FAILED = "OPERATION_FAILED"


class DocBranchError(Exception):
    """Base class for all engine errors.

    Args:
        message: Human-readable description.
        code: Stable error code (see module constants).
        actions: Optional remediating actions for the caller.
    """

    code = OPERATION_FAILED

    def __init__(
        self,
        message: str,
        code: str | None = None,
        actions: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.actions = list(actions or [])


# ---------------------------------------------------------------------------
# Environment errors (never retried by the engine)
# ---------------------------------------------------------------------------


class DoltExecutableNotFoundError(DocBranchError):
    code = DOLT_EXECUTABLE_NOT_FOUND

    def __init__(self, executable: str) -> None:
        super().__init__(
            f"Dolt executable not found: {executable}",
            actions=[
                "Install Dolt from https://docs.dolthub.com",
                "Set DOLT_EXECUTABLE_PATH to the dolt binary",
            ],
        )
        self.executable = executable


class NotInitializedError(DocBranchError):
    code = NOT_INITIALIZED

    def __init__(self, path: str) -> None:
        super().__init__(
            f"No Dolt repository configured at {path}",
            actions=["Clone", "Init"],
        )
        self.path = path


class DoltTimeoutError(DocBranchError):
    """A Dolt subprocess exceeded its timeout and was killed."""

    code = COMMAND_TIMEOUT

    def __init__(self, command: list[str], timeout: float) -> None:
        super().__init__(
            f"Command timed out after {timeout:g}s: {' '.join(command)}"
        )
        self.command = command
        self.timeout = timeout


class NetworkError(DocBranchError):
    code = NETWORK_UNREACHABLE


# ---------------------------------------------------------------------------
# State conflicts and command failures
# ---------------------------------------------------------------------------


class DoltCommandError(DocBranchError):
    """A Dolt command exited non-zero where success was required."""

    code = COMMAND_FAILED

    def __init__(
        self, command: list[str], exit_code: int, stderr: str
    ) -> None:
        detail = stderr.strip() or f"exit code {exit_code}"
        super().__init__(f"dolt {' '.join(command)} failed: {detail}")
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class DuplicateRemoteError(DocBranchError):
    code = DUPLICATE_REMOTE

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Remote '{name}' already exists",
            actions=["Remove the existing remote or choose another name"],
        )
        self.name = name


class ValidationError(DocBranchError, ValueError):
    code = INVALID_PARAMETERS


class CollectionNotFoundError(DocBranchError):
    code = COLLECTION_NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(f"Collection '{name}' does not exist")
        self.name = name


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------


def build_error_response(
    code: str,
    message: str,
    corrective_action: str | None = None,
    **payload: Any,
) -> dict[str, Any]:
    """Build a structured failure payload.

    Args:
        code: Stable error code.
        message: Human-readable error description.
        corrective_action: Specific action the caller can take, if any.
        **payload: Operation-specific fields merged into the response.

    Returns:
        Dict with ``success=False``, ``error``, ``message`` and payload.

    Examples:
        >>> build_error_response("NO_CHANGES", "Nothing to commit")
        {'success': False, 'error': 'NO_CHANGES', 'message': 'Nothing to commit'}
    """
    response: dict[str, Any] = {
        "success": False,
        "error": code,
        "message": message,
    }
    if corrective_action:
        response["hint"] = corrective_action
    response.update(payload)
    return response


def error_to_response(exc: Exception) -> dict[str, Any]:
    """Translate an exception into a structured failure payload."""
    match exc:
        case DocBranchError(code=code, message=message, actions=actions):
            response = build_error_response(code, message)
            if actions:
                response["available_actions"] = actions
            return response
        case ValueError():
            return build_error_response(
                INVALID_PARAMETERS,
                str(exc),
                "Check parameter values and retry.",
            )
        case _:
            return build_error_response(OPERATION_FAILED, str(exc))
