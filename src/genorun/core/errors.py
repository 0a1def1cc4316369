"""Exception hierarchy for genorun.

All genorun exceptions inherit from GenorunError, enabling callers to catch
broad (GenorunError) or narrow (e.g., InvalidStateError). Caller errors
(not found, authorization, invalid state, invalid parameters) are raised
synchronously from orchestrator calls. Execution errors (timeout, launch,
tool failure, parse) are raised inside a job body and recorded on the job.
"""

from __future__ import annotations


class GenorunError(Exception):
    """Base exception for all genorun errors."""


class NotFoundError(GenorunError):
    """Raised when a job, input reference or result region does not exist."""


class AuthorizationError(GenorunError):
    """Raised when the requesting owner does not own the job or input."""


class InvalidStateError(GenorunError):
    """Raised for an illegal job transition or a query on the wrong state.

    Examples: cancelling a finished job, fetching results of a job that
    has not completed.
    """


class InvalidParametersError(GenorunError):
    """Raised when submission parameters fail validation."""


class ProcessTimeoutError(GenorunError, TimeoutError):
    """Raised when a supervised process exceeds its time budget.

    The process group has already been killed when this is raised.
    """

    def __init__(self, timeout_seconds: float, command: str) -> None:
        self.timeout_seconds = timeout_seconds
        self.command = command
        super().__init__(
            f"Process '{command}' timed out after {timeout_seconds:g}s"
        )


class LaunchError(GenorunError):
    """Raised when the external executable cannot be started."""


class ToolExecutionError(GenorunError):
    """Raised when the external tool exits with a non-zero status."""

    def __init__(self, tool: str, exit_code: int | None, stderr_tail: str) -> None:
        self.tool = tool
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        detail = stderr_tail.strip() or "no stderr output"
        super().__init__(f"{tool} failed with exit code {exit_code}: {detail}")


class ParseError(GenorunError):
    """Raised when tool output violates its column contract.

    Row-level parse errors are logged and the row is skipped; a ParseError
    only escapes the parser when a table had data rows and none parsed.
    """


__all__ = [
    "AuthorizationError",
    "GenorunError",
    "InvalidParametersError",
    "InvalidStateError",
    "LaunchError",
    "NotFoundError",
    "ParseError",
    "ProcessTimeoutError",
    "ToolExecutionError",
]
