"""sourcectl exception hierarchy with exit codes and error kinds."""

from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

# Exit code constants (simple 0-5 range)
EXIT_SUCCESS = 0  # Operation succeeded
EXIT_ERROR = 1  # Generic error / failure
EXIT_NOT_READY = 2  # Tool missing / repository not usable
EXIT_CANCELLED = 3  # Command cancelled before completion
EXIT_PARTIAL = 4  # Partial success (some batches succeeded, some failed)
EXIT_USAGE = 5  # Invalid usage / arguments


class ErrorKind(str, Enum):
    """Categories of source control failures reported to the host."""

    VALIDATION = "validation"
    CONFIG = "config"
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_EXECUTION = "tool_execution"
    PARSE = "parse"
    TIMEOUT = "timeout"
    LOCK_CONTENTION = "lock_contention"
    INTERNAL = "internal"


class SourceControlError(Exception):
    """Base exception for all sourcectl errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, exit_code: int = EXIT_ERROR):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code

    def categorized_message(self) -> str:
        """Short message prefixed with the error category, for display."""
        return f"[{self.kind.value}] {self.message}"


class TransientError(SourceControlError):
    """
    Retryable errors (repository lock held by another process, slow tool).

    Carries retry metadata for debugging.
    """

    def __init__(
        self,
        message: str,
        attempt: int = 1,
        max_attempts: int = 2,
        retry_in: float | None = None,
    ):
        super().__init__(message, exit_code=EXIT_ERROR)
        self.attempt = attempt
        self.max_attempts = max_attempts
        self.retry_in = retry_in


class PermanentError(SourceControlError):
    """Non-retryable errors (config errors, missing executable)."""

    exit_code = EXIT_ERROR


class ValidationError(SourceControlError):
    """Command rejected before any subprocess was started."""

    kind = ErrorKind.VALIDATION
    exit_code = EXIT_USAGE

    def __init__(self, message: str = "Invalid command arguments"):
        super().__init__(message, exit_code=self.exit_code)


class ConfigError(PermanentError):
    """Configuration errors (invalid values, missing repository)."""

    kind = ErrorKind.CONFIG
    exit_code = EXIT_NOT_READY

    def __init__(self, message: str = "Configuration error"):
        super().__init__(message, exit_code=self.exit_code)


class ToolNotFound(PermanentError):
    """Configured executable is missing or cannot be executed."""

    kind = ErrorKind.TOOL_NOT_FOUND
    exit_code = EXIT_NOT_READY

    def __init__(self, executable: str, reason: str = "not found"):
        self.executable = executable
        super().__init__(f"Git executable '{executable}' {reason}", exit_code=self.exit_code)


class ToolExecutionError(SourceControlError):
    """External tool exited with a non-zero status."""

    kind = ErrorKind.TOOL_EXECUTION

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr_lines: Sequence[str] = (),
        failed_paths: Sequence[Path] = (),
        partial: bool = False,
    ):
        exit_code = EXIT_PARTIAL if partial else EXIT_ERROR
        super().__init__(message, exit_code=exit_code)
        self.returncode = returncode
        self.stderr_lines = list(stderr_lines)
        self.failed_paths = list(failed_paths)


class ParseError(SourceControlError):
    """Tool output did not match the expected grammar."""

    kind = ErrorKind.PARSE

    def __init__(self, message: str, line: Optional[str] = None):
        if line is not None:
            message = f"{message}: {line!r}"
        super().__init__(message)
        self.line = line


class CommandTimeoutError(TransientError):
    """External tool did not finish within the configured timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, args: Sequence[str], timeout: float):
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s: {' '.join(args)}", max_attempts=1)


class RepositoryLockContention(TransientError):
    """Another git process holds the repository lock."""

    kind = ErrorKind.LOCK_CONTENTION

    def __init__(self, message: str, attempt: int = 1, max_attempts: int = 2):
        super().__init__(message, attempt=attempt, max_attempts=max_attempts)


class InvalidStateTransitionError(SourceControlError):
    """Raised when a command is moved through an invalid lifecycle transition."""

    def __init__(self, command_id: str, from_state: str, to_state: str) -> None:
        self.command_id = command_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid state transition for command {command_id}: {from_state} -> {to_state}")


class CommandSealedError(SourceControlError):
    """Raised when a finished command is modified."""

    def __init__(self, command_id: str, attribute: str) -> None:
        self.command_id = command_id
        self.attribute = attribute
        super().__init__(f"Command {command_id} is finished; cannot set '{attribute}'")
