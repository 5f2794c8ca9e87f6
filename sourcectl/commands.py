"""Command: one queued version control operation and its lifecycle."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from sourcectl.errors import (
    CommandSealedError,
    ErrorKind,
    InvalidStateTransitionError,
    SourceControlError,
)
from sourcectl.state import PathLike, WorkingCopyStatus, normalize_paths, utcnow

logger = logging.getLogger(__name__)


class CommandType(str, Enum):
    """Operations understood by the executor."""

    STATUS = "status"
    ADD = "add"
    DELETE = "delete"
    REVERT = "revert"
    CHECKOUT = "checkout"
    COMMIT = "commit"
    HISTORY = "history"
    DIFF = "diff"
    LOCK = "lock"
    UNLOCK = "unlock"
    MOVE = "move"
    RESOLVE = "resolve"
    INIT = "init"
    PULL = "pull"
    PUSH = "push"


# Types that may run without target paths; an empty path set means the whole repository.
REPOSITORY_WIDE_TYPES = frozenset({CommandType.STATUS, CommandType.INIT, CommandType.PULL, CommandType.PUSH})

# Types whose payload is a tuple of refreshed FileStates merged into the cache.
STATE_UPDATING_TYPES = frozenset(
    {
        CommandType.STATUS,
        CommandType.ADD,
        CommandType.DELETE,
        CommandType.REVERT,
        CommandType.CHECKOUT,
        CommandType.COMMIT,
        CommandType.LOCK,
        CommandType.UNLOCK,
        CommandType.MOVE,
        CommandType.RESOLVE,
    }
)

RECOGNIZED_PARAMETERS: dict[CommandType, frozenset[str]] = {
    CommandType.STATUS: frozenset(),
    CommandType.ADD: frozenset(),
    CommandType.DELETE: frozenset({"keep_local"}),
    CommandType.REVERT: frozenset(),
    CommandType.CHECKOUT: frozenset({"revision"}),
    CommandType.COMMIT: frozenset({"message"}),
    CommandType.HISTORY: frozenset({"max_revisions"}),
    CommandType.DIFF: frozenset({"against", "cached"}),
    CommandType.LOCK: frozenset(),
    CommandType.UNLOCK: frozenset({"force"}),
    CommandType.MOVE: frozenset(),
    CommandType.RESOLVE: frozenset(),
    CommandType.INIT: frozenset({"remote_url"}),
    CommandType.PULL: frozenset({"remote", "branch"}),
    CommandType.PUSH: frozenset({"remote", "branch", "set_upstream"}),
}


class CommandState(str, Enum):
    """Command lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({CommandState.SUCCEEDED, CommandState.FAILED, CommandState.CANCELLED})


@dataclass(frozen=True)
class Revision:
    """One entry of a file's history."""

    revision_id: str
    author: str
    date: datetime
    message: str
    author_email: str = ""
    action: WorkingCopyStatus = WorkingCopyStatus.MODIFIED
    path: Optional[Path] = None

    @property
    def short_id(self) -> str:
        return self.revision_id[:8]

    @property
    def summary(self) -> str:
        """First line of the commit message."""
        return self.message.splitlines()[0] if self.message else ""


@dataclass(eq=False)
class Command:
    """
    Description of one version control operation plus slots for its results.

    Created PENDING by the Provider, claimed RUNNING by exactly one worker,
    then moved once to a terminal state, after which it is sealed: every
    attribute assignment raises CommandSealedError.
    """

    VALID_TRANSITIONS = {
        CommandState.PENDING: {CommandState.RUNNING, CommandState.CANCELLED},
        CommandState.RUNNING: {CommandState.SUCCEEDED, CommandState.FAILED, CommandState.CANCELLED},
        CommandState.SUCCEEDED: set(),
        CommandState.FAILED: set(),
        CommandState.CANCELLED: set(),
    }

    type: CommandType
    target_paths: tuple[Path, ...] = ()
    parameters: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    generation: int = 0
    state: CommandState = CommandState.PENDING
    result_payload: Any = None
    raw_output_lines: list[str] = field(default_factory=list)
    raw_error_lines: list[str] = field(default_factory=list)
    error: Optional[SourceControlError] = None
    failed_paths: list[Path] = field(default_factory=list)
    branch: Optional[str] = None
    invoked: bool = False
    abandoned: bool = False
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _sealed: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        self.type = CommandType(self.type)
        self.target_paths = normalize_paths(self.target_paths)
        self.parameters = MappingProxyType(dict(self.parameters))

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("_sealed", False):
            raise CommandSealedError(self.__dict__.get("id", "?"), name)
        object.__setattr__(self, name, value)

    @classmethod
    def create(
        cls,
        command_type: CommandType,
        paths: Iterable[PathLike] = (),
        parameters: Optional[Mapping[str, Any]] = None,
        generation: int = 0,
    ) -> "Command":
        return cls(
            type=CommandType(command_type),
            target_paths=tuple(paths),  # type: ignore[arg-type]
            parameters=parameters or {},
            generation=generation,
        )

    @property
    def is_repository_wide(self) -> bool:
        return not self.target_paths

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state is CommandState.SUCCEEDED

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def dedup_key(self) -> tuple[Any, ...]:
        """Identity used to detect identical in-flight commands."""
        params = tuple(sorted((key, repr(value)) for key, value in self.parameters.items()))
        return (self.type, frozenset(self.target_paths), params)

    def request_cancel(self) -> None:
        """Ask the executor to stop at its next safe point."""
        self._cancel_event.set()

    def _transition(self, to_state: CommandState) -> None:
        if to_state not in self.VALID_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(self.id, self.state.value, to_state.value)
        logger.debug(f"Command {self.id} ({self.type.value}): {self.state.value} -> {to_state.value}")
        self.state = to_state
        if to_state is CommandState.RUNNING:
            self.started_at = utcnow()

    def _seal(self) -> None:
        self.finished_at = utcnow()
        self.raw_output_lines = tuple(self.raw_output_lines)  # type: ignore[assignment]
        self.raw_error_lines = tuple(self.raw_error_lines)  # type: ignore[assignment]
        self.failed_paths = tuple(self.failed_paths)  # type: ignore[assignment]
        self._sealed = True

    def start(self) -> bool:
        """
        Claim the command for execution.

        Returns:
            False if the command was already cancelled or abandoned
        """
        with self._lock:
            if self.state is not CommandState.PENDING:
                return False
            self._transition(CommandState.RUNNING)
            return True

    def record_output(self, stdout_lines: Iterable[str], stderr_lines: Iterable[str]) -> None:
        """Append captured subprocess output (ignored once abandoned)."""
        with self._lock:
            if self._sealed:
                return
            self.invoked = True
            self.raw_output_lines.extend(stdout_lines)
            self.raw_error_lines.extend(stderr_lines)

    def record_branch(self, branch: str) -> None:
        """Remember the branch the tool reported while running."""
        with self._lock:
            if not self._sealed:
                self.branch = branch

    def succeed(self, payload: Any = None) -> None:
        with self._lock:
            if self.abandoned:
                return
            self._transition(CommandState.SUCCEEDED)
            self.result_payload = payload
            self._seal()

    def fail(self, error: SourceControlError, failed_paths: Iterable[Path] = ()) -> None:
        with self._lock:
            if self.abandoned:
                return
            self._transition(CommandState.FAILED)
            self.error = error
            self.failed_paths.extend(failed_paths)
            if not self.raw_error_lines:
                self.raw_error_lines.append(error.message)
            self._seal()

    def cancel(self) -> bool:
        """
        Move a pending or running command to CANCELLED.

        Returns:
            True if the command is now cancelled by this call
        """
        with self._lock:
            if self.state not in (CommandState.PENDING, CommandState.RUNNING):
                return False
            self._cancel_event.set()
            self._transition(CommandState.CANCELLED)
            self._seal()
            return True

    def abandon(self) -> bool:
        """
        Give up on a running command during forced shutdown.

        The command becomes CANCELLED and any result its worker produces
        later is discarded.

        Returns:
            True if the command was running and is now abandoned
        """
        with self._lock:
            if self.state is not CommandState.RUNNING:
                return False
            self._cancel_event.set()
            self.abandoned = True
            self._transition(CommandState.CANCELLED)
            self._seal()
            return True
