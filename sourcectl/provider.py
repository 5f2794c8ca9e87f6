"""Provider: the host-facing facade over queue, cache and executor."""

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from sourcectl.cache import StateCache
from sourcectl.commands import STATE_UPDATING_TYPES, Command, CommandState, CommandType
from sourcectl.config import Settings
from sourcectl.context import RepositoryContext, detect_context
from sourcectl.errors import ConfigError, ToolNotFound, ValidationError
from sourcectl.event_log import append_event, event_for_command
from sourcectl.notifications import (
    CommandFinishedCallback,
    ErrorCallback,
    NotificationHub,
    StatesChangedCallback,
    SubscriptionToken,
)
from sourcectl.probes.tools import ProcessRunner
from sourcectl.queue import CompletionHandle, OperationQueue
from sourcectl.scm.git import GitExecutor
from sourcectl.scm.protocol import Executor
from sourcectl.state import FileState, PathLike, WorkingCopyStatus

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[RepositoryContext, Settings, ProcessRunner], Executor]

# Types that never change the working copy; cancelling them leaves the cache valid
READ_ONLY_TYPES = frozenset({CommandType.STATUS, CommandType.HISTORY, CommandType.DIFF, CommandType.PUSH})


class Capability(str, Enum):
    """Features a host can query before showing the matching actions."""

    STATUS = "status"
    ADD = "add"
    DELETE = "delete"
    REVERT = "revert"
    CHECK_OUT = "check_out"
    CHECK_IN = "check_in"
    HISTORY = "history"
    DIFF = "diff"
    LOCKING = "locking"
    MOVE = "move"
    RESOLVE = "resolve"
    INIT = "init"
    SYNC = "sync"


_BASE_CAPABILITIES = frozenset(
    {
        Capability.STATUS,
        Capability.ADD,
        Capability.DELETE,
        Capability.REVERT,
        Capability.CHECK_OUT,
        Capability.CHECK_IN,
        Capability.HISTORY,
        Capability.DIFF,
        Capability.MOVE,
        Capability.RESOLVE,
    }
)


class Provider:
    """
    Asynchronous version control provider.

    Owns the state cache, the operation queue, the repository context and
    the subscriber list. Only the Provider writes the cache; it does so on
    queue workers, after a command finishes and before its handle resolves.

    Typical use:
        with Provider(get_settings()) as provider:
            handle = provider.execute(CommandType.STATUS, [path])
            command = handle.result(timeout=30)
    """

    def __init__(
        self,
        settings: Settings,
        runner: Optional[ProcessRunner] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ) -> None:
        self.settings = settings
        self.runner = runner or ProcessRunner()
        self.cache = StateCache()
        self.notifications = NotificationHub()
        self._executor_factory: ExecutorFactory = executor_factory or GitExecutor.from_settings
        self._lock = threading.RLock()
        self._context: Optional[RepositoryContext] = None
        self._executor: Optional[Executor] = None
        self._queue: Optional[OperationQueue] = None
        self._generation = 0
        self._available = False
        self._closed = False
        self._in_flight: dict[tuple[Any, ...], CompletionHandle] = {}

    def __enter__(self) -> "Provider":
        if self._context is None:
            self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # Lifecycle

    @property
    def context(self) -> Optional[RepositoryContext]:
        return self._context

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_available(self) -> bool:
        return self._available and not self._closed

    def connect(self) -> RepositoryContext:
        """
        Probe git and the repository and start the workers.

        Returns:
            The detected RepositoryContext

        Raises:
            ToolNotFound: If the git executable is missing or unusable
            ConfigError: If the repository root does not exist
        """
        try:
            context = detect_context(self.settings, self.runner)
        except (ToolNotFound, ConfigError):
            with self._lock:
                self._available = False
            raise

        with self._lock:
            if self._closed:
                raise ConfigError("Provider has been shut down")
            self._install(context)
            if self._queue is None:
                self._queue = self._new_queue(self.settings)
        logger.info(f"Connected to {context.repository_root} (git {context.git_version}, branch {context.branch or '-'})")
        return context

    def reconfigure(self, settings: Settings) -> RepositoryContext:
        """
        Apply new settings.

        Bumps the generation so commands created before the change never
        merge their results, and invalidates the whole cache.

        Raises:
            ToolNotFound, ConfigError: As for connect(); the Provider stays
                unavailable until a later reconfigure succeeds
        """
        with self._lock:
            self.settings = settings
            self._generation += 1
            old_queue = None
            if self._queue is not None and self._queue.max_workers != settings.max_workers:
                old_queue = self._queue
                self._queue = None

        if old_queue is not None:
            old_queue.shutdown(wait=False)

        removed = self.cache.invalidate()
        self.notifications.states_changed(removed)
        logger.info(f"Reconfigured (generation {self._generation}); cache invalidated")
        return self.connect()

    def shutdown(self) -> None:
        """Cancel pending commands, wait for running ones, stop the workers."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            queue = self._queue

        if queue is not None:
            queue.shutdown(
                wait=True,
                grace_seconds=self.settings.shutdown_grace,
                terminate=self.runner.terminate_all,
            )
        logger.debug("Provider shut down")

    def _new_queue(self, settings: Settings) -> OperationQueue:
        return OperationQueue(
            self._run_command,
            max_workers=settings.max_workers,
            completion=self._on_command_finished,
        )

    def _install(self, context: RepositoryContext) -> None:
        """Swap in a context and the executor built for it. Caller holds the lock."""
        self._context = context
        self._executor = self._executor_factory(context, self.settings, self.runner)
        self._available = True

    def _ensure_ready(self) -> Executor:
        if self._closed:
            raise ConfigError("Provider has been shut down")
        if self._context is None or self._executor is None or self._queue is None:
            raise ConfigError("Provider is not connected; call connect() first")
        if not self._available:
            raise ToolNotFound(self._context.executable_path, reason="is unavailable; reconfigure to retry")
        return self._executor

    # Commands

    def execute(
        self,
        command_type: Union[CommandType, str],
        paths: Iterable[PathLike] = (),
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> CompletionHandle:
        """
        Queue a command and return its handle.

        An identical command (same type, path set and parameters) that is
        still in flight is not queued again; its handle is returned.

        Raises:
            ValidationError: If the executor rejects the command
            ToolNotFound: If git is unavailable
            ConfigError: If the Provider is not connected or shut down
        """
        with self._lock:
            executor = self._ensure_ready()
            command = Command.create(CommandType(command_type), paths, parameters, generation=self._generation)
            executor.validate(command)

            key = (command.generation, command.dedup_key)
            existing = self._in_flight.get(key)
            if existing is not None and not existing.done():
                logger.debug(f"Reusing in-flight command {existing.command.id} for {command.type.value}")
                return existing

            queue = self._queue
            if queue is None:
                raise ConfigError("Provider is not connected; call connect() first")
            handle = queue.enqueue(command)
            if not handle.done():
                self._in_flight[key] = handle
        return handle

    def execute_selection(
        self,
        command_type: Union[CommandType, str],
        selection: Iterable[Any],
        resolve_path: Callable[[Any], Optional[PathLike]],
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> Optional[CompletionHandle]:
        """
        Run a command on a host selection (menu entry point).

        Args:
            command_type: Operation chosen by the user
            selection: Host objects (assets, tree items, ...)
            resolve_path: Maps a selected object to its file path, or None
            parameters: Command parameters

        Returns:
            Handle of the queued command, or None when nothing in the
            selection maps to a file
        """
        command_type = CommandType(command_type)
        paths = [path for path in (resolve_path(item) for item in selection) if path is not None]
        if not paths and command_type not in (CommandType.STATUS, CommandType.INIT, CommandType.PULL, CommandType.PUSH):
            logger.debug(f"Nothing in the selection maps to a file; skipping {command_type.value}")
            return None
        return self.execute(command_type, paths, parameters)

    def cancel(self, handle: CompletionHandle) -> bool:
        """Cancel a queued command, or ask a running one to stop."""
        with self._lock:
            queue = self._queue
        if queue is None:
            return False
        return queue.cancel(handle)

    def _run_command(self, command: Command) -> Command:
        with self._lock:
            executor = self._executor
        if executor is None:
            command.fail(ConfigError("Provider is not connected"))
            return command
        return executor.run(command)

    # Results

    def _on_command_finished(self, command: Command) -> None:
        """Completion step, run on the worker before the handle resolves."""
        with self._lock:
            key = (command.generation, command.dedup_key)
            handle = self._in_flight.get(key)
            if handle is not None and handle.command is command:
                del self._in_flight[key]
            current = command.generation == self._generation

        changed: set[Path] = set()
        if not current:
            logger.debug(f"Command {command.id} predates reconfiguration; results not merged")
        elif command.abandoned:
            logger.debug(f"Command {command.id} was abandoned at shutdown; cache left as is")
        elif command.state is CommandState.SUCCEEDED:
            changed = self._apply_result(command)
        elif command.state is CommandState.CANCELLED:
            if command.invoked and command.type not in READ_ONLY_TYPES:
                changed = self.cache.invalidate(command.target_paths or None)
        elif isinstance(command.error, ToolNotFound):
            with self._lock:
                self._available = False
            logger.error(f"{command.error.message}; provider unavailable until reconfigured")

        self.notifications.states_changed(changed)
        if command.state is CommandState.FAILED and command.error is not None:
            self.notifications.error([command.error.categorized_message(), *command.raw_error_lines])
        self.notifications.command_finished(command)

        if self.settings.event_log:
            try:
                append_event(event_for_command(command), self.settings.state_dir)
            except OSError:
                logger.warning(f"Event for command {command.id} was not logged")

    def _apply_result(self, command: Command) -> set[Path]:
        changed: set[Path] = set()

        if command.type in (CommandType.PULL, CommandType.INIT):
            changed |= self.cache.invalidate()
            if command.type is CommandType.INIT:
                self._redetect()
            return changed

        if command.type not in STATE_UPDATING_TYPES:
            return changed

        with self._lock:
            context = self._context
            if context is not None and command.branch and command.branch != context.branch:
                logger.info(f"Branch changed from {context.branch or '-'} to {command.branch}; invalidating cache")
                self._install(context.with_branch(command.branch))
                branch_changed = True
            else:
                branch_changed = False
        if branch_changed:
            changed |= self.cache.invalidate()

        states: tuple[FileState, ...] = command.result_payload or ()
        if command.type is CommandType.STATUS and command.is_repository_wide:
            # Repository-wide status lists every changed file; anything else cached as changed is stale
            reported = {state.path for state in states}
            stale = [
                path
                for path, state in self.cache.snapshot().items()
                if path not in reported and state.working_copy_status is not WorkingCopyStatus.UNCHANGED
            ]
            changed |= self.cache.invalidate(stale)

        changed |= self.cache.merge(states)
        return changed

    def _redetect(self) -> None:
        try:
            context = detect_context(self.settings, self.runner)
        except (ToolNotFound, ConfigError) as e:
            logger.warning(f"Could not refresh repository context: {e}")
            return
        with self._lock:
            self._install(context)

    # State queries

    def get_state(self, path: PathLike) -> FileState:
        """Cached state of a path (UNKNOWN if never queried). Never blocks on git."""
        return self.cache.get(path)

    def get_states(
        self,
        paths: Iterable[PathLike],
        max_age: Optional[float] = None,
        refresh: bool = True,
    ) -> dict[Path, FileState]:
        """
        Cached states of several paths.

        Unknown or stale paths are refreshed in the background with a single
        STATUS command; subscribers hear about the new states when it lands.
        Paths outside the repository stay UNKNOWN and are never refreshed.
        """
        states = self.cache.get_many(paths)
        max_age = self.settings.state_max_age if max_age is None else max_age
        context = self._context
        if not refresh or context is None or not context.is_repository or not self.is_available:
            return states

        root = context.repository_root
        stale = [
            path
            for path, state in states.items()
            if state.is_stale(max_age) and (path == root or root in path.parents)
        ]
        if stale:
            try:
                self.execute(CommandType.STATUS, stale)
            except (ValidationError, ConfigError) as e:
                logger.warning(f"Background status refresh skipped: {e}")
        return states

    @property
    def uses_locking(self) -> bool:
        """Whether the lock workflow applies (repository setting or any locked/read-only file)."""
        if self._context is not None and self._context.use_locking:
            return True
        return any(state.requires_lock for state in self.cache.snapshot().values())

    def requires_lock(self, path: PathLike) -> bool:
        if self._context is not None and self._context.use_locking:
            return True
        return self.cache.get(path).requires_lock

    def capabilities(self) -> frozenset[Capability]:
        context = self._context
        if context is None or not self.is_available:
            return frozenset()
        if not context.is_repository:
            return frozenset({Capability.INIT})
        capabilities = set(_BASE_CAPABILITIES)
        if context.use_locking:
            capabilities.add(Capability.LOCKING)
        if context.remote_url:
            capabilities.add(Capability.SYNC)
        return frozenset(capabilities)

    def supports(self, capability: Union[Capability, str]) -> bool:
        return Capability(capability) in self.capabilities()

    def status_text(self) -> str:
        """One-line summary for a host status bar."""
        context = self._context
        if self._closed:
            return "Git: shut down"
        if context is None:
            return "Git: not connected"
        if not self._available:
            return "Git: unavailable"
        if not context.is_repository:
            return "Git: not a repository"
        text = f"Git {context.git_version}: {context.branch or 'detached'}"
        if context.use_locking:
            text += " (LFS locking)"
        return text

    # Notifications

    def subscribe(
        self,
        on_states_changed: Optional[StatesChangedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_command_finished: Optional[CommandFinishedCallback] = None,
    ) -> SubscriptionToken:
        return self.notifications.subscribe(on_states_changed, on_error, on_command_finished)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        return self.notifications.unsubscribe(token)
