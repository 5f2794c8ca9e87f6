"""Operation queue: bounded worker pool with per-path ordering."""

import logging
import threading
import time
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Iterable, Optional

from sourcectl.commands import Command
from sourcectl.errors import ConfigError, SourceControlError

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 2
DEFAULT_SHUTDOWN_GRACE_SECONDS = 5.0

CompletionCallback = Callable[[Command], None]


def paths_overlap(first: Iterable[Path], second: Iterable[Path]) -> bool:
    """
    Check whether two path sets may touch the same files.

    Paths overlap when they are equal or one is a parent directory of the
    other. An empty set stands for the whole repository and overlaps
    everything.
    """
    first = tuple(first)
    second = tuple(second)
    if not first or not second:
        return True
    for a in first:
        for b in second:
            if a == b or a in b.parents or b in a.parents:
                return True
    return False


class CompletionHandle:
    """
    Host-side handle for a queued command.

    Resolves to the terminal Command; a failed command resolves normally
    and carries its error, it is never raised from result().
    """

    def __init__(self, command: Command, queue: Optional["OperationQueue"] = None) -> None:
        self.command = command
        self._queue = queue
        self._future: Future = Future()
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"CompletionHandle({self.command.id}, {self.command.type.value}, {self.command.state.value})"

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Command:
        """
        Wait for the command to finish.

        Raises:
            concurrent.futures.TimeoutError: If it is still running after timeout seconds
        """
        return self._future.result(timeout)

    def add_done_callback(self, fn: Callable[["CompletionHandle"], None]) -> None:
        """Call fn(handle) once resolved (immediately if already resolved)."""
        self._future.add_done_callback(lambda _future: fn(self))

    def cancel(self) -> bool:
        if self._queue is None:
            return False
        return self._queue.cancel(self)

    def _resolve(self) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(self.command)
            return True


class OperationQueue:
    """
    Runs commands on a fixed pool of worker threads.

    A pending command starts only when its paths overlap no running command
    and no earlier pending command, so operations on the same file run in
    submission order while disjoint ones run concurrently.

    The completion callback runs on the worker after execution, before the
    command's paths are released and before its handle resolves.
    """

    def __init__(
        self,
        execute: Callable[[Command], Command],
        max_workers: int = DEFAULT_MAX_WORKERS,
        completion: Optional[CompletionCallback] = None,
        name: str = "sourcectl-worker",
    ) -> None:
        if max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {max_workers}")

        self._execute = execute
        self._completion = completion
        self._condition = threading.Condition()
        self._pending: list[CompletionHandle] = []
        self._running: dict[str, CompletionHandle] = {}
        self._closed = False
        self._workers = [
            threading.Thread(target=self._worker_loop, name=f"{name}-{i}", daemon=True)
            for i in range(max_workers)
        ]
        for worker in self._workers:
            worker.start()
        logger.debug(f"Started {max_workers} queue workers")

    @property
    def max_workers(self) -> int:
        return len(self._workers)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def pending_count(self) -> int:
        with self._condition:
            return len(self._pending)

    def running_count(self) -> int:
        with self._condition:
            return len(self._running)

    def enqueue(self, command: Command) -> CompletionHandle:
        """
        Queue a PENDING command.

        After shutdown the command is cancelled immediately and its handle
        is returned already resolved.
        """
        handle = CompletionHandle(command, self)
        with self._condition:
            if not self._closed:
                self._pending.append(handle)
                self._condition.notify_all()
                logger.debug(f"Queued command {command.id} ({command.type.value}, {len(command.target_paths)} paths)")
                return handle

        logger.warning(f"Queue is shut down; cancelling command {command.id}")
        command.cancel()
        self._finish(handle)
        return handle

    def cancel(self, handle: CompletionHandle) -> bool:
        """
        Cancel a queued or running command.

        A pending command is removed and resolved CANCELLED. A running
        command only gets its cancellation flag set; the executor stops at
        its next safe point.

        Returns:
            True if the cancellation was registered
        """
        with self._condition:
            if handle in self._pending:
                self._pending.remove(handle)
                handle.command.cancel()
                self._condition.notify_all()
                removed = True
            elif handle.command.id in self._running:
                handle.command.request_cancel()
                logger.debug(f"Cancellation requested for running command {handle.command.id}")
                return True
            else:
                return False

        if removed:
            logger.debug(f"Cancelled pending command {handle.command.id}")
            self._finish(handle)
        return removed

    def shutdown(
        self,
        wait: bool = True,
        grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
        terminate: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Stop accepting commands and wind down the workers.

        Pending commands are cancelled. Running commands get grace_seconds to
        finish; after that they are abandoned, terminate() is called to kill
        live subprocesses and their handles resolve CANCELLED.

        Args:
            wait: Wait for running commands (up to the grace period)
            grace_seconds: How long running commands may keep running
            terminate: Called when commands had to be abandoned
        """
        with self._condition:
            self._closed = True
            cancelled = list(self._pending)
            self._pending.clear()
            for handle in cancelled:
                handle.command.cancel()
            self._condition.notify_all()

        if cancelled:
            logger.info(f"Shutdown cancelled {len(cancelled)} pending commands")
        for handle in cancelled:
            self._finish(handle)

        if not wait:
            return

        deadline = time.monotonic() + grace_seconds
        with self._condition:
            while self._running:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._condition.wait(remaining)
            leftover = list(self._running.values())

        abandoned = [handle for handle in leftover if handle.command.abandon()]
        if abandoned:
            logger.warning(f"Abandoning {len(abandoned)} commands still running after {grace_seconds:g}s")
            if terminate is not None:
                terminate()
            for handle in abandoned:
                self._finish(handle)

        for worker in self._workers:
            if worker is not threading.current_thread():
                worker.join(timeout=0.1 if abandoned else grace_seconds)

    def _claim(self) -> Optional[CompletionHandle]:
        """Pop the first runnable pending handle. Caller holds the condition."""
        running_paths = [handle.command.target_paths for handle in self._running.values()]
        for index, handle in enumerate(self._pending):
            paths = handle.command.target_paths
            if any(paths_overlap(paths, other) for other in running_paths):
                continue
            if any(paths_overlap(paths, earlier.command.target_paths) for earlier in self._pending[:index]):
                continue
            del self._pending[index]
            if handle.command.start():
                self._running[handle.command.id] = handle
            return handle
        return None

    def _worker_loop(self) -> None:
        while True:
            with self._condition:
                handle = self._claim()
                while handle is None:
                    if self._closed and not self._pending:
                        return
                    self._condition.wait()
                    handle = self._claim()
            if handle.command.is_terminal:
                # Cancelled directly on the command before a worker claimed it
                self._finish(handle)
            else:
                self._process(handle)

    def _process(self, handle: CompletionHandle) -> None:
        command = handle.command
        logger.debug(f"Running command {command.id} ({command.type.value})")
        try:
            self._execute(command)
        except Exception as e:
            logger.exception(f"Unexpected error while running command {command.id}")
            command.fail(SourceControlError(f"Internal error: {e}"))

        if not command.is_terminal:
            logger.error(f"Command {command.id} was left {command.state.value} by the executor")
            command.fail(SourceControlError("Executor returned without finishing the command"))

        try:
            if not command.abandoned:
                self._run_completion(command)
        finally:
            with self._condition:
                self._running.pop(command.id, None)
                self._condition.notify_all()
            handle._resolve()

    def _run_completion(self, command: Command) -> None:
        if self._completion is None:
            return
        try:
            self._completion(command)
        except Exception:
            logger.exception(f"Completion callback failed for command {command.id}")

    def _finish(self, handle: CompletionHandle) -> None:
        self._run_completion(handle.command)
        handle._resolve()
