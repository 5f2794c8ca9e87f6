"""Git executor: turns commands into git invocations and parses the results."""

import logging
import os
import time
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from sourcectl.commands import (
    RECOGNIZED_PARAMETERS,
    REPOSITORY_WIDE_TYPES,
    Command,
    CommandType,
)
from sourcectl.errors import (
    RepositoryLockContention,
    SourceControlError,
    ToolExecutionError,
    ToolNotFound,
    ValidationError,
)
from sourcectl.probes.tools import ProcessResult, ProcessRunner
from sourcectl.scm.parsers import LOG_FORMAT, parse_lfs_locks, parse_log_output, parse_status_lines
from sourcectl.state import FileState, LockStatus, WorkingCopyStatus, utcnow

if TYPE_CHECKING:
    from sourcectl.config import Settings
    from sourcectl.context import RepositoryContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_REVISIONS = 100
MAX_LOCK_ATTEMPTS = 2

# stderr fragments git prints when another process holds a repository lock file
LOCK_CONTENTION_MARKERS = (
    "index.lock",
    "another git process seems to be running",
    "cannot lock ref",
    "unable to create",
)


class _Cancelled(Exception):
    """Raised at a safe point when cancellation was requested."""


def is_lock_contention(stderr_lines: Sequence[str]) -> bool:
    text = "\n".join(stderr_lines).lower()
    return any(marker in text for marker in LOCK_CONTENTION_MARKERS) and ".lock" in text


class GitExecutor:
    """Executor implementation for the git command line tool."""

    kind = "git"

    def __init__(
        self,
        context: "RepositoryContext",
        runner: ProcessRunner,
        timeout: float = 60.0,
        max_commit_files: int = 50,
        max_batch_paths: int = 50,
        lock_retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.context = context
        self.runner = runner
        self.timeout = timeout
        self.max_commit_files = max_commit_files
        self.max_batch_paths = max_batch_paths
        self.lock_retry_delay = lock_retry_delay
        self._sleep = sleep
        self._handlers: dict[CommandType, Callable[[Command], object]] = {
            CommandType.STATUS: self._status,
            CommandType.ADD: self._add,
            CommandType.DELETE: self._delete,
            CommandType.REVERT: self._revert,
            CommandType.CHECKOUT: self._checkout,
            CommandType.COMMIT: self._commit,
            CommandType.HISTORY: self._history,
            CommandType.DIFF: self._diff,
            CommandType.LOCK: self._lock,
            CommandType.UNLOCK: self._unlock,
            CommandType.MOVE: self._move,
            CommandType.RESOLVE: self._resolve,
            CommandType.INIT: self._init,
            CommandType.PULL: self._pull,
            CommandType.PUSH: self._push,
        }

    @classmethod
    def from_settings(
        cls, context: "RepositoryContext", settings: "Settings", runner: ProcessRunner
    ) -> "GitExecutor":
        return cls(
            context,
            runner,
            timeout=settings.command_timeout,
            max_commit_files=settings.max_commit_files,
            max_batch_paths=settings.max_batch_paths,
            lock_retry_delay=settings.lock_retry_delay,
        )

    # Validation

    def validate(self, command: Command) -> None:
        """
        Reject commands that cannot run, before any subprocess is started.

        Raises:
            ValidationError: With the reason the command was rejected
        """
        ctype = command.type
        unknown = set(command.parameters) - RECOGNIZED_PARAMETERS[ctype]
        if unknown:
            raise ValidationError(f"Unknown parameters for {ctype.value}: {', '.join(sorted(unknown))}")

        if not command.target_paths and ctype not in REPOSITORY_WIDE_TYPES:
            raise ValidationError(f"{ctype.value} requires at least one path")

        if not self.context.is_repository and ctype is not CommandType.INIT:
            raise ValidationError(f"{self.context.repository_root} is not a git repository")

        root = self.context.repository_root
        for path in command.target_paths:
            if path != root and root not in path.parents:
                raise ValidationError(f"Path is outside the repository: {path}")

        if ctype is CommandType.COMMIT:
            message = str(command.parameters.get("message") or "").strip()
            if not message:
                raise ValidationError("A commit message is required")
            if len(command.target_paths) > self.max_commit_files:
                raise ValidationError(
                    f"Cannot commit {len(command.target_paths)} files in one commit "
                    f"(limit is {self.max_commit_files})"
                )
        elif ctype is CommandType.MOVE:
            if len(command.target_paths) != 2:
                raise ValidationError("move requires exactly a source and a destination path")
        elif ctype in (CommandType.LOCK, CommandType.UNLOCK):
            if not self.context.use_locking:
                raise ValidationError("File locking is not enabled for this repository")
        elif ctype is CommandType.HISTORY:
            max_revisions = command.parameters.get("max_revisions", DEFAULT_MAX_REVISIONS)
            if not isinstance(max_revisions, int) or isinstance(max_revisions, bool) or max_revisions < 1:
                raise ValidationError(f"max_revisions must be a positive integer, got {max_revisions!r}")

    # Execution

    def run(self, command: Command) -> Command:
        """Execute a RUNNING command and move it to its terminal state."""
        handler = self._handlers[command.type]
        try:
            self._checkpoint(command)
            payload = handler(command)
            self._checkpoint(command)
        except _Cancelled:
            logger.info(f"Command {command.id} ({command.type.value}) cancelled")
            command.cancel()
        except SourceControlError as e:
            logger.warning(f"Command {command.id} ({command.type.value}) failed: {e.message}")
            failed = e.failed_paths if isinstance(e, ToolExecutionError) else ()
            command.fail(e, failed)
        else:
            command.succeed(payload)
        return command

    def _checkpoint(self, command: Command) -> None:
        if command.cancel_requested:
            raise _Cancelled()

    def _relative(self, path: Path) -> str:
        root = self.context.repository_root
        if path == root:
            return "."
        return path.relative_to(root).as_posix()

    def _invoke(
        self,
        command: Command,
        args: Sequence[str],
        check: bool = True,
        paths: Sequence[Path] = (),
    ) -> ProcessResult:
        """
        Run one git invocation for a command.

        Lock contention is retried once after lock_retry_delay.

        Raises:
            ToolNotFound, CommandTimeoutError: From the runner
            RepositoryLockContention: If the repository stayed locked
            ToolExecutionError: On any other non-zero exit (when check is set)
        """
        full_args = ["-c", "core.quotepath=off", *args]
        attempt = 1
        while True:
            self._checkpoint(command)
            result = self.runner.run(
                self.context.executable_path,
                self.context.repository_root,
                full_args,
                timeout=self.timeout,
            )
            command.record_output(result.stdout_lines, result.stderr_lines)

            if result.ok or not check:
                return result

            if not is_lock_contention(result.stderr_lines):
                raise ToolExecutionError(
                    f"git {args[0]} failed with exit code {result.exit_code}",
                    returncode=result.exit_code,
                    stderr_lines=result.stderr_lines,
                    failed_paths=paths,
                )

            if attempt >= MAX_LOCK_ATTEMPTS:
                raise RepositoryLockContention(
                    f"Repository is locked by another git process (git {args[0]})",
                    attempt=attempt,
                    max_attempts=MAX_LOCK_ATTEMPTS,
                )

            logger.info(f"Repository lock busy, retrying git {args[0]} in {self.lock_retry_delay}s")
            attempt += 1
            self._sleep(self.lock_retry_delay)

    def _run_batched(
        self,
        command: Command,
        prefix: Sequence[str],
        paths: Sequence[Path],
        batch_size: Optional[int] = None,
    ) -> list[ProcessResult]:
        """
        Run prefix + paths in sequential batches.

        Every batch is attempted; the command succeeds only if all do.

        Raises:
            SourceControlError: The batch error itself when there is a single
                batch, otherwise a ToolExecutionError naming every failed path
        """
        size = batch_size or self.max_batch_paths
        batches = [list(paths[i : i + size]) for i in range(0, len(paths), size)]
        results: list[ProcessResult] = []
        errors: list[SourceControlError] = []
        failed: list[Path] = []

        for batch in batches:
            try:
                results.append(self._invoke(command, [*prefix, *map(self._relative, batch)], paths=batch))
            except ToolNotFound:
                raise
            except SourceControlError as e:
                if len(batches) == 1:
                    raise
                logger.warning(f"Batch of {len(batch)} paths failed: {e.message}")
                errors.append(e)
                failed.extend(batch)

        if errors:
            stderr: list[str] = []
            for error in errors:
                stderr.extend(getattr(error, "stderr_lines", [error.message]))
            raise ToolExecutionError(
                f"git {prefix[0]} failed for {len(failed)} of {len(paths)} paths: {errors[0].message}",
                returncode=getattr(errors[0], "returncode", None),
                stderr_lines=stderr,
                failed_paths=failed,
                partial=len(failed) < len(paths),
            )
        return results

    # State refresh

    def _head_revision(self, command: Command) -> str:
        result = self._invoke(command, ["rev-parse", "HEAD"], check=False)
        if not result.ok or not result.stdout_lines:
            return ""
        return result.stdout_lines[0].strip()

    def _lfs_locks(self, command: Command) -> dict[str, tuple[str, bool]]:
        result = self._invoke(command, ["lfs", "locks", "--json"])
        return parse_lfs_locks(result.stdout, self.context.user_name)

    def _refresh_states(self, command: Command, paths: Sequence[Path]) -> tuple[FileState, ...]:
        """Query git for the current state of paths (whole repository when empty)."""
        root = self.context.repository_root
        args = ["status", "--porcelain=v1", "--branch", "--untracked-files=all"]
        if paths:
            results = self._run_batched(command, [*args, "--ignored", "--"], paths)
        else:
            results = [self._invoke(command, args)]

        branch: Optional[str] = None
        entries = []
        for result in results:
            result_branch, result_entries = parse_status_lines(result.stdout_lines)
            branch = branch or result_branch
            entries.extend(result_entries)

        revision = self._head_revision(command)
        locks = self._lfs_locks(command) if self.context.use_locking else {}
        timestamp = utcnow()
        command.record_branch(branch or self.context.branch)

        def build(path: Path, status: WorkingCopyStatus) -> FileState:
            lock_status = LockStatus.NOT_LOCKED
            lock_owner = None
            lock = locks.get(self._relative(path))
            if lock is not None:
                lock_owner, ours = lock
                lock_status = LockStatus.LOCKED_BY_ME if ours else LockStatus.LOCKED_BY_OTHER
            return FileState(
                path=path,
                working_copy_status=status,
                lock_status=lock_status,
                lock_owner=lock_owner,
                last_known_revision_id=revision,
                last_update_timestamp=timestamp,
                branch=command.branch or "",
                read_only=path.is_file() and not os.access(path, os.W_OK),
            )

        states: dict[Path, FileState] = {}
        for entry in entries:
            if entry.path.endswith("/"):
                continue
            path = root / entry.path
            states[path] = build(path, entry.status)

        for path in paths:
            if path in states or path.is_dir():
                continue
            # Not reported by git: clean if on disk, otherwise not part of the repository
            status = WorkingCopyStatus.UNCHANGED if path.exists() else WorkingCopyStatus.UNTRACKED
            states[path] = build(path, status)

        return tuple(states.values())

    # Handlers

    def _status(self, command: Command) -> tuple[FileState, ...]:
        return self._refresh_states(command, command.target_paths)

    def _add(self, command: Command) -> tuple[FileState, ...]:
        self._run_batched(command, ["add", "--"], command.target_paths)
        return self._refresh_states(command, command.target_paths)

    def _delete(self, command: Command) -> tuple[FileState, ...]:
        prefix = ["rm", "--cached", "--"] if command.parameters.get("keep_local") else ["rm", "--"]
        self._run_batched(command, prefix, command.target_paths)
        return self._refresh_states(command, command.target_paths)

    def _revert(self, command: Command) -> tuple[FileState, ...]:
        root = self.context.repository_root
        self._run_batched(command, ["reset", "-q", "--"], command.target_paths)

        # Only paths still in the index can be checked out; reverted additions stay as untracked files
        tracked: list[Path] = []
        for result in self._run_batched(command, ["ls-files", "--"], command.target_paths):
            tracked.extend(root / line for line in result.stdout_lines if line)

        if tracked:
            self._run_batched(command, ["checkout", "--"], tracked)
        return self._refresh_states(command, command.target_paths)

    def _checkout(self, command: Command) -> tuple[FileState, ...]:
        revision = command.parameters.get("revision")
        if revision:
            self._run_batched(command, ["checkout", str(revision), "--"], command.target_paths)
        elif self.context.use_locking:
            self._run_batched(command, ["lfs", "lock"], command.target_paths, batch_size=1)
        return self._refresh_states(command, command.target_paths)

    def _commit(self, command: Command) -> tuple[FileState, ...]:
        message = str(command.parameters["message"]).strip()
        paths = list(command.target_paths)
        self._invoke(
            command,
            ["commit", f"--message={message}", "--", *map(self._relative, paths)],
            paths=paths,
        )
        return self._refresh_states(command, command.target_paths)

    def _history(self, command: Command) -> MappingProxyType:
        max_revisions = command.parameters.get("max_revisions", DEFAULT_MAX_REVISIONS)
        history = {}
        for path in command.target_paths:
            result = self._invoke(
                command,
                [
                    "log",
                    "--follow",
                    f"--max-count={max_revisions}",
                    "--date=iso-strict",
                    "--name-status",
                    f"--pretty={LOG_FORMAT}",
                    "--",
                    self._relative(path),
                ],
                paths=[path],
            )
            history[path] = tuple(parse_log_output(result.stdout, self.context.repository_root))
        return MappingProxyType(history)

    def _diff(self, command: Command) -> str:
        prefix = ["diff"]
        if command.parameters.get("cached"):
            prefix.append("--cached")
        against = command.parameters.get("against")
        if against:
            prefix.append(str(against))
        prefix.append("--")
        lines: list[str] = []
        for result in self._run_batched(command, prefix, command.target_paths):
            lines.extend(result.stdout_lines)
        return "\n".join(lines) + "\n" if lines else ""

    def _lock(self, command: Command) -> tuple[FileState, ...]:
        self._run_batched(command, ["lfs", "lock"], command.target_paths, batch_size=1)
        return self._refresh_states(command, command.target_paths)

    def _unlock(self, command: Command) -> tuple[FileState, ...]:
        prefix = ["lfs", "unlock", "--force"] if command.parameters.get("force") else ["lfs", "unlock"]
        self._run_batched(command, prefix, command.target_paths, batch_size=1)
        return self._refresh_states(command, command.target_paths)

    def _move(self, command: Command) -> tuple[FileState, ...]:
        source, destination = command.target_paths
        self._invoke(
            command,
            ["mv", self._relative(source), self._relative(destination)],
            paths=[source, destination],
        )
        return self._refresh_states(command, command.target_paths)

    def _resolve(self, command: Command) -> tuple[FileState, ...]:
        self._run_batched(command, ["add", "--"], command.target_paths)
        return self._refresh_states(command, command.target_paths)

    def _init(self, command: Command) -> None:
        self._invoke(command, ["init"])
        remote_url = command.parameters.get("remote_url") or self.context.remote_url
        if remote_url:
            self._invoke(command, ["remote", "add", "origin", str(remote_url)])
        return None

    def _remote_args(self, command: Command) -> list[str]:
        args: list[str] = []
        remote = command.parameters.get("remote")
        branch = command.parameters.get("branch")
        if remote:
            args.append(str(remote))
            if branch:
                args.append(str(branch))
        elif branch:
            args.extend(["origin", str(branch)])
        return args

    def _pull(self, command: Command) -> None:
        self._invoke(command, ["pull", "--rebase", *self._remote_args(command)])
        return None

    def _push(self, command: Command) -> None:
        args = ["push"]
        if command.parameters.get("set_upstream"):
            args.append("--set-upstream")
        self._invoke(command, [*args, *self._remote_args(command)])
        return None
