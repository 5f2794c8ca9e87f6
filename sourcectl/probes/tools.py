"""Subprocess execution utilities."""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from sourcectl.errors import CommandTimeoutError, ToolNotFound

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
TERMINATE_WAIT_SECONDS = 2.0


class SubprocessError(Exception):
    """Raised when a probe subprocess fails."""

    pass


@dataclass
class ProcessResult:
    """Exit status and captured output of one subprocess invocation."""

    args: list[str]
    exit_code: int
    stdout_lines: list[str] = field(default_factory=list)
    stderr_lines: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def stdout(self) -> str:
        return "\n".join(self.stdout_lines)


def split_lines(text: str) -> list[str]:
    """
    Split tool output on newlines only.

    str.splitlines() also breaks on ASCII record separators, which the log
    format uses as delimiters.
    """
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line.rstrip("\r") for line in lines]


def _tool_env() -> dict[str, str]:
    """Environment for git: never prompt, untranslated messages."""
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["LANGUAGE"] = "C"
    env["LC_MESSAGES"] = "C"
    return env


class ProcessRunner:
    """
    Runs external tool invocations and tracks the live processes.

    Every worker thread shares one runner. Live processes are tracked so a
    forced shutdown can terminate invocations that outlive the grace period.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[subprocess.Popen[str]] = set()

    def run(
        self,
        executable: str,
        cwd: Optional[Path],
        args: Sequence[str],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> ProcessResult:
        """
        Invoke executable with args and wait for exit.

        Args:
            executable: Path or name of the executable
            cwd: Working directory (repository root)
            args: Argument list (safe, no shell injection)
            timeout: Seconds before the process is terminated

        Returns:
            ProcessResult with exit code and captured lines

        Raises:
            ToolNotFound: If the executable is missing or not executable
            CommandTimeoutError: If the process exceeded the timeout
        """
        cmd = [executable, *args]
        logger.debug(f"Running: {' '.join(cmd)} (cwd={cwd})")

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=_tool_env(),
            )
        except FileNotFoundError as e:
            raise ToolNotFound(executable) from e
        except PermissionError as e:
            raise ToolNotFound(executable, reason="is not executable") from e

        with self._lock:
            self._active.add(proc)
        try:
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired as e:
                logger.warning(f"Timed out after {timeout}s, terminating: {' '.join(cmd)}")
                self._stop(proc)
                raise CommandTimeoutError(cmd, timeout) from e
        finally:
            with self._lock:
                self._active.discard(proc)

        logger.debug(f"Exit code: {proc.returncode}")
        return ProcessResult(
            args=list(args),
            exit_code=proc.returncode,
            stdout_lines=split_lines(stdout),
            stderr_lines=split_lines(stderr),
        )

    def active_count(self) -> int:
        """Number of processes currently running."""
        with self._lock:
            return len(self._active)

    def terminate_all(self) -> int:
        """
        Terminate every live process.

        Returns:
            Number of processes that were signalled
        """
        with self._lock:
            procs = list(self._active)

        for proc in procs:
            logger.warning(f"Terminating unresponsive process {proc.pid}: {' '.join(map(str, proc.args))}")
            # The owning worker is still reading the pipes; only signal and reap here.
            proc.terminate()
            try:
                proc.wait(timeout=TERMINATE_WAIT_SECONDS)
            except subprocess.TimeoutExpired:
                proc.kill()
        return len(procs)

    @staticmethod
    def _stop(proc: subprocess.Popen[str]) -> None:
        proc.terminate()
        try:
            proc.communicate(timeout=TERMINATE_WAIT_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()


def run_command_output_cwd(cmd: list[str], cwd: Optional[Path] = None, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> str:
    """
    Run command in specific directory and return stdout.

    Args:
        cmd: Command and arguments as list
        cwd: Working directory (optional)
        timeout: Seconds before the command is abandoned

    Returns:
        stdout as string (stripped)

    Raises:
        SubprocessError: If command fails or cannot be started
    """
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
            cwd=cwd,
            timeout=timeout,
            env=_tool_env(),
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise SubprocessError(f"Command failed: {' '.join(cmd)}: {e}") from e

    if result.returncode != 0:
        error_msg = f"Command failed: {' '.join(cmd)}"
        if result.stderr:
            error_msg += f"\n{result.stderr}"
        logger.debug(error_msg)
        raise SubprocessError(error_msg)

    return result.stdout.strip()
