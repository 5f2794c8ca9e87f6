"""Executor abstraction for version control operations."""

from typing import Protocol

from sourcectl.commands import Command


class Executor(Protocol):
    """Runs commands against the external tool, one at a time per worker."""

    def validate(self, command: Command) -> None:
        """
        Check a command before it is queued.

        Runs on the caller's thread and never starts a subprocess.

        Args:
            command: Pending command

        Raises:
            ValidationError: If the command cannot be executed as described
        """

    def run(self, command: Command) -> Command:
        """
        Execute a command synchronously on the calling worker.

        Moves the command from RUNNING to a terminal state and fills in its
        result payload and raw output. Failures are attached to the command,
        never raised.

        Args:
            command: Command already claimed (RUNNING)

        Returns:
            The same command, now terminal
        """
