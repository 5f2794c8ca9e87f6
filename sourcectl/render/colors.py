"""Color utilities for TTY output."""

import sys

import click

from sourcectl.state import LockStatus, WorkingCopyStatus


def echo_success(message: str) -> None:
    """Print success message (green)."""
    if should_color():
        click.secho(message, fg="green")
    else:
        click.echo(message)


def echo_error(message: str) -> None:
    """Print error message (red)."""
    if should_color():
        click.secho(message, fg="red", err=True)
    else:
        click.echo(message, err=True)


def echo_warning(message: str) -> None:
    """Print warning message (yellow)."""
    if should_color():
        click.secho(message, fg="yellow", err=True)
    else:
        click.echo(message, err=True)


def should_color() -> bool:
    """Check if color output should be used."""
    return sys.stdout.isatty()


def style_revision(revision_id: str) -> str:
    """Style revision hash for display."""
    if should_color():
        return click.style(revision_id, fg="yellow")
    return revision_id


_STATUS_COLORS = {
    WorkingCopyStatus.MODIFIED: "yellow",
    WorkingCopyStatus.ADDED: "green",
    WorkingCopyStatus.DELETED: "red",
    WorkingCopyStatus.MISSING: "red",
    WorkingCopyStatus.CONFLICTED: "magenta",
    WorkingCopyStatus.UNTRACKED: "cyan",
    WorkingCopyStatus.UNKNOWN: "blue",
}


def style_status(status: WorkingCopyStatus) -> str:
    """Style working copy status indicator."""
    text = status.value.upper()
    if should_color() and status in _STATUS_COLORS:
        return click.style(text, fg=_STATUS_COLORS[status])
    return text


def style_lock(lock_status: LockStatus) -> str:
    """Style lock status indicator (empty when not locked)."""
    if lock_status is LockStatus.NOT_LOCKED:
        return ""
    text = "LOCKED" if lock_status is LockStatus.LOCKED_BY_ME else "LOCKED(OTHER)"
    if should_color():
        return click.style(text, fg="green" if lock_status is LockStatus.LOCKED_BY_ME else "red")
    return text
