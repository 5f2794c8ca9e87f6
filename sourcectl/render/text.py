"""Text renderer for command output."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Sequence

from sourcectl.commands import Command, Revision
from sourcectl.context import RepositoryContext
from sourcectl.render.colors import style_lock, style_revision, style_status
from sourcectl.state import FileState, LockStatus


def format_datetime(dt: datetime) -> str:
    """
    Format datetime for human-readable output.

    Returns:
        Formatted datetime string (e.g., "2026-01-22 10:41:12 UTC")
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S %Z")


def display_path(path: Path, root: Optional[Path] = None) -> str:
    """Path relative to root when inside it, otherwise as given."""
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return os.fspath(path)


def render_state_table(states: Sequence[FileState], root: Optional[Path] = None) -> str:
    """
    Render file states as a table.

    Columns: STATUS, LOCK, PATH

    Args:
        states: FileStates to show
        root: Repository root, used to shorten paths

    Returns:
        Formatted table string
    """
    if not states:
        return "No changes"

    headers = ["STATUS", "LOCK", "PATH"]
    plain_rows = []
    styled_rows = []
    for state in sorted(states, key=lambda s: s.path):
        lock = state.lock_owner if state.is_locked_by_other and state.lock_owner else ""
        plain_rows.append(
            [
                state.working_copy_status.value.upper(),
                _plain_lock(state) + (f" {lock}" if lock else ""),
                display_path(state.path, root),
            ]
        )
        styled_rows.append(
            [
                style_status(state.working_copy_status),
                style_lock(state.lock_status) + (f" {lock}" if lock else ""),
                display_path(state.path, root),
            ]
        )

    # Widths come from the unstyled text; ANSI codes would inflate them
    col_widths = [max(len(row[i]) for row in [headers] + plain_rows) for i in range(len(headers))]

    separator = "  "
    lines = [
        separator.join(f"{headers[i]:<{col_widths[i]}}" for i in range(len(headers))).rstrip(),
        separator.join("-" * col_widths[i] for i in range(len(headers))),
    ]
    for plain, styled in zip(plain_rows, styled_rows):
        cells = [styled[i] + " " * (col_widths[i] - len(plain[i])) for i in range(len(headers))]
        lines.append(separator.join(cells).rstrip())

    return "\n".join(lines)


def _plain_lock(state: FileState) -> str:
    if state.lock_status is LockStatus.NOT_LOCKED:
        return ""
    return "LOCKED" if state.lock_status is LockStatus.LOCKED_BY_ME else "LOCKED(OTHER)"


def render_history(history: Mapping[Path, Sequence[Revision]], root: Optional[Path] = None) -> str:
    """
    Render file histories, newest revision first.

    Format per revision:
        <short id>  <date>  <author>  <summary>
    """
    if not history:
        return "No history"

    lines: list[str] = []
    for path, revisions in history.items():
        lines.append(f"{display_path(path, root)}:")
        if not revisions:
            lines.append("  (no revisions)")
        for revision in revisions:
            renamed = ""
            if revision.path is not None and revision.path != path:
                renamed = f" [{display_path(revision.path, root)}]"
            lines.append(
                f"  {style_revision(revision.short_id)}  {format_datetime(revision.date)}  "
                f"{revision.author}  {revision.summary}{renamed}"
            )
        lines.append("")

    return "\n".join(lines).rstrip("\n")


def render_command_summary(command: Command) -> str:
    """One-line outcome of a finished command."""
    target = f"{len(command.target_paths)} path(s)" if command.target_paths else "repository"
    line = f"{command.type.value} {target}: {command.state.value}"
    if command.error is not None:
        line += f" - {command.error.categorized_message()}"
    if command.failed_paths:
        line += f" ({len(command.failed_paths)} failed)"
    return line


def render_info(context: RepositoryContext, status_text: str) -> str:
    """Render repository context."""
    lines = [
        status_text,
        "",
        f"Repository:   {context.repository_root}",
        f"Is repo:      {'yes' if context.is_repository else 'no'}",
        f"Branch:       {context.branch or '-'}",
        f"Git:          {context.executable_path} ({context.git_version or 'unknown version'})",
        f"User:         {context.user_name or '-'}",
        f"Remote:       {context.remote_url or '-'}",
        f"LFS:          {'available' if context.lfs_available else 'not available'}",
        f"Locking:      {'enabled' if context.use_locking else 'disabled'}",
    ]
    return "\n".join(lines)
