"""Event logging for finished commands."""

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Literal, Optional

from sourcectl.commands import Command, CommandState

logger = logging.getLogger(__name__)

_RESULTS: dict[CommandState, str] = {
    CommandState.SUCCEEDED: "ok",
    CommandState.FAILED: "error",
    CommandState.CANCELLED: "cancelled",
}


@dataclass
class Event:
    """Single event in log."""

    ts: str  # ISO-8601 timestamp
    cmd: str  # Command type: "status", "commit", ...
    command_id: Optional[str] = None
    paths: int = 0  # Number of target paths (0 for repository-wide commands)
    result: Optional[Literal["ok", "error", "cancelled"]] = None
    error: Optional[str] = None  # Categorized error message (if result="error")


_FIELDS = tuple(field.name for field in fields(Event))


def get_event_log_path(state_dir: Path) -> Path:
    """
    Get event log file path.

    Args:
        state_dir: Path to the .sourcectl directory

    Returns:
        Path to events.log file
    """
    return state_dir / "events.log"


def event_for_command(command: Command) -> Event:
    """Build the log event describing a finished command."""
    finished = command.finished_at or command.created_at
    return Event(
        ts=finished.isoformat(),
        cmd=command.type.value,
        command_id=command.id,
        paths=len(command.target_paths),
        result=_RESULTS.get(command.state),  # type: ignore[arg-type]
        error=command.error.categorized_message() if command.error is not None else None,
    )


def append_event(event: Event, state_dir: Path) -> None:
    """
    Append one JSON line for event to the log.

    Raises:
        OSError: If the log cannot be written
    """
    event_log_path = get_event_log_path(state_dir)
    event_log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(event_log_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(asdict(event), sort_keys=True) + "\n")
    logger.debug(f"Logged event: {event.cmd} {event.command_id or ''} {event.result or ''}")


def read_events(state_dir: Path) -> list[Event]:
    """Events in log order; empty if nothing was logged. Corrupted lines are skipped."""
    event_log_path = get_event_log_path(state_dir)
    if not event_log_path.exists():
        return []

    events: list[Event] = []
    with open(event_log_path, "r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupted event line: {e}")
                continue
            if not isinstance(data, dict) or "ts" not in data or "cmd" not in data:
                logger.warning("Skipping event line without ts and cmd")
                continue
            events.append(Event(**{name: data[name] for name in _FIELDS if name in data}))
    return events
