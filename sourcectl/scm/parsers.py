"""Parsers for git's line-oriented output."""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from sourcectl.commands import Revision
from sourcectl.errors import ParseError
from sourcectl.state import WorkingCopyStatus

logger = logging.getLogger(__name__)

# Record/field separators for `git log`; they never occur in commit metadata.
RECORD_SEP = "\x1e"
FIELD_SEP = "\x1f"
LOG_FORMAT = f"format:{RECORD_SEP}%H{FIELD_SEP}%an{FIELD_SEP}%ae{FIELD_SEP}%aI{FIELD_SEP}%B{FIELD_SEP}"

# `<XY> <path>`: one or two flag characters, a space, then the path
_STATUS_LINE = re.compile(r"^(?P<xy>[ MTADRCU?!]{1,2}) (?P<path>.+)$")

# Maps name-status letters of `git log --name-status` to the file's status in that revision
_HISTORY_ACTIONS: dict[str, WorkingCopyStatus] = {
    "A": WorkingCopyStatus.ADDED,
    "C": WorkingCopyStatus.ADDED,
    "D": WorkingCopyStatus.DELETED,
    "M": WorkingCopyStatus.MODIFIED,
    "R": WorkingCopyStatus.MODIFIED,
    "T": WorkingCopyStatus.MODIFIED,
}


@dataclass(frozen=True)
class StatusEntry:
    """One parsed line of `git status --porcelain`."""

    path: str
    status: WorkingCopyStatus
    flags: str


def unquote_path(path: str) -> str:
    """Undo git's C-style quoting of paths with special characters."""
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        inner = path[1:-1]
        try:
            return inner.encode("latin-1", "backslashreplace").decode("unicode_escape").encode("latin-1").decode("utf-8")
        except (UnicodeDecodeError, UnicodeEncodeError) as e:
            raise ParseError("Invalid quoted path", path) from e
    return path


def status_from_flags(flags: str) -> WorkingCopyStatus:
    """
    Map porcelain XY flags to a working copy status.

    A single flag is read as the index column.

    Raises:
        ParseError: If the flag combination is not a known status
    """
    x = flags[0]
    y = flags[1] if len(flags) > 1 else " "

    if flags == "??":
        return WorkingCopyStatus.UNTRACKED
    if flags == "!!":
        return WorkingCopyStatus.IGNORED
    if "?" in flags or "!" in flags:
        raise ParseError("Unknown status flags", flags)
    if "U" in (x, y) or flags in ("AA", "DD"):
        return WorkingCopyStatus.CONFLICTED
    if x == "A":
        return WorkingCopyStatus.ADDED
    if x == "D":
        return WorkingCopyStatus.DELETED
    if y == "D":
        return WorkingCopyStatus.MISSING
    if x in ("R", "C"):
        return WorkingCopyStatus.ADDED
    if "M" in (x, y) or "T" in (x, y) or y in ("R", "C"):
        return WorkingCopyStatus.MODIFIED

    raise ParseError("Unknown status flags", flags)


def parse_branch_header(line: str) -> str:
    """
    Extract the branch name from a `## ...` status header.

    Examples:
        "## main...origin/main [ahead 1]" -> "main"
        "## No commits yet on main" -> "main"
        "## HEAD (no branch)" -> "HEAD"
    """
    header = line[3:].strip()
    for prefix in ("No commits yet on ", "Initial commit on "):
        if header.startswith(prefix):
            return header[len(prefix) :].strip()
    if header.startswith("HEAD (no branch)"):
        return "HEAD"
    branch = header.split("...", 1)[0]
    return branch.split(" ", 1)[0]


def parse_status_lines(lines: Iterable[str]) -> tuple[Optional[str], list[StatusEntry]]:
    """
    Parse `git status --porcelain=v1 --branch` output.

    Args:
        lines: Output lines of the status invocation

    Returns:
        Tuple of (branch or None when no header, list of entries)

    Raises:
        ParseError: If a line does not match `<XY> <path>`
    """
    branch: Optional[str] = None
    entries: list[StatusEntry] = []

    for line in lines:
        if not line:
            continue
        if line.startswith("## "):
            branch = parse_branch_header(line)
            continue

        match = _STATUS_LINE.match(line)
        if not match:
            raise ParseError("Unexpected status line", line)

        flags = match.group("xy")
        path = match.group("path")
        status = status_from_flags(flags)

        if " -> " in path and ("R" in flags or "C" in flags):
            source, destination = path.split(" -> ", 1)
            if "R" in flags:
                entries.append(StatusEntry(unquote_path(source), WorkingCopyStatus.DELETED, flags))
            entries.append(StatusEntry(unquote_path(destination), status, flags))
            continue

        entries.append(StatusEntry(unquote_path(path), status, flags))

    logger.debug(f"Parsed {len(entries)} status entries (branch={branch})")
    return branch, entries


def _parse_history_files(block: str) -> tuple[WorkingCopyStatus, Optional[str]]:
    for line in block.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) < 2 or not parts[0]:
            raise ParseError("Unexpected name-status line", line)
        action = _HISTORY_ACTIONS.get(parts[0][0])
        if action is None:
            raise ParseError("Unknown name-status code", line)
        return action, parts[-1]
    return WorkingCopyStatus.MODIFIED, None


def parse_log_output(text: str, repo_root: Optional[Path] = None) -> list[Revision]:
    """
    Parse `git log --pretty=LOG_FORMAT --name-status` output.

    Args:
        text: Complete stdout of the log invocation
        repo_root: Root used to make file paths absolute (optional)

    Returns:
        Revisions, newest first

    Raises:
        ParseError: If a record is malformed
    """
    revisions: list[Revision] = []
    if not text.strip():
        return revisions

    if not text.lstrip("\n").startswith(RECORD_SEP):
        raise ParseError("Unexpected log output", text.splitlines()[0])

    for record in text.split(RECORD_SEP)[1:]:
        fields = record.split(FIELD_SEP)
        if len(fields) != 6:
            raise ParseError("Malformed log record", record[:80])

        revision_id, author, email, date_str, body, files = fields
        if not re.fullmatch(r"[0-9a-f]{7,64}", revision_id):
            raise ParseError("Invalid revision id", revision_id)
        try:
            date = datetime.fromisoformat(date_str)
        except ValueError as e:
            raise ParseError("Invalid revision date", date_str) from e

        action, file_name = _parse_history_files(files)
        file_path = None
        if file_name is not None:
            file_path = Path(file_name) if repo_root is None else repo_root / file_name

        revisions.append(
            Revision(
                revision_id=revision_id,
                author=author,
                author_email=email,
                date=date,
                message=body.strip("\n"),
                action=action,
                path=file_path,
            )
        )

    logger.debug(f"Parsed {len(revisions)} revisions")
    return revisions


def parse_lfs_locks(text: str, user_name: Optional[str] = None) -> dict[str, tuple[str, bool]]:
    """
    Parse `git lfs locks --json` output.

    Accepts both the plain list form and the `--verify` form with
    "ours"/"theirs" lists.

    Args:
        text: JSON text printed by git-lfs
        user_name: Current user, compared with lock owners in the plain form

    Returns:
        Mapping repo-relative path -> (owner, locked by current user)

    Raises:
        ParseError: If the output is not valid lock JSON
    """
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError("Invalid git lfs locks output", text[:80]) from e

    if isinstance(data, dict):
        tagged = [(lock, True) for lock in data.get("ours", [])]
        tagged += [(lock, False) for lock in data.get("theirs", [])]
    elif isinstance(data, list):
        tagged = [(lock, None) for lock in data]
    else:
        raise ParseError("Unexpected git lfs locks output", text[:80])

    locks: dict[str, tuple[str, bool]] = {}
    for lock, ours in tagged:
        try:
            path = lock["path"]
            owner = (lock.get("owner") or {}).get("name", "")
        except (TypeError, KeyError, AttributeError) as e:
            raise ParseError("Malformed lock entry", str(lock)) from e
        if ours is None:
            ours = bool(user_name) and owner == user_name
        locks[path] = (owner, ours)

    return locks
