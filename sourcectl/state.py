"""Per-file version control state."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

PathLike = Union[str, os.PathLike]


class WorkingCopyStatus(str, Enum):
    """Working copy status of a file relative to its last synced revision."""

    UNKNOWN = "unknown"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    ADDED = "added"
    DELETED = "deleted"
    UNTRACKED = "untracked"
    MISSING = "missing"
    CONFLICTED = "conflicted"
    IGNORED = "ignored"


class LockStatus(str, Enum):
    """LFS lock status of a file."""

    NOT_LOCKED = "not_locked"
    LOCKED_BY_ME = "locked_by_me"
    LOCKED_BY_OTHER = "locked_by_other"


def normalize_path(path: PathLike) -> Path:
    """Absolute, normalized form of a path, used as the cache key."""
    return Path(os.path.normpath(os.path.abspath(os.fspath(path))))


def normalize_paths(paths: Iterable[PathLike]) -> tuple[Path, ...]:
    """Normalize paths, dropping duplicates while keeping the first occurrence order."""
    seen: dict[Path, None] = {}
    for path in paths:
        seen.setdefault(normalize_path(path), None)
    return tuple(seen)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FileState:
    """Last known version control state of one file."""

    path: Path
    working_copy_status: WorkingCopyStatus = WorkingCopyStatus.UNKNOWN
    lock_status: LockStatus = LockStatus.NOT_LOCKED
    lock_owner: Optional[str] = None
    last_known_revision_id: str = ""
    last_update_timestamp: datetime = field(default_factory=utcnow)
    branch: str = ""
    read_only: bool = False

    @classmethod
    def unknown(cls, path: PathLike) -> "FileState":
        """State returned for paths that have never been queried."""
        return cls(
            path=normalize_path(path),
            working_copy_status=WorkingCopyStatus.UNKNOWN,
            last_update_timestamp=datetime.min.replace(tzinfo=timezone.utc),
        )

    @property
    def is_known(self) -> bool:
        return self.working_copy_status is not WorkingCopyStatus.UNKNOWN

    @property
    def is_tracked(self) -> bool:
        return self.working_copy_status not in (
            WorkingCopyStatus.UNKNOWN,
            WorkingCopyStatus.UNTRACKED,
            WorkingCopyStatus.IGNORED,
        )

    @property
    def is_modified(self) -> bool:
        return self.working_copy_status in (
            WorkingCopyStatus.MODIFIED,
            WorkingCopyStatus.ADDED,
            WorkingCopyStatus.DELETED,
            WorkingCopyStatus.MISSING,
            WorkingCopyStatus.CONFLICTED,
        )

    @property
    def is_conflicted(self) -> bool:
        return self.working_copy_status is WorkingCopyStatus.CONFLICTED

    @property
    def is_locked_by_other(self) -> bool:
        return self.lock_status is LockStatus.LOCKED_BY_OTHER

    @property
    def requires_lock(self) -> bool:
        """
        Whether this file is under locking mode.

        Derived from the file itself rather than from repository settings:
        a file left read-only by a previous locking session, or one that is
        currently locked, still needs the lock workflow.
        """
        return self.read_only or self.lock_status is not LockStatus.NOT_LOCKED

    @property
    def can_check_in(self) -> bool:
        return self.is_modified and not self.is_conflicted and not self.is_locked_by_other

    @property
    def can_revert(self) -> bool:
        return self.is_modified

    @property
    def can_add(self) -> bool:
        return self.working_copy_status is WorkingCopyStatus.UNTRACKED

    @property
    def can_lock(self) -> bool:
        return self.is_tracked and self.lock_status is LockStatus.NOT_LOCKED

    @property
    def can_unlock(self) -> bool:
        return self.lock_status is LockStatus.LOCKED_BY_ME

    def is_stale(self, max_age: float, now: Optional[datetime] = None) -> bool:
        """True when the state is unknown or older than max_age seconds."""
        if not self.is_known:
            return True
        now = now or utcnow()
        return now - self.last_update_timestamp > timedelta(seconds=max_age)

    def same_state(self, other: Optional["FileState"]) -> bool:
        """Compare everything except the refresh timestamp."""
        if other is None:
            return False
        return (
            self.path == other.path
            and self.working_copy_status is other.working_copy_status
            and self.lock_status is other.lock_status
            and self.lock_owner == other.lock_owner
            and self.last_known_revision_id == other.last_known_revision_id
            and self.branch == other.branch
            and self.read_only == other.read_only
        )
