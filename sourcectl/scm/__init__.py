"""SCM abstraction layer."""

from sourcectl.scm.git import GitExecutor, is_lock_contention
from sourcectl.scm.parsers import (
    StatusEntry,
    parse_branch_header,
    parse_lfs_locks,
    parse_log_output,
    parse_status_lines,
    status_from_flags,
)
from sourcectl.scm.protocol import Executor

__all__ = [
    "Executor",
    "GitExecutor",
    "StatusEntry",
    "is_lock_contention",
    "parse_branch_header",
    "parse_lfs_locks",
    "parse_log_output",
    "parse_status_lines",
    "status_from_flags",
]
