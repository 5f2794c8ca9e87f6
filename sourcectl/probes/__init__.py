"""Runtime probes."""

from sourcectl.probes.repo import find_git_root
from sourcectl.probes.tools import ProcessResult, ProcessRunner, SubprocessError, run_command_output_cwd

__all__ = [
    "ProcessResult",
    "ProcessRunner",
    "SubprocessError",
    "find_git_root",
    "run_command_output_cwd",
]
