"""Git repository probes."""

import logging
from pathlib import Path
from typing import Optional

from sourcectl.probes.tools import SubprocessError, run_command_output_cwd

logger = logging.getLogger(__name__)


def find_git_root(start: Optional[Path] = None, executable: str = "git") -> Path:
    """
    Find git repository root.

    Args:
        start: Directory to search from (defaults to the current directory)
        executable: Git executable to use

    Returns:
        Path to git repository root

    Raises:
        RuntimeError: If not in a git repository
    """
    try:
        root_str = run_command_output_cwd([executable, "rev-parse", "--show-toplevel"], cwd=start)
        root = Path(root_str).resolve()
        logger.debug(f"Git root: {root}")
        return root
    except SubprocessError as e:
        logger.debug(f"Not in git repo: {e}")
        raise RuntimeError("Not in a git repository") from e
