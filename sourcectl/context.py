"""Repository context: process-wide facts about the repository and the tool."""

import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from sourcectl.config import Settings
from sourcectl.errors import ConfigError, ToolNotFound
from sourcectl.probes.tools import ProcessRunner
from sourcectl.scm.parsers import parse_branch_header

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class RepositoryContext:
    """
    Facts read by the executor on every command.

    Immutable; the Provider swaps in a new instance on reconfiguration or
    when a branch switch is detected.
    """

    repository_root: Path
    executable_path: str
    branch: str = ""
    use_locking: bool = False
    lfs_available: bool = False
    git_version: str = ""
    user_name: str = ""
    remote_url: Optional[str] = None
    is_repository: bool = True

    def with_branch(self, branch: str) -> "RepositoryContext":
        return replace(self, branch=branch)


def parse_git_version(output: str) -> str:
    """
    Extract the version number from `git --version`.

    Example: "git version 2.43.0.windows.1" -> "2.43.0"
    """
    match = re.search(r"(\d+\.\d+(?:\.\d+)?)", output)
    return match.group(1) if match else ""


def _probe(runner: ProcessRunner, settings: Settings, args: list[str]) -> Optional[str]:
    """Run a probe and return stdout, or None on a non-zero exit."""
    result = runner.run(settings.executable_path, settings.repository_root, args, timeout=PROBE_TIMEOUT_SECONDS)
    if not result.ok:
        logger.debug(f"Probe {' '.join(args)} failed: {' '.join(result.stderr_lines)}")
        return None
    return result.stdout.strip()


def detect_context(settings: Settings, runner: ProcessRunner) -> RepositoryContext:
    """
    Probe the tool and the repository.

    Runs synchronously; intended for startup and explicit reconfiguration.

    Args:
        settings: Resolved settings
        runner: Process runner used for the probes

    Returns:
        RepositoryContext describing the repository

    Raises:
        ToolNotFound: If the git executable is missing or unusable
        ConfigError: If the repository root does not exist
    """
    if not settings.repository_root.is_dir():
        raise ConfigError(f"Repository root does not exist: {settings.repository_root}")

    version_output = _probe(runner, settings, ["--version"])
    if version_output is None or not version_output.startswith("git version"):
        raise ToolNotFound(settings.executable_path, reason="is not a working git executable")
    git_version = parse_git_version(version_output)

    toplevel = _probe(runner, settings, ["rev-parse", "--show-toplevel"])
    if toplevel is None:
        logger.info(f"{settings.repository_root} is not a git repository yet")
        return RepositoryContext(
            repository_root=settings.repository_root,
            executable_path=settings.executable_path,
            git_version=git_version,
            remote_url=settings.remote_url,
            is_repository=False,
        )

    root = Path(toplevel).resolve()
    if root != settings.repository_root.resolve():
        logger.warning(f"Configured root {settings.repository_root} is inside repository {root}; using {root}")

    header = _probe(runner, settings, ["status", "--porcelain=v1", "--branch", "--untracked-files=no"])
    branch = ""
    if header:
        first = header.splitlines()[0]
        if first.startswith("## "):
            branch = parse_branch_header(first)

    user_name = _probe(runner, settings, ["config", "user.name"]) or ""

    lfs_available = False
    if settings.use_locking:
        lfs_available = _probe(runner, settings, ["lfs", "version"]) is not None
        if not lfs_available:
            logger.warning("File locking requested but git-lfs is not available; locking disabled")

    remote_url = settings.remote_url or _probe(runner, settings, ["remote", "get-url", "origin"])

    context = RepositoryContext(
        repository_root=root,
        executable_path=settings.executable_path,
        branch=branch,
        use_locking=settings.use_locking and lfs_available,
        lfs_available=lfs_available,
        git_version=git_version,
        user_name=user_name,
        remote_url=remote_url or None,
    )
    logger.debug(f"Repository context: {context}")
    return context
