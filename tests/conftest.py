"""Test fixtures and utilities."""

import subprocess
from pathlib import Path
from typing import Callable, Generator, Optional, Sequence

import click.testing
import pytest

from sourcectl.config import Settings
from sourcectl.context import RepositoryContext
from sourcectl.probes.tools import ProcessResult
from sourcectl.provider import Provider


def git(repo: Path, *args: str) -> str:
    """Run git in repo for test setup and return stdout."""
    result = subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True)
    return result.stdout


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a temporary Git repository with one committed file."""
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()

    git(repo_dir, "-c", "init.defaultBranch=main", "init")
    git(repo_dir, "config", "user.email", "test@example.com")
    git(repo_dir, "config", "user.name", "Test User")
    git(repo_dir, "config", "commit.gpgsign", "false")

    (repo_dir / "README.md").write_text("# Test\n")
    git(repo_dir, "add", ".")
    git(repo_dir, "commit", "-m", "Initial")
    git(repo_dir, "branch", "-M", "main")

    return repo_dir.resolve()


@pytest.fixture
def settings(git_repo: Path) -> Settings:
    """Settings for the temporary repository with fast timings."""
    return Settings(
        repository_root=git_repo,
        executable_path="git",
        command_timeout=30.0,
        lock_retry_delay=0.0,
        shutdown_grace=5.0,
    )


@pytest.fixture
def provider(settings: Settings) -> Generator[Provider, None, None]:
    """Connected Provider on the temporary repository."""
    provider = Provider(settings)
    provider.connect()
    yield provider
    provider.shutdown()


@pytest.fixture
def runner() -> click.testing.CliRunner:
    """Click CliRunner for testing CLI commands."""
    return click.testing.CliRunner()


class FakeRunner:
    """
    ProcessRunner stand-in that records invocations.

    The responder maps the git arguments (after the `-c core.quotepath=off`
    prefix) to a ProcessResult; unmatched calls succeed with no output.
    """

    def __init__(self, responder: Optional[Callable[[list[str]], Optional[ProcessResult]]] = None) -> None:
        self.calls: list[list[str]] = []
        self.responder = responder
        self.terminated = 0

    def run(self, executable: str, cwd: Path, args: Sequence[str], timeout: float = 60.0) -> ProcessResult:
        args = list(args)
        if args[:2] == ["-c", "core.quotepath=off"]:
            args = args[2:]
        self.calls.append(args)
        result = self.responder(args) if self.responder else None
        if result is None:
            result = ProcessResult(args=args, exit_code=0)
        return result

    def terminate_all(self) -> int:
        self.terminated += 1
        return 0

    def calls_for(self, subcommand: str) -> list[list[str]]:
        return [call for call in self.calls if call and call[0] == subcommand]


@pytest.fixture
def fake_context(tmp_path: Path) -> RepositoryContext:
    """Context for executor tests that never touch a real repository."""
    root = tmp_path.resolve()
    return RepositoryContext(
        repository_root=root,
        executable_path="git",
        branch="main",
        git_version="2.43.0",
        user_name="Test User",
    )


@pytest.fixture
def make_runner() -> type[FakeRunner]:
    """Factory for FakeRunner instances."""
    return FakeRunner
