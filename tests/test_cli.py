"""Test the sourcectl CLI."""

import json
import os
import subprocess
from pathlib import Path

import pytest
from click.testing import CliRunner

from sourcectl.cli import sourcectl
from sourcectl.errors import EXIT_ERROR, EXIT_NOT_READY, EXIT_USAGE


@pytest.fixture(autouse=True)
def in_repo(git_repo: Path, monkeypatch):
    """Run every command from inside the temporary repository."""
    for key in list(os.environ):
        if key.startswith("SOURCECTL_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(git_repo)


def invoke(runner: CliRunner, *args: str):
    return runner.invoke(sourcectl, list(args))


def test_status_clean(runner: CliRunner):
    """Test status on a clean repository."""
    result = invoke(runner, "status")

    assert result.exit_code == 0, result.output
    assert "No changes" in result.output


def test_status_lists_changes(runner: CliRunner, git_repo: Path):
    """Test status shows modified and untracked files."""
    (git_repo / "README.md").write_text("changed\n")
    (git_repo / "notes.txt").write_text("notes\n")

    result = invoke(runner, "status")

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].split() == ["STATUS", "LOCK", "PATH"]
    assert ["MODIFIED", "README.md"] in [line.split() for line in lines]
    assert ["UNTRACKED", "notes.txt"] in [line.split() for line in lines]


def test_status_json(runner: CliRunner, git_repo: Path):
    """Test status --json for explicit paths."""
    (git_repo / "README.md").write_text("changed\n")

    result = invoke(runner, "status", "--json", "README.md")

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["command"] == "status"
    assert data["version"] == 1
    assert data["result"]["state"] == "succeeded"
    assert [(f["path"], f["status"]) for f in data["files"]] == [(str(git_repo / "README.md"), "modified")]


def test_add_commit_log(runner: CliRunner, git_repo: Path):
    """Test the add, commit and log workflow."""
    (git_repo / "notes.txt").write_text("notes\n")

    added = invoke(runner, "add", "notes.txt")
    assert added.exit_code == 0, added.output
    assert "Added 1 path(s)" in added.output
    assert "ADDED" in added.output

    committed = invoke(runner, "commit", "-m", "Add notes", "notes.txt")
    assert committed.exit_code == 0, committed.output
    assert "Committed 1 path(s)" in committed.output

    history = invoke(runner, "log", "notes.txt")
    assert history.exit_code == 0, history.output
    assert history.output.splitlines()[0] == "notes.txt:"
    assert "Add notes" in history.output
    assert "Test User" in history.output

    subject = subprocess.run(
        ["git", "log", "-1", "--format=%s"], cwd=git_repo, check=True, capture_output=True, text=True
    ).stdout.strip()
    assert subject == "Add notes"


def test_log_json(runner: CliRunner, git_repo: Path):
    """Test log --json output."""
    result = invoke(runner, "log", "--json", "--max", "1", "README.md")

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    (revision,) = data["history"][str(git_repo / "README.md")]
    assert revision["message"] == "Initial"
    assert revision["author"] == "Test User"


def test_diff(runner: CliRunner, git_repo: Path):
    """Test diff prints the patch."""
    (git_repo / "README.md").write_text("# Changed\n")

    result = invoke(runner, "diff", "README.md")

    assert result.exit_code == 0, result.output
    assert "-# Test" in result.output
    assert "+# Changed" in result.output


def test_revert(runner: CliRunner, git_repo: Path):
    """Test revert restores the committed content."""
    (git_repo / "README.md").write_text("changed\n")

    result = invoke(runner, "revert", "README.md")

    assert result.exit_code == 0, result.output
    assert (git_repo / "README.md").read_text() == "# Test\n"


def test_mv(runner: CliRunner, git_repo: Path):
    """Test moving a tracked file."""
    result = invoke(runner, "mv", "README.md", "GUIDE.md")

    assert result.exit_code == 0, result.output
    assert (git_repo / "GUIDE.md").exists()
    assert not (git_repo / "README.md").exists()


def test_rm_keep_local(runner: CliRunner, git_repo: Path):
    """Test rm --keep-local stops tracking but keeps the file."""
    result = invoke(runner, "rm", "--keep-local", "README.md")

    assert result.exit_code == 0, result.output
    assert (git_repo / "README.md").exists()
    tracked = subprocess.run(["git", "ls-files"], cwd=git_repo, check=True, capture_output=True, text=True).stdout
    assert "README.md" not in tracked


def test_commit_requires_message(runner: CliRunner):
    """Test click rejects commit without -m."""
    result = invoke(runner, "commit", "README.md")

    assert result.exit_code == 2
    assert "Missing option" in result.output


def test_path_outside_repository(runner: CliRunner, tmp_path: Path):
    """Test validation errors exit with the usage code."""
    outside = tmp_path / "outside.txt"
    outside.write_text("x\n")

    result = invoke(runner, "add", str(outside))

    assert result.exit_code == EXIT_USAGE
    assert "outside the repository" in result.output


def test_lock_without_locking(runner: CliRunner):
    """Test lock is rejected when locking is disabled."""
    result = invoke(runner, "lock", "README.md")

    assert result.exit_code == EXIT_USAGE
    assert "locking is not enabled" in result.output


def test_git_failure_exit_code(runner: CliRunner):
    """Test a failing git invocation reports stderr and exits 1."""
    result = invoke(runner, "mv", "missing.txt", "other.txt")

    assert result.exit_code == EXIT_ERROR
    assert "failed" in result.output


def test_push_without_remote_fails(runner: CliRunner):
    """Test push --json still prints the result block on failure."""
    result = invoke(runner, "push", "--json")

    assert result.exit_code != 0
    data = json.loads(result.output.splitlines()[0])
    assert data["result"]["state"] == "failed"
    assert data["result"]["error"]["kind"] == "tool_execution"


def test_info(runner: CliRunner, git_repo: Path):
    """Test info text output."""
    result = invoke(runner, "info")

    assert result.exit_code == 0, result.output
    assert result.output.startswith("Git ")
    assert f"Repository:   {git_repo}" in result.output
    assert "Branch:       main" in result.output


def test_info_json(runner: CliRunner, git_repo: Path):
    """Test info --json output."""
    result = invoke(runner, "info", "--json")

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["context"]["repository_root"] == str(git_repo)
    assert data["context"]["branch"] == "main"
    assert data["context"]["is_repository"] is True


def test_missing_repository_root(runner: CliRunner, tmp_path: Path):
    """Test a missing --repo directory exits not-ready."""
    result = invoke(runner, "--repo", str(tmp_path / "missing"), "status")

    assert result.exit_code == EXIT_NOT_READY
    assert "does not exist" in result.output


def test_init_plain_directory(runner: CliRunner, tmp_path: Path):
    """Test init creates a repository with an origin remote."""
    plain = tmp_path / "plain"
    plain.mkdir()

    result = invoke(runner, "--repo", str(plain), "init", "--remote-url", "https://example.com/repo.git")

    assert result.exit_code == 0, result.output
    assert "Initialized repository" in result.output
    assert (plain / ".git").is_dir()
    url = subprocess.run(
        ["git", "remote", "get-url", "origin"], cwd=plain, check=True, capture_output=True, text=True
    ).stdout.strip()
    assert url == "https://example.com/repo.git"
