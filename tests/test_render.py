"""Test text and JSON renderers."""

import json
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from unittest.mock import patch

import pytest

from sourcectl.commands import Command, CommandType, Revision
from sourcectl.context import RepositoryContext
from sourcectl.errors import ToolExecutionError
from sourcectl.render.json import (
    JSON_VERSION,
    render_command_json,
    render_history_json,
    render_info_json,
    render_states_json,
)
from sourcectl.render.text import (
    display_path,
    format_datetime,
    render_command_summary,
    render_history,
    render_info,
    render_state_table,
)
from sourcectl.state import FileState, LockStatus, WorkingCopyStatus

DATE = datetime(2026, 1, 22, 10, 41, 12, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def plain_output():
    with patch("sourcectl.render.colors.should_color", return_value=False):
        yield


def finished(command_type: CommandType, paths=(), payload=None, parameters=None) -> Command:
    command = Command.create(command_type, paths, parameters)
    command.start()
    command.succeed(payload)
    return command


def revision(path: Path, message: str = "Update readme") -> Revision:
    return Revision(
        revision_id="0123456789abcdef0123456789abcdef01234567",
        author="Test User",
        author_email="test@example.com",
        date=DATE,
        message=message,
        path=path,
    )


class TestHelpers:
    """Test formatting helpers."""

    def test_format_datetime(self):
        assert format_datetime(DATE) == "2026-01-22 10:41:12 UTC"

    def test_format_naive_datetime_as_utc(self):
        assert format_datetime(datetime(2026, 1, 22, 10, 41, 12)) == "2026-01-22 10:41:12 UTC"

    def test_display_path_relative_to_root(self, tmp_path: Path):
        assert display_path(tmp_path / "dir" / "a.txt", tmp_path) == "dir/a.txt"

    def test_display_path_outside_root(self, tmp_path: Path):
        outside = Path("/elsewhere/a.txt")
        assert display_path(outside, tmp_path) == str(outside)


class TestStateTable:
    """Test render_state_table."""

    def test_empty(self):
        assert render_state_table([]) == "No changes"

    def test_rows_sorted_and_aligned(self, tmp_path: Path):
        states = [
            FileState(path=tmp_path / "b.txt", working_copy_status=WorkingCopyStatus.UNTRACKED),
            FileState(
                path=tmp_path / "a.txt",
                working_copy_status=WorkingCopyStatus.MODIFIED,
                lock_status=LockStatus.LOCKED_BY_OTHER,
                lock_owner="alice",
            ),
        ]

        output = render_state_table(states, tmp_path)
        lines = output.splitlines()

        assert lines[0].split() == ["STATUS", "LOCK", "PATH"]
        assert lines[2].split() == ["MODIFIED", "LOCKED(OTHER)", "alice", "a.txt"]
        assert lines[3].split() == ["UNTRACKED", "b.txt"]
        assert lines[2].index("a.txt") == lines[3].index("b.txt")


class TestHistory:
    """Test render_history."""

    def test_empty(self):
        assert render_history({}) == "No history"

    def test_revisions(self, tmp_path: Path):
        path = tmp_path / "README.md"
        output = render_history({path: (revision(path, "Update readme\n\nLonger body"),)}, tmp_path)

        assert output.splitlines() == [
            "README.md:",
            "  01234567  2026-01-22 10:41:12 UTC  Test User  Update readme",
        ]

    def test_renamed_revision(self, tmp_path: Path):
        path = tmp_path / "new.md"
        output = render_history({path: (revision(tmp_path / "old.md"),)}, tmp_path)
        assert output.splitlines()[1].endswith("[old.md]")

    def test_no_revisions(self, tmp_path: Path):
        output = render_history({tmp_path / "new.txt": ()}, tmp_path)
        assert "(no revisions)" in output


class TestCommandSummary:
    """Test render_command_summary."""

    def test_succeeded(self, tmp_path: Path):
        command = finished(CommandType.ADD, [tmp_path / "a", tmp_path / "b"], ())
        assert render_command_summary(command) == "add 2 path(s): succeeded"

    def test_repository_wide(self):
        assert render_command_summary(finished(CommandType.PULL)) == "pull repository: succeeded"

    def test_failed_with_paths(self, tmp_path: Path):
        command = Command.create(CommandType.ADD, [tmp_path / "a", tmp_path / "b"])
        command.start()
        error = ToolExecutionError("git add failed for 1 of 2 paths", failed_paths=[tmp_path / "b"])
        command.fail(error, error.failed_paths)

        assert render_command_summary(command) == (
            "add 2 path(s): failed - [tool_execution] git add failed for 1 of 2 paths (1 failed)"
        )


class TestInfo:
    """Test render_info."""

    def test_info(self, tmp_path: Path):
        context = RepositoryContext(
            repository_root=tmp_path,
            executable_path="git",
            branch="main",
            git_version="2.43.0",
            user_name="Test User",
        )

        output = render_info(context, "Git 2.43.0: main")

        assert output.splitlines()[0] == "Git 2.43.0: main"
        assert "Branch:       main" in output
        assert "Remote:       -" in output
        assert "Locking:      disabled" in output


class TestJson:
    """Test JSON renderers."""

    def test_states_json(self, tmp_path: Path):
        state = FileState(path=tmp_path / "a.txt", working_copy_status=WorkingCopyStatus.ADDED, branch="main")
        command = finished(CommandType.ADD, [tmp_path / "a.txt"], (state,))

        data = json.loads(render_states_json(command, [state]))

        assert data["command"] == "add"
        assert data["version"] == JSON_VERSION
        assert data["result"]["state"] == "succeeded"
        assert data["result"]["error"] is None
        assert data["files"] == [
            {
                "path": str(tmp_path / "a.txt"),
                "status": "added",
                "lock_status": "not_locked",
                "lock_owner": None,
                "revision": "",
                "branch": "main",
                "read_only": False,
                "updated_at": state.last_update_timestamp.isoformat(),
            }
        ]

    def test_history_json(self, tmp_path: Path):
        path = tmp_path / "README.md"
        history = MappingProxyType({path: (revision(path),)})
        command = finished(CommandType.HISTORY, [path], history)

        data = json.loads(render_history_json(command, history))

        (entry,) = data["history"][str(path)]
        assert entry["id"] == "0123456789abcdef0123456789abcdef01234567"
        assert entry["date"] == DATE.isoformat()
        assert entry["action"] == "modified"

    def test_command_json_includes_text_output(self, tmp_path: Path):
        command = finished(CommandType.DIFF, [tmp_path / "a"], "diff --git a/a b/a\n")

        data = json.loads(render_command_json(command))

        assert data["output"] == "diff --git a/a b/a\n"

    def test_command_json_failed(self, tmp_path: Path):
        command = Command.create(CommandType.PUSH)
        command.start()
        command.record_output([], ["error: failed to push some refs"])
        command.fail(ToolExecutionError("git push failed", returncode=1))

        data = json.loads(render_command_json(command))

        assert "output" not in data
        assert data["result"]["error"] == {"kind": "tool_execution", "message": "git push failed"}
        assert data["result"]["stderr"] == ["error: failed to push some refs"]

    def test_info_json(self, tmp_path: Path):
        context = RepositoryContext(repository_root=tmp_path, executable_path="git", is_repository=False)

        data = json.loads(render_info_json(context, "Git: not a repository"))

        assert data["status"] == "Git: not a repository"
        assert data["context"]["is_repository"] is False
        assert data["context"]["remote_url"] is None
