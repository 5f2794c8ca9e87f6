"""Test the Command lifecycle."""

from pathlib import Path

import pytest

from sourcectl.commands import Command, CommandState, CommandType, Revision
from sourcectl.errors import (
    CommandSealedError,
    ErrorKind,
    InvalidStateTransitionError,
    ToolExecutionError,
)


class TestCommandCreate:
    """Test command construction."""

    def test_paths_normalized_and_deduplicated(self, tmp_path: Path):
        command = Command.create(CommandType.ADD, [tmp_path / "a", str(tmp_path / "a"), tmp_path / "b"])
        assert command.target_paths == (tmp_path / "a", tmp_path / "b")
        assert command.state is CommandState.PENDING

    def test_parameters_read_only(self, tmp_path: Path):
        command = Command.create(CommandType.COMMIT, [tmp_path / "a"], {"message": "m"})
        with pytest.raises(TypeError):
            command.parameters["message"] = "changed"  # type: ignore[index]

    def test_type_from_string(self):
        assert Command.create("status").type is CommandType.STATUS  # type: ignore[arg-type]

    def test_repository_wide(self, tmp_path: Path):
        assert Command.create(CommandType.STATUS).is_repository_wide
        assert not Command.create(CommandType.STATUS, [tmp_path]).is_repository_wide

    def test_dedup_key_ignores_path_order(self, tmp_path: Path):
        first = Command.create(CommandType.STATUS, [tmp_path / "a", tmp_path / "b"])
        second = Command.create(CommandType.STATUS, [tmp_path / "b", tmp_path / "a"])
        other = Command.create(CommandType.COMMIT, [tmp_path / "a", tmp_path / "b"], {"message": "x"})
        assert first.dedup_key == second.dedup_key
        assert first.dedup_key != other.dedup_key
        assert first.id != second.id


class TestCommandLifecycle:
    """Test state transitions and sealing."""

    def test_succeed(self, tmp_path: Path):
        command = Command.create(CommandType.STATUS, [tmp_path])
        assert command.start()
        command.record_output(["out"], [])
        command.succeed(("payload",))

        assert command.state is CommandState.SUCCEEDED
        assert command.succeeded
        assert command.invoked
        assert command.result_payload == ("payload",)
        assert command.raw_output_lines == ("out",)
        assert command.finished_at is not None

    def test_sealed_after_terminal(self, tmp_path: Path):
        command = Command.create(CommandType.STATUS, [tmp_path])
        command.start()
        command.succeed(())
        with pytest.raises(CommandSealedError):
            command.result_payload = "other"
        # Output arriving after sealing is dropped
        command.record_output(["late"], [])
        assert command.raw_output_lines == ()

    def test_fail_keeps_error_lines(self, tmp_path: Path):
        command = Command.create(CommandType.ADD, [tmp_path / "a"])
        command.start()
        command.record_output([], ["fatal: pathspec did not match"])
        error = ToolExecutionError("git add failed", failed_paths=[tmp_path / "a"])
        command.fail(error, error.failed_paths)

        assert command.state is CommandState.FAILED
        assert command.error_kind is ErrorKind.TOOL_EXECUTION
        assert command.raw_error_lines == ("fatal: pathspec did not match",)
        assert command.failed_paths == (tmp_path / "a",)
        assert command.result_payload is None

    def test_fail_without_stderr_uses_message(self, tmp_path: Path):
        command = Command.create(CommandType.ADD, [tmp_path / "a"])
        command.start()
        command.fail(ToolExecutionError("boom"))
        assert command.raw_error_lines == ("boom",)

    def test_cannot_start_twice(self, tmp_path: Path):
        command = Command.create(CommandType.STATUS, [tmp_path])
        assert command.start()
        assert not command.start()

    def test_cannot_succeed_pending(self, tmp_path: Path):
        command = Command.create(CommandType.STATUS, [tmp_path])
        with pytest.raises(InvalidStateTransitionError):
            command.succeed(())

    def test_cancel_pending(self, tmp_path: Path):
        command = Command.create(CommandType.STATUS, [tmp_path])
        assert command.cancel()
        assert command.state is CommandState.CANCELLED
        assert command.cancel_requested
        assert not command.start()
        assert not command.cancel()

    def test_request_cancel_only_sets_flag(self, tmp_path: Path):
        command = Command.create(CommandType.STATUS, [tmp_path])
        command.start()
        command.request_cancel()
        assert command.cancel_requested
        assert command.state is CommandState.RUNNING

    def test_abandon_discards_later_result(self, tmp_path: Path):
        command = Command.create(CommandType.STATUS, [tmp_path])
        command.start()

        assert command.abandon()
        command.succeed(("late",))
        command.record_branch("feature")

        assert command.state is CommandState.CANCELLED
        assert command.abandoned
        assert command.result_payload is None
        assert command.branch is None

    def test_abandon_requires_running(self, tmp_path: Path):
        assert not Command.create(CommandType.STATUS, [tmp_path]).abandon()


class TestRevision:
    """Test Revision helpers."""

    def test_short_id_and_summary(self):
        from datetime import datetime, timezone

        revision = Revision(
            revision_id="0123456789abcdef0123456789abcdef01234567",
            author="A",
            date=datetime(2026, 1, 1, tzinfo=timezone.utc),
            message="Subject\n\nBody",
        )
        assert revision.short_id == "01234567"
        assert revision.summary == "Subject"
