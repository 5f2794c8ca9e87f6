"""JSON renderer with stable schema and versioning."""

import json
import os
from pathlib import Path
from typing import Any, Mapping, Sequence

from sourcectl.commands import Command, Revision
from sourcectl.context import RepositoryContext
from sourcectl.state import FileState

JSON_VERSION = 1


def _state_dict(state: FileState) -> dict[str, Any]:
    return {
        "path": os.fspath(state.path),
        "status": state.working_copy_status.value,
        "lock_status": state.lock_status.value,
        "lock_owner": state.lock_owner,
        "revision": state.last_known_revision_id,
        "branch": state.branch,
        "read_only": state.read_only,
        "updated_at": state.last_update_timestamp.isoformat(),
    }


def _revision_dict(revision: Revision) -> dict[str, Any]:
    return {
        "id": revision.revision_id,
        "author": revision.author,
        "author_email": revision.author_email,
        "date": revision.date.isoformat(),
        "message": revision.message,
        "action": revision.action.value,
        "path": os.fspath(revision.path) if revision.path is not None else None,
    }


def _command_dict(command: Command) -> dict[str, Any]:
    return {
        "id": command.id,
        "type": command.type.value,
        "state": command.state.value,
        "paths": [os.fspath(path) for path in command.target_paths],
        "failed_paths": [os.fspath(path) for path in command.failed_paths],
        "error": (
            {"kind": command.error.kind.value, "message": command.error.message}
            if command.error is not None
            else None
        ),
        "stderr": list(command.raw_error_lines),
    }


def render_states_json(command: Command, states: Sequence[FileState]) -> str:
    """
    Render a state-updating command as JSON.

    Schema version 1:
      {
        "command": "<type>",
        "version": 1,
        "result": { id, type, state, paths, failed_paths, error, stderr },
        "files": [ { path, status, lock_status, lock_owner, revision, ... } ]
      }

    Returns:
        JSON string with stable key ordering
    """
    output = {
        "command": command.type.value,
        "version": JSON_VERSION,
        "result": _command_dict(command),
        "files": [_state_dict(state) for state in sorted(states, key=lambda s: s.path)],
    }
    return json.dumps(output, sort_keys=True)


def render_history_json(command: Command, history: Mapping[Path, Sequence[Revision]]) -> str:
    """Render HISTORY results as JSON (schema version 1, "history" maps path -> revisions)."""
    output = {
        "command": command.type.value,
        "version": JSON_VERSION,
        "result": _command_dict(command),
        "history": {
            os.fspath(path): [_revision_dict(revision) for revision in revisions]
            for path, revisions in history.items()
        },
    }
    return json.dumps(output, sort_keys=True)


def render_command_json(command: Command) -> str:
    """Render any finished command; payload-less types only carry the result block."""
    output: dict[str, Any] = {
        "command": command.type.value,
        "version": JSON_VERSION,
        "result": _command_dict(command),
    }
    if isinstance(command.result_payload, str):
        output["output"] = command.result_payload
    return json.dumps(output, sort_keys=True)


def render_info_json(context: RepositoryContext, status_text: str) -> str:
    output = {
        "command": "info",
        "version": JSON_VERSION,
        "status": status_text,
        "context": {
            "repository_root": os.fspath(context.repository_root),
            "is_repository": context.is_repository,
            "branch": context.branch,
            "executable_path": context.executable_path,
            "git_version": context.git_version,
            "user_name": context.user_name,
            "remote_url": context.remote_url,
            "lfs_available": context.lfs_available,
            "use_locking": context.use_locking,
        },
    }
    return json.dumps(output, sort_keys=True)
