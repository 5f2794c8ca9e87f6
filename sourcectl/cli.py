"""sourcectl CLI entrypoint."""

import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import click

from sourcectl.commands import Command, CommandState, CommandType
from sourcectl.config import get_settings
from sourcectl.errors import EXIT_CANCELLED, EXIT_ERROR, EXIT_NOT_READY, SourceControlError
from sourcectl.logging import get_logger, setup_logging
from sourcectl.provider import Provider
from sourcectl.render.colors import echo_error, echo_success, echo_warning
from sourcectl.render.json import (
    render_command_json,
    render_history_json,
    render_info_json,
    render_states_json,
)
from sourcectl.render.text import (
    render_command_summary,
    render_history,
    render_info,
    render_state_table,
)

logger = get_logger(__name__)

PATHS = click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
JSON_OPTION = click.option("--json", "json_output", is_flag=True, help="JSON output")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option(
    "--repo",
    type=click.Path(file_okay=False, path_type=Path),
    help="Repository root (default: git toplevel of the current directory)",
)
@click.version_option(package_name="sourcectl")
@click.pass_context
def sourcectl(ctx: click.Context, verbose: bool, repo: Optional[Path]) -> None:
    """sourcectl - asynchronous git integration for editors and scripts."""
    setup_logging(verbose=verbose)
    ctx.obj = {"repo": repo}


def _open_provider(ctx: click.Context) -> Provider:
    """Build and connect a Provider; it is shut down when the command exits."""
    settings = get_settings(ctx.obj.get("repo") if ctx.obj else None)
    provider = Provider(settings)
    try:
        provider.connect()
    except SourceControlError as e:
        echo_error(e.categorized_message())
        sys.exit(e.exit_code)
    ctx.call_on_close(provider.shutdown)
    return provider


def _execute(
    ctx: click.Context,
    command_type: CommandType,
    paths: Sequence[Path] = (),
    parameters: Optional[Mapping[str, Any]] = None,
) -> tuple[Provider, Command]:
    provider = _open_provider(ctx)
    try:
        handle = provider.execute(command_type, paths, parameters)
    except SourceControlError as e:
        echo_error(e.categorized_message())
        sys.exit(e.exit_code)

    try:
        command = handle.result()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        provider.cancel(handle)
        command = handle.result()
    return provider, command


def _exit_for(command: Command, json_output: bool = False) -> None:
    """Report a failed or cancelled command and exit with its code."""
    if command.state is CommandState.SUCCEEDED:
        return
    if not json_output:
        echo_error(render_command_summary(command))
        for line in command.raw_error_lines:
            echo_warning(f"  {line}")
    if command.state is CommandState.CANCELLED:
        sys.exit(EXIT_CANCELLED)
    sys.exit(command.error.exit_code if command.error is not None else EXIT_ERROR)


def _report_states(provider: Provider, command: Command, json_output: bool, message: Optional[str] = None) -> None:
    states = command.result_payload or ()
    if json_output:
        click.echo(render_states_json(command, states))
    elif command.succeeded:
        if message:
            echo_success(message)
        root = provider.context.repository_root if provider.context else None
        click.echo(render_state_table(states, root))
    _exit_for(command, json_output)


@sourcectl.command()
@click.argument("paths", nargs=-1, type=click.Path(path_type=Path))
@JSON_OPTION
@click.pass_context
def status(ctx: click.Context, paths: tuple[Path, ...], json_output: bool) -> None:
    """
    Show working copy status.

    Without paths, lists every changed file in the repository.
    """
    provider, command = _execute(ctx, CommandType.STATUS, paths)
    _report_states(provider, command, json_output)


@sourcectl.command()
@PATHS
@JSON_OPTION
@click.pass_context
def add(ctx: click.Context, paths: tuple[Path, ...], json_output: bool) -> None:
    """Start tracking files."""
    provider, command = _execute(ctx, CommandType.ADD, paths)
    _report_states(provider, command, json_output, f"Added {len(command.target_paths)} path(s)")


@sourcectl.command()
@PATHS
@click.option("--keep-local", is_flag=True, help="Stop tracking but keep the working files")
@JSON_OPTION
@click.pass_context
def rm(ctx: click.Context, paths: tuple[Path, ...], keep_local: bool, json_output: bool) -> None:
    """Delete files from the repository."""
    parameters = {"keep_local": True} if keep_local else {}
    provider, command = _execute(ctx, CommandType.DELETE, paths, parameters)
    _report_states(provider, command, json_output, f"Deleted {len(command.target_paths)} path(s)")


@sourcectl.command()
@PATHS
@JSON_OPTION
@click.pass_context
def revert(ctx: click.Context, paths: tuple[Path, ...], json_output: bool) -> None:
    """Discard local changes (unstage, then restore tracked files)."""
    provider, command = _execute(ctx, CommandType.REVERT, paths)
    _report_states(provider, command, json_output, f"Reverted {len(command.target_paths)} path(s)")


@sourcectl.command()
@PATHS
@click.option("--revision", help="Restore the files from this revision")
@JSON_OPTION
@click.pass_context
def checkout(ctx: click.Context, paths: tuple[Path, ...], revision: Optional[str], json_output: bool) -> None:
    """
    Check out files for editing.

    With --revision, restores the files from that revision. In locking mode,
    takes the LFS lock on each file.
    """
    parameters = {"revision": revision} if revision else {}
    provider, command = _execute(ctx, CommandType.CHECKOUT, paths, parameters)
    _report_states(provider, command, json_output)


@sourcectl.command()
@PATHS
@click.option("-m", "--message", required=True, help="Commit message")
@JSON_OPTION
@click.pass_context
def commit(ctx: click.Context, paths: tuple[Path, ...], message: str, json_output: bool) -> None:
    """Commit the given files."""
    provider, command = _execute(ctx, CommandType.COMMIT, paths, {"message": message})
    _report_states(provider, command, json_output, f"Committed {len(command.target_paths)} path(s)")


@sourcectl.command()
@PATHS
@click.option("--max", "max_revisions", type=int, default=20, show_default=True, help="Revisions per file")
@JSON_OPTION
@click.pass_context
def log(ctx: click.Context, paths: tuple[Path, ...], max_revisions: int, json_output: bool) -> None:
    """Show file history (follows renames)."""
    provider, command = _execute(ctx, CommandType.HISTORY, paths, {"max_revisions": max_revisions})
    history = command.result_payload or {}
    if json_output:
        click.echo(render_history_json(command, history))
    elif command.succeeded:
        root = provider.context.repository_root if provider.context else None
        click.echo(render_history(history, root))
    _exit_for(command, json_output)


@sourcectl.command()
@PATHS
@click.option("--against", help="Revision to compare with")
@click.option("--cached", is_flag=True, help="Compare the index instead of the working tree")
@JSON_OPTION
@click.pass_context
def diff(
    ctx: click.Context,
    paths: tuple[Path, ...],
    against: Optional[str],
    cached: bool,
    json_output: bool,
) -> None:
    """Show changes of the given files."""
    parameters: dict[str, Any] = {}
    if against:
        parameters["against"] = against
    if cached:
        parameters["cached"] = True
    _provider, command = _execute(ctx, CommandType.DIFF, paths, parameters)
    if json_output:
        click.echo(render_command_json(command))
    elif command.succeeded:
        click.echo(command.result_payload or "", nl=False)
    _exit_for(command, json_output)


@sourcectl.command()
@PATHS
@JSON_OPTION
@click.pass_context
def lock(ctx: click.Context, paths: tuple[Path, ...], json_output: bool) -> None:
    """Take LFS locks on files (locking mode only)."""
    provider, command = _execute(ctx, CommandType.LOCK, paths)
    _report_states(provider, command, json_output, f"Locked {len(command.target_paths)} path(s)")


@sourcectl.command()
@PATHS
@click.option("--force", is_flag=True, help="Break locks held by other users")
@JSON_OPTION
@click.pass_context
def unlock(ctx: click.Context, paths: tuple[Path, ...], force: bool, json_output: bool) -> None:
    """Release LFS locks (locking mode only)."""
    parameters = {"force": True} if force else {}
    provider, command = _execute(ctx, CommandType.UNLOCK, paths, parameters)
    _report_states(provider, command, json_output, f"Unlocked {len(command.target_paths)} path(s)")


@sourcectl.command()
@click.argument("source", type=click.Path(path_type=Path))
@click.argument("destination", type=click.Path(path_type=Path))
@JSON_OPTION
@click.pass_context
def mv(ctx: click.Context, source: Path, destination: Path, json_output: bool) -> None:
    """Move or rename a tracked file."""
    provider, command = _execute(ctx, CommandType.MOVE, [source, destination])
    _report_states(provider, command, json_output, f"Moved {source} -> {destination}")


@sourcectl.command()
@PATHS
@JSON_OPTION
@click.pass_context
def resolve(ctx: click.Context, paths: tuple[Path, ...], json_output: bool) -> None:
    """Mark conflicted files as resolved."""
    provider, command = _execute(ctx, CommandType.RESOLVE, paths)
    _report_states(provider, command, json_output, f"Resolved {len(command.target_paths)} path(s)")


@sourcectl.command()
@click.option("--remote-url", help="URL of the origin remote")
@JSON_OPTION
@click.pass_context
def init(ctx: click.Context, remote_url: Optional[str], json_output: bool) -> None:
    """Create a git repository at the repository root."""
    parameters = {"remote_url": remote_url} if remote_url else {}
    provider, command = _execute(ctx, CommandType.INIT, (), parameters)
    if json_output:
        click.echo(render_command_json(command))
    elif command.succeeded:
        echo_success(f"Initialized repository at {provider.settings.repository_root}")
    _exit_for(command, json_output)


def _remote_parameters(remote: Optional[str], branch: Optional[str]) -> dict[str, Any]:
    parameters: dict[str, Any] = {}
    if remote:
        parameters["remote"] = remote
    if branch:
        parameters["branch"] = branch
    return parameters


@sourcectl.command()
@click.argument("remote", required=False)
@click.argument("branch", required=False)
@JSON_OPTION
@click.pass_context
def pull(ctx: click.Context, remote: Optional[str], branch: Optional[str], json_output: bool) -> None:
    """Pull and rebase onto the remote branch."""
    _provider, command = _execute(ctx, CommandType.PULL, (), _remote_parameters(remote, branch))
    if json_output:
        click.echo(render_command_json(command))
    elif command.succeeded:
        echo_success("Pulled")
    _exit_for(command, json_output)


@sourcectl.command()
@click.argument("remote", required=False)
@click.argument("branch", required=False)
@click.option("-u", "--set-upstream", is_flag=True, help="Track the remote branch")
@JSON_OPTION
@click.pass_context
def push(
    ctx: click.Context,
    remote: Optional[str],
    branch: Optional[str],
    set_upstream: bool,
    json_output: bool,
) -> None:
    """Push committed changes."""
    parameters = _remote_parameters(remote, branch)
    if set_upstream:
        parameters["set_upstream"] = True
    _provider, command = _execute(ctx, CommandType.PUSH, (), parameters)
    if json_output:
        click.echo(render_command_json(command))
    elif command.succeeded:
        echo_success("Pushed")
    _exit_for(command, json_output)


@sourcectl.command()
@JSON_OPTION
@click.pass_context
def info(ctx: click.Context, json_output: bool) -> None:
    """Show repository, tool and locking information."""
    provider = _open_provider(ctx)
    context = provider.context
    if context is None:
        echo_error("Provider is not connected")
        sys.exit(EXIT_NOT_READY)
    if json_output:
        click.echo(render_info_json(context, provider.status_text()))
    else:
        click.echo(render_info(context, provider.status_text()))


def main() -> None:
    """Console script entrypoint."""
    sourcectl(prog_name="sourcectl")


if __name__ == "__main__":
    main()
