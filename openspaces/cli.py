import asyncio
from collections.abc import Coroutine
from datetime import datetime
from typing import Any, TypeVar

import click
from anyio import to_thread
from loguru import logger

from openspaces.runtime.directory import GhWorkspaceDirectory, WorkspaceDirectory
from openspaces.runtime.errors import OpenSpacesError, WorkspaceNotFoundError
from openspaces.runtime.formatting import format_machine_specs, idle_time_remaining, time_ago
from openspaces.runtime.health import ConnectionHealthMonitor, is_managed_session
from openspaces.runtime.lifecycle import LifecycleOrchestrator
from openspaces.runtime.log import setup_logging
from openspaces.runtime.models import (
    CreateWorkspaceParams,
    SSHConnectionEntry,
    SnapshotStatus,
    StateFilter,
    Workspace,
    WorkspaceState,
)
from openspaces.runtime.settings import OpenSpacesSettings, get_settings
from openspaces.runtime.ssh_config import SSHConfigFile, format_ssh_config_entry
from openspaces.runtime.stale import find_stale_workspaces
from openspaces.runtime.surface import ConsolePrompter, TerminalSurface
from openspaces.runtime.sync import SyncEngine, SyncSnapshot

T = TypeVar("T")

_STATE_COLORS = {
    WorkspaceState.AVAILABLE: "green",
    WorkspaceState.FAILED: "red",
    WorkspaceState.UNAVAILABLE: "red",
}

_PROBLEM_STATUSES = {
    SnapshotStatus.NOT_INSTALLED,
    SnapshotStatus.AUTH_REQUIRED,
    SnapshotStatus.SCOPE_REQUIRED,
    SnapshotStatus.ERROR,
}


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def make_directory(settings: OpenSpacesSettings) -> WorkspaceDirectory:
    return GhWorkspaceDirectory(settings.gh_path, default_timeout=settings.command_timeout)


def make_ssh_config(settings: OpenSpacesSettings) -> SSHConfigFile:
    return SSHConfigFile(settings.resolved_ssh_config_path())


def _orchestrator(
    settings: OpenSpacesSettings,
    directory: WorkspaceDirectory,
    *,
    assume_yes: bool = False,
    surface: TerminalSurface | None = None,
) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(
        directory,
        make_ssh_config(settings),
        prompter=ConsolePrompter(assume_yes=assume_yes),
        surface=surface or TerminalSurface(gh_path=settings.gh_path),
        settings=settings,
    )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, turning runtime errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except OpenSpacesError as exc:
        raise click.ClickException(str(exc)) from exc


async def _resolve(directory: WorkspaceDirectory, name: str) -> Workspace:
    workspace = await directory.get_workspace(name)
    if workspace is None:
        msg = f"Workspace {name} not found"
        raise WorkspaceNotFoundError(msg)
    return workspace


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _format_workspace(ws: Workspace, stale_names: frozenset[str] = frozenset(), now: datetime | None = None) -> str:
    parts = [ws.label, click.style(str(ws.state), fg=_STATE_COLORS.get(ws.state, "yellow"))]
    if ws.branch:
        parts.append(ws.branch)
    if ws.machine is not None:
        parts.append(format_machine_specs(ws.machine))
    if ws.last_used_at is not None:
        parts.append(time_ago(ws.last_used_at, now=now))
    if ws.is_running:
        remaining = idle_time_remaining(ws.last_used_at, ws.idle_timeout_minutes, now=now)
        if remaining is not None:
            text, is_low = remaining
            parts.append(click.style(text, fg="red") if is_low else text)
    if ws.name in stale_names:
        parts.append(click.style("stale", fg="magenta"))
    return "  ".join(parts)


def _snapshot_problem(snapshot: SyncSnapshot) -> str | None:
    if snapshot.status not in _PROBLEM_STATUSES:
        return None
    return str(snapshot.error) if snapshot.error is not None else str(snapshot.status)


def _render_snapshot(snapshot: SyncSnapshot) -> None:
    problem = _snapshot_problem(snapshot)
    if problem is not None:
        click.secho(problem, fg="red", err=True)
    elif snapshot.status is SnapshotStatus.LOADING:
        click.echo("Loading workspaces...")
    elif snapshot.status is SnapshotStatus.EMPTY:
        click.echo("No workspaces found.")
    elif snapshot.status is SnapshotStatus.NO_FILTER_RESULTS:
        click.echo("No workspaces match the current filter.")
    elif not snapshot.groups:
        for ws in snapshot.workspaces:
            click.echo(_format_workspace(ws, snapshot.stale_names))
    else:
        for group in snapshot.groups:
            click.secho(group.repository, bold=True)
            for ws in group.workspaces:
                click.echo(f"  {_format_workspace(ws, snapshot.stale_names)}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.option("--log-level", default=None, help="Console log level (default: from OPENSPACES_LOG_LEVEL or INFO).")
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """Open Spaces - manage remote development workspaces from the terminal."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.log_file)
    ctx.obj = settings


_state_option = click.option(
    "--state",
    type=click.Choice([s.value for s in StateFilter]),
    default=StateFilter.ALL.value,
    show_default=True,
    help="Show only running or stopped workspaces.",
)
_filter_option = click.option(
    "--filter", "filter_text", default="", help="Match display name, repository or branch."
)


@main.command("list")
@_filter_option
@_state_option
@click.pass_obj
def list_workspaces(settings: OpenSpacesSettings, filter_text: str, state: str) -> None:
    """List workspaces grouped by repository."""

    async def _list() -> SyncSnapshot:
        engine = SyncEngine(make_directory(settings), settings)
        engine.set_filter_text(filter_text)
        engine.set_filter_state(StateFilter(state))
        try:
            return await engine.start()
        finally:
            await engine.dispose()

    snapshot = _run(_list())
    problem = _snapshot_problem(snapshot)
    if problem is not None:
        raise click.ClickException(problem)
    _render_snapshot(snapshot)


@main.command()
@_filter_option
@_state_option
@click.pass_obj
def watch(settings: OpenSpacesSettings, filter_text: str, state: str) -> None:
    """Keep the workspace list fresh and print every change until interrupted."""

    def _print(snapshot: SyncSnapshot) -> None:
        mode = snapshot.poll_mode or "idle"
        click.secho(f"-- {datetime.now():%H:%M:%S} ({snapshot.total} workspaces, polling: {mode})", dim=True)
        _render_snapshot(snapshot)

    async def _watch() -> None:
        engine = SyncEngine(make_directory(settings), settings)
        engine.set_filter_text(filter_text)
        engine.set_filter_state(StateFilter(state))
        engine.subscribe(_print)
        try:
            await engine.start()
            engine.set_visible(True)
            await asyncio.Event().wait()
        finally:
            await engine.dispose()

    try:
        _run(_watch())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@main.command()
@click.option("--days", type=int, default=None, help="Unused-for threshold (default: OPENSPACES_STALE_THRESHOLD_DAYS).")
@click.option("--cleanup", is_flag=True, default=False, help="Offer to delete every stale workspace.")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def stale(settings: OpenSpacesSettings, days: int | None, cleanup: bool, yes: bool) -> None:
    """Show stopped workspaces that have not been used for a while."""
    if days is not None:
        settings = settings.model_copy(update={"stale_threshold_days": days})

    async def _stale() -> None:
        directory = make_directory(settings)
        found = find_stale_workspaces(await directory.list_workspaces(), settings.stale_threshold_days)
        if not found:
            click.echo(f"No workspaces unused for {settings.stale_threshold_days}+ days.")
            return
        for ws in found:
            click.echo(_format_workspace(ws))
        if cleanup:
            deleted = await _orchestrator(settings, directory, assume_yes=yes).cleanup_stale(found)
            click.echo(f"Deleted {deleted} of {len(found)} stale workspace(s).")

    _run(_stale())


@main.command()
@click.argument("name")
@click.pass_obj
def start(settings: OpenSpacesSettings, name: str) -> None:
    """Start a stopped workspace and wait until it is available."""

    async def _start() -> None:
        directory = make_directory(settings)
        await _orchestrator(settings, directory).start(await _resolve(directory, name))

    _run(_start())


@main.command()
@click.argument("name")
@click.pass_obj
def stop(settings: OpenSpacesSettings, name: str) -> None:
    """Stop a running workspace and wait until it is shut down."""

    async def _stop() -> None:
        directory = make_directory(settings)
        await _orchestrator(settings, directory).stop(await _resolve(directory, name))

    _run(_stop())


@main.command()
@click.argument("name")
@click.option("--full", is_flag=True, default=False, help="Rebuild without cache.")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def rebuild(settings: OpenSpacesSettings, name: str, full: bool, yes: bool) -> None:
    """Rebuild a workspace container."""

    async def _rebuild() -> None:
        directory = make_directory(settings)
        orchestrator = _orchestrator(settings, directory, assume_yes=yes)
        await orchestrator.rebuild(await _resolve(directory, name), full=full)

    _run(_rebuild())


@main.command()
@click.argument("name")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def delete(settings: OpenSpacesSettings, name: str, yes: bool) -> None:
    """Delete a workspace (irreversible)."""

    async def _delete() -> None:
        directory = make_directory(settings)
        await _orchestrator(settings, directory, assume_yes=yes).delete(await _resolve(directory, name))

    _run(_delete())


@main.command()
@click.option("--repo", required=True, help="Repository as owner/name.")
@click.option("--branch", default=None)
@click.option("--machine", "machine_type", default=None, help="Machine type name.")
@click.option("--location", default=None)
@click.option("--display-name", default=None)
@click.option("--idle-timeout", type=click.IntRange(min=1), default=None, help="Idle timeout in minutes.")
@click.pass_obj
def create(
    settings: OpenSpacesSettings,
    repo: str,
    branch: str | None,
    machine_type: str | None,
    location: str | None,
    display_name: str | None,
    idle_timeout: int | None,
) -> None:
    """Create a new workspace."""
    params = CreateWorkspaceParams(
        repo=repo,
        branch=branch,
        machine_type=machine_type,
        location=location,
        display_name=display_name,
        idle_timeout_minutes=idle_timeout,
    )

    async def _create() -> str:
        return await _orchestrator(settings, make_directory(settings)).create(params)

    _run(_create())


@main.command()
@click.argument("name")
@click.option("--no-probe", is_flag=True, default=False, help="Skip the SSH readiness probe.")
@click.option(
    "--monitor/--no-monitor",
    default=None,
    help="Probe the session while it is open (default: from OPENSPACES_HEALTH_MONITOR_ENABLED).",
)
@click.pass_obj
def connect(settings: OpenSpacesSettings, name: str, no_probe: bool, monitor: bool | None) -> None:
    """Start if needed, write the SSH entry and open a remote shell.

    While the shell is open a health monitor probes the workspace; once the
    connection looks lost it offers to reconnect or to end the session.
    """
    watch_health = settings.health_monitor_enabled if monitor is None else monitor

    async def _connect() -> None:
        directory = make_directory(settings)
        surface = TerminalSurface(gh_path=settings.gh_path)
        orchestrator = _orchestrator(settings, directory, surface=surface)
        workspace = await _resolve(directory, name)
        health: ConnectionHealthMonitor | None = None

        async def _reconnect() -> None:
            await orchestrator.ensure_available(workspace)

        async def _attach(entry: SSHConnectionEntry) -> None:
            nonlocal health
            if not watch_health:
                return
            if not await to_thread.run_sync(is_managed_session, entry.host, make_ssh_config(settings)):
                logger.warning("{} is not the managed SSH entry; health monitor not attached", entry.host)
                return
            health = ConnectionHealthMonitor(
                directory,
                workspace.name,
                prompter=ConsolePrompter(),
                surface=surface,
                interval=settings.health_check_interval,
                failure_threshold=settings.health_failure_threshold,
                probe_timeout=settings.health_probe_timeout,
                on_reconnect=_reconnect,
            )
            health.start()

        try:
            await orchestrator.connect(workspace, probe=False if no_probe else None, on_connected=_attach)
        finally:
            if health is not None:
                await health.stop()

    _run(_connect())


@main.command()
@click.argument("name")
@click.pass_obj
def ssh(settings: OpenSpacesSettings, name: str) -> None:
    """Open an interactive terminal in a workspace."""

    async def _ssh() -> None:
        directory = make_directory(settings)
        await _orchestrator(settings, directory).open_terminal(await _resolve(directory, name))

    _run(_ssh())


# ---------------------------------------------------------------------------
# SSH config
# ---------------------------------------------------------------------------


@main.group("ssh-config")
def ssh_config_group() -> None:
    """Inspect or clear the managed SSH config block."""


@ssh_config_group.command("show")
@click.pass_obj
def ssh_config_show(settings: OpenSpacesSettings) -> None:
    """Print the managed entry, if any."""
    ssh_config = make_ssh_config(settings)
    try:
        entries = ssh_config.managed_entries()
    except OpenSpacesError as exc:
        raise click.ClickException(str(exc)) from exc
    if not entries:
        click.echo(f"No managed entries in {ssh_config.path}")
        return
    for entry in entries:
        click.echo(format_ssh_config_entry(entry))


@ssh_config_group.command("clear")
@click.pass_obj
def ssh_config_clear(settings: OpenSpacesSettings) -> None:
    """Remove the managed block from the SSH config."""
    ssh_config = make_ssh_config(settings)
    try:
        ssh_config.clear_entries()
    except OpenSpacesError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Managed entries removed from {ssh_config.path}")


if __name__ == "__main__":
    main()
