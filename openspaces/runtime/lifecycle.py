"""Lifecycle orchestrator -- drives one workspace through start, stop,
rebuild, delete and connect.

Every operation is a sequence of directory calls separated by explicit,
bounded waits on remote state:

- **Poll-wait** (``wait_for_state``): re-fetch until the target state, a
  ``Failed`` observation (``FailedStateError``), the deadline
  (``WaitTimeoutError``) or an external cancel signal (``WaitCancelledError``).
- **State-change nudge** (``wait_for_state_change``): a short poll right after
  issuing a command until the state moves off its original value, followed by
  an ``on_changed`` callback so observers see the transitional state promptly.
  It never raises on timeout.

The orchestrator never writes to the sync engine's cache.  It only asks for
a refresh through ``on_changed``; a failed operation leaves the next refresh
to re-derive the truth.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import TYPE_CHECKING

from anyio import to_thread
from loguru import logger

from openspaces.runtime.errors import (
    CommandFailedError,
    FailedStateError,
    InvalidValueError,
    OpenSpacesError,
    ResponseParseError,
    WaitCancelledError,
    WaitTimeoutError,
    WorkspaceNotFoundError,
)
from openspaces.runtime.models.enums import WorkspaceState
from openspaces.runtime.settings import OpenSpacesSettings
from openspaces.runtime.ssh_config import identity_file_exists, parse_ssh_config_output

if TYPE_CHECKING:
    from openspaces.runtime.directory.base import WorkspaceDirectory
    from openspaces.runtime.models.ssh import SSHConnectionEntry
    from openspaces.runtime.models.workspace import CreateWorkspaceParams, Workspace
    from openspaces.runtime.ssh_config import SSHConfigFile
    from openspaces.runtime.surface import ConnectionSurface, Prompter

PROBE_COMMAND = ("echo", "ready")
PROBE_TIMEOUT = 30.0


class LifecycleOrchestrator:
    """Sequences multi-step workspace operations over a ``WorkspaceDirectory``.

    One instance per process; it holds no workspace state of its own beyond
    the lock that serialises writes to the SSH config file.
    """

    def __init__(
        self,
        directory: WorkspaceDirectory,
        ssh_config: SSHConfigFile,
        *,
        prompter: Prompter,
        surface: ConnectionSurface,
        settings: OpenSpacesSettings | None = None,
        on_changed: Callable[[], object] | None = None,
    ) -> None:
        self._directory = directory
        self._ssh_config = ssh_config
        self._prompter = prompter
        self._surface = surface
        self._settings = settings or OpenSpacesSettings()
        self._on_changed = on_changed
        self._config_lock = asyncio.Lock()

    def _changed(self) -> None:
        if self._on_changed is not None:
            self._on_changed()

    # -- Waits -----------------------------------------------------------------

    async def _sleep(self, delay: float, cancel: asyncio.Event | None) -> None:
        """Sleep for *delay*, raising ``WaitCancelledError`` if *cancel* fires first."""
        if cancel is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except TimeoutError:
            return
        raise WaitCancelledError("Operation cancelled")

    async def wait_for_state(
        self,
        name: str,
        target: WorkspaceState,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Workspace:
        """Poll until *name* reaches *target* and return the fresh workspace.

        Raises ``WorkspaceNotFoundError`` if it disappears, ``FailedStateError``
        on any ``Failed`` observation, ``WaitTimeoutError`` after *timeout* and
        ``WaitCancelledError`` when *cancel* is set.
        """
        timeout = self._settings.wait_timeout if timeout is None else timeout
        poll_interval = self._settings.wait_poll_interval if poll_interval is None else poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while loop.time() < deadline:
            if cancel is not None and cancel.is_set():
                raise WaitCancelledError("Operation cancelled")

            workspace = await self._directory.get_workspace(name)
            if workspace is None:
                msg = f"Workspace {name} not found"
                raise WorkspaceNotFoundError(msg)
            if workspace.state is target:
                return workspace
            if workspace.state is WorkspaceState.FAILED:
                msg = f"Workspace {name} is in a failed state. Please rebuild it."
                raise FailedStateError(msg)

            logger.debug("Waiting for {} to reach {} (currently {})", name, target, workspace.state)
            await self._sleep(poll_interval, cancel)

        msg = f"Timeout waiting for workspace {name} to reach state {target}"
        raise WaitTimeoutError(msg)

    async def wait_for_state_change(
        self,
        name: str,
        original: WorkspaceState,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Workspace | None:
        """Briefly poll until the state differs from *original*.

        Returns the changed workspace, or ``None`` if nothing changed in time.
        Raises ``WaitCancelledError`` as soon as *cancel* is set.
        """
        timeout = self._settings.state_change_timeout if timeout is None else timeout
        poll_interval = self._settings.state_change_poll_interval if poll_interval is None else poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while loop.time() < deadline:
            if cancel is not None and cancel.is_set():
                raise WaitCancelledError("Operation cancelled")
            current = await self._directory.get_workspace(name)
            if current is not None and current.state is not original:
                return current
            await self._sleep(poll_interval, cancel)
        return None

    # -- Ensure available ------------------------------------------------------

    async def ensure_available(self, workspace: Workspace, *, cancel: asyncio.Event | None = None) -> Workspace:
        """Make sure *workspace* is running, starting it if it is shut down.

        Returns the freshly fetched ``Available`` workspace.
        """
        fresh = await self._directory.get_workspace(workspace.name)
        if fresh is None:
            msg = f"Workspace {workspace.label} no longer exists"
            raise WorkspaceNotFoundError(msg)
        if fresh.state is WorkspaceState.FAILED:
            msg = f"Workspace {workspace.label} is in a failed state. Please rebuild it."
            raise FailedStateError(msg)
        if fresh.state is WorkspaceState.AVAILABLE:
            return fresh

        if fresh.state is WorkspaceState.SHUTDOWN:
            logger.info("Starting workspace {}", workspace.name)
            await self._directory.start(workspace.name)
            await self.wait_for_state_change(workspace.name, WorkspaceState.SHUTDOWN, cancel=cancel)
            self._changed()
        else:
            logger.info("Waiting for workspace {} ({})", workspace.name, fresh.state)

        return await self.wait_for_state(workspace.name, WorkspaceState.AVAILABLE, cancel=cancel)

    # -- Connect ---------------------------------------------------------------

    async def wait_for_ssh_ready(
        self,
        name: str,
        *,
        attempts: int | None = None,
        delay: float | None = None,
    ) -> None:
        """Probe the workspace with a trivial command until it answers.

        The remote API can report ``Available`` before the container accepts
        SSH sessions.  Raises ``CommandFailedError`` after the last attempt.
        """
        attempts = self._settings.ssh_probe_retries if attempts is None else attempts
        delay = self._settings.ssh_probe_delay if delay is None else delay

        for attempt in range(1, attempts + 1):
            try:
                await self._directory.run_remote_command(name, PROBE_COMMAND, timeout=PROBE_TIMEOUT)
            except OpenSpacesError as exc:
                logger.warning("SSH readiness probe attempt {}/{} failed: {}", attempt, attempts, exc)
                if attempt < attempts:
                    await asyncio.sleep(delay)
            else:
                return

        msg = f"Workspace SSH connection is not ready after {attempts} attempts"
        raise CommandFailedError(msg)

    async def connect(
        self,
        workspace: Workspace,
        *,
        probe: bool | None = None,
        cancel: asyncio.Event | None = None,
        on_connected: Callable[[SSHConnectionEntry], Awaitable[object]] | None = None,
    ) -> SSHConnectionEntry:
        """Start if needed, write the SSH entry, probe, and hand off the session.

        *on_connected* runs with the persisted entry right before the hand-off;
        the front end uses it to attach a health monitor to the session.
        Returns the entry that was persisted.
        """
        available = await self.ensure_available(workspace, cancel=cancel)

        repo_name = available.repository_name or workspace.repository_name
        if not repo_name:
            msg = f"Workspace {workspace.label} has no associated repository"
            raise InvalidValueError(msg)
        remote_path = f"{self._settings.remote_workspace_root.rstrip('/')}/{repo_name}"

        output = await self._directory.fetch_connection_params(workspace.name)
        entries = parse_ssh_config_output(output)
        if not entries:
            msg = f"No SSH configuration returned for {workspace.label}"
            raise ResponseParseError(msg)
        entry = entries[0]

        if entry.identity_file and not await to_thread.run_sync(identity_file_exists, entry.identity_file):
            logger.info("Identity file {} missing, bootstrapping credentials", entry.identity_file)
            await self._directory.bootstrap_credentials(workspace.name)

        async with self._config_lock:
            await to_thread.run_sync(partial(self._ssh_config.set_entry, entry))

        if self._settings.ssh_probe_enabled if probe is None else probe:
            await self.wait_for_ssh_ready(workspace.name)

        await self._surface.refresh_hosts()
        logger.info("Connecting to {} as {} ({})", workspace.name, entry.host, remote_path)
        if on_connected is not None:
            await on_connected(entry)
        await self._surface.open_remote(entry.host, remote_path)
        return entry

    async def open_terminal(self, workspace: Workspace, *, cancel: asyncio.Event | None = None) -> None:
        await self.ensure_available(workspace, cancel=cancel)
        await self._surface.open_terminal(workspace.name)

    # -- Start / stop ----------------------------------------------------------

    async def start(self, workspace: Workspace, *, cancel: asyncio.Event | None = None) -> bool:
        """Start a stopped workspace and wait until it is available.

        Returns ``False`` (after a notice) when it is not shut down.
        """
        if workspace.state is not WorkspaceState.SHUTDOWN:
            self._prompter.notify(f"Workspace {workspace.label} is already running")
            return False

        await self._directory.start(workspace.name)
        await self.wait_for_state_change(workspace.name, WorkspaceState.SHUTDOWN, cancel=cancel)
        self._changed()
        await self.wait_for_state(workspace.name, WorkspaceState.AVAILABLE, cancel=cancel)

        logger.info("Workspace {} started", workspace.name)
        self._prompter.notify(f"Workspace {workspace.label} started")
        return True

    async def stop(self, workspace: Workspace, *, cancel: asyncio.Event | None = None) -> bool:
        """Stop a running workspace and wait until it is shut down.

        Returns ``False`` (after a notice) when it is not running.
        """
        if workspace.state is not WorkspaceState.AVAILABLE:
            self._prompter.notify(f"Workspace {workspace.label} is not running")
            return False

        await self._directory.stop(workspace.name)
        await self.wait_for_state_change(workspace.name, WorkspaceState.AVAILABLE, cancel=cancel)
        self._changed()
        await self.wait_for_state(workspace.name, WorkspaceState.SHUTDOWN, cancel=cancel)

        logger.info("Workspace {} stopped", workspace.name)
        self._prompter.notify(f"Workspace {workspace.label} stopped")
        return True

    # -- Rebuild / delete / create ---------------------------------------------

    async def rebuild(self, workspace: Workspace, *, full: bool = False) -> bool:
        """Ask for confirmation, then issue the rebuild without waiting for it to finish."""
        if full:
            message = (
                f"Are you sure you want to fully rebuild {workspace.label}? "
                "This will rebuild without cache and may take longer."
            )
        else:
            message = f"Are you sure you want to rebuild {workspace.label}?"
        if not await self._prompter.confirm(message, "Rebuild"):
            return False

        await self._directory.rebuild(workspace.name, full=full)
        await self.wait_for_state_change(workspace.name, workspace.state)
        self._changed()

        logger.info("Workspace {} rebuild initiated (full={})", workspace.name, full)
        self._prompter.notify(
            f"Workspace {workspace.label} rebuild initiated. It will be available once the rebuild completes."
        )
        return True

    async def delete(self, workspace: Workspace) -> bool:
        """Ask for confirmation, then delete irreversibly."""
        confirmed = await self._prompter.confirm(
            f"Are you sure you want to delete {workspace.label}? "
            "This action cannot be undone and any unsaved changes will be lost.",
            "Delete",
        )
        if not confirmed:
            return False

        await self._directory.delete(workspace.name)
        self._changed()

        logger.info("Workspace {} deleted", workspace.name)
        self._prompter.notify(f"Workspace {workspace.label} deleted")
        return True

    async def create(self, params: CreateWorkspaceParams) -> str:
        name = await self._directory.create(params)
        self._changed()

        logger.info("Workspace {} created for {}", name, params.repo)
        self._prompter.notify(f"Workspace created: {name}")
        return name

    async def cleanup_stale(self, stale: Sequence[Workspace]) -> int:
        """Offer to delete every stale workspace; returns how many were deleted.

        Individual failures are logged and skipped so one bad workspace does
        not block the rest.
        """
        if not stale:
            return 0
        message = (
            f"{len(stale)} workspace(s) unused for {self._settings.stale_threshold_days}+ days. "
            "Delete them to save costs?"
        )
        if not await self._prompter.confirm(message, "Delete All"):
            return 0

        deleted = 0
        for workspace in stale:
            try:
                await self._directory.delete(workspace.name)
            except OpenSpacesError as exc:
                logger.warning("Failed to delete stale workspace {}: {}", workspace.name, exc)
                self._prompter.warn(f"Failed to delete {workspace.label}: {exc}")
                continue
            deleted += 1

        self._changed()
        logger.info("Deleted {}/{} stale workspaces", deleted, len(stale))
        return deleted
