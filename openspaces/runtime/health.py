"""Connection health monitor.

Periodically runs a trivial command over the workspace session.  Success
resets the consecutive-failure counter; reaching the threshold stops the
timer and asks the user whether to reconnect or disconnect.  The monitor
never retries past the threshold on its own.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger

from openspaces.runtime.errors import OpenSpacesError

if TYPE_CHECKING:
    from openspaces.runtime.directory.base import WorkspaceDirectory
    from openspaces.runtime.ssh_config import SSHConfigFile
    from openspaces.runtime.surface import ConnectionSurface, Prompter

PROBE_COMMAND = ("echo", "ok")
RECONNECT = "Reconnect"
DISCONNECT = "Disconnect"


def is_managed_session(remote_host: str | None, ssh_config: SSHConfigFile) -> bool:
    """Return whether *remote_host* is the alias this tool wrote to the SSH config.

    Monitors only attach to sessions established through the managed block.
    """
    if not remote_host:
        return False
    return ssh_config.managed_host() == remote_host


class ConnectionHealthMonitor:
    """Liveness probe for one connected workspace."""

    def __init__(
        self,
        directory: WorkspaceDirectory,
        workspace_name: str,
        *,
        prompter: Prompter,
        surface: ConnectionSurface,
        interval: float = 30.0,
        failure_threshold: int = 3,
        probe_timeout: float = 10.0,
        on_reconnect: Callable[[], Awaitable[object]] | None = None,
    ) -> None:
        self._directory = directory
        self._workspace_name = workspace_name
        self._prompter = prompter
        self._surface = surface
        self._interval = interval
        self._failure_threshold = failure_threshold
        self._probe_timeout = probe_timeout
        self._on_reconnect = on_reconnect
        self._failures = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._failures = 0
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"openspaces-health-{self._workspace_name}"
        )
        logger.info("Health monitor started for {} (every {:g}s)", self._workspace_name, self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Health monitor stopped for {}", self._workspace_name)

    # -- Probe -----------------------------------------------------------------

    async def check(self) -> bool:
        """Run one probe and update the failure counter."""
        try:
            await self._directory.run_remote_command(
                self._workspace_name, PROBE_COMMAND, timeout=self._probe_timeout
            )
        except OpenSpacesError as exc:
            self._failures += 1
            logger.warning(
                "Health check failed for {} ({}/{}): {}",
                self._workspace_name,
                self._failures,
                self._failure_threshold,
                exc,
            )
            return False

        if self._failures:
            logger.info("Health check recovered for {}", self._workspace_name)
        self._failures = 0
        return True

    async def wait(self) -> None:
        """Return once the monitor has stopped for good (disconnect or dismiss)."""
        if self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def _run(self) -> None:
        while True:
            while self._failures < self._failure_threshold:
                await asyncio.sleep(self._interval)
                await self.check()
            if not await self._connection_lost():
                return
            self._failures = 0

    async def _connection_lost(self) -> bool:
        """Prompt the user; returns True when monitoring should resume."""
        choice = await self._prompter.choose(
            f"Connection to {self._workspace_name} appears to be lost.",
            [RECONNECT, DISCONNECT],
        )
        if choice == RECONNECT:
            logger.info("Reconnecting to {}", self._workspace_name)
            if self._on_reconnect is not None:
                try:
                    await self._on_reconnect()
                except OpenSpacesError as exc:
                    logger.warning("Reconnect to {} failed: {}", self._workspace_name, exc)
            return True
        if choice == DISCONNECT:
            logger.info("Disconnecting from {}", self._workspace_name)
            await self._surface.close()
        else:
            logger.info("Connection-lost prompt dismissed; health monitor stays stopped")
        return False

