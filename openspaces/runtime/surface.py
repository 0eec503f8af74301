"""Presentation-side collaborators used by the orchestrator and health monitor.

``Prompter`` covers user interaction (confirmations, choices, notices);
``ConnectionSurface`` covers handing an interactive session to whatever
actually speaks SSH and tearing it down again.  The runtime only depends on
these protocols.  The console implementations below back the ``openspaces``
command-line front end.
"""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Sequence
from functools import partial
from typing import Protocol, runtime_checkable

import click
from anyio import to_thread
from loguru import logger

# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Prompter(Protocol):
    async def confirm(self, message: str, action: str) -> bool:
        """Ask a yes/no question; *action* labels the affirmative answer."""
        ...

    async def choose(self, message: str, options: Sequence[str]) -> str | None:
        """Offer *options*; return the chosen one or ``None`` if dismissed."""
        ...

    def notify(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...


@runtime_checkable
class ConnectionSurface(Protocol):
    async def refresh_hosts(self) -> None:
        """Tell the surface the SSH config changed."""
        ...

    async def open_remote(self, host: str, remote_path: str) -> None:
        """Open *remote_path* on *host* (an alias from the SSH config)."""
        ...

    async def open_terminal(self, workspace_name: str) -> None:
        ...

    async def close(self) -> None:
        """Tear down the active remote session, if any."""
        ...


# ---------------------------------------------------------------------------
# Console implementations
# ---------------------------------------------------------------------------


class ConsolePrompter:
    """Prompts on the controlling terminal via click.

    ``assume_yes`` answers every confirmation affirmatively (``--yes``).
    Blocking prompts run in a worker thread so the event loop keeps ticking.
    """

    def __init__(self, *, assume_yes: bool = False) -> None:
        self._assume_yes = assume_yes

    async def confirm(self, message: str, action: str) -> bool:
        if self._assume_yes:
            return True
        return await to_thread.run_sync(partial(click.confirm, f"{message} [{action}]", default=False))

    async def choose(self, message: str, options: Sequence[str]) -> str | None:
        if not options:
            return None
        choice = click.Choice([*options, "dismiss"], case_sensitive=False)
        answer = await to_thread.run_sync(partial(click.prompt, message, type=choice, default="dismiss"))
        for option in options:
            if option.lower() == str(answer).lower():
                return option
        return None

    def notify(self, message: str) -> None:
        click.echo(message)

    def warn(self, message: str) -> None:
        click.secho(message, fg="yellow", err=True)


class TerminalSurface:
    """Hands sessions to the local ``ssh`` / ``gh`` clients as child processes."""

    def __init__(self, *, ssh_path: str = "ssh", gh_path: str = "gh") -> None:
        self._ssh = ssh_path
        self._gh = gh_path
        self._process: asyncio.subprocess.Process | None = None

    async def refresh_hosts(self) -> None:
        # ssh re-reads its config on every invocation.
        return None

    async def open_remote(self, host: str, remote_path: str) -> None:
        remote = f"cd {shlex.quote(remote_path)} && exec \"$SHELL\" -l"
        await self._run_interactive([self._ssh, "-t", host, remote])

    async def open_terminal(self, workspace_name: str) -> None:
        await self._run_interactive([self._gh, "codespace", "ssh", "-c", workspace_name])

    async def close(self) -> None:
        proc = self._process
        if proc is not None and proc.returncode is None:
            logger.info("Closing remote session (pid={})", proc.pid)
            proc.terminate()
            await proc.wait()
        self._process = None

    async def _run_interactive(self, argv: list[str]) -> None:
        logger.debug("Handing off session: {}", shlex.join(argv))
        self._process = await asyncio.create_subprocess_exec(*argv)
        try:
            returncode = await self._process.wait()
        finally:
            self._process = None
        if returncode not in (0, 130):
            logger.warning("Remote session exited with code {}", returncode)
