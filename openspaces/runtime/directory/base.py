"""Workspace directory interface.

The directory is the only component that talks to the remote management
tool.  Everything above it (sync engine, lifecycle orchestrator, health
monitor) depends on this protocol, so tests and alternative backends can
substitute their own implementation.

Every method may raise an ``OpenSpacesError`` subclass: readiness errors
(``ToolNotInstalledError``, ``NotAuthenticatedError``, ``ScopeRequiredError``),
``CommandFailedError`` or ``ResponseParseError``.  The enrichment methods
``get_idle_info`` and ``get_machine_profile`` are the exception: they return
``None`` on any failure.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from openspaces.runtime.models.workspace import (
    AuthStatus,
    CreateWorkspaceParams,
    IdleInfo,
    MachineProfile,
    Workspace,
)


@runtime_checkable
class WorkspaceDirectory(Protocol):
    """Async protocol for listing and driving remote workspaces."""

    # -- Readiness -------------------------------------------------------------

    async def check_installed(self) -> bool:
        """Return whether the remote tool is available locally."""
        ...

    async def check_auth(self) -> AuthStatus:
        """Return authentication and required-scope status."""
        ...

    # -- Query -----------------------------------------------------------------

    async def list_workspaces(self) -> list[Workspace]:
        """Return every workspace visible to the authenticated user."""
        ...

    async def get_workspace(self, name: str) -> Workspace | None:
        """Return one workspace, or ``None`` if it no longer exists."""
        ...

    async def get_idle_info(self, name: str) -> IdleInfo | None:
        ...

    async def get_machine_profile(self, name: str) -> MachineProfile | None:
        ...

    # -- Lifecycle -------------------------------------------------------------

    async def start(self, name: str) -> None: ...

    async def stop(self, name: str) -> None: ...

    async def rebuild(self, name: str, *, full: bool = False) -> None: ...

    async def delete(self, name: str) -> None: ...

    async def create(self, params: CreateWorkspaceParams) -> str:
        """Create a workspace and return its name."""
        ...

    # -- Connection ------------------------------------------------------------

    async def fetch_connection_params(self, name: str) -> str:
        """Return SSH config text (``Host`` blocks) for connecting to *name*."""
        ...

    async def run_remote_command(self, name: str, argv: Sequence[str], *, timeout: float) -> str:
        """Run *argv* inside the workspace and return its stdout."""
        ...

    async def bootstrap_credentials(self, name: str) -> None:
        """Make the tool generate the local identity key used for SSH."""
        ...
