"""Shared fixtures for workspace-runtime tests.

No ``gh`` executable or network required: the directory is an in-memory fake
whose per-workspace state scripts drive what successive fetches observe.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from openspaces.runtime.errors import CommandFailedError
from openspaces.runtime.models import (
    AuthStatus,
    CreateWorkspaceParams,
    IdleInfo,
    MachineProfile,
    Workspace,
    WorkspaceState,
)
from openspaces.runtime.settings import OpenSpacesSettings
from openspaces.runtime.ssh_config import SSHConfigFile

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeDirectory:
    """In-memory ``WorkspaceDirectory``.

    ``script(name, *states)`` queues the states successive fetches of *name*
    observe; the last state repeats once the queue is exhausted.
    """

    def __init__(self, workspaces: Sequence[Workspace] = ()) -> None:
        self.workspaces: dict[str, Workspace] = {ws.name: ws for ws in workspaces}
        self.scripts: dict[str, list[WorkspaceState]] = {}
        self.installed = True
        self.auth = AuthStatus(authenticated=True, has_required_scope=True)
        self.list_error: Exception | None = None
        self.idle: dict[str, IdleInfo] = {}
        self.machines: dict[str, MachineProfile] = {}
        self.broken_enrichment: set[str] = set()
        self.connection_params = ""
        self.remote_failures = 0
        self.calls: list[tuple[Any, ...]] = []

    def script(self, name: str, *states: WorkspaceState) -> None:
        self.scripts[name] = list(states)

    def _observe(self, name: str) -> Workspace | None:
        ws = self.workspaces.get(name)
        if ws is None:
            return None
        queue = self.scripts.get(name)
        if queue:
            state = queue.pop(0) if len(queue) > 1 else queue[0]
            ws = ws.model_copy(update={"state": state})
            self.workspaces[name] = ws
        return ws

    def count(self, call: str) -> int:
        return sum(1 for c in self.calls if c[0] == call)

    # -- Readiness -------------------------------------------------------------

    async def check_installed(self) -> bool:
        self.calls.append(("check_installed",))
        return self.installed

    async def check_auth(self) -> AuthStatus:
        self.calls.append(("check_auth",))
        return self.auth

    # -- Query -----------------------------------------------------------------

    async def list_workspaces(self) -> list[Workspace]:
        self.calls.append(("list",))
        if self.list_error is not None:
            raise self.list_error
        return [ws for name in list(self.workspaces) if (ws := self._observe(name)) is not None]

    async def get_workspace(self, name: str) -> Workspace | None:
        self.calls.append(("get", name))
        return self._observe(name)

    async def get_idle_info(self, name: str) -> IdleInfo | None:
        self.calls.append(("idle", name))
        if name in self.broken_enrichment:
            raise CommandFailedError("view failed")
        return self.idle.get(name)

    async def get_machine_profile(self, name: str) -> MachineProfile | None:
        self.calls.append(("machine", name))
        if name in self.broken_enrichment:
            raise CommandFailedError("view failed")
        return self.machines.get(name)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self, name: str) -> None:
        self.calls.append(("start", name))

    async def stop(self, name: str) -> None:
        self.calls.append(("stop", name))

    async def rebuild(self, name: str, *, full: bool = False) -> None:
        self.calls.append(("rebuild", name, full))

    async def delete(self, name: str) -> None:
        self.calls.append(("delete", name))
        self.workspaces.pop(name, None)

    async def create(self, params: CreateWorkspaceParams) -> str:
        self.calls.append(("create", params.repo))
        return "fresh-workspace"

    # -- Connection ------------------------------------------------------------

    async def fetch_connection_params(self, name: str) -> str:
        self.calls.append(("ssh_config", name))
        return self.connection_params

    async def run_remote_command(self, name: str, argv: Sequence[str], *, timeout: float) -> str:
        self.calls.append(("remote", name, tuple(argv)))
        if self.remote_failures > 0:
            self.remote_failures -= 1
            raise CommandFailedError("ssh: connection refused")
        return "ok\n"

    async def bootstrap_credentials(self, name: str) -> None:
        self.calls.append(("bootstrap", name))


class RecordingPrompter:
    """``Prompter`` that answers from fixed values and records every prompt."""

    def __init__(self, *, confirm: bool = True, choice: str | None = None) -> None:
        self.confirm_answer = confirm
        self.choice = choice
        self.confirms: list[tuple[str, str]] = []
        self.choices: list[tuple[str, tuple[str, ...]]] = []
        self.notices: list[str] = []
        self.warnings: list[str] = []

    async def confirm(self, message: str, action: str) -> bool:
        self.confirms.append((message, action))
        return self.confirm_answer

    async def choose(self, message: str, options: Sequence[str]) -> str | None:
        self.choices.append((message, tuple(options)))
        return self.choice

    def notify(self, message: str) -> None:
        self.notices.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def make_workspace(now: datetime) -> Callable[..., Workspace]:
    def _make(name: str, state: WorkspaceState = WorkspaceState.SHUTDOWN, **fields: Any) -> Workspace:
        fields.setdefault("repository", "octo/hello")
        fields.setdefault("last_used_at", now)
        return Workspace(name=name, display_name=fields.pop("display_name", name), state=state, **fields)

    return _make


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def prompter() -> RecordingPrompter:
    return RecordingPrompter()


@pytest.fixture
def surface() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def ssh_config_path(tmp_path: Path) -> Path:
    return tmp_path / "home" / ".ssh" / "config"


@pytest.fixture
def ssh_config(ssh_config_path: Path) -> SSHConfigFile:
    return SSHConfigFile(ssh_config_path)


@pytest.fixture
def settings(ssh_config_path: Path) -> OpenSpacesSettings:
    """Settings with every wait shrunk so tests finish in milliseconds."""
    return OpenSpacesSettings(
        _env_file=None,
        polling_interval=0.01,
        background_refresh_interval=0.05,
        wait_timeout=1.0,
        wait_poll_interval=0,
        state_change_timeout=0.05,
        state_change_poll_interval=0,
        ssh_probe_retries=3,
        ssh_probe_delay=0,
        ssh_config_path=ssh_config_path,
    )
