"""GitHub CLI implementation of the WorkspaceDirectory protocol.

Every call shells out to ``gh`` through ``asyncio.create_subprocess_exec``
with an explicit timeout, so nothing blocks the event loop and nothing waits
forever.  Failures are mapped onto the runtime error taxonomy:

- executable missing               -> ``ToolNotInstalledError``
- non-zero exit / timeout          -> ``CommandFailedError`` (stderr kept)
- undecodable or mis-shaped JSON   -> ``ResponseParseError``

Workspace names are validated before any argv is built so a crafted name can
never smuggle extra arguments into the command line.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger

from openspaces.runtime.errors import (
    CommandFailedError,
    NotAuthenticatedError,
    ResponseParseError,
    ScopeRequiredError,
    ToolNotInstalledError,
)
from openspaces.runtime.models.enums import WorkspaceState
from openspaces.runtime.models.workspace import (
    AuthStatus,
    CreateWorkspaceParams,
    IdleInfo,
    MachineProfile,
    VersionControlStatus,
    Workspace,
)

_NAME_RE = re.compile(r"^[a-zA-Z0-9][-a-zA-Z0-9]*$")

_LIST_FIELDS = "name,displayName,state,repository,owner,gitStatus,lastUsedAt,createdAt,machineName"

REQUIRED_SCOPE = "codespace"

# Per-command timeouts (seconds) for calls that are known to be slow.
LIFECYCLE_TIMEOUT = 60.0
REBUILD_TIMEOUT = 120.0
BOOTSTRAP_TIMEOUT = 120.0
CREATE_TIMEOUT = 300.0


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


def validate_workspace_name(name: str) -> None:
    """Reject names that are empty or not ``[a-zA-Z0-9][-a-zA-Z0-9]*``."""
    if not name or not isinstance(name, str):
        msg = "Invalid workspace name"
        raise CommandFailedError(msg)
    if not _NAME_RE.match(name):
        msg = f"Invalid workspace name format: {name}"
        raise CommandFailedError(msg)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _load_json(stdout: str, what: str) -> Any:
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        msg = f"Failed to parse {what} output: {exc}"
        raise ResponseParseError(msg) from None


def _is_workspace_item(item: object) -> bool:
    return isinstance(item, dict) and isinstance(item.get("name"), str) and isinstance(item.get("state"), str)


def parse_workspace(item: dict[str, Any]) -> Workspace:
    """Map one ``gh codespace list --json`` item onto a ``Workspace``."""
    git = item.get("gitStatus") or {}
    owner = item.get("owner") or ""
    if isinstance(owner, dict):
        owner = owner.get("login") or ""
    vcs = VersionControlStatus(
        ref=git.get("ref") or "",
        ahead=git.get("ahead") or 0,
        behind=git.get("behind") or 0,
        has_uncommitted_changes=bool(git.get("hasUncommittedChanges")),
        has_unpushed_changes=bool(git.get("hasUnpushedChanges")),
    )
    return Workspace(
        name=item["name"],
        display_name=item.get("displayName") or item["name"],
        state=WorkspaceState(item["state"]),
        repository=item.get("repository") or "",
        owner=owner if isinstance(owner, str) else "",
        branch=vcs.ref,
        machine_name=item.get("machineName") or "",
        last_used_at=item.get("lastUsedAt"),
        created_at=item.get("createdAt"),
        vcs_status=vcs,
    )


def parse_workspace_list(stdout: str) -> list[Workspace]:
    data = _load_json(stdout, "workspace list")
    if not isinstance(data, list) or not all(_is_workspace_item(item) for item in data):
        msg = "Invalid workspace list response structure"
        raise ResponseParseError(msg)
    try:
        return [parse_workspace(item) for item in data]
    except (ValueError, TypeError, AttributeError) as exc:
        msg = f"Invalid workspace list response: {exc}"
        raise ResponseParseError(msg) from None


def parse_auth_status(output: str, *, succeeded: bool) -> AuthStatus:
    """Derive authentication and scope status from ``gh auth status`` output.

    *output* is stdout and stderr combined; ``gh`` writes its report to either
    depending on version.  *succeeded* is whether the command exited zero.
    """
    scope_marker = f"'{REQUIRED_SCOPE}'"
    if succeeded:
        if scope_marker in output:
            return AuthStatus(authenticated=True, has_required_scope=True)
        return AuthStatus(
            authenticated=True,
            has_required_scope=False,
            error=ScopeRequiredError(f"{REQUIRED_SCOPE.capitalize()} scope required"),
        )

    if "not logged in" in output:
        return AuthStatus(
            authenticated=False,
            has_required_scope=False,
            error=NotAuthenticatedError("Not authenticated with GitHub CLI", stderr=output),
        )
    # Non-zero exit can still mean "logged in" when another host is broken.
    if "Logged in to" in output:
        return parse_auth_status(output, succeeded=True)
    if REQUIRED_SCOPE in output and "scope" in output:
        return AuthStatus(
            authenticated=True,
            has_required_scope=False,
            error=ScopeRequiredError(f"{REQUIRED_SCOPE.capitalize()} scope required", stderr=output),
        )
    return AuthStatus(
        authenticated=False,
        has_required_scope=False,
        error=NotAuthenticatedError("Authentication check failed", stderr=output),
    )


def parse_idle_info(stdout: str) -> IdleInfo | None:
    data = json.loads(stdout)
    if not isinstance(data, dict) or not isinstance(data.get("idleTimeoutMinutes"), int):
        return None
    return IdleInfo(
        idle_timeout_minutes=data["idleTimeoutMinutes"],
        last_used_at=data.get("lastUsedAt") or None,
    )


def parse_machine_profile(stdout: str) -> MachineProfile | None:
    data = json.loads(stdout)
    machine = data.get("machine") if isinstance(data, dict) else None
    if not isinstance(machine, dict) or not isinstance(machine.get("cpus"), int):
        return None
    return MachineProfile(
        cpus=machine["cpus"],
        memory_bytes=machine.get("memoryInBytes") or 0,
        storage_bytes=machine.get("storageInBytes") or 0,
        display_name=machine.get("displayName") or machine.get("name") or "",
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GhWorkspaceDirectory:
    """Drives GitHub Codespaces through the ``gh`` command-line tool."""

    def __init__(self, gh_path: str = "gh", *, default_timeout: float = 30.0) -> None:
        self._gh = gh_path
        self._default_timeout = default_timeout

    async def _run(self, args: Sequence[str], *, timeout: float | None = None, check: bool = True) -> CommandResult:
        timeout = timeout or self._default_timeout
        argv = [self._gh, *args]
        logger.debug("gh: {}", " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            msg = "GitHub CLI (gh) is not installed"
            raise ToolNotInstalledError(msg) from None
        except OSError as exc:
            msg = f"Could not run '{' '.join(argv)}': {exc}"
            raise CommandFailedError(msg) from exc

        try:
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            msg = f"Command timed out after {timeout:g}s: gh {' '.join(args)}"
            raise CommandFailedError(msg) from None

        result = CommandResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout_b.decode("utf-8", errors="replace"),
            stderr=stderr_b.decode("utf-8", errors="replace"),
        )
        if check and result.returncode != 0:
            details = result.stderr.strip() or result.stdout.strip()
            msg = f"Command failed (exit {result.returncode}): gh {' '.join(args)}"
            if details:
                msg = f"{msg}\n{details}"
            raise CommandFailedError(msg, stderr=result.stderr)
        return result

    # -- Readiness -------------------------------------------------------------

    async def check_installed(self) -> bool:
        try:
            await self._run(["--version"])
        except ToolNotInstalledError:
            return False
        return True

    async def check_auth(self) -> AuthStatus:
        result = await self._run(["auth", "status"], check=False)
        output = f"{result.stdout}\n{result.stderr}"
        return parse_auth_status(output, succeeded=result.returncode == 0)

    # -- Query -----------------------------------------------------------------

    async def list_workspaces(self) -> list[Workspace]:
        result = await self._run(["codespace", "list", "--json", _LIST_FIELDS])
        return parse_workspace_list(result.stdout)

    async def get_workspace(self, name: str) -> Workspace | None:
        validate_workspace_name(name)
        for workspace in await self.list_workspaces():
            if workspace.name == name:
                return workspace
        return None

    async def get_idle_info(self, name: str) -> IdleInfo | None:
        validate_workspace_name(name)
        try:
            result = await self._run(["codespace", "view", "-c", name, "--json", "idleTimeoutMinutes,lastUsedAt"])
            return parse_idle_info(result.stdout)
        except Exception:
            logger.opt(exception=True).debug("Could not fetch idle info for {}", name)
            return None

    async def get_machine_profile(self, name: str) -> MachineProfile | None:
        validate_workspace_name(name)
        try:
            result = await self._run(["codespace", "view", "-c", name, "--json", "machine"])
            return parse_machine_profile(result.stdout)
        except Exception:
            logger.opt(exception=True).debug("Could not fetch machine profile for {}", name)
            return None

    # -- Lifecycle -------------------------------------------------------------

    async def start(self, name: str) -> None:
        validate_workspace_name(name)
        await self._run(["api", "-X", "POST", f"/user/codespaces/{name}/start"], timeout=LIFECYCLE_TIMEOUT)

    async def stop(self, name: str) -> None:
        validate_workspace_name(name)
        await self._run(["api", "-X", "POST", f"/user/codespaces/{name}/stop"], timeout=LIFECYCLE_TIMEOUT)

    async def rebuild(self, name: str, *, full: bool = False) -> None:
        validate_workspace_name(name)
        args = ["codespace", "rebuild", "-c", name]
        if full:
            args.append("--full")
        await self._run(args, timeout=REBUILD_TIMEOUT)

    async def delete(self, name: str) -> None:
        validate_workspace_name(name)
        await self._run(["api", "-X", "DELETE", f"/user/codespaces/{name}"], timeout=LIFECYCLE_TIMEOUT)

    async def create(self, params: CreateWorkspaceParams) -> str:
        args = ["codespace", "create", "--repo", params.repo]
        if params.branch:
            args += ["--branch", params.branch]
        if params.machine_type:
            args += ["--machine", params.machine_type]
        if params.location:
            args += ["--location", params.location]
        if params.display_name:
            args += ["--display-name", params.display_name]
        if params.idle_timeout_minutes:
            args += ["--idle-timeout", f"{params.idle_timeout_minutes}m"]

        result = await self._run(args, timeout=CREATE_TIMEOUT)
        name = result.stdout.strip()
        if not name:
            msg = "No workspace name in create response"
            raise ResponseParseError(msg)
        return name

    # -- Connection ------------------------------------------------------------

    async def fetch_connection_params(self, name: str) -> str:
        validate_workspace_name(name)
        result = await self._run(["codespace", "ssh", "--config", "-c", name], timeout=LIFECYCLE_TIMEOUT)
        return result.stdout

    async def run_remote_command(self, name: str, argv: Sequence[str], *, timeout: float) -> str:
        validate_workspace_name(name)
        result = await self._run(["codespace", "ssh", "-c", name, "--", *argv], timeout=timeout)
        return result.stdout

    async def bootstrap_credentials(self, name: str) -> None:
        # Any ssh invocation makes gh generate its key pair; a non-zero exit
        # here does not mean the key was not written.
        try:
            await self.run_remote_command(name, ["exit"], timeout=BOOTSTRAP_TIMEOUT)
        except CommandFailedError:
            logger.warning("Credential bootstrap for {} returned non-zero (keys may still exist)", name)
