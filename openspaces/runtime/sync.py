"""State synchronization engine -- the authoritative in-memory view of workspaces.

The engine owns the cached collection and decides when to refresh it.  A full
reload:

1. checks readiness (tool installed, authenticated, scope granted); any
   failure empties the collection and short-circuits the fetch;
2. fetches the listing (or, in connected mode, the single workspace);
3. enriches running workspaces with idle info and machine profile, and
   stopped workspaces with the machine profile only, all concurrently; a
   failed per-item fetch leaves that field unset;
4. swaps the new collection in and publishes one snapshot.

Polling uses a single timer slot, so the fast timer (armed while any
workspace is transitional) and the background timer (armed while the
surface is visible) can never both run.  Every explicit load disarms the
slot, reloads, then re-arms based on the new data.

Grouping, sorting and filtering happen at read time in ``snapshot()``.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC
from typing import TYPE_CHECKING, TypeVar

from loguru import logger

from openspaces.runtime.errors import (
    NotAuthenticatedError,
    OpenSpacesError,
    ScopeRequiredError,
    ToolNotInstalledError,
)
from openspaces.runtime.events import ChangeSubject
from openspaces.runtime.models.enums import (
    ErrorKind,
    PollMode,
    Readiness,
    SnapshotStatus,
    StateFilter,
    WorkspaceState,
)
from openspaces.runtime.settings import OpenSpacesSettings
from openspaces.runtime.stale import find_stale_workspaces

if TYPE_CHECKING:
    from openspaces.runtime.directory.base import WorkspaceDirectory
    from openspaces.runtime.models.workspace import Workspace

T = TypeVar("T")

UNKNOWN_REPOSITORY = "Unknown"

_READINESS_BY_KIND = {
    ErrorKind.NOT_INSTALLED: Readiness.NOT_INSTALLED,
    ErrorKind.NOT_AUTHENTICATED: Readiness.NOT_AUTHENTICATED,
    ErrorKind.SCOPE_REQUIRED: Readiness.SCOPE_REQUIRED,
}

_STATUS_BY_READINESS = {
    Readiness.NOT_INSTALLED: SnapshotStatus.NOT_INSTALLED,
    Readiness.NOT_AUTHENTICATED: SnapshotStatus.AUTH_REQUIRED,
    Readiness.SCOPE_REQUIRED: SnapshotStatus.SCOPE_REQUIRED,
}


# ---------------------------------------------------------------------------
# State and snapshot
# ---------------------------------------------------------------------------


@dataclass
class SyncState:
    """Engine-internal state.  Only the engine mutates it."""

    loading: bool = False
    loaded: bool = False
    error: BaseException | None = None
    readiness: Readiness = Readiness.READY
    workspaces: tuple[Workspace, ...] = ()
    filter_text: str = ""
    filter_state: StateFilter = StateFilter.ALL
    connected_name: str | None = None


@dataclass(frozen=True)
class RepositoryGroup:
    repository: str
    workspaces: tuple[Workspace, ...]

    @property
    def has_running(self) -> bool:
        return any(ws.is_running for ws in self.workspaces)


@dataclass(frozen=True)
class SyncSnapshot:
    """Filtered, grouped, sorted read view published after every change."""

    status: SnapshotStatus
    groups: tuple[RepositoryGroup, ...] = ()
    workspaces: tuple[Workspace, ...] = ()
    """Every visible workspace in display order (flattened groups)."""
    total: int = 0
    """Size of the unfiltered collection."""
    loading: bool = False
    error: BaseException | None = None
    stale_names: frozenset[str] = field(default_factory=frozenset)
    poll_mode: PollMode | None = None
    connected_name: str | None = None


# ---------------------------------------------------------------------------
# Read-time helpers
# ---------------------------------------------------------------------------


def readiness_for_error(error: BaseException) -> Readiness:
    """Map a readiness error kind to its ``Readiness``; anything else is ``READY``."""
    return _READINESS_BY_KIND.get(getattr(error, "kind", None), Readiness.READY)


def matches_filter(workspace: Workspace, text: str, state: StateFilter) -> bool:
    """Free text matches display name, repository or branch, case-insensitively."""
    if state is StateFilter.RUNNING and workspace.state is not WorkspaceState.AVAILABLE:
        return False
    if state is StateFilter.STOPPED and workspace.state is not WorkspaceState.SHUTDOWN:
        return False
    if not text:
        return True
    needle = text.casefold()
    haystack = (workspace.label, workspace.repository, workspace.branch)
    return any(needle in value.casefold() for value in haystack if value)


def _last_used_timestamp(workspace: Workspace) -> float:
    value = workspace.last_used_at
    if value is None:
        return float("-inf")
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


def sort_workspaces(workspaces: Iterable[Workspace]) -> list[Workspace]:
    """Running first, then most recently used first."""
    return sorted(workspaces, key=lambda ws: (not ws.is_running, -_last_used_timestamp(ws)))


def group_workspaces(workspaces: Iterable[Workspace]) -> tuple[RepositoryGroup, ...]:
    """Group by repository.

    Groups with a running member come first, then alphabetical by repository.
    Workspaces without a repository land in the ``Unknown`` group.
    """
    buckets: dict[str, list[Workspace]] = {}
    for ws in workspaces:
        buckets.setdefault(ws.repository or UNKNOWN_REPOSITORY, []).append(ws)

    groups = [RepositoryGroup(repo, tuple(sort_workspaces(items))) for repo, items in buckets.items()]
    groups.sort(key=lambda g: (not g.has_running, g.repository.casefold()))
    return tuple(groups)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SyncEngine:
    """Owns the cached workspace collection and its refresh timers.

    Construct one per process and pass it to consumers.  ``start()`` performs
    the initial load; ``dispose()`` cancels every task and drops subscribers.
    """

    def __init__(
        self,
        directory: WorkspaceDirectory,
        settings: OpenSpacesSettings | None = None,
    ) -> None:
        self._directory = directory
        self._settings = settings or OpenSpacesSettings()
        self._state = SyncState()
        self._subject: ChangeSubject[SyncSnapshot] = ChangeSubject()
        self._lock = asyncio.Lock()
        self._visible = False
        self._disposed = False
        self._timer: asyncio.Task[None] | None = None
        self._timer_mode: PollMode | None = None
        self._load_task: asyncio.Task[SyncSnapshot] | None = None

    # -- Lifecycle -------------------------------------------------------------

    def subscribe(self, observer: Callable[[SyncSnapshot], None]) -> Callable[[], None]:
        """Register a snapshot observer; returns its unsubscribe callable."""
        return self._subject.subscribe(observer)

    async def start(self) -> SyncSnapshot:
        return await self.load()

    async def dispose(self) -> None:
        self._disposed = True
        self._disarm()
        task, self._load_task = self._load_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._subject.clear()
        logger.debug("Sync: disposed")

    # -- Refresh ---------------------------------------------------------------

    async def load(self) -> SyncSnapshot:
        """Disarm polling, reload, then re-arm from the fresh data."""
        self._disarm()
        async with self._lock:
            await self._reload()
        return self._settle()

    def refresh(self) -> asyncio.Task[SyncSnapshot]:
        """Schedule an immediate full reload, superseding one still in flight."""
        if self._load_task is not None and not self._load_task.done():
            logger.debug("Sync: superseding in-flight refresh")
            self._load_task.cancel()
        self._load_task = asyncio.get_running_loop().create_task(self.load(), name="openspaces-sync-load")
        return self._load_task

    def set_visible(self, visible: bool) -> None:
        """Foreground the consuming surface (refresh + background timer) or hide it.

        Hiding disarms only the background timer; fast polling carries on
        until transitional workspaces settle.
        """
        if visible == self._visible:
            return
        self._visible = visible
        if visible:
            self.refresh()
        elif self._timer_mode is PollMode.BACKGROUND:
            self._disarm()

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def poll_mode(self) -> PollMode | None:
        """The armed timer's mode, or ``None`` when no timer is armed."""
        return self._timer_mode if self._timer is not None and not self._timer.done() else None

    # -- Filters ---------------------------------------------------------------

    def set_filter_text(self, text: str) -> None:
        self._state.filter_text = text.strip()
        self._publish()

    def set_filter_state(self, state: StateFilter) -> None:
        self._state.filter_state = state
        self._publish()

    def clear_filters(self) -> None:
        self._state.filter_text = ""
        self._state.filter_state = StateFilter.ALL
        self._publish()

    # -- Connected mode --------------------------------------------------------

    def set_connected_workspace(self, name: str | None) -> None:
        """Restrict fetching to one workspace (or lift the restriction).

        Takes effect on the next reload; callers usually follow with ``refresh()``.
        """
        self._state.connected_name = name

    def connected_workspace(self) -> Workspace | None:
        name = self._state.connected_name
        return self.get_workspace(name) if name else None

    # -- Query -----------------------------------------------------------------

    def get_workspace(self, name: str) -> Workspace | None:
        for ws in self._state.workspaces:
            if ws.name == name:
                return ws
        return None

    def all_workspaces(self) -> list[Workspace]:
        return list(self._state.workspaces)

    def snapshot(self) -> SyncSnapshot:
        """Return the current filtered and grouped view (no fetch)."""
        state = self._state
        common = {
            "total": len(state.workspaces),
            "loading": state.loading,
            "error": state.error,
            "poll_mode": self.poll_mode,
            "connected_name": state.connected_name,
        }
        if not state.loaded:
            return SyncSnapshot(status=SnapshotStatus.LOADING, **common)
        if state.readiness is not Readiness.READY:
            return SyncSnapshot(status=_STATUS_BY_READINESS[state.readiness], **common)
        if state.error is not None:
            return SyncSnapshot(status=SnapshotStatus.ERROR, **common)
        if not state.workspaces:
            return SyncSnapshot(status=SnapshotStatus.EMPTY, **common)

        stale = frozenset(
            ws.name for ws in find_stale_workspaces(state.workspaces, self._settings.stale_threshold_days)
        )
        if state.connected_name is not None:
            return SyncSnapshot(
                status=SnapshotStatus.READY,
                workspaces=state.workspaces,
                stale_names=stale,
                **common,
            )

        visible = [ws for ws in state.workspaces if matches_filter(ws, state.filter_text, state.filter_state)]
        if not visible:
            return SyncSnapshot(status=SnapshotStatus.NO_FILTER_RESULTS, stale_names=stale, **common)

        groups = group_workspaces(visible)
        return SyncSnapshot(
            status=SnapshotStatus.READY,
            groups=groups,
            workspaces=tuple(ws for group in groups for ws in group.workspaces),
            stale_names=stale,
            **common,
        )

    # -- Reload ----------------------------------------------------------------

    async def _check_readiness(self) -> OpenSpacesError | None:
        if not await self._directory.check_installed():
            return ToolNotInstalledError("GitHub CLI (gh) is not installed")
        auth = await self._directory.check_auth()
        if not auth.authenticated:
            return NotAuthenticatedError("GitHub CLI is not authenticated. Run: gh auth login")
        if not auth.has_required_scope:
            return ScopeRequiredError(
                "GitHub CLI is missing the 'codespace' scope. Run: gh auth refresh -h github.com -s codespace"
            )
        return None

    async def _fetch(self) -> list[Workspace]:
        name = self._state.connected_name
        if name is None:
            return await self._directory.list_workspaces()
        workspace = await self._directory.get_workspace(name)
        return [workspace] if workspace is not None else []

    async def _reload(self) -> None:
        """Fetch everything, then swap the new state in with no suspension point."""
        state = self._state
        state.loading = True
        error: Exception | None = None
        workspaces: Sequence[Workspace] = ()

        try:
            error = await self._check_readiness()
            if error is not None:
                logger.warning("Sync: not ready ({}): {}", error.kind, error)
            else:
                listing = await self._fetch()
                workspaces = await asyncio.gather(*(self._enrich(ws) for ws in listing))
        except OpenSpacesError as exc:
            logger.warning("Sync: refresh failed ({}): {}", exc.kind, exc)
            error = exc
        except Exception as exc:
            logger.opt(exception=True).error("Sync: unexpected refresh failure")
            error = exc
        finally:
            state.loading = False

        if error is not None:
            workspaces = ()

        state.workspaces = tuple(workspaces)
        state.error = error
        state.readiness = readiness_for_error(error) if error is not None else Readiness.READY
        state.loaded = True
        logger.debug("Sync: loaded {} workspaces", len(state.workspaces))

    async def _enrich(self, workspace: Workspace) -> Workspace:
        if workspace.state is WorkspaceState.AVAILABLE:
            idle, machine = await asyncio.gather(
                self._optional(self._directory.get_idle_info(workspace.name), workspace.name),
                self._optional(self._directory.get_machine_profile(workspace.name), workspace.name),
            )
        elif workspace.state is WorkspaceState.SHUTDOWN:
            idle = None
            machine = await self._optional(self._directory.get_machine_profile(workspace.name), workspace.name)
        else:
            return workspace

        update: dict[str, object] = {}
        if machine is not None:
            update["machine"] = machine
        if idle is not None:
            update["idle_timeout_minutes"] = idle.idle_timeout_minutes
            # The refinement fetch is fresher than the listing.
            if idle.last_used_at is not None:
                update["last_used_at"] = idle.last_used_at
        return workspace.model_copy(update=update) if update else workspace

    async def _optional(self, call: Awaitable[T], name: str) -> T | None:
        try:
            return await call
        except Exception:
            logger.opt(exception=True).debug("Sync: enrichment failed for {}", name)
            return None

    # -- Timers ----------------------------------------------------------------

    def _desired_mode(self) -> PollMode | None:
        if self._disposed:
            return None
        if any(ws.is_transitional for ws in self._state.workspaces):
            return PollMode.FAST
        if self._visible:
            return PollMode.BACKGROUND
        return None

    def _arm(self) -> None:
        mode = self._desired_mode()
        if self._timer is not None and not self._timer.done() and mode is self._timer_mode:
            return
        self._disarm()
        if mode is None:
            return
        self._timer_mode = mode
        self._timer = asyncio.get_running_loop().create_task(self._poll(mode), name=f"openspaces-sync-{mode}")
        logger.debug("Sync: armed {} polling", mode)

    def _disarm(self) -> None:
        timer, self._timer = self._timer, None
        self._timer_mode = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _poll(self, mode: PollMode) -> None:
        if mode is PollMode.FAST:
            interval = self._settings.polling_interval
        else:
            interval = self._settings.background_refresh_interval

        while True:
            await asyncio.sleep(interval)
            logger.debug("Sync: {} poll tick", mode)
            async with self._lock:
                await self._reload()
            if self._desired_mode() is not mode:
                break
            self._publish()

        # Mode changed: hand the slot over to whatever the new data calls for.
        self._timer = None
        self._timer_mode = None
        self._settle()

    def _settle(self) -> SyncSnapshot:
        self._arm()
        return self._publish()

    def _publish(self) -> SyncSnapshot:
        snapshot = self.snapshot()
        self._subject.publish(snapshot)
        return snapshot
