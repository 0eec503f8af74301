"""Shared enumerations used across the workspace runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Workspace -----------------------------------------------------------------


class WorkspaceState(StrEnum):
    """Lifecycle state as reported by the remote management tool."""

    AVAILABLE = "Available"
    SHUTDOWN = "Shutdown"
    STARTING = "Starting"
    SHUTTING_DOWN = "ShuttingDown"
    PROVISIONING = "Provisioning"
    REBUILDING = "Rebuilding"
    EXPORTING = "Exporting"
    UPDATING = "Updating"
    AWAITING = "Awaiting"
    UNAVAILABLE = "Unavailable"
    FAILED = "Failed"
    DELETED = "Deleted"
    MOVED = "Moved"
    UNKNOWN = "Unknown"

    @classmethod
    def _missing_(cls, value: object) -> WorkspaceState:
        # The remote side may report states newer than this list.
        return cls.UNKNOWN

    @property
    def is_transitional(self) -> bool:
        return self in TRANSITIONAL_STATES

    @property
    def is_running(self) -> bool:
        return self is WorkspaceState.AVAILABLE


TRANSITIONAL_STATES: frozenset[WorkspaceState] = frozenset({
    WorkspaceState.STARTING,
    WorkspaceState.SHUTTING_DOWN,
    WorkspaceState.PROVISIONING,
    WorkspaceState.REBUILDING,
    WorkspaceState.EXPORTING,
    WorkspaceState.UPDATING,
})
"""States that are in progress toward a stable state and drive fast polling."""


# -- Sync ----------------------------------------------------------------------


class StateFilter(StrEnum):
    """State category filter applied to the cached collection."""

    ALL = "all"
    RUNNING = "running"
    STOPPED = "stopped"


class PollMode(StrEnum):
    """Which refresh timer the sync engine currently has armed."""

    FAST = "fast"
    BACKGROUND = "background"


class Readiness(StrEnum):
    """Precondition state gating all remote operations."""

    READY = "ready"
    NOT_INSTALLED = "not_installed"
    NOT_AUTHENTICATED = "not_authenticated"
    SCOPE_REQUIRED = "scope_required"


class SnapshotStatus(StrEnum):
    """What a presentation layer should render for the current snapshot."""

    LOADING = "loading"
    NOT_INSTALLED = "not_installed"
    AUTH_REQUIRED = "auth_required"
    SCOPE_REQUIRED = "scope_required"
    ERROR = "error"
    EMPTY = "empty"
    NO_FILTER_RESULTS = "no_filter_results"
    READY = "ready"


# -- Errors --------------------------------------------------------------------


class ErrorKind(StrEnum):
    """Closed set of failure kinds callers can branch on."""

    NOT_INSTALLED = "not_installed"
    NOT_AUTHENTICATED = "not_authenticated"
    SCOPE_REQUIRED = "scope_required"
    COMMAND_FAILED = "command_failed"
    PARSE_ERROR = "parse_error"
    NOT_FOUND = "not_found"
    FAILED_STATE = "failed_state"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INVALID_VALUE = "invalid_value"
