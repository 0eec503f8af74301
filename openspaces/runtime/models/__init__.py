"""Data models for the workspace runtime."""

from openspaces.runtime.models.enums import (
    TRANSITIONAL_STATES,
    ErrorKind,
    PollMode,
    Readiness,
    SnapshotStatus,
    StateFilter,
    WorkspaceState,
)
from openspaces.runtime.models.ssh import SSH_OPTION_FIELDS, SSHConnectionEntry
from openspaces.runtime.models.workspace import (
    AuthStatus,
    CreateWorkspaceParams,
    IdleInfo,
    MachineProfile,
    VersionControlStatus,
    Workspace,
)

__all__ = [
    "SSH_OPTION_FIELDS",
    "TRANSITIONAL_STATES",
    # Workspace
    "AuthStatus",
    "CreateWorkspaceParams",
    # Enums
    "ErrorKind",
    "IdleInfo",
    "MachineProfile",
    "PollMode",
    "Readiness",
    # SSH
    "SSHConnectionEntry",
    "SnapshotStatus",
    "StateFilter",
    "VersionControlStatus",
    "Workspace",
    "WorkspaceState",
]
