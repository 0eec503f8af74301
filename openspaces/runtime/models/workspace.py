"""Workspace data model.

A workspace is a remotely hosted, lifecycle-managed development environment.
Instances are built from each full listing and replaced wholesale on the next
refresh; per-item enrichment (machine profile, idle timeout) produces a new
frozen object via ``model_copy`` instead of mutating the cached one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from openspaces.runtime.models.enums import WorkspaceState


class VersionControlStatus(BaseModel):
    """Git status of the workspace checkout."""

    model_config = ConfigDict(frozen=True)

    ref: str = ""
    ahead: int = 0
    behind: int = 0
    has_uncommitted_changes: bool = False
    has_unpushed_changes: bool = False


class MachineProfile(BaseModel):
    """Hardware profile of the machine backing a workspace."""

    model_config = ConfigDict(frozen=True)

    cpus: int
    memory_bytes: int = 0
    storage_bytes: int = 0
    display_name: str = ""


class IdleInfo(BaseModel):
    """Idle-timeout refinement fetched separately for running workspaces."""

    model_config = ConfigDict(frozen=True)

    idle_timeout_minutes: int
    last_used_at: datetime | None = None


class Workspace(BaseModel):
    """A single remote workspace as seen by the last refresh."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str = ""
    state: WorkspaceState
    repository: str = ""
    owner: str = ""
    branch: str = ""
    machine_name: str = ""
    last_used_at: datetime | None = None
    created_at: datetime | None = None
    vcs_status: VersionControlStatus = Field(default_factory=VersionControlStatus)
    machine: MachineProfile | None = None
    idle_timeout_minutes: int | None = None

    @field_validator("last_used_at", "created_at", mode="before")
    @classmethod
    def _empty_timestamp(cls, value: object) -> object:
        return value or None

    @property
    def label(self) -> str:
        """Human-facing name: display name when set, otherwise the identity."""
        return self.display_name or self.name

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def is_transitional(self) -> bool:
        return self.state.is_transitional

    @property
    def repository_name(self) -> str:
        """Last path segment of ``owner/repo``; empty when there is no repository."""
        return self.repository.rsplit("/", 1)[-1] if self.repository else ""


@dataclass(frozen=True)
class AuthStatus:
    """Outcome of the tool's authentication check."""

    authenticated: bool
    has_required_scope: bool
    error: Exception | None = None


class CreateWorkspaceParams(BaseModel):
    """Input for creating a new workspace."""

    repo: str
    branch: str | None = None
    machine_type: str | None = None
    location: str | None = None
    display_name: str | None = None
    idle_timeout_minutes: int | None = Field(default=None, gt=0)
