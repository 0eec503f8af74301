"""Workspace directory implementations."""

from openspaces.runtime.directory.base import WorkspaceDirectory
from openspaces.runtime.directory.gh import GhWorkspaceDirectory

__all__ = ["GhWorkspaceDirectory", "WorkspaceDirectory"]
