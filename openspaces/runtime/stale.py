"""Stale workspace detection.

A workspace is stale when it is stopped and has not been used for longer than
the threshold.  Running workspaces are governed by their idle timeout instead
and are never reported, however old their last use.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from openspaces.runtime.models.enums import WorkspaceState
from openspaces.runtime.models.workspace import Workspace


def find_stale_workspaces(
    workspaces: Iterable[Workspace],
    threshold_days: float,
    *,
    now: datetime | None = None,
) -> list[Workspace]:
    """Return stopped workspaces whose last use is older than ``now - threshold_days``."""
    cutoff = (now or datetime.now(UTC)) - timedelta(days=threshold_days)
    return [
        ws
        for ws in workspaces
        if ws.state is WorkspaceState.SHUTDOWN and ws.last_used_at is not None and _aware(ws.last_used_at) < cutoff
    ]


def _aware(value: datetime) -> datetime:
    # The remote tool reports UTC; treat naive timestamps the same way.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
