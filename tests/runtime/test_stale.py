"""Unit tests for stale workspace detection."""

from __future__ import annotations

from datetime import timedelta

from openspaces.runtime.models import WorkspaceState
from openspaces.runtime.stale import find_stale_workspaces


def test_stopped_and_old_is_stale(make_workspace, now) -> None:
    ws = make_workspace("old", WorkspaceState.SHUTDOWN, last_used_at=now - timedelta(days=30))

    assert find_stale_workspaces([ws], 14, now=now) == [ws]


def test_running_is_never_stale(make_workspace, now) -> None:
    ws = make_workspace("busy", WorkspaceState.AVAILABLE, last_used_at=now - timedelta(days=30))

    assert find_stale_workspaces([ws], 14, now=now) == []


def test_recently_used_is_not_stale(make_workspace, now) -> None:
    ws = make_workspace("fresh", WorkspaceState.SHUTDOWN, last_used_at=now)

    assert find_stale_workspaces([ws], 14, now=now) == []


def test_missing_timestamp_is_not_stale(make_workspace, now) -> None:
    ws = make_workspace("unknown", WorkspaceState.SHUTDOWN, last_used_at=None)

    assert find_stale_workspaces([ws], 14, now=now) == []


def test_naive_timestamp_treated_as_utc(make_workspace, now) -> None:
    naive = (now - timedelta(days=15)).replace(tzinfo=None)
    ws = make_workspace("naive", WorkspaceState.SHUTDOWN, last_used_at=naive)

    assert find_stale_workspaces([ws], 14, now=now) == [ws]


def test_only_stale_members_returned(make_workspace, now) -> None:
    old = make_workspace("old", last_used_at=now - timedelta(days=20))
    failed = make_workspace("failed", WorkspaceState.FAILED, last_used_at=now - timedelta(days=20))
    recent = make_workspace("recent", last_used_at=now - timedelta(days=3))

    assert [ws.name for ws in find_stale_workspaces([old, failed, recent], 14, now=now)] == ["old"]
