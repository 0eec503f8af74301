"""Unit tests for display formatting helpers."""

from __future__ import annotations

from datetime import timedelta

import pytest

from openspaces.runtime.formatting import format_bytes, format_machine_specs, idle_time_remaining, time_ago
from openspaces.runtime.models import MachineProfile


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (512 * 1024**2, "512 MB"), (8 * 1024**3, "8 GB"), (int(1.6 * 1024**3), "2 GB")],
)
def test_format_bytes(size: int, expected: str) -> None:
    assert format_bytes(size) == expected


def test_format_machine_specs() -> None:
    assert format_machine_specs(MachineProfile(cpus=4, memory_bytes=16 * 1024**3)) == "4 cores • 16 GB RAM"
    assert format_machine_specs(MachineProfile(cpus=1)) == "1 core"
    assert format_machine_specs(MachineProfile(cpus=0, display_name="Basic")) == "Basic"


def test_time_ago(now) -> None:
    assert time_ago(now, now=now) == "Just now"
    assert time_ago(now + timedelta(minutes=5), now=now) == "Just now"
    assert time_ago(now - timedelta(minutes=5), now=now) == "5m ago"
    assert time_ago(now - timedelta(hours=3), now=now) == "3h ago"
    assert time_ago(now - timedelta(days=2), now=now) == "2d ago"
    assert time_ago(now - timedelta(days=30), now=now) == "2025-05-02"


def test_idle_time_remaining(now) -> None:
    assert idle_time_remaining(None, 30, now=now) is None
    assert idle_time_remaining(now, None, now=now) is None
    assert idle_time_remaining(now - timedelta(minutes=45), 30, now=now) == ("Auto-stop imminent", True)
    assert idle_time_remaining(now - timedelta(minutes=25), 30, now=now) == ("Auto-stop in 5m", True)
    assert idle_time_remaining(now - timedelta(minutes=10), 30, now=now) == ("Auto-stop in 20m", False)
    assert idle_time_remaining(now, 120, now=now) == ("Auto-stop in 2h", False)
    assert idle_time_remaining(now - timedelta(minutes=5), 240, now=now) == ("Auto-stop in 3h 55m", False)
