"""Human-readable rendering of workspace details for terminal output."""

from __future__ import annotations

from datetime import UTC, datetime

from openspaces.runtime.models.workspace import MachineProfile

_GIB = 1024**3
_MIB = 1024**2


def format_bytes(size: int) -> str:
    """Format a byte count as whole GB, or whole MB below one GiB."""
    if size == 0:
        return "0 B"
    if size >= _GIB:
        return f"{round(size / _GIB)} GB"
    return f"{round(size / _MIB)} MB"


def format_machine_specs(machine: MachineProfile) -> str:
    parts: list[str] = []
    if machine.cpus > 0:
        parts.append(f"{machine.cpus} core" if machine.cpus == 1 else f"{machine.cpus} cores")
    if machine.memory_bytes > 0:
        parts.append(f"{format_bytes(machine.memory_bytes)} RAM")
    return " • ".join(parts) or machine.display_name or "Unknown"


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def time_ago(when: datetime, *, now: datetime | None = None) -> str:
    """Return a short relative time such as ``5m ago``.

    Future timestamps (clock skew) read as ``Just now``; anything a week or
    older falls back to the calendar date.
    """
    diff = _now(now) - _as_utc(when)
    minutes = int(diff.total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return _as_utc(when).date().isoformat()


def idle_time_remaining(
    last_used_at: datetime | None,
    idle_timeout_minutes: int | None,
    *,
    now: datetime | None = None,
) -> tuple[str, bool] | None:
    """Return ``(text, is_low)`` describing time until the workspace auto-stops.

    ``is_low`` is true when ten minutes or fewer remain.  Returns ``None``
    when either input is missing.
    """
    if last_used_at is None or not idle_timeout_minutes:
        return None

    elapsed = int((_now(now) - _as_utc(last_used_at)).total_seconds() // 60)
    remaining = idle_timeout_minutes - elapsed
    if remaining <= 0:
        return "Auto-stop imminent", True

    is_low = remaining <= 10
    if remaining < 60:
        return f"Auto-stop in {remaining}m", is_low

    hours, mins = divmod(remaining, 60)
    if mins == 0:
        return f"Auto-stop in {hours}h", is_low
    return f"Auto-stop in {hours}h {mins}m", is_low
