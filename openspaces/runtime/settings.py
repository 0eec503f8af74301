"""Runtime configuration loaded from OPENSPACES_* environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OpenSpacesSettings(BaseSettings):
    """Open Spaces runtime settings.

    All fields are read from environment variables with the ``OPENSPACES_``
    prefix.  For example, ``OPENSPACES_POLLING_INTERVAL=2`` maps to
    ``polling_interval``.  Durations are in seconds unless the name says
    otherwise.
    """

    model_config = SettingsConfigDict(
        env_prefix="OPENSPACES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_file: str | None = None
    """Optional rotating log file, in addition to stderr."""

    # -- Remote tool -----------------------------------------------------------
    gh_path: str = "gh"
    command_timeout: float = Field(default=30.0, gt=0)
    """Default timeout for a single tool invocation."""

    # -- Sync engine -----------------------------------------------------------
    polling_interval: float = Field(default=5.0, gt=0)
    """Fast poll cadence while any workspace is in a transitional state."""

    background_refresh_interval: float = Field(default=60.0, gt=0)
    """Slow refresh cadence while the consuming surface is visible."""

    stale_threshold_days: int = Field(default=14, ge=0)

    # -- Lifecycle -------------------------------------------------------------
    wait_timeout: float = Field(default=300.0, gt=0)
    wait_poll_interval: float = Field(default=3.0, ge=0)
    state_change_timeout: float = Field(default=10.0, ge=0)
    state_change_poll_interval: float = Field(default=0.5, ge=0)

    ssh_probe_enabled: bool = True
    ssh_probe_retries: int = Field(default=3, ge=1)
    ssh_probe_delay: float = Field(default=3.0, ge=0)

    # -- Health monitor --------------------------------------------------------
    health_monitor_enabled: bool = True
    """Attach a health monitor to sessions opened by `openspaces connect`."""
    health_check_interval: float = Field(default=30.0, gt=0)
    health_failure_threshold: int = Field(default=3, ge=1)
    health_probe_timeout: float = Field(default=10.0, gt=0)

    # -- SSH -------------------------------------------------------------------
    ssh_config_path: Path = Path("~/.ssh/config")
    remote_workspace_root: str = "/workspaces"
    """Remote folder under which each workspace checks out its repository."""

    # -- Helpers ---------------------------------------------------------------

    def resolved_ssh_config_path(self) -> Path:
        return self.ssh_config_path.expanduser()


def get_settings() -> OpenSpacesSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> OpenSpacesSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return OpenSpacesSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
