"""SSH connection entry model.

One entry corresponds to one ``Host`` block.  Values are stored exactly as
parsed; the line-break / control-character check happens when an entry is
formatted for persistence (see ``openspaces.runtime.ssh_config``), which is
the single injection-safety choke point.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SSHConnectionEntry(BaseModel):
    """A ``Host`` block with the fields this system understands."""

    model_config = ConfigDict(frozen=True)

    host: str
    host_name: str = ""
    user: str = ""
    proxy_command: str | None = None
    identity_file: str | None = None

    # -- Hardening -------------------------------------------------------------
    strict_host_key_checking: str | None = None
    user_known_hosts_file: str | None = None
    log_level: str | None = None

    # -- Multiplexing ----------------------------------------------------------
    control_master: str | None = None
    control_path: str | None = None
    control_persist: str | None = None


SSH_OPTION_FIELDS: dict[str, str] = {
    "HostName": "host_name",
    "User": "user",
    "ProxyCommand": "proxy_command",
    "IdentityFile": "identity_file",
    "StrictHostKeyChecking": "strict_host_key_checking",
    "UserKnownHostsFile": "user_known_hosts_file",
    "LogLevel": "log_level",
    "ControlMaster": "control_master",
    "ControlPath": "control_path",
    "ControlPersist": "control_persist",
}
"""SSH option keyword -> entry field, in the order options are written."""
