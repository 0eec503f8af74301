"""SSH configuration merger.

Owns a single delimited region of the user's SSH config file::

    # >>> Open Spaces
    # This section is managed by Open Spaces
    # Do not edit manually - changes will be overwritten

    Host cs.example-abc123.main
      HostName localhost
      User codespace
      ...

    # <<< Open Spaces

Grammar of the connection-parameter text (and of the block body):

- blank lines and lines starting with ``#`` are skipped;
- ``Host <alias>`` starts a new entry;
- any other ``<Key> <value>`` line sets a field on the current entry when the
  key (case-insensitive) is one of ``SSH_OPTION_FIELDS``, and is ignored
  otherwise.

Everything outside the markers belongs to the user and is preserved byte for
byte, except that blank lines touching the block are normalised.  Every value
is checked for line breaks and control characters when it is formatted; that
check is the only gate between fetched data and the file.

Callers must serialise ``update_managed_section`` calls for a given file; the
merge is a whole-file read-modify-write with no locking.
"""

from __future__ import annotations

import contextlib
import os
import re
import tempfile
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from openspaces.runtime.errors import InvalidValueError, ResponseParseError
from openspaces.runtime.models.ssh import SSH_OPTION_FIELDS, SSHConnectionEntry

MARKER_START = "# >>> Open Spaces"
MARKER_END = "# <<< Open Spaces"

_BLOCK_HEADER = (
    "# This section is managed by Open Spaces",
    "# Do not edit manually - changes will be overwritten",
)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_LINE_RE = re.compile(r"^(\S+)\s+(.+)$")
_HOST_RE = re.compile(r"^\s*Host\s+(\S+)", re.MULTILINE | re.IGNORECASE)

_FIELD_BY_KEY = {key.lower(): field for key, field in SSH_OPTION_FIELDS.items()}


# ---------------------------------------------------------------------------
# Parse
# ---------------------------------------------------------------------------


def parse_ssh_config_output(text: str) -> list[SSHConnectionEntry]:
    """Parse ``Host`` blocks into entries, in document order.

    Returns an empty list when the text holds no ``Host`` line.
    """
    entries: list[SSHConnectionEntry] = []
    current: dict[str, str] | None = None

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _LINE_RE.match(line)
        if not match:
            # A bare ``Host`` opens a block with no alias; drop its keys.
            if line.lower() == "host":
                if current is not None:
                    entries.append(SSHConnectionEntry(**current))
                current = None
            continue

        key, value = match.group(1).lower(), match.group(2).strip()
        if key == "host":
            if current is not None:
                entries.append(SSHConnectionEntry(**current))
            current = {"host": value}
        elif current is not None and key in _FIELD_BY_KEY:
            current[_FIELD_BY_KEY[key]] = value

    if current is not None:
        entries.append(SSHConnectionEntry(**current))
    return entries


# ---------------------------------------------------------------------------
# Format
# ---------------------------------------------------------------------------


def validate_ssh_config_value(key: str, value: str) -> str:
    """Return *value* unchanged, or raise ``InvalidValueError`` on any control character."""
    if _CONTROL_CHARS.search(value):
        msg = f"Invalid SSH config value for {key}: contains control characters"
        raise InvalidValueError(msg)
    return value


def format_ssh_config_entry(entry: SSHConnectionEntry) -> str:
    """Serialise one entry as a ``Host`` block (no trailing newline)."""
    lines = [f"Host {validate_ssh_config_value('Host', entry.host)}"]
    for key, field in SSH_OPTION_FIELDS.items():
        value = getattr(entry, field)
        if value:
            lines.append(f"  {key} {validate_ssh_config_value(key, value)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def _strip_blank_lines(text: str, *, leading: bool = False, trailing: bool = False) -> str:
    lines = text.split("\n")
    while trailing and lines and not lines[-1].strip():
        lines.pop()
    while leading and lines and not lines[0].strip():
        lines.pop(0)
    return "\n".join(lines)


def _split_managed_block(content: str) -> tuple[str, str | None, str]:
    """Return ``(before, block, after)``; *block* is ``None`` when absent."""
    start = content.find(MARKER_START)
    end = content.find(MARKER_END, start if start != -1 else 0)
    if start == -1 and end == -1:
        return content, None, ""
    if start == -1 or end == -1:
        msg = "SSH config holds an unterminated Open Spaces section; fix the markers manually"
        raise ResponseParseError(msg)
    return content[:start], content[start : end + len(MARKER_END)], content[end + len(MARKER_END) :]


def render_managed_section(entries: Sequence[SSHConnectionEntry]) -> str:
    body = "\n\n".join(format_ssh_config_entry(entry) for entry in entries)
    return "\n".join([MARKER_START, *_BLOCK_HEADER, "", body, "", MARKER_END])


def merge_managed_section(content: str, entries: Sequence[SSHConnectionEntry]) -> str:
    """Return *content* with the managed block rebuilt from *entries*.

    The block is dropped entirely when *entries* is empty.  Formatting runs
    before anything is spliced, so an invalid value leaves no partial result.
    """
    section = render_managed_section(entries) if entries else None
    before, block, after = _split_managed_block(content)
    if block is None and section is None:
        return content
    before = _strip_blank_lines(before, trailing=True)
    after = _strip_blank_lines(after, leading=True, trailing=True)

    parts = [part for part in (before, section, after) if part and part.strip()]
    if not parts:
        return ""
    return "\n\n".join(parts) + "\n"


def extract_managed_host(content: str) -> str | None:
    """Return the first ``Host`` alias inside the managed block, if any."""
    start = content.find(MARKER_START)
    end = content.find(MARKER_END, start if start != -1 else 0)
    if start == -1 or end == -1:
        return None
    match = _HOST_RE.search(content, start, end)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# File
# ---------------------------------------------------------------------------


class SSHConfigFile:
    """The user's SSH config file, restricted to owner-only permissions.

    Writes are atomic: data is written to a temporary file in the same
    directory (created ``0600``), then renamed over the target.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _ensure_dir(self) -> None:
        directory = self.path.parent
        if not directory.exists():
            directory.mkdir(mode=0o700, parents=True)

    def read(self) -> str:
        """Return the file contents, or ``""`` if it does not exist yet."""
        self._ensure_dir()
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def write(self, content: str) -> None:
        self._ensure_dir()
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise

    # -- Managed block ---------------------------------------------------------

    def update_managed_section(self, entries: Sequence[SSHConnectionEntry]) -> None:
        current = self.read()
        updated = merge_managed_section(current, entries)
        if updated == current:
            logger.debug("SSH config unchanged: {}", self.path)
            return
        self.write(updated)
        logger.info("SSH config updated: {} ({} managed entries)", self.path, len(entries))

    def set_entry(self, entry: SSHConnectionEntry) -> None:
        """Replace the managed block with exactly this one entry."""
        self.update_managed_section([entry])

    def clear_entries(self) -> None:
        self.update_managed_section([])

    def managed_host(self) -> str | None:
        return extract_managed_host(self.read())

    def managed_entries(self) -> list[SSHConnectionEntry]:
        """Parse the entries currently inside the managed block."""
        _, block, _ = _split_managed_block(self.read())
        return parse_ssh_config_output(block) if block else []


def identity_file_exists(identity_file: str) -> bool:
    """Return whether the identity file exists (``~`` is expanded)."""
    return Path(identity_file).expanduser().exists()
