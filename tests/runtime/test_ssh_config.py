"""Unit tests for the SSH configuration merger.

No ssh binary required -- every test works on a file under ``tmp_path``.
"""

from __future__ import annotations

import stat

import pytest

from openspaces.runtime.errors import InvalidValueError, ResponseParseError
from openspaces.runtime.models import SSHConnectionEntry
from openspaces.runtime.ssh_config import (
    MARKER_END,
    MARKER_START,
    SSHConfigFile,
    extract_managed_host,
    format_ssh_config_entry,
    identity_file_exists,
    merge_managed_section,
    parse_ssh_config_output,
    validate_ssh_config_value,
)

GH_OUTPUT = """\
# Generated by gh
Host cs.octo-hello-abc.main
\tUser codespace
\tProxyCommand gh cs ssh -c octo-hello-abc --stdio -- -i /home/me/.ssh/codespaces.auto
\tUserKnownHostsFile=/dev/null
\tStrictHostKeyChecking no
\tLogLevel quiet
\tControlMaster auto
\tIdentityFile /home/me/.ssh/codespaces.auto
\tForwardAgent yes

Host cs.octo-web-def.main
\tUser codespace
\tHostName localhost
"""

USER_CONFIG = """\
Host github.com
  User git
  IdentityFile ~/.ssh/id_ed25519
"""

TRAILING_CONFIG = """\
Host bastion
  HostName 10.0.0.1
"""


@pytest.fixture
def entry() -> SSHConnectionEntry:
    return SSHConnectionEntry(
        host="cs.octo-hello-abc.main",
        host_name="localhost",
        user="codespace",
        proxy_command="gh cs ssh -c octo-hello-abc --stdio",
        identity_file="~/.ssh/codespaces.auto",
        strict_host_key_checking="no",
    )


# ---------------------------------------------------------------------------
# Parse / format
# ---------------------------------------------------------------------------


def test_parse_multiple_blocks_in_order() -> None:
    entries = parse_ssh_config_output(GH_OUTPUT)

    assert [e.host for e in entries] == ["cs.octo-hello-abc.main", "cs.octo-web-def.main"]
    first = entries[0]
    assert first.user == "codespace"
    assert first.proxy_command == "gh cs ssh -c octo-hello-abc --stdio -- -i /home/me/.ssh/codespaces.auto"
    assert first.identity_file == "/home/me/.ssh/codespaces.auto"
    assert first.strict_host_key_checking == "no"
    assert first.log_level == "quiet"
    assert first.control_master == "auto"
    assert entries[1].host_name == "localhost"


def test_parse_ignores_unknown_keys_and_bare_lines() -> None:
    entries = parse_ssh_config_output("Host a\n  ForwardAgent yes\n  Compression\n  User me\n")

    assert entries == [SSHConnectionEntry(host="a", user="me")]


def test_parse_bare_host_discards_following_keys() -> None:
    entries = parse_ssh_config_output("Host a\n  User me\nHost\n  User intruder\n  HostName evil\nHost b\n  User you\n")

    assert entries == [SSHConnectionEntry(host="a", user="me"), SSHConnectionEntry(host="b", user="you")]


def test_parse_without_host_is_empty() -> None:
    assert parse_ssh_config_output("") == []
    assert parse_ssh_config_output("# just a comment\n\n  User orphan\n") == []


def test_format_then_parse_preserves_fields(entry: SSHConnectionEntry) -> None:
    assert parse_ssh_config_output(format_ssh_config_entry(entry)) == [entry]


def test_format_skips_empty_fields() -> None:
    text = format_ssh_config_entry(SSHConnectionEntry(host="plain", user="me"))

    assert text == "Host plain\n  User me"


@pytest.mark.parametrize("value", ["cs-test\nHost evil", "line\rbreak", "tab\there", "bell\x07", "nul\x00", "del\x7f"])
def test_validate_rejects_control_characters(value: str) -> None:
    with pytest.raises(InvalidValueError):
        validate_ssh_config_value("Host", value)


def test_format_rejects_injected_field(entry: SSHConnectionEntry) -> None:
    bad = entry.model_copy(update={"proxy_command": "nc %h %p\nHost *\n  ProxyCommand evil"})

    with pytest.raises(InvalidValueError):
        format_ssh_config_entry(bad)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def test_merge_into_empty_file(entry: SSHConnectionEntry) -> None:
    merged = merge_managed_section("", [entry])

    assert merged.startswith(MARKER_START)
    assert merged.endswith(f"{MARKER_END}\n")
    assert "Host cs.octo-hello-abc.main" in merged


def test_merge_is_idempotent(entry: SSHConnectionEntry) -> None:
    once = merge_managed_section(USER_CONFIG, [entry])
    twice = merge_managed_section(once, [entry])

    assert once == twice


def test_merge_preserves_surrounding_content(entry: SSHConnectionEntry) -> None:
    content = merge_managed_section(USER_CONFIG, [entry]) + "\n" + TRAILING_CONFIG
    other = SSHConnectionEntry(host="cs.octo-web-def.main", user="codespace")

    for replacement in (other, entry, other):
        content = merge_managed_section(content, [replacement])

    before, _, rest = content.partition(MARKER_START)
    _, _, after = rest.partition(MARKER_END)
    assert before == USER_CONFIG + "\n"
    assert after == "\n\n" + TRAILING_CONFIG
    assert content.count("Host cs.") == 1
    assert "cs.octo-web-def.main" in content


def test_merge_empty_entries_removes_block(entry: SSHConnectionEntry) -> None:
    merged = merge_managed_section(USER_CONFIG, [entry])

    cleared = merge_managed_section(merged, [])

    assert MARKER_START not in cleared
    assert cleared == USER_CONFIG


def test_merge_empty_entries_without_block_is_untouched() -> None:
    content = "Host x\n\n\n"

    assert merge_managed_section(content, []) == content


def test_merge_rejects_half_block(entry: SSHConnectionEntry) -> None:
    with pytest.raises(ResponseParseError):
        merge_managed_section(f"{USER_CONFIG}\n{MARKER_START}\nHost stale\n", [entry])


def test_extract_managed_host(entry: SSHConnectionEntry) -> None:
    content = merge_managed_section(USER_CONFIG, [entry])

    assert extract_managed_host(content) == "cs.octo-hello-abc.main"
    assert extract_managed_host(USER_CONFIG) is None


# ---------------------------------------------------------------------------
# File
# ---------------------------------------------------------------------------


def test_set_entry_creates_private_file(ssh_config: SSHConfigFile, entry: SSHConnectionEntry) -> None:
    ssh_config.set_entry(entry)

    assert stat.S_IMODE(ssh_config.path.stat().st_mode) == 0o600
    assert stat.S_IMODE(ssh_config.path.parent.stat().st_mode) == 0o700
    assert ssh_config.managed_host() == entry.host
    assert ssh_config.managed_entries() == [entry]


def test_set_entry_replaces_previous(ssh_config: SSHConfigFile, entry: SSHConnectionEntry) -> None:
    ssh_config.set_entry(entry)
    ssh_config.set_entry(entry.model_copy(update={"host": "cs.other.main"}))

    assert [e.host for e in ssh_config.managed_entries()] == ["cs.other.main"]


def test_invalid_entry_leaves_file_untouched(ssh_config: SSHConfigFile, entry: SSHConnectionEntry) -> None:
    ssh_config.write(USER_CONFIG)
    ssh_config.set_entry(entry)
    before = ssh_config.read()

    with pytest.raises(InvalidValueError):
        ssh_config.set_entry(entry.model_copy(update={"host": "cs-test\nHost evil"}))

    assert ssh_config.read() == before
    assert list(ssh_config.path.parent.iterdir()) == [ssh_config.path]


def test_clear_entries(ssh_config: SSHConfigFile, entry: SSHConnectionEntry) -> None:
    ssh_config.write(USER_CONFIG)
    ssh_config.set_entry(entry)

    ssh_config.clear_entries()

    assert ssh_config.read() == USER_CONFIG
    assert ssh_config.managed_host() is None


def test_read_missing_file(ssh_config: SSHConfigFile) -> None:
    assert ssh_config.read() == ""
    assert ssh_config.managed_entries() == []


def test_identity_file_exists(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "key").write_text("secret")

    assert identity_file_exists("~/key")
    assert not identity_file_exists("~/missing")
