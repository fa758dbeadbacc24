"""
Tests for share enumeration: output parsing and the three-attempt strategy.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from fakes import failed, ok, timed_out
from share_dumper.core.exceptions import AuthenticationFailed, EnumerationFailure, LaunchFailure
from share_dumper.models import Credential
from share_dumper.services.smb import share_connector
from share_dumper.services.smb.share_connector import (
    EXPECT_SCRIPT_TEMPLATE,
    ShareConnector,
    parse_shares_output,
)

SMBUTIL_VIEW = """\
Share                                           Type    Comments
-------------------------------
Media                                           Disk
IPC$                                            Pipe    IPC Service (NAS)
Archive                                         DISK    Old productions
admin$                                          Disk
Printer                                         Printer
5 shares listed
"""

HOST = "192.168.1.20"


def _credential(username="CORP\\alice", password="s3cret"):
    return Credential(username=username, password=SecretStr(password))


@pytest.fixture
def connector(settings, scripted_runner):
    return ShareConnector(settings, scripted_runner)


class TestParseSharesOutput:
    def test_keeps_disk_shares_without_dollar(self):
        shares = parse_shares_output(SMBUTIL_VIEW, HOST, "/Volumes")

        assert [share.name for share in shares] == ["Media", "Archive"]
        assert all(share.host == HOST for share in shares)
        assert shares[0].mount_path == Path("/Volumes/Media")
        assert shares[1].type == "DISK"

    @pytest.mark.parametrize("output", ["", "\n\n", "Media", "no shares here\n"])
    def test_nothing_to_parse(self, output):
        assert parse_shares_output(output, HOST) == []


class TestEnumerationStrategy:
    @pytest.mark.asyncio
    async def test_first_attempt_uses_username_without_domain(self, connector, scripted_runner, settings):
        scripted_runner.on(settings.smbutil_path, "view", ok(SMBUTIL_VIEW))

        shares = await connector.enumerate_shares(HOST, _credential())

        assert [share.name for share in shares] == ["Media", "Archive"]
        call = scripted_runner.calls[0]
        assert call["args"] == ["view", f"//alice@{HOST}"]
        assert call["stdin"] == b"s3cret\n"
        assert call["env"]["TERM"] == "dumb"
        assert call["timeout"] == settings.enumeration_timeout_seconds
        assert len(scripted_runner.calls) == 1

    @pytest.mark.asyncio
    async def test_falls_back_through_expect_original_username_and_guest(
        self, connector, scripted_runner, settings
    ):
        scripted_runner.on(
            settings.smbutil_path,
            "view",
            failed(stderr="smbutil: server rejected the connection: Authentication error"),
            failed(stderr="smbutil: server rejected the connection: Authentication error"),
            ok(SMBUTIL_VIEW),
        )
        scripted_runner.on(settings.expect_path, None, failed(stderr="spawn failed"))

        shares = await connector.enumerate_shares(HOST, _credential())

        assert [share.name for share in shares] == ["Media", "Archive"]
        commands = scripted_runner.commands()
        assert commands[0] == [settings.smbutil_path, "view", f"//alice@{HOST}"]
        assert commands[1][0] == settings.expect_path
        assert commands[2] == [settings.smbutil_path, "view", f"//CORP\\alice@{HOST}"]
        assert commands[3][0] == settings.expect_path
        assert commands[4] == [settings.smbutil_path, "view", "-G", f"//{HOST}"]

        expect_call = scripted_runner.calls[1]
        assert expect_call["env"] == {
            "SMBUTIL": settings.smbutil_path,
            "SMB_HOST": HOST,
            "SMB_USER": "alice",
            "SMB_PASSWORD": "s3cret",
        }
        assert scripted_runner.calls[3]["env"]["SMB_USER"] == "CORP\\alice"
        # Guest access sends no password
        assert scripted_runner.calls[4]["stdin"] is None

    @pytest.mark.asyncio
    async def test_expect_script_is_removed_after_use(self, connector, scripted_runner, settings):
        scripted_runner.on(settings.smbutil_path, "view", failed(), ok(SMBUTIL_VIEW))
        scripted_runner.on(settings.expect_path, None, ok(SMBUTIL_VIEW))

        shares = await connector.enumerate_shares(HOST, _credential())

        assert len(shares) == 2
        script_path = Path(scripted_runner.calls[1]["args"][0])
        assert script_path.name.startswith("smbutil_expect_")
        assert script_path.suffix == ".exp"
        assert not script_path.exists()
        # Secrets are never written into the script
        assert "s3cret" not in " ".join(scripted_runner.calls[1]["args"])

    @pytest.mark.asyncio
    async def test_second_attempt_skipped_for_plain_username(self, connector, scripted_runner, settings):
        scripted_runner.on(settings.smbutil_path, "view", failed(), ok(SMBUTIL_VIEW))
        scripted_runner.on(settings.expect_path, None, failed())

        await connector.enumerate_shares(HOST, _credential(username="alice"))

        commands = scripted_runner.commands()
        assert len(commands) == 3
        assert commands[2] == [settings.smbutil_path, "view", "-G", f"//{HOST}"]

    @pytest.mark.asyncio
    async def test_all_attempts_fail_with_last_error(self, connector, scripted_runner, settings):
        scripted_runner.on(
            settings.smbutil_path,
            "view",
            failed(),
            failed(),
            failed(stderr="smbutil: server connection failed: Host is down"),
        )
        scripted_runner.on(settings.expect_path, None, failed())

        with pytest.raises(EnumerationFailure) as exc_info:
            await connector.enumerate_shares(HOST, _credential())

        assert exc_info.value.detail == "smbutil: server connection failed: Host is down"
        assert len(scripted_runner.calls) == 5

    @pytest.mark.asyncio
    async def test_timeout_is_reported(self, connector, scripted_runner, settings):
        settings.enumeration_max_attempts = 1
        scripted_runner.on(settings.smbutil_path, "view", timed_out())
        scripted_runner.on(settings.expect_path, None, timed_out())

        with pytest.raises(EnumerationFailure) as exc_info:
            await connector.enumerate_shares(HOST, _credential())

        assert "timed out after 30 seconds" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_binaries_become_enumeration_failure(self, connector, scripted_runner, settings):
        scripted_runner.on(settings.smbutil_path, None, LaunchFailure(settings.smbutil_path, "not found"))
        scripted_runner.on(settings.expect_path, None, LaunchFailure(settings.expect_path, "not found"))

        with pytest.raises(EnumerationFailure):
            await connector.enumerate_shares(HOST, _credential())

    @pytest.mark.asyncio
    async def test_exit_code_used_when_no_output(self, connector, scripted_runner, settings):
        settings.enumeration_max_attempts = 1
        scripted_runner.on(settings.smbutil_path, "view", failed(exit_code=68, stderr=""))
        scripted_runner.on(settings.expect_path, None, failed(exit_code=68, stderr=""))

        with pytest.raises(EnumerationFailure) as exc_info:
            await connector.enumerate_shares(HOST, _credential())

        assert exc_info.value.detail == "exit code 68"

    @pytest.mark.asyncio
    async def test_rejected_login_is_an_authentication_failure(self, connector, scripted_runner, settings):
        rejected = failed(stderr="smbutil: server rejected the connection: Authentication error")
        scripted_runner.on(settings.smbutil_path, "view", rejected)
        scripted_runner.on(settings.expect_path, None, rejected)

        with pytest.raises(AuthenticationFailed) as exc_info:
            await connector.enumerate_shares(HOST, _credential(username="alice"))

        assert isinstance(exc_info.value, EnumerationFailure)
        assert str(exc_info.value) == "Authentication failed. Please check your username and password."
        assert "Authentication error" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_host_never_reaches_the_expect_script(self, connector, scripted_runner, settings, monkeypatch):
        hostile_host = 'srv[exec touch /tmp/owned]"'
        monkeypatch.setattr(share_connector.aiofiles.os, "remove", AsyncMock())
        settings.enumeration_max_attempts = 1
        scripted_runner.on(settings.smbutil_path, "view", failed())
        scripted_runner.on(settings.expect_path, None, ok(SMBUTIL_VIEW))

        await connector.enumerate_shares(hostile_host, _credential(username="alice"))

        expect_call = scripted_runner.calls[1]
        script_path = Path(expect_call["args"][0])
        try:
            script = script_path.read_text()
        finally:
            script_path.unlink()
        assert "[exec" not in script
        assert hostile_host not in script
        assert expect_call["env"]["SMB_HOST"] == hostile_host



def test_expect_template_reads_everything_but_timeout_from_environment():
    script = EXPECT_SCRIPT_TEMPLATE.format(timeout=30)

    assert 'spawn $env(SMBUTIL) view "//$env(SMB_USER)@$env(SMB_HOST)"' in script
    assert 'send -- "$env(SMB_PASSWORD)\\r"' in script
    assert "set timeout 30" in script
