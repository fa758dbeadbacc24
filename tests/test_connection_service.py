"""
Tests for ConnectionService with the connector, coordinator and diagnostics mocked.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from share_dumper.core.events.connection_events import ConnectionStatusChangedEvent
from share_dumper.core.events.event_bus import DomainEventBus
from share_dumper.core.exceptions import (
    AuthenticationFailed,
    EnumerationFailure,
    HostUnreachable,
    LaunchFailure,
    MountFailure,
    NoCredentialsStored,
)
from share_dumper.models import ConnectionState, Credential, Share
from share_dumper.services.secrets.secret_store import InMemorySecretStore
from share_dumper.services.smb.connection_service import ConnectionService
from share_dumper.services.smb.diagnostics import DiagnosticsReport, ProbeResult

HOST = "192.168.1.20"


def _share(name, share_type="Disk"):
    return Share(name=name, type=share_type, host=HOST)


def _credential(save=False):
    return Credential(username="CORP\\alice", password=SecretStr("s3cret"), save_to_keychain=save)


def _ping_result(exit_code=0):
    return ProbeResult(name="ping", command=["ping", HOST], exit_code=exit_code)


@pytest.fixture
def connector():
    mock = MagicMock()
    mock.enumerate_shares = AsyncMock(return_value=[_share("Media"), _share("Archive"), _share("IPC$", "Pipe")])
    return mock


@pytest.fixture
def coordinator():
    mock = MagicMock()
    mock.mount = AsyncMock(return_value=[Path("/Volumes/Media")])
    return mock


@pytest.fixture
def diagnostics():
    mock = MagicMock()
    mock.run = AsyncMock(return_value=DiagnosticsReport(host=HOST, probes=[_ping_result()]))
    return mock


@pytest.fixture
def secret_store():
    return InMemorySecretStore()


@pytest.fixture
def event_bus():
    return DomainEventBus()


@pytest.fixture
def service(settings, connector, coordinator, diagnostics, secret_store, event_bus):
    return ConnectionService(settings, connector, coordinator, diagnostics, secret_store, event_bus)


async def _record_states(event_bus):
    events = []

    async def record(event):
        events.append(event)

    await event_bus.subscribe(ConnectionStatusChangedEvent, record)
    return events


@pytest.mark.asyncio
async def test_connect_keeps_mountable_shares(service, event_bus, diagnostics):
    events = await _record_states(event_bus)

    shares = await service.connect(HOST, _credential())

    assert [share.name for share in shares] == ["Media", "Archive"]
    assert service.state == ConnectionState.CONNECTED
    assert service.connected_host == HOST
    assert service.last_error is None
    assert [e.state for e in events] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert events[-1].share_count == 2
    diagnostics.run.assert_awaited_once_with(HOST)


@pytest.mark.asyncio
async def test_diagnostics_can_be_disabled(service, settings, diagnostics):
    settings.enable_network_diagnostics = False

    await service.connect(HOST, _credential())

    diagnostics.run.assert_not_awaited()


@pytest.mark.asyncio
async def test_connect_failure_clears_session(service, connector, event_bus):
    await service.connect(HOST, _credential())
    events = await _record_states(event_bus)
    connector.enumerate_shares.side_effect = EnumerationFailure("Host is down")

    with pytest.raises(EnumerationFailure):
        await service.connect(HOST, _credential())

    assert service.state == ConnectionState.FAILED
    assert service.available_shares == []
    assert service.connected_host is None
    assert "Host is down" in service.last_error
    assert events[-1].state == ConnectionState.FAILED
    assert events[-1].error == service.last_error
    with pytest.raises(NoCredentialsStored):
        await service.mount_selected([_share("Media")])


@pytest.mark.asyncio
async def test_unreachable_host_is_reported_as_such(service, connector, diagnostics):
    diagnostics.run.return_value = DiagnosticsReport(host=HOST, probes=[_ping_result(exit_code=2)])
    connector.enumerate_shares.side_effect = EnumerationFailure("Host is down")

    with pytest.raises(HostUnreachable) as exc_info:
        await service.connect(HOST, _credential())

    assert exc_info.value.host == HOST
    assert "Host is down" in exc_info.value.detail
    assert service.last_error == f"Cannot reach the server {HOST}. Please check the network connection."
    assert service.state == ConnectionState.FAILED


@pytest.mark.asyncio
async def test_rejected_login_wins_over_unreachable_diagnostics(service, connector, diagnostics):
    diagnostics.run.return_value = DiagnosticsReport(host=HOST)
    connector.enumerate_shares.side_effect = AuthenticationFailed("Authentication error")

    with pytest.raises(AuthenticationFailed):
        await service.connect(HOST, _credential())


@pytest.mark.asyncio
async def test_launch_failure_is_reported_as_enumeration_failure(service, connector):
    connector.enumerate_shares.side_effect = LaunchFailure("/usr/bin/smbutil", "No such file or directory")

    with pytest.raises(EnumerationFailure) as exc_info:
        await service.connect(HOST, _credential())

    assert "/usr/bin/smbutil" in str(exc_info.value)


@pytest.mark.asyncio
async def test_mount_requires_a_connection(service):
    with pytest.raises(NoCredentialsStored):
        await service.mount_selected([_share("Media")])


@pytest.mark.asyncio
async def test_mount_by_name_uses_session_credential(service, coordinator):
    credential = _credential()
    await service.connect(HOST, credential)

    paths = await service.mount_by_name(["Media"])

    assert paths == [Path("/Volumes/Media")]
    mounted_shares, used_credential = coordinator.mount.await_args.args
    assert [share.name for share in mounted_shares] == ["Media"]
    assert used_credential is credential


@pytest.mark.asyncio
async def test_mount_by_unknown_name(service):
    await service.connect(HOST, _credential())

    with pytest.raises(KeyError):
        await service.mount_by_name(["IPC$"])


@pytest.mark.asyncio
async def test_mount_failure_propagates(service, coordinator):
    await service.connect(HOST, _credential())
    coordinator.mount.side_effect = MountFailure("Media", "error -5014")

    with pytest.raises(MountFailure):
        await service.mount_by_name(["Media"])


@pytest.mark.asyncio
async def test_password_saved_when_requested(service, secret_store):
    await service.connect(HOST, _credential(save=True))

    assert secret_store.retrieve("CORP\\alice", HOST) == "s3cret"
    assert service.stored_accounts() == [f"CORP\\alice@{HOST}"]

    credential = service.credential_for(HOST, "CORP\\alice")
    assert credential.password.get_secret_value() == "s3cret"
    assert credential.formatted_username == "alice"


@pytest.mark.asyncio
async def test_keychain_failure_does_not_block_connect(service, secret_store):
    secret_store.save = MagicMock(side_effect=RuntimeError("keychain locked"))

    shares = await service.connect(HOST, _credential(save=True))

    assert len(shares) == 2
    assert service.state == ConnectionState.CONNECTED


def test_credential_for_unknown_account(service):
    with pytest.raises(NoCredentialsStored):
        service.credential_for(HOST, "bob")


@pytest.mark.asyncio
async def test_disconnect_forgets_session(service):
    await service.connect(HOST, _credential())

    service.disconnect()

    assert service.state == ConnectionState.IDLE
    assert service.available_shares == []
    with pytest.raises(NoCredentialsStored):
        await service.mount_selected([_share("Media")])
