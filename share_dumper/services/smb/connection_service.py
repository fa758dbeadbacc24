"""Connection Service - the connect, enumerate and mount flow for one server."""

import asyncio
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from share_dumper.config import Settings
from share_dumper.core.events.connection_events import ConnectionStatusChangedEvent
from share_dumper.core.events.event_bus import DomainEventBus
from share_dumper.core.exceptions import (
    AuthenticationFailed,
    EnumerationFailure,
    HostUnreachable,
    LaunchFailure,
    NoCredentialsStored,
    SecretNotFound,
    SMBConnectionError,
)
from share_dumper.models import ConnectionState, Credential, Share
from share_dumper.services.secrets.secret_store import SecretStore
from share_dumper.services.smb.diagnostics import DiagnosticsReport, NetworkDiagnostics
from share_dumper.services.smb.mount_coordinator import MountCoordinator
from share_dumper.services.smb.share_connector import ShareConnector


class ConnectionService:
    """
    Session state for the server the user connected to.

    Remembers the credential of the last successful connect so mounting
    does not ask for it again.
    """

    def __init__(
        self,
        settings: Settings,
        connector: ShareConnector,
        coordinator: MountCoordinator,
        diagnostics: NetworkDiagnostics,
        secret_store: SecretStore,
        event_bus: Optional[DomainEventBus] = None,
    ):
        self.settings = settings
        self._connector = connector
        self._coordinator = coordinator
        self._diagnostics = diagnostics
        self._secret_store = secret_store
        self._event_bus = event_bus

        self._state = ConnectionState.IDLE
        self._connected_host: Optional[str] = None
        self._credential: Optional[Credential] = None
        self._available_shares: List[Share] = []
        self._last_error: Optional[str] = None
        self._last_diagnostics: Optional[DiagnosticsReport] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected_host(self) -> Optional[str]:
        return self._connected_host

    @property
    def available_shares(self) -> List[Share]:
        return list(self._available_shares)

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def last_diagnostics(self) -> Optional[DiagnosticsReport]:
        return self._last_diagnostics

    async def connect(self, host: str, credential: Credential) -> List[Share]:
        """
        Enumerate the shares on ``host`` and keep the mountable ones.

        Raises:
            AuthenticationFailed: The server rejected the login.
            HostUnreachable: Enumeration failed and diagnostics could not
                reach the host.
            SMBConnectionError: Enumeration failed; the session is left
                without shares or credential.
        """
        logging.info(f"=== SMB connection attempt: {host} as {credential.username} ===")
        await self._set_state(host, ConnectionState.CONNECTING)

        report = None
        if self.settings.enable_network_diagnostics:
            report = self._last_diagnostics = await self._diagnostics.run(host)
            if not report.reachable:
                logging.warning(f"Diagnostics could not reach {host} - trying to enumerate anyway")

        if credential.save_to_keychain:
            await self._save_password(host, credential)

        try:
            shares = await self._connector.enumerate_shares(host, credential)
        except (SMBConnectionError, LaunchFailure) as e:
            error = e if isinstance(e, SMBConnectionError) else EnumerationFailure(str(e))
            if report is not None and not report.reachable and not isinstance(error, AuthenticationFailed):
                error = HostUnreachable(host, str(e))
            self._available_shares = []
            self._credential = None
            self._connected_host = None
            self._last_error = str(error)
            logging.error(f"Failed to connect to SMB server {host}: {error}")
            await self._set_state(host, ConnectionState.FAILED, error=str(error))
            if error is e:
                raise
            raise error from e

        valid_shares = [share for share in shares if share.is_valid_for_mounting]
        self._available_shares = valid_shares
        self._credential = credential
        self._connected_host = host
        self._last_error = None

        logging.info(
            f"Enumerated {len(shares)} share(s) from {host}, {len(valid_shares)} valid for mounting"
        )
        await self._set_state(host, ConnectionState.CONNECTED, share_count=len(valid_shares))
        return self.available_shares

    async def mount_selected(self, shares: Iterable[Share]) -> List[Path]:
        """
        Raises:
            NoCredentialsStored: No successful connect in this session.
            MountFailure: See MountCoordinator.mount.
        """
        if self._credential is None:
            raise NoCredentialsStored()
        return await self._coordinator.mount(shares, self._credential)

    async def mount_by_name(self, share_names: Iterable[str]) -> List[Path]:
        """
        Mount shares from the last enumeration by name.

        Raises:
            KeyError: A name is not among the available shares.
        """
        if self._credential is None:
            raise NoCredentialsStored()
        by_name = {share.name: share for share in self._available_shares}
        selected = []
        for name in share_names:
            if name not in by_name:
                raise KeyError(name)
            selected.append(by_name[name])
        return await self.mount_selected(selected)

    def credential_for(self, host: str, username: str) -> Credential:
        """
        Rebuild a credential from the secret store.

        Raises:
            NoCredentialsStored: Nothing stored for ``username@host``.
        """
        try:
            password = self._secret_store.retrieve(username, host)
        except SecretNotFound as e:
            raise NoCredentialsStored() from e
        return Credential(username=username, password=password, save_to_keychain=False)

    def stored_accounts(self) -> List[str]:
        return self._secret_store.list()

    def disconnect(self) -> None:
        """Forget the session credential and shares. Mounts stay in place."""
        self._credential = None
        self._available_shares = []
        self._connected_host = None
        self._state = ConnectionState.IDLE

    async def _save_password(self, host: str, credential: Credential) -> None:
        try:
            await asyncio.to_thread(
                self._secret_store.save,
                credential.keychain_account,
                host,
                credential.password.get_secret_value(),
            )
            logging.info("Credentials saved to keychain")
        except Exception as e:
            logging.error(f"Could not save credentials for {credential.keychain_account}@{host}: {e}")

    async def _set_state(
        self, host: str, state: ConnectionState, share_count: int = 0, error: Optional[str] = None
    ) -> None:
        self._state = state
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            ConnectionStatusChangedEvent(host=host, state=state, share_count=share_count, error=error)
        )
