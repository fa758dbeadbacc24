from functools import lru_cache
from typing import Dict, Any

from share_dumper.core.events.event_bus import DomainEventBus

from .config import Settings
from .domains.presentation.event_handlers import PresentationEventHandlers
from .domains.presentation.websocket_manager import WebSocketManager
from .services.copy.job_log import JobLogManager
from .services.job_queue import JobQueueService
from .services.process.subprocess_runner import SubprocessRunner
from .services.secrets.secret_store import InMemorySecretStore, KeyringSecretStore, SecretStore
from .services.smb import ConnectionService, MountCoordinator, NetworkDiagnostics, ShareConnector

# Global singleton instances
_singletons: Dict[str, Any] = {}


@lru_cache
def get_settings() -> Settings:
    """Settings singleton instance."""
    return Settings()


def get_event_bus() -> DomainEventBus:
    if "event_bus" not in _singletons:
        _singletons["event_bus"] = DomainEventBus()
    return _singletons["event_bus"]


def get_subprocess_runner() -> SubprocessRunner:
    if "subprocess_runner" not in _singletons:
        _singletons["subprocess_runner"] = SubprocessRunner(
            cancel_grace_seconds=get_settings().cancel_grace_seconds
        )
    return _singletons["subprocess_runner"]


def get_job_log_manager() -> JobLogManager:
    if "job_log_manager" not in _singletons:
        settings = get_settings()
        _singletons["job_log_manager"] = JobLogManager(
            directory=settings.job_log_path, retention_days=settings.log_retention_days
        )
    return _singletons["job_log_manager"]


def get_job_queue_service() -> JobQueueService:
    if "job_queue_service" not in _singletons:
        _singletons["job_queue_service"] = JobQueueService(
            settings=get_settings(),
            runner=get_subprocess_runner(),
            job_log=get_job_log_manager(),
            event_bus=get_event_bus(),
        )
    return _singletons["job_queue_service"]


def get_secret_store() -> SecretStore:
    if "secret_store" not in _singletons:
        if get_settings().use_keyring:
            _singletons["secret_store"] = KeyringSecretStore()
        else:
            _singletons["secret_store"] = InMemorySecretStore()
    return _singletons["secret_store"]


def get_share_connector() -> ShareConnector:
    if "share_connector" not in _singletons:
        _singletons["share_connector"] = ShareConnector(
            settings=get_settings(), runner=get_subprocess_runner()
        )
    return _singletons["share_connector"]


def get_mount_coordinator() -> MountCoordinator:
    if "mount_coordinator" not in _singletons:
        _singletons["mount_coordinator"] = MountCoordinator(
            settings=get_settings(), runner=get_subprocess_runner(), event_bus=get_event_bus()
        )
    return _singletons["mount_coordinator"]


def get_network_diagnostics() -> NetworkDiagnostics:
    if "network_diagnostics" not in _singletons:
        _singletons["network_diagnostics"] = NetworkDiagnostics(
            settings=get_settings(), runner=get_subprocess_runner()
        )
    return _singletons["network_diagnostics"]


def get_connection_service() -> ConnectionService:
    if "connection_service" not in _singletons:
        _singletons["connection_service"] = ConnectionService(
            settings=get_settings(),
            connector=get_share_connector(),
            coordinator=get_mount_coordinator(),
            diagnostics=get_network_diagnostics(),
            secret_store=get_secret_store(),
            event_bus=get_event_bus(),
        )
    return _singletons["connection_service"]


def get_websocket_manager() -> WebSocketManager:
    """Gets the singleton instance of the pure WebSocketManager."""
    if "websocket_manager" not in _singletons:
        _singletons["websocket_manager"] = WebSocketManager()
    return _singletons["websocket_manager"]


def get_presentation_event_handlers() -> PresentationEventHandlers:
    if "presentation_event_handlers" not in _singletons:
        _singletons["presentation_event_handlers"] = PresentationEventHandlers(
            websocket_manager=get_websocket_manager(), job_queue=get_job_queue_service()
        )
    return _singletons["presentation_event_handlers"]


def reset_singletons() -> None:
    global _singletons
    _singletons.clear()
    get_settings.cache_clear()
