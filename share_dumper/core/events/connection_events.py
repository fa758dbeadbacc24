from dataclasses import dataclass
from typing import Optional

from share_dumper.core.events.domain_event import DomainEvent
from share_dumper.models import ConnectionState, MountStatus


@dataclass(frozen=True)
class ConnectionStatusChangedEvent(DomainEvent):
    """Published when a connect attempt starts, succeeds or fails."""
    host: str
    state: ConnectionState
    share_count: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class MountStatusChangedEvent(DomainEvent):
    """Published for each share mount or unmount outcome."""
    share_name: str
    host: str
    status: MountStatus
    mount_path: Optional[str] = None
    error: Optional[str] = None
