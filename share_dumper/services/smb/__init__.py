"""
SMB share handling.

Components:
- ShareConnector: lists the disk shares a host advertises (smbutil)
- MountCoordinator: mounts/unmounts under the mount root, sweeps conflicting hosts
- NetworkDiagnostics: advisory reachability probes before a connect
- ConnectionService: the connect -> enumerate -> mount flow for one session
"""

from .connection_service import ConnectionService
from .diagnostics import DiagnosticsReport, NetworkDiagnostics, ProbeResult
from .mount_coordinator import MountCoordinator
from .mount_table import list_mounted_shares, parse_mount_table
from .share_connector import ShareConnector, parse_shares_output

__all__ = [
    "ConnectionService",
    "DiagnosticsReport",
    "NetworkDiagnostics",
    "ProbeResult",
    "MountCoordinator",
    "list_mounted_shares",
    "parse_mount_table",
    "ShareConnector",
    "parse_shares_output",
]
