from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import RsyncFlags
from .utils.host_config import get_hostname_settings_file


DEFAULT_CONFLICT_GROUP = [
    "production.ad.uhoert.no",
    "192.168.1.20",
    "192.168.1.21",
    "192.168.1.22",
    "192.168.1.23",
]


class Settings(BaseSettings):
    # Logging
    log_level: str = "INFO"
    log_file_path: str = "logs/share_dumper.log"
    log_retention_days: int = 30

    # Per-job transfer logs
    job_log_directory: str = str(Path.home() / "Library" / "Logs" / "Share-Dumper")

    # Servers
    default_server: str = "192.168.1.20"
    server_aliases: Dict[str, str] = Field(default_factory=dict)
    # Hosts in the same group are the same physical backend; only one may be mounted
    conflict_groups: List[List[str]] = Field(
        default_factory=lambda: [list(DEFAULT_CONFLICT_GROUP)]
    )
    mount_root: str = "/Volumes"

    # Transfer
    rsync_flags: RsyncFlags = Field(default_factory=RsyncFlags)
    rsync_path: Optional[str] = None  # None = autodetect homebrew, then system rsync
    cancel_grace_seconds: float = 5.0

    # External tools
    smbutil_path: str = "/usr/bin/smbutil"
    expect_path: str = "/usr/bin/expect"
    osascript_path: str = "/usr/bin/osascript"
    mount_path: str = "/sbin/mount"
    diskutil_path: str = "/usr/sbin/diskutil"
    umount_path: str = "/sbin/umount"
    ls_path: str = "/bin/ls"
    ping_path: str = "/sbin/ping"
    nc_path: str = "/usr/bin/nc"
    traceroute_path: str = "/usr/sbin/traceroute"

    # Share enumeration
    enumeration_max_attempts: int = 3
    enumeration_retry_delay_seconds: float = 2.0
    enumeration_timeout_seconds: float = 30.0

    # Mounting
    mount_timeout_seconds: float = 30.0
    mount_settle_seconds: float = 1.0
    unmount_timeout_seconds: float = 30.0
    mount_table_timeout_seconds: float = 10.0

    # Diagnostics (advisory only)
    enable_network_diagnostics: bool = True
    ping_timeout_seconds: float = 10.0
    port_timeout_seconds: float = 10.0
    traceroute_timeout_seconds: float = 15.0
    smb_ports: List[int] = Field(default_factory=lambda: [445, 139])

    # Credentials
    use_keyring: bool = True

    # Web server
    host: str = "127.0.0.1"
    port: int = 8000

    model_config = SettingsConfigDict(env_file=get_hostname_settings_file())

    @property
    def log_directory(self) -> Path:
        """Directory holding the application log."""
        return Path(self.log_file_path).parent

    @property
    def job_log_path(self) -> Path:
        return Path(self.job_log_directory).expanduser()

    def display_name_for(self, host: str) -> str:
        """Alias for a host if one is configured, else the host itself."""
        return self.server_aliases.get(host, host)

    def conflict_group_for(self, host: str) -> List[str]:
        """Return the conflict group containing host, or an empty list."""
        for group in self.conflict_groups:
            if host in group:
                return group
        return []

    @property
    def config_file_info(self) -> dict:
        """Return information about which configuration file is being used."""
        from .utils.host_config import get_hostname, list_all_settings_files

        return {
            "hostname": get_hostname(),
            "active_config_file": get_hostname_settings_file(),
            "all_available_configs": list_all_settings_files(),
        }
