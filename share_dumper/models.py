import ipaddress
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


DEFAULT_MOUNT_ROOT = "/Volumes"

# Flags that make rsync modify the source tree. Shares are treated as read-only.
SOURCE_WRITING_RSYNC_FLAGS = ("--remove-source-files", "--remove-sent-files")

_HOSTNAME_LABEL = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


class JobState(str, Enum):
    """
    Lifecycle of a copy job.

    Workflow: Pending -> Running -> Done | Failed | Cancelled
    Retry:    Failed -> Pending
    Direct:   Pending -> Cancelled
    """

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Done"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_finished(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class ConnectionState(str, Enum):
    """Connection status for real-time UI feedback"""

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    FAILED = "FAILED"


class MountStatus(str, Enum):
    """Mount operation status for real-time UI feedback"""

    ATTEMPTING = "ATTEMPTING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    UNMOUNTED = "UNMOUNTED"


class RsyncFlags(BaseModel):
    """Default rsync flag set used when a submission brings no explicit args."""

    preserve_metadata: bool = True
    verify_resumed_copies: bool = True
    show_hidden_files: bool = False
    follow_symlinks: bool = False

    @property
    def arguments(self) -> List[str]:
        # -a is -rlptgoD
        args = ["-a"] if self.preserve_metadata else ["-r"]
        args.extend(["--partial", "--progress"])

        if not self.show_hidden_files:
            args.append("--exclude=.DS_Store")

        if self.follow_symlinks:
            args.append("-L")

        return args


class JobSpec(BaseModel):
    """Read-only copy of a job's inputs, handed to the copy operation."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    server_host: str
    sources: Tuple[str, ...]
    destination: str
    rsync_args: Tuple[str, ...]
    created_at: datetime
    log_path: str


class Job(BaseModel):
    """
    One queued request to copy a set of source trees to one destination.

    Only JobQueue mutates the lifecycle fields.
    """

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this job",
    )

    server_host: str = Field(..., description="Host the sources were mounted from")

    sources: List[str] = Field(..., min_length=1, description="Source directories")

    destination: str = Field(..., description="Local destination directory")

    rsync_args: List[str] = Field(default_factory=list, description="rsync flags")

    created_at: datetime = Field(default_factory=datetime.now)

    state: JobState = Field(default=JobState.PENDING)

    progress: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Transfer progress fraction (0-1)"
    )

    started_at: Optional[datetime] = Field(default=None)

    completed_at: Optional[datetime] = Field(default=None)

    error: Optional[str] = Field(
        default=None, description="Human-readable message for failed jobs"
    )

    log_path: Optional[str] = Field(
        default=None, description="Per-job transfer log, assigned at submission"
    )

    process_id: Optional[int] = Field(
        default=None, description="PID of the rsync process while running"
    )

    @property
    def display_name(self) -> str:
        if len(self.sources) == 1:
            source_name = Path(self.sources[0].rstrip("/")).name or "Unknown"
        else:
            source_name = f"{len(self.sources)} folders"
        return f"{self.server_host} → {source_name}"

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end_time = self.completed_at or datetime.now()
        return (end_time - self.started_at).total_seconds()

    @property
    def formatted_elapsed(self) -> str:
        elapsed = self.elapsed_seconds
        if elapsed < 60:
            return f"{elapsed:.0f}s"
        if elapsed < 3600:
            return f"{int(elapsed // 60)}m {int(elapsed % 60)}s"
        return f"{int(elapsed // 3600)}h {int((elapsed % 3600) // 60)}m"

    def to_spec(self) -> JobSpec:
        return JobSpec(
            job_id=self.id,
            server_host=self.server_host,
            sources=tuple(self.sources),
            destination=self.destination,
            rsync_args=tuple(self.rsync_args),
            created_at=self.created_at,
            log_path=self.log_path or "",
        )


class JobSubmission(BaseModel):
    """Inputs for a new job."""

    server_host: str
    sources: List[str] = Field(..., min_length=1)
    destination: str
    rsync_args: Optional[List[str]] = Field(
        default=None, description="Explicit rsync flags; settings defaults when omitted"
    )

    @field_validator("rsync_args")
    @classmethod
    def _reject_source_writing_flags(cls, value: Optional[List[str]]):
        if value:
            for arg in value:
                if arg.split("=")[0] in SOURCE_WRITING_RSYNC_FLAGS:
                    raise ValueError(f"rsync flag {arg} would modify the source share")
        return value


class ReorderRequest(BaseModel):
    from_positions: List[int] = Field(..., min_length=1)
    to_position: int = Field(..., ge=0)


def is_valid_host(value: str) -> bool:
    """True for an IPv4/IPv6 address or a DNS hostname such as ``nas.local``."""
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        pass
    if not value or len(value) > 253:
        return False
    return all(_HOSTNAME_LABEL.match(label) for label in value.rstrip(".").split("."))


class Share(BaseModel):
    """A named, mountable remote resource advertised by a host."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    host: str
    mount_root: str = DEFAULT_MOUNT_ROOT

    @property
    def id(self) -> str:
        return f"{self.host}_{self.name}"

    @property
    def mount_path(self) -> Path:
        return Path(self.mount_root) / self.name

    @property
    def is_valid_for_mounting(self) -> bool:
        return self.type.lower() == "disk" and "$" not in self.name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Share):
            return NotImplemented
        return self.host == other.host and self.name == other.name

    def __hash__(self) -> int:
        return hash((self.host, self.name))


class Credential(BaseModel):
    """SMB login. The domain-qualified username is kept for fallback attempts."""

    username: str = Field(..., min_length=1)
    password: SecretStr
    save_to_keychain: bool = False

    @property
    def formatted_username(self) -> str:
        """Username without a ``DOMAIN\\`` prefix."""
        parts = self.username.split("\\")
        if len(parts) == 2:
            return parts[1]
        return self.username

    @property
    def keychain_account(self) -> str:
        return self.username


class MountedShare(BaseModel):
    """One smbfs entry from the system mount table."""

    source: str
    mount_point: str

    @property
    def host(self) -> Optional[str]:
        """Host part of ``//user@host/share`` or ``//host/share``."""
        remainder = self.source
        if "@" in remainder:
            remainder = remainder.split("@", 1)[1]
        elif remainder.startswith("//"):
            remainder = remainder[2:]
        else:
            return None
        host = remainder.split("/", 1)[0]
        return host or None

    @property
    def volume_name(self) -> str:
        return Path(self.mount_point).name


class ConnectRequest(BaseModel):
    host: str
    username: str
    password: SecretStr
    save_to_keychain: bool = False

    @field_validator("host")
    @classmethod
    def _require_hostname_or_ip(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_host(value):
            raise ValueError(f"{value!r} is not a hostname or IP address")
        return value


class MountRequest(BaseModel):
    share_names: List[str] = Field(..., min_length=1)
