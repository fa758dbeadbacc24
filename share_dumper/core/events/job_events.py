"""
Domain events published by the job queue.
"""

from dataclasses import dataclass
from typing import Optional

from share_dumper.core.events.domain_event import DomainEvent
from share_dumper.models import JobState


@dataclass(frozen=True)
class JobStatusChangedEvent(DomainEvent):
    """Published after every job state transition."""

    job_id: str
    old_state: Optional[JobState]
    new_state: JobState
    error: Optional[str] = None


@dataclass(frozen=True)
class JobProgressEvent(DomainEvent):
    """Published for every accepted progress update of the running job."""

    job_id: str
    progress: float


@dataclass(frozen=True)
class JobQueueChangedEvent(DomainEvent):
    """Published when jobs are added, removed or reordered."""

    reason: str
    job_ids: tuple = ()
