import logging
from datetime import datetime
from typing import Any, Dict, List

from share_dumper.core.events.connection_events import (
    ConnectionStatusChangedEvent,
    MountStatusChangedEvent,
)
from share_dumper.core.events.job_events import (
    JobProgressEvent,
    JobQueueChangedEvent,
    JobStatusChangedEvent,
)
from share_dumper.core.exceptions import JobNotFoundError
from share_dumper.domains.presentation.websocket_manager import WebSocketManager
from share_dumper.models import Job
from share_dumper.services.job_queue import JobQueueService


def serialize_job(job: Job) -> Dict[str, Any]:
    data = job.model_dump(mode="json")
    data["display_name"] = job.display_name
    data["formatted_elapsed"] = job.formatted_elapsed
    data["progress_percent"] = round(job.progress * 100, 1)
    return data


def build_job_snapshot(jobs: List[Job]) -> Dict[str, Any]:
    return {
        "type": "job_snapshot",
        "data": {
            "jobs": [serialize_job(job) for job in jobs],
            "timestamp": datetime.now().isoformat(),
        },
    }


class PresentationEventHandlers:
    """Turns domain events into WebSocket messages."""

    def __init__(self, websocket_manager: WebSocketManager, job_queue: JobQueueService):
        self.websocket_manager = websocket_manager
        self.job_queue = job_queue

    async def handle_job_status_changed(self, event: JobStatusChangedEvent) -> None:
        logging.debug(f"Job {event.job_id[:8]} -> {event.new_state.value}")
        try:
            job = self.job_queue.get_job(event.job_id)
        except JobNotFoundError:
            logging.warning(f"Received JobStatusChangedEvent for unknown job ID: {event.job_id}")
            return

        message_data = {
            "type": "job_update",
            "data": {
                "job_id": event.job_id,
                "old_state": event.old_state.value if event.old_state else None,
                "new_state": event.new_state.value,
                "error": event.error,
                "job": serialize_job(job),
                "timestamp": event.timestamp.isoformat(),
            },
        }
        self.websocket_manager.broadcast_message(message_data)

    async def handle_job_progress(self, event: JobProgressEvent) -> None:
        message_data = {
            "type": "job_progress",
            "data": {
                "job_id": event.job_id,
                "progress": event.progress,
                "progress_percent": round(event.progress * 100, 1),
                "timestamp": event.timestamp.isoformat(),
            },
        }
        self.websocket_manager.broadcast_message(message_data)

    async def handle_job_queue_changed(self, event: JobQueueChangedEvent) -> None:
        # Reorder and prune change positions; clients redraw from a full snapshot
        if event.reason == "submitted":
            return
        self.websocket_manager.broadcast_message(build_job_snapshot(self.job_queue.get_jobs()))

    async def handle_connection_status(self, event: ConnectionStatusChangedEvent) -> None:
        message_data = {
            "type": "connection_update",
            "data": {
                "host": event.host,
                "state": event.state.value,
                "share_count": event.share_count,
                "error": event.error,
                "timestamp": event.timestamp.isoformat(),
            },
        }
        self.websocket_manager.broadcast_message(message_data)

    async def handle_mount_status(self, event: MountStatusChangedEvent) -> None:
        message_data = {
            "type": "mount_update",
            "data": {
                "share_name": event.share_name,
                "host": event.host,
                "status": event.status.value,
                "mount_path": event.mount_path,
                "error": event.error,
                "timestamp": event.timestamp.isoformat(),
            },
        }
        self.websocket_manager.broadcast_message(message_data)
