import logging

from share_dumper.core.events.connection_events import (
    ConnectionStatusChangedEvent,
    MountStatusChangedEvent,
)
from share_dumper.core.events.event_bus import DomainEventBus
from share_dumper.core.events.job_events import (
    JobProgressEvent,
    JobQueueChangedEvent,
    JobStatusChangedEvent,
)
from share_dumper.domains.presentation.event_handlers import PresentationEventHandlers


async def register_presentation_domain(event_bus: DomainEventBus, handlers: PresentationEventHandlers) -> None:
    """Subscribe the WebSocket presentation handlers to every domain event."""
    logging.info("Subscribing presentation event handlers...")

    await event_bus.subscribe(JobStatusChangedEvent, handlers.handle_job_status_changed)
    await event_bus.subscribe(JobProgressEvent, handlers.handle_job_progress)
    await event_bus.subscribe(JobQueueChangedEvent, handlers.handle_job_queue_changed)
    await event_bus.subscribe(ConnectionStatusChangedEvent, handlers.handle_connection_status)
    await event_bus.subscribe(MountStatusChangedEvent, handlers.handle_mount_status)

    logging.info("Presentation event registration complete.")
