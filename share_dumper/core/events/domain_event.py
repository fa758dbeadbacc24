"""
Base class for everything published on the DomainEventBus.
"""

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """
    A job or connection change that already happened.

    Events are immutable; handlers get the same instance and must not try to
    change it. ``timestamp`` is UTC.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return type(self).__name__

    def payload(self) -> Dict[str, Any]:
        """Event fields as JSON-friendly values, without id and timestamp."""
        data = {}
        for f in fields(self):
            if f.name in ("event_id", "timestamp"):
                continue
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            data[f.name] = value
        return data
