# backend/app/services/events.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
import logging
from typing import Any, Dict, Optional
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass
class AutomationEvent:
    project_id: UUID
    trigger_type: str  # e.g. 'entity.updated'
    entity_type: str
    entity_id: UUID
    data: Dict[str, Any]
    previous_data: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class EventSink(ABC):
    """Where automation events go; the automation engine itself lives elsewhere."""

    @abstractmethod
    def emit(self, event: AutomationEvent) -> None:
        ...


class LoggingEventSink(EventSink):
    def emit(self, event: AutomationEvent) -> None:
        logger.info(
            "Automation event %s for %s",
            event.trigger_type,
            event.entity_type,
            extra={
                "project_id": str(event.project_id),
                "entity_id": str(event.entity_id),
                "step": "automation_event",
            },
        )


@lru_cache(maxsize=1)
def get_event_sink() -> EventSink:
    return LoggingEventSink()
