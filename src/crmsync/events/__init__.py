"""In-process event backbone for sync notifications.

Exports:
    EventBus: Ordered, idempotent publish/subscribe within one request.
    ChildRecordEvent: Payload broadcast after each child record CRM write.
    ChildRecordTopic: Topic names for child record writes.
    FieldSaveEvent: Payload broadcast for each bound field in a Content save.
    mapper_topic: Topic name for a normalized CRM-side notification.
    content_topic: Topic name for a Content-side field save.
"""

from __future__ import annotations

from src.crmsync.events.bus import EventBus
from src.crmsync.events.schemas import (
    ChildRecordEvent,
    ChildRecordTopic,
    FieldSaveEvent,
    content_topic,
    mapper_topic,
)

__all__ = [
    "ChildRecordEvent",
    "ChildRecordTopic",
    "EventBus",
    "FieldSaveEvent",
    "content_topic",
    "mapper_topic",
]
