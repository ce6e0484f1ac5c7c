"""Event pub/sub for pretranslation job progress.

JobRegistry publishes every job change here. The CLI subscribes to
``job_progress`` to drive its status line.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()


@dataclass
class JobEvent:
    """A single job event."""

    type: str
    document_id: str
    data: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "document_id": self.document_id,
            "data": self.data,
            "timestamp": self.timestamp,
        }


class EventBus:
    """Simple synchronous event bus.

    Subscribers receive events in the emitter's thread, so callbacks must
    be quick. An optional ``event_type`` restricts a subscription.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, tuple[Optional[str], Callable[[JobEvent], None]]] = {}

    def subscribe(
        self, callback: Callable[[JobEvent], None], event_type: Optional[str] = None
    ) -> str:
        """Register a callback. Returns subscription ID for unsubscribe."""
        sub_id = str(uuid.uuid4())
        self._subscribers[sub_id] = (event_type, callback)
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        self._subscribers.pop(sub_id, None)

    def emit(self, event: JobEvent) -> None:
        """Send event to all matching subscribers."""
        for event_type, callback in list(self._subscribers.values()):
            if event_type is not None and event_type != event.type:
                continue
            try:
                callback(event)
            except Exception as e:
                # A bad subscriber must not break the job
                logger.warning("event_subscriber_failed", event=event.type, error=str(e))
