"""
Review completion events for downstream consumers (UI, email).

Emission is fire-and-forget: handlers run in a detached task, their errors are
logged, and nothing here can fail or delay the pipeline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    REVIEW_COMPLETED = "review.completed"
    REVIEW_FAILED = "review.failed"
    REVIEW_SKIPPED_QUOTA = "review.skipped_quota"


STATUS_EVENTS = {
    "completed": EventType.REVIEW_COMPLETED,
    "failed": EventType.REVIEW_FAILED,
    "skipped_quota": EventType.REVIEW_SKIPPED_QUOTA,
}


@dataclass
class ReviewEvent:
    """Standardized event for a finished review."""

    id: UUID = field(default_factory=uuid4)
    type: EventType = EventType.REVIEW_COMPLETED
    review_id: Optional[str] = None
    repository_id: Optional[str] = None
    repository: Optional[str] = None
    pull_request_number: Optional[int] = None
    delivery_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "review_id": self.review_id,
            "repository_id": self.repository_id,
            "repository": self.repository,
            "pull_request_number": self.pull_request_number,
            "delivery_id": self.delivery_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


Handler = Callable[[ReviewEvent], Awaitable[None] | None]


class EventEmitter:
    """Emits events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[Handler] = []
        self._pending: set[asyncio.Task[None]] = set()

    def on_event(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def clear(self) -> None:
        self._handlers.clear()

    async def emit(self, event: ReviewEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event.type.value)

    def emit_nowait(self, event: ReviewEvent) -> asyncio.Task[None]:
        """Schedule emission without waiting for it."""
        task = asyncio.get_running_loop().create_task(self.emit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


event_bus = EventEmitter()


def log_event_handler(event: ReviewEvent) -> None:
    logger.info(
        "%s: %s#%s (review %s)",
        event.type.value,
        event.repository,
        event.pull_request_number,
        event.review_id,
    )


async def publish_event_handler(event: ReviewEvent) -> None:
    """Handler that publishes events to Redis Pub/Sub."""
    if not event.repository_id:
        return

    from .redis_client import get_redis_client

    redis = get_redis_client()
    channel = f"channel:repository:{event.repository_id}"
    await redis.publish(channel, json.dumps(event.to_dict()))


def install_default_handlers(*, publish: bool = True) -> None:
    event_bus.clear()
    event_bus.on_event(log_event_handler)
    if publish:
        event_bus.on_event(publish_event_handler)
