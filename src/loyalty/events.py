"""Typed change events for external subscribers (read caches, notifiers).

Events are published after the owning transaction commits. Delivery is best
effort: a Redis outage is logged and never fails or rolls back ledger work.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar

import structlog
from pydantic import BaseModel, Field
from redis.asyncio import Redis

logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LoyaltyEvent(BaseModel):
    name: ClassVar[str] = "event"

    user_id: int
    emitted_at: datetime = Field(default_factory=_now)


class LedgerChanged(LoyaltyEvent):
    name: ClassVar[str] = "ledger_changed"

    entry_id: int
    delta: int
    balance_after: int
    source_type: str
    source_id: str | None = None


class BadgeAwarded(LoyaltyEvent):
    name: ClassVar[str] = "badge_awarded"

    badge_id: int
    slug: str
    points_awarded: int


class CheckInRecorded(LoyaltyEvent):
    name: ClassVar[str] = "checkin_recorded"

    checkin_id: int
    destination_id: int
    points: int


class EventPublisher:
    """Publishes events on ``<prefix>:<event name>`` Redis channels."""

    def __init__(self, redis: Redis | None, channel_prefix: str = "pubsub:loyalty") -> None:
        self.redis = redis
        self.channel_prefix = channel_prefix

    def channel_for(self, event: LoyaltyEvent) -> str:
        return f"{self.channel_prefix}:{event.name}"

    async def publish(self, event: LoyaltyEvent) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.publish(
                self.channel_for(event),
                event.model_dump_json(),
            )
        except Exception:
            logger.warning("event_publish_failed", event=event.name, user_id=event.user_id, exc_info=True)

    async def publish_all(self, events: list[LoyaltyEvent]) -> None:
        for event in events:
            await self.publish(event)
