"""Change event publishing tests."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from redis.asyncio import Redis

from loyalty.checkins.schemas import Coordinates
from loyalty.events import BadgeAwarded, CheckInRecorded, EventPublisher, LedgerChanged

AT_ORIGIN = Coordinates(latitude=40.7580, longitude=-73.9855)


def published_channels(redis: AsyncMock) -> list[str]:
    return [call.args[0] for call in redis.publish.await_args_list]


class TestEventPublisher:
    @pytest.mark.asyncio
    async def test_accepts_redis_client(self):
        redis = AsyncMock(spec=Redis)
        publisher = EventPublisher(redis, "pubsub:loyalty")

        await publisher.publish(CheckInRecorded(user_id=3, checkin_id=9, destination_id=4, points=50))

        redis.publish.assert_awaited_once()
        assert redis.publish.await_args.args[0] == "pubsub:loyalty:checkin_recorded"

    @pytest.mark.asyncio
    async def test_channel_and_payload(self):
        redis = AsyncMock()
        publisher = EventPublisher(redis, "pubsub:loyalty")

        await publisher.publish(
            LedgerChanged(user_id=7, entry_id=3, delta=50, balance_after=50, source_type="checkin", source_id="11")
        )

        channel, payload = redis.publish.await_args.args
        assert channel == "pubsub:loyalty:ledger_changed"
        data = json.loads(payload)
        assert data["user_id"] == 7
        assert data["balance_after"] == 50
        assert "emitted_at" in data

    @pytest.mark.asyncio
    async def test_without_redis_is_a_no_op(self):
        publisher = EventPublisher(None)
        await publisher.publish(BadgeAwarded(user_id=1, badge_id=2, slug="first_steps", points_awarded=10))

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        publisher = EventPublisher(redis)

        await publisher.publish_all(
            [
                CheckInRecorded(user_id=1, checkin_id=1, destination_id=1, points=50),
                BadgeAwarded(user_id=1, badge_id=2, slug="first_steps", points_awarded=10),
            ]
        )
        assert redis.publish.await_count == 2


class TestEngineEvents:
    @pytest.mark.asyncio
    async def test_checkin_publishes_after_commit(self, engine, factory, redis_mock):
        user_id = await factory.user()
        dest_id = await factory.destination(points_reward=50)
        await factory.badge("first_steps", points_reward=10)

        await engine.validate_and_record_checkin(user_id, dest_id, AT_ORIGIN, "gps")

        assert published_channels(redis_mock) == [
            "pubsub:loyalty:checkin_recorded",
            "pubsub:loyalty:ledger_changed",
            "pubsub:loyalty:badge_awarded",
            "pubsub:loyalty:ledger_changed",
        ]

    @pytest.mark.asyncio
    async def test_failed_checkin_publishes_nothing(self, engine, factory, redis_mock):
        user_id = await factory.user()
        dest_id = await factory.destination(qr_code="CODE")

        with pytest.raises(ValueError):
            await engine.validate_and_record_checkin(user_id, dest_id, None, "qr_code", token="WRONG")

        redis_mock.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_outage_does_not_fail_checkin(self, engine, factory, redis_mock):
        redis_mock.publish.side_effect = ConnectionError("redis down")
        user_id = await factory.user()
        dest_id = await factory.destination(points_reward=50)

        result = await engine.validate_and_record_checkin(user_id, dest_id, AT_ORIGIN, "gps")

        assert result.ledger_entry.balance_after == 50
        assert await engine.current_balance(user_id) == 50

    @pytest.mark.asyncio
    async def test_append_publishes_ledger_changed(self, engine, factory, redis_mock):
        user_id = await factory.user()

        entry = await engine.append_ledger_entry(user_id, 25, "adjustment", description="Goodwill")

        channel, payload = redis_mock.publish.await_args.args
        assert channel == "pubsub:loyalty:ledger_changed"
        assert json.loads(payload)["entry_id"] == entry.id
