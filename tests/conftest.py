"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from loyalty.config import Settings
from loyalty.db import models  # noqa: F401
from loyalty.db.base import Base
from loyalty.db.models import Badge, CheckIn, Destination, PointsLedgerEntry, User, UserBadge
from loyalty.db.unit_of_work import UnitOfWork
from loyalty.engine import LoyaltyEngine
from loyalty.events import EventPublisher

# Times Square; offsets in tests are measured from here.
ORIGIN_LAT = 40.7580
ORIGIN_LON = -73.9855


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database per test with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'loyalty.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def uow(session_factory) -> UnitOfWork:
    return UnitOfWork(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings(checkin_timezone="UTC", default_visit_radius_meters=100, transient_retry_attempts=3)


@pytest.fixture
def redis_mock() -> AsyncMock:
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def engine(session_factory, redis_mock, settings) -> LoyaltyEngine:
    return LoyaltyEngine(
        session_factory,
        publisher=EventPublisher(redis_mock, settings.events_channel_prefix),
        settings=settings,
    )


class Factory:
    """Inserts rows directly, bypassing the engine."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _add(self, row: Any) -> int:
        async with self.session_factory() as db:
            db.add(row)
            await db.commit()
            return row.id

    async def user(self, display_name: str = "traveler") -> int:
        return await self._add(User(display_name=display_name, total_points=0, level=1))

    async def destination(self, **overrides: Any) -> int:
        fields: dict[str, Any] = {
            "name": "Times Square",
            "latitude": ORIGIN_LAT,
            "longitude": ORIGIN_LON,
            "visit_radius_meters": 100,
            "qr_code": None,
            "category_id": None,
            "city": None,
            "points_reward": 50,
            "bonus_multiplier": 1.0,
            "bonus_ends_at": None,
            "is_active": True,
        }
        fields.update(overrides)
        return await self._add(Destination(**fields))

    async def badge(self, slug: str, **overrides: Any) -> int:
        fields: dict[str, Any] = {
            "slug": slug,
            "name": slug.replace("_", " ").title(),
            "description": "",
            "requirement_type": "visits",
            "requirement_value": 1,
            "requirement_details": None,
            "points_reward": 0,
            "rarity": "common",
            "is_active": True,
            "is_hidden": False,
            "display_order": 0,
        }
        fields.update(overrides)
        return await self._add(Badge(**fields))

    async def checkin(self, user_id: int, destination_id: int, day: date | None = None) -> int:
        """A verified zero-point check-in without a ledger entry."""
        day = day or date(2026, 1, 1)
        return await self._add(
            CheckIn(
                user_id=user_id,
                destination_id=destination_id,
                method="manual",
                points_earned=0,
                bonus_points=0,
                verified=True,
                checked_in_at=datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc),
                checkin_date=day,
            )
        )

    async def ledger_count(self, user_id: int) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count()).select_from(PointsLedgerEntry).where(PointsLedgerEntry.user_id == user_id)
            )
            return result.scalar_one()

    async def user_badge(self, user_id: int, badge_id: int) -> UserBadge | None:
        async with self.session_factory() as db:
            result = await db.execute(
                select(UserBadge).where(UserBadge.user_id == user_id, UserBadge.badge_id == badge_id)
            )
            return result.scalar_one_or_none()


@pytest.fixture
def factory(session_factory) -> Factory:
    return Factory(session_factory)
