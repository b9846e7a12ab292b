"""Badge catalog seeding tests."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select, update

from loyalty.db.models import Badge
from loyalty.gamification.requirements import RESOLVERS
from loyalty.gamification.schemas import RequirementType
from loyalty.gamification.seed import BADGE_SEED_DATA, seed_badges


class TestSeedData:
    def test_slugs_unique(self):
        slugs = [b["slug"] for b in BADGE_SEED_DATA]
        assert len(slugs) == len(set(slugs))

    def test_requirement_types_are_known(self):
        for badge in BADGE_SEED_DATA:
            assert RequirementType(badge["requirement_type"]) in RESOLVERS


class TestSeedBadges:
    @pytest.mark.asyncio
    async def test_idempotent(self, uow, session_factory):
        async with uow.transaction() as db:
            await seed_badges(db)
        async with uow.transaction() as db:
            seeded = await seed_badges(db)

        assert seeded == len(BADGE_SEED_DATA)
        async with session_factory() as db:
            count = (await db.execute(select(func.count()).select_from(Badge))).scalar_one()
        assert count == len(BADGE_SEED_DATA)

    @pytest.mark.asyncio
    async def test_refreshes_existing_definitions(self, uow, session_factory):
        async with uow.transaction() as db:
            await seed_badges(db)
        async with session_factory() as db:
            await db.execute(update(Badge).where(Badge.slug == "regular").values(points_reward=999))
            await db.commit()

        async with uow.transaction() as db:
            await seed_badges(db)

        async with session_factory() as db:
            badge = (await db.execute(select(Badge).where(Badge.slug == "regular"))).scalar_one()
        assert badge.points_reward == 20

    @pytest.mark.asyncio
    async def test_seeded_catalog_awards(self, uow, engine, factory):
        async with uow.transaction() as db:
            await seed_badges(db)
        user_id = await factory.user()
        await factory.checkin(user_id, await factory.destination())

        awarded = await engine.evaluate_and_award_badges(user_id)

        assert [b.slug for b in awarded] == ["first_steps"]
        assert await engine.current_balance(user_id) == 10
