"""Badge re-check runner tests."""

from __future__ import annotations

import logging
from datetime import date

import pytest

from loyalty.workers.badge_check_runner import check_all_users, check_user


class TestBadgeCheckRunner:
    @pytest.mark.asyncio
    async def test_check_user(self, engine, factory):
        user_id = await factory.user()
        await factory.badge("first_steps", points_reward=10)
        await factory.checkin(user_id, await factory.destination())

        assert await check_user(engine, user_id) == 1
        assert await check_user(engine, user_id) == 0

    @pytest.mark.asyncio
    async def test_check_all_users(self, engine, factory):
        dest_id = await factory.destination()
        await factory.badge("first_steps")
        active = await factory.user("active")
        idle = await factory.user("idle")
        await factory.checkin(active, dest_id, date(2026, 2, 1))

        assert await check_all_users(engine) == 1
        assert [p.is_earned for p in await engine.get_progress(active)] == [True]
        assert [p.is_earned for p in await engine.get_progress(idle)] == [False]

    @pytest.mark.asyncio
    async def test_logs_level_progress(self, engine, factory, caplog):
        caplog.set_level(logging.INFO, logger="loyalty.workers.badge_check_runner")
        user_id = await factory.user()
        await engine.append_ledger_entry(user_id, 150, "adjustment")

        await check_user(engine, user_id)

        assert "level 2 Day Tripper, 150 pts to Trail Finder" in caplog.text

    @pytest.mark.asyncio
    async def test_logs_max_level(self, engine, factory, caplog):
        caplog.set_level(logging.INFO, logger="loyalty.workers.badge_check_runner")
        user_id = await factory.user()
        await engine.append_ledger_entry(user_id, 30000, "adjustment")

        await check_user(engine, user_id)

        assert "level 10 Legend of the Road, max level" in caplog.text
