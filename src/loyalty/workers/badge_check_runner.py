"""Re-evaluate badges for one user or for every user.

Usage: python -m loyalty.workers.badge_check_runner [--seed] [user_id]
"""

from __future__ import annotations

import asyncio
import logging
import sys

from sqlalchemy import select

from loyalty.config import get_settings
from loyalty.database import close_db, get_session_factory, init_db
from loyalty.db.models import User
from loyalty.engine import LoyaltyEngine
from loyalty.errors import UserNotFoundError
from loyalty.events import EventPublisher
from loyalty.gamification.level_thresholds import compute_level
from loyalty.gamification.seed import seed_badges
from loyalty.logging_config import setup_logging
from loyalty.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


async def check_user(engine: LoyaltyEngine, user_id: int) -> int:
    """Run the award pass for one user and log the outcome."""
    balance = await engine.current_balance(user_id)
    level = compute_level(balance)
    if level["next_level"] > level["level"]:
        progress = f"{level['points_for_level'] - level['points_into_level']} pts to {level['next_title']}"
    else:
        progress = "max level"
    logger.info(
        "Checking badges for user %s (total points: %s, level %d %s, %s)",
        user_id,
        balance,
        level["level"],
        level["title"],
        progress,
    )

    awarded = await engine.evaluate_and_award_badges(user_id)
    if awarded:
        for badge in awarded:
            logger.info("  awarded %s (+%d pts)", badge.name, badge.points_awarded)
    else:
        logger.info("  no new badges")
    return len(awarded)


async def check_all_users(engine: LoyaltyEngine) -> int:
    """Run the award pass for every user. Returns the number of badges awarded."""
    async with engine.uow.read() as db:
        user_ids = list((await db.execute(select(User.id).order_by(User.id))).scalars())

    total = 0
    for user_id in user_ids:
        total += await check_user(engine, user_id)
    logger.info("Checked %d users, awarded %d badges", len(user_ids), total)
    return total


async def main(argv: list[str]) -> int:
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    engine = LoyaltyEngine(
        get_session_factory(),
        publisher=EventPublisher(get_redis(), settings.events_channel_prefix),
        settings=settings,
    )
    try:
        if argv and argv[0] == "--seed":
            async with engine.uow.transaction() as db:
                await seed_badges(db)
            argv = argv[1:]

        if argv:
            try:
                await check_user(engine, int(argv[0]))
            except UserNotFoundError:
                logger.error("User with ID %s not found.", argv[0])
                return 1
        else:
            await check_all_users(engine)
    finally:
        await close_redis()
        await close_db()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
