"""Default badge catalog."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import Badge

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Visits
    {
        "slug": "first_steps",
        "name": "First Steps",
        "description": "Check in at your first destination",
        "requirement_type": "visits",
        "requirement_value": 1,
        "points_reward": 10,
        "rarity": "common",
        "display_order": 1,
    },
    {
        "slug": "regular",
        "name": "Regular",
        "description": "Make 5 verified check-ins",
        "requirement_type": "visits",
        "requirement_value": 5,
        "points_reward": 20,
        "rarity": "common",
        "display_order": 2,
    },
    {
        "slug": "road_warrior",
        "name": "Road Warrior",
        "description": "Make 50 verified check-ins",
        "requirement_type": "visits",
        "requirement_value": 50,
        "points_reward": 150,
        "rarity": "rare",
        "display_order": 3,
    },
    # Unique destinations
    {
        "slug": "explorer",
        "name": "Explorer",
        "description": "Visit 10 different destinations",
        "requirement_type": "checkins",
        "requirement_value": 10,
        "points_reward": 75,
        "rarity": "rare",
        "display_order": 4,
    },
    {
        "slug": "cartographer",
        "name": "Cartographer",
        "description": "Visit 50 different destinations",
        "requirement_type": "checkins",
        "requirement_value": 50,
        "points_reward": 300,
        "rarity": "epic",
        "display_order": 5,
    },
    # Categories
    {
        "slug": "variety_seeker",
        "name": "Variety Seeker",
        "description": "Check in at destinations from 3 categories",
        "requirement_type": "categories",
        "requirement_value": 3,
        "points_reward": 50,
        "rarity": "common",
        "display_order": 6,
    },
    {
        "slug": "renaissance",
        "name": "Renaissance Traveler",
        "description": "Check in at destinations from 8 categories",
        "requirement_type": "categories",
        "requirement_value": 8,
        "points_reward": 200,
        "rarity": "epic",
        "display_order": 7,
    },
    # Points
    {
        "slug": "points_500",
        "name": "Point Collector",
        "description": "Earn 500 points",
        "requirement_type": "points",
        "requirement_value": 500,
        "points_reward": 0,
        "rarity": "common",
        "display_order": 8,
    },
    {
        "slug": "points_5000",
        "name": "High Roller",
        "description": "Earn 5,000 points",
        "requirement_type": "points",
        "requirement_value": 5000,
        "points_reward": 0,
        "rarity": "epic",
        "display_order": 9,
    },
    # Hidden
    {
        "slug": "night_owl",
        "name": "Night Owl",
        "description": "A secret badge for the truly dedicated",
        "requirement_type": "visits",
        "requirement_value": 100,
        "points_reward": 250,
        "rarity": "legendary",
        "is_hidden": True,
        "display_order": 10,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Insert missing badge definitions and refresh existing ones by slug.

    Returns the number of definitions written. Runs inside the caller's
    transaction.
    """
    existing = {
        badge.slug: badge
        for badge in (
            await db.execute(select(Badge).where(Badge.slug.in_([b["slug"] for b in BADGE_SEED_DATA])))
        ).scalars()
    }

    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        badge = existing.get(badge_data["slug"])
        if badge is None:
            db.add(Badge(**badge_data))
        else:
            for field, value in badge_data.items():
                setattr(badge, field, value)
        seeded += 1

    await db.flush()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
