"""Badge requirement evaluator.

Each ``RequirementType`` member maps to exactly one resolver that returns the
user's current value for that metric. Evaluation only reads; persisting the
result is the award coordinator's job.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import pydantic
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import CheckIn, Destination, PointsLedgerEntry
from loyalty.errors import MalformedRuleError
from loyalty.gamification.schemas import (
    BadgeDefinition,
    BadgeEvaluation,
    CategoryRule,
    CityRule,
    CustomRule,
    DestinationIdsRule,
    RequirementType,
)

logger = structlog.get_logger()

# Precedence when a payload carries several keys: first match wins.
CUSTOM_RULE_PRECEDENCE: tuple[tuple[str, type[pydantic.BaseModel]], ...] = (
    ("destination_ids", DestinationIdsRule),
    ("city", CityRule),
    ("category_id", CategoryRule),
)


def parse_custom_rule(details: Any) -> CustomRule | None:
    """Interpret a custom requirement payload.

    Returns None for an empty or unrecognized payload. Raises
    ``MalformedRuleError`` when the first recognized key holds a value of the
    wrong shape.
    """
    if not details:
        return None
    if not isinstance(details, dict):
        raise MalformedRuleError(f"Custom rule payload must be an object, got {type(details).__name__}")

    for key, model in CUSTOM_RULE_PRECEDENCE:
        if details.get(key) is None:
            continue
        try:
            return model.model_validate({key: details[key]})  # type: ignore[return-value]
        except pydantic.ValidationError as exc:
            raise MalformedRuleError(f"Invalid value for custom rule key {key!r}: {details[key]!r}") from exc
    return None


def progress_percent(current_value: int, requirement_value: int) -> int:
    """floor(current / required * 100) capped at 100; 0 when nothing is required."""
    if requirement_value <= 0:
        return 0
    return min(100, (current_value * 100) // requirement_value)


def _verified_checkins(user_id: int) -> tuple:
    return (CheckIn.user_id == user_id, CheckIn.verified.is_(True))


async def _scalar_int(db: AsyncSession, stmt: Any) -> int:
    return int((await db.execute(stmt)).scalar() or 0)


async def _count_visits(db: AsyncSession, user_id: int, _badge: BadgeDefinition) -> int:
    return await _scalar_int(
        db, select(func.count()).select_from(CheckIn).where(*_verified_checkins(user_id))
    )


async def _sum_earned_points(db: AsyncSession, user_id: int, _badge: BadgeDefinition) -> int:
    # Spending does not reduce lifetime earnings.
    return await _scalar_int(
        db,
        select(func.coalesce(func.sum(PointsLedgerEntry.delta), 0)).where(
            PointsLedgerEntry.user_id == user_id,
            PointsLedgerEntry.delta > 0,
        ),
    )


async def _count_unique_destinations(db: AsyncSession, user_id: int, _badge: BadgeDefinition) -> int:
    return await _scalar_int(
        db,
        select(func.count(func.distinct(CheckIn.destination_id))).where(*_verified_checkins(user_id)),
    )


async def _count_unique_categories(db: AsyncSession, user_id: int, _badge: BadgeDefinition) -> int:
    return await _scalar_int(
        db,
        select(func.count(func.distinct(Destination.category_id)))
        .select_from(CheckIn)
        .join(Destination, Destination.id == CheckIn.destination_id)
        .where(*_verified_checkins(user_id)),
    )


async def _count_custom(db: AsyncSession, user_id: int, badge: BadgeDefinition) -> int:
    rule = parse_custom_rule(badge.requirement_details)
    if rule is None:
        return 0

    stmt = select(func.count()).select_from(CheckIn).where(*_verified_checkins(user_id))
    if isinstance(rule, DestinationIdsRule):
        if not rule.destination_ids:
            return 0
        stmt = stmt.where(CheckIn.destination_id.in_(rule.destination_ids))
    elif isinstance(rule, CityRule):
        stmt = stmt.join(Destination, Destination.id == CheckIn.destination_id).where(Destination.city == rule.city)
    else:
        stmt = stmt.join(Destination, Destination.id == CheckIn.destination_id).where(
            Destination.category_id == rule.category_id
        )
    return await _scalar_int(db, stmt)


Resolver = Callable[[AsyncSession, int, BadgeDefinition], Awaitable[int]]

RESOLVERS: dict[RequirementType, Resolver] = {
    RequirementType.VISITS: _count_visits,
    RequirementType.POINTS: _sum_earned_points,
    RequirementType.CHECKINS: _count_unique_destinations,
    RequirementType.CATEGORIES: _count_unique_categories,
    RequirementType.CUSTOM: _count_custom,
}

_unmapped = set(RequirementType) - set(RESOLVERS)
if _unmapped:
    raise RuntimeError(f"Requirement types without a resolver: {sorted(t.value for t in _unmapped)}")


async def current_value(db: AsyncSession, user_id: int, badge: BadgeDefinition) -> int:
    """Current metric value for the badge's requirement type.

    Unknown requirement types and malformed custom payloads evaluate to 0 so a
    single bad definition cannot block the rest of the pass.
    """
    try:
        requirement = RequirementType(badge.requirement_type)
    except ValueError:
        logger.warning("unknown_requirement_type", badge_id=badge.id, requirement_type=badge.requirement_type)
        return 0

    try:
        return await RESOLVERS[requirement](db, user_id, badge)
    except MalformedRuleError:
        logger.warning("malformed_custom_rule", badge_id=badge.id, details=badge.requirement_details, exc_info=True)
        return 0


async def evaluate_badge(
    db: AsyncSession,
    user_id: int,
    badge: BadgeDefinition,
    already_earned: bool = False,
) -> BadgeEvaluation:
    """Score one badge for one user."""
    value = await current_value(db, user_id, badge)
    return BadgeEvaluation(
        badge_id=badge.id,
        current_value=value,
        progress_percent=progress_percent(value, badge.requirement_value),
        is_complete=value >= badge.requirement_value and not already_earned,
    )
