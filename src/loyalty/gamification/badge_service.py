"""Badge award coordinator with compare-and-set duplicate prevention."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import Badge, UserBadge
from loyalty.db.unit_of_work import UnitOfWork
from loyalty.events import BadgeAwarded, EventPublisher, LedgerChanged, LoyaltyEvent
from loyalty.gamification.requirements import evaluate_badge, progress_percent
from loyalty.gamification.schemas import AwardedBadge, BadgeDefinition, BadgeProgress
from loyalty.ledger.schemas import LedgerEntry, LedgerSource
from loyalty.ledger.service import append_entry, get_balance

logger = structlog.get_logger()


async def get_candidate_badges(db: AsyncSession, user_id: int) -> list[BadgeDefinition]:
    """Active badges the user has not earned yet."""
    earned = select(UserBadge.badge_id).where(
        UserBadge.user_id == user_id,
        UserBadge.is_earned.is_(True),
    )
    result = await db.execute(
        select(Badge)
        .where(Badge.is_active.is_(True), Badge.id.not_in(earned))
        .order_by(Badge.display_order, Badge.id)
    )
    return [BadgeDefinition.model_validate(badge) for badge in result.scalars()]


async def record_progress(db: AsyncSession, user_id: int, badge_id: int, value: int) -> None:
    """Create the progress row on first evaluation, then keep it current.

    Earned rows are never touched. A concurrent first evaluation surfaces as
    ``IntegrityError`` on the unique (user_id, badge_id) pair.
    """
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(UserBadge)
        .where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
            UserBadge.is_earned.is_(False),
        )
        .values(progress=value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return

    exists = await db.execute(
        select(UserBadge.id).where(UserBadge.user_id == user_id, UserBadge.badge_id == badge_id)
    )
    if exists.scalar_one_or_none() is not None:
        return  # already earned

    db.add(
        UserBadge(
            user_id=user_id,
            badge_id=badge_id,
            progress=value,
            is_earned=False,
            points_awarded=0,
            updated_at=now,
        )
    )
    await db.flush()


async def award_badge(
    db: AsyncSession,
    user_id: int,
    badge: BadgeDefinition,
    now: datetime | None = None,
) -> tuple[AwardedBadge, LedgerEntry | None] | None:
    """Mark the badge earned and credit its reward, exactly once.

    The earned flag is flipped with a conditional update on ``is_earned =
    false``; a caller that affects no row lost the race and credits nothing.
    Runs inside the caller's transaction so the flag and the ledger entry
    commit or roll back together.
    """
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(UserBadge)
        .where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge.id,
            UserBadge.is_earned.is_(False),
        )
        .values(
            is_earned=True,
            earned_at=now,
            progress=badge.requirement_value,
            points_awarded=badge.points_reward,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("badge_award_skipped", user_id=user_id, badge_id=badge.id)
        return None

    entry = None
    if badge.points_reward > 0:
        entry = await append_entry(
            db,
            user_id=user_id,
            delta=badge.points_reward,
            source_type=LedgerSource.BADGE,
            source_id=badge.id,
            description=f"Earned badge: {badge.name}",
            occurred_at=now,
        )

    logger.info("badge_awarded", user_id=user_id, badge_id=badge.id, slug=badge.slug, points=badge.points_reward)
    awarded = AwardedBadge(
        badge_id=badge.id,
        slug=badge.slug,
        name=badge.name,
        rarity=badge.rarity,
        points_awarded=badge.points_reward,
        earned_at=now,
    )
    return awarded, entry


async def _evaluate_one(
    uow: UnitOfWork,
    user_id: int,
    badge: BadgeDefinition,
) -> tuple[AwardedBadge, LedgerEntry | None] | None:
    """Evaluate and possibly award one badge in its own transaction."""
    for attempt in (1, 2):
        try:
            async with uow.transaction() as db:
                evaluation = await evaluate_badge(db, user_id, badge)
                await record_progress(db, user_id, badge.id, evaluation.current_value)
                if not evaluation.is_complete:
                    return None
                return await award_badge(db, user_id, badge)
        except IntegrityError:
            if attempt == 2:
                raise
            logger.info("badge_progress_create_race", user_id=user_id, badge_id=badge.id)
    return None


async def evaluate_and_award_badges(
    uow: UnitOfWork,
    user_id: int,
    publisher: EventPublisher | None = None,
) -> list[AwardedBadge]:
    """Score every unearned active badge for the user and award the completed ones.

    Returns the badges newly earned in this pass. Running it again for a user
    holding every eligible badge is a no-op.
    """
    async with uow.read() as db:
        await get_balance(db, user_id)  # raises UserNotFoundError
        badges = await get_candidate_badges(db, user_id)

    awarded: list[AwardedBadge] = []
    for badge in badges:
        outcome = await _evaluate_one(uow, user_id, badge)
        if outcome is None:
            continue

        badge_awarded, entry = outcome
        awarded.append(badge_awarded)
        if publisher is not None:
            events: list[LoyaltyEvent] = [
                BadgeAwarded(
                    user_id=user_id,
                    badge_id=badge_awarded.badge_id,
                    slug=badge_awarded.slug,
                    points_awarded=badge_awarded.points_awarded,
                )
            ]
            if entry is not None:
                events.append(
                    LedgerChanged(
                        user_id=user_id,
                        entry_id=entry.id,
                        delta=entry.delta,
                        balance_after=entry.balance_after,
                        source_type=entry.source_type,
                        source_id=entry.source_id,
                    )
                )
            await publisher.publish_all(events)

    if awarded:
        logger.info("badges_awarded", user_id=user_id, slugs=[b.slug for b in awarded])
    return awarded


async def get_progress(db: AsyncSession, user_id: int) -> list[BadgeProgress]:
    """Progress rows for profile display. Hidden badges show up once earned."""
    result = await db.execute(
        select(UserBadge, Badge)
        .join(Badge, Badge.id == UserBadge.badge_id)
        .where(UserBadge.user_id == user_id)
        .order_by(Badge.display_order, Badge.id)
    )

    progress: list[BadgeProgress] = []
    for row, badge in result.tuples():
        if badge.is_hidden and not row.is_earned:
            continue
        progress.append(
            BadgeProgress(
                badge_id=badge.id,
                slug=badge.slug,
                name=badge.name,
                requirement_type=badge.requirement_type,
                requirement_value=badge.requirement_value,
                progress=row.progress,
                progress_percent=100 if row.is_earned else progress_percent(row.progress, badge.requirement_value),
                is_earned=row.is_earned,
                earned_at=row.earned_at,
                points_awarded=row.points_awarded,
            )
        )
    return progress
