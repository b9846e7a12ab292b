"""Append-only points ledger with a denormalized running balance.

Every balance change goes through ``_apply_delta``: an atomic
``UPDATE users SET total_points = total_points + :delta ... RETURNING`` that
row-locks the user until the surrounding transaction ends, followed by the
insert of the ledger entry carrying the returned balance. Both writes share the
caller's transaction, so a reader never sees one without the other and
concurrent appends for the same user are serialized on the user row only.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import PointsLedgerEntry, User
from loyalty.errors import ConsistencyViolation, InsufficientPointsError, UserNotFoundError, ValidationError
from loyalty.gamification.level_thresholds import compute_level
from loyalty.ledger.schemas import LedgerEntry, LedgerPage, LedgerSource, ReconciliationReport

logger = structlog.get_logger()


async def get_balance(db: AsyncSession, user_id: int) -> int:
    """Return the denormalized ``total_points`` for a user."""
    result = await db.execute(select(User.total_points).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return balance


async def _apply_delta(
    db: AsyncSession,
    user_id: int,
    delta: int,
    floor: int | None = None,
) -> int:
    """Atomically move the user's balance by ``delta`` and return the new balance.

    With ``floor`` set, the update only applies when the resulting balance stays
    at or above it.
    """
    stmt = update(User).where(User.id == user_id)
    if floor is not None:
        stmt = stmt.where(User.total_points + delta >= floor)
    stmt = (
        stmt.values(total_points=User.total_points + delta)
        .returning(User.total_points, User.level)
        .execution_options(synchronize_session=False)
    )
    row = (await db.execute(stmt)).one_or_none()

    if row is None:
        # Either the user is missing or the floor check rejected the update.
        available = await get_balance(db, user_id)
        raise InsufficientPointsError(required=-delta, available=available)

    balance, level = row
    if delta > 0:
        new_level = compute_level(balance)["level"]
        if new_level > level:
            await db.execute(
                update(User)
                .where(User.id == user_id, User.level < new_level)
                .values(level=new_level)
                .execution_options(synchronize_session=False)
            )
            logger.info("level_up", user_id=user_id, old_level=level, new_level=new_level)
    return balance


async def _insert_entry(
    db: AsyncSession,
    user_id: int,
    delta: int,
    balance_after: int,
    source_type: str,
    source_id: str | int | None,
    description: str | None,
    occurred_at: datetime | None,
) -> LedgerEntry:
    entry = PointsLedgerEntry(
        user_id=user_id,
        delta=delta,
        balance_after=balance_after,
        source_type=getattr(source_type, "value", source_type),
        source_id=str(source_id) if source_id is not None else None,
        description=description,
        occurred_at=occurred_at or datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    return LedgerEntry.model_validate(entry)


async def append_entry(
    db: AsyncSession,
    user_id: int,
    delta: int,
    source_type: str,
    source_id: str | int | None = None,
    description: str | None = None,
    occurred_at: datetime | None = None,
) -> LedgerEntry:
    """Append a ledger entry and move ``users.total_points`` with it.

    Runs inside the caller's transaction and does not commit. Negative deltas
    are allowed; balance floors belong to the redemption flow.
    """
    if delta == 0:
        raise ValidationError("Ledger delta must be non-zero")

    balance_after = await _apply_delta(db, user_id, delta)
    entry = await _insert_entry(
        db, user_id, delta, balance_after, source_type, source_id, description, occurred_at
    )
    logger.info(
        "ledger_entry_appended",
        user_id=user_id,
        entry_id=entry.id,
        delta=delta,
        balance_after=balance_after,
        source_type=entry.source_type,
        source_id=entry.source_id,
    )
    return entry


async def redeem_points(
    db: AsyncSession,
    user_id: int,
    amount: int,
    source_id: str | int | None = None,
    description: str | None = None,
) -> LedgerEntry:
    """Spend points for a reward redemption without going below zero."""
    if amount <= 0:
        raise ValidationError("Redemption amount must be positive")

    balance_after = await _apply_delta(db, user_id, -amount, floor=0)
    entry = await _insert_entry(
        db, user_id, -amount, balance_after, LedgerSource.REWARD_REDEMPTION, source_id, description, None
    )
    logger.info("points_redeemed", user_id=user_id, amount=amount, balance_after=balance_after)
    return entry


async def get_ledger(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    max_limit: int = 100,
) -> LedgerPage:
    """Return a page of the user's ledger, newest first."""
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)

    total = (
        await db.execute(select(func.count()).select_from(PointsLedgerEntry).where(PointsLedgerEntry.user_id == user_id))
    ).scalar_one()
    result = await db.execute(
        select(PointsLedgerEntry)
        .where(PointsLedgerEntry.user_id == user_id)
        .order_by(PointsLedgerEntry.id.desc())
        .limit(limit)
        .offset(offset)
    )
    entries = [LedgerEntry.model_validate(row) for row in result.scalars()]
    return LedgerPage(entries=entries, total=total, limit=limit, offset=offset)


async def reconcile_balance(db: AsyncSession, user_id: int) -> ReconciliationReport:
    """Replay the ledger and compare it with the denormalized balance.

    Raises ``ConsistencyViolation`` when a ``balance_after`` link breaks the
    running sum or the final sum differs from ``total_points``.
    """
    total_points = await get_balance(db, user_id)

    result = await db.execute(
        select(PointsLedgerEntry.id, PointsLedgerEntry.delta, PointsLedgerEntry.balance_after)
        .where(PointsLedgerEntry.user_id == user_id)
        .order_by(PointsLedgerEntry.id.asc())
    )
    running = 0
    count = 0
    for entry_id, delta, balance_after in result:
        running += delta
        count += 1
        if balance_after != running:
            logger.error(
                "ledger_chain_broken",
                user_id=user_id,
                entry_id=entry_id,
                expected=running,
                recorded=balance_after,
            )
            raise ConsistencyViolation(
                f"Ledger entry {entry_id} for user {user_id} records balance {balance_after}, expected {running}"
            )

    if running != total_points:
        logger.error("ledger_balance_mismatch", user_id=user_id, ledger_sum=running, total_points=total_points)
        raise ConsistencyViolation(
            f"User {user_id} total_points={total_points} but ledger sums to {running}"
        )

    return ReconciliationReport(
        user_id=user_id,
        total_points=total_points,
        ledger_sum=running,
        entry_count=count,
    )
