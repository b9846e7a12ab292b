"""Loyalty engine facade: the entry points used by controllers and workers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.checkins.schemas import CheckInMethod, CheckInRecord, CheckInResult, Coordinates
from loyalty.checkins.service import get_destination, record_checkin
from loyalty.config import Settings, get_settings
from loyalty.db.unit_of_work import UnitOfWork
from loyalty.errors import TransientStorageError
from loyalty.events import CheckInRecorded, EventPublisher, LedgerChanged, LoyaltyEvent
from loyalty.gamification import badge_service
from loyalty.gamification.schemas import AwardedBadge, BadgeProgress
from loyalty.ledger import service as ledger_service
from loyalty.ledger.schemas import LedgerEntry, LedgerPage, ReconciliationReport

logger = structlog.get_logger()

T = TypeVar("T")


def _ledger_event(entry: LedgerEntry) -> LedgerChanged:
    return LedgerChanged(
        user_id=entry.user_id,
        entry_id=entry.id,
        delta=entry.delta,
        balance_after=entry.balance_after,
        source_type=entry.source_type,
        source_id=entry.source_id,
    )


class LoyaltyEngine:
    """Check-in validation, points ledger and badge awards for one database."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.uow = UnitOfWork(session_factory)
        self.publisher = publisher or EventPublisher(None, self.settings.events_channel_prefix)

    async def _with_retry(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Re-run ``fn`` from the top on transient storage failures."""
        attempts = max(1, self.settings.transient_retry_attempts)
        attempt = 1
        while True:
            try:
                return await fn()
            except TransientStorageError:
                if attempt >= attempts:
                    raise
                logger.warning("operation_retry", operation=operation, attempt=attempt)
                attempt += 1

    # --- Check-ins ---

    async def validate_and_record_checkin(
        self,
        user_id: int,
        destination_id: int,
        coords: Coordinates | None,
        method: CheckInMethod | str,
        token: str | None = None,
    ) -> CheckInResult:
        """Validate a check-in, credit its points and run the badge pass."""

        async def _record() -> tuple[CheckInRecord, LedgerEntry | None]:
            async with self.uow.transaction() as db:
                destination = await get_destination(db, destination_id)
                return await record_checkin(
                    db,
                    user_id=user_id,
                    destination=destination,
                    method=method,
                    coords=coords,
                    token=token,
                    checkin_timezone=self.settings.checkin_timezone,
                    default_radius_meters=self.settings.default_visit_radius_meters,
                )

        checkin, entry = await self._with_retry("checkin", _record)

        events: list[LoyaltyEvent] = [
            CheckInRecorded(
                user_id=user_id,
                checkin_id=checkin.id,
                destination_id=checkin.destination_id,
                points=checkin.total_points,
            )
        ]
        if entry is not None:
            events.append(_ledger_event(entry))
        await self.publisher.publish_all(events)

        new_badges = await self.evaluate_and_award_badges(user_id)
        return CheckInResult(checkin=checkin, ledger_entry=entry, new_badges=new_badges)

    # --- Ledger ---

    async def append_ledger_entry(
        self,
        user_id: int,
        delta: int,
        source_type: str,
        source_id: str | int | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """Append one entry and move the user's balance in the same transaction."""
        async with self.uow.transaction() as db:
            entry = await ledger_service.append_entry(
                db,
                user_id=user_id,
                delta=delta,
                source_type=source_type,
                source_id=source_id,
                description=description,
            )
        await self.publisher.publish(_ledger_event(entry))
        return entry

    async def redeem_points(
        self,
        user_id: int,
        amount: int,
        source_id: str | int | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """Spend points for a reward; the balance never drops below zero."""
        async with self.uow.transaction() as db:
            entry = await ledger_service.redeem_points(
                db, user_id=user_id, amount=amount, source_id=source_id, description=description
            )
        await self.publisher.publish(_ledger_event(entry))
        return entry

    async def current_balance(self, user_id: int) -> int:
        async with self.uow.read() as db:
            return await ledger_service.get_balance(db, user_id)

    async def ledger_history(self, user_id: int, limit: int = 50, offset: int = 0) -> LedgerPage:
        async with self.uow.read() as db:
            return await ledger_service.get_ledger(
                db, user_id, limit=limit, offset=offset, max_limit=self.settings.ledger_page_max
            )

    async def reconcile_balance(self, user_id: int) -> ReconciliationReport:
        async with self.uow.read() as db:
            return await ledger_service.reconcile_balance(db, user_id)

    # --- Badges ---

    async def evaluate_and_award_badges(self, user_id: int) -> list[AwardedBadge]:
        """Single entry point after any ledger-affecting action."""
        return await self._with_retry(
            "evaluate_badges",
            lambda: badge_service.evaluate_and_award_badges(self.uow, user_id, self.publisher),
        )

    async def get_progress(self, user_id: int) -> list[BadgeProgress]:
        async with self.uow.read() as db:
            return await badge_service.get_progress(db, user_id)
