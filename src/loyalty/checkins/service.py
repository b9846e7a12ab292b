"""Geofenced check-in validation and recording.

The daily limit (one verified check-in per user, destination and calendar
day) is enforced by the ``uq_checkins_user_destination_day`` constraint. The
validator never pre-checks it: two racing requests are serialized by the
database and the loser's unique violation becomes ``DuplicateCheckInError``.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.checkins.geofence import haversine_meters, validate_coordinates, within_radius
from loyalty.checkins.schemas import CheckInMethod, CheckInRecord, Coordinates, DestinationInfo
from loyalty.db.models import DAILY_CHECKIN_CONSTRAINT, CheckIn, Destination
from loyalty.errors import (
    DestinationNotFoundError,
    DuplicateCheckInError,
    InvalidCoordinatesError,
    InvalidQRTokenError,
    OutOfRangeError,
    ValidationError,
)
from loyalty.ledger.schemas import LedgerEntry, LedgerSource
from loyalty.ledger.service import append_entry, get_balance

logger = structlog.get_logger()


async def get_destination(db: AsyncSession, destination_id: int) -> DestinationInfo:
    """Load an active destination snapshot."""
    result = await db.execute(
        select(Destination).where(
            Destination.id == destination_id,
            Destination.is_active.is_(True),
        )
    )
    destination = result.scalar_one_or_none()
    if destination is None:
        raise DestinationNotFoundError(f"Destination {destination_id} not found or inactive")
    return DestinationInfo.model_validate(destination)


def qr_token_matches(token: str | None, expected: str | None) -> bool:
    """Trimmed, case-insensitive comparison."""
    if not token or not expected:
        return False
    return token.strip().lower() == expected.strip().lower()


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def compute_checkin_points(destination: DestinationInfo, now: datetime) -> tuple[int, int]:
    """Return (base points, bonus points) for a check-in made at ``now``."""
    base = max(destination.points_reward, 0)
    multiplier = destination.bonus_multiplier
    bonus_active = multiplier > 1 and (
        destination.bonus_ends_at is None or _as_utc(now) < _as_utc(destination.bonus_ends_at)
    )
    # str() keeps the multiplier as written: 1.2 - 1 is 0.1999... in binary floats.
    bonus = math.floor(Decimal(base) * (Decimal(str(multiplier)) - 1)) if bonus_active else 0
    return base, bonus


def calendar_day(moment: datetime, tz_name: str = "UTC") -> date:
    """Calendar day of ``moment`` in the configured check-in timezone."""
    return _as_utc(moment).astimezone(ZoneInfo(tz_name)).date()


def validate_checkin(
    destination: DestinationInfo,
    method: CheckInMethod | str,
    coords: Coordinates | None,
    token: str | None = None,
    default_radius_meters: int = 100,
) -> float | None:
    """Check a request against the destination. Returns the distance in meters.

    QR check-ins must carry the destination's code; their geofence is checked
    only when coordinates are supplied. GPS and manual check-ins require
    coordinates.
    """
    try:
        method = CheckInMethod(method)
    except ValueError as exc:
        raise ValidationError(f"Unknown check-in method: {method!r}") from exc

    if method is CheckInMethod.QR_CODE:
        if not qr_token_matches(token, destination.qr_code):
            raise InvalidQRTokenError("Invalid QR code")
    elif coords is None:
        raise InvalidCoordinatesError(f"Coordinates are required for {method.value} check-ins")

    if coords is None:
        return None

    validate_coordinates(coords.latitude, coords.longitude)
    distance = haversine_meters(coords.latitude, coords.longitude, destination.latitude, destination.longitude)
    radius = destination.visit_radius_meters if destination.visit_radius_meters > 0 else default_radius_meters
    if not within_radius(distance, radius):
        raise OutOfRangeError(distance, radius)
    return distance


def _is_daily_duplicate(exc: IntegrityError) -> bool:
    # PostgreSQL names the constraint; SQLite lists its columns.
    message = str(exc.orig)
    return DAILY_CHECKIN_CONSTRAINT in message or "checkins.checkin_date" in message


async def record_checkin(
    db: AsyncSession,
    user_id: int,
    destination: DestinationInfo,
    method: CheckInMethod | str,
    coords: Coordinates | None = None,
    token: str | None = None,
    checkin_timezone: str = "UTC",
    default_radius_meters: int = 100,
    now: datetime | None = None,
) -> tuple[CheckInRecord, LedgerEntry | None]:
    """Validate and persist a check-in plus its ledger credit.

    Runs inside the caller's transaction; nothing is committed here.
    """
    distance = validate_checkin(destination, method, coords, token, default_radius_meters)
    await get_balance(db, user_id)  # raises UserNotFoundError

    now = now or datetime.now(timezone.utc)
    points, bonus = compute_checkin_points(destination, now)

    checkin = CheckIn(
        user_id=user_id,
        destination_id=destination.id,
        method=CheckInMethod(method).value,
        reported_lat=coords.latitude if coords else None,
        reported_lon=coords.longitude if coords else None,
        distance_meters=distance,
        points_earned=points,
        bonus_points=bonus,
        verified=True,
        checked_in_at=now,
        checkin_date=calendar_day(now, checkin_timezone),
    )
    db.add(checkin)
    try:
        await db.flush()
    except IntegrityError as exc:
        if _is_daily_duplicate(exc):
            logger.info("checkin_duplicate_today", user_id=user_id, destination_id=destination.id)
            raise DuplicateCheckInError(
                "You have already checked in at this destination today"
            ) from exc
        raise

    entry = None
    if points + bonus > 0:
        entry = await append_entry(
            db,
            user_id=user_id,
            delta=points + bonus,
            source_type=LedgerSource.CHECKIN,
            source_id=checkin.id,
            description=f"Check-in at {destination.name}",
            occurred_at=now,
        )

    logger.info(
        "checkin_recorded",
        user_id=user_id,
        destination_id=destination.id,
        checkin_id=checkin.id,
        method=checkin.method,
        distance_meters=distance,
        points=points,
        bonus_points=bonus,
    )
    return CheckInRecord.model_validate(checkin), entry
