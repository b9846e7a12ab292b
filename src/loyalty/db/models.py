"""ORM models for the loyalty ledger engine.

``destinations`` and ``badges`` are owned by the catalog services and are
only read here. ``users.total_points`` is a denormalized cache of the
``points_ledger`` sum and is only written together with a ledger entry.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.db.base import Base

# BIGINT keys do not autoincrement on SQLite.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONVariant = JSON().with_variant(JSONB, "postgresql")

DAILY_CHECKIN_CONSTRAINT = "uq_checkins_user_destination_day"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Ledger owner. ``total_points`` always equals the ledger sum."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Catalog (read-only from the engine)
# ---------------------------------------------------------------------------


class Destination(Base):
    """Check-in location with its geofence and reward configuration."""

    __tablename__ = "destinations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    visit_radius_meters: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default="100")
    qr_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bonus_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0, server_default="1")
    bonus_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class Badge(Base):
    """Static badge definition."""

    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    requirement_type: Mapped[str] = mapped_column(String(16), nullable=False)
    requirement_value: Mapped[int] = mapped_column(Integer, nullable=False)
    requirement_details: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common", server_default="common")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


# ---------------------------------------------------------------------------
# Engine-owned state
# ---------------------------------------------------------------------------


class UserBadge(Base):
    """Per-(user, badge) progress. ``is_earned`` only ever goes false -> true."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
        Index("ix_user_badges_user_earned", "user_id", "is_earned"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_earned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    earned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CheckIn(Base):
    """A verified visit. One per (user, destination, calendar day)."""

    __tablename__ = "checkins"
    __table_args__ = (
        UniqueConstraint("user_id", "destination_id", "checkin_date", name=DAILY_CHECKIN_CONSTRAINT),
        Index("ix_checkins_user_verified", "user_id", "verified"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    destination_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("destinations.id", ondelete="CASCADE"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(16), nullable=False)
    reported_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    reported_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bonus_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    checkin_date: Mapped[date] = mapped_column(Date, nullable=False)


class PointsLedgerEntry(Base):
    """Immutable point-balance change. Never updated or deleted."""

    __tablename__ = "points_ledger"
    __table_args__ = (
        Index("ix_points_ledger_user_id", "user_id", "id"),
        Index("ix_points_ledger_source", "source_type", "source_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
