"""Check-in inputs, destination snapshots and results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from loyalty.gamification.schemas import AwardedBadge
from loyalty.ledger.schemas import LedgerEntry


class CheckInMethod(str, Enum):
    QR_CODE = "qr_code"
    GPS = "gps"
    MANUAL = "manual"


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


class DestinationInfo(BaseModel):
    """Read-only view of a destination as supplied by the catalog."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    latitude: float
    longitude: float
    visit_radius_meters: int = 100
    qr_code: str | None = None
    category_id: int | None = None
    city: str | None = None
    points_reward: int = 0
    bonus_multiplier: float = 1.0
    bonus_ends_at: datetime | None = None


class CheckInRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    user_id: int
    destination_id: int
    method: str
    reported_lat: float | None = None
    reported_lon: float | None = None
    distance_meters: float | None = None
    points_earned: int
    bonus_points: int
    verified: bool
    checked_in_at: datetime

    @property
    def total_points(self) -> int:
        return self.points_earned + self.bonus_points


class CheckInResult(BaseModel):
    checkin: CheckInRecord
    ledger_entry: LedgerEntry | None = None
    new_badges: list[AwardedBadge] = []
