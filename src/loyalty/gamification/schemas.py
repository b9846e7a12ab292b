"""Badge definitions, requirement rules and progress models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict

# --- Requirements ---


class RequirementType(str, Enum):
    VISITS = "visits"
    POINTS = "points"
    CHECKINS = "checkins"
    CATEGORIES = "categories"
    CUSTOM = "custom"


class DestinationIdsRule(BaseModel):
    """Verified check-ins at any of the listed destinations."""

    model_config = ConfigDict(frozen=True)

    destination_ids: tuple[int, ...]


class CityRule(BaseModel):
    """Verified check-ins at destinations in one city."""

    model_config = ConfigDict(frozen=True)

    city: str


class CategoryRule(BaseModel):
    """Verified check-ins at destinations in one category."""

    model_config = ConfigDict(frozen=True)

    category_id: int


CustomRule = Union[DestinationIdsRule, CityRule, CategoryRule]


# --- Badge ---


class BadgeDefinition(BaseModel):
    """Immutable snapshot of a badge row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    slug: str
    name: str
    requirement_type: str
    requirement_value: int
    requirement_details: dict[str, Any] | None = None
    points_reward: int = 0
    rarity: str = "common"
    is_active: bool = True
    is_hidden: bool = False


class BadgeEvaluation(BaseModel):
    model_config = ConfigDict(frozen=True)

    badge_id: int
    current_value: int
    progress_percent: int
    is_complete: bool


class AwardedBadge(BaseModel):
    model_config = ConfigDict(frozen=True)

    badge_id: int
    slug: str
    name: str
    rarity: str
    points_awarded: int
    earned_at: datetime


class BadgeProgress(BaseModel):
    badge_id: int
    slug: str
    name: str
    requirement_type: str
    requirement_value: int
    progress: int
    progress_percent: int
    is_earned: bool
    earned_at: datetime | None = None
    points_awarded: int = 0
