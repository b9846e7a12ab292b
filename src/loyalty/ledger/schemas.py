"""Immutable ledger records handed back to callers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class LedgerSource(str, Enum):
    """Provenance of a ledger entry."""

    CHECKIN = "checkin"
    BADGE = "badge"
    REWARD_REDEMPTION = "reward_redemption"
    ADJUSTMENT = "adjustment"


class LedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    user_id: int
    delta: int
    balance_after: int
    source_type: str
    source_id: str | None = None
    description: str | None = None
    occurred_at: datetime


class LedgerPage(BaseModel):
    entries: list[LedgerEntry]
    total: int
    limit: int
    offset: int


class ReconciliationReport(BaseModel):
    user_id: int
    total_points: int
    ledger_sum: int
    entry_count: int
