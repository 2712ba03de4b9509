from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.distribution import utcnow, as_utc


class TokenBalanceSnapshotCreate(BaseModel):
    offering_id: str
    period_id: str | None = None
    holder_id: str
    balance: Decimal = Field(ge=0)
    snapshot_at: datetime | None = None


class TokenBalanceSnapshot(BaseModel):
    """Token balance held by one holder at ``snapshot_at``."""

    id: UUID = Field(default_factory=uuid4)
    offering_id: str
    period_id: str | None = None
    holder_id: str
    balance: Decimal
    snapshot_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("snapshot_at", "created_at")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return as_utc(value)


class HolderBalance(BaseModel):
    holder_id: str
    balance: Decimal = Field(ge=0)


class BalanceSnapshotBatch(BaseModel):
    """Body of POST /offerings/{offering_id}/balance-snapshots."""

    period_id: str | None = None
    snapshot_at: datetime | None = None
    balances: list[HolderBalance] = Field(min_length=1)
