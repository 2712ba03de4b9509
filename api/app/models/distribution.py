from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DistributionRunStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class BalanceWeight(BaseModel):
    """Point-in-time stake of one investor in an offering."""

    investor_id: str
    balance: Decimal = Field(ge=0)


class DistributionPeriod(BaseModel):
    start: datetime
    end: datetime
    id: str | None = None

    @field_validator("start", "end")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> DistributionPeriod:
        if self.end < self.start:
            raise ValueError("period end must not precede period start")
        return self


class DistributionRunCreate(BaseModel):
    offering_id: str
    total_amount: Decimal
    distribution_date: datetime
    status: DistributionRunStatus = DistributionRunStatus.PENDING


class DistributionRun(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    offering_id: str
    total_amount: Decimal
    distribution_date: datetime
    status: DistributionRunStatus = DistributionRunStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)


class PayoutCreate(BaseModel):
    distribution_run_id: UUID
    investor_id: str
    amount: Decimal
    status: PayoutStatus = PayoutStatus.PENDING
    transaction_hash: str | None = None


class Payout(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    distribution_run_id: UUID
    investor_id: str
    amount: Decimal
    status: PayoutStatus = PayoutStatus.PENDING
    transaction_hash: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)


class DistributionResult(BaseModel):
    distribution_run: DistributionRun
    payouts: list[Payout]


class DistributeRequest(BaseModel):
    """Body of POST /offerings/{offering_id}/distribute."""

    revenue_amount: Decimal
    period: DistributionPeriod
