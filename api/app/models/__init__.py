"""Pydantic models."""

from app.models.balance_snapshot import TokenBalanceSnapshot, TokenBalanceSnapshotCreate
from app.models.distribution import (
    BalanceWeight,
    DistributionPeriod,
    DistributionResult,
    DistributionRun,
    DistributionRunCreate,
    DistributionRunStatus,
    Payout,
    PayoutCreate,
    PayoutStatus,
)
from app.models.error import ErrorDetail

__all__ = [
    "BalanceWeight",
    "DistributionPeriod",
    "DistributionResult",
    "DistributionRun",
    "DistributionRunCreate",
    "DistributionRunStatus",
    "ErrorDetail",
    "Payout",
    "PayoutCreate",
    "PayoutStatus",
    "TokenBalanceSnapshot",
    "TokenBalanceSnapshotCreate",
]
