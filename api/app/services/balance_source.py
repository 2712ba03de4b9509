"""Balance sources: where the distribution engine gets investor weights from.

A source is picked once, when the engine is built, and exposes a single coroutine
``get_balances(offering_id, period)``. Both concrete sources read stored token balance
snapshots; they differ in which snapshot rows count for a period.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable, Protocol

from app.adapters.distribution_store import BalanceSnapshotStore
from app.models.balance_snapshot import TokenBalanceSnapshot
from app.models.distribution import BalanceWeight, DistributionPeriod

logger = logging.getLogger(__name__)


class BalanceSource(Protocol):
    async def get_balances(self, offering_id: str, period: DistributionPeriod) -> list[BalanceWeight]:
        ...


def latest_per_holder(rows: Iterable[TokenBalanceSnapshot]) -> list[BalanceWeight]:
    """Keep the first row seen per holder; ``rows`` must be ordered newest first."""
    seen: set[str] = set()
    weights: list[BalanceWeight] = []
    for row in rows:
        if row.holder_id in seen:
            continue
        seen.add(row.holder_id)
        weights.append(BalanceWeight(investor_id=row.holder_id, balance=row.balance))
    return weights


class PeriodSnapshotBalanceSource:
    """Balances recorded for the distribution period itself.

    With ``period.id`` set, reads the snapshots filed under that period id. Otherwise
    uses every snapshot of the offering taken within ``[period.start, period.end]``.
    """

    def __init__(self, store: BalanceSnapshotStore):
        self.store = store

    async def get_balances(self, offering_id: str, period: DistributionPeriod) -> list[BalanceWeight]:
        if period.id:
            rows = self.store.find_by_offering_and_period(offering_id, period.id)
        else:
            rows = [
                row
                for row in self.store.find_by_offering(offering_id)
                if period.start <= row.snapshot_at <= period.end
            ]
        return latest_per_holder(rows)


class LatestHoldingsBalanceSource:
    """Current holder listing: each holder's most recent snapshot up to ``period.end``."""

    def __init__(self, store: BalanceSnapshotStore):
        self.store = store

    async def get_balances(self, offering_id: str, period: DistributionPeriod) -> list[BalanceWeight]:
        rows = [row for row in self.store.find_by_offering(offering_id) if row.snapshot_at <= period.end]
        return latest_per_holder(rows)


def balance_source_from_env(store: BalanceSnapshotStore) -> BalanceSource | None:
    """Select a source from DISTRIBUTION_BALANCE_SOURCE (default ``period_snapshot``)."""
    kind = (os.getenv("DISTRIBUTION_BALANCE_SOURCE") or "period_snapshot").strip().lower()
    if kind in {"", "period_snapshot", "snapshot"}:
        return PeriodSnapshotBalanceSource(store)
    if kind in {"latest_holdings", "latest"}:
        return LatestHoldingsBalanceSource(store)
    if kind != "none":
        logger.warning("unsupported_balance_source kind=%s", kind)
    return None
