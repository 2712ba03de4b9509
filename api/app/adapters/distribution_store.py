"""DistributionStore / BalanceSnapshotStore abstractions + in-memory backend.

Distribution runs and payouts are write-once here: nothing in this service updates or
deletes them. ``transaction()`` groups a run with its payouts so they land together.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import ContextManager, Iterator, Optional, Protocol
from uuid import UUID

from app.models.balance_snapshot import TokenBalanceSnapshot, TokenBalanceSnapshotCreate
from app.models.distribution import (
    DistributionRun,
    DistributionRunCreate,
    Payout,
    PayoutCreate,
    as_utc,
)
from app.services.proration import round_to_cents


class DistributionWriter(Protocol):
    def create_distribution_run(self, data: DistributionRunCreate) -> DistributionRun:
        ...

    def create_payout(self, data: PayoutCreate) -> Payout:
        ...


class DistributionStore(DistributionWriter, Protocol):
    """Protocol for distribution persistence. Implementations: InMemoryDistributionStore, PostgresDistributionStore."""

    def transaction(self) -> ContextManager[DistributionWriter]:
        """All writes made through the yielded writer commit together or not at all."""
        ...

    def get_distribution_run(self, run_id: UUID) -> Optional[DistributionRun]:
        ...

    def list_payouts_by_run(self, run_id: UUID) -> list[Payout]:
        ...

    def list_by_offering(self, offering_id: str) -> list[DistributionRun]:
        ...

    def list_payouts_by_investor(self, investor_id: str) -> list[Payout]:
        ...


class BalanceSnapshotStore(Protocol):
    def insert(self, data: TokenBalanceSnapshotCreate) -> TokenBalanceSnapshot:
        ...

    def insert_many(self, rows: list[TokenBalanceSnapshotCreate]) -> list[TokenBalanceSnapshot]:
        ...

    def find_by_offering_and_period(self, offering_id: str, period_id: str) -> list[TokenBalanceSnapshot]:
        """Newest first: snapshot_at DESC, created_at DESC."""
        ...

    def find_by_offering(self, offering_id: str) -> list[TokenBalanceSnapshot]:
        """Newest first: snapshot_at DESC, created_at DESC."""
        ...


def build_run(data: DistributionRunCreate) -> DistributionRun:
    return DistributionRun(
        offering_id=data.offering_id,
        total_amount=round_to_cents(data.total_amount),
        distribution_date=as_utc(data.distribution_date),
        status=data.status,
    )


def build_payout(data: PayoutCreate) -> Payout:
    return Payout(
        distribution_run_id=data.distribution_run_id,
        investor_id=data.investor_id,
        amount=round_to_cents(data.amount),
        status=data.status,
        transaction_hash=data.transaction_hash,
    )


def build_snapshot(data: TokenBalanceSnapshotCreate, now: datetime | None = None) -> TokenBalanceSnapshot:
    now = now or datetime.now(timezone.utc)
    return TokenBalanceSnapshot(
        offering_id=data.offering_id,
        period_id=data.period_id,
        holder_id=data.holder_id,
        balance=data.balance,
        snapshot_at=data.snapshot_at or now,
        created_at=now,
    )


def _newest_first(rows: list[TokenBalanceSnapshot]) -> list[TokenBalanceSnapshot]:
    return sorted(rows, key=lambda row: (row.snapshot_at, row.created_at), reverse=True)


class _StagedWriter:
    """Collects writes for one in-memory transaction."""

    def __init__(self, store: InMemoryDistributionStore) -> None:
        self._store = store
        self.runs: dict[UUID, DistributionRun] = {}
        self.payouts: list[Payout] = []

    def create_distribution_run(self, data: DistributionRunCreate) -> DistributionRun:
        run = build_run(data)
        self.runs[run.id] = run
        return run

    def create_payout(self, data: PayoutCreate) -> Payout:
        if data.distribution_run_id not in self.runs and self._store.get_distribution_run(data.distribution_run_id) is None:
            raise KeyError(f"distribution run {data.distribution_run_id} does not exist")
        payout = build_payout(data)
        self.payouts.append(payout)
        return payout


class InMemoryDistributionStore:
    """In-memory DistributionStore and BalanceSnapshotStore for development and tests."""

    def __init__(self) -> None:
        self._runs: dict[UUID, DistributionRun] = {}
        self._payouts: list[Payout] = []
        self._snapshots: list[TokenBalanceSnapshot] = []
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[_StagedWriter]:
        staged = _StagedWriter(self)
        yield staged
        # Reached only when the block exits cleanly; an exception discards the staged rows.
        with self._lock:
            self._runs.update(staged.runs)
            self._payouts.extend(staged.payouts)

    def create_distribution_run(self, data: DistributionRunCreate) -> DistributionRun:
        with self.transaction() as tx:
            return tx.create_distribution_run(data)

    def create_payout(self, data: PayoutCreate) -> Payout:
        with self.transaction() as tx:
            return tx.create_payout(data)

    def get_distribution_run(self, run_id: UUID) -> Optional[DistributionRun]:
        return self._runs.get(run_id)

    def list_payouts_by_run(self, run_id: UUID) -> list[Payout]:
        return [p for p in self._payouts if p.distribution_run_id == run_id]

    def list_by_offering(self, offering_id: str) -> list[DistributionRun]:
        runs = [r for r in self._runs.values() if r.offering_id == offering_id]
        runs.sort(key=lambda r: (r.distribution_date, r.created_at), reverse=True)
        return runs

    def list_payouts_by_investor(self, investor_id: str) -> list[Payout]:
        out = [p for p in self._payouts if p.investor_id == investor_id]
        out.sort(key=lambda p: p.created_at, reverse=True)
        return out

    # --- balance snapshots ---

    def insert(self, data: TokenBalanceSnapshotCreate) -> TokenBalanceSnapshot:
        return self.insert_many([data])[0]

    def insert_many(self, rows: list[TokenBalanceSnapshotCreate]) -> list[TokenBalanceSnapshot]:
        # One created_at per batch: rows of a batch tie and keep their input order.
        now = datetime.now(timezone.utc)
        created = [build_snapshot(row, now) for row in rows]
        with self._lock:
            self._snapshots.extend(created)
        return created

    def find_by_offering_and_period(self, offering_id: str, period_id: str) -> list[TokenBalanceSnapshot]:
        return _newest_first(
            [s for s in self._snapshots if s.offering_id == offering_id and s.period_id == period_id]
        )

    def find_by_offering(self, offering_id: str) -> list[TokenBalanceSnapshot]:
        return _newest_first([s for s in self._snapshots if s.offering_id == offering_id])


class DistributionBackend(DistributionStore, BalanceSnapshotStore, Protocol):
    """The single store object the API keeps on ``app.state.distribution_store``."""
