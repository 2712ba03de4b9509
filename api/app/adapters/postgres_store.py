"""SQL-backed DistributionStore and BalanceSnapshotStore (PostgreSQL in production, sqlite locally)."""

from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Optional
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Uuid, create_engine, func
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import NullPool

from app.adapters.distribution_store import build_payout, build_run, build_snapshot
from app.models.balance_snapshot import TokenBalanceSnapshot, TokenBalanceSnapshotCreate
from app.models.distribution import (
    DistributionRun,
    DistributionRunCreate,
    Payout,
    PayoutCreate,
    as_utc,
)


class DecimalText(TypeDecorator):
    """Exact Decimal stored as text. sqlite has no decimal type and would round-trip through float."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(Decimal(value))

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


def _exact_numeric(precision: int, scale: int):
    return Numeric(precision=precision, scale=scale).with_variant(DecimalText(), "sqlite")


class Base(DeclarativeBase):
    pass


class DistributionRunModel(Base):
    __tablename__ = "distribution_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    offering_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(_exact_numeric(20, 2), nullable=False)
    distribution_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PayoutModel(Base):
    __tablename__ = "payouts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    distribution_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("distribution_runs.id"), nullable=False, index=True
    )
    # Creation order within a run.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    investor_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(_exact_numeric(20, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    transaction_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TokenBalanceSnapshotModel(Base):
    __tablename__ = "token_balance_snapshots"
    __table_args__ = (Index("idx_balance_snapshots_offering_period", "offering_id", "period_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    offering_id: Mapped[str] = mapped_column(String, nullable=False)
    period_id: Mapped[str | None] = mapped_column(String, nullable=True)
    holder_id: Mapped[str] = mapped_column(String(255), nullable=False)
    batch_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance: Mapped[Decimal] = mapped_column(_exact_numeric(30, 10), nullable=False)
    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _create_engine(url: str):
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = NullPool
    return create_engine(url, **kwargs)


def _to_run(model: DistributionRunModel) -> DistributionRun:
    return DistributionRun(
        id=model.id,
        offering_id=model.offering_id,
        total_amount=Decimal(str(model.total_amount)).quantize(Decimal("0.01")),
        distribution_date=as_utc(model.distribution_date),
        status=model.status,
        created_at=as_utc(model.created_at),
        updated_at=as_utc(model.updated_at),
    )


def _to_payout(model: PayoutModel) -> Payout:
    return Payout(
        id=model.id,
        distribution_run_id=model.distribution_run_id,
        investor_id=model.investor_id,
        amount=Decimal(str(model.amount)).quantize(Decimal("0.01")),
        status=model.status,
        transaction_hash=model.transaction_hash,
        created_at=as_utc(model.created_at),
        updated_at=as_utc(model.updated_at),
    )


def _to_snapshot(model: TokenBalanceSnapshotModel) -> TokenBalanceSnapshot:
    return TokenBalanceSnapshot(
        id=model.id,
        offering_id=model.offering_id,
        period_id=model.period_id,
        holder_id=model.holder_id,
        balance=Decimal(str(model.balance)),
        snapshot_at=model.snapshot_at,
        created_at=model.created_at,
    )


class _SessionWriter:
    """Writes runs and payouts into one open session; the caller owns commit/rollback."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._positions: dict[UUID, int] = {}

    def create_distribution_run(self, data: DistributionRunCreate) -> DistributionRun:
        run = build_run(data)
        self._session.add(
            DistributionRunModel(
                id=run.id,
                offering_id=run.offering_id,
                total_amount=run.total_amount,
                distribution_date=run.distribution_date,
                status=run.status.value,
                created_at=run.created_at,
                updated_at=run.updated_at,
            )
        )
        self._session.flush()
        return run

    def create_payout(self, data: PayoutCreate) -> Payout:
        payout = build_payout(data)
        position = self._next_position(payout.distribution_run_id)
        self._session.add(
            PayoutModel(
                id=payout.id,
                distribution_run_id=payout.distribution_run_id,
                position=position,
                investor_id=payout.investor_id,
                amount=payout.amount,
                status=payout.status.value,
                transaction_hash=payout.transaction_hash,
                created_at=payout.created_at,
                updated_at=payout.updated_at,
            )
        )
        self._session.flush()
        return payout

    def _next_position(self, run_id: UUID) -> int:
        if run_id not in self._positions:
            current = (
                self._session.query(func.max(PayoutModel.position))
                .filter(PayoutModel.distribution_run_id == run_id)
                .scalar()
            )
            self._positions[run_id] = -1 if current is None else int(current)
        self._positions[run_id] += 1
        return self._positions[run_id]


class PostgresDistributionStore:
    """SQLAlchemy-backed store. Any SQLAlchemy URL works; sqlite is used for local runs and tests."""

    def __init__(self, database_url: str | None = None) -> None:
        if not database_url:
            database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDistributionStore")

        self.engine = _create_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        """Create tables if they don't exist."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Get a new database session with proper cleanup."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[_SessionWriter]:
        with self._session() as session:
            yield _SessionWriter(session)

    # ---- Distribution runs and payouts ----

    def create_distribution_run(self, data: DistributionRunCreate) -> DistributionRun:
        with self.transaction() as tx:
            return tx.create_distribution_run(data)

    def create_payout(self, data: PayoutCreate) -> Payout:
        with self.transaction() as tx:
            return tx.create_payout(data)

    def get_distribution_run(self, run_id: UUID) -> Optional[DistributionRun]:
        with self._session() as session:
            model = session.query(DistributionRunModel).filter_by(id=run_id).first()
            if not model:
                return None
            return _to_run(model)

    def list_payouts_by_run(self, run_id: UUID) -> list[Payout]:
        with self._session() as session:
            models = (
                session.query(PayoutModel)
                .filter_by(distribution_run_id=run_id)
                .order_by(PayoutModel.position)
                .all()
            )
            return [_to_payout(m) for m in models]

    def list_by_offering(self, offering_id: str) -> list[DistributionRun]:
        with self._session() as session:
            models = (
                session.query(DistributionRunModel)
                .filter_by(offering_id=offering_id)
                .order_by(DistributionRunModel.distribution_date.desc(), DistributionRunModel.created_at.desc())
                .all()
            )
            return [_to_run(m) for m in models]

    def list_payouts_by_investor(self, investor_id: str) -> list[Payout]:
        with self._session() as session:
            models = (
                session.query(PayoutModel)
                .filter_by(investor_id=investor_id)
                .order_by(PayoutModel.created_at.desc(), PayoutModel.position.desc())
                .all()
            )
            return [_to_payout(m) for m in models]

    # ---- Token balance snapshots ----

    def insert(self, data: TokenBalanceSnapshotCreate) -> TokenBalanceSnapshot:
        return self.insert_many([data])[0]

    def insert_many(self, rows: list[TokenBalanceSnapshotCreate]) -> list[TokenBalanceSnapshot]:
        # One created_at per batch: rows of a batch tie and keep their input order.
        now = datetime.now(timezone.utc)
        created = [build_snapshot(row, now) for row in rows]
        with self._session() as session:
            for position, snapshot in enumerate(created):
                session.add(
                    TokenBalanceSnapshotModel(
                        id=snapshot.id,
                        offering_id=snapshot.offering_id,
                        period_id=snapshot.period_id,
                        holder_id=snapshot.holder_id,
                        batch_position=position,
                        balance=snapshot.balance,
                        snapshot_at=snapshot.snapshot_at,
                        created_at=snapshot.created_at,
                    )
                )
        return created

    def find_by_offering_and_period(self, offering_id: str, period_id: str) -> list[TokenBalanceSnapshot]:
        with self._session() as session:
            models = (
                session.query(TokenBalanceSnapshotModel)
                .filter_by(offering_id=offering_id, period_id=period_id)
                .order_by(
                    TokenBalanceSnapshotModel.snapshot_at.desc(),
                    TokenBalanceSnapshotModel.created_at.desc(),
                    TokenBalanceSnapshotModel.batch_position,
                )
                .all()
            )
            return [_to_snapshot(m) for m in models]

    def find_by_offering(self, offering_id: str) -> list[TokenBalanceSnapshot]:
        with self._session() as session:
            models = (
                session.query(TokenBalanceSnapshotModel)
                .filter_by(offering_id=offering_id)
                .order_by(
                    TokenBalanceSnapshotModel.snapshot_at.desc(),
                    TokenBalanceSnapshotModel.created_at.desc(),
                    TokenBalanceSnapshotModel.batch_position,
                )
                .all()
            )
            return [_to_snapshot(m) for m in models]
