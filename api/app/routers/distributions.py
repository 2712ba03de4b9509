from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError

from app.adapters.distribution_store import DistributionBackend
from app.models.balance_snapshot import BalanceSnapshotBatch, TokenBalanceSnapshot, TokenBalanceSnapshotCreate
from app.models.distribution import (
    DistributeRequest,
    DistributionResult,
    DistributionRun,
    Payout,
    PayoutStatus,
)
from app.models.error import ErrorDetail
from app.services.balance_source import balance_source_from_env
from app.services.distribution_engine import DistributionEngine
from app.services.distribution_errors import DistributionError, NoBalanceSourceError

router = APIRouter()
logger = logging.getLogger(__name__)

# One in-flight distribution per (offering, period end) within this process.
# Entries live only while a request holds or waits on them.
_distribution_locks: dict[tuple[str, datetime], asyncio.Lock] = {}
_distribution_lock_users: Counter[tuple[str, datetime]] = Counter()


@asynccontextmanager
async def _period_lock(key: tuple[str, datetime]) -> AsyncIterator[None]:
    lock = _distribution_locks.setdefault(key, asyncio.Lock())
    _distribution_lock_users[key] += 1
    try:
        async with lock:
            yield
    finally:
        _distribution_lock_users[key] -= 1
        if _distribution_lock_users[key] <= 0:
            del _distribution_lock_users[key]
            del _distribution_locks[key]


def get_store(request: Request) -> DistributionBackend:
    return request.app.state.distribution_store


@router.post(
    "/offerings/{offering_id}/distribute",
    response_model=DistributionResult,
    status_code=201,
    responses={
        400: {"model": ErrorDetail},
        409: {"model": ErrorDetail},
        500: {"model": ErrorDetail},
        503: {"model": ErrorDetail},
    },
)
async def trigger_distribution(
    offering_id: str,
    body: DistributeRequest,
    store: DistributionBackend = Depends(get_store),
) -> DistributionResult:
    """Split reported revenue for one period across the offering's investors."""
    async with _period_lock((offering_id, body.period.end)):
        if any(run.distribution_date == body.period.end for run in store.list_by_offering(offering_id)):
            raise HTTPException(status_code=409, detail="Distribution already exists for this offering and period")

        engine = DistributionEngine(store, balance_source_from_env(store))
        try:
            result = await engine.distribute(offering_id, body.period, body.revenue_amount)
        except NoBalanceSourceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except DistributionError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except SQLAlchemyError as exc:
            logger.exception("distribution_persist_failed offering_id=%s", offering_id)
            raise HTTPException(status_code=500, detail="Distribution could not be persisted") from exc

    # Completion hooks (webhooks, notifications) attach here, after persistence succeeded.
    logger.info(
        "distribution.completed run_id=%s offering_id=%s payouts=%s",
        result.distribution_run.id,
        offering_id,
        len(result.payouts),
    )
    return result


@router.get("/offerings/{offering_id}/distributions", response_model=list[DistributionRun])
async def list_offering_distributions(
    offering_id: str, store: DistributionBackend = Depends(get_store)
) -> list[DistributionRun]:
    return store.list_by_offering(offering_id)


@router.get(
    "/distributions/{run_id}",
    response_model=DistributionResult,
    responses={404: {"model": ErrorDetail}},
)
async def get_distribution(run_id: UUID, store: DistributionBackend = Depends(get_store)) -> DistributionResult:
    run = store.get_distribution_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Distribution not found")
    return DistributionResult(distribution_run=run, payouts=store.list_payouts_by_run(run_id))


@router.get("/investors/{investor_id}/payouts", response_model=list[Payout])
async def list_investor_payouts(
    investor_id: str,
    status: Optional[PayoutStatus] = Query(None),
    store: DistributionBackend = Depends(get_store),
) -> list[Payout]:
    payouts = store.list_payouts_by_investor(investor_id)
    if status is not None:
        payouts = [p for p in payouts if p.status == status]
    return payouts


@router.post(
    "/offerings/{offering_id}/balance-snapshots",
    response_model=list[TokenBalanceSnapshot],
    status_code=201,
)
async def record_balance_snapshots(
    offering_id: str,
    batch: BalanceSnapshotBatch,
    store: DistributionBackend = Depends(get_store),
) -> list[TokenBalanceSnapshot]:
    """Record one balance per holder for an offering, all in a single transaction."""
    rows = [
        TokenBalanceSnapshotCreate(
            offering_id=offering_id,
            period_id=batch.period_id,
            holder_id=item.holder_id,
            balance=item.balance,
            snapshot_at=batch.snapshot_at,
        )
        for item in batch.balances
    ]
    return store.insert_many(rows)


@router.get("/offerings/{offering_id}/balance-snapshots", response_model=list[TokenBalanceSnapshot])
async def list_balance_snapshots(
    offering_id: str,
    period_id: Optional[str] = Query(None),
    store: DistributionBackend = Depends(get_store),
) -> list[TokenBalanceSnapshot]:
    if period_id:
        return store.find_by_offering_and_period(offering_id, period_id)
    return store.find_by_offering(offering_id)
