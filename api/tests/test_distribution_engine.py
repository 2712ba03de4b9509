from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.adapters.distribution_store import InMemoryDistributionStore
from app.models.distribution import BalanceWeight, DistributionPeriod, DistributionRunStatus
from app.services.distribution_engine import DistributionEngine, parse_revenue_amount
from app.services.distribution_errors import (
    InvalidAmountError,
    NoBalanceSourceError,
    NoInvestorsError,
    ZeroTotalBalanceError,
)

PERIOD = DistributionPeriod(
    start=datetime(2026, 1, 1, tzinfo=timezone.utc),
    end=datetime(2026, 1, 31, tzinfo=timezone.utc),
)


class _FakeBalanceSource:
    def __init__(self, rows: list[tuple[str, str | int]]):
        self.rows = [BalanceWeight(investor_id=i, balance=Decimal(str(b))) for i, b in rows]
        self.calls: list[tuple[str, DistributionPeriod]] = []

    async def get_balances(self, offering_id: str, period: DistributionPeriod) -> list[BalanceWeight]:
        self.calls.append((offering_id, period))
        return list(self.rows)


class _FailingPayoutStore(InMemoryDistributionStore):
    """Rejects the n-th payout write inside a transaction."""

    def __init__(self, fail_at: int):
        super().__init__()
        self.fail_at = fail_at

    @contextmanager
    def transaction(self):
        with super().transaction() as tx:
            original = tx.create_payout
            written = {"count": 0}

            def create_payout(data):
                written["count"] += 1
                if written["count"] == self.fail_at:
                    raise RuntimeError("payout insert rejected")
                return original(data)

            tx.create_payout = create_payout
            yield tx


def _amounts(result) -> dict[str, str]:
    return {p.investor_id: str(p.amount) for p in result.payouts}


@pytest.mark.asyncio
async def test_two_party_exact_split() -> None:
    store = InMemoryDistributionStore()
    engine = DistributionEngine(store, _FakeBalanceSource([("i1", 70), ("i2", 30)]))

    result = await engine.distribute("off-1", PERIOD, 100)

    assert _amounts(result) == {"i1": "70.00", "i2": "30.00"}
    assert str(result.distribution_run.total_amount) == "100.00"


@pytest.mark.asyncio
async def test_three_way_split_gives_extra_cent_to_first_investor() -> None:
    store = InMemoryDistributionStore()
    engine = DistributionEngine(store, _FakeBalanceSource([("i1", 1), ("i2", 1), ("i3", 1)]))

    result = await engine.distribute("off-2", PERIOD, Decimal("100"))

    assert [str(p.amount) for p in result.payouts] == ["33.34", "33.33", "33.33"]
    assert sum(p.amount for p in result.payouts) == Decimal("100.00")


@pytest.mark.asyncio
async def test_run_and_payouts_are_persisted_in_acquisition_order() -> None:
    store = InMemoryDistributionStore()
    source = _FakeBalanceSource([("zed", 5), ("amy", 3), ("bob", 2)])
    engine = DistributionEngine(store, source)

    result = await engine.distribute("off-3", PERIOD, "10.00")

    run = result.distribution_run
    assert source.calls == [("off-3", PERIOD)]
    assert run.offering_id == "off-3"
    assert run.distribution_date == PERIOD.end
    assert run.status == DistributionRunStatus.PENDING
    assert store.get_distribution_run(run.id) == run
    assert [p.investor_id for p in result.payouts] == ["zed", "amy", "bob"]
    assert store.list_payouts_by_run(run.id) == result.payouts
    assert all(p.distribution_run_id == run.id for p in result.payouts)


@pytest.mark.asyncio
async def test_payouts_sum_to_total_with_two_decimal_places() -> None:
    store = InMemoryDistributionStore()
    rows = [(f"inv-{n}", n * 7 + 3) for n in range(37)]
    engine = DistributionEngine(store, _FakeBalanceSource(rows))

    result = await engine.distribute("off-4", PERIOD, "12345.67")

    assert sum(p.amount for p in result.payouts) == result.distribution_run.total_amount == Decimal("12345.67")
    for payout in result.payouts:
        assert payout.amount >= 0
        assert payout.amount.as_tuple().exponent == -2


@pytest.mark.asyncio
async def test_revenue_amount_is_quantized_to_cents() -> None:
    store = InMemoryDistributionStore()
    engine = DistributionEngine(store, _FakeBalanceSource([("i1", 1), ("i2", 2)]))

    result = await engine.distribute("off-5", PERIOD, 0.1 + 0.2)

    assert str(result.distribution_run.total_amount) == "0.30"
    assert sum(p.amount for p in result.payouts) == Decimal("0.30")


@pytest.mark.asyncio
async def test_zero_total_balance_is_rejected_without_persisting() -> None:
    store = InMemoryDistributionStore()
    engine = DistributionEngine(store, _FakeBalanceSource([("i1", 0)]))

    with pytest.raises(ZeroTotalBalanceError):
        await engine.distribute("off-6", PERIOD, 50)

    assert store.list_by_offering("off-6") == []
    assert store.list_payouts_by_investor("i1") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount",
    [0, -1, "-0.01", "0.004", "abc", "NaN", "Infinity", True, "1e30", Decimal("1E+30"), "1000000000000000000"],
)
async def test_invalid_amount_fails_before_any_io(amount) -> None:
    store = InMemoryDistributionStore()
    source = _FakeBalanceSource([("i1", 1)])
    engine = DistributionEngine(store, source)

    with pytest.raises(InvalidAmountError):
        await engine.distribute("off-7", PERIOD, amount)

    assert source.calls == []
    assert store.list_by_offering("off-7") == []


@pytest.mark.asyncio
async def test_missing_balance_source_is_reported() -> None:
    store = InMemoryDistributionStore()
    engine = DistributionEngine(store)

    with pytest.raises(NoBalanceSourceError):
        await engine.distribute("off-8", PERIOD, 10)


@pytest.mark.asyncio
async def test_invalid_amount_is_checked_before_balance_source() -> None:
    engine = DistributionEngine(InMemoryDistributionStore())

    with pytest.raises(InvalidAmountError):
        await engine.distribute("off-8", PERIOD, 0)


@pytest.mark.asyncio
async def test_no_investors_is_rejected() -> None:
    store = InMemoryDistributionStore()
    engine = DistributionEngine(store, _FakeBalanceSource([]))

    with pytest.raises(NoInvestorsError):
        await engine.distribute("off-9", PERIOD, 10)
    assert store.list_by_offering("off-9") == []


@pytest.mark.asyncio
async def test_engine_does_not_deduplicate_identical_calls() -> None:
    store = InMemoryDistributionStore()
    engine = DistributionEngine(store, _FakeBalanceSource([("i1", 1), ("i2", 1)]))

    first = await engine.distribute("off-10", PERIOD, 20)
    second = await engine.distribute("off-10", PERIOD, 20)

    assert first.distribution_run.id != second.distribution_run.id
    assert len(store.list_by_offering("off-10")) == 2
    assert len(store.list_payouts_by_investor("i1")) == 2


@pytest.mark.asyncio
async def test_balance_source_errors_propagate_unmodified() -> None:
    class _Broken:
        async def get_balances(self, offering_id, period):
            raise ConnectionError("snapshot db down")

    engine = DistributionEngine(InMemoryDistributionStore(), _Broken())

    with pytest.raises(ConnectionError, match="snapshot db down"):
        await engine.distribute("off-11", PERIOD, 10)


@pytest.mark.asyncio
async def test_payout_write_failure_leaves_no_partial_run() -> None:
    store = _FailingPayoutStore(fail_at=2)
    engine = DistributionEngine(store, _FakeBalanceSource([("i1", 1), ("i2", 1), ("i3", 1)]))

    with pytest.raises(RuntimeError, match="payout insert rejected"):
        await engine.distribute("off-12", PERIOD, 30)

    assert store.list_by_offering("off-12") == []
    assert store.list_payouts_by_investor("i1") == []


def test_parse_revenue_amount_accepts_numeric_strings() -> None:
    assert parse_revenue_amount(" 100.5 ") == Decimal("100.50")
    assert parse_revenue_amount(Decimal("1.005")) == Decimal("1.01")


def test_parse_revenue_amount_accepts_largest_storable_amount() -> None:
    assert parse_revenue_amount("999999999999999999.99") == Decimal("999999999999999999.99")
