from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Union

from app.adapters.distribution_store import DistributionStore
from app.models.distribution import (
    DistributionPeriod,
    DistributionResult,
    DistributionRunCreate,
    PayoutCreate,
)
from app.services.balance_source import BalanceSource
from app.services.distribution_errors import (
    InvalidAmountError,
    NoBalanceSourceError,
    NoInvestorsError,
)
from app.services.proration import allocate, round_to_cents

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]

# Money columns are NUMERIC(20, 2).
MAX_REVENUE_AMOUNT = Decimal(10) ** 18


def parse_revenue_amount(value: Amount) -> Decimal:
    """Return ``value`` as a positive cent amount or raise InvalidAmountError."""
    if isinstance(value, bool):
        raise InvalidAmountError("revenue_amount must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite():
            raise InvalidAmountError("revenue_amount must be finite")
        cents = round_to_cents(amount)
    except InvalidOperation as exc:
        raise InvalidAmountError(f"revenue_amount is not a representable amount: {value!r}") from exc
    if cents >= MAX_REVENUE_AMOUNT:
        raise InvalidAmountError(f"revenue_amount must be < {MAX_REVENUE_AMOUNT}")
    if cents <= 0:
        raise InvalidAmountError("revenue_amount must be > 0")
    return cents


class DistributionEngine:
    """Split reported revenue across investors by balance weight and record the result.

    The engine does not deduplicate: two calls with the same arguments record two runs.
    Guarding against that is up to whoever decides to call ``distribute``.
    """

    def __init__(self, store: DistributionStore, balance_source: BalanceSource | None = None):
        self.store = store
        self.balance_source = balance_source

    async def distribute(
        self,
        offering_id: str,
        period: DistributionPeriod,
        revenue_amount: Amount,
    ) -> DistributionResult:
        """Distribute revenue_amount proportionally to the offering's balance weights."""
        total = parse_revenue_amount(revenue_amount)
        if self.balance_source is None:
            raise NoBalanceSourceError("No balance source configured for distribution engine")

        weights = list(await self.balance_source.get_balances(offering_id, period))
        if not weights:
            raise NoInvestorsError(f"No investors or balances found for offering {offering_id}")

        amounts = allocate(total, [w.balance for w in weights])

        with self.store.transaction() as tx:
            run = tx.create_distribution_run(
                DistributionRunCreate(
                    offering_id=offering_id,
                    total_amount=total,
                    distribution_date=period.end,
                )
            )
            payouts = [
                tx.create_payout(
                    PayoutCreate(
                        distribution_run_id=run.id,
                        investor_id=weight.investor_id,
                        amount=amount,
                    )
                )
                for weight, amount in zip(weights, amounts)
            ]

        logger.info(
            "distribution_created run_id=%s offering_id=%s total_amount=%s payouts=%s",
            run.id,
            offering_id,
            run.total_amount,
            len(payouts),
        )
        return DistributionResult(distribution_run=run, payouts=payouts)
