"""Proportional split of a cent amount across balance weights.

Shares are computed in decimal arithmetic, rounded to cents half away from zero, then
reconciled so the rounded amounts add up to the total exactly: the whole residual goes
to the investor with the largest unrounded share (earliest position wins ties).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Sequence

from app.services.distribution_errors import ZeroTotalBalanceError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
_SHARE_PRECISION = 50


def round_to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def raw_shares(total: Decimal, balances: Sequence[Decimal]) -> list[Decimal]:
    """Unrounded ``balance_i / sum(balances) * total`` for each balance."""
    with localcontext() as ctx:
        ctx.prec = _SHARE_PRECISION
        total_balance = sum(balances, Decimal("0"))
        if total_balance == 0:
            raise ZeroTotalBalanceError("Total balance must be > 0 to distribute revenue")
        return [(balance / total_balance) * total for balance in balances]


def _absorb_order(raw: Sequence[Decimal]) -> list[int]:
    # Largest raw share first; sort is stable so ties keep input order.
    return sorted(range(len(raw)), key=lambda idx: raw[idx], reverse=True)


def reconcile(
    raw: Sequence[Decimal],
    rounded: Sequence[Decimal],
    total: Decimal | None = None,
) -> list[Decimal]:
    """Return ``rounded`` adjusted so that it sums to ``total`` exactly.

    ``total`` defaults to the cent-rounded sum of ``raw``. The residual
    ``total - sum(rounded)`` is applied to the largest raw share. A negative residual
    bigger than that investor's amount floors them at zero and continues down the
    same largest-first order, so no amount ever turns negative.
    """
    if len(raw) != len(rounded):
        raise ValueError("raw and rounded shares must have the same length")
    adjusted = list(rounded)
    if not adjusted:
        return adjusted

    target = round_to_cents(sum(raw, Decimal("0"))) if total is None else round_to_cents(total)
    diff = round_to_cents(target - sum(adjusted, ZERO))
    if abs(diff) < CENT:
        return adjusted

    remaining = diff
    for idx in _absorb_order(raw):
        if remaining == 0:
            break
        if remaining > 0:
            take = remaining
        else:
            take = max(remaining, -adjusted[idx])
        adjusted[idx] = round_to_cents(adjusted[idx] + take)
        remaining -= take
    return adjusted


def allocate(total: Decimal, balances: Sequence[Decimal]) -> list[Decimal]:
    """Split cent amount ``total`` over ``balances``; the result sums to ``total``."""
    total = round_to_cents(total)
    raw = raw_shares(total, balances)
    rounded = [round_to_cents(share) for share in raw]
    return reconcile(raw, rounded, total=total)
