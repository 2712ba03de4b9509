"""Errors raised by the distribution engine before anything is persisted."""

from __future__ import annotations


class DistributionError(Exception):
    """Base class for distribution failures detected by the engine itself."""


class InvalidAmountError(DistributionError, ValueError):
    """Revenue amount is not a positive, finite cent amount."""


class NoBalanceSourceError(DistributionError, RuntimeError):
    """The engine was built without a balance source."""


class NoInvestorsError(DistributionError, ValueError):
    """The balance source returned no weight rows."""


class ZeroTotalBalanceError(DistributionError, ValueError):
    """All balance weights are zero, so there is nothing to prorate against."""
