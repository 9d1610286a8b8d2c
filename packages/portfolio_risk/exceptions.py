"""Exceptions raised by the risk engine.

All errors derive from ``RiskEngineError`` which is itself a ``ValueError``,
so callers that only care about "bad input" can keep catching ``ValueError``.
"""

from __future__ import annotations


class RiskEngineError(ValueError):
    """Base class for risk engine errors."""


class PortfolioNotFoundError(RiskEngineError):
    """The data provider has no portfolio with the requested id."""


class EmptyPortfolioError(RiskEngineError):
    """The portfolio snapshot contains no positions."""


class DimensionMismatchError(RiskEngineError):
    """Market vectors or matrices are not aligned with the position list."""


class NotPositiveDefiniteError(RiskEngineError):
    """A matrix that must be positive (semi-)definite is not."""


class LiquidityDataError(RiskEngineError):
    """Volume, price or market value inputs cannot support liquidity modelling."""


class SimulationCancelledError(RiskEngineError):
    """A Monte Carlo run was cancelled between batches."""


class InvalidStatusTransitionError(RiskEngineError):
    """A breach/alert/escalation record was moved to an illegal status."""
