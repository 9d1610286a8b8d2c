"""Collaborator interfaces consumed and produced by the risk services.

``PortfolioDataProvider`` supplies positions and market inputs; a
``ResultSink`` persists results and publishes domain events. In-memory
implementations back the test-suite and simple embeddings.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, Sequence

import pandas as pd
import structlog
from pydantic import BaseModel

from .exceptions import DimensionMismatchError, PortfolioNotFoundError
from .models import LiquidityData, MarketParameters, Position, RiskLimit, RiskRequest
from .results import DomainEvent
from .risk.limits import default_risk_limits

logger = structlog.get_logger()


class PortfolioDataProvider(Protocol):
    """Source of portfolio snapshots and market inputs.

    Vectors and matrices returned must be index-aligned with the position
    list passed in.
    """

    def get_portfolio_data(self, portfolio_id: str, as_of_date: date) -> list[Position]: ...

    def get_market_parameters(
        self, positions: Sequence[Position], request: RiskRequest
    ) -> MarketParameters: ...

    def get_historical_returns(
        self, positions: Sequence[Position], lookback_period: int, as_of_date: date
    ) -> pd.DataFrame: ...

    def get_liquidity_data(
        self, positions: Sequence[Position], as_of_date: date
    ) -> dict[str, LiquidityData]: ...

    def get_risk_limits(self, portfolio_id: str, as_of_date: date) -> list[RiskLimit]: ...

    def list_portfolios(self, entity_id: str | None) -> list[str]: ...


class ResultSink(Protocol):
    """Destination for computed results and their domain events."""

    def store(self, result_type: str, result: BaseModel) -> None: ...

    def publish(self, event: DomainEvent) -> None: ...


class InMemoryPortfolioDataProvider:
    """Dict-backed provider.

    Args:
        portfolios: portfolio_id -> positions
        market_parameters: portfolio_id -> parameters aligned with its positions
        returns: Daily returns, one column per position_id, oldest row first
        liquidity: symbol -> liquidity inputs
        limits: portfolio_id -> configured limits (defaults when absent)
        entities: entity_id -> portfolio ids
    """

    def __init__(
        self,
        portfolios: dict[str, list[Position]] | None = None,
        market_parameters: dict[str, MarketParameters] | None = None,
        returns: pd.DataFrame | None = None,
        liquidity: dict[str, LiquidityData] | None = None,
        limits: dict[str, list[RiskLimit]] | None = None,
        entities: dict[str, list[str]] | None = None,
    ) -> None:
        self._portfolios = dict(portfolios or {})
        self._market_parameters = dict(market_parameters or {})
        self._returns = returns if returns is not None else pd.DataFrame()
        self._liquidity = dict(liquidity or {})
        self._limits = dict(limits or {})
        self._entities = dict(entities or {})

    def get_portfolio_data(self, portfolio_id: str, as_of_date: date) -> list[Position]:
        try:
            return list(self._portfolios[portfolio_id])
        except KeyError:
            raise PortfolioNotFoundError(f"Portfolio not found: {portfolio_id}") from None

    def get_market_parameters(
        self, positions: Sequence[Position], request: RiskRequest
    ) -> MarketParameters:
        try:
            return self._market_parameters[request.portfolio_id]
        except KeyError:
            raise PortfolioNotFoundError(
                f"No market parameters for portfolio: {request.portfolio_id}"
            ) from None

    def get_historical_returns(
        self, positions: Sequence[Position], lookback_period: int, as_of_date: date
    ) -> pd.DataFrame:
        ids = [p.position_id for p in positions]
        missing = [i for i in ids if i not in self._returns.columns]
        if missing:
            raise DimensionMismatchError(f"No return history for positions: {missing}")

        history = self._returns[ids]
        if isinstance(history.index, pd.DatetimeIndex):
            history = history[history.index <= pd.Timestamp(as_of_date)]
        return history.iloc[-lookback_period:]

    def get_liquidity_data(
        self, positions: Sequence[Position], as_of_date: date
    ) -> dict[str, LiquidityData]:
        return {p.symbol: self._liquidity[p.symbol] for p in positions if p.symbol in self._liquidity}

    def get_risk_limits(self, portfolio_id: str, as_of_date: date) -> list[RiskLimit]:
        if portfolio_id in self._limits:
            return list(self._limits[portfolio_id])
        return default_risk_limits(portfolio_id, as_of_date)

    def list_portfolios(self, entity_id: str | None) -> list[str]:
        if entity_id is None:
            return list(self._portfolios)
        return list(self._entities.get(entity_id, []))


class InMemoryResultSink:
    """Keeps stored results and published events in lists."""

    def __init__(self) -> None:
        self.stored: list[tuple[str, BaseModel]] = []
        self.events: list[DomainEvent] = []

    def store(self, result_type: str, result: BaseModel) -> None:
        self.stored.append((result_type, result))
        logger.debug("result_stored", result_type=result_type)

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)
        logger.debug("event_published", event_type=event.event_type, entity_id=event.entity_id)
