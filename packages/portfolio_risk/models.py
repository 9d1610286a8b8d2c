"""Input models for the risk engine.

Portfolio snapshots, market parameters and request objects. All models are
immutable pydantic models; ``MarketParameters`` checks its dimension
invariants at construction time.
"""

from __future__ import annotations

from datetime import date
from typing import Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TimeHorizon = Literal["1D", "1W", "2W", "1M", "3M", "6M", "1Y"]
VolatilityModel = Literal["HISTORICAL", "GARCH", "EWMA"]
MarketImpactModel = Literal["LINEAR", "SQUARE_ROOT", "POWER_LAW"]
FactorType = Literal[
    "EQUITY_INDEX",
    "INTEREST_RATE",
    "CREDIT_SPREAD",
    "CURRENCY",
    "COMMODITY",
    "VOLATILITY",
]
ShockType = Literal["ABSOLUTE", "RELATIVE"]
LimitType = Literal["VALUE_AT_RISK", "CONCENTRATION", "CREDIT_RISK", "LIQUIDITY_RISK", "LEVERAGE"]
MeasurementMethod = Literal["ABSOLUTE", "PERCENTAGE", "RATIO"]

# Trading days covered by each horizon
TIME_HORIZON_DAYS: dict[str, int] = {
    "1D": 1,
    "1W": 5,
    "2W": 10,
    "1M": 21,
    "3M": 63,
    "6M": 126,
    "1Y": 252,
}


class Position(BaseModel):
    """Immutable position snapshot as of a given date."""

    model_config = ConfigDict(frozen=True)

    position_id: str
    security_id: str
    symbol: str
    market_value: float
    asset_class: str
    sector: str = "UNKNOWN"
    geography: str = "UNKNOWN"
    currency: str = "USD"
    current_price: float | None = None
    issuer: str | None = None
    instrument_type: str | None = None
    credit_rating: str | None = None


class MarketParameters(BaseModel):
    """Per-position market inputs, index-aligned with the position list.

    ``correlation_matrix`` must be n x n, symmetric and carry a unit
    diagonal. Positive definiteness is checked later by the Cholesky step,
    which is the only consumer that needs it.
    """

    model_config = ConfigDict(frozen=True)

    expected_returns: list[float]
    volatilities: list[float]
    correlation_matrix: list[list[float]]
    jump_intensity: float = 0.1

    # Optional factor sensitivities used by stress testing
    betas: list[float] | None = None
    durations: list[float] | None = None
    spread_durations: list[float] | None = None
    vegas: list[float] | None = None

    @field_validator("volatilities")
    @classmethod
    def _non_negative_vols(cls, v: list[float]) -> list[float]:
        if any(vol < 0 for vol in v):
            raise ValueError("Volatilities must be non-negative")
        return v

    @field_validator("jump_intensity")
    @classmethod
    def _non_negative_intensity(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Jump intensity must be non-negative, got {v}")
        return v

    @model_validator(mode="after")
    def _check_dimensions(self) -> "MarketParameters":
        n = len(self.expected_returns)
        if len(self.volatilities) != n:
            raise ValueError(
                f"Volatilities length {len(self.volatilities)} doesn't match "
                f"expected returns length {n}"
            )

        corr = np.asarray(self.correlation_matrix, dtype=float)
        if corr.shape != (n, n):
            raise ValueError(f"Correlation matrix must be {n}x{n}, got shape {corr.shape}")
        if not np.all(np.isfinite(corr)):
            raise ValueError("Correlation matrix contains NaN or infinite values")
        if not np.allclose(corr, corr.T, atol=1e-8):
            raise ValueError("Correlation matrix must be symmetric")
        if not np.allclose(np.diag(corr), 1.0, atol=1e-8):
            raise ValueError("Correlation matrix diagonal must be 1.0")

        for name in ("betas", "durations", "spread_durations", "vegas"):
            values = getattr(self, name)
            if values is not None and len(values) != n:
                raise ValueError(f"{name} length {len(values)} doesn't match {n} positions")
        return self

    @property
    def num_assets(self) -> int:
        return len(self.expected_returns)

    def correlation_array(self) -> np.ndarray:
        return np.asarray(self.correlation_matrix, dtype=float)


class LiquidityData(BaseModel):
    """Market liquidity inputs for one symbol."""

    model_config = ConfigDict(frozen=True)

    average_daily_volume: float
    bid_ask_spread: float
    current_price: float | None = None
    market_capitalization: float | None = None
    float_percentage: float = 0.8


class FactorShock(BaseModel):
    """A single market factor move within a stress scenario.

    Units depend on ``factor_type``: percent for equity index, currency and
    commodity shocks, basis points for interest rate and credit spread
    shocks, and volatility points for volatility shocks.
    """

    model_config = ConfigDict(frozen=True)

    factor_name: str
    factor_type: FactorType
    shock_type: ShockType = "RELATIVE"
    shock_value: float
    currency: str | None = None
    maturity: str | None = None
    region: str | None = None


class HistoricalPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: date
    end_date: date
    event_name: str


class StressScenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    scenario_type: Literal["HISTORICAL", "HYPOTHETICAL", "MONTE_CARLO"] = "HYPOTHETICAL"
    probability: float | None = None
    factor_shocks: list[FactorShock]
    historical_period: HistoricalPeriod | None = None


class RiskLimit(BaseModel):
    """Static limit configuration.

    Thresholds are fractions of ``limit_value`` (0.8 = warn at 80%
    utilization).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: LimitType
    scope: str = "PORTFOLIO"
    entity_id: str | None = None
    currency: str = "USD"
    limit_value: float = Field(gt=0)
    soft_limit_value: float | None = Field(default=None, gt=0)
    warning_threshold: float = 0.8
    breach_threshold: float = 1.0
    escalation_threshold: float = 1.2
    measurement_method: MeasurementMethod = "ABSOLUTE"
    is_active: bool = True
    effective_date: date
    expiry_date: date

    def is_effective(self, as_of_date: date) -> bool:
        return self.is_active and self.effective_date <= as_of_date <= self.expiry_date


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RiskRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    tenant_id: str = "default"
    as_of_date: date


class MonteCarloRequest(RiskRequest):
    number_of_simulations: int = Field(default=10000, ge=10)
    time_horizon: TimeHorizon = "1M"
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    include_jump_risk: bool = False
    volatility_model: VolatilityModel = "HISTORICAL"
    random_seed: int | None = None
    use_historical_correlations: bool = False
    correlation_lookback_period: int = Field(default=252, ge=2)


class LiquidityRiskRequest(RiskRequest):
    liquidation_timeframe: TimeHorizon = "1M"
    market_impact_model: MarketImpactModel = "SQUARE_ROOT"


class StressTestRequest(RiskRequest):
    stress_scenarios: list[StressScenario] = Field(default_factory=list)
    include_historical_scenarios: bool = False


class CorrelationAnalysisRequest(RiskRequest):
    lookback_period: int = Field(default=252, ge=2)
    include_asset_classes: bool = True
    include_sectors: bool = True
    include_geographies: bool = True


class RiskLimitRequest(RiskRequest):
    entity_id: str | None = None
    user_id: str = "system"
    # Caller-supplied metric values override the engine's own estimates
    metric_overrides: dict[str, float] = Field(default_factory=dict)
