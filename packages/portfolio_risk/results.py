"""Result models produced by the risk services.

Every result is computed fresh per request and is frozen once built. The
only records with a lifecycle are breaches, alerts, escalations and
approvals, whose status moves OPEN -> ACKNOWLEDGED -> RESOLVED through
methods that return a new record.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import InvalidStatusTransitionError
from .models import RiskLimit


def _utcnow() -> datetime:
    """Return the current UTC datetime, timezone-aware."""
    return datetime.now(timezone.utc)


class LiquidityCategory(str, Enum):
    """Ordinal liquidity bucket, best first."""

    IMMEDIATE = "IMMEDIATE"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    ILLIQUID = "ILLIQUID"

    @property
    def rank(self) -> int:
        return list(LiquidityCategory).index(self)


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RecordStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


_ALLOWED_TRANSITIONS = {
    RecordStatus.OPEN: {RecordStatus.ACKNOWLEDGED},
    RecordStatus.ACKNOWLEDGED: {RecordStatus.RESOLVED},
    RecordStatus.RESOLVED: set(),
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ResultHeader(_Frozen):
    id: str
    portfolio_id: str
    tenant_id: str
    as_of_date: date
    calculation_date: datetime = Field(default_factory=_utcnow)
    calculated_by: str = "system"


# ---------------------------------------------------------------------------
# Monte Carlo
# ---------------------------------------------------------------------------


class PercentileResult(_Frozen):
    percentile: int
    value: float


class ConfidenceInterval(_Frozen):
    lower: float
    upper: float


class ConvergenceTest(_Frozen):
    has_converged: bool
    convergence_threshold: float
    standard_error: float
    confidence_interval: ConfidenceInterval
    batch_means: list[float]


class MonteCarloResult(ResultHeader):
    number_of_simulations: int
    time_horizon: str
    confidence_level: float
    expected_return: float
    standard_deviation: float
    skewness: float
    kurtosis: float
    var_95: float
    var_99: float
    cvar_95: float
    cvar_99: float
    var_at_confidence: float
    cvar_at_confidence: float
    expected_shortfall: float
    percentiles: list[PercentileResult]
    max_drawdown: float
    time_to_recovery: float
    probability_of_loss: float
    convergence_test: ConvergenceTest
    random_seed: int | None = None


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------


class PositionLiquidity(_Frozen):
    position_id: str
    security_id: str
    symbol: str
    market_value: float
    liquidity_category: LiquidityCategory
    days_to_liquidate: int
    liquidation_cost: float
    market_impact: float
    average_daily_volume: float
    bid_ask_spread: float
    market_capitalization: float | None = None
    float_percentage: float = 0.8


class LiquidityBreakdown(_Frozen):
    category: str
    percentage: float
    liquidity_category: LiquidityCategory
    average_days_to_liquidate: float
    estimated_cost: float


class LiquidityMetrics(_Frozen):
    liquidity_score: int
    average_days_to_liquidate: float
    liquidation_cost: float
    market_impact: float
    liquidatable_within_timeframe_pct: float


class LiquidityStressResult(_Frozen):
    stress_scenario: str
    volume_reduction: float
    spread_increase: float
    liquidity_multiplier: float
    baseline: LiquidityMetrics
    stressed: LiquidityMetrics
    liquidity_score_change: int
    days_to_liquidate_change: float
    liquidation_cost_change: float
    position_liquidity: list[PositionLiquidity]


class LiquidityRiskResult(ResultHeader):
    liquidation_timeframe: str
    market_impact_model: str
    liquidity_score: int
    average_days_to_liquidate: float
    liquidation_cost: float
    market_impact: float
    liquidatable_within_timeframe_pct: float
    liquidity_by_asset_class: list[LiquidityBreakdown]
    liquidity_by_sector: list[LiquidityBreakdown]
    liquidity_by_size: list[LiquidityBreakdown]
    position_liquidity: list[PositionLiquidity]
    liquidity_under_stress: list[LiquidityStressResult]


# ---------------------------------------------------------------------------
# Stress testing
# ---------------------------------------------------------------------------


class PositionImpact(_Frozen):
    position_id: str
    security_id: str
    symbol: str
    current_value: float
    stressed_value: float
    absolute_change: float
    percent_change: float
    contribution_to_portfolio_change: float


class CorrelationChange(_Frozen):
    asset1: str
    asset2: str
    base_correlation: float
    stressed_correlation: float
    correlation_change: float


class ScenarioResult(_Frozen):
    scenario_id: str
    scenario_name: str
    portfolio_value: float
    portfolio_change: float
    portfolio_change_percent: float
    position_impacts: list[PositionImpact]
    factor_impacts: dict[str, float]
    var_under_scenario: float
    volatility_under_scenario: float
    correlation_changes: list[CorrelationChange]


class FactorSensitivity(_Frozen):
    factor_name: str
    sensitivity: float
    contribution: float
    percent_contribution: float
    scenario_count: int


class StressTestResult(ResultHeader):
    scenario_results: list[ScenarioResult]
    worst_case_scenario: ScenarioResult
    best_case_scenario: ScenarioResult
    average_impact: float
    stressed_var: float
    stressed_volatility: float
    max_drawdown: float
    factor_sensitivities: list[FactorSensitivity]


# ---------------------------------------------------------------------------
# Correlation analysis
# ---------------------------------------------------------------------------


class ComponentLoading(_Frozen):
    asset_id: str
    loading: float


class PrincipalComponent(_Frozen):
    component_number: int
    eigenvalue: float
    variance_explained: float
    cumulative_variance_explained: float
    loadings: list[ComponentLoading]


class CorrelationMatrixResult(_Frozen):
    assets: list[str]
    matrix: list[list[float]]
    eigenvalues: list[float]
    principal_components: list[PrincipalComponent]


class CategoryConcentration(_Frozen):
    category: str
    percentage: float
    rank: int


class ConcentrationMetrics(_Frozen):
    herfindahl_index: float
    top5_concentration: float
    top10_concentration: float
    effective_number_of_positions: float
    asset_class_concentration: list[CategoryConcentration]
    sector_concentration: list[CategoryConcentration]
    geography_concentration: list[CategoryConcentration]
    currency_concentration: list[CategoryConcentration]


class RiskContribution(_Frozen):
    asset_id: str
    symbol: str
    weight: float
    risk_contribution: float
    percent_contribution: float
    marginal_risk: float


class CorrelationAnalysisResult(ResultHeader):
    lookback_period: int
    position_correlations: CorrelationMatrixResult
    asset_class_correlations: CorrelationMatrixResult | None = None
    sector_correlations: CorrelationMatrixResult | None = None
    geography_correlations: CorrelationMatrixResult | None = None
    concentration_metrics: ConcentrationMetrics
    diversification_ratio: float
    effective_number_of_bets: float
    portfolio_volatility: float
    risk_contributions: list[RiskContribution]


# ---------------------------------------------------------------------------
# Limit monitoring
# ---------------------------------------------------------------------------


class _StatusRecord(_Frozen):
    """Record whose only permitted mutation is a forward status transition."""

    status: RecordStatus = RecordStatus.OPEN
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    def _transition(self, target: RecordStatus, **updates: Any):
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransitionError(
                f"Cannot move {type(self).__name__} from {self.status.value} to {target.value}"
            )
        return self.model_copy(update={"status": target, **updates})

    def acknowledge(self, user: str, at: datetime | None = None):
        return self._transition(
            RecordStatus.ACKNOWLEDGED,
            acknowledged_at=at or _utcnow(),
            acknowledged_by=user,
        )

    def resolve(self, user: str, at: datetime | None = None):
        return self._transition(
            RecordStatus.RESOLVED,
            resolved_at=at or _utcnow(),
            resolved_by=user,
        )


class RiskMetricValue(_Frozen):
    metric_type: str
    value: float
    currency: str = "USD"
    as_of_date: date
    calculation_method: str
    details: dict[str, float] = Field(default_factory=dict)


class LimitUtilization(_Frozen):
    limit_id: str
    limit_name: str
    limit_type: str
    limit_value: float
    soft_limit_value: float | None
    current_value: float
    utilization_percentage: float
    soft_utilization_percentage: float
    available_capacity: float
    is_breached: bool
    is_soft_breached: bool
    is_warning: bool
    requires_escalation: bool


class LimitBreach(_StatusRecord):
    id: str
    limit_id: str
    limit_name: str
    limit_type: str
    breach_type: Literal["HARD_LIMIT", "SOFT_LIMIT"]
    severity: Severity
    breach_value: float
    limit_value: float
    excess_amount: float
    excess_percentage: float
    utilization_percentage: float
    breach_date: datetime
    is_escalated: bool
    requires_approval: bool
    recommended_actions: list[str]


class RiskLimitAlert(_StatusRecord):
    id: str
    type: Literal["LIMIT_BREACH", "LIMIT_WARNING", "LOW_CAPACITY"]
    severity: Severity
    limit_id: str
    limit_name: str
    message: str
    description: str
    current_value: float
    limit_value: float
    requires_action: bool
    created_at: datetime


class RiskLimitEscalation(_StatusRecord):
    id: str
    breach_id: str
    limit_id: str
    limit_name: str
    severity: Severity
    escalated_to: str
    escalation_reason: str
    escalation_date: datetime
    due_date: datetime


class RiskLimitApproval(_StatusRecord):
    id: str
    breach_id: str
    limit_id: str
    limit_name: str
    approval_type: str = "BREACH_OVERRIDE"
    required_approver: str
    approval_reason: str
    request_date: datetime
    due_date: datetime


class RiskLimitRecommendation(_Frozen):
    id: str
    type: Literal["BREACH_RESOLUTION", "UTILIZATION_MANAGEMENT"]
    priority: Literal["LOW", "MEDIUM", "HIGH"]
    limit_id: str
    limit_name: str
    title: str
    description: str
    actions: list[str]
    implementation_timeframe: str
    estimated_cost: float
    risk_reduction: float


class ConsolidatedLimit(_Frozen):
    limit_type: str
    number_of_limits: int
    total_limit_value: float
    total_utilization: float
    utilization_percentage: float
    available_capacity: float
    number_of_breaches: int
    average_utilization: float
    max_utilization: float
    min_utilization: float


class RiskLimitAssessment(ResultHeader):
    entity_id: str | None = None
    total_limits_monitored: int
    total_breaches: int
    critical_breaches: int
    overall_utilization_percentage: float
    risk_limits: list[RiskLimit]
    current_risk_metrics: list[RiskMetricValue]
    limit_utilizations: list[LimitUtilization]
    breaches: list[LimitBreach]
    alerts: list[RiskLimitAlert]
    escalations: list[RiskLimitEscalation]
    approvals: list[RiskLimitApproval]
    recommendations: list[RiskLimitRecommendation]
    consolidated_limits: list[ConsolidatedLimit]


class PortfolioAssessmentSummary(_Frozen):
    portfolio_id: str
    total_breaches: int
    critical_breaches: int
    utilization_percentage: float


class RiskLimitMonitoringReport(_Frozen):
    id: str
    entity_id: str | None
    tenant_id: str
    as_of_date: date
    report_date: datetime = Field(default_factory=_utcnow)
    portfolio_count: int
    total_limits_monitored: int
    total_breaches: int
    total_critical_breaches: int
    overall_utilization_percentage: float
    portfolio_assessments: list[PortfolioAssessmentSummary]
    executive_summary: str
    key_risks: list[str]
    recommendations: list[str]


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------


class DomainEvent(_Frozen):
    """Event handed to the result sink after a calculation completes."""

    event_type: str
    entity_id: str
    portfolio_id: str
    tenant_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    data: dict[str, Any]
