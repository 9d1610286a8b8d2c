"""Risk calculation services.

Each service loads a portfolio snapshot from a ``PortfolioDataProvider``,
runs the matching computation in ``portfolio_risk.risk``, wraps the result
in its frozen model and hands it to the optional ``ResultSink``: store
first, then publish a completion event. A store failure propagates; a
publish failure is logged and the result is still returned.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Callable, Sequence

import structlog
from pydantic import BaseModel

from .config import Settings, get_settings
from .exceptions import DimensionMismatchError, EmptyPortfolioError
from .models import (
    TIME_HORIZON_DAYS,
    CorrelationAnalysisRequest,
    LiquidityRiskRequest,
    MarketParameters,
    MonteCarloRequest,
    Position,
    RiskLimitRequest,
    RiskRequest,
    StressTestRequest,
)
from .providers import PortfolioDataProvider, ResultSink
from .results import (
    CorrelationAnalysisResult,
    DomainEvent,
    LiquidityRiskResult,
    MonteCarloResult,
    RiskLimitAssessment,
    RiskLimitMonitoringReport,
    StressTestResult,
    _utcnow,
)
from .risk.correlation import analyze_portfolio_correlations
from .risk.covariance import historical_correlation
from .risk.limits import evaluate_limits, monitoring_report
from .risk.linalg import shrink_to_positive_definite
from .risk.liquidity import assess_portfolio_liquidity
from .risk.monte_carlo import simulate_portfolio_returns, summarize_simulation
from .risk.stress import HISTORICAL_SCENARIOS, run_stress_tests

logger = structlog.get_logger()

MONTE_CARLO_COMPLETED = "MONTE_CARLO_COMPLETED"
LIQUIDITY_ASSESSMENT_COMPLETED = "LIQUIDITY_ASSESSMENT_COMPLETED"
STRESS_TEST_COMPLETED = "STRESS_TEST_COMPLETED"
CORRELATION_ANALYSIS_COMPLETED = "CORRELATION_ANALYSIS_COMPLETED"
RISK_LIMITS_MONITORED = "RISK_LIMITS_MONITORED"


def _new_id() -> str:
    return str(uuid.uuid4())


class RiskService:
    """Shared plumbing for the calculation services.

    Args:
        provider: Source of positions and market inputs
        sink: Optional destination for results and events
        settings: Engine configuration (environment defaults when omitted)
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        provider: PortfolioDataProvider,
        sink: ResultSink | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.provider = provider
        self.sink = sink
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow

    def _load_positions(self, request: RiskRequest) -> list[Position]:
        positions = self.provider.get_portfolio_data(request.portfolio_id, request.as_of_date)
        if not positions:
            logger.error("portfolio_empty", portfolio_id=request.portfolio_id)
            raise EmptyPortfolioError(f"Portfolio {request.portfolio_id} has no positions")
        return positions

    def _load_market_parameters(
        self, positions: Sequence[Position], request: RiskRequest
    ) -> MarketParameters:
        params = self.provider.get_market_parameters(positions, request)
        if params.num_assets != len(positions):
            logger.error(
                "market_parameters_misaligned",
                portfolio_id=request.portfolio_id,
                num_positions=len(positions),
                num_assets=params.num_assets,
            )
            raise DimensionMismatchError(
                f"Market parameters cover {params.num_assets} assets for "
                f"{len(positions)} positions"
            )
        return params

    def _emit(self, result_type: str, result: BaseModel, event: DomainEvent) -> None:
        if self.sink is None:
            return

        self.sink.store(result_type, result)
        try:
            self.sink.publish(event)
        except Exception:
            logger.exception("risk_event_publish_failed", event_type=event.event_type)

    def _event(self, event_type: str, request: RiskRequest, entity_id: str, data: dict) -> DomainEvent:
        return DomainEvent(
            event_type=event_type,
            entity_id=entity_id,
            portfolio_id=request.portfolio_id,
            tenant_id=request.tenant_id,
            timestamp=self.clock(),
            data=data,
        )


class MonteCarloSimulationService(RiskService):

    def run_monte_carlo_simulation(
        self,
        request: MonteCarloRequest,
        cancel_event: threading.Event | None = None,
    ) -> MonteCarloResult:
        """Simulate portfolio returns over the request horizon.

        Args:
            request: Simulation parameters
            cancel_event: Checked between batches; when set the run aborts

        Raises:
            SimulationCancelledError: *cancel_event* was set mid-run
            NotPositiveDefiniteError: Correlation matrix cannot be factorised
        """
        positions = self._load_positions(request)
        params = self._load_market_parameters(positions, request)
        correlation = params.correlation_array()

        if request.use_historical_correlations:
            history = self.provider.get_historical_returns(
                positions, request.correlation_lookback_period, request.as_of_date
            )
            correlation, alpha = shrink_to_positive_definite(
                historical_correlation(history, request.correlation_lookback_period)
            )
            logger.info(
                "historical_correlations_loaded",
                portfolio_id=request.portfolio_id,
                observations=len(history),
                shrinkage=alpha,
            )

        try:
            returns = simulate_portfolio_returns(
                [p.market_value for p in positions],
                params.expected_returns,
                params.volatilities,
                correlation,
                number_of_simulations=request.number_of_simulations,
                time_horizon=request.time_horizon,
                include_jump_risk=request.include_jump_risk,
                volatility_model=request.volatility_model,
                jump_intensity=params.jump_intensity,
                random_seed=request.random_seed,
                batch_size=self.settings.MC_BATCH_SIZE,
                max_workers=self.settings.MC_MAX_WORKERS,
                jump_mean=self.settings.MC_JUMP_MEAN,
                jump_volatility=self.settings.MC_JUMP_VOLATILITY,
                trading_days=self.settings.TRADING_DAYS,
                cancel_event=cancel_event,
            )
            summary = summarize_simulation(
                returns, request.confidence_level, self.settings.TRADING_DAYS
            )
        except Exception:
            logger.exception("monte_carlo_simulation_failed", portfolio_id=request.portfolio_id)
            raise

        result = MonteCarloResult.model_validate({
            'id': _new_id(),
            'portfolio_id': request.portfolio_id,
            'tenant_id': request.tenant_id,
            'as_of_date': request.as_of_date,
            'calculation_date': self.clock(),
            'number_of_simulations': request.number_of_simulations,
            'time_horizon': request.time_horizon,
            'confidence_level': request.confidence_level,
            'random_seed': request.random_seed,
            **summary,
        })

        self._emit("monte_carlo", result, self._event(
            MONTE_CARLO_COMPLETED,
            request,
            result.id,
            {
                'var_95': result.var_95,
                'expected_return': result.expected_return,
                'has_converged': result.convergence_test.has_converged,
            },
        ))
        return result


class LiquidityRiskService(RiskService):

    def assess_liquidity_risk(self, request: LiquidityRiskRequest) -> LiquidityRiskResult:
        """Score liquidation time and cost for every position and the portfolio."""
        positions = self._load_positions(request)
        liquidity_data = self.provider.get_liquidity_data(positions, request.as_of_date)

        try:
            assessment = assess_portfolio_liquidity(
                positions,
                liquidity_data,
                TIME_HORIZON_DAYS[request.liquidation_timeframe],
                request.market_impact_model,
                self.settings.LIQUIDITY_PARTICIPATION_RATE,
            )
        except Exception:
            logger.exception("liquidity_assessment_failed", portfolio_id=request.portfolio_id)
            raise

        result = LiquidityRiskResult.model_validate({
            'id': _new_id(),
            'portfolio_id': request.portfolio_id,
            'tenant_id': request.tenant_id,
            'as_of_date': request.as_of_date,
            'calculation_date': self.clock(),
            'liquidation_timeframe': request.liquidation_timeframe,
            'market_impact_model': request.market_impact_model,
            **assessment,
        })

        self._emit("liquidity_risk", result, self._event(
            LIQUIDITY_ASSESSMENT_COMPLETED,
            request,
            result.id,
            {
                'liquidity_score': result.liquidity_score,
                'average_days_to_liquidate': result.average_days_to_liquidate,
                'liquidation_cost': result.liquidation_cost,
            },
        ))
        return result


class StressTestingService(RiskService):

    def execute_stress_test(self, request: StressTestRequest) -> StressTestResult:
        """Revalue the portfolio under each requested scenario."""
        positions = self._load_positions(request)
        params = self._load_market_parameters(positions, request)

        scenarios = list(request.stress_scenarios)
        if request.include_historical_scenarios:
            scenarios.extend(HISTORICAL_SCENARIOS)

        try:
            summary = run_stress_tests(
                positions,
                params,
                scenarios,
                correlation_factor=self.settings.STRESS_CORRELATION_FACTOR,
                report_threshold=self.settings.STRESS_CORRELATION_REPORT_THRESHOLD,
                base_currency=self.settings.BASE_CURRENCY,
            )
        except Exception:
            logger.exception("stress_test_failed", portfolio_id=request.portfolio_id)
            raise

        result = StressTestResult.model_validate({
            'id': _new_id(),
            'portfolio_id': request.portfolio_id,
            'tenant_id': request.tenant_id,
            'as_of_date': request.as_of_date,
            'calculation_date': self.clock(),
            **summary,
        })

        self._emit("stress_test", result, self._event(
            STRESS_TEST_COMPLETED,
            request,
            result.id,
            {
                'scenario_count': len(result.scenario_results),
                'worst_case_scenario': result.worst_case_scenario.scenario_id,
                'stressed_var': result.stressed_var,
            },
        ))
        return result


class CorrelationAnalysisService(RiskService):

    def analyze_correlations(self, request: CorrelationAnalysisRequest) -> CorrelationAnalysisResult:
        """Correlation structure, concentration and risk contributions from history."""
        positions = self._load_positions(request)
        returns = self.provider.get_historical_returns(
            positions, request.lookback_period, request.as_of_date
        )

        try:
            analysis = analyze_portfolio_correlations(
                positions,
                returns,
                lookback_period=request.lookback_period,
                include_asset_classes=request.include_asset_classes,
                include_sectors=request.include_sectors,
                include_geographies=request.include_geographies,
                trading_days=self.settings.TRADING_DAYS,
                tol=self.settings.EIGEN_TOLERANCE,
                max_iterations=self.settings.EIGEN_MAX_ITERATIONS,
                seed=self.settings.EIGEN_SEED,
            )
        except Exception:
            logger.exception("correlation_analysis_failed", portfolio_id=request.portfolio_id)
            raise

        result = CorrelationAnalysisResult.model_validate({
            'id': _new_id(),
            'portfolio_id': request.portfolio_id,
            'tenant_id': request.tenant_id,
            'as_of_date': request.as_of_date,
            'calculation_date': self.clock(),
            'lookback_period': request.lookback_period,
            **analysis,
        })

        self._emit("correlation_analysis", result, self._event(
            CORRELATION_ANALYSIS_COMPLETED,
            request,
            result.id,
            {
                'diversification_ratio': result.diversification_ratio,
                'effective_number_of_bets': result.effective_number_of_bets,
                'herfindahl_index': result.concentration_metrics.herfindahl_index,
            },
        ))
        return result


class RiskLimitMonitoringService(RiskService):

    def monitor_risk_limits(self, request: RiskLimitRequest) -> RiskLimitAssessment:
        """Measure every active limit of one portfolio against current metrics."""
        positions = self._load_positions(request)
        params = self._load_market_parameters(positions, request)
        limits = self.provider.get_risk_limits(request.portfolio_id, request.as_of_date)
        now = self.clock()

        try:
            evaluation = evaluate_limits(
                positions,
                params,
                limits,
                request.as_of_date,
                now,
                overrides=request.metric_overrides,
                low_capacity_fraction=self.settings.LOW_CAPACITY_FRACTION,
            )
        except Exception:
            logger.exception("risk_limit_monitoring_failed", portfolio_id=request.portfolio_id)
            raise

        result = RiskLimitAssessment.model_validate({
            'id': _new_id(),
            'portfolio_id': request.portfolio_id,
            'tenant_id': request.tenant_id,
            'as_of_date': request.as_of_date,
            'calculation_date': now,
            'calculated_by': request.user_id,
            'entity_id': request.entity_id,
            **evaluation,
        })

        self._emit("risk_limit_assessment", result, self._event(
            RISK_LIMITS_MONITORED,
            request,
            result.id,
            {
                'total_limits_monitored': result.total_limits_monitored,
                'total_breaches': result.total_breaches,
                'critical_breaches': result.critical_breaches,
            },
        ))
        return result

    def monitor_all_portfolio_limits(self, request: RiskLimitRequest) -> RiskLimitMonitoringReport:
        """Run limit monitoring for every portfolio of ``request.entity_id`` and roll up.

        ``request.portfolio_id`` is ignored; each portfolio gets its own request.
        """
        portfolio_ids = self.provider.list_portfolios(request.entity_id)
        assessments = []

        for portfolio_id in portfolio_ids:
            assessment = self.monitor_risk_limits(
                request.model_copy(update={'portfolio_id': portfolio_id})
            )
            assessments.append({
                'portfolio_id': portfolio_id,
                'total_limits_monitored': assessment.total_limits_monitored,
                'total_breaches': assessment.total_breaches,
                'critical_breaches': assessment.critical_breaches,
                'overall_utilization_percentage': assessment.overall_utilization_percentage,
            })

        report = RiskLimitMonitoringReport.model_validate({
            'id': _new_id(),
            'entity_id': request.entity_id,
            'tenant_id': request.tenant_id,
            'as_of_date': request.as_of_date,
            'report_date': self.clock(),
            **monitoring_report(assessments),
        })

        logger.info(
            "risk_limit_report_built",
            entity_id=request.entity_id,
            portfolio_count=report.portfolio_count,
            total_breaches=report.total_breaches,
        )
        return report
