"""
Portfolio Risk Engine

Monte Carlo simulation, liquidity risk, stress testing, correlation
analysis and risk limit monitoring for investment portfolios.
"""

from .config import Settings, get_settings
from .exceptions import (
    RiskEngineError,
    PortfolioNotFoundError,
    EmptyPortfolioError,
    DimensionMismatchError,
    NotPositiveDefiniteError,
    LiquidityDataError,
    SimulationCancelledError,
    InvalidStatusTransitionError,
)
from .logging_setup import configure_logging
from .models import (
    Position,
    MarketParameters,
    LiquidityData,
    FactorShock,
    StressScenario,
    RiskLimit,
    MonteCarloRequest,
    LiquidityRiskRequest,
    StressTestRequest,
    CorrelationAnalysisRequest,
    RiskLimitRequest,
)
from .providers import (
    PortfolioDataProvider,
    ResultSink,
    InMemoryPortfolioDataProvider,
    InMemoryResultSink,
)
from .services import (
    MonteCarloSimulationService,
    LiquidityRiskService,
    StressTestingService,
    CorrelationAnalysisService,
    RiskLimitMonitoringService,
)

__all__ = [
    'Settings',
    'get_settings',
    'configure_logging',
    # Errors
    'RiskEngineError',
    'PortfolioNotFoundError',
    'EmptyPortfolioError',
    'DimensionMismatchError',
    'NotPositiveDefiniteError',
    'LiquidityDataError',
    'SimulationCancelledError',
    'InvalidStatusTransitionError',
    # Inputs
    'Position',
    'MarketParameters',
    'LiquidityData',
    'FactorShock',
    'StressScenario',
    'RiskLimit',
    'MonteCarloRequest',
    'LiquidityRiskRequest',
    'StressTestRequest',
    'CorrelationAnalysisRequest',
    'RiskLimitRequest',
    # Collaborators
    'PortfolioDataProvider',
    'ResultSink',
    'InMemoryPortfolioDataProvider',
    'InMemoryResultSink',
    # Services
    'MonteCarloSimulationService',
    'LiquidityRiskService',
    'StressTestingService',
    'CorrelationAnalysisService',
    'RiskLimitMonitoringService',
]
