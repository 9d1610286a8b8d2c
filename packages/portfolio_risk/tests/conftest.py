"""
Shared test fixtures for the portfolio risk test suite.

Provides consistent test data across all test modules:
- Sample positions spanning asset classes, sectors and geographies
- Aligned market parameters and liquidity inputs
- Sample returns DataFrames with correlation structure, keyed by position id
- An in-memory provider / sink pair wired to the above
"""

from datetime import date, datetime, timezone

import pytest
import numpy as np
import pandas as pd

from portfolio_risk.config import Settings
from portfolio_risk.models import LiquidityData, MarketParameters, Position
from portfolio_risk.providers import InMemoryPortfolioDataProvider, InMemoryResultSink


AS_OF = date(2024, 6, 28)
FIXED_NOW = datetime(2024, 6, 28, 16, 0, tzinfo=timezone.utc)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def sample_positions():
    """Five positions: three equities, one bond, one commodity.

    Returns:
        List[Position]: Gross value 10M
    """
    return [
        Position(position_id='p1', security_id='s1', symbol='AAPL', market_value=3_000_000,
                 asset_class='EQUITY', sector='Technology', geography='US', current_price=190.0,
                 issuer='Apple Inc'),
        Position(position_id='p2', security_id='s2', symbol='MSFT', market_value=2_500_000,
                 asset_class='EQUITY', sector='Technology', geography='US', current_price=420.0,
                 issuer='Microsoft Corp'),
        Position(position_id='p3', security_id='s3', symbol='SAP', market_value=1_500_000,
                 asset_class='EQUITY', sector='Technology', geography='EU', currency='EUR',
                 current_price=180.0, issuer='SAP SE'),
        Position(position_id='p4', security_id='s4', symbol='UST10', market_value=2_000_000,
                 asset_class='FIXED_INCOME', sector='Government', geography='US', current_price=98.0,
                 issuer='US Treasury'),
        Position(position_id='p5', security_id='s5', symbol='GLD', market_value=1_000_000,
                 asset_class='COMMODITY', sector='Metals', geography='GLOBAL', current_price=215.0),
    ]


@pytest.fixture
def sample_correlation():
    """5x5 positive definite correlation matrix aligned with sample_positions."""
    return np.array([
        [1.00, 0.70, 0.50, -0.20, 0.10],
        [0.70, 1.00, 0.55, -0.15, 0.05],
        [0.50, 0.55, 1.00, -0.10, 0.10],
        [-0.20, -0.15, -0.10, 1.00, 0.20],
        [0.10, 0.05, 0.10, 0.20, 1.00],
    ])


@pytest.fixture
def sample_market_parameters(sample_correlation):
    """Annual drift / vol per position plus factor sensitivities."""
    return MarketParameters(
        expected_returns=[0.10, 0.09, 0.07, 0.03, 0.04],
        volatilities=[0.28, 0.25, 0.22, 0.07, 0.16],
        correlation_matrix=sample_correlation.tolist(),
        jump_intensity=0.1,
        betas=[1.2, 1.1, 0.9, 0.0, 0.2],
        durations=[0.0, 0.0, 0.0, 8.0, 0.0],
    )


@pytest.fixture
def sample_liquidity_data():
    """Liquidity inputs per symbol.

    Returns:
        Dict[str, LiquidityData]: Deep equity markets, a thinner EU line
    """
    return {
        'AAPL': LiquidityData(average_daily_volume=55_000_000, bid_ask_spread=0.0001),
        'MSFT': LiquidityData(average_daily_volume=22_000_000, bid_ask_spread=0.0001),
        'SAP': LiquidityData(average_daily_volume=1_200_000, bid_ask_spread=0.0005),
        'UST10': LiquidityData(average_daily_volume=5_000_000, bid_ask_spread=0.0002),
        'GLD': LiquidityData(average_daily_volume=7_000_000, bid_ask_spread=0.0003),
    }


@pytest.fixture
def sample_returns():
    """Create sample returns DataFrame with correlation structure.

    Returns:
        pd.DataFrame: Returns matrix (252 x 5) with DatetimeIndex, columns are position ids
            p2 and p3 are correlated with p1
    """
    np.random.seed(42)
    dates = pd.bdate_range(end='2024-06-28', periods=252)
    ids = ['p1', 'p2', 'p3', 'p4', 'p5']

    data = np.random.normal(0, 0.015, (len(dates), len(ids)))
    data[:, 1] = 0.7 * data[:, 0] + 0.3 * data[:, 1]
    data[:, 2] = 0.5 * data[:, 0] + 0.5 * data[:, 2]

    return pd.DataFrame(data, index=dates, columns=ids)


@pytest.fixture
def settings():
    """Deterministic settings independent of the environment."""
    return Settings(MC_BATCH_SIZE=500, MC_MAX_WORKERS=2, EIGEN_SEED=7)


@pytest.fixture
def provider(sample_positions, sample_market_parameters, sample_returns, sample_liquidity_data):
    return InMemoryPortfolioDataProvider(
        portfolios={'PF1': sample_positions},
        market_parameters={'PF1': sample_market_parameters},
        returns=sample_returns,
        liquidity=sample_liquidity_data,
        entities={'ENT1': ['PF1']},
    )


@pytest.fixture
def sink():
    return InMemoryResultSink()
