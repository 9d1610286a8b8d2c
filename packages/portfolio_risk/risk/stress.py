"""
Stress Testing Module

Factor-shock repricing of positions. Each scenario is a set of factor shocks
(equity index, rates, credit spreads, FX, commodities, volatility); positions
respond through beta, duration, spread duration, currency exposure,
commodity exposure or vega. Adverse scenarios also push pairwise
correlations toward 1 and scale volatilities up.
"""

from datetime import date
from typing import Dict, List, Optional, Sequence

import numpy as np
import structlog

from ..exceptions import DimensionMismatchError
from ..models import FactorShock, HistoricalPeriod, MarketParameters, Position, StressScenario
from .metrics import build_covariance, parametric_var, portfolio_volatility

logger = structlog.get_logger(__name__)

TRADING_DAYS = 252

# Divisor turning a quoted shock into a fractional move
SHOCK_UNITS = {
    'EQUITY_INDEX': 100.0,     # percent
    'CURRENCY': 100.0,         # percent
    'COMMODITY': 100.0,        # percent
    'INTEREST_RATE': 10_000.0,  # basis points
    'CREDIT_SPREAD': 10_000.0,  # basis points
    'VOLATILITY': 100.0,       # vol points
}

# Fallback sensitivities when market parameters carry none
DEFAULT_BETA = 1.0
DEFAULT_DURATION = 7.5
DEFAULT_SPREAD_DURATION = 5.0
DEFAULT_VEGA = 0.15
EQUITY_RATE_SENSITIVITY = -0.1
COMMODITY_SENSITIVITY = 0.5

HISTORICAL_SCENARIOS: List[StressScenario] = [
    StressScenario(
        id='covid_2020',
        name='COVID-19 Market Crash (March 2020)',
        description='Market conditions during the COVID-19 pandemic onset',
        scenario_type='HISTORICAL',
        probability=0.05,
        factor_shocks=[
            FactorShock(factor_name='S&P 500', factor_type='EQUITY_INDEX', shock_type='RELATIVE', shock_value=-34, region='US'),
            FactorShock(factor_name='10Y Treasury', factor_type='INTEREST_RATE', shock_type='ABSOLUTE', shock_value=-150, maturity='10Y'),
            FactorShock(factor_name='Investment Grade Credit', factor_type='CREDIT_SPREAD', shock_type='ABSOLUTE', shock_value=200),
            FactorShock(factor_name='VIX', factor_type='VOLATILITY', shock_type='ABSOLUTE', shock_value=50),
        ],
        historical_period=HistoricalPeriod(
            start_date=date(2020, 2, 19), end_date=date(2020, 3, 23), event_name='COVID-19 Pandemic'
        ),
    ),
    StressScenario(
        id='gfc_2008',
        name='Global Financial Crisis (2008)',
        description='Credit crunch and equity bear market of 2007-2009',
        scenario_type='HISTORICAL',
        probability=0.02,
        factor_shocks=[
            FactorShock(factor_name='S&P 500', factor_type='EQUITY_INDEX', shock_type='RELATIVE', shock_value=-57, region='US'),
            FactorShock(factor_name='High Yield Credit', factor_type='CREDIT_SPREAD', shock_type='ABSOLUTE', shock_value=1500),
            FactorShock(factor_name='Real Estate', factor_type='EQUITY_INDEX', shock_type='RELATIVE', shock_value=-70),
        ],
        historical_period=HistoricalPeriod(
            start_date=date(2007, 10, 9), end_date=date(2009, 3, 9), event_name='Global Financial Crisis'
        ),
    ),
    StressScenario(
        id='dotcom_2000',
        name='Dot-Com Bubble Burst (2000-2002)',
        description='Technology sector crash and bear market',
        scenario_type='HISTORICAL',
        probability=0.03,
        factor_shocks=[
            FactorShock(factor_name='NASDAQ', factor_type='EQUITY_INDEX', shock_type='RELATIVE', shock_value=-78, region='US'),
            FactorShock(factor_name='Technology Sector', factor_type='EQUITY_INDEX', shock_type='RELATIVE', shock_value=-80),
        ],
        historical_period=HistoricalPeriod(
            start_date=date(2000, 3, 10), end_date=date(2002, 10, 9), event_name='Dot-Com Bubble Burst'
        ),
    ),
]


def factor_key(shock: FactorShock) -> str:
    return f"{shock.factor_type}_{shock.factor_name}"


def normalize_shock(shock: FactorShock) -> float:
    """Quoted shock as a fraction: %/100, bps/10000, vol points/100."""
    return shock.shock_value / SHOCK_UNITS[shock.factor_type]


def _aligned(values: Optional[List[float]], index: int) -> Optional[float]:
    return None if values is None else values[index]


def position_sensitivity(
    position: Position,
    shock: FactorShock,
    index: int,
    params: MarketParameters,
    base_currency: str = 'USD',
) -> float:
    """Fractional value change of *position* per unit fractional factor move."""
    factor = shock.factor_type
    asset_class = position.asset_class

    if factor == 'EQUITY_INDEX':
        if asset_class != 'EQUITY':
            return 0.0
        beta = _aligned(params.betas, index)
        return beta if beta is not None else DEFAULT_BETA

    if factor == 'INTEREST_RATE':
        if asset_class == 'FIXED_INCOME':
            duration = _aligned(params.durations, index)
            return -(duration if duration is not None else DEFAULT_DURATION)
        if asset_class == 'EQUITY':
            return EQUITY_RATE_SENSITIVITY
        return 0.0

    if factor == 'CREDIT_SPREAD':
        if asset_class == 'FIXED_INCOME' and position.credit_rating:
            spread_duration = _aligned(params.spread_durations, index)
            return -(spread_duration if spread_duration is not None else DEFAULT_SPREAD_DURATION)
        return 0.0

    if factor == 'CURRENCY':
        if position.currency != base_currency and position.currency == shock.currency:
            return 1.0
        return 0.0

    if factor == 'COMMODITY':
        if asset_class == 'COMMODITY' or position.sector == 'ENERGY':
            return COMMODITY_SENSITIVITY
        return 0.0

    if factor == 'VOLATILITY':
        if position.instrument_type == 'OPTION':
            vega = _aligned(params.vegas, index)
            return vega if vega is not None else DEFAULT_VEGA
        return 0.0

    return 0.0


def stressed_correlation(corr: np.ndarray, factor: float) -> np.ndarray:
    """Move every off-diagonal correlation a fraction *factor* of the way to 1."""
    if not 0 <= factor <= 1:
        raise ValueError(f"Correlation stress factor must be in [0, 1], got {factor}")
    stressed = corr + factor * (1.0 - corr)
    np.fill_diagonal(stressed, 1.0)
    return stressed


def correlation_changes(
    symbols: Sequence[str],
    base: np.ndarray,
    stressed: np.ndarray,
    threshold: float = 0.05,
) -> List[Dict]:
    changes = []
    n = len(symbols)
    for i in range(n):
        for j in range(i + 1, n):
            delta = float(stressed[i, j] - base[i, j])
            if abs(delta) >= threshold:
                changes.append({
                    'asset1': symbols[i],
                    'asset2': symbols[j],
                    'base_correlation': float(base[i, j]),
                    'stressed_correlation': float(stressed[i, j]),
                    'correlation_change': delta,
                })
    changes.sort(key=lambda x: abs(x['correlation_change']), reverse=True)
    return changes


def apply_scenario(
    positions: Sequence[Position],
    params: MarketParameters,
    scenario: StressScenario,
    correlation_factor: float = 0.25,
    report_threshold: float = 0.05,
    base_currency: str = 'USD',
) -> Dict:
    """Reprice every position under one scenario.

    stressed_value = value + sum over shocks of value * sensitivity * move

    VaR and volatility under the scenario come from the shocked values,
    volatilities scaled by (1 + sum |move|), and, for adverse scenarios,
    correlations pushed toward 1.

    Returns:
        Dict keyed like ``ScenarioResult`` fields
    """
    n = len(positions)
    if params.num_assets != n:
        raise DimensionMismatchError(
            f"Market parameters cover {params.num_assets} assets, portfolio has {n} positions"
        )

    values = np.array([p.market_value for p in positions], dtype=float)
    total = float(values.sum())
    impacts = np.zeros(n)
    factor_impacts: Dict[str, float] = {}

    for shock in scenario.factor_shocks:
        move = normalize_shock(shock)
        shock_impact = np.array([
            values[i] * position_sensitivity(p, shock, i, params, base_currency) * move
            for i, p in enumerate(positions)
        ])
        impacts += shock_impact
        key = factor_key(shock)
        factor_impacts[key] = factor_impacts.get(key, 0.0) + float(shock_impact.sum())

    stressed_values = values + impacts
    portfolio_change = float(impacts.sum())
    stressed_total = total + portfolio_change

    position_impacts = []
    for i, p in enumerate(positions):
        position_impacts.append({
            'position_id': p.position_id,
            'security_id': p.security_id,
            'symbol': p.symbol,
            'current_value': float(values[i]),
            'stressed_value': float(stressed_values[i]),
            'absolute_change': float(impacts[i]),
            'percent_change': float(impacts[i] / values[i] * 100) if values[i] != 0 else 0.0,
            'contribution_to_portfolio_change': (
                float(impacts[i] / portfolio_change * 100) if portfolio_change != 0 else 0.0
            ),
        })
    position_impacts.sort(key=lambda x: abs(x['absolute_change']), reverse=True)

    base_corr = params.correlation_array()
    adverse = portfolio_change < 0
    corr = stressed_correlation(base_corr, correlation_factor) if adverse else base_corr.copy()

    vol_scale = 1.0 + sum(abs(normalize_shock(s)) for s in scenario.factor_shocks)
    stressed_vols = np.asarray(params.volatilities, dtype=float) * vol_scale
    annual_cov = build_covariance(stressed_vols, corr)

    var_under_scenario = parametric_var(
        stressed_values, annual_cov / TRADING_DAYS, confidence=0.95, horizon_days=1, portfolio_value=1.0
    )
    volatility_under_scenario = (
        portfolio_volatility(stressed_values, annual_cov) / stressed_total if stressed_total > 0 else 0.0
    )

    logger.info(
        "apply_scenario: scenario applied",
        scenario=scenario.id,
        portfolio_change=portfolio_change,
        adverse=adverse,
    )

    return {
        'scenario_id': scenario.id,
        'scenario_name': scenario.name,
        'portfolio_value': stressed_total,
        'portfolio_change': portfolio_change,
        'portfolio_change_percent': portfolio_change / total * 100 if total != 0 else 0.0,
        'position_impacts': position_impacts,
        'factor_impacts': factor_impacts,
        'var_under_scenario': float(var_under_scenario),
        'volatility_under_scenario': float(volatility_under_scenario),
        'correlation_changes': correlation_changes(
            [p.symbol for p in positions], base_corr, corr, report_threshold
        ),
    }


def factor_sensitivity_analysis(
    scenarios: Sequence[StressScenario],
    results: Sequence[Dict],
) -> List[Dict]:
    """Rank factors by how much of the scenario P&L variance they drive.

    For each factor, pairs (move, factor P&L) across scenarios give a
    sensitivity by least squares through the origin. The contribution is the
    factor's sum of squared P&L, reported also as a share of all factors.
    """
    moves: Dict[str, List[float]] = {}
    pnl: Dict[str, List[float]] = {}

    for scenario, result in zip(scenarios, results):
        seen = set()
        for shock in scenario.factor_shocks:
            key = factor_key(shock)
            if key in seen:
                continue
            seen.add(key)
            total_move = sum(normalize_shock(s) for s in scenario.factor_shocks if factor_key(s) == key)
            moves.setdefault(key, []).append(total_move)
            pnl.setdefault(key, []).append(result['factor_impacts'].get(key, 0.0))

    contributions = {key: float(np.sum(np.square(pnl[key]))) for key in moves}
    grand_total = sum(contributions.values())

    sensitivities = []
    for key in moves:
        x = np.asarray(moves[key])
        y = np.asarray(pnl[key])
        denominator = float(x @ x)
        sensitivities.append({
            'factor_name': key,
            'sensitivity': float(x @ y / denominator) if denominator > 0 else 0.0,
            'contribution': contributions[key],
            'percent_contribution': contributions[key] / grand_total * 100 if grand_total > 0 else 0.0,
            'scenario_count': len(x),
        })

    sensitivities.sort(key=lambda x: x['contribution'], reverse=True)
    return sensitivities


def run_stress_tests(
    positions: Sequence[Position],
    params: MarketParameters,
    scenarios: Sequence[StressScenario],
    correlation_factor: float = 0.25,
    report_threshold: float = 0.05,
    base_currency: str = 'USD',
) -> Dict:
    """Apply every scenario and summarise.

    Returns:
        Dict keyed like the computed fields of ``StressTestResult``
    """
    if not positions:
        raise ValueError("Cannot stress test an empty portfolio")

    if not scenarios:
        raise ValueError("At least one stress scenario is required")

    results = [
        apply_scenario(positions, params, s, correlation_factor, report_threshold, base_currency)
        for s in scenarios
    ]

    changes_pct = np.array([r['portfolio_change_percent'] for r in results])
    changes = np.array([r['portfolio_change'] for r in results])
    worst = results[int(np.argmin(changes_pct))]
    best = results[int(np.argmax(changes_pct))]

    summary = {
        'scenario_results': results,
        'worst_case_scenario': worst,
        'best_case_scenario': best,
        'average_impact': float(changes.mean()),
        'stressed_var': abs(worst['portfolio_change']),
        # Population stdev of scenario returns, in percent
        'stressed_volatility': float(np.std(changes_pct / 100) * 100),
        'max_drawdown': float(max(0.0, -changes_pct.min())),
        'factor_sensitivities': factor_sensitivity_analysis(scenarios, results),
    }

    logger.info(
        "run_stress_tests: stress test complete",
        num_scenarios=len(results),
        worst_scenario=worst['scenario_id'],
        stressed_var=summary['stressed_var'],
    )

    return summary
