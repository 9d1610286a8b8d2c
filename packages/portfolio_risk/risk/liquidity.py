"""
Liquidity Risk Module

Days-to-liquidate under a daily volume participation cap, spread plus market
impact liquidation cost, position and portfolio liquidity scores, breakdowns
by category and size, and canned liquidity stress scenarios.
"""

import math
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import structlog

from ..exceptions import LiquidityDataError
from ..models import LiquidityData, Position
from ..results import LiquidityCategory

logger = structlog.get_logger(__name__)

DEFAULT_PRICE = 100.0

# Asset class fallbacks when no market liquidity data is supplied
CLASS_DEFAULTS = {
    'EQUITY': {'average_daily_volume': 10_000_000, 'bid_ask_spread': 0.005},
    'FIXED_INCOME': {'average_daily_volume': 5_000_000, 'bid_ask_spread': 0.01},
    'ALTERNATIVES': {'average_daily_volume': 1_000_000, 'bid_ask_spread': 0.02},
}

# Upper bound (inclusive) on days for each category, best first
CATEGORY_DAY_LIMITS = [
    (1, LiquidityCategory.IMMEDIATE),
    (7, LiquidityCategory.HIGH),
    (30, LiquidityCategory.MEDIUM),
    (90, LiquidityCategory.LOW),
]

CATEGORY_SCORES = {
    LiquidityCategory.IMMEDIATE: 95,
    LiquidityCategory.HIGH: 80,
    LiquidityCategory.MEDIUM: 60,
    LiquidityCategory.LOW: 35,
    LiquidityCategory.ILLIQUID: 10,
}

SIZE_BUCKETS = ['Large (>$1M)', 'Medium ($100K-$1M)', 'Small (<$100K)']

# volume_reduction scales ADV, spread_increase scales spread,
# liquidity_multiplier stretches the liquidation horizon
LIQUIDITY_STRESS_SCENARIOS = [
    {
        'name': 'Market Volatility Spike',
        'volume_reduction': 0.5,
        'spread_increase': 2.0,
        'liquidity_multiplier': 1.5,
    },
    {
        'name': 'Credit Crisis',
        'volume_reduction': 0.3,
        'spread_increase': 3.0,
        'liquidity_multiplier': 2.0,
    },
    {
        'name': 'Flash Crash',
        'volume_reduction': 0.1,
        'spread_increase': 5.0,
        'liquidity_multiplier': 3.0,
    },
]


def liquidity_category(days_to_liquidate: float) -> LiquidityCategory:
    """Map days-to-liquidate to its ordinal category (<=1, <=7, <=30, <=90, >90)."""
    for limit, category in CATEGORY_DAY_LIMITS:
        if days_to_liquidate <= limit:
            return category
    return LiquidityCategory.ILLIQUID


def days_to_liquidate(shares: float, average_daily_volume: float, participation_rate: float = 0.20) -> int:
    """ceil(shares / (ADV * participation)), floored at one day."""
    if average_daily_volume <= 0:
        raise LiquidityDataError(f"Average daily volume must be positive, got {average_daily_volume}")
    if not 0 < participation_rate <= 1:
        raise ValueError(f"Participation rate must be in (0, 1], got {participation_rate}")
    return max(1, math.ceil(shares / (average_daily_volume * participation_rate)))


def market_impact_cost(
    market_value: float,
    average_daily_volume: float,
    model: str = 'SQUARE_ROOT',
    participation_rate: float = 0.20,
) -> float:
    """Impact cost for liquidating *market_value* against a volume cap.

    With volume_ratio = value / (ADV * participation):
        LINEAR       value * 0.01  * volume_ratio
        SQUARE_ROOT  value * 0.015 * sqrt(volume_ratio)
        POWER_LAW    value * 0.02  * volume_ratio ** 0.6
    """
    if average_daily_volume <= 0:
        raise LiquidityDataError(f"Average daily volume must be positive, got {average_daily_volume}")

    volume_ratio = market_value / (average_daily_volume * participation_rate)

    if model == 'LINEAR':
        return market_value * 0.01 * volume_ratio
    if model == 'SQUARE_ROOT':
        return market_value * 0.015 * math.sqrt(volume_ratio)
    if model == 'POWER_LAW':
        return market_value * 0.02 * volume_ratio ** 0.6
    raise ValueError(f"Unknown market impact model: {model}")


def urgency_multiplier(days: float) -> float:
    if days <= 1:
        return 1.5
    if days <= 7:
        return 1.2
    return 1.0


def liquidation_cost(
    market_value: float,
    average_daily_volume: float,
    bid_ask_spread: float,
    days: float,
    model: str = 'SQUARE_ROOT',
    participation_rate: float = 0.20,
) -> float:
    """(half-spread cost + market impact cost) * urgency multiplier."""
    spread_cost = market_value * bid_ask_spread * 0.5
    impact = market_impact_cost(market_value, average_daily_volume, model, participation_rate)
    return (spread_cost + impact) * urgency_multiplier(days)


def _resolve_inputs(position: Position, data: Optional[LiquidityData]) -> Dict:
    defaults = CLASS_DEFAULTS.get(position.asset_class, CLASS_DEFAULTS['EQUITY'])

    adv = data.average_daily_volume if data is not None else defaults['average_daily_volume']
    spread = data.bid_ask_spread if data is not None else defaults['bid_ask_spread']
    price = position.current_price
    if price is None and data is not None:
        price = data.current_price
    if price is None:
        price = DEFAULT_PRICE

    if position.market_value <= 0:
        raise LiquidityDataError(
            f"Position {position.position_id} has non-positive market value {position.market_value}"
        )
    if adv <= 0:
        logger.error("assess_position_liquidity: non-positive volume", symbol=position.symbol, adv=adv)
        raise LiquidityDataError(f"Average daily volume for {position.symbol} must be positive, got {adv}")
    if spread < 0:
        raise LiquidityDataError(f"Bid-ask spread for {position.symbol} must be non-negative, got {spread}")
    if price <= 0:
        raise LiquidityDataError(f"Price for {position.symbol} must be positive, got {price}")

    return {
        'average_daily_volume': float(adv),
        'bid_ask_spread': float(spread),
        'price': float(price),
        'market_capitalization': data.market_capitalization if data is not None else None,
        'float_percentage': data.float_percentage if data is not None else 0.8,
    }


def assess_position_liquidity(
    position: Position,
    data: Optional[LiquidityData] = None,
    model: str = 'SQUARE_ROOT',
    participation_rate: float = 0.20,
) -> Dict:
    """Liquidity profile of one position.

    Returns:
        Dict keyed like ``PositionLiquidity`` fields

    Raises:
        LiquidityDataError: Non-positive volume, price or market value
    """
    inputs = _resolve_inputs(position, data)
    shares = position.market_value / inputs['price']
    days = days_to_liquidate(shares, inputs['average_daily_volume'], participation_rate)
    cost = liquidation_cost(
        position.market_value,
        inputs['average_daily_volume'],
        inputs['bid_ask_spread'],
        days,
        model,
        participation_rate,
    )

    return {
        'position_id': position.position_id,
        'security_id': position.security_id,
        'symbol': position.symbol,
        'market_value': position.market_value,
        'liquidity_category': liquidity_category(days),
        'days_to_liquidate': days,
        'liquidation_cost': cost,
        'market_impact': cost / position.market_value,
        'average_daily_volume': inputs['average_daily_volume'],
        'bid_ask_spread': inputs['bid_ask_spread'],
        'market_capitalization': inputs['market_capitalization'],
        'float_percentage': inputs['float_percentage'],
        'price': inputs['price'],
    }


def position_liquidity_score(liquidity: Mapping) -> float:
    """Category base score adjusted for spread and market cap, clipped to 0..100."""
    score = CATEGORY_SCORES[liquidity['liquidity_category']]

    spread = liquidity['bid_ask_spread']
    if spread < 0.005:
        score += 5
    elif spread > 0.05:
        score -= 10

    market_cap = liquidity.get('market_capitalization')
    if market_cap:
        if market_cap > 10_000_000_000:
            score += 3
        elif market_cap < 1_000_000_000:
            score -= 5

    return float(min(100, max(0, score)))


def portfolio_liquidity_metrics(position_liquidity: Sequence[Mapping], timeframe_days: int) -> Dict:
    """Value-weighted portfolio liquidity metrics.

    Returns:
        Dict with liquidity_score (rounded int), average_days_to_liquidate
        (1 dp), liquidation_cost, market_impact (% of value) and
        liquidatable_within_timeframe_pct
    """
    values = np.array([p['market_value'] for p in position_liquidity], dtype=float)
    total = float(values.sum())
    if total <= 0:
        raise LiquidityDataError("Portfolio market value must be positive")

    weights = values / total
    days = np.array([p['days_to_liquidate'] for p in position_liquidity], dtype=float)
    scores = np.array([position_liquidity_score(p) for p in position_liquidity])
    total_cost = float(sum(p['liquidation_cost'] for p in position_liquidity))

    return {
        'liquidity_score': int(round(float(weights @ scores))),
        'average_days_to_liquidate': round(float(weights @ days), 1),
        'liquidation_cost': total_cost,
        'market_impact': total_cost / total * 100,
        'liquidatable_within_timeframe_pct': float(weights[days <= timeframe_days].sum() * 100),
    }


def size_bucket(market_value: float) -> str:
    if market_value >= 1_000_000:
        return SIZE_BUCKETS[0]
    if market_value >= 100_000:
        return SIZE_BUCKETS[1]
    return SIZE_BUCKETS[2]


def liquidity_breakdown(position_liquidity: Sequence[Mapping], groups: Sequence[str]) -> List[Dict]:
    """Aggregate liquidity per group label, largest share first.

    Average days are value-weighted within each group, and the group category
    is derived from that average.
    """
    frame = pd.DataFrame({
        'group': list(groups),
        'value': [p['market_value'] for p in position_liquidity],
        'days': [p['days_to_liquidate'] for p in position_liquidity],
        'cost': [p['liquidation_cost'] for p in position_liquidity],
    })
    frame['weighted_days'] = frame['value'] * frame['days']
    total = float(frame['value'].sum())

    grouped = frame.groupby('group', sort=False).sum(numeric_only=True)
    breakdown = []
    for group, row in grouped.iterrows():
        average_days = row['weighted_days'] / row['value'] if row['value'] > 0 else 0.0
        breakdown.append({
            'category': str(group),
            'percentage': float(row['value'] / total * 100),
            'liquidity_category': liquidity_category(average_days),
            'average_days_to_liquidate': round(float(average_days), 1),
            'estimated_cost': float(row['cost']),
        })

    breakdown.sort(key=lambda x: x['percentage'], reverse=True)
    return breakdown


def apply_liquidity_stress(
    position_liquidity: Sequence[Mapping],
    scenario: Mapping,
    model: str = 'SQUARE_ROOT',
    participation_rate: float = 0.20,
) -> List[Dict]:
    """Re-run position liquidity with stressed volume and spread.

    Participation is halved under stress and the resulting days are
    stretched by the scenario's liquidity multiplier.
    """
    stressed_rate = participation_rate / 2
    stressed = []

    for p in position_liquidity:
        volume = p['average_daily_volume'] * scenario['volume_reduction']
        spread = p['bid_ask_spread'] * scenario['spread_increase']
        shares = p['market_value'] / p.get('price', DEFAULT_PRICE)
        base_days = days_to_liquidate(shares, volume, stressed_rate)
        days = max(1, math.ceil(base_days * scenario['liquidity_multiplier']))
        cost = liquidation_cost(p['market_value'], volume, spread, days, model, participation_rate)

        stressed.append({
            **p,
            'liquidity_category': liquidity_category(days),
            'days_to_liquidate': days,
            'liquidation_cost': cost,
            'market_impact': cost / p['market_value'],
            'average_daily_volume': volume,
            'bid_ask_spread': spread,
        })

    return stressed


def liquidity_stress_tests(
    position_liquidity: Sequence[Mapping],
    timeframe_days: int,
    model: str = 'SQUARE_ROOT',
    participation_rate: float = 0.20,
    scenarios: Sequence[Mapping] = LIQUIDITY_STRESS_SCENARIOS,
) -> List[Dict]:
    """Baseline vs stressed portfolio liquidity for each stress scenario."""
    baseline = portfolio_liquidity_metrics(position_liquidity, timeframe_days)
    results = []

    for scenario in scenarios:
        stressed_positions = apply_liquidity_stress(position_liquidity, scenario, model, participation_rate)
        stressed = portfolio_liquidity_metrics(stressed_positions, timeframe_days)

        results.append({
            'stress_scenario': scenario['name'],
            'volume_reduction': scenario['volume_reduction'],
            'spread_increase': scenario['spread_increase'],
            'liquidity_multiplier': scenario['liquidity_multiplier'],
            'baseline': baseline,
            'stressed': stressed,
            'liquidity_score_change': stressed['liquidity_score'] - baseline['liquidity_score'],
            'days_to_liquidate_change': round(
                stressed['average_days_to_liquidate'] - baseline['average_days_to_liquidate'], 1
            ),
            'liquidation_cost_change': stressed['liquidation_cost'] - baseline['liquidation_cost'],
            'position_liquidity': stressed_positions,
        })

        logger.info(
            "liquidity_stress_tests: scenario applied",
            scenario=scenario['name'],
            liquidity_score=stressed['liquidity_score'],
            average_days=stressed['average_days_to_liquidate'],
        )

    return results


def assess_portfolio_liquidity(
    positions: Sequence[Position],
    liquidity_data: Mapping[str, LiquidityData],
    timeframe_days: int,
    model: str = 'SQUARE_ROOT',
    participation_rate: float = 0.20,
) -> Dict:
    """Full liquidity assessment for a position list.

    Returns:
        Dict keyed like the computed fields of ``LiquidityRiskResult``
    """
    if not positions:
        raise ValueError("Cannot assess liquidity of an empty portfolio")

    position_liquidity = [
        assess_position_liquidity(p, liquidity_data.get(p.symbol), model, participation_rate)
        for p in positions
    ]
    metrics = portfolio_liquidity_metrics(position_liquidity, timeframe_days)

    logger.info(
        "assess_portfolio_liquidity: assessment complete",
        num_positions=len(positions),
        liquidity_score=metrics['liquidity_score'],
        average_days=metrics['average_days_to_liquidate'],
        liquidation_cost=metrics['liquidation_cost'],
    )

    return {
        **metrics,
        'liquidity_by_asset_class': liquidity_breakdown(position_liquidity, [p.asset_class for p in positions]),
        'liquidity_by_sector': liquidity_breakdown(position_liquidity, [p.sector for p in positions]),
        'liquidity_by_size': liquidity_breakdown(position_liquidity, [size_bucket(p.market_value) for p in positions]),
        'position_liquidity': position_liquidity,
        'liquidity_under_stress': liquidity_stress_tests(
            position_liquidity, timeframe_days, model, participation_rate
        ),
    }
