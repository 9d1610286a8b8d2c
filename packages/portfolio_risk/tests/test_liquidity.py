"""
Unit tests for liquidity.py - Liquidity Risk Module

Tests cover:
- Liquidity categories and days-to-liquidate
- Market impact models and liquidation cost
- Input resolution and validation
- Portfolio metrics, breakdowns and stress scenarios
"""

import math

import pytest
import numpy as np
from numpy.testing import assert_allclose

from portfolio_risk.exceptions import LiquidityDataError
from portfolio_risk.models import LiquidityData, Position
from portfolio_risk.results import LiquidityCategory
from portfolio_risk.risk.liquidity import (
    liquidity_category,
    days_to_liquidate,
    market_impact_cost,
    liquidation_cost,
    assess_position_liquidity,
    position_liquidity_score,
    portfolio_liquidity_metrics,
    size_bucket,
    liquidity_breakdown,
    apply_liquidity_stress,
    assess_portfolio_liquidity,
    LIQUIDITY_STRESS_SCENARIOS,
)


def _position(value=1_000_000, price=50.0, asset_class='EQUITY', **kwargs):
    return Position(
        position_id=kwargs.pop('position_id', 'p1'),
        security_id='s1',
        symbol=kwargs.pop('symbol', 'XYZ'),
        market_value=value,
        asset_class=asset_class,
        current_price=price,
        **kwargs,
    )


class TestLiquidityCategory:
    """Tests for liquidity_category function."""

    @pytest.mark.parametrize("days, expected", [
        (1, LiquidityCategory.IMMEDIATE),
        (2, LiquidityCategory.HIGH),
        (7, LiquidityCategory.HIGH),
        (8, LiquidityCategory.MEDIUM),
        (30, LiquidityCategory.MEDIUM),
        (31, LiquidityCategory.LOW),
        (90, LiquidityCategory.LOW),
        (91, LiquidityCategory.ILLIQUID),
    ])
    def test_boundaries(self, days, expected):
        assert liquidity_category(days) is expected

    def test_monotonic_in_days(self):
        """More days never yields a better category."""
        ranks = [liquidity_category(d).rank for d in range(1, 200)]

        assert all(b >= a for a, b in zip(ranks, ranks[1:]))


class TestDaysToLiquidate:
    """Tests for days_to_liquidate function."""

    def test_ceiling_of_participation(self):
        # 1M shares against 20% of 100k ADV is 50 days
        assert days_to_liquidate(1_000_000, 100_000, 0.20) == 50

    def test_partial_day_rounds_up(self):
        assert days_to_liquidate(20_001, 100_000, 0.20) == 2

    def test_floor_at_one_day(self):
        assert days_to_liquidate(1, 1_000_000_000) == 1

    def test_zero_volume_raises(self):
        with pytest.raises(LiquidityDataError, match="must be positive"):
            days_to_liquidate(100, 0)

    def test_invalid_participation_raises(self):
        with pytest.raises(ValueError, match="Participation rate"):
            days_to_liquidate(100, 1000, participation_rate=0)


class TestMarketImpact:
    """Tests for market_impact_cost and liquidation_cost."""

    def test_square_root(self):
        cost = market_impact_cost(1_000_000, 1_000_000, 'SQUARE_ROOT', 0.20)

        assert_allclose(cost, 1_000_000 * 0.015 * math.sqrt(5))

    def test_linear(self):
        assert_allclose(market_impact_cost(1_000_000, 1_000_000, 'LINEAR', 0.20), 50_000)

    def test_power_law(self):
        cost = market_impact_cost(1_000_000, 1_000_000, 'POWER_LAW', 0.20)

        assert_allclose(cost, 1_000_000 * 0.02 * 5 ** 0.6)

    def test_unknown_model_raises(self):
        with pytest.raises(ValueError, match="Unknown market impact model"):
            market_impact_cost(1.0, 1.0, 'CUBIC')

    def test_urgency_multiplier_applied(self):
        """A one-day liquidation pays 1.5x, a long one pays 1x."""
        fast = liquidation_cost(100_000, 1_000_000, 0.002, days=1, model='LINEAR')
        slow = liquidation_cost(100_000, 1_000_000, 0.002, days=20, model='LINEAR')

        assert_allclose(fast, slow * 1.5)


class TestAssessPositionLiquidity:
    """Tests for assess_position_liquidity function."""

    def test_days_at_least_one(self):
        data = LiquidityData(average_daily_volume=1e9, bid_ask_spread=0.001)
        result = assess_position_liquidity(_position(value=10.0), data)

        assert result['days_to_liquidate'] >= 1
        assert result['liquidity_category'] is LiquidityCategory.IMMEDIATE

    def test_shares_from_price(self):
        """Shares = value / price; 2M / 50 = 40k shares on 20% of 4k ADV = 50 days."""
        data = LiquidityData(average_daily_volume=4_000, bid_ask_spread=0.001)
        result = assess_position_liquidity(_position(value=2_000_000, price=50.0), data)

        assert result['days_to_liquidate'] == 50
        assert result['liquidity_category'] is LiquidityCategory.LOW

    def test_market_impact_is_cost_fraction(self):
        data = LiquidityData(average_daily_volume=100_000, bid_ask_spread=0.002)
        result = assess_position_liquidity(_position(), data)

        assert_allclose(result['market_impact'], result['liquidation_cost'] / 1_000_000)

    def test_price_falls_back_to_liquidity_data(self):
        data = LiquidityData(average_daily_volume=1_000, bid_ask_spread=0.001, current_price=200.0)
        result = assess_position_liquidity(_position(value=1_000_000, price=None), data)

        assert result['price'] == 200.0
        assert result['days_to_liquidate'] == 25

    def test_default_price(self):
        data = LiquidityData(average_daily_volume=1_000, bid_ask_spread=0.001)
        result = assess_position_liquidity(_position(value=1_000_000, price=None), data)

        assert result['price'] == 100.0

    def test_class_defaults_without_data(self):
        result = assess_position_liquidity(_position(asset_class='FIXED_INCOME'), None)

        assert result['average_daily_volume'] == 5_000_000
        assert result['bid_ask_spread'] == 0.01

    def test_zero_volume_raises(self):
        data = LiquidityData(average_daily_volume=0, bid_ask_spread=0.001)

        with pytest.raises(LiquidityDataError, match="Average daily volume"):
            assess_position_liquidity(_position(), data)

    def test_negative_spread_raises(self):
        data = LiquidityData(average_daily_volume=1_000, bid_ask_spread=-0.01)

        with pytest.raises(LiquidityDataError, match="spread"):
            assess_position_liquidity(_position(), data)

    def test_non_positive_price_raises(self):
        data = LiquidityData(average_daily_volume=1_000, bid_ask_spread=0.001)

        with pytest.raises(LiquidityDataError, match="Price"):
            assess_position_liquidity(_position(price=0.0), data)

    def test_non_positive_value_raises(self):
        with pytest.raises(LiquidityDataError, match="non-positive market value"):
            assess_position_liquidity(_position(value=-5.0), None)


class TestScoring:
    """Tests for position_liquidity_score and portfolio_liquidity_metrics."""

    def test_tight_spread_bonus(self):
        score = position_liquidity_score({
            'liquidity_category': LiquidityCategory.HIGH,
            'bid_ask_spread': 0.001,
            'market_capitalization': None,
        })

        assert score == 85.0

    def test_clipped_to_100(self):
        score = position_liquidity_score({
            'liquidity_category': LiquidityCategory.IMMEDIATE,
            'bid_ask_spread': 0.001,
            'market_capitalization': 50_000_000_000,
        })

        assert score == 100.0

    def test_value_weighted_days(self):
        positions = [
            {'market_value': 750.0, 'days_to_liquidate': 1, 'liquidation_cost': 1.0,
             'liquidity_category': LiquidityCategory.IMMEDIATE, 'bid_ask_spread': 0.01},
            {'market_value': 250.0, 'days_to_liquidate': 9, 'liquidation_cost': 3.0,
             'liquidity_category': LiquidityCategory.MEDIUM, 'bid_ask_spread': 0.01},
        ]
        metrics = portfolio_liquidity_metrics(positions, timeframe_days=5)

        assert metrics['average_days_to_liquidate'] == 3.0
        assert_allclose(metrics['liquidation_cost'], 4.0)
        assert_allclose(metrics['market_impact'], 0.4)
        assert_allclose(metrics['liquidatable_within_timeframe_pct'], 75.0)
        assert metrics['liquidity_score'] == round(0.75 * 95 + 0.25 * 60)


class TestBreakdowns:
    """Tests for size_bucket and liquidity_breakdown."""

    @pytest.mark.parametrize("value, bucket", [
        (5_000_000, 'Large (>$1M)'),
        (1_000_000, 'Large (>$1M)'),
        (500_000, 'Medium ($100K-$1M)'),
        (50_000, 'Small (<$100K)'),
    ])
    def test_size_bucket(self, value, bucket):
        assert size_bucket(value) == bucket

    def test_breakdown_percentages(self):
        positions = [
            {'market_value': 600.0, 'days_to_liquidate': 1, 'liquidation_cost': 1.0},
            {'market_value': 300.0, 'days_to_liquidate': 10, 'liquidation_cost': 2.0},
            {'market_value': 100.0, 'days_to_liquidate': 40, 'liquidation_cost': 3.0},
        ]
        breakdown = liquidity_breakdown(positions, ['EQ', 'FI', 'EQ'])

        assert [b['category'] for b in breakdown] == ['EQ', 'FI']
        assert_allclose([b['percentage'] for b in breakdown], [70.0, 30.0])
        # (600 * 1 + 100 * 40) / 700
        assert breakdown[0]['average_days_to_liquidate'] == round(4600 / 700, 1)
        assert breakdown[0]['liquidity_category'] is LiquidityCategory.HIGH
        assert_allclose(breakdown[0]['estimated_cost'], 4.0)


class TestLiquidityStress:
    """Tests for apply_liquidity_stress and the full assessment."""

    def test_stress_never_shortens_liquidation(self, sample_positions, sample_liquidity_data):
        baseline = [
            assess_position_liquidity(p, sample_liquidity_data[p.symbol]) for p in sample_positions
        ]

        for scenario in LIQUIDITY_STRESS_SCENARIOS:
            stressed = apply_liquidity_stress(baseline, scenario)
            for before, after in zip(baseline, stressed):
                assert after['days_to_liquidate'] >= before['days_to_liquidate']
                assert after['liquidity_category'].rank >= before['liquidity_category'].rank

    def test_stress_days_formula(self):
        """Halved participation on reduced volume, stretched by the multiplier."""
        data = LiquidityData(average_daily_volume=10_000, bid_ask_spread=0.001)
        baseline = [assess_position_liquidity(_position(value=1_000_000, price=100.0), data)]
        scenario = {'name': 'x', 'volume_reduction': 0.5, 'spread_increase': 2.0, 'liquidity_multiplier': 1.5}

        stressed = apply_liquidity_stress(baseline, scenario)[0]

        # 10k shares / (5k ADV * 10%) = 20 days, * 1.5 = 30
        assert baseline[0]['days_to_liquidate'] == 5
        assert stressed['days_to_liquidate'] == 30
        assert_allclose(stressed['bid_ask_spread'], 0.002)

    def test_full_assessment(self, sample_positions, sample_liquidity_data):
        result = assess_portfolio_liquidity(sample_positions, sample_liquidity_data, timeframe_days=21)

        assert len(result['position_liquidity']) == len(sample_positions)
        assert len(result['liquidity_under_stress']) == 3
        assert 0 <= result['liquidity_score'] <= 100
        assert_allclose(sum(b['percentage'] for b in result['liquidity_by_asset_class']), 100.0)
        assert_allclose(sum(b['percentage'] for b in result['liquidity_by_size']), 100.0)

        for stress in result['liquidity_under_stress']:
            assert stress['liquidity_score_change'] <= 0
            assert stress['liquidation_cost_change'] > 0

    def test_empty_portfolio_raises(self):
        with pytest.raises(ValueError, match="empty portfolio"):
            assess_portfolio_liquidity([], {}, timeframe_days=21)
