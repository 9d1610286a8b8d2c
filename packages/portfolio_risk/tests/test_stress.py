"""
Unit tests for stress.py - Stress Testing Module

Tests cover:
- Shock normalisation and position sensitivities
- Scenario repricing and factor impacts
- Correlation stress and reported correlation changes
- Factor sensitivity analysis
- Multi-scenario summary
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from portfolio_risk.exceptions import DimensionMismatchError
from portfolio_risk.models import FactorShock, MarketParameters, Position, StressScenario
from portfolio_risk.risk.stress import (
    factor_key,
    normalize_shock,
    position_sensitivity,
    stressed_correlation,
    correlation_changes,
    apply_scenario,
    factor_sensitivity_analysis,
    run_stress_tests,
    HISTORICAL_SCENARIOS,
)


def _scenario(scenario_id, *shocks):
    return StressScenario(id=scenario_id, name=scenario_id.title(), factor_shocks=list(shocks))


def _equity(value):
    return FactorShock(factor_name='S&P 500', factor_type='EQUITY_INDEX', shock_value=value)


def _rates(bps):
    return FactorShock(factor_name='10Y', factor_type='INTEREST_RATE', shock_type='ABSOLUTE', shock_value=bps)


class TestShockNormalisation:
    """Tests for normalize_shock and factor_key."""

    def test_percent(self):
        assert_allclose(normalize_shock(_equity(-20)), -0.20)

    def test_basis_points(self):
        assert_allclose(normalize_shock(_rates(100)), 0.01)

    def test_vol_points(self):
        shock = FactorShock(factor_name='VIX', factor_type='VOLATILITY', shock_type='ABSOLUTE', shock_value=50)

        assert_allclose(normalize_shock(shock), 0.50)

    def test_factor_key(self):
        assert factor_key(_equity(-20)) == 'EQUITY_INDEX_S&P 500'


class TestPositionSensitivity:
    """Tests for position_sensitivity function."""

    def test_equity_beta_from_params(self, sample_positions, sample_market_parameters):
        assert position_sensitivity(sample_positions[0], _equity(-10), 0, sample_market_parameters) == 1.2

    def test_equity_shock_ignores_bonds(self, sample_positions, sample_market_parameters):
        assert position_sensitivity(sample_positions[3], _equity(-10), 3, sample_market_parameters) == 0.0

    def test_bond_duration(self, sample_positions, sample_market_parameters):
        assert position_sensitivity(sample_positions[3], _rates(100), 3, sample_market_parameters) == -8.0

    def test_default_beta_without_params(self, sample_positions, sample_correlation):
        params = MarketParameters(
            expected_returns=[0.0] * 5,
            volatilities=[0.2] * 5,
            correlation_matrix=sample_correlation.tolist(),
        )

        assert position_sensitivity(sample_positions[1], _equity(-10), 1, params) == 1.0
        assert position_sensitivity(sample_positions[3], _rates(100), 3, params) == -7.5

    def test_default_beta_ignores_symbol(self):
        """Without betas, identical equities respond identically whatever the ticker."""
        positions = [
            Position(position_id=sym, security_id=sym, symbol=sym, market_value=1_000_000, asset_class='EQUITY')
            for sym in ('AAPL', 'MSFT')
        ]
        params = MarketParameters(
            expected_returns=[0.0, 0.0],
            volatilities=[0.2, 0.2],
            correlation_matrix=[[1.0, 0.5], [0.5, 1.0]],
        )
        result = apply_scenario(positions, params, _scenario('crash', _equity(-10)))
        impacts = {p['position_id']: p['absolute_change'] for p in result['position_impacts']}

        assert_allclose(impacts['AAPL'], -100_000)
        assert_allclose(impacts['MSFT'], -100_000)

    def test_credit_requires_rating(self, sample_market_parameters):
        shock = FactorShock(factor_name='IG', factor_type='CREDIT_SPREAD', shock_value=100)
        rated = Position(position_id='b', security_id='b', symbol='CORP', market_value=1.0,
                         asset_class='FIXED_INCOME', credit_rating='BBB')
        unrated = rated.model_copy(update={'credit_rating': None})

        assert position_sensitivity(rated, shock, 0, sample_market_parameters) == -5.0
        assert position_sensitivity(unrated, shock, 0, sample_market_parameters) == 0.0

    def test_currency_exposure(self, sample_positions, sample_market_parameters):
        eur = FactorShock(factor_name='EURUSD', factor_type='CURRENCY', shock_value=-10, currency='EUR')

        assert position_sensitivity(sample_positions[2], eur, 2, sample_market_parameters) == 1.0
        assert position_sensitivity(sample_positions[0], eur, 0, sample_market_parameters) == 0.0

    def test_commodity_exposure(self, sample_positions, sample_market_parameters):
        oil = FactorShock(factor_name='WTI', factor_type='COMMODITY', shock_value=-30)
        energy = sample_positions[0].model_copy(update={'sector': 'ENERGY'})

        assert position_sensitivity(sample_positions[4], oil, 4, sample_market_parameters) == 0.5
        assert position_sensitivity(energy, oil, 0, sample_market_parameters) == 0.5
        assert position_sensitivity(sample_positions[0], oil, 0, sample_market_parameters) == 0.0
        assert position_sensitivity(sample_positions[3], oil, 3, sample_market_parameters) == 0.0

    def test_vega_only_for_options(self, sample_positions, sample_market_parameters):
        vix = FactorShock(factor_name='VIX', factor_type='VOLATILITY', shock_value=50)
        option = sample_positions[0].model_copy(update={'instrument_type': 'OPTION'})

        assert position_sensitivity(option, vix, 0, sample_market_parameters) == 0.15
        assert position_sensitivity(sample_positions[0], vix, 0, sample_market_parameters) == 0.0


class TestCorrelationStress:
    """Tests for stressed_correlation and correlation_changes."""

    def test_moves_toward_one(self, sample_correlation):
        stressed = stressed_correlation(sample_correlation, 0.25)

        assert_allclose(stressed[0, 1], 0.7 + 0.25 * 0.3)
        assert_allclose(np.diag(stressed), 1.0)
        assert np.all(stressed >= sample_correlation - 1e-12)

    def test_invalid_factor_raises(self, sample_correlation):
        with pytest.raises(ValueError, match="Correlation stress factor"):
            stressed_correlation(sample_correlation, 1.5)

    def test_changes_filtered_and_sorted(self):
        base = np.array([[1.0, 0.9, 0.0], [0.9, 1.0, 0.5], [0.0, 0.5, 1.0]])
        stressed = stressed_correlation(base, 0.25)
        changes = correlation_changes(['A', 'B', 'C'], base, stressed, threshold=0.05)

        # A-B moves by 0.025 only
        assert [(c['asset1'], c['asset2']) for c in changes] == [('A', 'C'), ('B', 'C')]
        assert_allclose(changes[0]['correlation_change'], 0.25)


class TestApplyScenario:
    """Tests for apply_scenario function."""

    def test_equity_crash(self, sample_positions, sample_market_parameters):
        """-20% equity with betas 1.2/1.1/0.9 on 3M/2.5M/1.5M loses 1.54M."""
        result = apply_scenario(sample_positions, sample_market_parameters, _scenario('crash', _equity(-20)))

        assert_allclose(result['portfolio_change'], -1_540_000)
        assert_allclose(result['portfolio_change_percent'], -15.4)
        assert_allclose(result['portfolio_value'], 10_000_000 - 1_540_000)
        assert_allclose(result['factor_impacts']['EQUITY_INDEX_S&P 500'], -1_540_000)

    def test_position_impacts(self, sample_positions, sample_market_parameters):
        result = apply_scenario(sample_positions, sample_market_parameters, _scenario('crash', _equity(-20)))
        impacts = {p['position_id']: p for p in result['position_impacts']}

        assert_allclose(impacts['p1']['absolute_change'], -720_000)
        assert_allclose(impacts['p1']['percent_change'], -24.0)
        assert impacts['p4']['absolute_change'] == 0.0
        assert result['position_impacts'][0]['position_id'] == 'p1'
        assert_allclose(sum(p['contribution_to_portfolio_change'] for p in result['position_impacts']), 100.0)

    def test_rates_shock(self, sample_positions, sample_market_parameters):
        """+100bp: bond loses duration * 1%, equities lose 0.1%."""
        result = apply_scenario(sample_positions, sample_market_parameters, _scenario('rates', _rates(100)))

        assert_allclose(result['portfolio_change'], -160_000 - 7_000)

    def test_adverse_scenario_stresses_correlations(self, sample_positions, sample_market_parameters):
        result = apply_scenario(sample_positions, sample_market_parameters, _scenario('crash', _equity(-20)))

        assert len(result['correlation_changes']) == 10
        assert all(c['correlation_change'] > 0 for c in result['correlation_changes'])
        top = result['correlation_changes'][0]
        assert (top['asset1'], top['asset2']) == ('AAPL', 'UST10')

    def test_favourable_scenario_keeps_correlations(self, sample_positions, sample_market_parameters):
        result = apply_scenario(sample_positions, sample_market_parameters, _scenario('rally', _equity(10)))

        assert result['portfolio_change'] > 0
        assert result['correlation_changes'] == []

    def test_var_and_volatility_positive(self, sample_positions, sample_market_parameters):
        result = apply_scenario(sample_positions, sample_market_parameters, _scenario('crash', _equity(-20)))

        assert result['var_under_scenario'] > 0
        assert 0 < result['volatility_under_scenario'] < 1

    def test_dimension_mismatch_raises(self, sample_positions, sample_market_parameters):
        with pytest.raises(DimensionMismatchError, match="Market parameters cover"):
            apply_scenario(sample_positions[:4], sample_market_parameters, _scenario('crash', _equity(-20)))


class TestFactorSensitivityAnalysis:
    """Tests for factor_sensitivity_analysis function."""

    def test_equity_sensitivity_is_beta_exposure(self, sample_positions, sample_market_parameters):
        """Slope of equity P&L on equity move equals the beta-weighted exposure."""
        scenarios = [
            _scenario('down', _equity(-20)),
            _scenario('up', _equity(10)),
            _scenario('rates', _rates(100)),
        ]
        results = [apply_scenario(sample_positions, sample_market_parameters, s) for s in scenarios]
        sensitivities = {s['factor_name']: s for s in factor_sensitivity_analysis(scenarios, results)}

        equity = sensitivities['EQUITY_INDEX_S&P 500']
        assert_allclose(equity['sensitivity'], 7_700_000)
        assert equity['scenario_count'] == 2
        assert sensitivities['INTEREST_RATE_10Y']['scenario_count'] == 1
        assert_allclose(sum(s['percent_contribution'] for s in sensitivities.values()), 100.0)


class TestRunStressTests:
    """Tests for run_stress_tests function."""

    def test_summary(self, sample_positions, sample_market_parameters):
        scenarios = [_scenario('down', _equity(-20)), _scenario('up', _equity(10))]
        summary = run_stress_tests(sample_positions, sample_market_parameters, scenarios)

        assert summary['worst_case_scenario']['scenario_id'] == 'down'
        assert summary['best_case_scenario']['scenario_id'] == 'up'
        assert_allclose(summary['stressed_var'], 1_540_000)
        assert_allclose(summary['max_drawdown'], 15.4)
        assert_allclose(summary['average_impact'], (-1_540_000 + 770_000) / 2)
        assert_allclose(summary['stressed_volatility'], np.std([-15.4, 7.7]))

    def test_no_drawdown_when_all_gain(self, sample_positions, sample_market_parameters):
        summary = run_stress_tests(sample_positions, sample_market_parameters, [_scenario('up', _equity(10))])

        assert summary['max_drawdown'] == 0.0

    def test_historical_scenarios_run(self, sample_positions, sample_market_parameters):
        summary = run_stress_tests(sample_positions, sample_market_parameters, HISTORICAL_SCENARIOS)

        assert len(summary['scenario_results']) == 3
        assert summary['worst_case_scenario']['portfolio_change'] < 0

    def test_empty_scenarios_raises(self, sample_positions, sample_market_parameters):
        with pytest.raises(ValueError, match="At least one stress scenario"):
            run_stress_tests(sample_positions, sample_market_parameters, [])
