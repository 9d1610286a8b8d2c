"""
Unit tests for covariance.py - Covariance Estimation Module

Tests cover:
- Ledoit-Wolf shrinkage estimation
- Covariance annualization
- Covariance to correlation conversion
- Historical correlation estimation
"""

import pytest
import numpy as np
import pandas as pd
from numpy.testing import assert_allclose

from portfolio_risk.exceptions import DimensionMismatchError
from portfolio_risk.risk.covariance import (
    ledoit_wolf_cov,
    annualize_cov,
    cov_to_corr,
    historical_correlation,
)
from portfolio_risk.risk.linalg import cholesky_decomposition


class TestLedoitWolfCov:
    """Tests for ledoit_wolf_cov function."""

    def test_ledoit_wolf_shape(self, sample_returns):
        """Output should be (N, N) symmetric matrix."""
        cov = ledoit_wolf_cov(sample_returns)

        n_assets = len(sample_returns.columns)
        assert cov.shape == (n_assets, n_assets)
        assert_allclose(cov, cov.T, rtol=1e-10)

    def test_ledoit_wolf_positive_semidefinite(self, sample_returns):
        """Matrix should be positive semi-definite (all eigenvalues >= 0)."""
        cov = ledoit_wolf_cov(sample_returns)

        assert np.all(np.linalg.eigvalsh(cov) >= -1e-10)

    def test_lookback_uses_recent_rows(self, sample_returns):
        """A lookback equal to the tail length matches estimating on the tail."""
        assert_allclose(
            ledoit_wolf_cov(sample_returns, lookback=60),
            ledoit_wolf_cov(sample_returns.iloc[-60:]),
        )

    def test_insufficient_data_raises(self, sample_returns):
        with pytest.raises(ValueError, match="at least 2 observations"):
            ledoit_wolf_cov(sample_returns.iloc[:1])

    def test_nan_raises(self, sample_returns):
        returns = sample_returns.copy()
        returns.iloc[5, 2] = np.nan

        with pytest.raises(ValueError, match="NaN values detected"):
            ledoit_wolf_cov(returns)


class TestAnnualizeCov:
    """Tests for annualize_cov function."""

    def test_annualize_scaling(self, sample_returns):
        """Annualized cov should equal daily cov * 252."""
        daily = sample_returns.cov().values

        assert_allclose(annualize_cov(daily), daily * 252, rtol=1e-12)

    def test_annualize_custom_days(self):
        assert_allclose(annualize_cov(np.eye(2), trading_days=260), np.eye(2) * 260)

    def test_non_square_raises(self):
        with pytest.raises(DimensionMismatchError, match="square"):
            annualize_cov(np.ones((2, 3)))

    def test_non_positive_days_raises(self):
        with pytest.raises(ValueError, match="Trading days must be positive"):
            annualize_cov(np.eye(2), trading_days=0)


class TestCovToCorr:
    """Tests for cov_to_corr and historical_correlation."""

    def test_unit_diagonal(self, sample_returns):
        corr = cov_to_corr(sample_returns.cov().values)

        assert_allclose(np.diag(corr), 1.0)
        assert_allclose(corr, sample_returns.corr().values, atol=1e-10)

    def test_zero_variance_asset(self):
        """A riskless asset is uncorrelated with everything."""
        cov = np.array([[0.04, 0.0], [0.0, 0.0]])
        corr = cov_to_corr(cov)

        assert_allclose(corr, np.eye(2))

    def test_historical_correlation_factorisable(self, sample_returns):
        """Shrinkage estimate should always admit a Cholesky factor."""
        corr = historical_correlation(sample_returns, lookback=120)

        assert corr.shape == (5, 5)
        assert np.all(np.abs(corr) <= 1.0)
        cholesky_decomposition(corr)

    def test_historical_correlation_keeps_structure(self, sample_returns):
        """p2 is built from p1 so their estimated correlation stays high."""
        corr = historical_correlation(sample_returns)

        assert corr[0, 1] > 0.5
        assert abs(corr[0, 3]) < 0.3
