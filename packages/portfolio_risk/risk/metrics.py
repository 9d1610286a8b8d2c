"""
Risk Metrics Module

Parametric VaR / Expected Shortfall, risk contributions, diversification and
concentration measures. Pure functions over weights, volatilities and
covariance matrices.
"""

from typing import Dict, List, Sequence

import numpy as np
import pandas as pd
import structlog
from scipy import stats

from ..exceptions import DimensionMismatchError

logger = structlog.get_logger(__name__)


def _check_dims(weights: np.ndarray, cov: np.ndarray) -> None:
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise DimensionMismatchError(f"Covariance matrix must be square, got shape {cov.shape}")
    if weights.shape[0] != cov.shape[0]:
        raise DimensionMismatchError(
            f"Weights dimension {weights.shape[0]} doesn't match covariance {cov.shape[0]}"
        )


def build_covariance(volatilities, correlation) -> np.ndarray:
    """Covariance = diag(sigma) @ C @ diag(sigma)."""
    vols = np.asarray(volatilities, dtype=float).flatten()
    corr = np.asarray(correlation, dtype=float)

    if corr.shape != (len(vols), len(vols)):
        raise DimensionMismatchError(
            f"Correlation shape {corr.shape} doesn't match {len(vols)} volatilities"
        )

    return corr * np.outer(vols, vols)


def portfolio_volatility(
    weights: np.ndarray,
    cov: np.ndarray,
    horizon_days: int = 1,
) -> float:
    """sqrt(w' Sigma w) scaled by sqrt(horizon_days).

    Args:
        weights: Position weights (fractions or dollar amounts)
        cov: Covariance matrix (N x N) at the base horizon
        horizon_days: Number of base periods to scale to

    Returns:
        Volatility in the units of *weights*
    """
    weights = np.asarray(weights, dtype=float).flatten()
    cov = np.asarray(cov, dtype=float)
    _check_dims(weights, cov)

    if horizon_days < 1:
        raise ValueError(f"Horizon must be >= 1, got {horizon_days}")

    variance = float(weights @ cov @ weights)
    if variance < -1e-10:
        raise ValueError(
            f"Negative portfolio variance ({variance:.6e}); covariance is not positive semi-definite"
        )

    return float(np.sqrt(max(variance, 0.0)) * np.sqrt(horizon_days))


def parametric_var(
    weights: np.ndarray,
    cov: np.ndarray,
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
) -> float:
    """Zero-mean normal VaR: value * |z(1 - c)| * sigma * sqrt(h).

    Returns:
        VaR as a positive loss amount
    """
    if not 0 < confidence < 1:
        raise ValueError(f"Confidence must be between 0 and 1, got {confidence}")

    if portfolio_value <= 0:
        raise ValueError(f"Portfolio value must be positive, got {portfolio_value}")

    sigma = portfolio_volatility(weights, cov, horizon_days=horizon_days)
    z_score = stats.norm.ppf(1 - confidence)

    return float(portfolio_value * abs(z_score) * sigma)


def expected_shortfall(
    weights: np.ndarray,
    cov: np.ndarray,
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
) -> float:
    """Normal Expected Shortfall: value * sigma * phi(z) / (1 - c) * sqrt(h)."""
    if not 0 < confidence < 1:
        raise ValueError(f"Confidence must be between 0 and 1, got {confidence}")

    if portfolio_value <= 0:
        raise ValueError(f"Portfolio value must be positive, got {portfolio_value}")

    sigma = portfolio_volatility(weights, cov, horizon_days=horizon_days)
    phi_z = stats.norm.pdf(stats.norm.ppf(1 - confidence))

    return float(portfolio_value * sigma * phi_z / (1 - confidence))


def marginal_contribution_to_risk(weights: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """MCR_i = (Sigma w)_i / sigma_p. Zero vector for a riskless portfolio."""
    weights = np.asarray(weights, dtype=float).flatten()
    cov = np.asarray(cov, dtype=float)
    _check_dims(weights, cov)

    sigma_p = portfolio_volatility(weights, cov)
    if sigma_p == 0:
        logger.warning("marginal_contribution_to_risk: zero portfolio volatility")
        return np.zeros_like(weights)

    return (cov @ weights) / sigma_p


def component_contribution_to_risk(weights: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """CCR_i = w_i * MCR_i; components sum to portfolio volatility."""
    weights = np.asarray(weights, dtype=float).flatten()
    return weights * marginal_contribution_to_risk(weights, cov)


def pct_contribution_to_variance(weights: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """Share of portfolio variance per position, in percent.

    PCV_i = 100 * w_i (Sigma w)_i / (w' Sigma w). The entries sum to 100
    unless the portfolio has zero variance, in which case all are zero.
    """
    weights = np.asarray(weights, dtype=float).flatten()
    cov = np.asarray(cov, dtype=float)
    _check_dims(weights, cov)

    variance = float(weights @ cov @ weights)
    if variance <= 0:
        logger.warning("pct_contribution_to_variance: zero portfolio variance")
        return np.zeros_like(weights)

    return 100.0 * weights * (cov @ weights) / variance


def diversification_ratio(weights: np.ndarray, volatilities, correlation) -> float:
    """Weighted-average standalone volatility over portfolio volatility.

    Values above 1 indicate a diversification benefit. Returns 1.0 for a
    riskless portfolio.
    """
    weights = np.asarray(weights, dtype=float).flatten()
    vols = np.asarray(volatilities, dtype=float).flatten()

    if weights.shape != vols.shape:
        raise DimensionMismatchError(
            f"Weights length {weights.shape[0]} doesn't match volatilities length {vols.shape[0]}"
        )

    sigma_p = portfolio_volatility(weights, build_covariance(vols, correlation))
    if sigma_p == 0:
        logger.warning("diversification_ratio: zero portfolio volatility")
        return 1.0

    return float(np.sum(np.abs(weights) * vols) / sigma_p)


def concentration_metrics(
    weights: np.ndarray,
    symbols: List[str],
) -> Dict:
    """Position concentration.

    Args:
        weights: Position weights (fractions or dollar amounts)
        symbols: Symbols aligned with *weights*

    Returns:
        Dict with:
            - herfindahl_index: sum of squared normalised weights (0..1)
            - top5_concentration / top10_concentration: % of gross exposure
            - effective_number_of_positions: 1 / herfindahl_index
            - top_5_names: largest five symbols
    """
    weights = np.asarray(weights, dtype=float).flatten()

    if len(weights) != len(symbols):
        raise DimensionMismatchError(
            f"Weights length {len(weights)} doesn't match symbols length {len(symbols)}"
        )

    gross = np.abs(weights)
    total = float(gross.sum())

    if total == 0:
        logger.warning("concentration_metrics: zero gross exposure")
        return {
            'herfindahl_index': 0.0,
            'top5_concentration': 0.0,
            'top10_concentration': 0.0,
            'effective_number_of_positions': 0.0,
            'top_5_names': [],
        }

    normalized = gross / total
    herfindahl = float(np.sum(normalized ** 2))
    order = np.argsort(normalized, kind="stable")[::-1]

    return {
        'herfindahl_index': herfindahl,
        'top5_concentration': float(normalized[order[:5]].sum() * 100),
        'top10_concentration': float(normalized[order[:10]].sum() * 100),
        'effective_number_of_positions': 1.0 / herfindahl,
        'top_5_names': [symbols[i] for i in order[:5]],
    }


def category_concentration(values: Sequence[float], categories: Sequence[str]) -> List[Dict]:
    """Share of total value per category, ranked largest first.

    Returns:
        List of ``{'category', 'percentage', 'rank'}`` dicts, percentage in %
    """
    if len(values) != len(categories):
        raise DimensionMismatchError(
            f"Values length {len(values)} doesn't match categories length {len(categories)}"
        )

    if len(values) == 0:
        return []

    frame = pd.DataFrame({'category': list(categories), 'value': np.abs(np.asarray(values, dtype=float))})
    totals = frame.groupby('category', sort=True)['value'].sum()
    grand_total = float(totals.sum())

    if grand_total == 0:
        return []

    ranked = totals.sort_values(ascending=False, kind="stable")
    return [
        {
            'category': str(category),
            'percentage': float(value / grand_total * 100),
            'rank': rank,
        }
        for rank, (category, value) in enumerate(ranked.items(), start=1)
    ]
