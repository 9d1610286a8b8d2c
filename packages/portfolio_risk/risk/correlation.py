"""
Correlation Analysis Module

Position and category level correlation matrices with principal component
decomposition, concentration measures, diversification ratio and per
position risk contributions from historical returns.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import structlog

from ..exceptions import DimensionMismatchError
from ..models import Position
from .covariance import annualize_cov
from .linalg import pearson_correlation_matrix, principal_components
from .metrics import (
    build_covariance,
    category_concentration,
    component_contribution_to_risk,
    concentration_metrics,
    diversification_ratio,
    marginal_contribution_to_risk,
    pct_contribution_to_variance,
    portfolio_volatility,
)

logger = structlog.get_logger(__name__)


def trim_returns(returns: pd.DataFrame, lookback: int) -> pd.DataFrame:
    """Keep the most recent *lookback* rows; at least two are required."""
    if lookback < 2:
        raise ValueError(f"Lookback must be >= 2, got {lookback}")

    trimmed = returns.iloc[-lookback:] if len(returns) > lookback else returns
    if len(trimmed) < 2:
        raise ValueError(f"Need at least 2 observations, got {len(trimmed)}")

    return trimmed


def aggregate_category_returns(
    returns: pd.DataFrame,
    values: Sequence[float],
    categories: Sequence[str],
) -> pd.DataFrame:
    """Value-weighted return series per category.

    Args:
        returns: Position returns (T x N), columns aligned with *values*
        values: Position market values
        categories: Category label per position

    Returns:
        DataFrame (T x K) with one column per category, in first-seen order
    """
    if not (returns.shape[1] == len(values) == len(categories)):
        raise DimensionMismatchError(
            f"Returns has {returns.shape[1]} columns for {len(values)} values and "
            f"{len(categories)} categories"
        )

    values = np.abs(np.asarray(values, dtype=float))
    labels = list(dict.fromkeys(categories))
    columns = {}

    for label in labels:
        mask = np.array([c == label for c in categories])
        group_values = values[mask]
        total = group_values.sum()
        weights = group_values / total if total > 0 else np.full(mask.sum(), 1.0 / mask.sum())
        columns[label] = returns.values[:, mask] @ weights

    return pd.DataFrame(columns, index=returns.index)


def correlation_matrix_result(
    returns: pd.DataFrame,
    labels: Optional[Sequence[str]] = None,
    tol: float = 1e-8,
    max_iterations: int = 1000,
    seed: Optional[int] = None,
) -> Dict:
    """Pearson correlation matrix of *returns* plus its principal components.

    Returns:
        Dict keyed like ``CorrelationMatrixResult`` fields
    """
    corr = pearson_correlation_matrix(returns)
    assets = [str(c) for c in (labels if labels is not None else returns.columns)]

    return principal_components(
        corr.values, assets, tol=tol, max_iterations=max_iterations, seed=seed
    )


def effective_number_of_bets(eigenvalues: Sequence[float]) -> float:
    """exp(entropy) of the eigenvalue shares; N for uncorrelated assets, 1 for one factor."""
    shares = np.clip(np.asarray(eigenvalues, dtype=float), 0.0, None)
    total = shares.sum()
    if total <= 0:
        return 0.0
    shares = shares[shares > 0] / total
    return float(np.exp(-np.sum(shares * np.log(shares))))


def risk_contributions(
    returns: pd.DataFrame,
    weights: np.ndarray,
    asset_ids: Sequence[str],
    symbols: Sequence[str],
    correlation: np.ndarray,
    trading_days: int = 252,
) -> Dict:
    """Per-position risk contributions on annualised covariance.

    Covariance = diag(sigma) C diag(sigma) with sigma the annualised sample
    standard deviation of each return series.

    Returns:
        Dict with ``risk_contributions`` (sorted by |percent|),
        ``portfolio_volatility``, ``diversification_ratio`` and ``volatilities``
    """
    weights = np.asarray(weights, dtype=float).flatten()
    daily_std = returns.std(ddof=1).values if len(returns) > 1 else np.zeros(returns.shape[1])
    daily_cov = build_covariance(daily_std, correlation)
    cov = annualize_cov(daily_cov, trading_days)
    vols = np.sqrt(np.diag(cov))

    pct = pct_contribution_to_variance(weights, cov)
    ccr = component_contribution_to_risk(weights, cov)
    mcr = marginal_contribution_to_risk(weights, cov)

    contributions = [
        {
            'asset_id': str(asset_ids[i]),
            'symbol': symbols[i],
            'weight': float(weights[i]),
            'risk_contribution': float(ccr[i]),
            'percent_contribution': float(pct[i]),
            'marginal_risk': float(mcr[i]),
        }
        for i in range(len(weights))
    ]
    contributions.sort(key=lambda x: abs(x['percent_contribution']), reverse=True)

    return {
        'risk_contributions': contributions,
        'portfolio_volatility': portfolio_volatility(weights, cov),
        'diversification_ratio': diversification_ratio(weights, vols, correlation),
        'volatilities': vols,
    }


def analyze_portfolio_correlations(
    positions: Sequence[Position],
    returns: pd.DataFrame,
    lookback_period: int = 252,
    include_asset_classes: bool = True,
    include_sectors: bool = True,
    include_geographies: bool = True,
    trading_days: int = 252,
    tol: float = 1e-8,
    max_iterations: int = 1000,
    seed: Optional[int] = None,
) -> Dict:
    """Full correlation analysis for a portfolio.

    Args:
        positions: Portfolio positions
        returns: Daily returns (T x N) with one column per position, in position order

    Returns:
        Dict keyed like the computed fields of ``CorrelationAnalysisResult``
    """
    if not positions:
        raise ValueError("Cannot analyse correlations of an empty portfolio")

    if returns.shape[1] != len(positions):
        raise DimensionMismatchError(
            f"Returns has {returns.shape[1]} columns for {len(positions)} positions"
        )

    returns = trim_returns(returns, lookback_period)
    values = np.array([p.market_value for p in positions], dtype=float)
    total = float(np.abs(values).sum())
    if total == 0:
        raise ValueError("Portfolio gross value must be positive")

    weights = values / total
    symbols = [p.symbol for p in positions]

    if len(positions) == 1:
        logger.warning("analyze_portfolio_correlations: single position portfolio")

    position_matrix = correlation_matrix_result(returns, symbols, tol, max_iterations, seed)

    def _category_matrix(attribute: str) -> Dict:
        labels = [getattr(p, attribute) for p in positions]
        category_returns = aggregate_category_returns(returns, values, labels)
        return correlation_matrix_result(category_returns, None, tol, max_iterations, seed)

    concentration = concentration_metrics(values, symbols)
    concentration.pop('top_5_names')
    for key, attribute in (
        ('asset_class_concentration', 'asset_class'),
        ('sector_concentration', 'sector'),
        ('geography_concentration', 'geography'),
        ('currency_concentration', 'currency'),
    ):
        concentration[key] = category_concentration(values, [getattr(p, attribute) for p in positions])

    contributions = risk_contributions(
        returns,
        weights,
        [p.position_id for p in positions],
        symbols,
        np.asarray(position_matrix['matrix']),
        trading_days,
    )

    analysis = {
        'position_correlations': position_matrix,
        'asset_class_correlations': _category_matrix('asset_class') if include_asset_classes else None,
        'sector_correlations': _category_matrix('sector') if include_sectors else None,
        'geography_correlations': _category_matrix('geography') if include_geographies else None,
        'concentration_metrics': concentration,
        'diversification_ratio': contributions['diversification_ratio'],
        'effective_number_of_bets': effective_number_of_bets(position_matrix['eigenvalues']),
        'portfolio_volatility': contributions['portfolio_volatility'],
        'risk_contributions': contributions['risk_contributions'],
    }

    logger.info(
        "analyze_portfolio_correlations: analysis complete",
        num_positions=len(positions),
        num_observations=len(returns),
        herfindahl_index=concentration['herfindahl_index'],
        diversification_ratio=analysis['diversification_ratio'],
    )

    return analysis
