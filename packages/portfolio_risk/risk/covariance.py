"""
Covariance Estimation Module

Shrinkage covariance from historical returns, used to re-estimate the asset
correlation structure when a simulation asks for historical correlations
instead of the provider's static matrix.
"""

import numpy as np
import pandas as pd
import structlog
from sklearn.covariance import LedoitWolf
from typing import Optional

from ..exceptions import DimensionMismatchError

logger = structlog.get_logger(__name__)


def ledoit_wolf_cov(returns: pd.DataFrame, lookback: Optional[int] = None) -> np.ndarray:
    """Ledoit-Wolf shrinkage covariance of daily returns.

    Args:
        returns: DataFrame of returns (T x N), oldest first
        lookback: Keep only the most recent *lookback* rows

    Returns:
        N x N daily covariance matrix

    Raises:
        ValueError: If fewer than 2 observations remain or returns contain NaN
    """
    if returns.shape[1] == 0:
        raise ValueError("Cannot estimate covariance from empty returns DataFrame")

    if lookback is not None:
        returns = returns.iloc[-lookback:]

    if len(returns) < 2:
        raise ValueError(f"Need at least 2 observations, got {len(returns)}")

    values = returns.values
    if np.isnan(values).any():
        affected = returns.columns[np.isnan(values).any(axis=0)].tolist()
        logger.error("ledoit_wolf_cov: NaN values in returns", affected_symbols=affected)
        raise ValueError(f"NaN values detected in returns for symbols: {affected}")

    estimator = LedoitWolf().fit(values)
    cov = (estimator.covariance_ + estimator.covariance_.T) / 2

    logger.info(
        "ledoit_wolf_cov: covariance estimated",
        num_assets=cov.shape[0],
        num_observations=len(returns),
        shrinkage=float(estimator.shrinkage_),
    )

    return cov


def annualize_cov(cov: np.ndarray, trading_days: int = 252) -> np.ndarray:
    """Scale a daily covariance matrix to annual (cov * trading_days)."""
    cov = np.asarray(cov, dtype=float)

    if cov.ndim != 2 or cov.shape[0] != cov.shape[1] or cov.size == 0:
        raise DimensionMismatchError(f"Covariance matrix must be square and non-empty, got shape {cov.shape}")

    if trading_days <= 0:
        raise ValueError(f"Trading days must be positive, got {trading_days}")

    return cov * trading_days


def cov_to_corr(cov: np.ndarray) -> np.ndarray:
    """Convert a covariance matrix to a correlation matrix.

    Zero-variance assets get a zero row/column with a unit diagonal entry.
    """
    cov = np.asarray(cov, dtype=float)

    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise DimensionMismatchError(f"Covariance matrix must be square, got shape {cov.shape}")

    std = np.sqrt(np.clip(np.diag(cov), 0.0, None))
    zero = std == 0
    if zero.any():
        logger.warning("cov_to_corr: zero-variance assets", indices=np.flatnonzero(zero).tolist())

    safe = np.where(zero, 1.0, std)
    corr = cov / np.outer(safe, safe)
    corr[zero, :] = 0.0
    corr[:, zero] = 0.0
    corr = np.clip((corr + corr.T) / 2, -1.0, 1.0)
    np.fill_diagonal(corr, 1.0)

    return corr


def historical_correlation(returns: pd.DataFrame, lookback: Optional[int] = None) -> np.ndarray:
    """Shrinkage correlation matrix estimated from return history."""
    return cov_to_corr(ledoit_wolf_cov(returns, lookback=lookback))
