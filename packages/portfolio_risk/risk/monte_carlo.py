"""
Monte Carlo Simulation Module

Correlated geometric Brownian motion with optional jump diffusion. Trials are
generated in fixed-size batches, each with its own random stream spawned
from one ``SeedSequence``, so a seeded run gives the same distribution no
matter how many worker threads process the batches.
"""

import math
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import numpy as np
import structlog
from scipy import stats

from ..exceptions import DimensionMismatchError, SimulationCancelledError
from ..models import TIME_HORIZON_DAYS
from .linalg import cholesky_decomposition, validate_correlation_matrix

logger = structlog.get_logger(__name__)

# Volatility scaling applied on top of the supplied (historical) vols
VOLATILITY_MODEL_MULTIPLIERS = {
    'HISTORICAL': 1.0,
    'EWMA': 1.05,
    'GARCH': 1.1,
}

PERCENTILE_LADDER = [1, 5, 10, 25, 50, 75, 90, 95, 99]

CONVERGENCE_BATCHES = 10
CONVERGENCE_TOLERANCE = 0.01
T_VALUE_9DF = 2.262  # two-sided 95%, 9 degrees of freedom


def horizon_to_steps(time_horizon: str) -> int:
    """Number of daily steps for a horizon code such as '1M'."""
    try:
        return TIME_HORIZON_DAYS[time_horizon]
    except KeyError:
        raise ValueError(
            f"Unknown time horizon: {time_horizon}. Use one of {list(TIME_HORIZON_DAYS)}"
        ) from None


def volatility_multiplier(volatility_model: str) -> float:
    try:
        return VOLATILITY_MODEL_MULTIPLIERS[volatility_model]
    except KeyError:
        raise ValueError(f"Unknown volatility model: {volatility_model}") from None


# ---------------------------------------------------------------------------
# Path simulation
# ---------------------------------------------------------------------------


def simulate_batch(
    rng: np.random.Generator,
    num_trials: int,
    weights: np.ndarray,
    expected_returns: np.ndarray,
    volatilities: np.ndarray,
    cholesky: np.ndarray,
    steps: int,
    dt: float = 1 / 252,
    jump_intensity: float = 0.0,
    jump_mean: float = -0.05,
    jump_volatility: float = 0.15,
) -> np.ndarray:
    """Simulate *num_trials* portfolio returns over *steps* daily steps.

    Each asset starts at a normalised price of 1 and evolves as

        P *= exp(mu dt - 0.5 sigma^2 dt + sigma sqrt(dt) z + J)

    where z is drawn from N(0, C) via the Cholesky factor of C, and J is a
    N(jump_mean, jump_volatility) jump occurring with probability
    jump_intensity * dt per asset per step (zero when jump_intensity is 0).

    Args:
        rng: Generator owned by this batch
        weights: Value weights per asset summing to 1
        cholesky: Lower Cholesky factor of the correlation matrix

    Returns:
        Array of trial returns (length num_trials), in trial order
    """
    n_assets = weights.shape[0]
    drift = (expected_returns - 0.5 * volatilities ** 2) * dt
    diffusion_scale = volatilities * np.sqrt(dt)
    jump_probability = jump_intensity * dt

    log_growth = np.zeros((num_trials, n_assets))

    for _ in range(steps):
        shocks = rng.standard_normal((num_trials, n_assets)) @ cholesky.T
        log_growth += drift + diffusion_scale * shocks

        if jump_probability > 0:
            hits = rng.random((num_trials, n_assets)) < jump_probability
            sizes = rng.normal(jump_mean, jump_volatility, (num_trials, n_assets))
            log_growth += np.where(hits, sizes, 0.0)

    # Units were bought at price 1, so final value / initial value = w . P_T
    return np.exp(log_growth) @ weights - 1.0


def simulate_portfolio_returns(
    market_values,
    expected_returns,
    volatilities,
    correlation,
    number_of_simulations: int,
    time_horizon: str = '1M',
    include_jump_risk: bool = False,
    volatility_model: str = 'HISTORICAL',
    jump_intensity: float = 0.1,
    random_seed: Optional[int] = None,
    batch_size: int = 1000,
    max_workers: int = 4,
    jump_mean: float = -0.05,
    jump_volatility: float = 0.15,
    trading_days: int = 252,
    cancel_event: Optional[threading.Event] = None,
) -> np.ndarray:
    """Run the full simulation and return trial returns in trial order.

    Validation happens before any random numbers are drawn: dimensions,
    positive total value, correlation structure and positive definiteness.

    Raises:
        DimensionMismatchError: Market inputs not aligned with positions
        NotPositiveDefiniteError: Correlation matrix cannot be factorised
        SimulationCancelledError: *cancel_event* was set between batches
    """
    values = np.asarray(market_values, dtype=float).flatten()
    mu = np.asarray(expected_returns, dtype=float).flatten()
    sigma = np.asarray(volatilities, dtype=float).flatten()
    n_assets = values.shape[0]

    if number_of_simulations < CONVERGENCE_BATCHES:
        raise ValueError(
            f"number_of_simulations must be >= {CONVERGENCE_BATCHES}, got {number_of_simulations}"
        )

    if n_assets == 0:
        raise ValueError("Cannot simulate an empty portfolio")

    if mu.shape[0] != n_assets or sigma.shape[0] != n_assets:
        raise DimensionMismatchError(
            f"Expected {n_assets} returns/volatilities, got {mu.shape[0]}/{sigma.shape[0]}"
        )

    if np.any(sigma < 0):
        raise ValueError("Volatilities must be non-negative")

    total_value = float(values.sum())
    if total_value <= 0:
        raise ValueError(f"Portfolio value must be positive, got {total_value}")

    corr = validate_correlation_matrix(correlation)
    if corr.shape[0] != n_assets:
        raise DimensionMismatchError(
            f"Correlation matrix is {corr.shape[0]}x{corr.shape[0]} for {n_assets} positions"
        )

    chol = cholesky_decomposition(corr)
    steps = horizon_to_steps(time_horizon)
    scaled_sigma = sigma * volatility_multiplier(volatility_model)
    weights = values / total_value
    intensity = jump_intensity if include_jump_risk else 0.0

    if batch_size < 1 or max_workers < 1:
        raise ValueError("batch_size and max_workers must be >= 1")

    num_batches = math.ceil(number_of_simulations / batch_size)
    batch_sizes = [batch_size] * (num_batches - 1)
    batch_sizes.append(number_of_simulations - batch_size * (num_batches - 1))
    streams = np.random.SeedSequence(random_seed).spawn(num_batches)

    def _run(batch_index: int) -> np.ndarray:
        if cancel_event is not None and cancel_event.is_set():
            raise SimulationCancelledError(
                f"Simulation cancelled before batch {batch_index + 1}/{num_batches}"
            )
        return simulate_batch(
            np.random.default_rng(streams[batch_index]),
            batch_sizes[batch_index],
            weights,
            mu,
            scaled_sigma,
            chol,
            steps,
            dt=1.0 / trading_days,
            jump_intensity=intensity,
            jump_mean=jump_mean,
            jump_volatility=jump_volatility,
        )

    logger.info(
        "simulate_portfolio_returns: starting",
        num_assets=n_assets,
        number_of_simulations=number_of_simulations,
        steps=steps,
        num_batches=num_batches,
        include_jump_risk=include_jump_risk,
        volatility_model=volatility_model,
    )

    workers = min(max_workers, num_batches)
    if workers == 1:
        batches = [_run(i) for i in range(num_batches)]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            batches = list(pool.map(_run, range(num_batches)))

    return np.concatenate(batches)


# ---------------------------------------------------------------------------
# Distribution statistics
# ---------------------------------------------------------------------------


def _tail_index(confidence: float, n: int) -> int:
    # Rounding absorbs float noise such as (1 - 0.95) * 100 = 4.999999...
    idx = int(math.floor(round((1 - confidence) * n, 9)))
    return min(max(idx, 0), n - 1)


def value_at_risk(sorted_returns: np.ndarray, confidence: float) -> float:
    """Empirical VaR: |sorted[floor((1 - c) n)]|."""
    if not 0 < confidence < 1:
        raise ValueError(f"Confidence must be between 0 and 1, got {confidence}")
    return float(abs(sorted_returns[_tail_index(confidence, len(sorted_returns))]))


def conditional_value_at_risk(sorted_returns: np.ndarray, confidence: float) -> float:
    """Empirical CVaR: |mean of all results at or below the VaR index|."""
    if not 0 < confidence < 1:
        raise ValueError(f"Confidence must be between 0 and 1, got {confidence}")
    idx = _tail_index(confidence, len(sorted_returns))
    return float(abs(sorted_returns[:idx + 1].mean()))


def percentile_ladder(sorted_returns: np.ndarray, percentiles: List[int] = PERCENTILE_LADDER) -> List[Dict]:
    n = len(sorted_returns)
    return [
        {'percentile': p, 'value': float(sorted_returns[min(int(math.floor(p / 100 * n)), n - 1)])}
        for p in percentiles
    ]


def convergence_test(returns: np.ndarray) -> Dict:
    """Batch-means convergence diagnostic over results in trial order.

    Splits the trials into 10 equal consecutive batches (any remainder is
    dropped), and declares convergence when the standard error of the batch
    means is below 1% of their mean. A zero standard error (deterministic
    outcome) counts as converged.
    """
    n = len(returns)
    size = n // CONVERGENCE_BATCHES
    if size == 0:
        raise ValueError(f"Need at least {CONVERGENCE_BATCHES} results, got {n}")

    batch_means = np.array([
        returns[i * size:(i + 1) * size].mean() for i in range(CONVERGENCE_BATCHES)
    ])
    overall = float(batch_means.mean())
    standard_error = float(np.sqrt(batch_means.var(ddof=1) / CONVERGENCE_BATCHES))
    threshold = abs(overall) * CONVERGENCE_TOLERANCE
    margin = T_VALUE_9DF * standard_error

    return {
        'has_converged': bool(standard_error < threshold or standard_error == 0.0),
        'convergence_threshold': threshold,
        'standard_error': standard_error,
        'confidence_interval': {'lower': overall - margin, 'upper': overall + margin},
        'batch_means': [float(m) for m in batch_means],
    }


def summarize_simulation(
    returns: np.ndarray,
    confidence_level: float = 0.95,
    trading_days: int = 252,
) -> Dict:
    """Distribution, tail, path and convergence statistics of trial returns.

    Args:
        returns: Trial returns in simulation order
        confidence_level: Extra confidence level reported alongside 95/99

    Returns:
        Dict keyed like ``MonteCarloResult`` fields
    """
    returns = np.asarray(returns, dtype=float).flatten()
    n = len(returns)
    if n == 0:
        raise ValueError("Cannot summarise an empty simulation")

    ordered = np.sort(returns)
    mean = float(ordered.mean())
    std = float(ordered.std())  # population

    if std > 0:
        skewness = float(stats.skew(ordered, bias=True))
        kurtosis = float(stats.kurtosis(ordered, fisher=True, bias=True))
    else:
        skewness = 0.0
        kurtosis = 0.0

    worst = float(ordered[0])
    time_to_recovery = abs(worst) / mean * trading_days if mean > 0 else 0.0
    cvar_95 = conditional_value_at_risk(ordered, 0.95)

    summary = {
        'expected_return': mean,
        'standard_deviation': std,
        'skewness': skewness,
        'kurtosis': kurtosis,
        'var_95': value_at_risk(ordered, 0.95),
        'var_99': value_at_risk(ordered, 0.99),
        'cvar_95': cvar_95,
        'cvar_99': conditional_value_at_risk(ordered, 0.99),
        'var_at_confidence': value_at_risk(ordered, confidence_level),
        'cvar_at_confidence': conditional_value_at_risk(ordered, confidence_level),
        'expected_shortfall': cvar_95,
        'percentiles': percentile_ladder(ordered),
        # Worst terminal return, not an intra-path running drawdown
        'max_drawdown': abs(worst),
        'time_to_recovery': float(time_to_recovery),
        'probability_of_loss': float(np.count_nonzero(ordered < 0) / n),
        'convergence_test': convergence_test(returns),
    }

    logger.info(
        "summarize_simulation: statistics computed",
        number_of_simulations=n,
        expected_return=mean,
        var_95=summary['var_95'],
        has_converged=summary['convergence_test']['has_converged'],
    )

    return summary
