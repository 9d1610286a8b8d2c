"""Configuration for the risk engine loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Risk engine configuration.

    Every field can be overridden with a ``RISK_`` prefixed environment
    variable (``RISK_MC_MAX_WORKERS=8``) or from a local ``.env`` file.
    """

    # Monte Carlo
    MC_BATCH_SIZE: int = 1000
    MC_MAX_WORKERS: int = 4
    MC_JUMP_MEAN: float = -0.05  # average jump size, negative = down-jump bias
    MC_JUMP_VOLATILITY: float = 0.15
    TRADING_DAYS: int = 252

    # Eigen solver (power iteration)
    EIGEN_TOLERANCE: float = 1e-8
    EIGEN_MAX_ITERATIONS: int = 1000
    EIGEN_SEED: int = 7

    # Liquidity
    LIQUIDITY_PARTICIPATION_RATE: float = 0.20

    # Stress testing
    STRESS_CORRELATION_FACTOR: float = 0.25
    STRESS_CORRELATION_REPORT_THRESHOLD: float = 0.05
    BASE_CURRENCY: str = "USD"

    # Limit monitoring
    LOW_CAPACITY_FRACTION: float = 0.05

    LOG_LEVEL: str = "INFO"

    model_config = {"env_prefix": "RISK_", "env_file": ".env", "env_file_encoding": "utf-8"}


def get_settings() -> Settings:
    """Return a Settings instance."""
    return Settings()
