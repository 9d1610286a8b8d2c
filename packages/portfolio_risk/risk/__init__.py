"""
Risk Computation Modules

Pure computation on numpy arrays and pandas DataFrames. Every public
function returns plain values or dicts; the service layer wraps them in
result models.

Modules:
- linalg: Cholesky, power iteration eigen-decomposition, Pearson correlation
- covariance: Ledoit-Wolf covariance and historical correlation
- metrics: Volatility, VaR, ES, risk contributions, concentration
- monte_carlo: Correlated GBM simulation with optional jumps
- liquidity: Liquidation time, market impact and liquidity stress
- stress: Factor shock scenarios and factor sensitivities
- correlation: Correlation structure and risk contribution analysis
- limits: Limit utilization, breaches, alerts and escalations
"""

# Linear algebra module
from .linalg import (
    cholesky_decomposition,
    validate_correlation_matrix,
    shrink_to_positive_definite,
    power_iteration,
    eigen_decomposition,
    principal_components,
    pearson_correlation,
    pearson_correlation_matrix,
)

# Covariance module
from .covariance import (
    ledoit_wolf_cov,
    annualize_cov,
    cov_to_corr,
    historical_correlation,
)

# Metrics module
from .metrics import (
    build_covariance,
    portfolio_volatility,
    parametric_var,
    expected_shortfall,
    marginal_contribution_to_risk,
    component_contribution_to_risk,
    pct_contribution_to_variance,
    diversification_ratio,
    concentration_metrics,
    category_concentration,
)

# Monte Carlo module
from .monte_carlo import (
    simulate_portfolio_returns,
    value_at_risk,
    conditional_value_at_risk,
    convergence_test,
    summarize_simulation,
)

# Liquidity module
from .liquidity import (
    assess_position_liquidity,
    assess_portfolio_liquidity,
    liquidity_stress_tests,
    LIQUIDITY_STRESS_SCENARIOS,
)

# Stress testing module
from .stress import (
    apply_scenario,
    run_stress_tests,
    factor_sensitivity_analysis,
    HISTORICAL_SCENARIOS,
)

# Correlation module
from .correlation import (
    analyze_portfolio_correlations,
    effective_number_of_bets,
    risk_contributions,
)

# Limits module
from .limits import (
    default_risk_limits,
    current_risk_metrics,
    evaluate_limits,
    monitoring_report,
)

__all__ = [
    # Linalg
    'cholesky_decomposition',
    'validate_correlation_matrix',
    'shrink_to_positive_definite',
    'power_iteration',
    'eigen_decomposition',
    'principal_components',
    'pearson_correlation',
    'pearson_correlation_matrix',
    # Covariance
    'ledoit_wolf_cov',
    'annualize_cov',
    'cov_to_corr',
    'historical_correlation',
    # Metrics
    'build_covariance',
    'portfolio_volatility',
    'parametric_var',
    'expected_shortfall',
    'marginal_contribution_to_risk',
    'component_contribution_to_risk',
    'pct_contribution_to_variance',
    'diversification_ratio',
    'concentration_metrics',
    'category_concentration',
    # Monte Carlo
    'simulate_portfolio_returns',
    'value_at_risk',
    'conditional_value_at_risk',
    'convergence_test',
    'summarize_simulation',
    # Liquidity
    'assess_position_liquidity',
    'assess_portfolio_liquidity',
    'liquidity_stress_tests',
    'LIQUIDITY_STRESS_SCENARIOS',
    # Stress
    'apply_scenario',
    'run_stress_tests',
    'factor_sensitivity_analysis',
    'HISTORICAL_SCENARIOS',
    # Correlation
    'analyze_portfolio_correlations',
    'effective_number_of_bets',
    'risk_contributions',
    # Limits
    'default_risk_limits',
    'current_risk_metrics',
    'evaluate_limits',
    'monitoring_report',
]
