"""
Linear Algebra Primitives

Cholesky factorisation, a deflated power-iteration eigen-solver and pairwise
Pearson correlation. Shared by the Monte Carlo and correlation analytics.
Everything here operates on plain numpy arrays / pandas DataFrames.
"""

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import structlog

from ..exceptions import DimensionMismatchError, NotPositiveDefiniteError

logger = structlog.get_logger(__name__)


def _as_square(matrix, name: str = "Matrix") -> np.ndarray:
    m = np.asarray(matrix, dtype=float)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise DimensionMismatchError(f"{name} must be square, got shape {m.shape}")
    return m


# ---------------------------------------------------------------------------
# Cholesky
# ---------------------------------------------------------------------------


def cholesky_decomposition(matrix, tol: float = 1e-10) -> np.ndarray:
    """Lower-triangular Cholesky factor L with L @ L.T == matrix.

    Column by column:

        L[j, j] = sqrt(M[j, j] - sum_k<j L[j, k]^2)
        L[i, j] = (M[i, j] - sum_k<j L[i, k] * L[j, k]) / L[j, j]   for i > j

    A pivot within ``tol`` of zero is accepted only when the remaining column
    is zero as well (a positive semi-definite matrix such as two perfectly
    correlated assets); the column of L is then left at zero.

    Args:
        matrix: Symmetric (semi-)positive-definite matrix (N x N)
        tol: Pivot tolerance

    Returns:
        N x N lower-triangular numpy array, never containing NaN

    Raises:
        DimensionMismatchError: If the matrix is not square
        NotPositiveDefiniteError: If the matrix is not symmetric or a pivot is
            negative / zero with a non-zero remainder
    """
    m = _as_square(matrix)

    if not np.all(np.isfinite(m)):
        raise NotPositiveDefiniteError("Matrix contains NaN or infinite values")

    if not np.allclose(m, m.T, atol=1e-8):
        raise NotPositiveDefiniteError("Matrix must be symmetric for Cholesky decomposition")

    n = m.shape[0]
    lower = np.zeros_like(m)

    for j in range(n):
        pivot = m[j, j] - np.dot(lower[j, :j], lower[j, :j])
        remainder = m[j + 1:, j] - lower[j + 1:, :j] @ lower[j, :j]

        if pivot > tol:
            lower[j, j] = np.sqrt(pivot)
            lower[j + 1:, j] = remainder / lower[j, j]
        elif pivot >= -tol and np.all(np.abs(remainder) <= np.sqrt(tol)):
            # Degenerate direction, column stays zero
            continue
        else:
            logger.error(
                "cholesky_decomposition: matrix is not positive definite",
                column=j,
                pivot=float(pivot),
            )
            raise NotPositiveDefiniteError(
                f"Matrix is not positive definite (pivot {pivot:.3e} at column {j})"
            )

    return lower


def validate_correlation_matrix(matrix, atol: float = 1e-8) -> np.ndarray:
    """Check that *matrix* is a well-formed correlation matrix.

    Square, finite, symmetric, unit diagonal and entries within [-1, 1].
    Positive definiteness is left to :func:`cholesky_decomposition`.

    Returns:
        The matrix as a float numpy array
    """
    corr = _as_square(matrix, "Correlation matrix")

    if not np.all(np.isfinite(corr)):
        raise ValueError("Correlation matrix contains NaN or infinite values")

    if not np.allclose(corr, corr.T, atol=atol):
        raise ValueError("Correlation matrix must be symmetric")

    if not np.allclose(np.diag(corr), 1.0, atol=atol):
        raise ValueError("Correlation matrix diagonal must be 1.0")

    if np.any(np.abs(corr) > 1.0 + atol):
        raise ValueError("Correlation matrix entries must lie within [-1, 1]")

    return corr


def shrink_to_positive_definite(
    corr,
    min_eigenvalue: float = 1e-10,
) -> Tuple[np.ndarray, float]:
    """Shrink a correlation matrix toward the identity until it is positive definite.

    Binary search for the smallest alpha such that
    ``(1 - alpha) * corr + alpha * I`` has its smallest eigenvalue above
    ``min_eigenvalue``. The unit diagonal is preserved.

    Args:
        corr: Correlation matrix (N x N), typically assembled pairwise
        min_eigenvalue: Required floor on the smallest eigenvalue

    Returns:
        Tuple of (shrunk matrix, alpha). alpha is 0.0 when no shrinkage was needed.
    """
    corr = _as_square(corr, "Correlation matrix")
    corr = (corr + corr.T) / 2

    smallest = float(np.min(np.linalg.eigvalsh(corr)))
    if smallest > min_eigenvalue:
        return corr, 0.0

    target = np.eye(corr.shape[0])
    lo, hi = 0.0, 1.0
    for _ in range(50):
        mid = (lo + hi) / 2
        candidate = (1 - mid) * corr + mid * target
        if np.min(np.linalg.eigvalsh(candidate)) > min_eigenvalue:
            hi = mid
        else:
            lo = mid

    alpha = min(hi + 0.01, 1.0)
    shrunk = (1 - alpha) * corr + alpha * target
    shrunk = (shrunk + shrunk.T) / 2

    logger.info(
        "shrink_to_positive_definite: shrinkage toward identity applied",
        min_eigenvalue=smallest,
        shrinkage_alpha=round(alpha, 4),
    )

    return shrunk, alpha


# ---------------------------------------------------------------------------
# Eigen-decomposition by power iteration
# ---------------------------------------------------------------------------


def _project_out(vector: np.ndarray, basis: Sequence[np.ndarray]) -> np.ndarray:
    for b in basis:
        vector = vector - np.dot(vector, b) * b
    return vector


def power_iteration(
    matrix,
    deflate: Sequence[np.ndarray] = (),
    tol: float = 1e-8,
    max_iterations: int = 1000,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[float, np.ndarray, bool]:
    """Dominant eigenpair of a symmetric matrix restricted to the complement of *deflate*.

    The iterate is projected off every vector in ``deflate`` on each step, so
    repeated calls with the growing list of found eigenvectors yield the
    spectrum in descending order. Iteration stops when the Rayleigh quotient
    changes by less than ``tol`` relative to its magnitude.

    Args:
        matrix: Symmetric matrix (N x N)
        deflate: Orthonormal eigenvectors already extracted
        tol: Relative eigenvalue change tolerance
        max_iterations: Iteration cap
        rng: Generator for the start vector

    Returns:
        Tuple of (eigenvalue, unit eigenvector, converged flag)
    """
    m = _as_square(matrix)
    n = m.shape[0]

    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

    if rng is None:
        rng = np.random.default_rng()

    v = _project_out(rng.standard_normal(n), deflate)
    norm = np.linalg.norm(v)
    if norm < 1e-12:
        logger.warning("power_iteration: deflation basis spans the whole space")
        return 0.0, np.zeros(n), True
    v = v / norm

    eigenvalue = float(v @ m @ v)
    converged = False
    null_floor = 1e-12 * max(1.0, float(np.abs(m).max()))

    for _ in range(max_iterations):
        w = _project_out(m @ v, deflate)
        norm = np.linalg.norm(w)
        if norm < null_floor:
            # v lies in the null space of the deflated operator
            eigenvalue = float(v @ m @ v)
            converged = True
            break

        v = w / norm
        updated = float(v @ m @ v)
        change = abs(updated - eigenvalue)
        eigenvalue = updated

        if change <= tol * max(abs(eigenvalue), 1e-12):
            converged = True
            break

    # Deterministic sign: largest loading positive
    if v[np.argmax(np.abs(v))] < 0:
        v = -v

    if not converged:
        logger.warning(
            "power_iteration: did not converge",
            max_iterations=max_iterations,
            eigenvalue=eigenvalue,
        )

    return eigenvalue, v, converged


def eigen_decomposition(
    matrix,
    n_components: Optional[int] = None,
    tol: float = 1e-8,
    max_iterations: int = 1000,
    seed: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Leading eigenpairs of a symmetric matrix by repeated deflated power iteration.

    Returns:
        Tuple of (eigenvalues sorted descending, eigenvectors as columns)
    """
    m = _as_square(matrix)
    n = m.shape[0]

    if n == 0:
        raise ValueError("Cannot decompose an empty matrix")

    k = n if n_components is None else n_components
    if not 1 <= k <= n:
        raise ValueError(f"n_components must be between 1 and {n}, got {n_components}")

    rng = np.random.default_rng(seed)
    values: List[float] = []
    vectors: List[np.ndarray] = []

    for _ in range(k):
        value, vector, _converged = power_iteration(
            m, deflate=vectors, tol=tol, max_iterations=max_iterations, rng=rng
        )
        values.append(value)
        vectors.append(vector)

    order = np.argsort(values)[::-1]
    eigenvalues = np.asarray(values)[order]
    eigenvectors = np.column_stack(vectors)[:, order]

    return eigenvalues, eigenvectors


def principal_components(
    matrix,
    assets: List[str],
    n_components: Optional[int] = None,
    tol: float = 1e-8,
    max_iterations: int = 1000,
    seed: Optional[int] = None,
) -> Dict:
    """PCA of a correlation (or covariance) matrix.

    Variance explained is each eigenvalue over the trace, so the cumulative
    share reaches 1.0 when every component is retained.

    Args:
        matrix: Correlation matrix (N x N)
        assets: Labels for the N rows/columns

    Returns:
        Dict with ``assets``, ``matrix``, ``eigenvalues`` and
        ``principal_components`` (list of component dicts)
    """
    m = _as_square(matrix)

    if len(assets) != m.shape[0]:
        raise DimensionMismatchError(
            f"Assets length {len(assets)} doesn't match matrix size {m.shape[0]}"
        )

    eigenvalues, eigenvectors = eigen_decomposition(
        m, n_components=n_components, tol=tol, max_iterations=max_iterations, seed=seed
    )

    trace = float(np.trace(m))
    components = []
    cumulative = 0.0

    for idx, eigenvalue in enumerate(eigenvalues):
        explained = float(eigenvalue / trace) if trace > 0 else 0.0
        cumulative += explained
        components.append({
            'component_number': idx + 1,
            'eigenvalue': float(eigenvalue),
            'variance_explained': explained,
            'cumulative_variance_explained': cumulative,
            'loadings': [
                {'asset_id': asset, 'loading': float(eigenvectors[i, idx])}
                for i, asset in enumerate(assets)
            ],
        })

    logger.info(
        "principal_components: decomposition complete",
        num_assets=len(assets),
        num_components=len(components),
        first_component_share=components[0]['variance_explained'] if components else 0.0,
    )

    return {
        'assets': list(assets),
        'matrix': m.tolist(),
        'eigenvalues': [float(v) for v in eigenvalues],
        'principal_components': components,
    }


# ---------------------------------------------------------------------------
# Pearson correlation
# ---------------------------------------------------------------------------


def pearson_correlation(x, y) -> float:
    """Pearson correlation cov(x, y) / (sigma_x * sigma_y).

    Returns 0.0 when fewer than two observations are available or either
    series is constant.
    """
    x = np.asarray(x, dtype=float).flatten()
    y = np.asarray(y, dtype=float).flatten()

    if x.shape != y.shape:
        raise DimensionMismatchError(
            f"Series length {x.shape[0]} doesn't match series length {y.shape[0]}"
        )

    if x.shape[0] < 2:
        return 0.0

    dx = x - x.mean()
    dy = y - y.mean()
    denominator = np.sqrt(np.sum(dx ** 2) * np.sum(dy ** 2))

    if denominator == 0:
        return 0.0

    return float(np.clip(np.sum(dx * dy) / denominator, -1.0, 1.0))


def pearson_correlation_matrix(returns: pd.DataFrame) -> pd.DataFrame:
    """Pairwise Pearson correlation matrix with a unit diagonal.

    Args:
        returns: DataFrame of returns (T x N)

    Returns:
        DataFrame with column labels on both axes (N x N)
    """
    if returns.shape[1] == 0:
        raise ValueError("Cannot compute correlation from empty returns DataFrame")

    if returns.isna().any().any():
        affected = returns.columns[returns.isna().any()].tolist()
        logger.error("pearson_correlation_matrix: NaN values in returns", affected_symbols=affected)
        raise ValueError(f"NaN values detected in returns for symbols: {affected}")

    values = returns.values
    n = values.shape[1]
    corr = np.eye(n)

    constant = [returns.columns[i] for i in range(n) if np.ptp(values[:, i]) == 0] if len(values) else []
    if constant:
        logger.warning("pearson_correlation_matrix: zero-variance series", symbols=constant)

    for i in range(n):
        for j in range(i + 1, n):
            corr[i, j] = corr[j, i] = pearson_correlation(values[:, i], values[:, j])

    return pd.DataFrame(corr, index=returns.columns, columns=returns.columns)
