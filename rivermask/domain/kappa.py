"""Cohen's Kappa coefficient.

Reported next to OA for every window because the reference studies
quote it. Expected agreement p_e comes from the marginal totals.

No I/O. Only depends on: numpy, confidence module.
"""

from typing import Optional, Tuple

import numpy as np

from .confidence import kappa_ci as _kappa_ci

# Expected agreement this close to 1 leaves Kappa undefined
_PE_TOLERANCE = 1e-15


def expected_agreement(matrix: np.ndarray) -> float:
    """Chance agreement p_e = sum(row_i * col_i) / N^2."""
    N = float(matrix.sum())
    row_totals = matrix.sum(axis=1).astype(float)
    col_totals = matrix.sum(axis=0).astype(float)
    return float((row_totals * col_totals).sum()) / (N * N)


def compute(
    matrix: np.ndarray,
    z: float = 1.96,
) -> Tuple[Optional[float], Optional[Tuple[float, float]]]:
    """Compute Cohen's Kappa and its confidence interval.

    Args:
        matrix: k x k confusion matrix (reference=rows, predicted=cols).
        z: z-score for the interval.

    Returns:
        (kappa, (ci_lower, ci_upper)). Both are None when p_e == 1, i.e.
        both classifications put every sample in the same single class.

    Raises:
        ValueError: If the matrix is empty.
    """
    N = int(matrix.sum())
    if N == 0:
        raise ValueError("Cannot compute Kappa on empty matrix")

    p_o = float(np.diag(matrix).sum()) / N
    p_e = expected_agreement(matrix)

    if abs(1.0 - p_e) < _PE_TOLERANCE:
        return (None, None)

    kappa = (p_o - p_e) / (1.0 - p_e)
    return (float(kappa), _kappa_ci(kappa, p_o, p_e, N, z))
