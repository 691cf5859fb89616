"""Damped normal-equation solver for the Levenberg-Marquardt step.

With J the Jacobian of the residuals r = obs - model with respect to the
free parameters, the linearized residual after a step delta is r + J delta.
Minimizing its squared norm with Marquardt damping gives

    (J^T J + lambda * diag(J^T J)) delta = -J^T r

Scaling the damping by diag(J^T J) instead of the identity makes the step
invariant to the units of each parameter. Large lambda approaches a scaled
gradient-descent step, small lambda the Gauss-Newton step.
"""

import logging

import numpy as np
from scipy import linalg

from ..exceptions import SingularSystemError

logger = logging.getLogger(__name__)

# Relative floor for diagonal entries of J^T J used in the damping term
DIAGONAL_FLOOR = 1e-12


def damping_diagonal(jtj: np.ndarray) -> np.ndarray:
    """Diagonal used for Marquardt scaling, floored away from zero.

    Parameters with no sensitivity have a zero diagonal entry; without the
    floor the damping term would vanish for them and leave the system
    singular at any lambda.
    """
    diag = np.diag(jtj).copy()
    scale = float(np.max(diag)) if diag.size and np.max(diag) > 0 else 1.0
    return np.maximum(diag, DIAGONAL_FLOOR * scale)


def solve_normal_equations(
    jacobian: np.ndarray,
    residuals: np.ndarray,
    damping: float,
) -> np.ndarray:
    """Solve the damped normal equations for a parameter step.

    Args:
        jacobian: Residual Jacobian, shape (n_residuals, n_free)
        residuals: Residual vector at the current parameters
        damping: Marquardt damping factor lambda (>= 0)

    Returns:
        Parameter step delta, shape (n_free,)

    Raises:
        ValueError: If shapes are inconsistent or damping is negative
        SingularSystemError: If no finite step can be computed
    """
    J = np.asarray(jacobian, dtype=float)
    r = np.asarray(residuals, dtype=float)

    if J.ndim != 2 or J.shape[0] != r.shape[0]:
        raise ValueError(
            f"Jacobian shape {J.shape} does not match residual length {r.shape[0]}"
        )
    if damping < 0:
        raise ValueError(f"damping ({damping}) must be non-negative")
    if not (np.all(np.isfinite(J)) and np.all(np.isfinite(r))):
        raise SingularSystemError("Jacobian or residuals contain non-finite values")

    jtj = J.T @ J
    gradient = J.T @ r
    A = jtj + damping * np.diag(damping_diagonal(jtj))
    b = -gradient

    try:
        factor = linalg.cho_factor(A, lower=False, check_finite=False)
        delta = linalg.cho_solve(factor, b, check_finite=False)
        if np.all(np.isfinite(delta)):
            return delta
        logger.debug("Cholesky step not finite, falling back to least squares")
    except linalg.LinAlgError:
        logger.debug(f"Normal matrix not positive definite at lambda={damping:g}, using least squares")

    try:
        delta, _, rank, _ = linalg.lstsq(A, b, check_finite=False)
    except (linalg.LinAlgError, ValueError) as e:
        raise SingularSystemError(f"Least-squares fallback failed: {e}") from e

    if not np.all(np.isfinite(delta)):
        raise SingularSystemError(f"Normal equations have no finite solution (rank {rank})")
    if rank < A.shape[0]:
        logger.debug(f"Rank-deficient normal matrix ({rank}/{A.shape[0]}), minimum-norm step used")
    return delta
