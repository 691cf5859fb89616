"""Finite-difference Jacobian of the residual vector.

Column k of the Jacobian is the sensitivity of every residual to free
parameter k:

    J[:, k] = (r(x + h_k e_k) - r(x)) / h_k               forward
    J[:, k] = (r(x + h_k e_k) - r(x - h_k e_k)) / (2 h_k)  central

    h_k = max(rel_step * |x_k|, abs_step)

Forward differences cost one residual evaluation per free parameter and
central differences two; central differences are second-order accurate and
are worth the cost for parameters whose sensitivity is strongly nonlinear.

Perturbed values are clamped to the parameter bounds and the effective step
is recomputed from the clamped value. A forward step blocked by the upper
bound is taken backwards instead.
"""

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import TYPE_CHECKING, Literal

import numpy as np

from .parameters import ParameterSet
from .residuals import ResidualEvaluator

if TYPE_CHECKING:
    from .optimizer import CancellationToken

logger = logging.getLogger(__name__)

DifferenceMethod = Literal["forward", "central"]

DEFAULT_REL_STEP = 1e-6
DEFAULT_ABS_STEP = 1e-8


class FitCancelled(Exception):
    """Internal signal: cancellation observed while evaluating columns."""


class JacobianEstimator:
    """Estimates the residual Jacobian by finite differences."""

    def __init__(
        self,
        evaluator: ResidualEvaluator,
        method: DifferenceMethod = "forward",
        rel_step: float = DEFAULT_REL_STEP,
        abs_step: float = DEFAULT_ABS_STEP,
        workers: int | None = None,
    ):
        """Initialize estimator.

        Args:
            evaluator: Residual evaluator for the observed data and model
            method: Default difference scheme for all free parameters
            rel_step: Relative perturbation size
            abs_step: Absolute perturbation floor (used near zero)
            workers: Thread pool size for evaluating columns in parallel
                (None or 1 evaluates serially)

        Raises:
            ValueError: If method or step sizes are invalid
        """
        if method not in ("forward", "central"):
            raise ValueError(f"method must be 'forward' or 'central', got '{method}'")
        if rel_step <= 0 or abs_step <= 0:
            raise ValueError("rel_step and abs_step must be greater than 0")
        self.evaluator = evaluator
        self.method = method
        self.rel_step = rel_step
        self.abs_step = abs_step
        self.workers = workers

    def step_size(self, value: float) -> float:
        """Nominal perturbation for a parameter value."""
        return max(self.rel_step * abs(value), self.abs_step)

    def jacobian(
        self,
        params: ParameterSet,
        base_residuals: np.ndarray,
        free_names: list[str] | None = None,
        cancel_token: "CancellationToken | None" = None,
    ) -> np.ndarray:
        """Compute the Jacobian matrix.

        Args:
            params: Current parameter set
            base_residuals: Residuals at the current parameters
            free_names: Parameters to differentiate (default: all free)
            cancel_token: Checked before each column is evaluated

        Returns:
            Matrix of shape (len(base_residuals), len(free_names))

        Raises:
            FitCancelled: If the token is set while columns are evaluated
        """
        names = params.free_names if free_names is None else list(free_names)
        base = np.asarray(base_residuals, dtype=float)
        jac = np.zeros((len(base), len(names)), dtype=float)

        def column(name: str) -> np.ndarray:
            if cancel_token is not None and cancel_token.is_set():
                raise FitCancelled()
            return self._column(params, name, base)

        if self.workers and self.workers > 1 and len(names) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                columns = list(executor.map(column, names))
        else:
            columns = [column(name) for name in names]

        for k, col in enumerate(columns):
            jac[:, k] = col
        return jac

    def _column(self, params: ParameterSet, name: str, base: np.ndarray) -> np.ndarray:
        """Compute a single Jacobian column."""
        param = params[name]
        x = param.value
        h = self.step_size(x)

        if self.method == "central" or param.central:
            x_plus = param.clamp(x + h)
            x_minus = param.clamp(x - h)
            span = x_plus - x_minus
            if span == 0.0:
                logger.debug(f"Parameter '{name}' has no feasible span; zero Jacobian column")
                return np.zeros_like(base)
            r_plus = self.evaluator.residuals(params.with_values({name: x_plus}).values())
            r_minus = self.evaluator.residuals(params.with_values({name: x_minus}).values())
            return (r_plus - r_minus) / span

        x_step = param.clamp(x + h)
        if x_step == x:
            # Blocked by the upper bound: difference backwards
            x_step = param.clamp(x - h)
        h_eff = x_step - x
        if h_eff == 0.0:
            logger.debug(f"Parameter '{name}' has no feasible span; zero Jacobian column")
            return np.zeros_like(base)
        r_step = self.evaluator.residuals(params.with_values({name: x_step}).values())
        return (r_step - base) / h_eff
