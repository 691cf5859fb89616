"""Combined pressure and derivative residuals.

The residual vector for N observed samples has length 2N:

    r[0:N]   = pObs - pModel                    (pressure channel)
    r[N:2N]  = w * s * (dObs - dModel)          (derivative channel)

w is the caller's derivative weight in [0, 1]: 0 fits pressure only, 1
gives the derivative channel full influence. s is a fixed scale factor
between channels, DEFAULT_DERIVATIVE_SCALE unless configured. With
``residual_space="log"`` both channels are compared as log10 values, which
removes the magnitude difference between them without a scale factor.

Model output that is not finite (or not positive, in log space), and any
exception raised by the model function, is replaced by PENALTY_RESIDUAL so
that one bad evaluation cannot poison the solve.
"""

from collections.abc import Mapping
import logging
import math
import threading
from typing import Literal

import numpy as np

from .models import ModelFunction

logger = logging.getLogger(__name__)

# Scale factor applied to derivative residuals on top of the derivative weight
DEFAULT_DERIVATIVE_SCALE = 1.0

# Residual used in place of a non-finite model evaluation
PENALTY_RESIDUAL = 1e6

ResidualSpace = Literal["linear", "log"]


class ResidualEvaluator:
    """Evaluates weighted residuals between observed data and a model."""

    def __init__(
        self,
        time: np.ndarray,
        pressure: np.ndarray,
        derivative: np.ndarray,
        model: ModelFunction,
        derivative_weight: float = 1.0,
        derivative_scale: float = DEFAULT_DERIVATIVE_SCALE,
        residual_space: ResidualSpace = "linear",
    ):
        """Initialize evaluator.

        Args:
            time: Observed elapsed times
            pressure: Observed pressure change
            derivative: Observed Bourdet derivative
            model: Model function evaluate(params, t) -> (p, dp/dlnt)
            derivative_weight: Weight of the derivative channel, 0 to 1
            derivative_scale: Fixed scale factor for derivative residuals
            residual_space: "linear" or "log" (log10 of both channels)

        Raises:
            ValueError: If arrays differ in length or weights are out of range
        """
        self.time = np.asarray(time, dtype=float)
        self.pressure = np.asarray(pressure, dtype=float)
        self.derivative = np.asarray(derivative, dtype=float)

        if not (len(self.time) == len(self.pressure) == len(self.derivative)):
            raise ValueError(
                f"time, pressure and derivative must have equal length "
                f"({len(self.time)}, {len(self.pressure)}, {len(self.derivative)})"
            )
        if not 0.0 <= derivative_weight <= 1.0:
            raise ValueError(f"derivative_weight ({derivative_weight}) must be within [0, 1]")
        if derivative_scale < 0:
            raise ValueError(f"derivative_scale ({derivative_scale}) must be non-negative")
        if residual_space not in ("linear", "log"):
            raise ValueError(f"residual_space must be 'linear' or 'log', got '{residual_space}'")

        self.model = model
        self.derivative_weight = float(derivative_weight)
        self.derivative_scale = float(derivative_scale)
        self.residual_space = residual_space
        self.failure_count = 0
        self._failure_lock = threading.Lock()

        if residual_space == "log":
            self._obs_p, self._mask_p = self._log_observed(self.pressure)
            self._obs_d, self._mask_d = self._log_observed(self.derivative)
        else:
            self._obs_p, self._mask_p = self.pressure, np.ones(self.n_samples, dtype=bool)
            self._obs_d, self._mask_d = self.derivative, np.ones(self.n_samples, dtype=bool)

    @staticmethod
    def _log_observed(values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """log10 of positive observations, with a mask of usable samples."""
        mask = values > 0
        logs = np.zeros_like(values)
        logs[mask] = np.log10(values[mask])
        return logs, mask

    @property
    def n_samples(self) -> int:
        """Number of observed samples N."""
        return len(self.time)

    @property
    def n_residuals(self) -> int:
        """Length of the residual vector, always 2N."""
        return 2 * self.n_samples

    @property
    def channel_factor(self) -> float:
        """Combined factor applied to derivative residuals."""
        return self.derivative_weight * self.derivative_scale

    def model_curves(self, params: Mapping[str, float]) -> tuple[np.ndarray, np.ndarray]:
        """Evaluate the model at every observed time.

        Failed evaluations (exceptions or non-finite values) come back as NaN;
        callers that need finite numbers use residuals().

        Args:
            params: Parameter values keyed by name

        Returns:
            Tuple of (pressure, derivative) arrays
        """
        n = self.n_samples
        p_model = np.empty(n, dtype=float)
        d_model = np.empty(n, dtype=float)
        for i, t in enumerate(self.time):
            try:
                p, d = self.model(params, float(t))
                p_model[i] = p
                d_model[i] = d
            except Exception as e:
                logger.debug(f"Model evaluation failed at t={t:g}: {type(e).__name__}: {e}")
                p_model[i] = d_model[i] = math.nan
        return p_model, d_model

    def residuals(self, params: Mapping[str, float]) -> np.ndarray:
        """Compute the combined residual vector.

        Args:
            params: Parameter values keyed by name

        Returns:
            Array of length 2N: pressure residuals then derivative residuals
        """
        p_model, d_model = self.model_curves(params)

        if self.residual_space == "log":
            r_p, bad_p = self._log_residual(self._obs_p, self._mask_p, p_model)
            r_d, bad_d = self._log_residual(self._obs_d, self._mask_d, d_model)
        else:
            with np.errstate(invalid="ignore", over="ignore"):
                r_p = self._obs_p - p_model
                r_d = self._obs_d - d_model
            bad_p = ~np.isfinite(r_p)
            bad_d = ~np.isfinite(r_d)

        n_bad = int(bad_p.sum() + bad_d.sum())
        if n_bad:
            with self._failure_lock:
                self.failure_count += n_bad
            logger.debug(
                f"Model evaluation produced {n_bad} non-finite value(s); "
                f"penalty residual {PENALTY_RESIDUAL:g} applied"
            )
            r_p = np.where(bad_p, PENALTY_RESIDUAL, r_p)
            r_d = np.where(bad_d, PENALTY_RESIDUAL, r_d)

        return np.concatenate([r_p, self.channel_factor * r_d])

    @staticmethod
    def _log_residual(
        obs_log: np.ndarray,
        obs_mask: np.ndarray,
        model: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """log10 residual for one channel.

        Returns:
            Tuple of (residuals, mask of entries needing the penalty)
        """
        residual = np.zeros_like(model)
        usable = obs_mask & np.isfinite(model) & (model > 0)
        residual[usable] = obs_log[usable] - np.log10(model[usable])
        bad = obs_mask & ~usable
        return residual, bad


def sum_squared_error(residuals: np.ndarray) -> float:
    """Sum of squared residuals, the least-squares objective."""
    r = np.asarray(residuals, dtype=float)
    return float(np.dot(r, r))
