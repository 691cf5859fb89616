"""Levenberg-Marquardt fitting of reservoir models to well-test data.

Features:
- Combined pressure and Bourdet-derivative residuals with a derivative weight
- Finite-difference Jacobian (forward or central, optionally threaded)
- Marquardt-scaled damping with adaptive increase/decrease
- Bounds enforced by clamping; parameters blocked at a bound are held out
  of the solve so the others take a full step
- Cooperative cancellation and per-iteration progress callbacks

State machine:

    INITIALIZING -> ITERATING -> CONVERGED | MAX_ITERATIONS | CANCELLED | DIVERGED

Each iteration computes the Jacobian at the current parameters and solves
the damped normal equations. A step that lowers the sum of squared error is
accepted and the damping is decreased; a step that does not is rejected and
the damping increased, without advancing the iteration counter. Too many
consecutive rejections end the fit as DIVERGED, or as CONVERGED when the
previous step had already stalled or the error has reached the noise floor.
The caller always gets a FitResult holding the last accepted parameters.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
import logging
import math
import threading
from typing import TYPE_CHECKING, Any

import numpy as np

from ..exceptions import InsufficientDataError, NoFreeParametersError, SingularSystemError
from .derivative import DEFAULT_SMOOTHING, bourdet_derivative
from .jacobian import FitCancelled, JacobianEstimator
from .models import ModelFunction
from .parameters import ParameterSet
from .residuals import DEFAULT_DERIVATIVE_SCALE, ResidualEvaluator, sum_squared_error
from .solver import solve_normal_equations

if TYPE_CHECKING:
    from ..config import PyWellTestConfig

logger = logging.getLogger(__name__)

# Error ratio (final / initial) below which a fit that can no longer improve
# is reported as converged rather than diverged
NOISE_FLOOR = 1e-16


class FitStatus(str, Enum):
    """State of a fit."""
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"
    DIVERGED = "diverged"

    @property
    def is_terminal(self) -> bool:
        """True for states that end a fit."""
        return self not in (FitStatus.INITIALIZING, FitStatus.ITERATING)


class CancellationToken:
    """Shared flag for cooperative cancellation of a running fit."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def is_set(self) -> bool:
        """Check whether cancellation was requested."""
        return self._event.is_set()


@dataclass
class FittingConfig:
    """Configuration for Levenberg-Marquardt fitting.

    Attributes:
        max_iterations: Ceiling on accepted iterations (default 100)
        initial_damping: Starting damping factor lambda (default 1e-3)
        damping_decrease: Divisor applied to lambda after an accepted step (default 10)
        damping_increase: Multiplier applied to lambda after a rejected step (default 10)
        min_damping: Floor for lambda (default 1e-12)
        max_damping: Cap for lambda (default 1e12)
        max_retries: Rejected steps allowed per iteration before DIVERGED (default 12)
        error_tolerance: Relative error decrease counted as stalled (default 1e-9)
        step_tolerance: Weighted relative step norm counted as stalled (default 1e-9)
        convergence_patience: Consecutive stalled steps required for CONVERGED (default 2)
        derivative_weight: Weight of the derivative channel, 0 to 1 (default 0.5)
        derivative_scale: Fixed scale factor on derivative residuals (default 1.0)
        residual_space: "linear" or "log" residuals (default "linear")
        jacobian_method: "forward" or "central" differences (default "forward")
        rel_step: Relative finite-difference step (default 1e-6)
        abs_step: Absolute finite-difference step floor (default 1e-8)
        jacobian_workers: Threads for Jacobian columns (default None = serial)
        min_points: Minimum samples required to start (default 3)
        smoothing: Bourdet window (ln-time) when no derivative is supplied (default 0.15)
    """
    max_iterations: int = 100
    initial_damping: float = 1e-3
    damping_decrease: float = 10.0
    damping_increase: float = 10.0
    min_damping: float = 1e-12
    max_damping: float = 1e12
    max_retries: int = 12
    error_tolerance: float = 1e-9
    step_tolerance: float = 1e-9
    convergence_patience: int = 2
    derivative_weight: float = 0.5
    derivative_scale: float = DEFAULT_DERIVATIVE_SCALE
    residual_space: str = "linear"
    jacobian_method: str = "forward"
    rel_step: float = 1e-6
    abs_step: float = 1e-8
    jacobian_workers: int | None = None
    min_points: int = 3
    smoothing: float = DEFAULT_SMOOTHING

    @classmethod
    def from_config(cls, config: "PyWellTestConfig") -> "FittingConfig":
        """Create FittingConfig from a PyWellTestConfig.

        Args:
            config: PyWellTestConfig instance

        Returns:
            FittingConfig with the fitting and derivative sections applied
        """
        fitting = config.fitting
        return cls(
            max_iterations=fitting.max_iterations,
            initial_damping=fitting.initial_damping,
            damping_decrease=fitting.damping_decrease,
            damping_increase=fitting.damping_increase,
            min_damping=fitting.min_damping,
            max_damping=fitting.max_damping,
            max_retries=fitting.max_retries,
            error_tolerance=fitting.error_tolerance,
            step_tolerance=fitting.step_tolerance,
            convergence_patience=fitting.convergence_patience,
            derivative_weight=fitting.derivative_weight,
            derivative_scale=fitting.derivative_scale,
            residual_space=fitting.residual_space,
            jacobian_method=fitting.jacobian_method,
            rel_step=fitting.rel_step,
            abs_step=fitting.abs_step,
            jacobian_workers=fitting.jacobian_workers,
            min_points=fitting.min_points,
            smoothing=config.derivative.smoothing,
        )


@dataclass
class FitState:
    """Mutable record of a running fit.

    Attributes:
        parameters: Last accepted parameter set
        error: Sum of squared error at the accepted parameters
        damping: Current damping factor
        iteration: Number of accepted iterations
        status: Current state
        stalled_steps: Consecutive accepted steps below the tolerances
    """
    parameters: ParameterSet
    error: float
    damping: float
    iteration: int = 0
    status: FitStatus = FitStatus.INITIALIZING
    stalled_steps: int = 0


@dataclass
class IterationUpdate:
    """Progress event emitted after every accepted iteration.

    Attributes:
        iteration: Accepted iteration number (1-based)
        error: Sum of squared error after the step
        damping: Damping factor after the step
        parameters: Parameter values keyed by name
        time: Observed times
        pressure: Model pressure at the observed times
        derivative: Model derivative at the observed times
        progress: Percentage of the iteration ceiling used (0-100)
    """
    iteration: int
    error: float
    damping: float
    parameters: dict[str, float]
    time: np.ndarray
    pressure: np.ndarray
    derivative: np.ndarray
    progress: int


IterationCallback = Callable[[IterationUpdate], None]


@dataclass
class FitResult:
    """Terminal result of a fit.

    Attributes:
        status: Terminal FitStatus
        parameters: Best parameters (last accepted step)
        error: Sum of squared error at those parameters
        initial_error: Sum of squared error at the starting parameters
        iterations: Accepted iterations performed
        damping: Final damping factor
        error_history: Error after start and after each accepted iteration
        time: Observed times
        pressure_curve: Model pressure at the final parameters
        derivative_curve: Model derivative at the final parameters
        model_failures: Count of non-finite model evaluations absorbed
        message: Human-readable termination reason
    """
    status: FitStatus
    parameters: ParameterSet
    error: float
    initial_error: float
    iterations: int
    damping: float
    error_history: list[float] = field(default_factory=list)
    time: np.ndarray | None = None
    pressure_curve: np.ndarray | None = None
    derivative_curve: np.ndarray | None = None
    model_failures: int = 0
    message: str = ""

    @property
    def converged(self) -> bool:
        """True if the fit terminated CONVERGED."""
        return self.status == FitStatus.CONVERGED

    def summary(self) -> dict[str, Any]:
        """Return summary dictionary of the fit."""
        return {
            "status": self.status.value,
            "converged": self.converged,
            "error": self.error,
            "initial_error": self.initial_error,
            "iterations": self.iterations,
            "damping": self.damping,
            "model_failures": self.model_failures,
            "message": self.message,
            "parameters": self.parameters.values(),
        }


class LevenbergMarquardtOptimizer:
    """Fits model parameters to pressure and derivative data."""

    def __init__(self, config: FittingConfig | None = None):
        """Initialize optimizer with configuration.

        Args:
            config: Fitting configuration, uses defaults if None
        """
        self.config = config or FittingConfig()

    def fit(
        self,
        time: np.ndarray,
        pressure: np.ndarray,
        derivative: np.ndarray | None,
        parameters: ParameterSet,
        model: ModelFunction,
        on_iteration: IterationCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> FitResult:
        """Fit the model's free parameters to the observed data.

        Args:
            time: Observed elapsed times (strictly positive, increasing)
            pressure: Observed pressure change
            derivative: Observed Bourdet derivative, or None to compute it
            parameters: Starting parameter set (not modified)
            model: Model function evaluate(params, t) -> (p, dp/dlnt)
            on_iteration: Called after every accepted iteration
            cancel_token: Cooperative cancellation flag

        Returns:
            FitResult in a terminal state

        Raises:
            InsufficientDataError: If fewer than min_points samples are given
            NoFreeParametersError: If no parameter is free
            ValueError: If the data arrays differ in length
        """
        cfg = self.config
        t = np.asarray(time, dtype=float)
        p = np.asarray(pressure, dtype=float)

        if len(t) != len(p):
            raise ValueError(f"time and pressure must have equal length ({len(t)} != {len(p)})")
        required = max(3, cfg.min_points)
        if len(t) < required:
            raise InsufficientDataError(len(t), required)

        if derivative is None:
            d = bourdet_derivative(t, p, cfg.smoothing)
        else:
            d = np.asarray(derivative, dtype=float)

        free_names = parameters.free_names
        if not free_names:
            raise NoFreeParametersError("No free parameters to fit")

        start, moved = parameters.clamped()
        for name in moved:
            logger.warning(
                f"Initial value of '{name}' ({parameters[name].value:g}) outside bounds; "
                f"clamped to {start[name].value:g}"
            )

        evaluator = ResidualEvaluator(
            t, p, d, model,
            derivative_weight=cfg.derivative_weight,
            derivative_scale=cfg.derivative_scale,
            residual_space=cfg.residual_space,  # type: ignore[arg-type]
        )
        estimator = JacobianEstimator(
            evaluator,
            method=cfg.jacobian_method,  # type: ignore[arg-type]
            rel_step=cfg.rel_step,
            abs_step=cfg.abs_step,
            workers=cfg.jacobian_workers,
        )

        residuals = evaluator.residuals(start.values())
        state = FitState(
            parameters=start,
            error=sum_squared_error(residuals),
            damping=cfg.initial_damping,
        )
        initial_error = state.error
        history = [state.error]
        message = ""

        logger.info(
            f"Starting fit: {len(t)} samples, {len(free_names)} free parameter(s), "
            f"initial error {state.error:.6g}"
        )
        state.status = FitStatus.ITERATING

        try:
            while True:
                if cancel_token is not None and cancel_token.is_set():
                    state.status = FitStatus.CANCELLED
                    message = f"Cancelled after {state.iteration} iteration(s)"
                    break
                if state.error == 0.0:
                    state.status = FitStatus.CONVERGED
                    message = "Exact fit (zero error)"
                    break
                if state.iteration >= cfg.max_iterations:
                    state.status = FitStatus.MAX_ITERATIONS
                    message = f"Reached iteration ceiling ({cfg.max_iterations})"
                    break

                jac = estimator.jacobian(state.parameters, residuals, free_names, cancel_token)
                step = self._find_step(state, evaluator, jac, residuals, cancel_token)

                if step is None:
                    if state.stalled_steps > 0 or state.error <= initial_error * NOISE_FLOOR:
                        state.status = FitStatus.CONVERGED
                        message = "No further improvement possible (error at noise floor)"
                    else:
                        state.status = FitStatus.DIVERGED
                        message = (
                            f"No improving step after {cfg.max_retries} retries "
                            f"(damping {state.damping:.3g})"
                        )
                    break

                new_params, new_residuals, new_error = step
                rel_decrease = (state.error - new_error) / state.error
                step_norm = self._relative_step_norm(state.parameters, new_params, free_names)

                state.parameters = new_params
                state.error = new_error
                state.damping = max(state.damping / cfg.damping_decrease, cfg.min_damping)
                state.iteration += 1
                residuals = new_residuals
                history.append(new_error)

                logger.debug(
                    f"Iteration {state.iteration}: error={new_error:.6g}, "
                    f"rel_decrease={rel_decrease:.3g}, step={step_norm:.3g}, "
                    f"damping={state.damping:.3g}"
                )

                if on_iteration is not None:
                    self._emit(on_iteration, state, evaluator)

                if rel_decrease < cfg.error_tolerance or step_norm < cfg.step_tolerance:
                    state.stalled_steps += 1
                else:
                    state.stalled_steps = 0

                if state.stalled_steps >= cfg.convergence_patience:
                    state.status = FitStatus.CONVERGED
                    message = f"Converged after {state.iteration} iteration(s)"
                    break
        except FitCancelled:
            state.status = FitStatus.CANCELLED
            message = f"Cancelled during iteration {state.iteration + 1}"

        logger.info(
            f"Fit finished: {state.status.value}, error {state.error:.6g}, "
            f"{state.iteration} iteration(s)"
        )
        if evaluator.failure_count:
            logger.warning(
                f"{evaluator.failure_count} non-finite model value(s) replaced by the "
                f"penalty residual during the fit"
            )

        p_curve, d_curve = evaluator.model_curves(state.parameters.values())
        return FitResult(
            status=state.status,
            parameters=state.parameters,
            error=state.error,
            initial_error=initial_error,
            iterations=state.iteration,
            damping=state.damping,
            error_history=history,
            time=t,
            pressure_curve=p_curve,
            derivative_curve=d_curve,
            model_failures=evaluator.failure_count,
            message=message,
        )

    def _find_step(
        self,
        state: FitState,
        evaluator: ResidualEvaluator,
        jac: np.ndarray,
        residuals: np.ndarray,
        cancel_token: CancellationToken | None,
    ) -> tuple[ParameterSet, np.ndarray, float] | None:
        """Search for an improving step, raising the damping on rejection.

        Updates state.damping in place.

        Returns:
            Tuple of (parameters, residuals, error) for the accepted step,
            or None when max_retries rejections occurred

        Raises:
            FitCancelled: If cancellation is requested between attempts
        """
        cfg = self.config
        x = state.parameters.free_vector()

        for attempt in range(cfg.max_retries + 1):
            if cancel_token is not None and cancel_token.is_set():
                raise FitCancelled()

            if attempt > 0:
                state.damping = min(state.damping * cfg.damping_increase, cfg.max_damping)

            try:
                delta, pinned = self._bounded_step(state.parameters, jac, residuals, state.damping)
            except SingularSystemError as e:
                logger.debug(f"Singular system at damping {state.damping:.3g}: {e}")
                continue

            candidate = state.parameters.with_free_vector(x + delta)
            if pinned.any() and np.array_equal(candidate.free_vector(), x):
                # Every remaining direction is blocked by a bound
                logger.debug("Step fully blocked by bounds; counting as stalled")
                return state.parameters, residuals, state.error

            new_residuals = evaluator.residuals(candidate.values())
            new_error = sum_squared_error(new_residuals)

            if new_error < state.error:
                return candidate, new_residuals, new_error

            logger.debug(
                f"Rejected step (error {new_error:.6g} >= {state.error:.6g}) "
                f"at damping {state.damping:.3g}"
            )

        return None

    @staticmethod
    def _bounded_step(
        params: ParameterSet,
        jac: np.ndarray,
        residuals: np.ndarray,
        damping: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Solve for a step with bound-blocked parameters held in place.

        A free parameter sitting on a bound whose step points outward is
        removed from the solve (its Jacobian column is zeroed) and the
        remaining parameters are solved again, until no step points out of
        the feasible region.

        Returns:
            Tuple of (step over the free parameters, mask of held parameters)

        Raises:
            SingularSystemError: If a solve fails
        """
        free = [params[name] for name in params.free_names]
        lower = np.array([p.lower_bound for p in free])
        upper = np.array([p.upper_bound for p in free])
        x = np.array([p.value for p in free])

        pinned = np.zeros(len(free), dtype=bool)
        delta = solve_normal_equations(jac, residuals, damping)
        for _ in free:
            blocked = ((x >= upper) & (delta > 0)) | ((x <= lower) & (delta < 0))
            blocked &= ~pinned
            if not blocked.any():
                break
            pinned |= blocked
            reduced = jac.copy()
            reduced[:, pinned] = 0.0
            delta = solve_normal_equations(reduced, residuals, damping)
            delta[pinned] = 0.0
        return delta, pinned

    def _relative_step_norm(
        self,
        old: ParameterSet,
        new: ParameterSet,
        free_names: list[str],
    ) -> float:
        """Weighted norm of the applied step relative to parameter magnitude."""
        total = 0.0
        for name in free_names:
            before = old[name].value
            after = new[name].value
            scale = max(abs(before), self.config.abs_step)
            total += (old[name].weight * (after - before) / scale) ** 2
        return math.sqrt(total)

    def _emit(
        self,
        callback: IterationCallback,
        state: FitState,
        evaluator: ResidualEvaluator,
    ) -> None:
        """Deliver an iteration update; callback failures never stop the fit."""
        p_curve, d_curve = evaluator.model_curves(state.parameters.values())
        update = IterationUpdate(
            iteration=state.iteration,
            error=state.error,
            damping=state.damping,
            parameters=state.parameters.values(),
            time=evaluator.time,
            pressure=p_curve,
            derivative=d_curve,
            progress=min(100, int(100 * state.iteration / max(self.config.max_iterations, 1))),
        )
        try:
            callback(update)
        except Exception:
            logger.exception("Iteration callback raised; continuing fit")
