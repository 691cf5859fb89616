"""Core well-test curve-fitting engine."""

from .derivative import bourdet_derivative
from .parameters import FitParameter, ParameterSet
from .models import ModelRegistry, ModelSpec, default_registry
from .residuals import ResidualEvaluator, sum_squared_error
from .jacobian import JacobianEstimator
from .solver import solve_normal_equations
from .optimizer import (
    CancellationToken,
    FitResult,
    FitState,
    FitStatus,
    FittingConfig,
    IterationUpdate,
    LevenbergMarquardtOptimizer,
)
from .runner import FitTask
from .selection import evaluate_fit_quality

__all__ = [
    "bourdet_derivative",
    "FitParameter",
    "ParameterSet",
    "ModelRegistry",
    "ModelSpec",
    "default_registry",
    "ResidualEvaluator",
    "sum_squared_error",
    "JacobianEstimator",
    "solve_normal_equations",
    "CancellationToken",
    "FitResult",
    "FitState",
    "FitStatus",
    "FittingConfig",
    "IterationUpdate",
    "LevenbergMarquardtOptimizer",
    "FitTask",
    "evaluate_fit_quality",
]
