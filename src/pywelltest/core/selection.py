"""Fit quality evaluation."""

import numpy as np

from .optimizer import FitResult, FitStatus


# Default grading thresholds on pressure-channel R² (can be overridden)
DEFAULT_GRADE_THRESHOLDS = {
    "A": 0.99,
    "B": 0.95,
    "C": 0.90,
    "D": 0.75,
}


def _r_squared(observed: np.ndarray, predicted: np.ndarray) -> float:
    """Coefficient of determination, NaN-safe."""
    mask = np.isfinite(observed) & np.isfinite(predicted)
    if np.sum(mask) < 2:
        return 0.0
    obs = observed[mask]
    ss_res = float(np.sum((obs - predicted[mask]) ** 2))
    ss_tot = float(np.sum((obs - np.mean(obs)) ** 2))
    if ss_tot == 0.0:
        return 1.0 if ss_res == 0.0 else 0.0
    return 1.0 - ss_res / ss_tot


def _rmse(observed: np.ndarray, predicted: np.ndarray) -> float:
    """Root mean squared error over finite pairs."""
    mask = np.isfinite(observed) & np.isfinite(predicted)
    if not np.any(mask):
        return float("nan")
    return float(np.sqrt(np.mean((observed[mask] - predicted[mask]) ** 2)))


def evaluate_fit_quality(
    result: FitResult,
    pressure: np.ndarray,
    derivative: np.ndarray,
    grade_thresholds: dict | None = None,
) -> dict:
    """Evaluate the quality of a well-test match.

    Args:
        result: FitResult from the optimizer
        pressure: Observed pressure change
        derivative: Observed Bourdet derivative
        grade_thresholds: Optional dict with grade thresholds {"A": 0.99, ...}

    Returns:
        Dictionary with quality assessment and warnings
    """
    thresholds = grade_thresholds or DEFAULT_GRADE_THRESHOLDS
    p_obs = np.asarray(pressure, dtype=float)
    d_obs = np.asarray(derivative, dtype=float)
    p_model = result.pressure_curve if result.pressure_curve is not None else np.full_like(p_obs, np.nan)
    d_model = result.derivative_curve if result.derivative_curve is not None else np.full_like(d_obs, np.nan)

    r2_pressure = _r_squared(p_obs, p_model)
    r2_derivative = _r_squared(d_obs, d_model)

    assessment = {
        "status": result.status.value,
        "r_squared_pressure": r2_pressure,
        "r_squared_derivative": r2_derivative,
        "rmse_pressure": _rmse(p_obs, p_model),
        "rmse_derivative": _rmse(d_obs, d_model),
        "quality_grade": _grade_fit(r2_pressure, thresholds),
        "warnings": [],
    }

    if result.status != FitStatus.CONVERGED:
        assessment["warnings"].append(
            f"Fit did not converge ({result.status.value}): parameters are the best seen so far"
        )

    at_bounds = [p.name for p in result.parameters if p.fit and p.at_bound()]
    if at_bounds:
        assessment["warnings"].append(
            f"Parameter(s) at bounds: {', '.join(at_bounds)}. Consider widening the bounds"
        )

    if result.model_failures:
        assessment["warnings"].append(
            f"{result.model_failures} model evaluation(s) returned non-finite values"
        )

    if r2_derivative < thresholds.get("D", 0.75) and np.any(d_obs != 0):
        assessment["warnings"].append(
            f"Poor derivative match (R² = {r2_derivative:.3f}): check the flow-regime model"
        )

    if len(p_obs) < 10:
        assessment["warnings"].append(
            f"Limited data ({len(p_obs)} samples): parameter uncertainty is high"
        )

    return assessment


def _grade_fit(r_squared: float, thresholds: dict | None = None) -> str:
    """Assign letter grade based on R² value.

    Args:
        r_squared: Coefficient of determination
        thresholds: Optional dict with grade thresholds

    Returns:
        Letter grade (A, B, C, D, F)
    """
    thresholds = thresholds or DEFAULT_GRADE_THRESHOLDS
    if r_squared >= thresholds.get("A", 0.99):
        return "A"
    elif r_squared >= thresholds.get("B", 0.95):
        return "B"
    elif r_squared >= thresholds.get("C", 0.90):
        return "C"
    elif r_squared >= thresholds.get("D", 0.75):
        return "D"
    else:
        return "F"
