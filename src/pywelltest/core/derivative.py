"""Bourdet logarithmic derivative of pressure-transient data.

The Bourdet derivative is the diagnostic curve of pressure-transient
analysis:

    p'(t) = dp / d(ln t) = t * dp/dt

It is computed from unevenly spaced, noisy samples by differencing in
ln-time against neighbours that are at least ``L`` apart, which suppresses
the noise amplification of adjacent-point differences.

For each point i:

    j-  = closest earlier point with ln t[i] - ln t[j-] >= L
    j+  = closest later point   with ln t[j+] - ln t[i] >= L

    d-  = (p[i] - p[j-]) / D-          D- = ln t[i] - ln t[j-]
    d+  = (p[j+] - p[i]) / D+          D+ = ln t[j+] - ln t[i]

    p'[i] = d- * D+ / (D- + D+)  +  d+ * D- / (D- + D+)

When no point is far enough away on one side the outermost point on that
side is used. The first and last samples have a neighbour on one side only
and receive that one-sided slope.

Reference checks:
    p = m * ln(t)  ->  p' = m
    p = t^n        ->  p' = n * p

References:
    Bourdet, D., Ayoub, J.A., Pirard, Y.M. (1989). "Use of Pressure
    Derivative in Well-Test Interpretation". SPE Formation Evaluation, 4(2).
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

# Smoothing window in natural-log units of time
DEFAULT_SMOOTHING = 0.15

# Minimum number of samples for a meaningful derivative
MIN_DERIVATIVE_POINTS = 3

# ln-time spans below this are treated as duplicate times
_MIN_LN_SPAN = 1e-12


def _left_neighbor(ln_t: np.ndarray, i: int, smoothing: float) -> int:
    """Index of the closest earlier point at least ``smoothing`` away."""
    j = i - 1
    while j > 0 and ln_t[i] - ln_t[j] < smoothing:
        j -= 1
    return j


def _right_neighbor(ln_t: np.ndarray, i: int, smoothing: float) -> int:
    """Index of the closest later point at least ``smoothing`` away."""
    last = len(ln_t) - 1
    j = i + 1
    while j < last and ln_t[j] - ln_t[i] < smoothing:
        j += 1
    return j


def bourdet_derivative(
    time: np.ndarray,
    pressure: np.ndarray,
    smoothing: float = DEFAULT_SMOOTHING,
) -> np.ndarray:
    """Compute the Bourdet derivative dp/d(ln t).

    Args:
        time: Elapsed times, strictly positive and increasing
        pressure: Pressure change at each time
        smoothing: Minimum ln-time distance to the differencing neighbours
            (0 uses adjacent points)

    Returns:
        Derivative array with the same length as the input. An all-zero
        array is returned when fewer than 3 samples are supplied.

    Raises:
        ValueError: If time and pressure lengths differ or smoothing < 0
    """
    t = np.asarray(time, dtype=float)
    p = np.asarray(pressure, dtype=float)

    if t.shape != p.shape:
        raise ValueError(
            f"time and pressure must have equal length ({len(t)} != {len(p)})"
        )
    if smoothing < 0:
        raise ValueError(f"smoothing ({smoothing}) must be non-negative")

    n = len(t)
    derivative = np.zeros(n, dtype=float)
    if n < MIN_DERIVATIVE_POINTS:
        logger.debug(f"Bourdet derivative skipped: only {n} samples")
        return derivative

    with np.errstate(divide="ignore", invalid="ignore"):
        ln_t = np.log(t)

    for i in range(n):
        if i == 0:
            j = _right_neighbor(ln_t, i, smoothing)
            span = ln_t[j] - ln_t[i]
            derivative[i] = (p[j] - p[i]) / span if span > _MIN_LN_SPAN else 0.0
            continue

        if i == n - 1:
            j = _left_neighbor(ln_t, i, smoothing)
            span = ln_t[i] - ln_t[j]
            derivative[i] = (p[i] - p[j]) / span if span > _MIN_LN_SPAN else 0.0
            continue

        jl = _left_neighbor(ln_t, i, smoothing)
        jr = _right_neighbor(ln_t, i, smoothing)
        d_left = ln_t[i] - ln_t[jl]
        d_right = ln_t[jr] - ln_t[i]

        if d_left < _MIN_LN_SPAN or d_right < _MIN_LN_SPAN:
            derivative[i] = 0.0
            continue

        slope_left = (p[i] - p[jl]) / d_left
        slope_right = (p[jr] - p[i]) / d_right
        total = d_left + d_right
        derivative[i] = slope_left * d_right / total + slope_right * d_left / total

    # Non-finite inputs must not leak into the derivative channel
    bad = ~np.isfinite(derivative)
    if np.any(bad):
        logger.warning(f"Bourdet derivative: {int(bad.sum())} non-finite values set to 0")
        derivative[bad] = 0.0

    return derivative
