"""Input validation for sample series and parameter sets.

Validates the cleaned observed data and the starting parameters before a
fit is requested.
"""

import numpy as np

from ..core.parameters import ParameterSet
from .result import ValidationIssue, ValidationResult


class InputValidator:
    """Validates fit inputs.

    Error codes:
        SD001: Fewer valid samples than required
        SD002: Time not strictly increasing
        SD003: Non-finite values
        SD004: Negative pressure change
        SD005: Channel length mismatch
        PS001: Starting value outside bounds
        PS002: No free parameters
        PS003: Free parameter with equal bounds
    """

    def __init__(self, min_points: int = 3):
        """Initialize input validator.

        Args:
            min_points: Minimum number of valid samples
        """
        self.min_points = min_points

    def validate_samples(
        self,
        time: np.ndarray,
        pressure: np.ndarray,
        derivative: np.ndarray | None = None,
        source: str | None = None,
    ) -> ValidationResult:
        """Validate an observed sample series.

        Args:
            time: Elapsed times
            pressure: Pressure change
            derivative: Optional derivative channel
            source: Label for the result

        Returns:
            ValidationResult with any issues found
        """
        result = ValidationResult(source=source)
        t = np.asarray(time, dtype=float)
        p = np.asarray(pressure, dtype=float)
        d = None if derivative is None else np.asarray(derivative, dtype=float)

        n_d = len(d) if d is not None else len(t)
        if len(t) != len(p) or n_d != len(t):
            result.add_issue(ValidationIssue.length_mismatch(len(t), len(p), n_d))
            return result

        channels = [("time", t), ("pressure", p)]
        if d is not None:
            channels.append(("derivative", d))
        finite = np.ones(len(t), dtype=bool)
        for channel, values in channels:
            bad = np.flatnonzero(~np.isfinite(values))
            if len(bad):
                result.add_issue(ValidationIssue.non_finite_values(channel, len(bad), bad.tolist()))
                finite[bad] = False

        n_valid = int(np.sum(finite & (t > 0)))
        if n_valid < self.min_points:
            result.add_issue(ValidationIssue.insufficient_samples(n_valid, self.min_points))

        if len(t) > 1:
            with np.errstate(invalid="ignore"):
                steps = np.diff(t)
            non_increasing = np.flatnonzero(~(steps > 0)) + 1
            if len(non_increasing):
                result.add_issue(
                    ValidationIssue.non_increasing_time(len(non_increasing), non_increasing.tolist())
                )

        negative = np.flatnonzero(p < 0)
        if len(negative):
            result.add_issue(ValidationIssue.negative_pressure(len(negative), negative.tolist()))

        return result

    def validate_parameters(self, parameters: ParameterSet) -> ValidationResult:
        """Validate a starting parameter set.

        Args:
            parameters: Parameter set to check

        Returns:
            ValidationResult with any issues found
        """
        result = ValidationResult()

        if not parameters.free_names:
            result.add_issue(ValidationIssue.no_free_parameters())

        for param in parameters:
            if not param.in_bounds():
                result.add_issue(
                    ValidationIssue.out_of_bounds(param.name, param.value, param.lower, param.upper)
                )
            if param.fit and param.lower is not None and param.lower == param.upper:
                result.add_issue(ValidationIssue.fixed_range(param.name, param.lower))

        return result
