"""Validation of fit inputs.

Usage:
    from pywelltest.validation import InputValidator

    validator = InputValidator(min_points=3)
    result = validator.validate_samples(data.time, data.pressure, data.derivative)
    result = result.merge(validator.validate_parameters(params))
    if not result.is_valid:
        print(result)
"""

from .result import (
    IssueSeverity,
    IssueCategory,
    ValidationIssue,
    ValidationResult,
)
from .input_validator import InputValidator

__all__ = [
    "IssueSeverity",
    "IssueCategory",
    "ValidationIssue",
    "ValidationResult",
    "InputValidator",
]
