"""Validation issue and result types.

Each check reports a coded ValidationIssue (SDxxx for sample data, PSxxx
for parameters) with a severity and a suggested fix; a ValidationResult
collects the issues for one record or parameter set.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class IssueSeverity(Enum):
    """How serious an issue is."""
    ERROR = auto()    # fit is refused
    WARNING = auto()  # input is clamped or suspect
    INFO = auto()


class IssueCategory(Enum):
    """What part of the input an issue refers to."""
    SAMPLE_DATA = auto()  # Observed time/pressure/derivative series
    PARAMETERS = auto()   # Parameter set values, flags and bounds


@dataclass
class ValidationIssue:
    """One finding from an input check.

    Attributes:
        code: Unique identifier (e.g., "SD001", "PS002")
        category: Sample data or parameters
        severity: ERROR refuses the fit, WARNING does not
        message: What was found
        guidance: How to fix the input
        details: Offending indices, values or bounds
    """
    code: str
    category: IssueCategory
    severity: IssueSeverity
    message: str
    guidance: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.code}] {self.severity.name}: {self.message}"

    # Factories, one per issue code

    @staticmethod
    def insufficient_samples(count: int, required: int) -> "ValidationIssue":
        """Create SD001: Too few valid samples."""
        return ValidationIssue(
            code="SD001",
            category=IssueCategory.SAMPLE_DATA,
            severity=IssueSeverity.ERROR,
            message=f"Only {count} valid samples, need at least {required}",
            guidance="Check column mapping and skipped rows; rows with non-positive time are dropped",
            details={"count": count, "required": required},
        )

    @staticmethod
    def non_increasing_time(count: int, indices: list) -> "ValidationIssue":
        """Create SD002: Time does not strictly increase."""
        return ValidationIssue(
            code="SD002",
            category=IssueCategory.SAMPLE_DATA,
            severity=IssueSeverity.ERROR,
            message=f"Time does not strictly increase at {count} sample(s)",
            guidance="Sort the data by time and remove duplicate time stamps",
            details={"count": count, "indices": indices[:10]},
        )

    @staticmethod
    def non_finite_values(channel: str, count: int, indices: list) -> "ValidationIssue":
        """Create SD003: NaN or infinite values."""
        return ValidationIssue(
            code="SD003",
            category=IssueCategory.SAMPLE_DATA,
            severity=IssueSeverity.ERROR,
            message=f"Found {count} non-finite {channel} value(s)",
            guidance="Remove or repair malformed rows before fitting",
            details={"channel": channel, "count": count, "indices": indices[:10]},
        )

    @staticmethod
    def negative_pressure(count: int, indices: list) -> "ValidationIssue":
        """Create SD004: Negative pressure change."""
        return ValidationIssue(
            code="SD004",
            category=IssueCategory.SAMPLE_DATA,
            severity=IssueSeverity.WARNING,
            message=f"Found {count} negative pressure change value(s)",
            guidance="Pressure change should be a magnitude; use raw mode to compute |P - Pi|",
            details={"count": count, "indices": indices[:10]},
        )

    @staticmethod
    def length_mismatch(n_time: int, n_pressure: int, n_derivative: int) -> "ValidationIssue":
        """Create SD005: Channels differ in length."""
        return ValidationIssue(
            code="SD005",
            category=IssueCategory.SAMPLE_DATA,
            severity=IssueSeverity.ERROR,
            message=f"Channel lengths differ (time {n_time}, pressure {n_pressure}, derivative {n_derivative})",
            guidance="Time, pressure and derivative must have one value per sample",
            details={"time": n_time, "pressure": n_pressure, "derivative": n_derivative},
        )

    @staticmethod
    def out_of_bounds(name: str, value: float, lower: float | None, upper: float | None) -> "ValidationIssue":
        """Create PS001: Starting value outside bounds (will be clamped)."""
        return ValidationIssue(
            code="PS001",
            category=IssueCategory.PARAMETERS,
            severity=IssueSeverity.WARNING,
            message=f"Parameter '{name}' value {value:g} is outside [{lower}, {upper}]",
            guidance="The value will be clamped to the nearest bound before fitting",
            details={"name": name, "value": value, "lower": lower, "upper": upper},
        )

    @staticmethod
    def no_free_parameters() -> "ValidationIssue":
        """Create PS002: Nothing to fit."""
        return ValidationIssue(
            code="PS002",
            category=IssueCategory.PARAMETERS,
            severity=IssueSeverity.ERROR,
            message="No free parameters",
            guidance="Mark at least one parameter with fit: true",
        )

    @staticmethod
    def fixed_range(name: str, value: float) -> "ValidationIssue":
        """Create PS003: Free parameter with equal bounds."""
        return ValidationIssue(
            code="PS003",
            category=IssueCategory.PARAMETERS,
            severity=IssueSeverity.WARNING,
            message=f"Free parameter '{name}' has equal lower and upper bounds ({value:g})",
            guidance="Widen the bounds or mark the parameter as fixed",
            details={"name": name, "value": value},
        )


@dataclass
class ValidationResult:
    """Issues found while checking one record or parameter set.

    Attributes:
        issues: Issues in the order they were found
        source: Label of what was validated (file name, analysis name)
    """
    issues: list[ValidationIssue] = field(default_factory=list)
    source: str | None = None

    def _count(self, severity: IssueSeverity) -> int:
        return sum(1 for issue in self.issues if issue.severity is severity)

    @property
    def error_count(self) -> int:
        return self._count(IssueSeverity.ERROR)

    @property
    def warning_count(self) -> int:
        return self._count(IssueSeverity.WARNING)

    @property
    def has_errors(self) -> bool:
        """True when a fit should be refused."""
        return self.error_count > 0

    @property
    def has_warnings(self) -> bool:
        return self.warning_count > 0

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    def add_issue(self, issue: ValidationIssue) -> None:
        self.issues.append(issue)

    def by_code(self, code: str) -> list[ValidationIssue]:
        """Issues with the given code, e.g. "SD002"."""
        return [issue for issue in self.issues if issue.code == code]

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Combine two results, keeping this result's source label.

        Neither input is modified.
        """
        return ValidationResult(
            issues=[*self.issues, *other.issues],
            source=self.source or other.source,
        )

    def __str__(self) -> str:
        label = self.source or "data"
        if not self.issues:
            return f"Validation OK for {label}"

        header = f"Validation for {label}: {self.error_count} errors, {self.warning_count} warnings"
        return "\n".join([header, *(f"  {issue}" for issue in self.issues)])
