"""Tests for input validation."""

import numpy as np
import pytest

from pywelltest.core.parameters import FitParameter, ParameterSet
from pywelltest.validation import (
    InputValidator,
    IssueCategory,
    IssueSeverity,
    ValidationIssue,
    ValidationResult,
)


@pytest.fixture
def validator():
    return InputValidator(min_points=3)


@pytest.fixture
def clean_series():
    t = np.logspace(-2, 1, 10)
    p = 10.0 * np.log1p(t)
    d = 10.0 * t / (1.0 + t)
    return t, p, d


class TestValidationIssue:
    """Tests for ValidationIssue factories."""

    def test_str_format(self):
        issue = ValidationIssue.insufficient_samples(2, 3)
        assert str(issue) == "[SD001] ERROR: Only 2 valid samples, need at least 3"

    def test_categories(self):
        assert ValidationIssue.negative_pressure(1, [0]).category == IssueCategory.SAMPLE_DATA
        assert ValidationIssue.no_free_parameters().category == IssueCategory.PARAMETERS

    def test_indices_truncated(self):
        issue = ValidationIssue.non_increasing_time(50, list(range(50)))
        assert len(issue.details["indices"]) == 10


class TestValidationResult:
    """Tests for ValidationResult."""

    def test_empty_result(self):
        result = ValidationResult(source="well.txt")
        assert result.is_valid
        assert not result.has_warnings
        assert str(result) == "Validation OK for well.txt"

    def test_counts(self):
        result = ValidationResult()
        result.add_issue(ValidationIssue.insufficient_samples(1, 3))
        result.add_issue(ValidationIssue.negative_pressure(2, [0, 1]))

        assert result.error_count == 1
        assert result.warning_count == 1
        assert not result.is_valid
        assert "1 errors, 1 warnings" in str(result)

    def test_merge(self):
        first = ValidationResult(source="a")
        first.add_issue(ValidationIssue.no_free_parameters())
        second = ValidationResult()
        second.add_issue(ValidationIssue.fixed_range("m", 1.0))

        merged = first.merge(second)

        assert [i.code for i in merged.issues] == ["PS002", "PS003"]
        assert merged.source == "a"

    def test_by_code(self):
        result = ValidationResult()
        result.add_issue(ValidationIssue.out_of_bounds("m", 5.0, 0.0, 1.0))
        result.add_issue(ValidationIssue.out_of_bounds("s", 5.0, 0.0, 1.0))

        assert len(result.by_code("PS001")) == 2
        assert result.by_code("PS002") == []


class TestSampleValidation:
    """Tests for InputValidator.validate_samples."""

    def test_clean_series(self, validator, clean_series):
        result = validator.validate_samples(*clean_series)
        assert result.issues == []

    def test_too_few_samples(self, validator):
        t = np.array([1.0, 2.0])
        result = validator.validate_samples(t, t)

        assert result.by_code("SD001")
        assert not result.is_valid

    def test_non_positive_time_not_counted(self, validator):
        t = np.array([-1.0, 0.0, 1.0, 2.0])
        result = validator.validate_samples(t, np.ones(4))

        assert result.by_code("SD001")[0].details["count"] == 2

    def test_non_increasing_time(self, validator, clean_series):
        t, p, d = clean_series
        t = t.copy()
        t[5] = t[4]

        result = validator.validate_samples(t, p, d)

        issue = result.by_code("SD002")[0]
        assert issue.severity == IssueSeverity.ERROR
        assert issue.details["indices"] == [5]

    def test_non_finite_values(self, validator, clean_series):
        t, p, d = clean_series
        p = p.copy()
        d = d.copy()
        p[2] = np.nan
        d[7] = np.inf

        result = validator.validate_samples(t, p, d)

        channels = {i.details["channel"] for i in result.by_code("SD003")}
        assert channels == {"pressure", "derivative"}

    def test_negative_pressure_is_warning(self, validator, clean_series):
        t, p, d = clean_series
        p = p - 1.0

        result = validator.validate_samples(t, p, d)

        assert result.by_code("SD004")
        assert result.is_valid

    def test_length_mismatch(self, validator):
        result = validator.validate_samples(np.ones(4), np.ones(4), np.ones(3))

        assert [i.code for i in result.issues] == ["SD005"]

    def test_source_label(self, validator, clean_series):
        result = validator.validate_samples(*clean_series, source="buildup.txt")
        assert result.source == "buildup.txt"


class TestParameterValidation:
    """Tests for InputValidator.validate_parameters."""

    def test_valid_parameters(self, validator):
        params = ParameterSet([FitParameter("m", 10.0, lower=1.0, upper=100.0)])
        assert validator.validate_parameters(params).issues == []

    def test_out_of_bounds(self, validator):
        params = ParameterSet([FitParameter("m", 500.0, lower=1.0, upper=100.0)])

        result = validator.validate_parameters(params)

        issue = result.by_code("PS001")[0]
        assert issue.severity == IssueSeverity.WARNING
        assert issue.details["name"] == "m"

    def test_no_free_parameters(self, validator):
        params = ParameterSet([FitParameter("m", 10.0, fit=False)])

        result = validator.validate_parameters(params)

        assert result.by_code("PS002")
        assert not result.is_valid

    def test_equal_bounds_on_free_parameter(self, validator):
        params = ParameterSet([
            FitParameter("m", 10.0, lower=10.0, upper=10.0),
            FitParameter("s", 0.0),
        ])

        result = validator.validate_parameters(params)

        assert result.by_code("PS003")
        assert result.is_valid

    def test_equal_bounds_on_fixed_parameter_ignored(self, validator):
        params = ParameterSet([
            FitParameter("m", 10.0, fit=False, lower=10.0, upper=10.0),
            FitParameter("s", 0.0),
        ])

        assert validator.validate_parameters(params).issues == []
