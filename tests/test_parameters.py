"""Tests for FitParameter and ParameterSet."""

import math

import numpy as np
import pytest

from pywelltest.core.parameters import FitParameter, ParameterSet


class TestFitParameter:
    """Tests for a single parameter."""

    def test_defaults(self):
        """A bare parameter is free, unbounded and unweighted."""
        param = FitParameter("m", 10)

        assert param.value == 10.0
        assert param.fit is True
        assert param.lower_bound == -math.inf
        assert param.upper_bound == math.inf
        assert param.weight == 1.0
        assert param.central is False

    def test_inverted_bounds_rejected(self):
        """Lower bound above upper bound is an error."""
        with pytest.raises(ValueError, match="exceeds"):
            FitParameter("k", 1.0, lower=5.0, upper=1.0)

    def test_clamp(self):
        """Values are clamped into [lower, upper]."""
        param = FitParameter("k", 1.0, lower=0.0, upper=2.0)

        assert param.clamp(-1.0) == 0.0
        assert param.clamp(3.0) == 2.0
        assert param.clamp(1.5) == 1.5

    def test_in_bounds_and_at_bound(self):
        """Bounds are inclusive."""
        param = FitParameter("k", 2.0, lower=0.0, upper=2.0)

        assert param.in_bounds()
        assert param.at_bound()
        assert not param.in_bounds(2.5)

    def test_round_trip(self):
        """to_dict/from_dict preserve every field."""
        param = FitParameter("tau", 0.05, fit=False, lower=1e-4, upper=10.0,
                             weight=2.0, central=True, unit="hr")

        restored = FitParameter.from_dict("tau", param.to_dict())

        assert restored == param

    def test_bare_number_is_free_unbounded(self):
        """A plain number in a parameter file is shorthand for a free value."""
        param = FitParameter.from_dict("m", 12.5)

        assert param.value == 12.5
        assert param.fit is True
        assert param.lower is None

    def test_missing_value_rejected(self):
        """A mapping without a value is invalid."""
        with pytest.raises(ValueError, match="value"):
            FitParameter.from_dict("m", {"fit": True})


class TestParameterSet:
    """Tests for ParameterSet."""

    @pytest.fixture
    def params(self):
        return ParameterSet([
            FitParameter("m", 10.0, lower=1.0, upper=100.0),
            FitParameter("tau", 0.01, lower=1e-4, upper=1.0),
            FitParameter("s", 2.0, fit=False),
        ])

    def test_duplicate_names_rejected(self):
        """Parameter names are unique."""
        with pytest.raises(ValueError, match="Duplicate"):
            ParameterSet([FitParameter("m", 1.0), FitParameter("m", 2.0)])

    def test_names_keep_order(self, params):
        """Names come back in insertion order."""
        assert params.names == ["m", "tau", "s"]
        assert params.free_names == ["m", "tau"]

    def test_values_include_fixed(self, params):
        """The model input holds every parameter, free or fixed."""
        assert params.values() == {"m": 10.0, "tau": 0.01, "s": 2.0}

    def test_free_vector(self, params):
        """Free vector holds only free parameters."""
        np.testing.assert_array_equal(params.free_vector(), [10.0, 0.01])

    def test_with_free_vector_clamps(self, params):
        """Values outside the bounds are clamped when applied."""
        updated = params.with_free_vector(np.array([500.0, -1.0]))

        assert updated["m"].value == 100.0
        assert updated["tau"].value == 1e-4
        assert updated["s"].value == 2.0

    def test_with_values_does_not_mutate(self, params):
        """Updates return a new set."""
        updated = params.with_values({"m": 20.0})

        assert updated["m"].value == 20.0
        assert params["m"].value == 10.0

    def test_with_values_unknown_name(self, params):
        """Unknown names raise KeyError."""
        with pytest.raises(KeyError):
            params.with_values({"k": 1.0})

    def test_clamped_reports_moved(self):
        """clamped() returns the names whose values moved."""
        params = ParameterSet([
            FitParameter("a", 5.0, lower=0.0, upper=1.0),
            FitParameter("b", 0.5, lower=0.0, upper=1.0),
        ])

        clamped, moved = params.clamped()

        assert moved == ["a"]
        assert clamped["a"].value == 1.0
        assert params["a"].value == 5.0

    def test_copy_is_independent(self, params):
        """Copies do not share FitParameter instances."""
        copy = params.copy()
        copy["m"].value = 99.0

        assert params["m"].value == 10.0
        assert copy != params

    def test_round_trip(self, params):
        """to_dict/from_dict reproduce an equal set."""
        assert ParameterSet.from_dict(params.to_dict()) == params

    def test_from_values(self):
        """Convenience constructor with fixed names and bounds."""
        params = ParameterSet.from_values(
            {"a": 1.0, "n": 0.5},
            fixed={"n"},
            bounds={"a": (0.0, 10.0)},
        )

        assert params.free_names == ["a"]
        assert params["a"].upper == 10.0
        assert params["n"].lower is None

    def test_container_protocol(self, params):
        """len, iteration and membership."""
        assert len(params) == 3
        assert "tau" in params
        assert "k" not in params
        assert [p.name for p in params] == ["m", "tau", "s"]
