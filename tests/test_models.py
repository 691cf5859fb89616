"""Tests for model functions and the model registry."""

import math

import pytest

from pywelltest.core.models import (
    ModelRegistry,
    default_registry,
    power_law,
    radial_flow,
    storage_radial,
)
from pywelltest.core.parameters import FitParameter, ParameterSet


class TestModelFunctions:
    """Tests for the built-in flow-regime models."""

    def test_radial_flow(self):
        """Semilog line: p = m (ln t + s), p' = m."""
        p, d = radial_flow({"m": 10.0, "s": 2.0}, math.e)

        assert p == pytest.approx(30.0)
        assert d == 10.0

    def test_radial_flow_default_skin(self):
        """s defaults to zero."""
        p, _ = radial_flow({"m": 4.0}, 1.0)
        assert p == 0.0

    def test_storage_radial_early_time_unit_slope(self):
        """For t << tau the derivative equals the pressure (unit slope)."""
        params = {"m": 10.0, "tau": 1.0, "s": 0.0}
        p, d = storage_radial(params, 1e-4)

        assert d == pytest.approx(p, rel=1e-3)

    def test_storage_radial_late_time_stabilizes(self):
        """For t >> tau the derivative approaches m."""
        _, d = storage_radial({"m": 10.0, "tau": 0.01, "s": 1.0}, 1e4)

        assert d == pytest.approx(10.0, rel=1e-5)

    def test_power_law(self):
        """p = a t^n, p' = n p."""
        p, d = power_law({"a": 2.0, "n": 0.5}, 4.0)

        assert p == pytest.approx(4.0)
        assert d == pytest.approx(2.0)

    def test_models_are_deterministic(self):
        """Same inputs give the same outputs."""
        params = {"m": 3.0, "tau": 0.2, "s": 1.5}
        assert storage_radial(params, 0.7) == storage_radial(params, 0.7)


class TestModelRegistry:
    """Tests for ModelRegistry."""

    def test_register_and_get(self):
        """Registered models can be looked up by id."""
        registry = ModelRegistry()
        registry.register("line", radial_flow, description="line")

        spec = registry.get("line")

        assert spec.function is radial_flow
        assert "line" in registry
        assert len(registry) == 1

    def test_duplicate_registration_rejected(self):
        """Registering an id twice requires replace=True."""
        registry = ModelRegistry()
        registry.register("line", radial_flow)

        with pytest.raises(ValueError, match="already registered"):
            registry.register("line", power_law)

        registry.register("line", power_law, replace=True)
        assert registry.get("line").function is power_law

    def test_unknown_model(self):
        """Unknown ids raise KeyError listing what is available."""
        registry = default_registry()

        with pytest.raises(KeyError, match="radial_flow"):
            registry.get("dual_porosity")

    def test_registries_are_independent(self):
        """Each default_registry() call builds a fresh registry."""
        first = default_registry()
        second = default_registry()
        first.register("extra", radial_flow)

        assert "extra" in first
        assert "extra" not in second

    def test_default_models(self):
        """Built-in models are registered in order."""
        assert default_registry().model_ids() == ["radial_flow", "storage_radial", "power_law"]

    def test_default_parameters_are_copied(self):
        """ModelSpec.parameters() returns a fresh copy each time."""
        spec = default_registry().get("storage_radial")

        params = spec.parameters()
        params["m"].value = 123.0

        assert spec.parameters()["m"].value != 123.0

    def test_default_parameters_match_function(self):
        """Default parameters evaluate without error and within bounds."""
        registry = default_registry()
        for model_id in registry.model_ids():
            spec = registry.get(model_id)
            params = spec.parameters()
            p, d = spec.function(params.values(), 1.0)
            assert math.isfinite(p) and math.isfinite(d)
            assert all(param.in_bounds() for param in params)

    def test_custom_default_parameters(self):
        """Registered default parameters are kept."""
        registry = ModelRegistry()
        defaults = ParameterSet([FitParameter("a", 1.0), FitParameter("n", 0.25)])
        registry.register("bilinear", power_law, defaults)

        assert registry.get("bilinear").parameters()["n"].value == 0.25
