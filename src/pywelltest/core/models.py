"""Model functions and the model registry.

A model function maps a parameter mapping and an elapsed time to the model
pressure change and its Bourdet derivative:

    evaluate(params, t) -> (p, t * dp/dt)

Model functions must be pure and deterministic. The fitting engine never
looks inside them; it only calls them through a ModelRegistry that the
caller constructs and passes in.

Built-in flow-regime models
---------------------------

These closed-form models describe single flow regimes and their
transitions. They are useful for diagnostics and for exercising the fitting
engine without a full analytical reservoir-model library.

Radial flow (infinite-acting, semilog straight line):

    p(t)  = m * (ln t + s)
    p'(t) = m

Storage to radial transition:

    p(t)  = m * (ln(1 + t/tau) + s)
    p'(t) = m * t / (t + tau)

    Early time (t << tau): p ~ m*t/tau, unit slope on the log-log plot.
    Late time  (t >> tau): p' -> m, the radial-flow stabilization.
    The skin-like offset s shifts pressure only, not the derivative.

Power law (linear flow n=0.5, bilinear flow n=0.25, storage n=1):

    p(t)  = a * t^n
    p'(t) = n * a * t^n

Where:
    m   = Semilog slope (pressure units per ln-cycle)
    s   = Dimensionless pressure offset (skin-like)
    tau = Transition time constant (time units)
    a   = Power-law coefficient
    n   = Power-law exponent (log-log slope)
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
import math
from typing import Protocol

from .parameters import FitParameter, ParameterSet


class ModelFunction(Protocol):
    """Callable evaluating a reservoir model at a single time."""

    def __call__(self, params: Mapping[str, float], t: float) -> tuple[float, float]:
        ...


def radial_flow(params: Mapping[str, float], t: float) -> tuple[float, float]:
    """Infinite-acting radial flow: semilog straight line."""
    m = params["m"]
    s = params.get("s", 0.0)
    return m * (math.log(t) + s), m


def storage_radial(params: Mapping[str, float], t: float) -> tuple[float, float]:
    """Wellbore-storage dominated flow transitioning to radial flow."""
    m = params["m"]
    tau = params["tau"]
    s = params.get("s", 0.0)
    pressure = m * (math.log1p(t / tau) + s)
    derivative = m * t / (t + tau)
    return pressure, derivative


def power_law(params: Mapping[str, float], t: float) -> tuple[float, float]:
    """Single power-law flow regime (linear, bilinear, storage)."""
    a = params["a"]
    n = params["n"]
    pressure = a * t ** n
    return pressure, n * pressure


@dataclass
class ModelSpec:
    """Registry entry for a model function.

    Attributes:
        model_id: Unique model-type identifier
        function: The model function
        default_parameters: Parameter template (values, bounds, free flags)
        description: One-line description for listings
    """
    model_id: str
    function: ModelFunction
    default_parameters: ParameterSet = field(default_factory=ParameterSet)
    description: str = ""

    def parameters(self) -> ParameterSet:
        """Fresh copy of the default parameters."""
        return self.default_parameters.copy()


class ModelRegistry:
    """Explicit registry of model functions keyed by model-type id.

    Registries are ordinary objects: construct one, register models and pass
    it (or a model looked up from it) to the fitting engine.
    """

    def __init__(self) -> None:
        self._models: dict[str, ModelSpec] = {}

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)

    def register(
        self,
        model_id: str,
        function: ModelFunction | Callable[[Mapping[str, float], float], tuple[float, float]],
        default_parameters: ParameterSet | None = None,
        description: str = "",
        replace: bool = False,
    ) -> ModelSpec:
        """Register a model function.

        Args:
            model_id: Unique identifier
            function: Model function
            default_parameters: Parameter template for new analyses
            description: One-line description
            replace: Allow overwriting an existing registration

        Returns:
            The registered ModelSpec

        Raises:
            ValueError: If model_id is already registered and replace is False
        """
        if model_id in self._models and not replace:
            raise ValueError(f"Model '{model_id}' is already registered")
        spec = ModelSpec(
            model_id=model_id,
            function=function,
            default_parameters=default_parameters or ParameterSet(),
            description=description,
        )
        self._models[model_id] = spec
        return spec

    def get(self, model_id: str) -> ModelSpec:
        """Look up a model by id.

        Raises:
            KeyError: If the model is not registered
        """
        try:
            return self._models[model_id]
        except KeyError:
            raise KeyError(
                f"Unknown model '{model_id}'. Available: {', '.join(sorted(self._models)) or 'none'}"
            ) from None

    def model_ids(self) -> list[str]:
        """Registered model ids in registration order."""
        return list(self._models)


def default_registry() -> ModelRegistry:
    """Create a new registry holding the built-in flow-regime models."""
    registry = ModelRegistry()
    registry.register(
        "radial_flow",
        radial_flow,
        ParameterSet([
            FitParameter("m", 10.0, lower=1e-6, upper=1e6),
            FitParameter("s", 0.0, lower=-10.0, upper=100.0),
        ]),
        "Infinite-acting radial flow (semilog straight line)",
    )
    registry.register(
        "storage_radial",
        storage_radial,
        ParameterSet([
            FitParameter("m", 10.0, lower=1e-6, upper=1e6),
            FitParameter("tau", 0.01, lower=1e-8, upper=1e4, central=True),
            FitParameter("s", 0.0, lower=-10.0, upper=100.0),
        ]),
        "Wellbore storage transitioning to radial flow",
    )
    registry.register(
        "power_law",
        power_law,
        ParameterSet([
            FitParameter("a", 1.0, lower=1e-9, upper=1e9),
            FitParameter("n", 0.5, lower=0.0, upper=1.5),
        ]),
        "Single power-law flow regime (linear n=0.5, bilinear n=0.25)",
    )
    return registry
