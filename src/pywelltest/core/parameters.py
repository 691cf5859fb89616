"""Fit parameters and parameter sets.

A ParameterSet is an ordered mapping of unique parameter name to
FitParameter. Only parameters with ``fit=True`` are varied by the
optimizer; the rest are passed to the model function unchanged.

Serialized shape (used by analysis-state files and CLI parameter files):

    {
        "m":   {"value": 10.0, "fit": true, "lower": 0.1, "upper": 1000.0},
        "tau": {"value": 0.05, "fit": true, "lower": 1e-4, "upper": 10.0,
                "central": true},
        "s":   {"value": 2.0, "fit": false}
    }

A bare number is accepted as shorthand for a free, unbounded parameter.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
import math
from typing import Any

import numpy as np


@dataclass
class FitParameter:
    """A single model parameter.

    Attributes:
        name: Unique parameter name (key passed to the model function)
        value: Current value
        fit: True if the optimizer may vary this parameter
        lower: Optional lower bound (inclusive)
        upper: Optional upper bound (inclusive)
        weight: Factor applied to this parameter's relative step in the
            step-size convergence test (default 1.0)
        central: Use central differences for this parameter's Jacobian column
        unit: Optional unit label, carried for display only
    """
    name: str
    value: float
    fit: bool = True
    lower: float | None = None
    upper: float | None = None
    weight: float = 1.0
    central: bool = False
    unit: str | None = None

    def __post_init__(self) -> None:
        self.value = float(self.value)
        if self.lower is not None:
            self.lower = float(self.lower)
        if self.upper is not None:
            self.upper = float(self.upper)
        if self.lower is not None and self.upper is not None and self.lower > self.upper:
            raise ValueError(
                f"Parameter '{self.name}': lower bound ({self.lower}) exceeds "
                f"upper bound ({self.upper})"
            )

    @property
    def lower_bound(self) -> float:
        """Lower bound, -inf when unbounded."""
        return -math.inf if self.lower is None else self.lower

    @property
    def upper_bound(self) -> float:
        """Upper bound, +inf when unbounded."""
        return math.inf if self.upper is None else self.upper

    def clamp(self, value: float) -> float:
        """Clamp a value to this parameter's bounds."""
        return float(min(max(value, self.lower_bound), self.upper_bound))

    def in_bounds(self, value: float | None = None) -> bool:
        """Check whether a value (default: current value) is within bounds."""
        v = self.value if value is None else value
        return self.lower_bound <= v <= self.upper_bound

    def at_bound(self, rel_tol: float = 1e-9) -> bool:
        """Check whether the current value sits on a declared bound."""
        for bound in (self.lower, self.upper):
            if bound is not None and math.isclose(self.value, bound, rel_tol=rel_tol, abs_tol=1e-300):
                return True
        return False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the parameter-file shape (name is the mapping key)."""
        data: dict[str, Any] = {"value": self.value, "fit": self.fit}
        if self.lower is not None:
            data["lower"] = self.lower
        if self.upper is not None:
            data["upper"] = self.upper
        if self.weight != 1.0:
            data["weight"] = self.weight
        if self.central:
            data["central"] = True
        if self.unit is not None:
            data["unit"] = self.unit
        return data

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any] | float | int) -> "FitParameter":
        """Build a parameter from its serialized form.

        Args:
            name: Parameter name
            data: Mapping with at least "value", or a bare number

        Raises:
            ValueError: If the entry has no value or inverted bounds
        """
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return cls(name=name, value=float(data))
        if not isinstance(data, Mapping) or "value" not in data:
            raise ValueError(f"Parameter '{name}' must be a number or a mapping with a 'value'")
        return cls(
            name=name,
            value=data["value"],
            fit=bool(data.get("fit", True)),
            lower=data.get("lower"),
            upper=data.get("upper"),
            weight=float(data.get("weight", 1.0)),
            central=bool(data.get("central", False)),
            unit=data.get("unit"),
        )


class ParameterSet:
    """Ordered collection of uniquely named FitParameters."""

    def __init__(self, parameters: list[FitParameter] | None = None):
        """Initialize the set.

        Args:
            parameters: Parameters in model order

        Raises:
            ValueError: If two parameters share a name
        """
        self._params: dict[str, FitParameter] = {}
        for param in parameters or []:
            if param.name in self._params:
                raise ValueError(f"Duplicate parameter name: {param.name}")
            self._params[param.name] = param

    def __len__(self) -> int:
        return len(self._params)

    def __iter__(self) -> Iterator[FitParameter]:
        return iter(self._params.values())

    def __contains__(self, name: object) -> bool:
        return name in self._params

    def __getitem__(self, name: str) -> FitParameter:
        return self._params[name]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParameterSet):
            return NotImplemented
        return list(self._params.values()) == list(other._params.values())

    def __repr__(self) -> str:
        inner = ", ".join(f"{p.name}={p.value:g}" for p in self)
        return f"ParameterSet({inner})"

    @property
    def names(self) -> list[str]:
        """All parameter names in order."""
        return list(self._params)

    @property
    def free_names(self) -> list[str]:
        """Names of parameters the optimizer may vary."""
        return [p.name for p in self if p.fit]

    def values(self) -> dict[str, float]:
        """Current values keyed by name (the model function input)."""
        return {p.name: p.value for p in self}

    def free_vector(self) -> np.ndarray:
        """Current values of the free parameters as an array."""
        return np.array([self._params[n].value for n in self.free_names], dtype=float)

    def copy(self) -> "ParameterSet":
        """Independent copy of the set."""
        return ParameterSet([replace(p) for p in self])

    def with_values(self, updates: Mapping[str, float], clamp: bool = True) -> "ParameterSet":
        """Return a copy with some values replaced.

        Args:
            updates: New values keyed by parameter name
            clamp: Clamp the new values to each parameter's bounds

        Raises:
            KeyError: If an update names an unknown parameter
        """
        new = self.copy()
        for name, value in updates.items():
            param = new._params[name]
            param.value = param.clamp(value) if clamp else float(value)
        return new

    def with_free_vector(self, vector: np.ndarray, clamp: bool = True) -> "ParameterSet":
        """Return a copy with the free parameters set from an array."""
        return self.with_values(dict(zip(self.free_names, np.asarray(vector, dtype=float))), clamp=clamp)

    def clamped(self) -> tuple["ParameterSet", list[str]]:
        """Return a copy with every value clamped to its bounds.

        Returns:
            Tuple of (clamped copy, names of parameters that were moved)
        """
        new = self.copy()
        moved = []
        for param in new:
            clamped = param.clamp(param.value)
            if clamped != param.value:
                moved.append(param.name)
                param.value = clamped
        return new, moved

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Serialize to a name -> entry mapping."""
        return {p.name: p.to_dict() for p in self}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ParameterSet":
        """Build a set from a name -> entry mapping."""
        return cls([FitParameter.from_dict(name, entry) for name, entry in data.items()])

    @classmethod
    def from_values(
        cls,
        values: Mapping[str, float],
        fixed: set[str] | None = None,
        bounds: Mapping[str, tuple[float | None, float | None]] | None = None,
    ) -> "ParameterSet":
        """Convenience constructor from plain values.

        Args:
            values: Parameter values keyed by name
            fixed: Names to hold fixed
            bounds: Optional (lower, upper) per name
        """
        fixed = fixed or set()
        bounds = bounds or {}
        params = []
        for name, value in values.items():
            lower, upper = bounds.get(name, (None, None))
            params.append(FitParameter(name, value, fit=name not in fixed, lower=lower, upper=upper))
        return cls(params)
