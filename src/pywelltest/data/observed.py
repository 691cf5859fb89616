"""Observed well-test data."""

from dataclasses import dataclass
import logging
from typing import Literal

import numpy as np

from ..core.derivative import DEFAULT_SMOOTHING, bourdet_derivative

logger = logging.getLogger(__name__)

PressureMode = Literal["raw", "differential"]


@dataclass
class ObservedData:
    """Cleaned (time, pressure, derivative) sample series.

    Attributes:
        time: Elapsed times, strictly positive and strictly increasing
        pressure: Pressure change magnitude
        derivative: Bourdet derivative (supplied or computed)
        derivative_source: "supplied" or "bourdet"
        initial_pressure: Reference pressure subtracted in raw mode, else None
        dropped_rows: Rows removed during cleaning
    """
    time: np.ndarray
    pressure: np.ndarray
    derivative: np.ndarray
    derivative_source: Literal["supplied", "bourdet"] = "supplied"
    initial_pressure: float | None = None
    dropped_rows: int = 0

    def __post_init__(self) -> None:
        self.time = np.asarray(self.time, dtype=float)
        self.pressure = np.asarray(self.pressure, dtype=float)
        self.derivative = np.asarray(self.derivative, dtype=float)
        if not (len(self.time) == len(self.pressure) == len(self.derivative)):
            raise ValueError(
                f"time, pressure and derivative must have equal length "
                f"({len(self.time)}, {len(self.pressure)}, {len(self.derivative)})"
            )

    def __len__(self) -> int:
        return len(self.time)

    @property
    def n_samples(self) -> int:
        """Number of samples."""
        return len(self.time)

    def has_sufficient_data(self, min_points: int = 3) -> bool:
        """Check if there are enough samples to fit."""
        return self.n_samples >= min_points

    @classmethod
    def from_arrays(
        cls,
        time: np.ndarray,
        pressure: np.ndarray,
        derivative: np.ndarray | None = None,
        pressure_mode: PressureMode = "differential",
        smoothing: float = DEFAULT_SMOOTHING,
    ) -> "ObservedData":
        """Clean raw columns into an ObservedData series.

        Rows are dropped when time is non-positive or not finite, when the
        pressure (or supplied derivative) is not finite, or when time does
        not strictly increase over the previous kept row.

        Args:
            time: Raw time column
            pressure: Raw pressure column
            derivative: Optional derivative column; computed if None
            pressure_mode: "raw" converts to |P - Pi| using the first finite
                pressure as Pi; "differential" uses the values as given
            smoothing: Bourdet window used when derivative is None

        Returns:
            ObservedData instance

        Raises:
            ValueError: If column lengths differ or pressure_mode is unknown
        """
        t = np.asarray(time, dtype=float)
        p = np.asarray(pressure, dtype=float)
        d = None if derivative is None else np.asarray(derivative, dtype=float)

        if len(t) != len(p) or (d is not None and len(d) != len(t)):
            raise ValueError("time, pressure and derivative columns must have equal length")
        if pressure_mode not in ("raw", "differential"):
            raise ValueError(f"pressure_mode must be 'raw' or 'differential', got '{pressure_mode}'")

        initial_pressure = None
        if pressure_mode == "raw":
            finite_p = p[np.isfinite(p)]
            initial_pressure = float(finite_p[0]) if len(finite_p) else 0.0
            p = np.abs(p - initial_pressure)

        valid = np.isfinite(t) & (t > 0) & np.isfinite(p)
        if d is not None:
            valid &= np.isfinite(d)

        keep = np.zeros(len(t), dtype=bool)
        last_t = -np.inf
        for i in np.flatnonzero(valid):
            if t[i] > last_t:
                keep[i] = True
                last_t = t[i]

        dropped = int(len(t) - keep.sum())
        if dropped:
            logger.info(f"Dropped {dropped} invalid or non-increasing row(s)")

        t_clean = t[keep]
        p_clean = p[keep]
        if d is not None:
            d_clean = d[keep]
            source = "supplied"
        else:
            d_clean = bourdet_derivative(t_clean, p_clean, smoothing)
            source = "bourdet"

        return cls(
            time=t_clean,
            pressure=p_clean,
            derivative=d_clean,
            derivative_source=source,
            initial_pressure=initial_pressure,
            dropped_rows=dropped,
        )

    def to_dict(self) -> dict:
        """Serialize to plain lists."""
        return {
            "time": self.time.tolist(),
            "pressure": self.pressure.tolist(),
            "derivative": self.derivative.tolist(),
            "derivative_source": self.derivative_source,
            "initial_pressure": self.initial_pressure,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ObservedData":
        """Restore from to_dict() output."""
        return cls(
            time=np.asarray(data.get("time", []), dtype=float),
            pressure=np.asarray(data.get("pressure", []), dtype=float),
            derivative=np.asarray(data.get("derivative", []), dtype=float),
            derivative_source=data.get("derivative_source", "supplied"),
            initial_pressure=data.get("initial_pressure"),
        )
