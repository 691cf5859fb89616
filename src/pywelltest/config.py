"""Configuration file support for pywelltest.

Supports YAML config files with derivative, fitting, data-loading and
output settings. CLI flags override config file values.
"""

from dataclasses import asdict, dataclass, field, fields as dataclass_fields
import logging
from pathlib import Path
from typing import ClassVar, Literal

import yaml

logger = logging.getLogger(__name__)


@dataclass
class DerivativeConfig:
    """Bourdet derivative parameters.

    Attributes:
        smoothing: Differencing window in natural-log units of time (default 0.15)
    """
    smoothing: float = 0.15


@dataclass
class FittingDefaults:
    """Levenberg-Marquardt fitting parameters.

    Attributes:
        max_iterations: Ceiling on accepted iterations (default 100)
        initial_damping: Starting damping factor (default 1e-3)
        damping_decrease: Damping divisor after an accepted step (default 10)
        damping_increase: Damping multiplier after a rejected step (default 10)
        min_damping: Damping floor (default 1e-12)
        max_damping: Damping cap (default 1e12)
        max_retries: Rejected steps allowed per iteration (default 12)
        error_tolerance: Relative error decrease treated as stalled (default 1e-9)
        step_tolerance: Relative step norm treated as stalled (default 1e-9)
        convergence_patience: Consecutive stalled steps to converge (default 2)
        derivative_weight: Derivative channel weight, 0 to 1 (default 0.5)
        derivative_scale: Scale factor on derivative residuals (default 1.0)
        residual_space: 'linear' or 'log' residuals (default 'linear')
        jacobian_method: 'forward' or 'central' differences (default 'forward')
        rel_step: Relative finite-difference step (default 1e-6)
        abs_step: Absolute finite-difference step floor (default 1e-8)
        jacobian_workers: Threads for Jacobian columns (default None = serial)
        min_points: Minimum samples required to fit (default 3)
    """
    max_iterations: int = 100
    initial_damping: float = 1e-3
    damping_decrease: float = 10.0
    damping_increase: float = 10.0
    min_damping: float = 1e-12
    max_damping: float = 1e12
    max_retries: int = 12
    error_tolerance: float = 1e-9
    step_tolerance: float = 1e-9
    convergence_patience: int = 2
    derivative_weight: float = 0.5
    derivative_scale: float = 1.0
    residual_space: Literal["linear", "log"] = "linear"
    jacobian_method: Literal["forward", "central"] = "forward"
    rel_step: float = 1e-6
    abs_step: float = 1e-8
    jacobian_workers: int | None = None
    min_points: int = 3


@dataclass
class DataConfig:
    """Observed-data loading settings.

    Attributes:
        time_column: Time column, 0-based index or header name (default 0)
        pressure_column: Pressure column, index or name (default 1)
        derivative_column: Derivative column, or None to compute Bourdet (default None)
        skip_rows: Leading rows to skip, e.g. headers (default 1)
        pressure_mode: 'raw' (|P - Pi|) or 'differential' (use as is) (default 'raw')
    """
    time_column: int | str = 0
    pressure_column: int | str = 1
    derivative_column: int | str | None = None
    skip_rows: int = 1
    pressure_mode: Literal["raw", "differential"] = "raw"


@dataclass
class OutputConfig:
    """Output configuration.

    Attributes:
        progress: Show a progress bar while fitting (default True)
        include_curves: Store model curves in saved analyses (default True)
    """
    progress: bool = True
    include_curves: bool = True


@dataclass
class PyWellTestConfig:
    """Complete pywelltest configuration.

    Attributes:
        derivative: Bourdet derivative settings
        fitting: Levenberg-Marquardt settings
        data: Observed-data loading settings
        output: Output configuration
    """
    derivative: DerivativeConfig = field(default_factory=DerivativeConfig)
    fitting: FittingDefaults = field(default_factory=FittingDefaults)
    data: DataConfig = field(default_factory=DataConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid
        """
        errors = []

        if self.derivative.smoothing < 0:
            errors.append(
                f"derivative.smoothing ({self.derivative.smoothing}) must be non-negative"
            )

        fitting = self.fitting
        if fitting.max_iterations < 1:
            errors.append(
                f"fitting.max_iterations ({fitting.max_iterations}) must be at least 1"
            )
        if fitting.initial_damping <= 0:
            errors.append(
                f"fitting.initial_damping ({fitting.initial_damping}) must be greater than 0"
            )
        if fitting.damping_decrease <= 1 or fitting.damping_increase <= 1:
            errors.append("fitting.damping_decrease and fitting.damping_increase must be greater than 1")
        if not 0 < fitting.min_damping <= fitting.max_damping:
            errors.append(
                f"fitting.min_damping ({fitting.min_damping}) must be positive and not exceed "
                f"fitting.max_damping ({fitting.max_damping})"
            )
        if fitting.max_retries < 1:
            errors.append(f"fitting.max_retries ({fitting.max_retries}) must be at least 1")
        if fitting.convergence_patience < 1:
            errors.append(
                f"fitting.convergence_patience ({fitting.convergence_patience}) must be at least 1"
            )
        if not 0.0 <= fitting.derivative_weight <= 1.0:
            errors.append(
                f"fitting.derivative_weight ({fitting.derivative_weight}) must be within [0, 1]"
            )
        if fitting.derivative_scale < 0:
            errors.append(
                f"fitting.derivative_scale ({fitting.derivative_scale}) must be non-negative"
            )
        if fitting.residual_space not in ("linear", "log"):
            errors.append(
                f"fitting.residual_space ({fitting.residual_space}) must be 'linear' or 'log'"
            )
        if fitting.jacobian_method not in ("forward", "central"):
            errors.append(
                f"fitting.jacobian_method ({fitting.jacobian_method}) must be 'forward' or 'central'"
            )
        if fitting.rel_step <= 0 or fitting.abs_step <= 0:
            errors.append("fitting.rel_step and fitting.abs_step must be greater than 0")
        if fitting.min_points < 3:
            errors.append(f"fitting.min_points ({fitting.min_points}) must be at least 3")

        if self.data.skip_rows < 0:
            errors.append(f"data.skip_rows ({self.data.skip_rows}) must be non-negative")
        if self.data.pressure_mode not in ("raw", "differential"):
            errors.append(
                f"data.pressure_mode ({self.data.pressure_mode}) must be 'raw' or 'differential'"
            )

        if errors:
            raise ValueError("Invalid configuration:\n  - " + "\n  - ".join(errors))

    @classmethod
    def from_yaml(cls, filepath: Path | str) -> "PyWellTestConfig":
        """Read and validate a YAML config file.

        An empty file yields the defaults.

        Raises:
            ValueError: If any value fails validate()
        """
        with open(Path(filepath)) as f:
            config = cls.from_dict(yaml.safe_load(f) or {})
        config.validate()
        return config

    _SECTION_TYPES: ClassVar[dict[str, type]] = {
        "derivative": DerivativeConfig,
        "fitting": FittingDefaults,
        "data": DataConfig,
        "output": OutputConfig,
    }

    @staticmethod
    def _known_entries(section_data: dict, section_type: type, section_name: str) -> dict:
        """Drop keys the section dataclass does not define, logging a warning."""
        known = {f.name for f in dataclass_fields(section_type)}
        ignored = sorted(set(section_data) - known)
        if ignored:
            logger.warning(
                f"Ignoring unknown key(s) in '{section_name}' section: {', '.join(ignored)} "
                f"(known: {', '.join(sorted(known))})"
            )
        return {key: value for key, value in section_data.items() if key in known}

    @classmethod
    def from_dict(cls, data: dict) -> "PyWellTestConfig":
        """Build a config from a parsed YAML mapping.

        Missing sections and keys keep their defaults. Unknown sections and
        keys are logged and ignored. Values are not validated here.
        """
        config = cls()

        ignored = sorted(set(data) - set(cls._SECTION_TYPES))
        if ignored:
            logger.warning(
                f"Ignoring unknown config section(s): {', '.join(ignored)} "
                f"(known: {', '.join(cls._SECTION_TYPES)})"
            )

        for name, section_type in cls._SECTION_TYPES.items():
            section_data = data.get(name)
            if section_data is not None:
                entries = cls._known_entries(section_data, section_type, name)
                setattr(config, name, section_type(**entries))

        return config

    def to_dict(self) -> dict:
        return asdict(self)

    def to_yaml(self, filepath: Path | str) -> None:
        """Write the config as plain YAML (no comments)."""
        with open(Path(filepath), "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def generate_default_config(filepath: Path | str) -> Path:
    """Generate a default configuration file.

    Args:
        filepath: Output file path

    Returns:
        Path to created file
    """
    filepath = Path(filepath)

    content = """# pywelltest Configuration File
# Bourdet derivative and Levenberg-Marquardt fitting settings

# Bourdet derivative
derivative:
  smoothing: 0.15          # Differencing window, natural-log units of time

# Levenberg-Marquardt fitting
fitting:
  max_iterations: 100      # Ceiling on accepted iterations
  initial_damping: 0.001   # Starting damping factor (lambda)
  damping_decrease: 10.0   # lambda divisor after an accepted step
  damping_increase: 10.0   # lambda multiplier after a rejected step
  min_damping: 1.0e-12     # lambda floor
  max_damping: 1.0e+12     # lambda cap
  max_retries: 12          # Rejected steps per iteration before giving up
  error_tolerance: 1.0e-9  # Relative error decrease treated as stalled
  step_tolerance: 1.0e-9   # Relative step size treated as stalled
  convergence_patience: 2  # Consecutive stalled steps to declare convergence
  derivative_weight: 0.5   # 0 = pressure only, 1 = full derivative influence
  derivative_scale: 1.0    # Fixed scale on derivative residuals
  residual_space: linear   # linear or log (log10 of both channels)
  jacobian_method: forward # forward or central differences
  rel_step: 1.0e-6         # Relative finite-difference step
  abs_step: 1.0e-8         # Absolute finite-difference step floor
  jacobian_workers: null   # Threads for Jacobian columns (null = serial)
  min_points: 3            # Minimum samples required to fit

# Observed data loading
data:
  time_column: 0           # 0-based column index or header name
  pressure_column: 1
  derivative_column: null  # null = compute Bourdet derivative
  skip_rows: 1             # Leading rows to skip (headers)
  pressure_mode: raw       # raw (|P - Pi|) or differential (use as is)

# Output options
output:
  progress: true           # Show progress bar while fitting
  include_curves: true     # Store model curves in saved analyses
"""

    with open(filepath, "w") as f:
        f.write(content)

    return filepath
