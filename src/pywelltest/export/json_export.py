"""Save and load well-test analyses in JSON format."""

from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from ..core.optimizer import FitResult
from ..core.parameters import ParameterSet
from ..data.observed import ObservedData
from ..validation import ValidationResult

logger = logging.getLogger(__name__)

# Version of the analysis document layout
FORMAT_VERSION = 1


@dataclass
class AnalysisState:
    """Everything needed to reopen an analysis.

    Attributes:
        model_id: Model-type identifier in the registry
        parameters: Current parameter set (fitted values after a fit)
        derivative_weight: Derivative channel weight used for fitting
        data: Observed data, if loaded
        fit_summary: FitResult.summary() of the last fit, if any
        model_curves: Model pressure/derivative at the observed times
        quality: Fit-quality assessment of the last fit, if any
        name: Optional analysis label
    """
    model_id: str
    parameters: ParameterSet
    derivative_weight: float = 0.5
    data: ObservedData | None = None
    fit_summary: dict[str, Any] | None = None
    model_curves: dict[str, list[float]] | None = None
    quality: dict[str, Any] | None = None
    name: str | None = None

    def record_fit(
        self,
        result: FitResult,
        quality: dict[str, Any] | None = None,
        include_curves: bool = True,
    ) -> None:
        """Store a fit result: its parameters, summary and curves.

        Args:
            result: Terminal FitResult
            quality: Optional evaluate_fit_quality() output
            include_curves: Store the model curves at the observed times
        """
        self.parameters = result.parameters.copy()
        self.fit_summary = result.summary()
        self.quality = quality
        if include_curves and result.pressure_curve is not None and result.derivative_curve is not None:
            self.model_curves = {
                "pressure": _finite_list(result.pressure_curve),
                "derivative": _finite_list(result.derivative_curve),
            }
        else:
            self.model_curves = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        return {
            "format_version": FORMAT_VERSION,
            "name": self.name,
            "model_id": self.model_id,
            "derivative_weight": self.derivative_weight,
            "parameters": self.parameters.to_dict(),
            "data": self.data.to_dict() if self.data is not None else None,
            "fit": self.fit_summary,
            "model_curves": self.model_curves,
            "quality": self.quality,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisState":
        """Restore from to_dict() output.

        Raises:
            ValueError: If required keys are missing or the version is unknown
        """
        version = data.get("format_version", FORMAT_VERSION)
        if version > FORMAT_VERSION:
            raise ValueError(
                f"Analysis format version {version} is newer than supported ({FORMAT_VERSION})"
            )
        missing = [key for key in ("model_id", "parameters") if key not in data]
        if missing:
            raise ValueError(f"Analysis document missing key(s): {', '.join(missing)}")

        observed = data.get("data")
        return cls(
            model_id=data["model_id"],
            parameters=ParameterSet.from_dict(data["parameters"]),
            derivative_weight=float(data.get("derivative_weight", 0.5)),
            data=ObservedData.from_dict(observed) if observed else None,
            fit_summary=data.get("fit"),
            model_curves=data.get("model_curves"),
            quality=data.get("quality"),
            name=data.get("name"),
        )


def _finite_list(values: np.ndarray) -> list[float | None]:
    """Array to list with non-finite entries as None (JSON has no NaN)."""
    return [float(v) if np.isfinite(v) else None for v in np.asarray(values, dtype=float)]


def _export_validation(validation_result: ValidationResult | None) -> dict[str, Any]:
    """Export validation results."""
    if validation_result is None:
        return {"errors": 0, "warnings": 0, "issues": []}

    return {
        "errors": validation_result.error_count,
        "warnings": validation_result.warning_count,
        "issues": [
            {
                "code": issue.code,
                "severity": issue.severity.name.lower(),
                "message": issue.message,
                "guidance": issue.guidance,
            }
            for issue in validation_result.issues
        ],
    }


def save_analysis(
    state: AnalysisState,
    output_path: Path | str,
    validation_result: ValidationResult | None = None,
) -> Path:
    """Save an analysis to a JSON file.

    Args:
        state: Analysis to save
        output_path: Output file path
        validation_result: Optional input validation to include

    Returns:
        Path to saved file
    """
    output_path = Path(output_path)
    document = state.to_dict()
    document["generated"] = datetime.now().isoformat(timespec="seconds")
    document["validation"] = _export_validation(validation_result)

    with open(output_path, "w") as f:
        json.dump(document, f, indent=2)

    logger.info(f"Saved analysis '{state.name or state.model_id}' to {output_path}")
    return output_path


def load_analysis(input_path: Path | str) -> AnalysisState:
    """Load an analysis saved by save_analysis().

    Args:
        input_path: Path to the JSON file

    Returns:
        AnalysisState

    Raises:
        ValueError: If the file is not a valid analysis document
    """
    input_path = Path(input_path)
    with open(input_path) as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"{input_path} is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise ValueError(f"{input_path} does not contain an analysis document")
    return AnalysisState.from_dict(document)
