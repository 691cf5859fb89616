"""CLI commands for pywelltest."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
import yaml

from ..config import PyWellTestConfig, generate_default_config
from ..core.models import ModelSpec
from ..core.parameters import FitParameter, ParameterSet

app = typer.Typer(
    name="pywelltest",
    help="Well-test derivative analysis and model fitting",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option(
            "-v", "--verbose",
            help="Show debug log messages (per-iteration fit progress)",
        )
    ] = False,
) -> None:
    """Well-test derivative analysis and model fitting."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _load_config(config: Path | None) -> PyWellTestConfig:
    """Load a config file or return defaults, exiting on invalid values."""
    if config is None:
        return PyWellTestConfig()
    typer.echo(f"Loading config from {config}")
    try:
        return PyWellTestConfig.from_yaml(config)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _column_selector(value: str | None) -> int | str | None:
    """Interpret a column option as a 0-based index when numeric."""
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def _apply_data_overrides(
    pw_config: PyWellTestConfig,
    time_col: str | None,
    pressure_col: str | None,
    derivative_col: str | None,
    skip_rows: int | None,
    differential: bool,
) -> None:
    """Apply CLI data-loading flags on top of the config."""
    if time_col is not None:
        pw_config.data.time_column = _column_selector(time_col)  # type: ignore[assignment]
    if pressure_col is not None:
        pw_config.data.pressure_column = _column_selector(pressure_col)  # type: ignore[assignment]
    if derivative_col is not None:
        pw_config.data.derivative_column = _column_selector(derivative_col)
    if skip_rows is not None:
        pw_config.data.skip_rows = skip_rows
    if differential:
        pw_config.data.pressure_mode = "differential"


def _load_parameters(spec: ModelSpec, params_file: Path | None) -> ParameterSet:
    """Build the starting parameter set for a model.

    Entries in the parameter file replace the model defaults of the same
    name; defaults are kept for parameters the file does not mention.
    """
    defaults = spec.parameters()
    if params_file is None:
        return defaults

    with open(params_file) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{params_file} must contain a mapping of parameter name to entry")
    if "parameters" in data and isinstance(data["parameters"], dict):
        data = data["parameters"]

    unknown = [name for name in data if name not in defaults]
    if unknown:
        raise ValueError(
            f"Unknown parameter(s) for model '{spec.model_id}': {', '.join(unknown)}. "
            f"Expected: {', '.join(defaults.names)}"
        )

    return ParameterSet([
        FitParameter.from_dict(param.name, data[param.name]) if param.name in data else param
        for param in defaults
    ])


@app.command()
def fit(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Delimited text file with time and pressure columns",
            exists=True,
        )
    ],
    model: Annotated[
        str,
        typer.Option(
            "-m", "--model",
            help="Model id (see 'pywelltest models')",
        )
    ] = "storage_radial",
    params_file: Annotated[
        Optional[Path],
        typer.Option(
            "-p", "--params",
            help="YAML/JSON file with starting values, bounds and fit flags",
            exists=True,
        )
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "-o", "--output",
            help="Save the analysis (data, parameters, fit) as JSON",
        )
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "-c", "--config",
            help="YAML config file (use 'pywelltest init' to generate template)",
            exists=True,
        )
    ] = None,
    weight: Annotated[
        Optional[float],
        typer.Option(
            "-w", "--weight",
            help="Derivative weight, 0 (pressure only) to 1 (overrides config)",
        )
    ] = None,
    max_iterations: Annotated[
        Optional[int],
        typer.Option(
            "--max-iterations",
            help="Iteration ceiling (overrides config)",
        )
    ] = None,
    time_col: Annotated[
        Optional[str],
        typer.Option("--time-col", help="Time column index or header name")
    ] = None,
    pressure_col: Annotated[
        Optional[str],
        typer.Option("--pressure-col", help="Pressure column index or header name")
    ] = None,
    derivative_col: Annotated[
        Optional[str],
        typer.Option("--derivative-col", help="Derivative column (default: compute Bourdet)")
    ] = None,
    skip_rows: Annotated[
        Optional[int],
        typer.Option("--skip-rows", help="Leading rows to skip")
    ] = None,
    differential: Annotated[
        bool,
        typer.Option("--differential", help="Pressure column is already a pressure change")
    ] = False,
    no_progress: Annotated[
        bool,
        typer.Option("--no-progress", help="Hide the progress bar")
    ] = False,
) -> None:
    """Fit a reservoir model to observed pressure and derivative data.

    Loads the data file, computes the Bourdet derivative when no derivative
    column is mapped, and runs a Levenberg-Marquardt fit starting from the
    model defaults (or a parameter file).

    Example:
        pywelltest fit buildup.txt --model storage_radial -w 0.5 -o analysis.json
    """
    from tqdm import tqdm

    from ..core.models import default_registry
    from ..core.optimizer import FittingConfig, LevenbergMarquardtOptimizer
    from ..core.runner import FitTask
    from ..core.selection import evaluate_fit_quality
    from ..data.loader import load_observed
    from ..export.json_export import AnalysisState, save_analysis
    from ..validation import InputValidator

    pw_config = _load_config(config)
    _apply_data_overrides(pw_config, time_col, pressure_col, derivative_col, skip_rows, differential)
    if weight is not None:
        pw_config.fitting.derivative_weight = weight
    if max_iterations is not None:
        pw_config.fitting.max_iterations = max_iterations
    if no_progress:
        pw_config.output.progress = False
    try:
        pw_config.validate()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    registry = default_registry()
    try:
        spec = registry.get(model)
        parameters = _load_parameters(spec, params_file)
    except (KeyError, ValueError) as e:
        message = e.args[0] if isinstance(e, KeyError) else e
        typer.echo(f"Error: {message}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Loading data from {input_file}...")
    data_cfg = pw_config.data
    try:
        data = load_observed(
            input_file,
            time_column=data_cfg.time_column,
            pressure_column=data_cfg.pressure_column,
            derivative_column=data_cfg.derivative_column,
            skip_rows=data_cfg.skip_rows,
            pressure_mode=data_cfg.pressure_mode,
            smoothing=pw_config.derivative.smoothing,
        )
    except (OSError, ValueError) as e:
        typer.echo(f"Error loading file: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"  {data.n_samples} samples (derivative: {data.derivative_source})")

    validator = InputValidator(min_points=pw_config.fitting.min_points)
    validation = validator.validate_samples(
        data.time, data.pressure, data.derivative, source=input_file.name
    ).merge(validator.validate_parameters(parameters))
    for issue in validation.issues:
        typer.echo(f"  {issue}", err=issue.severity.name == "ERROR")
    if not validation.is_valid:
        raise typer.Exit(1)

    fitting_config = FittingConfig.from_config(pw_config)
    typer.echo(
        f"Fitting '{spec.model_id}' ({', '.join(parameters.free_names)} free, "
        f"derivative weight {fitting_config.derivative_weight})..."
    )

    progress_bar = tqdm(
        total=fitting_config.max_iterations,
        desc="Fitting",
        disable=not pw_config.output.progress,
    )

    def show_progress(update) -> None:
        progress_bar.update(update.iteration - progress_bar.n)
        progress_bar.set_postfix(error=f"{update.error:.4g}")

    with FitTask(LevenbergMarquardtOptimizer(fitting_config), listener=show_progress) as task:
        future = task.start(data.time, data.pressure, data.derivative, parameters, spec.function)
        try:
            result = future.result()
        except KeyboardInterrupt:
            typer.echo("\nCancelling fit...", err=True)
            task.cancel()
            result = future.result()
    progress_bar.close()

    quality = evaluate_fit_quality(result, data.pressure, data.derivative)

    typer.echo("\nFit Results:")
    typer.echo(f"  Status: {result.status.value} ({result.message})")
    typer.echo(f"  Iterations: {result.iterations}")
    typer.echo(f"  Error: {result.initial_error:.6g} -> {result.error:.6g}")
    for param in result.parameters:
        unit = f" {param.unit}" if param.unit else ""
        flag = "" if param.fit else " (fixed)"
        typer.echo(f"  {param.name}: {param.value:.6g}{unit}{flag}")
    typer.echo(f"  R² pressure: {quality['r_squared_pressure']:.4f}")
    typer.echo(f"  R² derivative: {quality['r_squared_derivative']:.4f}")
    typer.echo(f"  Grade: {quality['quality_grade']}")
    for warning in quality["warnings"]:
        typer.echo(f"  Warning: {warning}")

    if output:
        state = AnalysisState(
            model_id=spec.model_id,
            parameters=parameters,
            derivative_weight=fitting_config.derivative_weight,
            data=data,
            name=input_file.stem,
        )
        state.record_fit(result, quality, include_curves=pw_config.output.include_curves)
        save_analysis(state, output, validation)
        typer.echo(f"\nAnalysis saved to: {output}")


@app.command()
def derivative(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Delimited text file with time and pressure columns",
            exists=True,
        )
    ],
    output: Annotated[
        Optional[Path],
        typer.Option(
            "-o", "--output",
            help="Output CSV file (default: print to console)",
        )
    ] = None,
    smoothing: Annotated[
        Optional[float],
        typer.Option(
            "-L", "--smoothing",
            help="Differencing window in ln-time units (overrides config)",
        )
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "-c", "--config",
            help="YAML config file",
            exists=True,
        )
    ] = None,
    time_col: Annotated[
        Optional[str],
        typer.Option("--time-col", help="Time column index or header name")
    ] = None,
    pressure_col: Annotated[
        Optional[str],
        typer.Option("--pressure-col", help="Pressure column index or header name")
    ] = None,
    skip_rows: Annotated[
        Optional[int],
        typer.Option("--skip-rows", help="Leading rows to skip")
    ] = None,
    differential: Annotated[
        bool,
        typer.Option("--differential", help="Pressure column is already a pressure change")
    ] = False,
) -> None:
    """Compute the Bourdet derivative of a pressure record.

    Writes time, pressure change and derivative columns as CSV.

    Example:
        pywelltest derivative buildup.txt -L 0.2 -o derivative.csv
    """
    import pandas as pd

    from ..data.loader import load_observed

    pw_config = _load_config(config)
    _apply_data_overrides(pw_config, time_col, pressure_col, None, skip_rows, differential)
    if smoothing is not None:
        if smoothing < 0:
            typer.echo(f"Error: smoothing ({smoothing}) must be non-negative", err=True)
            raise typer.Exit(1)
        pw_config.derivative.smoothing = smoothing

    data_cfg = pw_config.data
    try:
        data = load_observed(
            input_file,
            time_column=data_cfg.time_column,
            pressure_column=data_cfg.pressure_column,
            skip_rows=data_cfg.skip_rows,
            pressure_mode=data_cfg.pressure_mode,
            smoothing=pw_config.derivative.smoothing,
        )
    except (OSError, ValueError) as e:
        typer.echo(f"Error loading file: {e}", err=True)
        raise typer.Exit(1)

    df = pd.DataFrame({
        "time": data.time,
        "pressure": data.pressure,
        "derivative": data.derivative,
    })

    if output:
        df.to_csv(output, index=False)
        typer.echo(f"Derivative of {data.n_samples} samples written to: {output}")
    else:
        typer.echo(df.to_csv(index=False), nl=False)


@app.command()
def models() -> None:
    """List the available models and their default parameters."""
    from ..core.models import default_registry

    registry = default_registry()
    for model_id in registry.model_ids():
        spec = registry.get(model_id)
        typer.echo(f"{model_id}: {spec.description}")
        for param in spec.default_parameters:
            bounds = f"[{param.lower:g}, {param.upper:g}]" if param.lower is not None and param.upper is not None else "unbounded"
            flags = " central" if param.central else ""
            typer.echo(f"  {param.name} = {param.value:g} {bounds}{flags}")


@app.command()
def init(
    output: Annotated[
        Path,
        typer.Option(
            "-o", "--output",
            help="Output file path",
        )
    ] = Path("pywelltest.yaml"),
) -> None:
    """Generate a default configuration file.

    Creates a YAML config file with all available settings and their defaults.

    Example:
        pywelltest init -o my_config.yaml
    """
    if output.exists():
        overwrite = typer.confirm(f"{output} already exists. Overwrite?")
        if not overwrite:
            raise typer.Exit(0)

    generate_default_config(output)
    typer.echo(f"Created config file: {output}")


@app.command()
def validate(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Delimited text file with time and pressure columns",
            exists=True,
        )
    ],
    params_file: Annotated[
        Optional[Path],
        typer.Option(
            "-p", "--params",
            help="Parameter file to check against the model",
            exists=True,
        )
    ] = None,
    model: Annotated[
        str,
        typer.Option(
            "-m", "--model",
            help="Model id the parameter file belongs to",
        )
    ] = "storage_radial",
    config: Annotated[
        Optional[Path],
        typer.Option(
            "-c", "--config",
            help="YAML config file",
            exists=True,
        )
    ] = None,
    time_col: Annotated[
        Optional[str],
        typer.Option("--time-col", help="Time column index or header name")
    ] = None,
    pressure_col: Annotated[
        Optional[str],
        typer.Option("--pressure-col", help="Pressure column index or header name")
    ] = None,
    derivative_col: Annotated[
        Optional[str],
        typer.Option("--derivative-col", help="Derivative column index or header name")
    ] = None,
    skip_rows: Annotated[
        Optional[int],
        typer.Option("--skip-rows", help="Leading rows to skip")
    ] = None,
) -> None:
    """Check a data file (and optionally a parameter file) without fitting.

    Exit codes:
        0: No errors found (warnings may be present)
        1: Validation errors found

    Example:
        pywelltest validate buildup.txt --params start.yaml
    """
    from ..core.models import default_registry
    from ..data.loader import load_columns
    from ..validation import InputValidator

    pw_config = _load_config(config)
    _apply_data_overrides(pw_config, time_col, pressure_col, derivative_col, skip_rows, False)
    data_cfg = pw_config.data

    try:
        t, p, d = load_columns(
            input_file,
            time_column=data_cfg.time_column,
            pressure_column=data_cfg.pressure_column,
            derivative_column=data_cfg.derivative_column,
            skip_rows=data_cfg.skip_rows,
        )
    except (OSError, ValueError) as e:
        typer.echo(f"Error loading file: {e}", err=True)
        raise typer.Exit(1)

    validator = InputValidator(min_points=pw_config.fitting.min_points)
    result = validator.validate_samples(t, p, d, source=input_file.name)

    if params_file is not None:
        try:
            spec = default_registry().get(model)
            parameters = _load_parameters(spec, params_file)
        except (KeyError, ValueError) as e:
            message = e.args[0] if isinstance(e, KeyError) else e
            typer.echo(f"Error: {message}", err=True)
            raise typer.Exit(1)
        result = result.merge(validator.validate_parameters(parameters))

    typer.echo(str(result))
    for issue in result.issues:
        typer.echo(f"    Guidance: {issue.guidance}")

    if result.has_errors:
        raise typer.Exit(1)


@app.command()
def show(
    analysis_file: Annotated[
        Path,
        typer.Argument(
            help="Analysis JSON saved by 'pywelltest fit -o'",
            exists=True,
        )
    ],
) -> None:
    """Print a summary of a saved analysis."""
    from ..export.json_export import load_analysis

    try:
        state = load_analysis(analysis_file)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Analysis: {state.name or analysis_file.stem}")
    typer.echo(f"  Model: {state.model_id}")
    typer.echo(f"  Derivative weight: {state.derivative_weight}")
    if state.data is not None:
        typer.echo(f"  Samples: {state.data.n_samples}")
    for param in state.parameters:
        flag = "" if param.fit else " (fixed)"
        typer.echo(f"  {param.name}: {param.value:.6g}{flag}")
    if state.fit_summary:
        typer.echo(f"  Status: {state.fit_summary.get('status')}")
        typer.echo(f"  Error: {state.fit_summary.get('error')}")
    if state.quality:
        typer.echo(f"  Grade: {state.quality.get('quality_grade')}")
