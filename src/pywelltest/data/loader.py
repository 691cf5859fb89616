"""Loading observed well-test data from delimited text files."""

import io
import logging
from pathlib import Path

import numpy as np
import pandas as pd

from ..core.derivative import DEFAULT_SMOOTHING
from .observed import ObservedData, PressureMode

logger = logging.getLogger(__name__)

# Fields are separated by commas, tabs or runs of spaces
FIELD_SEPARATOR = r"[,\s]+"

ColumnSelector = int | str


def read_table(filepath: Path | str, skip_rows: int = 0, header: bool = False) -> pd.DataFrame:
    """Read a delimited text file into a DataFrame.

    Lines are stripped and blank lines ignored before parsing. Rows with more
    fields than the first data row are skipped.

    Args:
        filepath: Path to .txt/.csv/.dat file
        skip_rows: Leading non-blank lines to skip
        header: Use the first line after the skipped rows as column names

    Returns:
        DataFrame of raw string/number fields
    """
    filepath = Path(filepath)
    with open(filepath, encoding="utf-8", errors="replace") as f:
        lines = [line.strip() for line in f]
    lines = [line for line in lines if line][skip_rows:]

    if not lines:
        return pd.DataFrame()

    return pd.read_csv(
        io.StringIO("\n".join(lines)),
        sep=FIELD_SEPARATOR,
        engine="python",
        header=0 if header else None,
        on_bad_lines="skip",
        dtype=str,
    )


def _column(df: pd.DataFrame, selector: ColumnSelector, role: str) -> np.ndarray:
    """Extract a numeric column by index or name."""
    if isinstance(selector, str):
        if selector not in df.columns:
            raise ValueError(
                f"{role} column '{selector}' not found. Available: {', '.join(map(str, df.columns))}"
            )
        series = df[selector]
    else:
        if not 0 <= selector < df.shape[1]:
            raise ValueError(f"{role} column index {selector} out of range (file has {df.shape[1]} columns)")
        series = df.iloc[:, selector]
    return pd.to_numeric(series, errors="coerce").to_numpy(dtype=float)


def load_columns(
    filepath: Path | str,
    time_column: ColumnSelector = 0,
    pressure_column: ColumnSelector = 1,
    derivative_column: ColumnSelector | None = None,
    skip_rows: int = 0,
) -> tuple[np.ndarray, np.ndarray, np.ndarray | None]:
    """Read the raw time, pressure and derivative columns of a file.

    Columns are selected by 0-based index or, when a header row is present,
    by name. When any column is selected by name the last skipped row is
    used as the header, so skip_rows must be at least 1. Fields that are not
    numbers come back as NaN.

    Args:
        filepath: Path to the data file
        time_column: Time column selector
        pressure_column: Pressure column selector
        derivative_column: Derivative column selector, or None
        skip_rows: Leading rows to skip (including any header row)

    Returns:
        Tuple of (time, pressure, derivative or None) arrays

    Raises:
        ValueError: If a column cannot be found or the file has no data
    """
    selectors = [time_column, pressure_column, derivative_column]
    named = any(isinstance(s, str) for s in selectors)
    if named and skip_rows < 1:
        raise ValueError("Selecting columns by name requires a header row (skip_rows >= 1)")

    if named:
        df = read_table(filepath, skip_rows=skip_rows - 1, header=True)
    else:
        df = read_table(filepath, skip_rows=skip_rows)

    if df.empty:
        raise ValueError(f"No data rows found in {filepath}")

    t = _column(df, time_column, "Time")
    p = _column(df, pressure_column, "Pressure")
    d = _column(df, derivative_column, "Derivative") if derivative_column is not None else None
    return t, p, d


def load_observed(
    filepath: Path | str,
    time_column: ColumnSelector = 0,
    pressure_column: ColumnSelector = 1,
    derivative_column: ColumnSelector | None = None,
    skip_rows: int = 0,
    pressure_mode: PressureMode = "raw",
    smoothing: float = DEFAULT_SMOOTHING,
) -> ObservedData:
    """Load and clean observed data from a file.

    Args:
        filepath: Path to the data file
        time_column: Time column selector
        pressure_column: Pressure column selector
        derivative_column: Derivative column selector, None to compute
        skip_rows: Leading rows to skip (including any header row)
        pressure_mode: "raw" (|P - Pi|) or "differential"
        smoothing: Bourdet window used when no derivative column is given

    Returns:
        Cleaned ObservedData

    Raises:
        ValueError: If a column cannot be found or the file has no data
    """
    t, p, d = load_columns(filepath, time_column, pressure_column, derivative_column, skip_rows)
    data = ObservedData.from_arrays(t, p, d, pressure_mode=pressure_mode, smoothing=smoothing)
    logger.info(
        f"Loaded {data.n_samples} samples from {filepath} "
        f"(derivative: {data.derivative_source}, dropped {data.dropped_rows})"
    )
    return data
