"""Observed data ingestion."""

from .observed import ObservedData
from .loader import load_columns, load_observed, read_table

__all__ = [
    "ObservedData",
    "load_columns",
    "load_observed",
    "read_table",
]
