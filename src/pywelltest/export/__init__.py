"""Persistence of well-test analyses."""

from .json_export import AnalysisState, load_analysis, save_analysis

__all__ = ["AnalysisState", "load_analysis", "save_analysis"]
