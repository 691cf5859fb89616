"""Well-test derivative analysis and Levenberg-Marquardt model fitting."""

__version__ = "0.1.0"
