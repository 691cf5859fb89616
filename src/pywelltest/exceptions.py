"""Exception types raised by the fitting engine.

Only conditions that prevent a fit from starting, or that a caller of a
low-level component must react to, are exceptions. Everything that happens
inside a running fit is absorbed and reported through the terminal
FitResult status instead.
"""


class FitError(Exception):
    """Base class for fitting engine errors."""


class InsufficientDataError(FitError, ValueError):
    """Raised when fewer samples are available than a fit requires."""

    def __init__(self, n_samples: int, required: int):
        self.n_samples = n_samples
        self.required = required
        super().__init__(
            f"Insufficient data: {n_samples} valid samples, need at least {required}"
        )


class NoFreeParametersError(FitError, ValueError):
    """Raised when a fit is requested but every parameter is held fixed."""


class SingularSystemError(FitError):
    """Raised when the damped normal equations have no finite solution."""
