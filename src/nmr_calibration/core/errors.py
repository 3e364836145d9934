class CalibrationError(Exception):
    """Base class for calibration analysis errors."""


class InvalidParameterError(CalibrationError, ValueError):
    """Malformed input shape, mismatched dimensions or bad configuration."""


class NonConvergenceError(CalibrationError, RuntimeError):
    """
    Solver exhausted its evaluation budget.

    The best-found fit is attached so callers can still inspect it.
    """

    def __init__(self, message: str, fit=None):
        super().__init__(message)
        self.fit = fit


class DegenerateFitError(CalibrationError, RuntimeError):
    """Fitted values make a derived metric undefined, e.g. coincident peaks."""
