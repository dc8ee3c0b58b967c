"""
Exception taxonomy.

Curve construction and configuration problems are exceptions; per-bar
"no value this time" outcomes are NaN results and never reach here.
"""


class SmileGreeksError(Exception):
    """Base class for all errors raised by this package."""


class CurveBuildError(SmileGreeksError, ValueError):
    """A node set cannot support the requested interpolation method."""

    def __init__(self, message: str, method: str = "", n_nodes: int = 0):
        super().__init__(message)
        self.method = method
        self.n_nodes = n_nodes


class InsufficientNodesError(CurveBuildError):
    """Fewer nodes than the interpolation method needs."""


class DegenerateInputError(CurveBuildError):
    """Coinciding or non-finite knots, or an ill-conditioned spline system."""


class ConfigurationError(SmileGreeksError, ValueError):
    """Fatal misconfiguration detected at setup time."""
