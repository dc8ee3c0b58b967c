"""
Interpolating curves: the building block for smiles and position profiles.

A smile maps strike -> implied vol; a position profile maps underlying
price -> book value. Both are represented by the same small family of
scalar functions:

    ConstantCurve          flat value, zero derivative
    NaturalCubicSpline     S'' = 0 at both end knots
    NotAKnotCubicSpline    S''' continuous across the 2nd and 2nd-to-last knots

The splines are solved with scipy's CubicSpline, which sets up the usual
tridiagonal system for the knot slopes and hands it to a banded LAPACK
solver. The derivative of a spline is not obtained by differencing: it is
the piecewise-quadratic polynomial taken algebraically from the same
coefficients (PPoly.derivative), built once at construction time, so it
is deterministic and reproducible bar after bar.

Evaluation finds the enclosing segment by binary search (searchsorted
inside PPoly): O(log n) per query, O(n) to build. Outside [x_0, x_n] the
end polynomials are extended; treat far-extrapolated values as unreliable.

Construction failures raise CurveBuildError subclasses. Callers that
prefer a result object over exception control flow use try_build_curve().
"""

import logging
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import CubicSpline, PPoly

from . import config
from .errors import CurveBuildError, DegenerateInputError, InsufficientNodesError

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════
#  CURVE CONTRACT
# ════════════════════════════════════════════════════════════════════════

class Curve(ABC):
    """Scalar function of one variable with an (optional) analytic derivative."""

    kind = "abstract"

    def __init__(self):
        self._derivative = None

    @abstractmethod
    def evaluate(self, x: float) -> float:
        """Value at x. May raise for curves that cannot be evaluated."""

    @abstractmethod
    def _make_derivative(self) -> "Curve":
        pass

    def derivative(self) -> "Curve":
        """First derivative as another Curve. Built once, then cached."""
        if self._derivative is None:
            self._derivative = self._make_derivative()
        return self._derivative

    def try_evaluate(self, x: float) -> Tuple[float, bool]:
        """
        Non-throwing evaluation.

        Returns
        -------
        (value, ok) : ok is False when the curve cannot produce a finite
                      number at x; value is NaN in that case.
        """
        try:
            y = self.evaluate(x)
        except (ArithmeticError, ValueError, IndexError):
            return np.nan, False
        if not np.isfinite(y):
            return np.nan, False
        return y, True

    def horizontal_shift(self, dx: float) -> "Curve":
        """Curve g(x) = f(x - dx): the whole graph moves right by dx."""
        if dx == 0:
            return self
        return ShiftedCurve(self, dx=dx)

    def vertical_shift(self, dy: float) -> "Curve":
        """Curve g(x) = f(x) + dy."""
        if dy == 0:
            return self
        return ShiftedCurve(self, dy=dy)

    def __call__(self, x: float) -> float:
        return self.evaluate(x)


class ConstantCurve(Curve):
    """Flat curve. Its derivative is ConstantCurve(0)."""

    kind = "constant"
    min_nodes = config.MIN_NODES_CONSTANT

    def __init__(self, value: float):
        super().__init__()
        self.value = float(value)

    def evaluate(self, x: float) -> float:
        return self.value

    def _make_derivative(self) -> Curve:
        return ConstantCurve(0.0)

    def vertical_shift(self, dy: float) -> Curve:
        return ConstantCurve(self.value + dy)

    def horizontal_shift(self, dx: float) -> Curve:
        return self

    def __repr__(self):
        return f"ConstantCurve({self.value!r})"


class PiecewisePolynomialCurve(Curve):
    """
    Curve backed by a scipy PPoly.

    Used directly for spline derivatives (piecewise quadratic, then
    linear, ...) and as the base of the cubic spline variants.
    """

    kind = "piecewise-polynomial"

    def __init__(self, ppoly: PPoly):
        super().__init__()
        self._ppoly = ppoly

    @property
    def knots(self) -> np.ndarray:
        return self._ppoly.x

    @property
    def coefficients(self) -> np.ndarray:
        """Local polynomial coefficients, highest power first (PPoly layout)."""
        return self._ppoly.c

    @property
    def domain(self) -> Tuple[float, float]:
        return float(self._ppoly.x[0]), float(self._ppoly.x[-1])

    def evaluate(self, x: float) -> float:
        return float(self._ppoly(x))

    def evaluate_many(self, xs) -> np.ndarray:
        return self._ppoly(np.asarray(xs, dtype=float))

    def _make_derivative(self) -> Curve:
        return PiecewisePolynomialCurve(self._ppoly.derivative())


class ShiftedCurve(Curve):
    """f(x - dx) + dy over some base curve. Derivative keeps dx, drops dy."""

    kind = "shifted"

    def __init__(self, base: Curve, dx: float = 0.0, dy: float = 0.0):
        super().__init__()
        # collapse nested shifts so repeated probing doesn't stack wrappers
        if isinstance(base, ShiftedCurve):
            dx += base.dx
            dy += base.dy
            base = base.base
        self.base = base
        self.dx = float(dx)
        self.dy = float(dy)

    def evaluate(self, x: float) -> float:
        return self.base.evaluate(x - self.dx) + self.dy

    def try_evaluate(self, x: float) -> Tuple[float, bool]:
        y, ok = self.base.try_evaluate(x - self.dx)
        if not ok:
            return np.nan, False
        return y + self.dy, True

    def _make_derivative(self) -> Curve:
        return self.base.derivative().horizontal_shift(self.dx)

    def __repr__(self):
        return f"ShiftedCurve({self.base!r}, dx={self.dx!r}, dy={self.dy!r})"


# ════════════════════════════════════════════════════════════════════════
#  CUBIC SPLINES
# ════════════════════════════════════════════════════════════════════════

def _validated_nodes(xs: Sequence[float], ys: Sequence[float],
                     min_nodes: int, method: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sort nodes by x and reject anything the spline system can't handle.

    Raises
    ------
    InsufficientNodesError : fewer than min_nodes
    DegenerateInputError   : non-finite values or knots closer than
                             config.X_TOLERANCE (relative to the x scale)
    """
    x = np.asarray(xs, dtype=float).ravel()
    y = np.asarray(ys, dtype=float).ravel()
    if x.shape != y.shape:
        raise ValueError(f"xs and ys must have the same length: {x.size} != {y.size}")

    n = x.size
    if n < min_nodes:
        raise InsufficientNodesError(
            f"{method} needs at least {min_nodes} nodes, got {n}",
            method=method, n_nodes=n)

    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise DegenerateInputError(
            f"{method}: nodes contain NaN or infinite values",
            method=method, n_nodes=n)

    order = np.argsort(x, kind="mergesort")
    x, y = x[order], y[order]

    # h_i = x_{i+1} - x_i sits in a denominator of the slope system
    scale = max(1.0, float(np.max(np.abs(x))))
    h = np.diff(x)
    if np.any(h <= config.X_TOLERANCE * scale):
        i = int(np.argmin(h))
        raise DegenerateInputError(
            f"{method}: knots {x[i]!r} and {x[i + 1]!r} coincide",
            method=method, n_nodes=n)
    return x, y


class CubicSplineCurve(PiecewisePolynomialCurve):
    """Common part of the natural and not-a-knot splines."""

    kind = "cubic-spline"
    bc_type = None
    min_nodes = config.MIN_NODES_SPLINE

    def __init__(self, xs: Sequence[float], ys: Sequence[float]):
        x, y = _validated_nodes(xs, ys, self.min_nodes, self.kind)
        try:
            spline = CubicSpline(x, y, bc_type=self.bc_type, extrapolate=True)
        except (ValueError, np.linalg.LinAlgError) as exc:
            raise DegenerateInputError(
                f"{self.kind}: spline system could not be solved ({exc})",
                method=self.kind, n_nodes=x.size) from exc

        if not np.all(np.isfinite(spline.c)):
            raise DegenerateInputError(
                f"{self.kind}: ill-conditioned system produced non-finite coefficients",
                method=self.kind, n_nodes=x.size)

        super().__init__(spline)
        self._nodes_x = x
        self._nodes_y = y
        # analytic derivative, same coefficients, built up front
        self._derivative = PiecewisePolynomialCurve(spline.derivative())

    @property
    def nodes(self) -> Tuple[np.ndarray, np.ndarray]:
        """Sorted (x, y) node arrays the spline interpolates."""
        return self._nodes_x.copy(), self._nodes_y.copy()

    def __len__(self):
        return self._nodes_x.size

    def __repr__(self):
        lo, hi = self.domain
        return f"{type(self).__name__}(n={len(self)}, domain=[{lo:g}, {hi:g}])"


class NaturalCubicSpline(CubicSplineCurve):
    """Cubic spline with zero curvature at both end knots."""

    kind = "natural"
    bc_type = "natural"


class NotAKnotCubicSpline(CubicSplineCurve):
    """
    Cubic spline with the not-a-knot end condition.

    The first two and last two segments share one cubic each, so nothing
    is imposed on the curvature at the ends. This is the default for
    smiles: exchange smiles rarely flatten out at the outermost strikes.
    """

    kind = "not-a-knot"
    bc_type = "not-a-knot"


# ════════════════════════════════════════════════════════════════════════
#  BUILDERS
# ════════════════════════════════════════════════════════════════════════

SPLINE_CLASSES = {
    NaturalCubicSpline.kind: NaturalCubicSpline,
    NotAKnotCubicSpline.kind: NotAKnotCubicSpline,
}

CURVE_METHODS = ("constant",) + tuple(SPLINE_CLASSES)


class BuildResult(NamedTuple):
    """Outcome of try_build_curve: exactly one of curve / error is set."""

    curve: Optional[Curve]
    error: Optional[CurveBuildError]

    @property
    def ok(self) -> bool:
        return self.curve is not None


def build_curve(xs: Sequence[float], ys: Sequence[float], method: str = None) -> Curve:
    """
    Build a curve through the given nodes.

    Parameters
    ----------
    xs, ys : node coordinates (sorted internally)
    method : "constant", "natural" or "not-a-knot"
             (default: config.DEFAULT_SPLINE_METHOD)

    Returns
    -------
    Curve

    Raises
    ------
    InsufficientNodesError, DegenerateInputError
    ValueError : unknown method or mismatched lengths
    """
    if method is None:
        method = config.DEFAULT_SPLINE_METHOD
    method = method.lower().replace("_", "-")

    if method == "constant":
        # the flat level is the mean of the node values
        x, y = _validated_nodes(xs, ys, ConstantCurve.min_nodes, "constant")
        return ConstantCurve(float(np.mean(y)))

    try:
        cls = SPLINE_CLASSES[method]
    except KeyError:
        raise ValueError(f"Unknown curve method: {method}. "
                         f"Available: {', '.join(CURVE_METHODS)}") from None
    return cls(xs, ys)


def try_build_curve(xs: Sequence[float], ys: Sequence[float], method: str = None) -> BuildResult:
    """Same as build_curve, but construction failures come back as a value."""
    try:
        return BuildResult(build_curve(xs, ys, method), None)
    except CurveBuildError as exc:
        logger.debug("curve build failed: %s", exc)
        return BuildResult(None, exc)
