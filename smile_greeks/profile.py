"""
Position value and position profiles.

V(F) = sum over strikes of  qty_put * put(F, K, dT, sigma(K))
                          + qty_call * call(F, K, dT, sigma(K))
       + qty_underlying * F

where sigma(K) is read from the smile. A "profile" is V sampled on a grid
of underlying prices and splined (not-a-knot) over F, packed into a
SmileSnapshot so that the frozen read-outs in greeks.py work the same way
on profiles as on smiles.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from . import config
from .black_scholes import call_price, put_price
from .curves import CubicSplineCurve, build_curve
from .errors import DegenerateInputError
from .smile import SmileEvolution, SmileSnapshot, actual_smile

logger = logging.getLogger(__name__)

PROFILE_METHOD = "not-a-knot"


@dataclass(frozen=True)
class StrikePosition:
    """Net quantities held at one strike (negative = short)."""

    strike: float
    put_qty: float = 0.0
    call_qty: float = 0.0

    @property
    def is_flat(self) -> bool:
        return self.put_qty == 0 and self.call_qty == 0


@dataclass(frozen=True)
class PositionBook:
    """Option positions of one series plus the underlying (futures) leg."""

    positions: Tuple[StrikePosition, ...] = field(default_factory=tuple)
    underlying_qty: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "positions", tuple(self.positions))

    @property
    def is_empty(self) -> bool:
        return self.underlying_qty == 0 and all(p.is_flat for p in self.positions)

    @property
    def strikes(self) -> np.ndarray:
        return np.array([p.strike for p in self.positions], dtype=float)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, underlying_qty: float = 0.0) -> "PositionBook":
        """Book from a DataFrame with 'strike' and optional 'put_qty' / 'call_qty' columns."""
        if "strike" not in df.columns:
            raise ValueError("DataFrame must have a 'strike' column")
        puts = df["put_qty"] if "put_qty" in df.columns else pd.Series(0.0, index=df.index)
        calls = df["call_qty"] if "call_qty" in df.columns else pd.Series(0.0, index=df.index)
        return cls(
            positions=tuple(
                StrikePosition(float(k), float(p), float(c))
                for k, p, c in zip(df["strike"], puts.fillna(0.0), calls.fillna(0.0))
            ),
            underlying_qty=underlying_qty,
        )


# ════════════════════════════════════════════════════════════════════════
#  POSITION VALUE
# ════════════════════════════════════════════════════════════════════════

def position_value(book: Optional[PositionBook], smile: Optional[SmileSnapshot],
                   F: float, dT: float) -> float:
    """
    Value of the book at underlying price F and time to expiry dT.

    Returns NaN when the book or the smile is missing, when F or dT is
    not positive, or when the smile gives no positive vol at a held
    strike. A partial sum is never returned.
    """
    if book is None or smile is None or book.is_empty:
        return np.nan
    if not (np.isfinite(F) and F > 0 and np.isfinite(dT) and dT > 0):
        return np.nan

    r = smile.risk_free_rate
    total = book.underlying_qty * F
    for pos in book.positions:
        if pos.is_flat:
            continue
        sigma = smile.volatility(pos.strike)
        if not np.isfinite(sigma):
            return np.nan
        if pos.put_qty:
            total += pos.put_qty * put_price(F, pos.strike, dT, r, sigma)
        if pos.call_qty:
            total += pos.call_qty * call_price(F, pos.strike, dT, r, sigma)
    return float(total)


# ════════════════════════════════════════════════════════════════════════
#  PROFILES
# ════════════════════════════════════════════════════════════════════════

def default_f_grid(F: float, n: int = config.PROFILE_POINTS,
                   width: float = config.PROFILE_WIDTH) -> np.ndarray:
    """Evenly spaced grid of n prices over F * (1 +/- width)."""
    if not (np.isfinite(F) and F > 0):
        raise ValueError(f"F must be positive, got {F}")
    if n < 2 or not 0 < width < 1:
        raise ValueError(f"need n >= 2 and 0 < width < 1, got n={n}, width={width}")
    return np.linspace(F * (1 - width), F * (1 + width), n)


def build_position_profile(
    book: PositionBook,
    smile: SmileSnapshot,
    policy: SmileEvolution,
    f_grid: Iterable[float],
    dT: float = None,
) -> SmileSnapshot:
    """
    Sample V over f_grid and spline it.

    Each grid point is valued against actual_smile(smile, policy, f), so
    under SHIFTING_SMILE the smile travels with the underlying. Grid
    points where V is unavailable are dropped before the spline is built.

    Parameters
    ----------
    book : positions to value
    smile : current smile
    policy : smile evolution rule
    f_grid : underlying prices to sample at
    dT : time to expiry (default: the smile's)

    Returns
    -------
    SmileSnapshot : value_curve is V(F), at the smile's F and the given dT

    Raises
    ------
    InsufficientNodesError, DegenerateInputError
    """
    if dT is None:
        dT = smile.time_to_expiry

    grid = np.asarray(list(f_grid), dtype=float)
    fs, vs = [], []
    for f in grid:
        v = position_value(book, actual_smile(smile, policy, f), f, dT)
        if np.isfinite(v):
            fs.append(f)
            vs.append(v)

    if len(fs) < grid.size:
        logger.debug("profile: %d of %d grid points have no value", grid.size - len(fs), grid.size)
    curve = build_curve(fs, vs, PROFILE_METHOD)
    return SmileSnapshot(
        underlying_price=smile.underlying_price,
        time_to_expiry=dT,
        risk_free_rate_pct=smile.risk_free_rate_pct,
        value_curve=curve,
    )


def derive_profile(profile: SmileSnapshot) -> SmileSnapshot:
    """
    Next-order profile: re-spline the derivative of profile over its nodes.

    Applied to a value profile this gives the delta profile; applied to a
    delta profile, the gamma profile.
    """
    curve = profile.value_curve
    if not isinstance(curve, CubicSplineCurve):
        raise DegenerateInputError(
            f"can only derive a splined profile, got {curve.kind}",
            method=PROFILE_METHOD, n_nodes=0)

    xs, _ = curve.nodes
    ys = profile.derivative_curve.evaluate_many(xs)
    return replace(profile, value_curve=build_curve(xs, ys, PROFILE_METHOD), derivative_curve=None)
