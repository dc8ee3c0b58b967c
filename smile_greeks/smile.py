"""
Smile snapshots and the rules for how a smile reacts to a probe.

A SmileSnapshot bundles a curve (strike -> implied vol, or F -> book
value for position profiles) with the market state it was built for:
underlying price F, time to expiry dT and the risk-free rate. Snapshots
are immutable and rebuilt every bar.

When a greek is estimated numerically, F, dT or the vol level is bumped
and the book is revalued. What the smile does under that bump is a
modelling choice, captured by SmileEvolution:

    FROZEN_SMILE    the smile stays where it is in strike space
    SHIFTING_SMILE  the smile translates rigidly with F (sticky moneyness
                    in absolute strike units) and lifts as a whole when
                    the vol level is bumped

Time bumps leave the smile untouched under both policies.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from . import config
from .black_scholes import implied_vol
from .curves import ConstantCurve, Curve, build_curve
from .errors import CurveBuildError, InsufficientNodesError

logger = logging.getLogger(__name__)


class SmileEvolution(Enum):
    """How the smile responds to a perturbation of F or sigma."""

    FROZEN_SMILE = "frozen"
    SHIFTING_SMILE = "shifting"


class QuoteKind(Enum):
    """What the put/call fields of a StrikePairObservation hold."""

    VOLATILITY = "volatility"
    PRICE = "price"


# ════════════════════════════════════════════════════════════════════════
#  DATA MODEL
# ════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SmileSnapshot:
    """
    Curve plus the market state it belongs to.

    derivative_curve defaults to value_curve.derivative(); pass it
    explicitly when the derivative comes from elsewhere (e.g. a shifted
    parent curve).
    """

    underlying_price: float
    time_to_expiry: float
    risk_free_rate_pct: float
    value_curve: Curve
    derivative_curve: Optional[Curve] = field(default=None, compare=False)

    def __post_init__(self):
        if self.derivative_curve is None:
            object.__setattr__(self, "derivative_curve", self.value_curve.derivative())

    @property
    def F(self) -> float:
        return self.underlying_price

    @property
    def dT(self) -> float:
        return self.time_to_expiry

    @property
    def risk_free_rate(self) -> float:
        """Rate as a decimal, ready for the pricer."""
        return self.risk_free_rate_pct / config.PCT_MULT

    @property
    def has_valid_domain(self) -> bool:
        return (np.isfinite(self.underlying_price) and self.underlying_price > 0
                and np.isfinite(self.time_to_expiry) and self.time_to_expiry > 0)

    def volatility(self, strike: float) -> float:
        """Smile vol at strike, NaN when unavailable or non-positive."""
        sigma, ok = self.value_curve.try_evaluate(strike)
        if not ok or sigma <= 0:
            return np.nan
        return sigma


@dataclass(frozen=True)
class StrikePairObservation:
    """One strike of an option series: put and call quote (price or IV)."""

    strike: float
    put: float = np.nan
    call: float = np.nan
    kind: QuoteKind = QuoteKind.VOLATILITY


# ════════════════════════════════════════════════════════════════════════
#  EVOLUTION POLICIES
# ════════════════════════════════════════════════════════════════════════

def actual_smile(smile: SmileSnapshot, policy: SmileEvolution, new_f: float) -> SmileSnapshot:
    """
    The smile as seen after the underlying moves to new_f.

    FROZEN_SMILE returns the snapshot itself. SHIFTING_SMILE returns a
    snapshot at new_f whose curves are the originals moved right by
    new_f - F, so sigma_new(K) = sigma_old(K - dF).
    """
    if policy is SmileEvolution.FROZEN_SMILE:
        return smile
    if policy is SmileEvolution.SHIFTING_SMILE:
        dF = new_f - smile.underlying_price
        return replace(
            smile,
            underlying_price=new_f,
            value_curve=smile.value_curve.horizontal_shift(dF),
            derivative_curve=smile.derivative_curve.horizontal_shift(dF),
        )
    raise NotImplementedError(f"Smile evolution {policy!r} is not implemented")


def raised_smile(smile: SmileSnapshot, policy: SmileEvolution, d_sigma: float) -> SmileSnapshot:
    """
    The smile after the overall vol level moves by d_sigma.

    FROZEN_SMILE ignores the bump. SHIFTING_SMILE lifts the value curve;
    a parallel lift leaves the slope, hence the derivative, unchanged.
    """
    if policy is SmileEvolution.FROZEN_SMILE:
        return smile
    if policy is SmileEvolution.SHIFTING_SMILE:
        return replace(
            smile,
            value_curve=smile.value_curve.vertical_shift(d_sigma),
            derivative_curve=smile.derivative_curve,
        )
    raise NotImplementedError(f"Smile evolution {policy!r} is not implemented")


def smile_at_time(smile: SmileSnapshot, policy: SmileEvolution, new_dt: float) -> SmileSnapshot:
    """The smile after time moves to new_dt. Frozen in time under both policies."""
    if policy not in (SmileEvolution.FROZEN_SMILE, SmileEvolution.SHIFTING_SMILE):
        raise NotImplementedError(f"Smile evolution {policy!r} is not implemented")
    return smile


# ════════════════════════════════════════════════════════════════════════
#  BUILDING SMILES FROM QUOTES
# ════════════════════════════════════════════════════════════════════════

def observation_iv(obs: StrikePairObservation, F: float, dT: float, r: float) -> float:
    """
    Implied vol of one strike: mean of whichever sides are usable.

    Price quotes are inverted first. Returns NaN when neither side gives
    a positive finite vol.
    """
    if obs.kind is QuoteKind.PRICE:
        put_iv = implied_vol(obs.put, F, obs.strike, dT, r, "put")
        call_iv = implied_vol(obs.call, F, obs.strike, dT, r, "call")
    else:
        put_iv, call_iv = obs.put, obs.call

    ivs = [v for v in (put_iv, call_iv) if v is not None and np.isfinite(v) and v > 0]
    if not ivs:
        return np.nan
    return float(np.mean(ivs))


def smile_nodes(observations: Iterable[StrikePairObservation], F: float, dT: float,
                risk_free_rate_pct: float = None):
    """
    Turn strike observations into sorted (strikes, ivs) node arrays.

    Strikes without a usable vol are dropped; a repeated strike keeps
    its first usable observation.
    """
    if risk_free_rate_pct is None:
        risk_free_rate_pct = config.RISK_FREE_RATE_PCT
    r = risk_free_rate_pct / config.PCT_MULT

    nodes = {}
    for obs in observations:
        if not np.isfinite(obs.strike) or obs.strike <= 0 or obs.strike in nodes:
            continue
        iv = observation_iv(obs, F, dT, r)
        if np.isfinite(iv):
            nodes[obs.strike] = iv

    strikes = np.array(sorted(nodes), dtype=float)
    ivs = np.array([nodes[k] for k in strikes], dtype=float)
    return strikes, ivs


def build_smile(
    observations: Sequence[StrikePairObservation],
    F: float,
    dT: float,
    risk_free_rate_pct: float = None,
    method: str = None,
    fallback: bool = True,
) -> SmileSnapshot:
    """
    Build a smile snapshot from one series' strike observations.

    Parameters
    ----------
    observations : strike quotes (vols or prices)
    F : underlying price
    dT : time to expiry (years)
    risk_free_rate_pct : rate in percent (default: config.RISK_FREE_RATE_PCT)
    method : curve method (default: config.DEFAULT_SPLINE_METHOD)
    fallback : if the spline can't be built, fall back to a flat smile at
               the mean node vol instead of raising

    Returns
    -------
    SmileSnapshot

    Raises
    ------
    InsufficientNodesError : no usable observation at all
    CurveBuildError : spline failed and fallback is False
    """
    if risk_free_rate_pct is None:
        risk_free_rate_pct = config.RISK_FREE_RATE_PCT

    strikes, ivs = smile_nodes(observations, F, dT, risk_free_rate_pct)
    if strikes.size == 0:
        raise InsufficientNodesError("no strike with a usable volatility", method=method or "", n_nodes=0)

    try:
        curve = build_curve(strikes, ivs, method)
    except CurveBuildError as exc:
        if not fallback:
            raise
        # lower-order fallback keeps the bar alive with a flat smile;
        # handlers.SmileHandler reports the transition
        logger.debug("smile spline unavailable (%s); using flat smile at %.4f", exc, np.mean(ivs))
        curve = ConstantCurve(float(np.mean(ivs)))

    return SmileSnapshot(
        underlying_price=F,
        time_to_expiry=dT,
        risk_free_rate_pct=risk_free_rate_pct,
        value_curve=curve,
    )


def observations_from_frame(df: pd.DataFrame, kind: QuoteKind = QuoteKind.VOLATILITY) -> List[StrikePairObservation]:
    """
    Convert a DataFrame of quotes into observations.

    Parameters
    ----------
    df : DataFrame with a 'strike' column and optional 'put' / 'call'
         columns (missing columns count as no quote)
    kind : whether put/call hold vols or prices
    """
    if "strike" not in df.columns:
        raise ValueError("DataFrame must have a 'strike' column")

    puts = df["put"] if "put" in df.columns else pd.Series(np.nan, index=df.index)
    calls = df["call"] if "call" in df.columns else pd.Series(np.nan, index=df.index)
    return [
        StrikePairObservation(strike=float(k), put=float(p), call=float(c), kind=kind)
        for k, p, c in zip(df["strike"], puts, calls)
    ]
