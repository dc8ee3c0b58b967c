"""
Numerical greeks by finite differences of the position value.

Every estimator revalues the book under a perturbed market and
differences the results; no closed-form greek is used anywhere. The
smile's response to each perturbation is delegated to the evolution
policy (smile.actual_smile / raised_smile / smile_at_time).

    delta   (V(F + dF/2) - V(F - dF/2)) / dF
    gamma   (delta(F + dF) - delta(F - dF)) / (2 dF)
    theta   -(V(dT + h) - V(dT - h)) / 2h, rescaled to a per-day figure
    vega    (V(sigma + ds) - V(sigma)) / ds / 100
    vomma   (V(sigma) - 2 V(sigma + ds) + V(sigma + 2 ds)) / ds^2 / 100^2

Vega and vomma are per vol point (per vol point squared). Under
FROZEN_SMILE a vol bump leaves the smile where it is, so both are zero.

All estimators return NaN instead of raising when the inputs are out of
domain: no smile or book, F <= 0, dT <= 0, or a strike without a usable
vol. Steps go through clamp_step() before use.
"""

from enum import Enum

import numpy as np

from . import config
from .curves import Curve
from .profile import PositionBook, position_value
from .smile import SmileEvolution, SmileSnapshot, actual_smile, raised_smile, smile_at_time
from .time_measure import TimeMeasure, rescale_theta_to_days


class Greek(Enum):
    DELTA = "delta"
    GAMMA = "gamma"
    THETA = "theta"
    VEGA = "vega"
    VOMMA = "vomma"


def clamp_step(step: float, floor: float) -> float:
    """max(step, floor) for a positive finite step, otherwise floor."""
    if step is None or not np.isfinite(step) or step <= 0:
        return floor
    return max(step, floor)


def _market(smile, F, dT):
    """Fill F and dT from the smile when not given; None when out of domain."""
    if smile is None:
        return None
    if F is None:
        F = smile.underlying_price
    if dT is None:
        dT = smile.time_to_expiry
    if not (np.isfinite(F) and F > 0 and np.isfinite(dT) and dT > 0):
        return None
    return F, dT


def _value_at(book, smile, policy, F, dT):
    return position_value(book, actual_smile(smile, policy, F), F, dT)


# ════════════════════════════════════════════════════════════════════════
#  PRICE GREEKS
# ════════════════════════════════════════════════════════════════════════

def estimate_delta(
    book: PositionBook,
    smile: SmileSnapshot,
    policy: SmileEvolution,
    F: float = None,
    dF: float = config.DEFAULT_PRICE_STEP,
    dT: float = None,
) -> float:
    """
    Central-difference delta over a step of dF.

    Parameters
    ----------
    book : positions to value
    smile : current smile
    policy : smile evolution rule
    F : underlying price (default: the smile's)
    dF : full width of the difference, split evenly around F
    dT : time to expiry in years (default: the smile's)

    Returns
    -------
    float : delta, or NaN when out of domain
    """
    market = _market(smile, F, dT)
    if market is None or book is None:
        return np.nan
    F, dT = market
    dF = clamp_step(dF, config.MIN_PRICE_STEP)

    f_lo, f_hi = F - dF / 2, F + dF / 2
    if f_lo <= 0:
        return np.nan
    v_lo = _value_at(book, smile, policy, f_lo, dT)
    v_hi = _value_at(book, smile, policy, f_hi, dT)
    return (v_hi - v_lo) / dF


def estimate_gamma(
    book: PositionBook,
    smile: SmileSnapshot,
    policy: SmileEvolution,
    F: float = None,
    dF: float = config.DEFAULT_PRICE_STEP,
    dT: float = None,
) -> float:
    """Central difference of estimate_delta at F +/- dF."""
    market = _market(smile, F, dT)
    if market is None or book is None:
        return np.nan
    F, dT = market
    dF = clamp_step(dF, config.MIN_PRICE_STEP)

    delta_lo = estimate_delta(book, smile, policy, F - dF, dF, dT)
    delta_hi = estimate_delta(book, smile, policy, F + dF, dF, dT)
    return (delta_hi - delta_lo) / (2 * dF)


def delta_on_curve(curve: Curve, F: float, dF: float = config.DEFAULT_PRICE_STEP) -> float:
    """Central-difference slope of any curve at F, e.g. a sampled payoff."""
    if curve is None or not (np.isfinite(F) and F > 0):
        return np.nan
    dF = clamp_step(dF, config.MIN_PRICE_STEP)
    v_lo, ok_lo = curve.try_evaluate(F - dF / 2)
    v_hi, ok_hi = curve.try_evaluate(F + dF / 2)
    if not (ok_lo and ok_hi):
        return np.nan
    return (v_hi - v_lo) / dF


def gamma_on_curve(curve: Curve, F: float, dF: float = config.DEFAULT_PRICE_STEP) -> float:
    """Central difference of delta_on_curve at F +/- dF."""
    if curve is None or not (np.isfinite(F) and F > 0):
        return np.nan
    dF = clamp_step(dF, config.MIN_PRICE_STEP)
    return (delta_on_curve(curve, F + dF, dF) - delta_on_curve(curve, F - dF, dF)) / (2 * dF)


# ── frozen read-outs from profiles ──────────────────────────────────────

def value_at_f(profile: SmileSnapshot) -> float:
    """Profile's value curve at its own F."""
    if profile is None or not profile.has_valid_domain:
        return np.nan
    value, _ = profile.value_curve.try_evaluate(profile.underlying_price)
    return value


def delta_from_profile(profile: SmileSnapshot) -> float:
    """Slope of a value profile at its F, read from the analytic derivative."""
    if profile is None or not profile.has_valid_domain:
        return np.nan
    value, _ = profile.derivative_curve.try_evaluate(profile.underlying_price)
    return value


def gamma_from_profile(profile: SmileSnapshot) -> float:
    """Gamma read from a gamma profile (see profile.derive_profile)."""
    return value_at_f(profile)


# ════════════════════════════════════════════════════════════════════════
#  TIME
# ════════════════════════════════════════════════════════════════════════

def estimate_theta(
    book: PositionBook,
    smile: SmileSnapshot,
    policy: SmileEvolution,
    F: float = None,
    dT: float = None,
    t_step: float = config.DEFAULT_T_STEP,
    measure: TimeMeasure = TimeMeasure.PLAIN_CALENDAR,
) -> float:
    """
    Theta as value change per day of the chosen time measure.

    The raw derivative is taken in years of dT and carries the
    calendar-time sign (time passing shrinks dT). Close to expiry, where
    dT - t_step is no longer positive, the near point moves to dT / 2.

    Parameters
    ----------
    t_step : half-width of the difference in years, floored at
             config.MIN_T_STEP
    measure : convention for the per-day rescale
    """
    market = _market(smile, F, dT)
    if market is None or book is None:
        return np.nan
    F, dT = market
    t_step = clamp_step(t_step, config.MIN_T_STEP)

    t1 = dT - t_step
    if t1 <= config.MIN_T_STEP:
        t1 = 0.5 * dT
    t2 = dT + t_step

    v1 = _value_at(book, smile_at_time(smile, policy, t1), policy, F, t1)
    v2 = _value_at(book, smile_at_time(smile, policy, t2), policy, F, t2)
    raw = -(v2 - v1) / (t2 - t1)
    return rescale_theta_to_days(raw, measure)


# ════════════════════════════════════════════════════════════════════════
#  VOLATILITY
# ════════════════════════════════════════════════════════════════════════

def _values_at_sigma(book, smile, policy, F, dT, bumps):
    base = actual_smile(smile, policy, F)
    return [position_value(book, raised_smile(base, policy, b), F, dT) for b in bumps]


def estimate_vega(
    book: PositionBook,
    smile: SmileSnapshot,
    policy: SmileEvolution,
    F: float = None,
    d_sigma: float = config.DEFAULT_SIGMA_STEP,
    dT: float = None,
) -> float:
    """Forward-difference vega per vol point."""
    market = _market(smile, F, dT)
    if market is None or book is None:
        return np.nan
    F, dT = market
    d_sigma = clamp_step(d_sigma, config.MIN_SIGMA_STEP)

    v0, v1 = _values_at_sigma(book, smile, policy, F, dT, (0.0, d_sigma))
    return (v1 - v0) / d_sigma / config.PCT_MULT


def estimate_vomma(
    book: PositionBook,
    smile: SmileSnapshot,
    policy: SmileEvolution,
    F: float = None,
    d_sigma: float = config.DEFAULT_SIGMA_STEP,
    dT: float = None,
) -> float:
    """
    Forward second difference in the vol level, per vol point squared.

    d_sigma is floored at config.MIN_SIGMA_STEP; below that the three
    values agree to nearly all digits and the difference is noise.
    """
    market = _market(smile, F, dT)
    if market is None or book is None:
        return np.nan
    F, dT = market
    d_sigma = clamp_step(d_sigma, config.MIN_SIGMA_STEP)

    v0, v1, v2 = _values_at_sigma(book, smile, policy, F, dT, (0.0, d_sigma, 2 * d_sigma))
    return (v0 - 2 * v1 + v2) / d_sigma**2 / config.PCT_MULT**2


ESTIMATORS = {
    Greek.DELTA: estimate_delta,
    Greek.GAMMA: estimate_gamma,
    Greek.THETA: estimate_theta,
    Greek.VEGA: estimate_vega,
    Greek.VOMMA: estimate_vomma,
}
