"""
Option pricing and implied volatility inversion.

This is the per-strike valuation primitive behind the position value
V(F): every greek in this package is a finite difference of sums of
these prices, never a closed-form greek.

Conventions follow the exchange's futures-option pricer: the underlying
is a price F, the risk-free rate enters d1/d2 and discounts the strike
leg only, and the put is obtained from put-call parity. With r = 0 this
is plain Black (1976).

References:
    Black, F. (1976). The Pricing of Commodity Contracts.
    Hull, J.C. (2018). Options, Futures, and Other Derivatives. 10th ed.
"""

import numpy as np
from scipy.stats import norm
from scipy.optimize import brentq


# ════════════════════════════════════════════════════════════════════════
#  PRICING
# ════════════════════════════════════════════════════════════════════════

def d1(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    Compute d1.

    Parameters
    ----------
    F : underlying price
    K : strike price
    T : time to expiry in years
    r : risk-free rate (annualized, continuous compounding, NOT percent)
    sigma : volatility (annualized)

    Returns
    -------
    float
    """
    if T <= 0 or sigma <= 0:
        return 0.0
    return (np.log(F / K) + (r + 0.5 * sigma**2) * T) / (sigma * np.sqrt(T))


def d2(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """Compute d2 = d1 - sigma * sqrt(T)."""
    return d1(F, K, T, r, sigma) - sigma * np.sqrt(T)


def call_price(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    Call price: F * N(d1) - K * e^{-rT} * N(d2).

    Returns
    -------
    float : theoretical call price; intrinsic value once expired
    """
    if T <= 0:
        return max(F - K, 0.0)
    if sigma <= 0:
        return max(F - K * np.exp(-r * T), 0.0)

    _d1 = d1(F, K, T, r, sigma)
    _d2 = _d1 - sigma * np.sqrt(T)
    return F * norm.cdf(_d1) - K * np.exp(-r * T) * norm.cdf(_d2)


def put_price(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    Put price via parity: P = C + K * e^{-rT} - F.

    Parity keeps the put and the call of one strike exactly consistent,
    which matters when a book holds both legs and only their sum is
    differenced.
    """
    if T <= 0:
        return max(K - F, 0.0)
    if sigma <= 0:
        return max(K * np.exp(-r * T) - F, 0.0)

    return call_price(F, K, T, r, sigma) + K * np.exp(-r * T) - F


def option_price(F: float, K: float, T: float, r: float, sigma: float,
                 option_type: str = "call") -> float:
    """Dispatch to call_price or put_price based on option_type."""
    if option_type.lower() in ("c", "call"):
        return call_price(F, K, T, r, sigma)
    elif option_type.lower() in ("p", "put"):
        return put_price(F, K, T, r, sigma)
    else:
        raise ValueError(f"Unknown option_type: {option_type}. Use 'call' or 'put'.")


# ════════════════════════════════════════════════════════════════════════
#  IMPLIED VOLATILITY
# ════════════════════════════════════════════════════════════════════════

def implied_vol(
    market_price: float,
    F: float,
    K: float,
    T: float,
    r: float,
    option_type: str = "put",
    vol_lower: float = 1e-4,
    vol_upper: float = 5.0,
    tol: float = 1e-8,
) -> float:
    """
    Compute implied volatility by inverting the pricer with Brent's method.

    Used to turn price quotes into smile nodes. Brent is bracketed and
    never diverges, which matters more than speed when a whole strike
    ladder is inverted every bar.

    Parameters
    ----------
    market_price : observed option price
    F : underlying price
    K : strike
    T : time to expiry (years)
    r : risk-free rate (decimal)
    option_type : "call" or "put"
    vol_lower, vol_upper : vol search bracket
    tol : solver tolerance

    Returns
    -------
    float : implied volatility, or NaN if the price can't be inverted
    """
    if not np.isfinite(market_price) or market_price <= 0 or T <= 0 or F <= 0 or K <= 0:
        return np.nan

    if option_type.lower() in ("c", "call"):
        intrinsic = max(F - K * np.exp(-r * T), 0.0)
    else:
        intrinsic = max(K * np.exp(-r * T) - F, 0.0)

    if market_price < intrinsic * 0.99:
        # below intrinsic: stale quote or bad data
        return np.nan

    def objective(sigma):
        return option_price(F, K, T, r, sigma, option_type) - market_price

    try:
        return brentq(objective, vol_lower, vol_upper, xtol=tol)
    except ValueError:
        # f(a) and f(b) have the same sign: price outside the model range
        return np.nan
    except RuntimeError:
        return np.nan
