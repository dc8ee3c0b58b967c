"""
Stochastic Volatility Inspired (SVI) smile template.

The raw SVI parameterization (Gatheral, 2004) gives total implied
variance as a function of log-moneyness k = ln(K/F):

    w(k) = a + b * (rho * (k - m) + sqrt((k - m)^2 + sigma^2))

    a     = overall variance level
    b     = slope of the wings
    rho   = rotation / skew (-1 < rho < 1)
    m     = translation (shifts the minimum)
    sigma = curvature / ATM smile

Here it only serves as a source of realistic strike observations for the
CLI demo and the tests; smiles themselves are always splined from nodes.

References:
    Gatheral, J. (2004). A parsimonious arbitrage-free implied volatility
    parameterization with application to the valuation of volatility derivatives.
"""

from typing import Dict, List, Optional

import numpy as np

from . import config
from .smile import QuoteKind, StrikePairObservation


def svi_total_variance(k: np.ndarray, a: float, b: float, rho: float,
                       m: float, sigma: float) -> np.ndarray:
    """
    Compute SVI total implied variance w(k).

    Parameters
    ----------
    k : log-moneyness array, k = ln(K/F)
    a, b, rho, m, sigma : SVI parameters

    Returns
    -------
    np.ndarray : total implied variance w(k) = sigma_BS^2 * T
    """
    return a + b * (rho * (k - m) + np.sqrt((k - m)**2 + sigma**2))


def svi_implied_vol(k: np.ndarray, T: float, a: float, b: float,
                    rho: float, m: float, sigma: float) -> np.ndarray:
    """
    Convert SVI total variance to implied volatility, sqrt(w(k) / T).

    Returns NaN for any negative total variance (arbitrage violation).
    """
    w = svi_total_variance(k, a, b, rho, m, sigma)
    w = np.where(w > 0, w, np.nan)
    return np.sqrt(w / T)


def default_strikes(F: float) -> np.ndarray:
    """Strike ladder with config.SVI_STRIKE_STEP spacing over F * (1 +/- SVI_STRIKE_WIDTH)."""
    step = config.SVI_STRIKE_STEP
    lo = np.ceil(F * (1 - config.SVI_STRIKE_WIDTH) / step) * step
    hi = np.floor(F * (1 + config.SVI_STRIKE_WIDTH) / step) * step
    return np.arange(lo, hi + step / 2, step)


def svi_smile_observations(
    F: float,
    dT: float,
    strikes: Optional[np.ndarray] = None,
    params: Optional[Dict] = None,
    noise_std: float = 0.0,
    seed: Optional[int] = None,
) -> List[StrikePairObservation]:
    """
    Volatility observations along an SVI smile.

    Parameters
    ----------
    F : underlying price
    dT : time to expiry (years)
    strikes : strike ladder (default: default_strikes(F))
    params : raw SVI parameters (default: config.SVI_PARAMS)
    noise_std : vol noise added per strike (real quotes are never perfectly smooth)
    seed : random seed for the noise (default: config.SEED)

    Returns
    -------
    list of StrikePairObservation : put and call both carry the vol
    """
    if strikes is None:
        strikes = default_strikes(F)
    if params is None:
        params = config.SVI_PARAMS
    strikes = np.asarray(strikes, dtype=float)

    k = np.log(strikes / F)
    ivs = svi_implied_vol(k, dT, **params)
    if noise_std > 0:
        np.random.seed(config.SEED if seed is None else seed)
        ivs = ivs + np.random.normal(0, noise_std, size=ivs.shape)

    return [
        StrikePairObservation(strike=float(K), put=float(iv), call=float(iv), kind=QuoteKind.VOLATILITY)
        for K, iv in zip(strikes, ivs)
    ]
