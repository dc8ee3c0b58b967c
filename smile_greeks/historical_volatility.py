"""
Incremental historical volatility on a bounded window of log-prices.

Each new close is appended as (timestamp, ln(price)). The estimate walks
back from the newest sample and collects the last `period` log-returns
whose time gap equals the bar length (any gap when use_all_data is set),
so returns across session breaks or missing bars are skipped:

    var   = sum(r^2) / n - (sum(r) / n)^2
    sigma = sqrt(max(var, 0)) * annualizing_multiplier

Afterwards the window is pruned from the front down to the oldest sample
that was used, and capped at period + 1 samples. A return skipped for its
gap still takes up room, so a series whose spacing never matches the bar
length stays bounded and keeps yielding NaN.

The default multiplier 452 ~ sqrt(252 * 810): daily sessions of 810
one-minute bars.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from . import config
from .cache import Cache, series_key
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class TrackerState(Enum):
    EMPTY = "empty"
    FILLING = "filling"
    READY = "ready"


def estimate_hv(
    window: Deque[Tuple[object, float]],
    period: int,
    bar_length_seconds: int,
    annualizing_multiplier: float,
    use_all_data: bool = False,
) -> float:
    """
    Annualized volatility from the tail of a (timestamp, log-price) window.

    Prunes `window` in place. Returns NaN when fewer than `period`
    qualifying returns are available.

    Parameters
    ----------
    window : chronologically ordered (timestamp, ln(price)) samples
    period : number of log-returns to use
    bar_length_seconds : expected gap between consecutive samples
    annualizing_multiplier : sigma per bar -> sigma per year
    use_all_data : count every return regardless of its gap

    Returns
    -------
    float : annualized sigma (a fraction, not percent)
    """
    if bar_length_seconds <= 0:
        raise ConfigurationError(f"bar length must be positive, got {bar_length_seconds}")
    if len(window) <= period:
        return np.nan

    samples = list(window)
    count, total, total2 = 0, 0.0, 0.0
    i = len(samples) - 1
    while count < period and i > 0:
        t, ln = samples[i]
        prev_t, prev_ln = samples[i - 1]
        if use_all_data or int((t - prev_t).total_seconds()) == bar_length_seconds:
            r = ln - prev_ln
            total += r
            total2 += r * r
            count += 1
        i -= 1

    # samples[i] is the oldest one still needed
    for _ in range(i):
        window.popleft()
    while len(window) > period + 1:
        window.popleft()

    if count < period:
        return np.nan

    variance = total2 / count - (total / count) ** 2
    sigma = np.sqrt(variance) if variance > 0 else 0.0
    return sigma * annualizing_multiplier


@dataclass
class HvState:
    """What the tracker keeps between bars; this object is what gets cached."""

    window: Deque[Tuple[object, float]] = field(default_factory=deque)
    sigmas: Dict[object, float] = field(default_factory=dict)
    last_timestamp: Optional[object] = None


class HistoricalVolatilityTracker:
    """
    Per-instrument HV estimator fed one close at a time.

    Parameters
    ----------
    symbol : instrument name, part of the cache key
    bar_length_seconds : expected spacing of the closes
    period : number of log-returns in the estimate
    annualizing_multiplier : sigma per bar -> sigma per year
    use_all_data : ignore the spacing check

    Raises
    ------
    ConfigurationError : bar length <= 0, period < config.HV_MIN_PERIOD or
                         non-positive multiplier
    """

    def __init__(
        self,
        symbol: str,
        bar_length_seconds: int,
        period: int = config.HV_PERIOD,
        annualizing_multiplier: float = config.HV_ANNUALIZING_MULTIPLIER,
        use_all_data: bool = False,
    ):
        if bar_length_seconds is None or bar_length_seconds <= 0:
            raise ConfigurationError(f"bar length must be positive, got {bar_length_seconds}")
        if period < config.HV_MIN_PERIOD:
            raise ConfigurationError(f"period must be at least {config.HV_MIN_PERIOD}, got {period}")
        if not (np.isfinite(annualizing_multiplier) and annualizing_multiplier > 0):
            raise ConfigurationError(f"annualizing multiplier must be positive, got {annualizing_multiplier}")

        self.symbol = symbol
        self.bar_length_seconds = int(bar_length_seconds)
        self.period = int(period)
        self.annualizing_multiplier = float(annualizing_multiplier)
        self.use_all_data = bool(use_all_data)
        self._hv = HvState()

    @property
    def cache_key(self) -> str:
        return series_key(
            "HV_hvSigmas", self.symbol, f"All-{self.use_all_data}",
            self.bar_length_seconds, f"{self.annualizing_multiplier:E}",
        )

    @property
    def state(self) -> TrackerState:
        if not self._hv.window:
            return TrackerState.EMPTY
        last = self._hv.sigmas.get(self._hv.last_timestamp, np.nan)
        return TrackerState.READY if np.isfinite(last) else TrackerState.FILLING

    @property
    def window_size(self) -> int:
        return len(self._hv.window)

    @property
    def sigmas(self) -> Dict[object, float]:
        """Copy of the per-timestamp estimates recorded so far."""
        return dict(self._hv.sigmas)

    def update(self, timestamp, price: float, cache: Cache = None) -> float:
        """
        Feed one close and return the annualized HV at that bar.

        A timestamp at or before the last one seen changes nothing and
        returns the value already recorded for it (NaN if none). A
        non-positive or non-finite price is a technical bar: NaN, window
        untouched.
        """
        if cache is not None:
            loaded = cache.load(self.cache_key)
            if isinstance(loaded, HvState):
                self._hv = loaded

        hv = self._hv
        if hv.last_timestamp is not None and timestamp <= hv.last_timestamp:
            return hv.sigmas.get(timestamp, np.nan)

        if price is None or not np.isfinite(price) or price <= 0:
            logger.debug("%s: skipping technical bar at %s (price=%r)", self.symbol, timestamp, price)
            return np.nan

        hv.window.append((timestamp, float(np.log(price))))
        hv.last_timestamp = timestamp
        sigma = estimate_hv(hv.window, self.period, self.bar_length_seconds,
                            self.annualizing_multiplier, self.use_all_data)
        hv.sigmas[timestamp] = sigma

        if cache is not None:
            cache.store(self.cache_key, hv)
        return sigma

    def reset(self, cache: Cache = None):
        """Drop the window and the recorded estimates (in the cache too, if given)."""
        self._hv = HvState()
        if cache is not None:
            cache.store(self.cache_key, self._hv)

    def __repr__(self):
        return (f"HistoricalVolatilityTracker({self.symbol!r}, bar={self.bar_length_seconds}s, "
                f"period={self.period}, state={self.state.value})")


def infer_bar_length(index: pd.DatetimeIndex) -> int:
    """Median spacing of a DatetimeIndex in whole seconds."""
    if len(index) < 2:
        raise ValueError("need at least two timestamps to infer the bar length")
    return int(pd.Series(index).diff().dropna().median().total_seconds())


def hv_series(
    closes: pd.Series,
    bar_length_seconds: int = None,
    period: int = config.HV_PERIOD,
    annualizing_multiplier: float = config.HV_ANNUALIZING_MULTIPLIER,
    use_all_data: bool = False,
    symbol: str = None,
) -> pd.Series:
    """
    Run a fresh tracker over a close-price series.

    Parameters
    ----------
    closes : prices indexed by a DatetimeIndex
    bar_length_seconds : bar spacing (default: inferred from the index)

    Returns
    -------
    pd.Series : HV per bar, NaN while the window is filling
    """
    if not isinstance(closes.index, pd.DatetimeIndex):
        raise ValueError("closes must be indexed by a DatetimeIndex")
    if bar_length_seconds is None:
        bar_length_seconds = infer_bar_length(closes.index)

    tracker = HistoricalVolatilityTracker(
        symbol or str(closes.name or "series"), bar_length_seconds,
        period, annualizing_multiplier, use_all_data,
    )
    values = [tracker.update(t, p) for t, p in closes.items()]
    return pd.Series(values, index=closes.index, name="hv")
