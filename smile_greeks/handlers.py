"""
Per-bar handlers: the boundary between the numeric core and a bar loop.

The core returns NaN for "no value this bar" and raises only on
construction problems. Handlers turn everything into a per-bar result
the loop can always store: they validate the domain, catch numerical
failures, log each problem once when it appears (not on every bar), and
keep their output series in an injected cache so a re-run of the same
bar is idempotent.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from . import config
from .cache import Cache, InMemoryCache, series_key
from .errors import CurveBuildError
from .greeks import ESTIMATORS, Greek
from .historical_volatility import HistoricalVolatilityTracker
from .profile import PositionBook, build_position_profile, default_f_grid, derive_profile
from .smile import SmileEvolution, SmileSnapshot, StrikePairObservation, build_smile
from .time_measure import TimeMeasure

logger = logging.getLogger(__name__)

DEFAULT_STEPS = {
    Greek.DELTA: config.DEFAULT_PRICE_STEP,
    Greek.GAMMA: config.DEFAULT_PRICE_STEP,
    Greek.THETA: config.DEFAULT_T_STEP,
    Greek.VEGA: config.DEFAULT_SIGMA_STEP,
    Greek.VOMMA: config.DEFAULT_SIGMA_STEP,
}


class TransitionLog:
    """
    Logs a condition once when it appears, again only after it cleared.

    report() returns True when the message was actually emitted.
    """

    def __init__(self, log: logging.Logger = None):
        self._log = log or logger
        self._active = set()

    def report(self, condition: str, message: str, level: int = logging.WARNING) -> bool:
        if condition in self._active:
            return False
        self._active.add(condition)
        self._log.log(level, message)
        return True

    def clear(self, condition: str = None):
        if condition is None:
            self._active.clear()
        else:
            self._active.discard(condition)

    def is_active(self, condition: str) -> bool:
        return condition in self._active


def _market_problem(smile, F, dT) -> Optional[str]:
    if smile is None:
        return "no smile"
    F = smile.underlying_price if F is None else F
    dT = smile.time_to_expiry if dT is None else dT
    return _domain_problem(F, dT)


def _domain_problem(F, dT) -> Optional[str]:
    if not (np.isfinite(F) and F > 0):
        return f"underlying price must be positive, got {F}"
    if not (np.isfinite(dT) and dT > 0):
        return f"time to expiry must be positive, got {dT}"
    return None


# ════════════════════════════════════════════════════════════════════════
#  SMILE
# ════════════════════════════════════════════════════════════════════════

class SmileHandler:
    """
    Builds the series' smile per bar.

    When the spline can't be built the bar still gets a flat smile at the
    mean node vol; the fallback is logged when it starts, not on every
    bar it lasts.
    """

    def __init__(self, series_id: str, method: str = None, risk_free_rate_pct: float = None):
        self.series_id = series_id
        self.method = method
        self.risk_free_rate_pct = risk_free_rate_pct
        self._transitions = TransitionLog(logger)

    def execute(self, observations: Sequence[StrikePairObservation], F: float,
                dT: float) -> Optional[SmileSnapshot]:
        """Smile snapshot, or None when no strike has a usable vol."""
        problem = _domain_problem(F, dT)
        if problem is not None:
            self._transitions.report("domain", f"{self.series_id} smile: {problem}")
            return None
        self._transitions.clear("domain")

        try:
            smile = build_smile(observations, F, dT, self.risk_free_rate_pct, self.method, fallback=False)
        except CurveBuildError as exc:
            try:
                smile = build_smile(observations, F, dT, self.risk_free_rate_pct, "constant")
            except CurveBuildError as no_nodes:
                self._transitions.report("nodes", f"{self.series_id} smile: {no_nodes}", logging.ERROR)
                return None
            self._transitions.clear("nodes")
            self._transitions.report(
                "fallback",
                f"{self.series_id} smile spline unavailable ({exc}); "
                f"using flat smile at {smile.value_curve.value:.4f}")
            return smile

        self._transitions.clear("nodes")
        self._transitions.clear("fallback")
        return smile


# ════════════════════════════════════════════════════════════════════════
#  GREEKS
# ════════════════════════════════════════════════════════════════════════

class GreekHandler:
    """
    Computes one greek per bar and keeps the resulting series.

    Parameters
    ----------
    series_id : option series name, part of the cache key
    greek : which greek to estimate
    policy : smile evolution rule
    step : finite-difference step (default depends on the greek)
    measure : time measure for theta's per-day rescale
    cache : where the output series lives (default: a private InMemoryCache)
    """

    def __init__(
        self,
        series_id: str,
        greek: Greek,
        policy: SmileEvolution = SmileEvolution.FROZEN_SMILE,
        step: float = None,
        measure: TimeMeasure = TimeMeasure.PLAIN_CALENDAR,
        cache: Cache = None,
    ):
        self.series_id = series_id
        self.greek = greek
        self.policy = policy
        self.step = DEFAULT_STEPS[greek] if step is None else step
        self.measure = measure
        self.cache = cache if cache is not None else InMemoryCache()
        self._transitions = TransitionLog(logger)

    @property
    def cache_key(self) -> str:
        return series_key("greek", self.series_id, self.greek.value, self.policy.value)

    @property
    def values(self) -> List[float]:
        return list(self.cache.load(self.cache_key) or [])

    def _estimate(self, book, smile, F, dT) -> float:
        kwargs = {"F": F, "dT": dT}
        if self.greek in (Greek.DELTA, Greek.GAMMA):
            kwargs["dF"] = self.step
        elif self.greek is Greek.THETA:
            kwargs.update(t_step=self.step, measure=self.measure)
        else:
            kwargs["d_sigma"] = self.step
        return ESTIMATORS[self.greek](book, smile, self.policy, **kwargs)

    def execute(self, bar_index: int, book: PositionBook, smile: Optional[SmileSnapshot],
                F: float = None, dT: float = None) -> float:
        """
        Estimate the greek for bar_index and record it.

        Returns
        -------
        float : the greek, NaN when unavailable for this bar

        Raises
        ------
        ValueError : negative bar_index
        """
        if bar_index < 0:
            raise ValueError(f"bar index must be non-negative, got {bar_index}")
        values = self.cache.load(self.cache_key)
        if values is None:
            values = []
        if len(values) <= bar_index:
            values.extend([np.nan] * (bar_index + 1 - len(values)))

        problem = _market_problem(smile, F, dT)
        if problem is None and (book is None or book.is_empty):
            problem = "empty position book"
        if problem is not None:
            self._transitions.report("domain", f"{self.series_id} {self.greek.value}: {problem}")
            value = np.nan
        else:
            self._transitions.clear("domain")
            try:
                # FloatingPointError is an ArithmeticError
                value = self._estimate(book, smile, F, dT)
                self._transitions.clear("numeric")
            except (ArithmeticError, CurveBuildError) as exc:
                self._transitions.report(
                    "numeric", f"{self.series_id} {self.greek.value} failed at bar {bar_index}: {exc}",
                    logging.ERROR)
                value = np.nan

        values[bar_index] = value
        self.cache.store(self.cache_key, values)
        return value


# ════════════════════════════════════════════════════════════════════════
#  PROFILES
# ════════════════════════════════════════════════════════════════════════

class ProfileHandler:
    """
    Builds a position profile per bar.

    order 0 gives the value profile, 1 the delta profile and 2 the gamma
    profile (each a re-splined derivative of the previous one).
    """

    def __init__(self, series_id: str, order: int = 0):
        if order not in (0, 1, 2):
            raise ValueError(f"profile order must be 0, 1 or 2, got {order}")
        self.series_id = series_id
        self.order = order
        self._transitions = TransitionLog(logger)

    def execute(self, book: PositionBook, smile: Optional[SmileSnapshot],
                policy: SmileEvolution = SmileEvolution.FROZEN_SMILE,
                f_grid=None) -> Optional[SmileSnapshot]:
        """Profile snapshot, or None when it can't be built this bar."""
        problem = _market_problem(smile, None, None)
        if problem is None and (book is None or book.is_empty):
            problem = "empty position book"
        if problem is not None:
            self._transitions.report("domain", f"{self.series_id} profile: {problem}")
            return None
        self._transitions.clear("domain")

        if f_grid is None:
            f_grid = default_f_grid(smile.underlying_price)
        grid = np.asarray(f_grid, dtype=float)

        try:
            profile = build_position_profile(book, smile, policy, grid)
            for _ in range(self.order):
                profile = derive_profile(profile)
        except (ArithmeticError, CurveBuildError) as exc:
            self._transitions.report(
                "numeric",
                f"{self.series_id} profile over F in [{grid.min():g}, {grid.max():g}] "
                f"({grid.size} nodes): {exc}",
                logging.ERROR)
            return None

        self._transitions.clear("numeric")
        return profile


# ════════════════════════════════════════════════════════════════════════
#  HISTORICAL VOLATILITY
# ════════════════════════════════════════════════════════════════════════

class HistoricalVolatilityHandler:
    """
    HV for every bar of a growing close-price series.

    Only bars not seen in a previous call are computed; reset=True drops
    the history and the tracker state and starts over.
    """

    def __init__(
        self,
        symbol: str,
        bar_length_seconds: int,
        period: int = config.HV_PERIOD,
        annualizing_multiplier: float = config.HV_ANNUALIZING_MULTIPLIER,
        use_all_data: bool = False,
        cache: Cache = None,
    ):
        self.tracker = HistoricalVolatilityTracker(
            symbol, bar_length_seconds, period, annualizing_multiplier, use_all_data)
        self.cache = cache if cache is not None else InMemoryCache()

    @property
    def history_key(self) -> str:
        return series_key(self.tracker.cache_key, "history")

    def execute(self, closes: pd.Series, reset: bool = False) -> List[float]:
        """
        Parameters
        ----------
        closes : close prices indexed by timestamp, oldest first
        reset : recompute every bar from scratch

        Returns
        -------
        list of float : HV per bar, same length as closes
        """
        history = self.cache.load(self.history_key)
        if history is None or reset:
            history = []
            self.tracker.reset(self.cache)

        for t, price in list(closes.items())[len(history):]:
            history.append(self.tracker.update(t, price, self.cache))

        self.cache.store(self.history_key, history)
        return list(history)
