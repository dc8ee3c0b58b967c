"""
Time-measure conventions: how many "days" lie between two instants.

Theta is estimated as a derivative with respect to dT measured in years.
Turning it into "value change per day" needs a day count, and the right
day count depends on which clock dT itself was measured with:

    PLAIN_CALENDAR                    every calendar day counts fully
    PLAIN_CALENDAR_WITHOUT_WEEKENDS   Saturdays and Sundays don't count
    PLAIN_CALENDAR_WITHOUT_HOLIDAYS   ...nor do exchange holidays
    EXCHANGE_TRADING_TIME             only time inside trading sessions counts
    LIQUIDITY_WEIGHTED_TRADING_TIME   sessions count with liquidity weights

Each convention is a working-day calendar (numpy business-day calendar)
plus a list of weighted intraday sessions; the calendar-day conventions
use a single whole-day session. Days in a year are measured over the
reference year in config, so every divisor comes from the same clock as
time_to_expiry().

The trading-time divisors are smaller than 365, so the same per-year
theta spreads over fewer days and the per-day figure grows.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
from functools import lru_cache
from typing import Tuple, Union

import numpy as np

from . import config

SECONDS_IN_DAY = 86400.0

TimeLike = Union[datetime, date]


class TimeMeasure(Enum):
    PLAIN_CALENDAR = "calendar"
    PLAIN_CALENDAR_WITHOUT_WEEKENDS = "calendar-without-weekends"
    PLAIN_CALENDAR_WITHOUT_HOLIDAYS = "calendar-without-holidays"
    EXCHANGE_TRADING_TIME = "exchange-trading-time"
    LIQUIDITY_WEIGHTED_TRADING_TIME = "liquidity-weighted-trading-time"


def _seconds(t: time) -> float:
    return t.hour * 3600.0 + t.minute * 60.0 + t.second + t.microsecond / 1e6


WHOLE_DAY = ((0.0, SECONDS_IN_DAY, 1.0),)


def _exchange_sessions(weights) -> Tuple[Tuple[float, float, float], ...]:
    return tuple(
        (_seconds(start), _seconds(end), w)
        for (start, end), w in zip(config.EXCHANGE_SESSIONS, weights)
    )


@lru_cache(maxsize=None)
def _convention(measure: TimeMeasure):
    """(busdaycalendar, sessions) for a measure; sessions are (start_s, end_s, weight)."""
    if measure is TimeMeasure.PLAIN_CALENDAR:
        return np.busdaycalendar(weekmask="1111111"), WHOLE_DAY
    if measure is TimeMeasure.PLAIN_CALENDAR_WITHOUT_WEEKENDS:
        return np.busdaycalendar(weekmask="1111100"), WHOLE_DAY

    holidays = np.array(config.EXCHANGE_HOLIDAYS, dtype="datetime64[D]")
    cal = np.busdaycalendar(weekmask="1111100", holidays=holidays)
    if measure is TimeMeasure.PLAIN_CALENDAR_WITHOUT_HOLIDAYS:
        return cal, WHOLE_DAY
    if measure is TimeMeasure.EXCHANGE_TRADING_TIME:
        return cal, _exchange_sessions([1.0] * len(config.EXCHANGE_SESSIONS))
    if measure is TimeMeasure.LIQUIDITY_WEIGHTED_TRADING_TIME:
        return cal, _exchange_sessions(config.SESSION_LIQUIDITY_WEIGHTS)
    raise NotImplementedError(f"Time measure {measure!r} is not implemented")


def _as_datetime(t: TimeLike) -> datetime:
    if isinstance(t, datetime):
        return t
    return datetime.combine(t, time())


# ════════════════════════════════════════════════════════════════════════
#  DAY COUNTS
# ════════════════════════════════════════════════════════════════════════

def measured_days(beg: TimeLike, end: TimeLike, measure: TimeMeasure) -> float:
    """
    Length of [beg, end] in days under the given time measure.

    Only working days of the measure's calendar contribute, and within a
    working day only the (weighted) overlap with its sessions. Reversed
    arguments give a negative length.
    """
    beg, end = _as_datetime(beg), _as_datetime(end)
    if end == beg:
        return 0.0
    if end < beg:
        return -measured_days(end, beg, measure)

    cal, sessions = _convention(measure)
    days = np.arange(np.datetime64(beg.date(), "D"),
                     np.datetime64(end.date(), "D") + np.timedelta64(1, "D"))
    working = days[np.is_busday(days, busdaycal=cal)]

    total = 0.0
    for d in working.astype(object):
        day_start = datetime.combine(d, time(), tzinfo=beg.tzinfo)
        for start_s, end_s, weight in sessions:
            lo = max(beg, day_start + timedelta(seconds=start_s))
            hi = min(end, day_start + timedelta(seconds=end_s))
            if hi > lo:
                total += weight * (hi - lo).total_seconds()
    return total / SECONDS_IN_DAY


@lru_cache(maxsize=None)
def days_in_year(measure: TimeMeasure) -> float:
    """Measured length of the reference year (config.REFERENCE_YEAR)."""
    year = config.REFERENCE_YEAR
    return measured_days(datetime(year, 1, 1), datetime(year + 1, 1, 1), measure)


def time_to_expiry(now: TimeLike, expiry: TimeLike,
                   measure: TimeMeasure = TimeMeasure.PLAIN_CALENDAR) -> float:
    """
    Year fraction from now to expiry under the given time measure.

    Negative once expiry has passed; callers treat dT <= 0 as an
    invalid domain for the greeks.
    """
    return measured_days(now, expiry, measure) / days_in_year(measure)


def rescale_theta_to_days(raw_theta: float, measure: TimeMeasure) -> float:
    """
    Convert a per-year theta into value change per day of the measure.

    A pure division, kept apart from the differencing step so the same
    raw estimate can be reported under any convention.
    """
    return raw_theta / days_in_year(measure)
