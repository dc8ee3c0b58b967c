"""
Global configuration for the smile / greeks engine.

Keeps all magic numbers in one place. Override via CLI args in main.py,
via keyword arguments on the individual functions, or by editing this
file directly for persistent changes.
"""

from datetime import date, time


# ── curves ───────────────────────────────────────────────────────────────
MIN_NODES_CONSTANT = 1
MIN_NODES_SPLINE = 4            # both natural and not-a-knot need 4 knots
X_TOLERANCE = 1e-12             # relative; closer knots are treated as duplicates
DEFAULT_SPLINE_METHOD = "not-a-knot"


# ── market parameters ────────────────────────────────────────────────────
RISK_FREE_RATE_PCT = 0.0        # in PERCENT; futures-style margining by default
PCT_MULT = 100.0


# ── finite differences ───────────────────────────────────────────────────
DEFAULT_PRICE_STEP = 1.0        # dF, one price tick of the underlying
MIN_PRICE_STEP = 1e-6
DEFAULT_T_STEP = 0.00001        # year fraction, ~5 minutes
MIN_T_STEP = 1e-9               # below this dT differences lose all precision
DEFAULT_SIGMA_STEP = 0.0001
MIN_SIGMA_STEP = 1e-6           # floor against catastrophic cancellation

# position profile grid
PROFILE_POINTS = 41
PROFILE_WIDTH = 0.15            # +/- 15% of F


# ── historical volatility ────────────────────────────────────────────────
HV_PERIOD = 810
HV_ANNUALIZING_MULTIPLIER = 452.0
HV_MIN_PERIOD = 2


# ── time measures ────────────────────────────────────────────────────────
# day counts are measured over this reference year
REFERENCE_YEAR = 2017

# exchange holidays falling on weekdays (Moscow Exchange, 2017-2018)
EXCHANGE_HOLIDAYS = (
    date(2017, 1, 2), date(2017, 1, 3), date(2017, 1, 4), date(2017, 1, 5),
    date(2017, 1, 6), date(2017, 2, 23), date(2017, 2, 24), date(2017, 3, 8),
    date(2017, 5, 1), date(2017, 5, 8), date(2017, 5, 9), date(2017, 6, 12),
    date(2017, 11, 6),
    date(2018, 1, 1), date(2018, 1, 2), date(2018, 1, 3), date(2018, 1, 4),
    date(2018, 1, 5), date(2018, 1, 8), date(2018, 2, 23), date(2018, 3, 8),
    date(2018, 3, 9), date(2018, 4, 30), date(2018, 5, 1), date(2018, 5, 2),
    date(2018, 5, 9), date(2018, 6, 11), date(2018, 6, 12), date(2018, 11, 5),
    date(2018, 12, 31),
)

# exchange trading sessions: morning, day (after intraday clearing), evening
EXCHANGE_SESSIONS = (
    (time(10, 0), time(14, 0)),
    (time(14, 3), time(18, 45)),
    (time(19, 0), time(23, 50)),
)

# liquidity weight of each session above for the weighted trading-time measure
SESSION_LIQUIDITY_WEIGHTS = (1.0, 1.0, 0.5)


# ── logging ──────────────────────────────────────────────────────────────
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
LOG_LEVEL = "INFO"


# ── synthetic smile (SVI template) ───────────────────────────────────────
# raw SVI parameters in total-variance space, tuned for an index-like skew
SVI_PARAMS = {"a": 0.002, "b": 0.04, "rho": -0.4, "m": 0.01, "sigma": 0.08}
SVI_STRIKE_STEP = 2.5
SVI_STRIKE_WIDTH = 0.25         # |K/F - 1| <= 25%


# ── random seed ──────────────────────────────────────────────────────────
SEED = 42  # reproducibility for synthetic generation
