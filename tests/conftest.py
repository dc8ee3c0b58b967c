"""
Shared test fixtures and pytest configuration.
"""

import pytest
import numpy as np

from smile_greeks.curves import NotAKnotCubicSpline
from smile_greeks.profile import PositionBook, StrikePosition
from smile_greeks.smile import SmileSnapshot, build_smile
from smile_greeks.svi import svi_smile_observations


@pytest.fixture(autouse=True)
def set_random_seed():
    """Ensure test reproducibility."""
    np.random.seed(42)
    yield


@pytest.fixture
def flat_smile():
    """20% vol everywhere over strikes 50..150, F=100, three months."""
    strikes = np.arange(50.0, 151.0, 10.0)
    curve = NotAKnotCubicSpline(strikes, np.full(strikes.size, 0.2))
    return SmileSnapshot(underlying_price=100.0, time_to_expiry=0.25,
                         risk_free_rate_pct=0.0, value_curve=curve)


@pytest.fixture
def svi_smile():
    """Skewed smile splined through SVI observations, F=100, one month."""
    F, dT = 100.0, 30 / 365
    return build_smile(svi_smile_observations(F, dT), F, dT)


@pytest.fixture
def long_call():
    return PositionBook(positions=(StrikePosition(100.0, call_qty=1.0),))


@pytest.fixture
def straddle():
    return PositionBook(positions=(StrikePosition(100.0, put_qty=1.0, call_qty=1.0),))
