"""
Tests for the finite-difference greeks.

Closed-form Black values (r = 0) serve as the reference where a flat
smile makes them exact.
"""

import pytest
import numpy as np
from scipy.stats import norm
from smile_greeks import config
from smile_greeks.curves import ConstantCurve, NotAKnotCubicSpline
from smile_greeks.greeks import (
    ESTIMATORS, Greek,
    clamp_step, delta_from_profile, delta_on_curve, estimate_delta,
    estimate_gamma, estimate_theta, estimate_vega, estimate_vomma,
    gamma_from_profile, gamma_on_curve, value_at_f,
)
from smile_greeks.profile import (
    PositionBook, StrikePosition, build_position_profile, default_f_grid, derive_profile,
)
from smile_greeks.smile import SmileEvolution, SmileSnapshot
from smile_greeks.time_measure import TimeMeasure


FROZEN = SmileEvolution.FROZEN_SMILE
SHIFTING = SmileEvolution.SHIFTING_SMILE


def black_d1(F, K, T, sigma):
    return (np.log(F / K) + 0.5 * sigma**2 * T) / (sigma * np.sqrt(T))


def flat(F=100.0, dT=0.25, vol=0.2):
    return SmileSnapshot(underlying_price=F, time_to_expiry=dT, risk_free_rate_pct=0.0,
                         value_curve=ConstantCurve(vol))


class TestClampStep:

    def test_keeps_larger_step(self):
        assert clamp_step(0.01, 1e-6) == 0.01

    def test_floors_small_step(self):
        assert clamp_step(1e-9, 1e-6) == 1e-6

    @pytest.mark.parametrize("bad", [0.0, -1.0, np.nan, np.inf, None])
    def test_invalid_step_gives_floor(self, bad):
        assert clamp_step(bad, 1e-6) == 1e-6


class TestDeltaOnCurve:
    """Payoff max(F - 100, 0) sampled on a coarse grid and splined."""

    @pytest.fixture
    def payoff_curve(self):
        grid = np.arange(80.0, 130.01, 2.5)
        return NotAKnotCubicSpline(grid, np.maximum(grid - 100.0, 0.0))

    def test_in_the_money(self, payoff_curve):
        assert delta_on_curve(payoff_curve, 105.0, 1.0) == pytest.approx(1.0, abs=0.06)

    def test_out_of_the_money(self, payoff_curve):
        assert delta_on_curve(payoff_curve, 95.0, 1.0) == pytest.approx(0.0, abs=0.06)

    def test_gamma_concentrated_at_kink(self, payoff_curve):
        assert gamma_on_curve(payoff_curve, 100.0, 1.0) > gamma_on_curve(payoff_curve, 115.0, 1.0)

    def test_missing_curve(self):
        assert np.isnan(delta_on_curve(None, 100.0))
        assert np.isnan(gamma_on_curve(ConstantCurve(1.0), -5.0))


class TestDelta:

    def test_matches_black_delta(self, long_call):
        smile = flat()
        expected = norm.cdf(black_d1(100.0, 100.0, 0.25, 0.2))
        for policy in SmileEvolution:
            assert estimate_delta(long_call, smile, policy, dF=1.0) == pytest.approx(expected, abs=1e-4)

    def test_shifting_smile_itm_otm(self, long_call):
        """Nearly expired call: delta ~1 in the money, ~0 out of it."""
        assert estimate_delta(long_call, flat(105.0, 0.01), SHIFTING, dF=1.0) == pytest.approx(1.0, abs=0.01)
        assert estimate_delta(long_call, flat(95.0, 0.01), SHIFTING, dF=1.0) == pytest.approx(0.0, abs=0.01)

    def test_underlying_leg(self):
        book = PositionBook(positions=(), underlying_qty=-3.0)
        assert estimate_delta(book, flat(), FROZEN) == pytest.approx(-3.0)

    def test_put_call_parity_in_delta(self, flat_smile):
        """Long call + short put has the delta of one future."""
        book = PositionBook(positions=(StrikePosition(100.0, put_qty=-1.0, call_qty=1.0),))
        assert estimate_delta(book, flat_smile, FROZEN) == pytest.approx(1.0, abs=1e-8)

    def test_policy_matters_on_skew(self, svi_smile):
        book = PositionBook(positions=(StrikePosition(95.0, put_qty=1.0),))
        frozen = estimate_delta(book, svi_smile, FROZEN)
        shifting = estimate_delta(book, svi_smile, SHIFTING)
        assert np.isfinite(frozen) and np.isfinite(shifting)
        assert frozen != pytest.approx(shifting, abs=1e-4)


class TestGamma:

    def test_matches_black_gamma(self, straddle, flat_smile):
        d1 = black_d1(100.0, 100.0, 0.25, 0.2)
        expected = 2 * norm.pdf(d1) / (100.0 * 0.2 * 0.5)
        assert estimate_gamma(straddle, flat_smile, FROZEN, dF=1.0) == pytest.approx(expected, rel=5e-3)

    def test_profile_and_difference_agree(self, straddle, flat_smile):
        direct = estimate_gamma(straddle, flat_smile, FROZEN, dF=1.0)
        profile = build_position_profile(straddle, flat_smile, FROZEN, default_f_grid(100.0))
        gamma_profile = derive_profile(derive_profile(profile))
        assert gamma_from_profile(gamma_profile) == pytest.approx(direct, rel=2e-2)

    def test_delta_from_profile(self, straddle, flat_smile):
        profile = build_position_profile(straddle, flat_smile, FROZEN, default_f_grid(100.0))
        assert delta_from_profile(profile) == pytest.approx(
            estimate_delta(straddle, flat_smile, FROZEN), abs=1e-3)


class TestTheta:

    def test_matches_black_theta(self, long_call):
        d1 = black_d1(100.0, 100.0, 0.25, 0.2)
        per_year = 100.0 * norm.pdf(d1) * 0.2 / (2 * 0.5)
        theta = estimate_theta(long_call, flat(), FROZEN, measure=TimeMeasure.PLAIN_CALENDAR)
        assert theta == pytest.approx(-per_year / 365.0, rel=1e-3)

    def test_long_option_decays(self, straddle, svi_smile):
        assert estimate_theta(straddle, svi_smile, SHIFTING) < 0

    def test_trading_time_theta_larger(self, straddle, flat_smile):
        calendar = estimate_theta(straddle, flat_smile, FROZEN, measure=TimeMeasure.PLAIN_CALENDAR)
        for m in TimeMeasure:
            assert abs(estimate_theta(straddle, flat_smile, FROZEN, measure=m)) >= abs(calendar)

    def test_close_to_expiry(self, long_call):
        theta = estimate_theta(long_call, flat(dT=5e-6), FROZEN, t_step=1e-5)
        assert np.isfinite(theta)
        assert theta < 0

    def test_tiny_step_floored(self, long_call):
        smile = flat()
        a = estimate_theta(long_call, smile, FROZEN, t_step=1e-15)
        b = estimate_theta(long_call, smile, FROZEN, t_step=config.MIN_T_STEP)
        assert a == b


class TestVolGreeks:

    def test_vega_per_vol_point(self, long_call):
        d1 = black_d1(100.0, 100.0, 0.25, 0.2)
        expected = 100.0 * norm.pdf(d1) * 0.5 / 100.0
        assert estimate_vega(long_call, flat(), SHIFTING) == pytest.approx(expected, rel=1e-3)

    def test_frozen_smile_has_no_vega(self, long_call):
        assert estimate_vega(long_call, flat(), FROZEN) == 0.0
        assert estimate_vomma(long_call, flat(), FROZEN) == 0.0

    def test_vomma_otm_call(self):
        book = PositionBook(positions=(StrikePosition(120.0, call_qty=1.0),))
        d1 = black_d1(100.0, 120.0, 0.25, 0.2)
        d2 = d1 - 0.2 * 0.5
        vega = 100.0 * norm.pdf(d1) * 0.5
        expected = vega * d1 * d2 / 0.2 / 100.0**2
        assert estimate_vomma(book, flat(), SHIFTING) == pytest.approx(expected, rel=1e-2)

    def test_vomma_step_floor(self, straddle, svi_smile):
        a = estimate_vomma(straddle, svi_smile, SHIFTING, d_sigma=1e-9)
        b = estimate_vomma(straddle, svi_smile, SHIFTING, d_sigma=config.MIN_SIGMA_STEP)
        assert a == b


class TestInvalidDomain:

    @pytest.mark.parametrize("greek", list(Greek))
    def test_no_smile(self, greek, long_call):
        assert np.isnan(ESTIMATORS[greek](long_call, None, FROZEN))

    @pytest.mark.parametrize("greek", list(Greek))
    def test_non_positive_f(self, greek, long_call):
        assert np.isnan(ESTIMATORS[greek](long_call, flat(), FROZEN, F=0.0))
        assert np.isnan(ESTIMATORS[greek](long_call, flat(), FROZEN, F=-10.0))

    @pytest.mark.parametrize("greek", list(Greek))
    def test_non_positive_dt(self, greek, long_call):
        assert np.isnan(ESTIMATORS[greek](long_call, flat(), FROZEN, dT=0.0))

    @pytest.mark.parametrize("greek", list(Greek))
    def test_empty_book(self, greek):
        assert np.isnan(ESTIMATORS[greek](PositionBook(), flat(), FROZEN))
        assert np.isnan(ESTIMATORS[greek](None, flat(), FROZEN))

    @pytest.mark.parametrize("greek", list(Greek))
    def test_bad_vol(self, greek, long_call):
        assert np.isnan(ESTIMATORS[greek](long_call, flat(vol=-0.1), SHIFTING))

    def test_profile_readouts(self):
        assert np.isnan(value_at_f(None))
        assert np.isnan(delta_from_profile(flat(F=-1.0)))
