"""
Tests for the per-bar handlers, the transition log and the cache.
"""

import logging

import pytest
import numpy as np
import pandas as pd
from smile_greeks import handlers
from smile_greeks.cache import InMemoryCache, series_key
from smile_greeks.curves import ConstantCurve, NotAKnotCubicSpline
from smile_greeks.greeks import Greek, estimate_delta
from smile_greeks.handlers import (
    GreekHandler, HistoricalVolatilityHandler, ProfileHandler, SmileHandler, TransitionLog,
)
from smile_greeks.profile import PositionBook
from smile_greeks.smile import SmileEvolution, SmileSnapshot, StrikePairObservation


def quotes(*pairs):
    return [StrikePairObservation(k, put=v, call=v) for k, v in pairs]


SPARSE = quotes((95.0, 0.24), (100.0, 0.22), (105.0, 0.20))
FULL = quotes((90.0, 0.25), (95.0, 0.23), (100.0, 0.22), (105.0, 0.215), (110.0, 0.22))


class TestCache:

    def test_round_trip_is_same_object(self):
        cache = InMemoryCache()
        obj = [1.0, 2.0]
        cache.store("k", obj)
        assert cache.load("k") is obj
        assert "k" in cache
        assert len(cache) == 1

    def test_missing_key(self):
        assert InMemoryCache().load("nope") is None

    def test_series_key(self):
        assert series_key("greek", "RTS-3.17", "delta") == "greek_RTS-3.17_delta"


class TestTransitionLog:

    def test_logs_once_per_transition(self, caplog):
        log = TransitionLog(logging.getLogger("test.transitions"))
        with caplog.at_level(logging.WARNING, logger="test.transitions"):
            assert log.report("domain", "bad F")
            assert not log.report("domain", "bad F again")
            log.clear("domain")
            assert log.report("domain", "bad F once more")
        assert caplog.text.count("bad F") == 2

    def test_conditions_are_independent(self):
        log = TransitionLog()
        log.report("a", "first")
        assert log.report("b", "second")
        assert log.is_active("a") and log.is_active("b")
        log.clear()
        assert not log.is_active("a")


class TestSmileHandler:

    def test_spline_when_enough_strikes(self):
        smile = SmileHandler("RTS-3.17").execute(FULL, 100.0, 0.25)
        assert isinstance(smile.value_curve, NotAKnotCubicSpline)

    def test_fallback_warned_once(self, caplog):
        handler = SmileHandler("RTS-3.17")
        with caplog.at_level(logging.WARNING, logger="smile_greeks.handlers"):
            smiles = [handler.execute(SPARSE, 100.0, 0.25) for _ in range(5)]
        assert all(isinstance(s.value_curve, ConstantCurve) for s in smiles)
        assert smiles[0].volatility(100.0) == pytest.approx(0.22)
        assert caplog.text.count("flat smile") == 1

    def test_fallback_warned_again_after_recovery(self, caplog):
        handler = SmileHandler("RTS-3.17")
        with caplog.at_level(logging.WARNING, logger="smile_greeks.handlers"):
            for obs in (SPARSE, SPARSE, FULL, SPARSE):
                handler.execute(obs, 100.0, 0.25)
        assert caplog.text.count("flat smile") == 2

    def test_no_usable_strike(self, caplog):
        handler = SmileHandler("RTS-3.17")
        with caplog.at_level(logging.ERROR, logger="smile_greeks.handlers"):
            assert handler.execute([StrikePairObservation(100.0)], 100.0, 0.25) is None
            assert handler.execute([StrikePairObservation(100.0)], 100.0, 0.25) is None
        assert caplog.text.count("RTS-3.17 smile") == 1

    def test_bad_market(self):
        assert SmileHandler("RTS-3.17").execute(FULL, 100.0, 0.0) is None


class TestGreekHandler:

    def test_series_padded_and_written(self, long_call, flat_smile):
        handler = GreekHandler("RTS-3.17", Greek.DELTA)
        value = handler.execute(3, long_call, flat_smile)
        assert value == pytest.approx(estimate_delta(long_call, flat_smile, SmileEvolution.FROZEN_SMILE))
        values = handler.values
        assert len(values) == 4
        assert all(np.isnan(v) for v in values[:3])
        assert values[3] == value

    def test_rerun_same_bar_idempotent(self, long_call, flat_smile):
        cache = InMemoryCache()
        handler = GreekHandler("RTS-3.17", Greek.GAMMA, cache=cache)
        first = handler.execute(0, long_call, flat_smile)
        second = handler.execute(0, long_call, flat_smile)
        assert first == second
        assert len(cache.load(handler.cache_key)) == 1

    def test_domain_problem_logged_once(self, long_call, caplog):
        handler = GreekHandler("RTS-3.17", Greek.THETA)
        with caplog.at_level(logging.WARNING, logger="smile_greeks.handlers"):
            out = [handler.execute(i, long_call, None) for i in range(5)]
        assert all(np.isnan(v) for v in out)
        assert caplog.text.count("no smile") == 1

    def test_recovers_after_bad_bars(self, long_call, flat_smile):
        handler = GreekHandler("RTS-3.17", Greek.VEGA, policy=SmileEvolution.SHIFTING_SMILE)
        assert np.isnan(handler.execute(0, long_call, flat_smile, F=-1.0))
        assert np.isfinite(handler.execute(1, long_call, flat_smile))

    def test_numerical_failure_becomes_nan(self, long_call, flat_smile, monkeypatch, caplog):
        def boom(*args, **kwargs):
            raise FloatingPointError("overflow")

        monkeypatch.setitem(handlers.ESTIMATORS, Greek.DELTA, boom)
        handler = GreekHandler("RTS-3.17", Greek.DELTA)
        with caplog.at_level(logging.ERROR, logger="smile_greeks.handlers"):
            assert np.isnan(handler.execute(0, long_call, flat_smile))
            assert np.isnan(handler.execute(1, long_call, flat_smile))
        assert caplog.text.count("overflow") == 1

    def test_empty_book_logged_once(self, flat_smile, caplog):
        handler = GreekHandler("RTS-3.17", Greek.DELTA)
        with caplog.at_level(logging.WARNING, logger="smile_greeks.handlers"):
            books = [PositionBook(), None, PositionBook()]
            out = [handler.execute(i, book, flat_smile) for i, book in enumerate(books)]
        assert all(np.isnan(v) for v in out)
        assert caplog.text.count("empty position book") == 1

    def test_negative_bar_index(self, long_call, flat_smile):
        handler = GreekHandler("RTS-3.17", Greek.DELTA)
        handler.execute(2, long_call, flat_smile)
        with pytest.raises(ValueError):
            handler.execute(-1, long_call, flat_smile)
        assert np.isfinite(handler.values[2])

    def test_shared_cache_separates_series(self, long_call, flat_smile):
        cache = InMemoryCache()
        GreekHandler("A", Greek.DELTA, cache=cache).execute(0, long_call, flat_smile)
        GreekHandler("B", Greek.DELTA, cache=cache).execute(0, long_call, flat_smile)
        assert len(cache) == 2


class TestProfileHandler:

    def test_value_profile(self, straddle, flat_smile):
        profile = ProfileHandler("RTS-3.17").execute(straddle, flat_smile)
        assert profile is not None
        assert profile.value_curve.kind == "not-a-knot"

    def test_gamma_profile_positive_for_long_straddle(self, straddle, flat_smile):
        profile = ProfileHandler("RTS-3.17", order=2).execute(straddle, flat_smile)
        assert profile.value_curve(100.0) > 0

    def test_missing_smile(self, straddle):
        assert ProfileHandler("RTS-3.17").execute(straddle, None) is None

    def test_empty_book(self, flat_smile):
        assert ProfileHandler("RTS-3.17").execute(PositionBook(), flat_smile) is None

    def test_build_failure_logged(self, straddle, caplog):
        smile = SmileSnapshot(100.0, 0.25, 0.0, ConstantCurve(-0.2))
        with caplog.at_level(logging.ERROR, logger="smile_greeks.handlers"):
            assert ProfileHandler("RTS-3.17").execute(straddle, smile) is None
        assert "41 nodes" in caplog.text

    def test_bad_order(self):
        with pytest.raises(ValueError):
            ProfileHandler("RTS-3.17", order=3)


class TestHistoricalVolatilityHandler:

    @pytest.fixture
    def closes(self):
        idx = pd.date_range("2017-03-01", periods=8, freq="D")
        return pd.Series([100.0, 101.0, 99.0, 102.0, 100.0, 98.0, 0.0, 99.0], index=idx)

    def test_every_bar_gets_a_value(self, closes):
        handler = HistoricalVolatilityHandler("RTS", 86400, period=4)
        out = handler.execute(closes)
        assert len(out) == len(closes)
        assert all(np.isnan(v) for v in out[:4])
        assert np.isfinite(out[4]) and np.isfinite(out[5])
        assert np.isnan(out[6])  # technical bar

    def test_incremental(self, closes):
        cache = InMemoryCache()
        handler = HistoricalVolatilityHandler("RTS", 86400, period=4, cache=cache)
        partial = handler.execute(closes.iloc[:5])
        full = handler.execute(closes)
        np.testing.assert_allclose(full[:5], partial, equal_nan=True)
        fresh = HistoricalVolatilityHandler("RTS", 86400, period=4).execute(closes)
        np.testing.assert_allclose(full, fresh, equal_nan=True)

    def test_reset_recomputes(self, closes):
        handler = HistoricalVolatilityHandler("RTS", 86400, period=4)
        first = handler.execute(closes)
        again = handler.execute(closes, reset=True)
        np.testing.assert_allclose(first, again, equal_nan=True)
