#!/usr/bin/env python3
"""
main.py — Numerical greeks and historical volatility from the command line.

Usage:
    python main.py greeks                                   # SVI smile, demo book
    python main.py greeks --F 110000 --days 21 --policy shifting
    python main.py hv                                       # synthetic random walk
    python main.py hv --csv closes.csv --period 20 --bar-seconds 86400
"""

import argparse
import logging
import sys
import time

import numpy as np
import pandas as pd

from smile_greeks import config
from smile_greeks.errors import SmileGreeksError
from smile_greeks.greeks import (
    delta_from_profile, estimate_delta, estimate_gamma, estimate_theta,
    estimate_vega, estimate_vomma, gamma_from_profile,
)
from smile_greeks.handlers import SmileHandler
from smile_greeks.historical_volatility import hv_series
from smile_greeks.profile import (
    PositionBook, StrikePosition, build_position_profile, default_f_grid,
    derive_profile, position_value,
)
from smile_greeks.smile import SmileEvolution
from smile_greeks.svi import svi_smile_observations
from smile_greeks.time_measure import TimeMeasure, days_in_year


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Smile curves, numerical greeks and historical volatility.")
    p.add_argument("--log-level", default=config.LOG_LEVEL)
    sub = p.add_subparsers(dest="command", required=True)

    g = sub.add_parser("greeks", help="greeks of a demo book on an SVI smile")
    g.add_argument("--F", type=float, default=100.0)
    g.add_argument("--days", type=float, default=30.0, help="calendar days to expiry")
    g.add_argument("--policy", choices=[e.value for e in SmileEvolution], default="frozen")
    g.add_argument("--measure", choices=[m.value for m in TimeMeasure], default=TimeMeasure.PLAIN_CALENDAR.value)
    g.add_argument("--method", choices=["constant", "natural", "not-a-knot"], default=config.DEFAULT_SPLINE_METHOD)
    g.add_argument("--rate", type=float, default=config.RISK_FREE_RATE_PCT, help="risk-free rate, percent")
    g.add_argument("--dF", type=float, default=config.DEFAULT_PRICE_STEP)

    h = sub.add_parser("hv", help="historical volatility of a close series")
    h.add_argument("--csv", type=str, default=None, help="CSV with 'timestamp' and 'close' columns")
    h.add_argument("--period", type=int, default=20)
    h.add_argument("--bar-seconds", type=int, default=None)
    h.add_argument("--multiplier", type=float, default=float(np.sqrt(252)))
    h.add_argument("--all-data", action="store_true")
    return p.parse_args(argv)


def demo_book(F: float) -> PositionBook:
    """Short ATM straddle hedged with long 10% wings."""
    step = config.SVI_STRIKE_STEP
    atm = round(F / step) * step
    wing = round(0.1 * F / step) * step
    return PositionBook(positions=(
        StrikePosition(atm - wing, put_qty=1.0),
        StrikePosition(atm, put_qty=-1.0, call_qty=-1.0),
        StrikePosition(atm + wing, call_qty=1.0),
    ))


def run_greeks(args):
    F = args.F
    dT = args.days / days_in_year(TimeMeasure.PLAIN_CALENDAR)
    policy = SmileEvolution(args.policy)
    measure = TimeMeasure(args.measure)

    print("[1/3] Building smile...")
    obs = svi_smile_observations(F, dT)
    smile = SmileHandler("demo", method=args.method, risk_free_rate_pct=args.rate).execute(obs, F, dT)
    if smile is None:
        raise SmileGreeksError("no strike with a usable volatility")
    print(f"       Nodes: {len(obs)}  |  Curve: {smile.value_curve.kind}")
    print(f"       ATM vol: {smile.volatility(F):.2%}")

    book = demo_book(F)
    print("\n[2/3] Finite-difference greeks...")
    print(f"       Value:  {position_value(book, smile, F, dT):12.4f}")
    print(f"       Delta:  {estimate_delta(book, smile, policy, F, args.dF, dT):12.6f}")
    print(f"       Gamma:  {estimate_gamma(book, smile, policy, F, args.dF, dT):12.6f}")
    print(f"       Theta:  {estimate_theta(book, smile, policy, F, dT, measure=measure):12.6f}  per day ({measure.value})")
    print(f"       Vega:   {estimate_vega(book, smile, policy, F, dT=dT):12.6f}  per vol point")
    print(f"       Vomma:  {estimate_vomma(book, smile, policy, F, dT=dT):12.6f}  per vol point^2")

    print("\n[3/3] Profile read-outs...")
    profile = build_position_profile(book, smile, policy, default_f_grid(F))
    gamma_profile = derive_profile(derive_profile(profile))
    print(f"       Delta (profile):  {delta_from_profile(profile):12.6f}")
    print(f"       Gamma (profile):  {gamma_from_profile(gamma_profile):12.6f}")


def load_closes(path: str) -> pd.Series:
    df = pd.read_csv(path, parse_dates=["timestamp"])
    return df.set_index("timestamp")["close"].sort_index()


def synthetic_closes(n: int = 250, S0: float = 100.0, vol: float = 0.25) -> pd.Series:
    np.random.seed(config.SEED)
    returns = np.random.normal(0, vol / np.sqrt(252), size=n - 1)
    prices = S0 * np.exp(np.concatenate([[0.0], np.cumsum(returns)]))
    return pd.Series(prices, index=pd.date_range("2017-01-02", periods=n, freq="D"), name="synthetic")


def run_hv(args):
    print("[1/2] Loading closes...")
    closes = load_closes(args.csv) if args.csv else synthetic_closes()
    print(f"       Bars: {len(closes)}  |  {closes.index[0]} -> {closes.index[-1]}")

    print("\n[2/2] Estimating historical volatility...")
    hv = hv_series(closes, args.bar_seconds, args.period, args.multiplier, args.all_data)
    valid = hv.dropna()
    print(f"       Estimates: {len(valid)} of {len(hv)} bars")
    if len(valid):
        print(f"       Last HV: {valid.iloc[-1]:.2%}")
        print(f"       Range:   {valid.min():.2%} - {valid.max():.2%}")


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=config.LOG_FORMAT)

    print(f"\n{'='*60}")
    print(f"  Smile Greeks  |  {args.command}")
    print(f"{'='*60}\n")

    t0 = time.time()
    try:
        if args.command == "greeks":
            run_greeks(args)
        else:
            run_hv(args)
    except (SmileGreeksError, ValueError, OSError) as e:
        print(f"\n  ERROR: {e}")
        sys.exit(1)

    print(f"\n  Done in {time.time() - t0:.1f}s.\n")


if __name__ == "__main__":
    main()
