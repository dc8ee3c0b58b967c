"""
smile-greeks
============
Volatility smile curves and numerical greeks for option books.

Modules:
    curves                 - Constant and cubic spline curves with analytic derivatives
    smile                  - Smile snapshots, strike observations, evolution policies
    black_scholes          - Option pricing and implied vol inversion
    profile                - Position value and F-profiles of an option book
    greeks                 - Finite-difference delta, gamma, theta, vega, vomma
    time_measure           - Calendar / trading-time conventions and day counts
    historical_volatility  - Incremental historical volatility tracker
    cache                  - Key-value cache used to persist rolling series
    handlers               - Per-bar wrappers: NaN sentinels, log-once, caching
    svi                    - SVI smile template for synthetic data
    config                 - Global constants and defaults
"""

__version__ = "0.3.0"
__author__ = "Leo"
