"""Indicator computation utilities.

Computed on the CLOSE (NAV) series. The engine evaluates at the close, so the
current bar is included in the moving average.
"""

from __future__ import annotations

import pandas as pd


def sma(series: pd.Series, window: int) -> pd.Series:
    """Simple moving average.

    Uses a partial window from the first bar (min_periods=1) so a short
    history still yields a usable MA20.
    """
    if window <= 0:
        raise ValueError("window must be positive")
    return series.astype(float).rolling(window=window, min_periods=1).mean()


def daily_change(series: pd.Series) -> pd.Series:
    """Bar-over-bar change as a fraction (-0.08 for -8%). First bar is NaN."""
    return series.astype(float).pct_change()
