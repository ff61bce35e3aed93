"""Replay performance metrics.

All figures are measured against the capital that backs a 100% position, so a
fund that is only 20% invested is not credited with a full-size return.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from .config import MAX_POSITION


def return_on_capital(equity: pd.Series, capital: float) -> float:
    """Final equity over the capital base, minus one."""
    if len(equity) == 0 or capital <= 0:
        return float("nan")
    return float(equity.iloc[-1]) / float(capital) - 1.0


def drawdown_on_capital(equity: pd.Series, capital: float) -> float:
    """Largest fall from a running high (as positive fraction).

    The running high starts at the capital base, so losses while building the
    pyramid count as drawdown from day one.
    """
    if len(equity) == 0 or capital <= 0:
        return float("nan")
    high = equity.astype(float).cummax().clip(lower=float(capital))
    return float((1.0 - equity / high).max())


def annualized_return(equity: pd.Series, capital: float) -> float:
    """Return on capital scaled to a 365-day year."""
    if len(equity) < 2:
        return float("nan")
    days = (equity.index[-1].date() - equity.index[0].date()).days
    growth = 1.0 + return_on_capital(equity, capital)
    if days <= 0 or not np.isfinite(growth) or growth <= 0:
        return float("nan")
    return growth ** (365.0 / days) - 1.0


def exposure(position: pd.Series) -> float:
    """Average invested fraction of the target position over the replay."""
    if len(position) == 0:
        return float("nan")
    return float(position.astype(float).mean()) / MAX_POSITION


def summarize_replay(curve: pd.DataFrame, capital: float, n_trades: int) -> dict:
    """Summary of a replay curve with ``Equity`` and ``Position`` columns."""
    equity = curve["Equity"]
    return {
        "return_on_capital": return_on_capital(equity, capital),
        "annualized_return": annualized_return(equity, capital),
        "max_drawdown": drawdown_on_capital(equity, capital),
        "exposure": exposure(curve["Position"]),
        "n_trades": int(n_trades),
    }
