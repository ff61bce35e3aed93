"""Data manager: computes indicators and provides per-bar engine input."""

from __future__ import annotations

from datetime import datetime

import numpy as np
import pandas as pd

from .config import IndicatorConfig
from .data_provider import PriceFrame
from .indicators import daily_change as daily_change_func, sma as sma_func
from .types import MarketSnapshot


class PriceDataManager:
    """Holds the price series and indicator columns for a single fund."""

    def __init__(self, frame: PriceFrame, ind_cfg: IndicatorConfig = IndicatorConfig()):
        self.symbol = frame.symbol
        self.df = frame.df.copy()
        self.ind_cfg = ind_cfg

        self._compute_indicators()

    def _compute_indicators(self) -> None:
        # ensure strictly increasing index before rolling windows
        self.df = self.df[~self.df.index.duplicated(keep="last")].sort_index()

        close = self.df["Close"]
        self.df["ma20"] = sma_func(close, self.ind_cfg.ma_window)
        self.df["dailyChange"] = daily_change_func(close)

    def __len__(self) -> int:
        return int(len(self.df))

    def get_bar_timestamp(self, i: int) -> datetime:
        return pd.Timestamp(self.df.index[i]).to_pydatetime()

    def get_snapshot(self, i: int) -> MarketSnapshot:
        """Engine input for bar i (close, MA20 and change vs. the previous close)."""
        row = self.df.iloc[i]
        chg = float(row["dailyChange"])
        return MarketSnapshot(
            timestamp=self.get_bar_timestamp(i),
            price=float(row["Close"]),
            ma20=float(row["ma20"]),
            daily_change=chg if np.isfinite(chg) else None,
        )
