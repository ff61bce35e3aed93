"""Data providers (yfinance / CSV) and a standardized price schema.

Funds usually publish a single NAV per day, so the schema only requires a
``Close`` column. OHLC columns are kept when the source has them.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pandas as pd

# source column (lowercased) -> standard column
_COLUMN_ALIASES = {
    "close": "Close",
    "nav": "Close",
    "unit nav": "Close",
    "dwjz": "Close",  # eastmoney unit NAV
    "price": "Close",
    "adj close": "AdjClose",
    "adjclose": "AdjClose",
    "open": "Open",
    "high": "High",
    "low": "Low",
    "volume": "Volume",
}

_DATETIME_ALIASES = ["Datetime", "datetime", "timestamp", "Time", "time", "date", "FSRQ", "fsrq"]


@dataclass(frozen=True)
class PriceFrame:
    """Standard price dataframe wrapper."""

    df: pd.DataFrame  # columns: Close (+ optional Open/High/Low/Volume); index: datetime
    symbol: str


def _standardize_price_columns(df: pd.DataFrame) -> pd.DataFrame:
    # yfinance can return MultiIndex columns depending on options/version.
    # We standardize to a simple 1-level column index.
    if isinstance(df.columns, pd.MultiIndex):
        df = df.copy()
        # Common yfinance layout: (field, ticker)
        if df.columns.nlevels >= 2:
            tickers = list(dict.fromkeys(df.columns.get_level_values(-1)))
            if len(tickers) == 1:
                # single ticker → drop ticker level
                df.columns = df.columns.get_level_values(0)
            else:
                # multiple tickers → keep only the first ticker's fields
                df = df.xs(tickers[0], axis=1, level=-1, drop_level=True)

    rename_map = {}
    taken = set()
    for col in df.columns:
        std = _COLUMN_ALIASES.get(str(col).strip().lower())
        # first alias wins (e.g. a CSV with both "Close" and "NAV")
        if std and std not in taken:
            rename_map[col] = std
            taken.add(std)
    df = df[list(rename_map)].rename(columns=rename_map).copy()

    # If provider only has AdjClose, use it as Close.
    if "Close" not in df.columns and "AdjClose" in df.columns:
        df = df.rename(columns={"AdjClose": "Close"})

    # If both Close and AdjClose exist, prefer Close and drop AdjClose.
    if "Close" in df.columns and "AdjClose" in df.columns:
        df = df.drop(columns=["AdjClose"])

    if "Close" not in df.columns:
        raise ValueError("Missing required price column: Close (or NAV/DWJZ/Adj Close)")

    ordered = [c for c in ["Open", "High", "Low", "Close", "Volume"] if c in df.columns]
    df = df[ordered].apply(pd.to_numeric, errors="coerce").astype(float)
    df = df.dropna(subset=["Close"])
    df = df[~df.index.duplicated(keep="last")].sort_index()
    return df


class YfinanceProvider:
    """Fetch daily prices from yfinance (ETFs / listed funds)."""

    def fetch(
        self,
        symbol: str,
        start: str,
        end: str,
        interval: str = "1d",
        auto_adjust: bool = False,
    ) -> PriceFrame:
        import yfinance as yf  # local import to keep dependency optional in some environments

        df = yf.download(
            tickers=symbol,
            start=start,
            end=end,
            interval=interval,
            auto_adjust=auto_adjust,
            progress=False,
        )
        if df is None or len(df) == 0:
            raise RuntimeError(f"yfinance returned empty data for symbol={symbol}")

        df = _standardize_price_columns(df)
        return PriceFrame(df=df, symbol=symbol)


class CsvProvider:
    """Load a price / NAV history from a CSV file."""

    def fetch(self, csv_path: str | Path, symbol: str, datetime_col: str = "Date") -> PriceFrame:
        path = Path(csv_path)
        if not path.exists():
            raise FileNotFoundError(str(path))

        df = pd.read_csv(path)
        if datetime_col not in df.columns:
            # try common alternatives
            for cand in _DATETIME_ALIASES:
                if cand in df.columns:
                    datetime_col = cand
                    break

        if datetime_col not in df.columns:
            raise ValueError(f"CSV must contain a datetime column. Tried '{datetime_col}' and common aliases.")

        df[datetime_col] = pd.to_datetime(df[datetime_col])
        df = df.set_index(datetime_col).sort_index()

        df = _standardize_price_columns(df)
        if df.empty:
            raise ValueError(f"CSV has no usable price rows: {path}")
        return PriceFrame(df=df, symbol=symbol)
