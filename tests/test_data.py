import math

import numpy as np
import pandas as pd
import pytest

from fund_pyramid.config import IndicatorConfig
from fund_pyramid.data_manager import PriceDataManager
from fund_pyramid.data_provider import CsvProvider, PriceFrame
from fund_pyramid.indicators import daily_change, sma
from fund_pyramid.metrics import (
    annualized_return,
    drawdown_on_capital,
    exposure,
    return_on_capital,
    summarize_replay,
)


def test_sma_uses_partial_window():
    s = pd.Series([1.0, 2.0, 3.0, 4.0])
    assert sma(s, 2).tolist() == [1.0, 1.5, 2.5, 3.5]
    with pytest.raises(ValueError):
        sma(s, 0)


def test_daily_change_is_fractional():
    out = daily_change(pd.Series([100.0, 92.0, 92.0]))
    assert math.isnan(out.iloc[0])
    assert out.iloc[1] == pytest.approx(-0.08)
    assert out.iloc[2] == 0.0


def test_csv_provider_accepts_nav_column(tmp_path):
    p = tmp_path / "nav.csv"
    pd.DataFrame({"Date": ["2024-01-02", "2024-01-01", "2024-01-03"], "NAV": [1.1, 1.0, 1.2]}).to_csv(p, index=False)
    frame = CsvProvider().fetch(p, symbol="161725")
    assert list(frame.df.columns) == ["Close"]
    assert frame.df["Close"].tolist() == [1.0, 1.1, 1.2]


def test_csv_provider_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        CsvProvider().fetch(tmp_path / "missing.csv", symbol="x")

    p = tmp_path / "bad.csv"
    pd.DataFrame({"Date": ["2024-01-01"], "Foo": [1.0]}).to_csv(p, index=False)
    with pytest.raises(ValueError):
        CsvProvider().fetch(p, symbol="x")


def test_data_manager_snapshots():
    idx = pd.date_range("2024-01-01", periods=3, freq="D")
    frame = PriceFrame(df=pd.DataFrame({"Close": [10.0, 9.0, 12.0]}, index=idx), symbol="x")
    dm = PriceDataManager(frame, IndicatorConfig(ma_window=2))

    assert len(dm) == 3
    first = dm.get_snapshot(0)
    assert first.daily_change is None
    assert first.ma20 == 10.0

    last = dm.get_snapshot(2)
    assert last.price == 12.0
    assert last.ma20 == pytest.approx(10.5)
    assert last.daily_change == pytest.approx(1.0 / 3.0)
    assert last.timestamp.date().isoformat() == "2024-01-03"


def test_metrics_against_capital_base():
    idx = pd.date_range("2023-01-01", periods=4, freq="D")
    eq = pd.Series([100.0, 120.0, 90.0, 130.0], index=idx)
    assert drawdown_on_capital(eq, 100.0) == pytest.approx(0.25)
    assert return_on_capital(eq, 100.0) == pytest.approx(0.30)
    assert np.isnan(annualized_return(eq.iloc[:1], 100.0))

    yearly = pd.Series([100.0, 110.0], index=pd.to_datetime(["2023-01-01", "2024-01-01"]))
    assert annualized_return(yearly, 100.0) == pytest.approx(0.10)


def test_drawdown_counts_losses_below_capital():
    idx = pd.date_range("2023-01-01", periods=3, freq="D")
    eq = pd.Series([95.0, 90.0, 100.0], index=idx)
    assert drawdown_on_capital(eq, 100.0) == pytest.approx(0.10)
    assert np.isnan(drawdown_on_capital(eq, 0.0))


def test_summarize_replay_reports_exposure():
    idx = pd.date_range("2023-01-01", periods=3, freq="D")
    curve = pd.DataFrame({"Equity": [100.0, 101.0, 102.0], "Position": [0, 20, 40]}, index=idx)
    assert exposure(curve["Position"]) == pytest.approx(0.2)

    summary = summarize_replay(curve, 100.0, n_trades=2)
    assert summary["return_on_capital"] == pytest.approx(0.02)
    assert summary["max_drawdown"] == 0.0
    assert summary["exposure"] == pytest.approx(0.2)
    assert summary["n_trades"] == 2
