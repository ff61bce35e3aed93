import pandas as pd
import pytest

from fund_pyramid.backtest import PyramidReplay, run_replay_from_csv
from fund_pyramid.config import ReplayConfig
from fund_pyramid.data_manager import PriceDataManager
from fund_pyramid.data_provider import PriceFrame


def _prices() -> pd.DataFrame:
    # 30 flat days, a -12% gap that then holds, then a rally
    closes = [100.0] * 30 + [88.0] * 30 + [110.0] * 30
    idx = pd.date_range("2024-01-01", periods=len(closes), freq="D")
    return pd.DataFrame({"Date": idx, "NAV": closes})


def test_replay_executes_engine_advice():
    df = _prices().set_index("Date").rename(columns={"NAV": "Close"})
    dm = PriceDataManager(PriceFrame(df=df, symbol="TEST"))
    replay = PyramidReplay(dm, replay_cfg=ReplayConfig(symbol="TEST", initial_capital=100_000.0))
    replay.run()

    actions = [(t.timestamp.date().isoformat(), t.action, t.units) for t in replay.trade_log]
    assert actions == [
        ("2024-01-01", "BUY", 2),  # base position
        ("2024-02-01", "BUY", 2),  # level 2 the day after the black-swan gap
        ("2024-03-01", "SELL", 1),  # first profit tier
    ]
    assert replay.signal_counts["WAIT"] == 1

    st = replay.engine.get_state()
    assert st.position_size == 30
    assert st.pyramid_level == 2
    assert st.avg_cost == pytest.approx(94.0)

    first = replay.trade_log[0]
    assert first.notional == pytest.approx(20_000.0)
    assert first.cash_after == pytest.approx(80_000.0)
    assert len(replay.equity_curve) == 90


def test_run_replay_from_csv_writes_outputs(tmp_path):
    csv = tmp_path / "nav.csv"
    _prices().to_csv(csv, index=False)

    res = run_replay_from_csv(csv, symbol="161.725", output_dir=tmp_path / "out")

    assert res["equity"].name == "equity_161_725.csv"
    assert res["equity"].exists()
    trades = pd.read_csv(res["trades"])
    assert trades["action"].tolist() == ["BUY", "BUY", "SELL"]
    assert res["summary"]["n_trades"] == 3
    assert res["state"].fund_code == "161.725"
    equity = pd.read_csv(res["equity"])
    assert len(equity) == 90
    assert equity["Position"].iloc[-1] == 30
    assert res["summary"]["exposure"] > 0


def test_replay_skips_buys_it_cannot_fund():
    idx = pd.date_range("2024-01-01", periods=3, freq="D")
    dm = PriceDataManager(PriceFrame(df=pd.DataFrame({"Close": [100.0] * 3}, index=idx), symbol="TEST"))
    replay = PyramidReplay(dm, replay_cfg=ReplayConfig(symbol="TEST", initial_capital=100_000.0))
    replay.cash = 1_000.0
    replay.run()

    assert replay.trade_log == []
    assert replay.signal_counts["BUY"] == 3
    assert replay.holdings == 0.0
    assert replay.cash == 1_000.0
    st = replay.engine.get_state()
    assert st.position_size == 0
    assert st.operation_history == ()
