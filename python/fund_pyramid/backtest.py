"""Historical replay of the pyramid engine.

Every bar is evaluated at its close and the advice is executed verbatim:
- BUY of u units spends ``u * UNIT_PERCENT%`` of the initial capital
- SELL of u units sells ``holdings * (u * UNIT_PERCENT / position_before)``
- SELL_ALL sells all holdings

A BUY the remaining cash cannot cover is skipped, not partially filled.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

from .config import UNIT_PERCENT, EngineConfig, IndicatorConfig, ReplayConfig
from .data_manager import PriceDataManager
from .data_provider import CsvProvider, PriceFrame, YfinanceProvider
from .engine import PositionEngine
from .metrics import summarize_replay
from .types import BUY, SELL, SELL_ALL, PositionState, TradeEvent, TradingSignal

logger = logging.getLogger(__name__)


class PyramidReplay:
    """Feeds a price history to one PositionEngine and keeps cash/holdings accounting."""

    def __init__(
        self,
        dm: PriceDataManager,
        engine_cfg: EngineConfig = EngineConfig(),
        replay_cfg: ReplayConfig = ReplayConfig(),
        initial_state: Optional[PositionState] = None,
    ):
        self.dm = dm
        self.symbol = replay_cfg.symbol
        self.replay_cfg = replay_cfg
        self.engine = PositionEngine(replay_cfg.symbol, config=engine_cfg, initial_state=initial_state)

        self.initial_capital = float(replay_cfg.initial_capital)
        self.cash = float(self.initial_capital)
        self.holdings = 0.0  # fund shares

        self.trade_log: List[TradeEvent] = []
        self.equity_curve: List[Tuple[datetime, float, int]] = []
        self.signal_counts: dict[str, int] = {}

    # ---------- public API ----------

    def run(self) -> None:
        """Run the full history in the data manager."""
        for t in range(len(self.dm)):
            self.step(t)

    def step(self, t: int) -> None:
        snap = self.dm.get_snapshot(t)
        day = snap.timestamp.date()

        signal = self.engine.evaluate(snap.price, snap.ma20, day, snap.daily_change)
        self.signal_counts[signal.action] = self.signal_counts.get(signal.action, 0) + 1

        if signal.is_trade:
            self._execute(snap.timestamp, snap.price, signal)

        self.equity_curve.append(
            (snap.timestamp, self._equity(snap.price), self.engine.get_state().position_size)
        )

    # ---------- execution/accounting ----------

    def _equity(self, price: float) -> float:
        return float(self.cash + self.holdings * price)

    def _execute(self, ts: datetime, price: float, signal: TradingSignal) -> None:
        position_before = self.engine.get_state().position_size
        unit_cash = self.initial_capital * UNIT_PERCENT / 100.0

        if signal.action == BUY:
            notional = unit_cash * signal.units
            if notional > self.cash + 1e-9:
                # a partial fill would leave the engine position and the holdings out of step
                logger.warning("%s: out of cash, skipping BUY on %s", self.symbol, ts.date())
                return
            qty = notional / price
            self.cash -= notional
            self.holdings += qty
        elif signal.action == SELL and position_before > 0:
            frac = min(1.0, signal.units * UNIT_PERCENT / position_before)
            qty = -self.holdings * frac
            notional = -qty * price
            self.cash += notional
            self.holdings += qty
        elif signal.action == SELL_ALL:
            qty = -self.holdings
            notional = -qty * price
            self.cash += notional
            self.holdings = 0.0
        else:
            return

        self.engine.execute(signal, price, ts.date())
        st = self.engine.get_state()
        if st.position_size == 0:
            # rounding leftovers of partial sells
            self.cash += self.holdings * price
            self.holdings = 0.0

        self.trade_log.append(
            TradeEvent(
                timestamp=ts,
                symbol=self.symbol,
                action=signal.action,
                reason=signal.reason,
                price=float(price),
                units=int(signal.units),
                position_after=int(st.position_size),
                level_after=int(st.pyramid_level),
                qty=float(qty),
                notional=float(notional),
                cash_after=float(self.cash),
                equity_after=self._equity(price),
            )
        )


def run_replay_from_yfinance(
    symbol: str,
    start: str,
    end: str,
    output_dir: str | Path = "outputs",
    engine_cfg: EngineConfig = EngineConfig(),
    ind_cfg: IndicatorConfig = IndicatorConfig(),
    initial_capital: float = ReplayConfig.initial_capital,
    auto_adjust: bool = False,
) -> dict:
    """Convenience runner using yfinance.

    Fetches extra history before ``start`` so MA20 is fully warmed up, then
    trims the replay back to the requested window.
    """
    start_dt = pd.to_datetime(start)
    # calendar days approximation (weekends/holidays) for daily bars
    warmup_start = start_dt - pd.Timedelta(days=int(ind_cfg.ma_window * 2))

    frame = YfinanceProvider().fetch(
        symbol=symbol,
        start=str(warmup_start.date()),
        end=end,
        auto_adjust=auto_adjust,
    )
    return _run_core(frame, output_dir, engine_cfg, ind_cfg, initial_capital, start_dt=start_dt)


def run_replay_from_csv(
    csv_path: str | Path,
    symbol: str,
    output_dir: str | Path = "outputs",
    engine_cfg: EngineConfig = EngineConfig(),
    ind_cfg: IndicatorConfig = IndicatorConfig(),
    initial_capital: float = ReplayConfig.initial_capital,
) -> dict:
    frame = CsvProvider().fetch(csv_path=csv_path, symbol=symbol)
    return _run_core(frame, output_dir, engine_cfg, ind_cfg, initial_capital)


def _run_core(
    frame: PriceFrame,
    output_dir: str | Path,
    engine_cfg: EngineConfig,
    ind_cfg: IndicatorConfig,
    initial_capital: float,
    start_dt: Optional[pd.Timestamp] = None,
) -> dict:
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    dm = PriceDataManager(frame, ind_cfg)
    if start_dt is not None:
        # indicators were computed on the full history; replay only the window
        dm.df = dm.df.loc[dm.df.index >= start_dt]
    if len(dm) == 0:
        raise ValueError(f"no price bars to replay for symbol={frame.symbol}")

    replay = PyramidReplay(
        dm=dm,
        engine_cfg=engine_cfg,
        replay_cfg=ReplayConfig(symbol=frame.symbol, initial_capital=initial_capital),
    )
    replay.run()

    eq = pd.DataFrame(replay.equity_curve, columns=["Date", "Equity", "Position"]).set_index("Date")
    trades = pd.DataFrame([asdict(x) for x in replay.trade_log])

    safe = frame.symbol.replace(".", "_")
    eq_path = out_dir / f"equity_{safe}.csv"
    tr_path = out_dir / f"trades_{safe}.csv"
    eq.to_csv(eq_path, encoding="utf-8")
    trades.to_csv(tr_path, index=False, encoding="utf-8")

    logger.info("%s: replayed %d bars, %d trades", frame.symbol, len(dm), len(replay.trade_log))
    return {
        "equity": eq_path,
        "trades": tr_path,
        "state": replay.engine.get_state(),
        "summary": summarize_replay(eq, initial_capital, len(replay.trade_log)),
    }
