"""Pyramid position manager for a single fund.

Rule cascade evaluated on every price snapshot (first match wins):
- investment thesis invalidated -> liquidate
- invalid price / black-swan day -> wait
- in profit -> offensive module (trailing stop, MA20 warning, structured profit-taking)
- otherwise -> defensive module (staged pyramid accumulation with cooldown)

The engine only advises. The host executes a trade and reports it back through
the ``execute_*`` methods, which update the state and append to the history.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import List, Optional, Union

from .config import MAX_POSITION, MAX_PYRAMID_LEVEL, UNIT_PERCENT, EngineConfig
from .types import (
    BUY,
    HOLD,
    SELL,
    SELL_ALL,
    WAIT,
    PositionState,
    TradingOperation,
    TradingSignal,
)

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime]


def _to_datetime(x: DateLike) -> datetime:
    if isinstance(x, datetime):
        return x.replace(tzinfo=None)
    if isinstance(x, date):
        return datetime(x.year, x.month, x.day)
    s = str(x).strip()
    if s.endswith("Z"):
        s = s[:-1]
    return datetime.fromisoformat(s).replace(tzinfo=None)


def _iso(x: DateLike) -> str:
    if isinstance(x, (date, datetime)):
        return x.isoformat()[:10]
    return str(x)


def days_between(d1: DateLike, d2: DateLike) -> int:
    """Whole days between two dates (absolute, floored)."""
    return abs(_to_datetime(d2) - _to_datetime(d1)).days


def _has_tier(fired: List[float], threshold: float) -> bool:
    return any(math.isclose(t, threshold, abs_tol=1e-9) for t in fired)


@dataclass
class _EngineState:
    fund_code: str
    position_size: int = 0
    avg_cost: float = 0.0
    peak_price: float = 0.0
    last_op_date: Optional[str] = None
    logic_status: bool = True
    pyramid_level: int = 0
    last_buy_price: float = 0.0
    operation_history: List[TradingOperation] = field(default_factory=list)

    @classmethod
    def from_snapshot(cls, s: PositionState) -> "_EngineState":
        return cls(
            fund_code=s.fund_code,
            position_size=int(s.position_size),
            avg_cost=float(s.avg_cost),
            peak_price=float(s.peak_price),
            last_op_date=s.last_op_date,
            logic_status=bool(s.logic_status),
            pyramid_level=int(s.pyramid_level),
            last_buy_price=float(s.last_buy_price),
            operation_history=list(s.operation_history),
        )

    def snapshot(self) -> PositionState:
        return PositionState(
            fund_code=self.fund_code,
            position_size=self.position_size,
            avg_cost=self.avg_cost,
            peak_price=self.peak_price,
            last_op_date=self.last_op_date,
            logic_status=self.logic_status,
            pyramid_level=self.pyramid_level,
            last_buy_price=self.last_buy_price,
            operation_history=tuple(self.operation_history),
        )


class PositionEngine:
    """Pyramid accumulation / structured profit-taking state machine for one fund.

    Not thread-safe: the host owns one engine per fund code and serializes calls.
    """

    def __init__(
        self,
        fund_code: str,
        config: EngineConfig = EngineConfig(),
        initial_state: Optional[PositionState] = None,
    ):
        self.cfg = config
        if initial_state is not None:
            self._st = _EngineState.from_snapshot(replace(initial_state, fund_code=fund_code))
        else:
            self._st = _EngineState(fund_code=fund_code)

    @property
    def fund_code(self) -> str:
        return self._st.fund_code

    # ---------- public API ----------

    def evaluate(
        self,
        current_price: float,
        ma20: float,
        current_date: DateLike,
        daily_change: Optional[float] = None,
    ) -> TradingSignal:
        """Evaluate a price snapshot and return an advisory signal.

        Args:
            current_price: current price / NAV
            ma20: 20-day moving average
            current_date: evaluation date (YYYY-MM-DD)
            daily_change: today's change as a fraction (e.g. -0.08), optional

        Only side effect: ``peak_price`` follows new highs while a position is open.
        """
        st = self._st

        # 1) thesis invalidated -> forced liquidation, whatever the inputs
        if not st.logic_status:
            return TradingSignal(
                action=SELL_ALL,
                units=st.position_size // UNIT_PERCENT,
                reason="Investment thesis invalidated, liquidate position",
                pyramid_level=st.pyramid_level,
            )

        # 2) caller contract: reject non-positive / non-finite prices
        if not _is_valid_price(current_price):
            logger.warning("%s: rejecting invalid price %r", st.fund_code, current_price)
            return TradingSignal(
                action=WAIT,
                units=0,
                reason=f"Invalid price {current_price!r}, no decision",
                pyramid_level=st.pyramid_level,
            )
        current_price = float(current_price)

        # 3) black-swan guard
        if daily_change is not None and daily_change <= -self.cfg.black_swan_drop:
            logger.info("%s: black-swan day (%.1f%%), trading suspended", st.fund_code, daily_change * 100)
            return TradingSignal(
                action=WAIT,
                units=0,
                reason=f"Black-swan alert: daily change {daily_change * 100:.1f}%, trading suspended",
                pyramid_level=st.pyramid_level,
            )

        # 4) peak tracking for the trailing stop
        if st.position_size > 0 and current_price > st.peak_price:
            st.peak_price = current_price

        roi = self._roi(current_price)

        if roi > 0 and st.position_size > 0:
            signal = self._evaluate_offensive(current_price, ma20, roi)
        else:
            signal = self._evaluate_defensive(current_price, current_date)
        logger.debug("%s: %s x%d (%s)", st.fund_code, signal.action, signal.units, signal.reason)
        return signal

    def execute(self, signal: TradingSignal, price: float, date: DateLike) -> Optional[TradingOperation]:
        """Apply a signal verbatim. HOLD/WAIT (or zero units) is a no-op."""
        if not signal.is_trade:
            return None
        if signal.action == BUY:
            return self.execute_buy(signal.units, price, date)
        if signal.action == SELL:
            return self.execute_sell(signal.units, price, date)
        return self.execute_sell_all(price, date)

    def execute_buy(
        self,
        units: int,
        price: float,
        date: DateLike,
        amount: Optional[float] = None,
        note: Optional[str] = None,
    ) -> TradingOperation:
        _check_trade_args(units, price)
        st = self._st

        new_position = min(MAX_POSITION, st.position_size + units * UNIT_PERCENT)
        # only the size actually added under the 100% cap carries the new price
        added = new_position - st.position_size
        if added > 0:
            st.avg_cost = (st.avg_cost * st.position_size + price * added) / new_position
        else:
            logger.warning("%s: BUY on a full position leaves the cost basis unchanged", st.fund_code)
        st.position_size = new_position
        st.last_buy_price = float(price)
        st.peak_price = max(st.peak_price, float(price))
        st.last_op_date = _iso(date)
        st.pyramid_level = min(MAX_PYRAMID_LEVEL, st.pyramid_level + 1)

        op = self._record(BUY, price, units, date, amount=amount, note=note)
        logger.info(
            "%s: BUY %d unit(s) @ %.4f -> position %d%%, level %d, avg cost %.4f",
            st.fund_code, units, price, st.position_size, st.pyramid_level, st.avg_cost,
        )
        return op

    def execute_sell(
        self,
        units: int,
        price: float,
        date: DateLike,
        amount: Optional[float] = None,
        note: Optional[str] = None,
    ) -> TradingOperation:
        _check_trade_args(units, price)
        st = self._st

        # ROI and consumed tier are fixed against the cost basis before the sale
        roi = self._roi(price)
        tier = self._tier_for_roi(roi, self.executed_tiers()) if st.position_size > 0 else None

        st.position_size = max(0, st.position_size - units * UNIT_PERCENT)
        st.last_op_date = _iso(date)
        if st.position_size == 0:
            self._reset_position()

        op = self._record(SELL, price, units, date, roi=roi, tier=tier, amount=amount, note=note)
        logger.info(
            "%s: SELL %d unit(s) @ %.4f (roi %.2f%%, tier %s) -> position %d%%",
            st.fund_code, units, price, roi * 100, tier, st.position_size,
        )
        return op

    def execute_sell_all(
        self,
        price: float,
        date: DateLike,
        amount: Optional[float] = None,
        note: Optional[str] = None,
    ) -> TradingOperation:
        if not _is_valid_price(price):
            raise ValueError(f"price must be positive, got {price!r}")
        st = self._st
        if st.position_size == 0:
            logger.warning("%s: SELL_ALL on an empty position", st.fund_code)

        units = st.position_size // UNIT_PERCENT
        roi = self._roi(price)
        st.position_size = 0
        st.last_op_date = _iso(date)
        self._reset_position()

        op = self._record(SELL_ALL, price, units, date, roi=roi, amount=amount, note=note)
        logger.info("%s: SELL_ALL %d unit(s) @ %.4f (roi %.2f%%)", st.fund_code, units, price, roi * 100)
        return op

    # ---------- state management ----------

    def set_logic_status(self, status: bool) -> None:
        """Liquidation itself happens on the next evaluate()."""
        self._st.logic_status = bool(status)
        logger.info("%s: logic status set to %s", self.fund_code, bool(status))

    def get_state(self) -> PositionState:
        return self._st.snapshot()

    def load_state(self, state: Union[PositionState, dict]) -> None:
        if isinstance(state, dict):
            state = PositionState.from_dict(state)
        self._st = _EngineState.from_snapshot(state)

    def cooldown_remaining(self, current_date: DateLike) -> int:
        """Days left before the next accumulation buy is allowed (0 if none)."""
        last = self._st.last_op_date
        if not last:
            return 0
        return max(0, int(self.cfg.cooldown_days) - days_between(last, current_date))

    def executed_tiers(self) -> List[float]:
        """ROI thresholds of the profit-taking tiers already fired in this position's lifetime."""
        fired: List[float] = []
        for op in self._lifetime_operations():
            if op.action != SELL:
                continue
            tier = op.tier
            if tier is None and op.roi is None:
                # record written before ROI-at-sale was stored: derive against the current cost
                tier = self._tier_for_roi(self._roi(op.price), fired)
            if tier is not None and not _has_tier(fired, tier):
                fired.append(tier)
        return fired

    # ---------- internal helpers ----------

    def _evaluate_defensive(self, current_price: float, current_date: DateLike) -> TradingSignal:
        st = self._st
        level = st.pyramid_level

        days_left = self.cooldown_remaining(current_date)
        if days_left > 0:
            return TradingSignal(
                action=HOLD,
                units=0,
                reason=f"Cooldown active, {days_left} day(s) remaining",
                pyramid_level=level,
            )

        if level == 0:
            first = self.cfg.step(1)
            return TradingSignal(
                action=BUY,
                units=first.units,
                reason=f"Open base position (Level 1: {first.total_position}%)",
                pyramid_level=1,
            )

        if level >= MAX_PYRAMID_LEVEL:
            return TradingSignal(
                action=HOLD,
                units=0,
                reason="Fully loaded, waiting for a rebound",
                pyramid_level=level,
            )

        nxt = self.cfg.step(level + 1)
        roi = self._roi(current_price)
        if st.last_buy_price <= 0:
            return TradingSignal(
                action=HOLD,
                units=0,
                reason="No reference buy price, cannot size the next level",
                roi=roi,
                pyramid_level=level,
            )

        drop = (st.last_buy_price - current_price) / st.last_buy_price
        if drop >= nxt.drop_trigger:
            return TradingSignal(
                action=BUY,
                units=nxt.units,
                reason=f"Level {nxt.level} add: {drop * 100:.1f}% below last buy",
                roi=roi,
                pyramid_level=nxt.level,
            )

        trigger_price = st.last_buy_price * (1.0 - nxt.drop_trigger)
        return TradingSignal(
            action=HOLD,
            units=0,
            reason=f"Waiting for Level {nxt.level} (buy at or below {trigger_price:.4f})",
            roi=roi,
            pyramid_level=level,
        )

    def _evaluate_offensive(self, current_price: float, ma20: float, roi: float) -> TradingSignal:
        st = self._st
        cfg = self.cfg

        drawdown = (st.peak_price - current_price) / st.peak_price if st.peak_price > 0 else 0.0
        if drawdown >= cfg.trailing_stop:
            return TradingSignal(
                action=SELL_ALL,
                units=st.position_size // UNIT_PERCENT,
                reason=f"Trailing stop: {drawdown * 100:.1f}% off the peak {st.peak_price:.4f}",
                roi=roi,
                pyramid_level=st.pyramid_level,
            )

        if _is_valid_price(ma20) and current_price < ma20:
            return TradingSignal(
                action=HOLD,
                units=0,
                reason=f"Price {current_price:.4f} broke below MA20 {ma20:.4f}, watch the trend",
                roi=roi,
                pyramid_level=st.pyramid_level,
            )

        fired = self.executed_tiers()
        for tier in cfg.profit_tiers:
            if roi >= tier.roi_threshold and not _has_tier(fired, tier.roi_threshold):
                units = math.ceil(round(st.position_size * tier.sell_ratio / UNIT_PERCENT, 9))
                return TradingSignal(
                    action=SELL,
                    units=units,
                    reason=(
                        f"ROI {roi * 100:.1f}% reached the {tier.roi_threshold * 100:.0f}% tier: "
                        f"sell {tier.sell_ratio * 100:.0f}% of the position"
                    ),
                    roi=roi,
                    pyramid_level=st.pyramid_level,
                )

        return TradingSignal(
            action=HOLD,
            units=0,
            reason=f"Holding, ROI {roi * 100:.2f}%",
            roi=roi,
            pyramid_level=st.pyramid_level,
        )

    def _roi(self, price: float) -> float:
        st = self._st
        if st.position_size == 0 or st.avg_cost <= 0:
            return 0.0
        return (float(price) - st.avg_cost) / st.avg_cost

    def _tier_for_roi(self, roi: float, fired: List[float]) -> Optional[float]:
        for tier in self.cfg.profit_tiers:
            if _has_tier(fired, tier.roi_threshold):
                continue
            if roi >= tier.roi_threshold - self.cfg.tier_tolerance:
                return tier.roi_threshold
            return None
        return None

    def _lifetime_operations(self) -> List[TradingOperation]:
        """Operations since the position was last opened."""
        hist = self._st.operation_history
        start = 0
        for i, op in enumerate(hist):
            if op.action != BUY and op.position_after == 0:
                start = i + 1
        return hist[start:]

    def _record(self, action: str, price: float, shares: int, date: DateLike, **extra) -> TradingOperation:
        st = self._st
        op = TradingOperation(
            date=_iso(date),
            action=action,
            price=float(price),
            shares=int(shares),
            position_after=st.position_size,
            level_after=st.pyramid_level,
            **extra,
        )
        st.operation_history.append(op)
        return op

    def _reset_position(self) -> None:
        st = self._st
        st.avg_cost = 0.0
        st.peak_price = 0.0
        st.pyramid_level = 0
        st.last_buy_price = 0.0


def _is_valid_price(x) -> bool:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return False
    return math.isfinite(v) and v > 0


def _check_trade_args(units: int, price: float) -> None:
    if int(units) <= 0:
        raise ValueError(f"units must be positive, got {units!r}")
    if not _is_valid_price(price):
        raise ValueError(f"price must be positive, got {price!r}")


def create_engine(
    fund_code: str,
    saved_state: Union[PositionState, dict, None] = None,
    config: Optional[EngineConfig] = None,
) -> PositionEngine:
    """Factory: a fresh engine, or one restored from a saved state."""
    engine = PositionEngine(fund_code, config=config or EngineConfig())
    if saved_state is not None:
        engine.load_state(saved_state)
    return engine
