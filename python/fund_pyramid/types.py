"""Shared types for the pyramid position manager.

The guiding principle is to keep the runtime objects small and explicit.
Records are frozen; the engine replaces them instead of mutating them.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

# Trading actions
BUY = "BUY"
SELL = "SELL"
SELL_ALL = "SELL_ALL"
HOLD = "HOLD"
WAIT = "WAIT"

TRADE_ACTIONS = (BUY, SELL, SELL_ALL)


def new_operation_id() -> str:
    """Unique record id, kept when a state is saved and reloaded."""
    return f"op_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _opt_float(x) -> Optional[float]:
    return None if x is None else float(x)


@dataclass(frozen=True)
class TradingSignal:
    """Advisory output of one evaluation. The engine never trades by itself."""

    action: str  # BUY/SELL/SELL_ALL/HOLD/WAIT
    units: int  # 1 unit = 10% of the target position
    reason: str
    roi: Optional[float] = None
    pyramid_level: Optional[int] = None

    @property
    def is_trade(self) -> bool:
        return self.action in TRADE_ACTIONS and self.units > 0


@dataclass(frozen=True)
class TradingOperation:
    """A single executed operation (immutable once recorded)."""

    date: str  # YYYY-MM-DD
    action: str  # BUY/SELL/SELL_ALL
    price: float
    shares: int  # units of 10%
    position_after: int
    level_after: int

    # ROI against the average cost in force before the trade (None for buys)
    roi: Optional[float] = None
    # profit-taking tier this sell consumed, identified by its ROI threshold
    tier: Optional[float] = None

    id: str = field(default_factory=new_operation_id)
    amount: Optional[float] = None  # cash amount, when the host tracks it
    note: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "action": self.action,
            "price": self.price,
            "shares": self.shares,
            "positionAfter": self.position_after,
            "levelAfter": self.level_after,
            "roi": self.roi,
            "tier": self.tier,
            "amount": self.amount,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TradingOperation":
        """Build a record from its camelCase dict form. Unknown keys are ignored."""
        kwargs = dict(
            date=str(d["date"]),
            action=str(d["action"]).upper(),
            price=float(d.get("price") or 0.0),
            shares=int(d.get("shares") or 0),
            position_after=int(d.get("positionAfter") or 0),
            level_after=int(d.get("levelAfter") or 0),
            roi=_opt_float(d.get("roi")),
            tier=_opt_float(d.get("tier")),
            amount=_opt_float(d.get("amount")),
            note=d.get("note"),
        )
        if d.get("id"):
            kwargs["id"] = str(d["id"])
        return cls(**kwargs)


@dataclass(frozen=True)
class PositionState:
    """Snapshot of one fund's trading state."""

    fund_code: str
    position_size: int = 0  # 0..100, multiple of UNIT_PERCENT
    avg_cost: float = 0.0
    peak_price: float = 0.0
    last_op_date: Optional[str] = None
    logic_status: bool = True
    pyramid_level: int = 0  # 0 = flat, 4 = fully loaded
    last_buy_price: float = 0.0
    operation_history: Tuple[TradingOperation, ...] = ()

    def to_dict(self) -> dict:
        return {
            "fundCode": self.fund_code,
            "positionSize": self.position_size,
            "avgCost": self.avg_cost,
            "peakPrice": self.peak_price,
            "lastOpDate": self.last_op_date,
            "logicStatus": self.logic_status,
            "pyramidLevel": self.pyramid_level,
            "lastBuyPrice": self.last_buy_price,
            "operationHistory": [op.to_dict() for op in self.operation_history],
        }

    @classmethod
    def from_dict(cls, d: dict, fund_code: Optional[str] = None) -> "PositionState":
        """Build a snapshot from the dashboard's storage format.

        Missing keys take defaults, unknown keys are ignored.
        """
        code = fund_code or d.get("fundCode")
        if not code:
            raise ValueError("state dict must carry a fundCode")
        history = tuple(TradingOperation.from_dict(op) for op in (d.get("operationHistory") or []))
        return cls(
            fund_code=str(code),
            position_size=int(d.get("positionSize") or 0),
            avg_cost=float(d.get("avgCost") or 0.0),
            peak_price=float(d.get("peakPrice") or 0.0),
            last_op_date=d.get("lastOpDate") or None,
            logic_status=bool(d.get("logicStatus", True)),
            pyramid_level=int(d.get("pyramidLevel") or 0),
            last_buy_price=float(d.get("lastBuyPrice") or 0.0),
            operation_history=history,
        )


@dataclass(frozen=True)
class MarketSnapshot:
    """Per-bar engine input built from the price history."""

    timestamp: datetime
    price: float
    ma20: float
    daily_change: Optional[float]  # fraction, None on the first bar


@dataclass(frozen=True)
class TradeEvent:
    """A single trade executed during a replay."""

    timestamp: datetime
    symbol: str
    action: str  # BUY/SELL/SELL_ALL
    reason: str
    price: float
    units: int
    position_after: int  # 0..100
    level_after: int
    qty: float  # fund shares traded, signed (+buy / -sell)
    notional: float
    cash_after: float
    equity_after: float
