"""Configuration objects.

Style rules:
- keep signatures stable (no alias chaos)
- prefer explicit field names
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

# 1 unit = 10% of the target position. Fixed sizing convention, not a knob.
UNIT_PERCENT = 10
MAX_POSITION = 100
MAX_PYRAMID_LEVEL = 4


@dataclass(frozen=True)
class PyramidStep:
    """One accumulation tier of the pyramid."""

    level: int
    drop_trigger: float  # drop from last buy price required to enter this level
    units: int
    total_position: int  # cumulative position (%) once the level is filled


@dataclass(frozen=True)
class ProfitTier:
    """One structured profit-taking tier."""

    roi_threshold: float
    sell_ratio: float  # fraction of the *current* position to sell


DEFAULT_PYRAMID: Tuple[PyramidStep, ...] = (
    PyramidStep(level=1, drop_trigger=0.0, units=2, total_position=20),
    PyramidStep(level=2, drop_trigger=0.10, units=2, total_position=40),
    PyramidStep(level=3, drop_trigger=0.15, units=3, total_position=70),
    PyramidStep(level=4, drop_trigger=0.20, units=3, total_position=100),
)

DEFAULT_PROFIT_TIERS: Tuple[ProfitTier, ...] = (
    ProfitTier(roi_threshold=0.15, sell_ratio=0.20),
    ProfitTier(roi_threshold=0.30, sell_ratio=0.30),
    ProfitTier(roi_threshold=0.50, sell_ratio=0.20),
)


@dataclass(frozen=True)
class EngineConfig:
    """Pyramid position-management parameters."""

    # accumulation cooldown (calendar days since the last buy/sell)
    cooldown_days: int = 14

    # offensive exits
    trailing_stop: float = 0.08  # drawdown from peak that liquidates the position

    # circuit breaker: a single-day drop at or below -7% suspends trading
    black_swan_drop: float = 0.07

    # a recorded sell counts for a tier when its ROI is within this distance below the threshold
    tier_tolerance: float = 0.01

    pyramid: Tuple[PyramidStep, ...] = DEFAULT_PYRAMID
    profit_tiers: Tuple[ProfitTier, ...] = DEFAULT_PROFIT_TIERS

    def step(self, level: int) -> PyramidStep:
        """Pyramid step for ``level`` (1..MAX_PYRAMID_LEVEL)."""
        for s in self.pyramid:
            if s.level == level:
                return s
        raise KeyError(f"no pyramid step for level={level}")

    @classmethod
    def from_params_dict(cls, d: dict) -> "EngineConfig":
        """Create EngineConfig from a settings dict.

        Keys are typically camelCase as stored by the dashboard (e.g., cooldownDays).
        Unknown keys are ignored.
        """
        mapping = {
            "cooldownDays": "cooldown_days",
            "trailingStop": "trailing_stop",
            "trailingStopRatio": "trailing_stop",
            "blackSwanDrop": "black_swan_drop",
            "tierTolerance": "tier_tolerance",
        }
        kwargs = {}
        for k, v in (d or {}).items():
            if k in mapping:
                kwargs[mapping[k]] = v

        if "cooldown_days" in kwargs:
            kwargs["cooldown_days"] = int(kwargs["cooldown_days"])
        for key in ("trailing_stop", "black_swan_drop", "tier_tolerance"):
            if key in kwargs:
                kwargs[key] = float(kwargs[key])

        return cls(**kwargs)


@dataclass(frozen=True)
class IndicatorConfig:
    """Indicator window configuration."""

    ma_window: int = 20


@dataclass(frozen=True)
class ReplayConfig:
    """Historical replay configuration.

    Notes:
    - one unit buys ``initial_capital * UNIT_PERCENT / 100`` worth of the fund
    - trades execute at the bar's close (NAV funds have no intraday price)
    """

    symbol: str = "SPY"

    # cash budget backing a 100% position
    initial_capital: float = 100_000.0
