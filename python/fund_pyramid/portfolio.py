"""Per-fund engine book (fund code -> PositionEngine) and JSON state transfer.

The snapshot layout matches the dashboard's stored ``{fundCode: state}`` map,
so a saved file can be moved between the two.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .config import EngineConfig
from .engine import PositionEngine, create_engine
from .types import PositionState

logger = logging.getLogger(__name__)


class FundBook:
    """Holds one engine per tracked fund."""

    def __init__(self, config: EngineConfig = EngineConfig()):
        self.cfg = config
        self._engines: Dict[str, PositionEngine] = {}

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, fund_code: str) -> bool:
        return fund_code in self._engines

    def __iter__(self) -> Iterator[PositionEngine]:
        return iter(self._engines.values())

    def codes(self) -> List[str]:
        return list(self._engines)

    def engine_for(self, fund_code: str) -> PositionEngine:
        """Engine for ``fund_code``; an empty one is created the first time a fund is tracked."""
        engine = self._engines.get(fund_code)
        if engine is None:
            engine = PositionEngine(fund_code, config=self.cfg)
            self._engines[fund_code] = engine
            logger.debug("tracking new fund %s", fund_code)
        return engine

    def remove(self, fund_code: str) -> Optional[PositionState]:
        """Stop tracking a fund. Returns its last state, if it was tracked."""
        engine = self._engines.pop(fund_code, None)
        return engine.get_state() if engine is not None else None

    def snapshot(self) -> Dict[str, dict]:
        return {code: engine.get_state().to_dict() for code, engine in self._engines.items()}

    @classmethod
    def from_snapshot(cls, data: dict, config: EngineConfig = EngineConfig()) -> "FundBook":
        book = cls(config)
        for code, raw in (data or {}).items():
            try:
                state = PositionState.from_dict(raw, fund_code=code)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning("skipping malformed state for fund %s: %s", code, e)
                continue
            book._engines[code] = create_engine(code, state, config)
        return book


def load_book(path: str | Path, config: EngineConfig = EngineConfig()) -> FundBook:
    """Load a book saved by :func:`save_book`. A missing file is an empty book."""
    path = Path(path)
    if not path.exists():
        return FundBook(config)
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return FundBook.from_snapshot(data, config)


def save_book(book: FundBook, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(book.snapshot(), f, ensure_ascii=False, indent=2)
    return path
