import json

from fund_pyramid.config import EngineConfig
from fund_pyramid.portfolio import FundBook, load_book, save_book
from fund_pyramid.types import PositionState, TradingOperation


def test_position_state_dict_round_trip():
    op = TradingOperation(
        date="2024-02-01", action="SELL", price=116.0, shares=1,
        position_after=30, level_after=2, roi=0.16, tier=0.15, amount=1160.0, note="tier 1",
    )
    st = PositionState(
        fund_code="161725", position_size=30, avg_cost=100.0, peak_price=116.0,
        last_op_date="2024-02-01", pyramid_level=2, last_buy_price=100.0, operation_history=(op,),
    )
    d = st.to_dict()
    assert d["fundCode"] == "161725"
    assert d["operationHistory"][0]["positionAfter"] == 30
    assert PositionState.from_dict(json.loads(json.dumps(d))) == st


def test_position_state_from_partial_dashboard_dict():
    st = PositionState.from_dict({"fundCode": "000001", "pyramidLevel": 1, "positionSize": 20, "extra": 1})
    assert st.position_size == 20
    assert st.pyramid_level == 1
    assert st.logic_status is True
    assert st.last_op_date is None
    assert st.operation_history == ()


def test_operation_ids_are_unique():
    a = TradingOperation(date="2024-01-01", action="BUY", price=1.0, shares=2, position_after=20, level_after=1)
    b = TradingOperation(date="2024-01-01", action="BUY", price=1.0, shares=2, position_after=20, level_after=1)
    assert a.id.startswith("op_")
    assert a.id != b.id


def test_book_creates_engines_on_first_use():
    book = FundBook()
    eng = book.engine_for("000001")
    assert book.engine_for("000001") is eng
    assert "000001" in book
    assert book.codes() == ["000001"]
    assert eng.get_state().pyramid_level == 0


def test_book_remove_returns_last_state():
    book = FundBook()
    book.engine_for("000001").execute_buy(2, 1.5, "2024-01-01")
    st = book.remove("000001")
    assert st.position_size == 20
    assert len(book) == 0
    assert book.remove("000001") is None


def test_book_save_and_load(tmp_path):
    book = FundBook()
    book.engine_for("000001").execute_buy(2, 1.5, "2024-01-01")
    book.engine_for("110011").set_logic_status(False)

    path = save_book(book, tmp_path / "states" / "trading_states.json")
    loaded = load_book(path)

    assert sorted(loaded.codes()) == ["000001", "110011"]
    assert loaded.engine_for("000001").get_state() == book.engine_for("000001").get_state()
    assert loaded.engine_for("110011").get_state().logic_status is False


def test_load_missing_file_is_empty_book(tmp_path):
    book = load_book(tmp_path / "nope.json")
    assert len(book) == 0


def test_malformed_entries_are_skipped():
    book = FundBook.from_snapshot({
        "000001": {"positionSize": 20, "avgCost": 1.0, "pyramidLevel": 1},
        "bad": "not a state",
        "bad2": {"operationHistory": [{"action": "BUY"}]},
    })
    assert book.codes() == ["000001"]
    assert book.engine_for("000001").fund_code == "000001"


def test_book_engines_share_config():
    cfg = EngineConfig(cooldown_days=5)
    book = FundBook.from_snapshot({"000001": {"positionSize": 0}}, cfg)
    assert book.engine_for("000001").cfg is cfg
    assert book.engine_for("000002").cfg is cfg
