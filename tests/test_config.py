import pytest

from fund_pyramid.config import (
    DEFAULT_PROFIT_TIERS,
    DEFAULT_PYRAMID,
    MAX_PYRAMID_LEVEL,
    UNIT_PERCENT,
    EngineConfig,
)


def test_default_schedule_adds_up():
    assert [s.level for s in DEFAULT_PYRAMID] == list(range(1, MAX_PYRAMID_LEVEL + 1))
    total = 0
    for s in DEFAULT_PYRAMID:
        total += s.units * UNIT_PERCENT
        assert total == s.total_position
    assert total == 100


def test_default_profit_tiers_ascending():
    th = [t.roi_threshold for t in DEFAULT_PROFIT_TIERS]
    assert th == sorted(th) == [0.15, 0.30, 0.50]


def test_step_lookup():
    cfg = EngineConfig()
    assert cfg.step(2).drop_trigger == 0.10
    with pytest.raises(KeyError):
        cfg.step(5)


def test_from_params_dict_maps_and_coerces():
    cfg = EngineConfig.from_params_dict({"cooldownDays": "7", "blackSwanDrop": 0.05, "unknown": 1})
    assert cfg.cooldown_days == 7
    assert cfg.black_swan_drop == 0.05
    assert cfg.trailing_stop == 0.08


def test_from_params_dict_empty():
    assert EngineConfig.from_params_dict(None) == EngineConfig()
