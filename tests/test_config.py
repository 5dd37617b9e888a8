from __future__ import annotations
import pytest

from fitassess.common.errors import InvalidConfigError
from fitassess.counter.config import CounterConfig, get_preset


def test_defaults_match_documented_values():
    cfg = CounterConfig()
    assert (cfg.up_threshold_deg, cfg.down_threshold_deg) == (35.0, 70.0)
    assert cfg.min_delta_to_move_deg == 5.0
    assert (cfg.max_no_move_ms, cfg.max_no_face_ms) == (5000.0, 3000.0)
    assert cfg.face_window_ms is None


@pytest.mark.parametrize("overrides", [
    {"up_threshold_deg": 70, "down_threshold_deg": 35},
    {"up_threshold_deg": 50, "down_threshold_deg": 50},
    {"down_threshold_deg": 120},
    {"min_rep_interval_ms": -1},
    {"min_pose_score": 2.0},
    {"max_no_move_ms": -1},
    {"face_window_ms": 0},
    {"face_min_visible_rate": 1.5},
    {"intensity_window": 0},
])
def test_invalid_configs_are_rejected(overrides):
    with pytest.raises(InvalidConfigError):
        CounterConfig(**overrides)


def test_invalid_config_is_a_value_error():
    with pytest.raises(ValueError):
        CounterConfig(up_threshold_deg=80)


def test_from_dict_and_overrides():
    cfg = CounterConfig.from_dict({"up_threshold_deg": 40})
    assert cfg.up_threshold_deg == 40
    assert cfg.with_overrides(max_no_move_ms=100).max_no_move_ms == 100
    assert CounterConfig.from_dict(None) == CounterConfig()
    with pytest.raises(InvalidConfigError):
        CounterConfig.from_dict({"bogus": 1})


def test_presets():
    fast = get_preset("pose_fast")
    assert fast.up_threshold_deg == 45 and fast.down_threshold_deg == 65
    assert fast.face_window_ms == 2000
    with pytest.raises(InvalidConfigError):
        get_preset("nope")
