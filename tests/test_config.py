from __future__ import annotations

from pathlib import Path

import pytest

from perpcore.config import CONFIG_KEYS, DEFAULT_CONFIG, EngineConfig, config_from_mapping, load_config


def test_defaults() -> None:
    assert DEFAULT_CONFIG.min_deposit == 1000
    assert DEFAULT_CONFIG.max_trade_bps_of_base == 1000
    assert "max_oracle_staleness_seconds" in CONFIG_KEYS


def test_load_yaml_overrides(tmp_path: Path) -> None:
    p = tmp_path / "engine.yaml"
    p.write_text("min_deposit: 10\nmax_oracle_staleness_seconds: 30\n", encoding="utf-8")
    cfg = load_config(p)
    assert cfg.min_deposit == 10
    assert cfg.max_oracle_staleness_seconds == 30
    assert cfg.min_withdrawal == DEFAULT_CONFIG.min_withdrawal


def test_empty_file_is_default(tmp_path: Path) -> None:
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_config(p) == DEFAULT_CONFIG


def test_unknown_key_rejected() -> None:
    with pytest.raises(ValueError, match="unknown config keys"):
        config_from_mapping({"min_deposti": 1})


def test_non_mapping_rejected(tmp_path: Path) -> None:
    p = tmp_path / "list.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_config(p)


@pytest.mark.parametrize(
    "overrides,exc",
    [
        ({"min_deposit": "10"}, TypeError),
        ({"min_deposit": True}, TypeError),
        ({"min_deposit": -1}, ValueError),
        ({"max_trade_bps_of_base": 0}, ValueError),
        ({"k_tolerance_divisor": 0}, ValueError),
        ({"max_positions_per_account": 0}, ValueError),
    ],
)
def test_invalid_values(overrides: dict, exc: type) -> None:
    with pytest.raises(exc):
        EngineConfig(**overrides)
