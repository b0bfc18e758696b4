"""
tests/test_config.py — YAML Configuration Loader
=================================================
"""

from __future__ import annotations

from pathlib import Path

import pytest

from bitsynq.config import BitsynqConfig, default_config, load_config

EXAMPLE = Path(__file__).resolve().parent.parent / "config.yaml.example"


class TestLoadConfig:
    def test_example_file_loads(self):
        cfg = load_config(EXAMPLE)
        assert cfg.token_symbol == "BTS"
        assert cfg.chain_id == 31337
        assert cfg.settlement_receipt_timeout_seconds == 120.0

    def test_optional_keys_default(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("token_symbol: SYN\nchain_id: 11155111\n", encoding="utf-8")
        cfg = load_config(path)
        assert cfg == BitsynqConfig(token_symbol="SYN", chain_id=11155111)
        assert cfg.meeting_ratio_tolerance == default_config().meeting_ratio_tolerance

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "token_symbol: BTS\nchain_id: 1\ntoken_decimals: 6\nmeeting_ratio_tolerance: 0.5\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.token_decimals == 6
        assert cfg.meeting_ratio_tolerance == 0.5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "absent.yaml")

    def test_missing_required_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("chain_id: 1\n", encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            default_config().chain_id = 1  # type: ignore[misc]
