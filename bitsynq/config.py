"""
bitsynq.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for non-secret settings (token identity, meeting
review tolerance, settlement polling).  Secrets and endpoints (the
database URL and the Ethereum RPC / contract / sender) come from the
environment, usually via a ``.env`` file (see ``.env.example``).

Usage::

    from bitsynq.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.token_symbol)      # "BTS"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BitsynqConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Token identity
    token_symbol: str
    chain_id: int
    token_decimals: int = 18

    # Meeting review: processed ratios must sum to 100 ± tolerance
    meeting_ratio_tolerance: float = 1.0

    # Settlement receipt polling
    settlement_receipt_timeout_seconds: float = 120.0
    settlement_poll_interval_seconds: float = 2.0


def default_config() -> BitsynqConfig:
    """Defaults used when no ``config.yaml`` is supplied (local chain)."""
    return BitsynqConfig(token_symbol="BTS", chain_id=31337)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> BitsynqConfig:
    """Read *path* and return a :class:`BitsynqConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = default_config()
    return BitsynqConfig(
        token_symbol=str(raw["token_symbol"]),
        chain_id=int(raw["chain_id"]),
        token_decimals=int(raw.get("token_decimals", defaults.token_decimals)),
        meeting_ratio_tolerance=float(
            raw.get("meeting_ratio_tolerance", defaults.meeting_ratio_tolerance)
        ),
        settlement_receipt_timeout_seconds=float(
            raw.get(
                "settlement_receipt_timeout_seconds",
                defaults.settlement_receipt_timeout_seconds,
            )
        ),
        settlement_poll_interval_seconds=float(
            raw.get(
                "settlement_poll_interval_seconds",
                defaults.settlement_poll_interval_seconds,
            )
        ),
    )
