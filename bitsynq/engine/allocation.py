"""
bitsynq.engine.allocation — Token Distribution Allocator
=========================================================

Pure two-phase allocation of an integer token budget across contributors.
No DB I/O, no chain I/O inside the engine.

Pipeline stages:
  contributions → Group by user → Floor exact shares → Percentages (4 dp) (compute_raw)
               → Sort by percentage → Award remainder round-robin     (settle_remainder)

After :func:`settle_remainder` the allocation sums to ``total_tokens``
exactly.  Preview and distribute both go through :func:`allocate`, so a
preview's amounts always match what a distribution persists for the same
contribution snapshot.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from fractions import Fraction
from typing import Any

logger = logging.getLogger(__name__)

__all__ = [
    "AllocationError",
    "ContributorBalance",
    "allocate",
    "compute_raw",
    "deserialize_distribution",
    "serialize_distribution",
    "settle_remainder",
]

PERCENTAGE_DECIMALS = 4


class AllocationError(RuntimeError):
    """Internal-consistency failure while settling a remainder."""


# ---------------------------------------------------------------------------
# ContributorBalance — one row of an allocation
# ---------------------------------------------------------------------------
@dataclass
class ContributorBalance:
    """A user's share of one distribution run."""

    user_id: str
    total_ratio: float
    percentage: float
    token_amount: int

    def to_dict(self) -> dict[str, Any]:
        """Stored form, keyed with the camelCase names persisted historically."""
        return {
            "userId": self.user_id,
            "totalRatio": self.total_ratio,
            "percentage": self.percentage,
            "tokenAmount": self.token_amount,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ContributorBalance:
        return cls(
            user_id=str(data["userId"]),
            total_ratio=data["totalRatio"],
            percentage=data["percentage"],
            token_amount=int(data["tokenAmount"]),
        )


def _round_percentage(value: float, decimals: int = PERCENTAGE_DECIMALS) -> float:
    """Percentage precision shared by previews and stored snapshots."""
    return round(value, decimals)


def _contribution_fields(contrib: Any) -> tuple[Any, Any]:
    if isinstance(contrib, Mapping):
        return contrib.get("user_id"), contrib.get("ratio")
    return getattr(contrib, "user_id", None), getattr(contrib, "ratio", None)


def _coerce_ratio(raw: Any) -> float | None:
    """Valid non-negative finite ratio, or ``None`` to exclude the record."""
    if isinstance(raw, bool):
        return None
    try:
        ratio = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(ratio) or ratio < 0:
        return None
    return ratio


# ---------------------------------------------------------------------------
# Phase 1: raw floor allocation
# ---------------------------------------------------------------------------
def compute_raw(
    contributions: Iterable[Any], total_tokens: int
) -> dict[str, ContributorBalance]:
    """Group contributions per user and floor each proportional share.

    *contributions* are mappings or objects exposing ``user_id`` and
    ``ratio``.  Records with a missing user or a non-numeric / negative
    ratio are excluded.  Empty input yields ``{}``.
    """
    user_totals: dict[str, Fraction] = {}
    for contrib in contributions:
        user_id, raw_ratio = _contribution_fields(contrib)
        ratio = _coerce_ratio(raw_ratio)
        if user_id is None or ratio is None:
            logger.debug("Excluding contribution with user=%r ratio=%r", user_id, raw_ratio)
            continue
        key = str(user_id)
        user_totals[key] = user_totals.get(key, Fraction(0)) + Fraction(ratio)

    grand_total = sum(user_totals.values())

    distribution: dict[str, ContributorBalance] = {}
    for user_id, total_ratio in user_totals.items():
        share = total_ratio / grand_total if grand_total > 0 else Fraction(0)
        # Floor the exact share; the rounded percentage is for display only.
        distribution[user_id] = ContributorBalance(
            user_id=user_id,
            total_ratio=float(total_ratio),
            percentage=_round_percentage(float(share * 100)),
            token_amount=math.floor(share * total_tokens),
        )
    return distribution


# ---------------------------------------------------------------------------
# Phase 2: remainder settlement ("fair distribution")
# ---------------------------------------------------------------------------
def settle_remainder(
    raw: Mapping[str, ContributorBalance], total_tokens: int
) -> dict[str, ContributorBalance]:
    """Hand out the floor-rounding remainder one token at a time.

    Entries are ordered by descending percentage; ties keep their incoming
    order (stable sort), so the earlier-seen contributor receives the token.
    The wrap-around loop is bounded at ``2 × len(entries)`` awards.  When
    every percentage is zero (all ratios zero) the whole budget is the
    remainder and is split round-robin arithmetically instead.

    Returns a new mapping in award order; *raw* is not mutated.

    Raises
    ------
    AllocationError
        If a positive remainder cannot be placed (no entries, or more
        than the wrap-around bound), or the raw amounts exceed the budget.
    """
    entries = sorted(
        (replace(balance) for balance in raw.values()),
        key=lambda b: b.percentage,
        reverse=True,
    )
    allocated = sum(entry.token_amount for entry in entries)
    remainder = total_tokens - allocated

    if remainder < 0:
        raise AllocationError(f"Raw allocation {allocated} exceeds budget {total_tokens}")
    if remainder == 0:
        return {entry.user_id: entry for entry in entries}
    if not entries:
        raise AllocationError(f"Cannot place {remainder} remaining tokens: no recipients")

    count = len(entries)
    if all(entry.percentage == 0 for entry in entries):
        share, extra = divmod(remainder, count)
        for i, entry in enumerate(entries):
            entry.token_amount += share + (1 if i < extra else 0)
        return {entry.user_id: entry for entry in entries}

    max_awards = 2 * count
    if remainder > max_awards:
        raise AllocationError(
            f"Remainder {remainder} exceeds wrap-around bound {max_awards} "
            f"(allocated {allocated} of {total_tokens})"
        )
    for i in range(remainder):
        entries[i % count].token_amount += 1
    logger.debug("Settled remainder of %d across %d entries", remainder, count)

    return {entry.user_id: entry for entry in entries}


def allocate(contributions: Iterable[Any], total_tokens: int) -> dict[str, ContributorBalance]:
    """Phase 1 + Phase 2: exact integer allocation summing to *total_tokens*."""
    return settle_remainder(compute_raw(contributions, total_tokens), total_tokens)


# ---------------------------------------------------------------------------
# Snapshot serialization
# ---------------------------------------------------------------------------
def serialize_distribution(distribution: Mapping[str, ContributorBalance]) -> str:
    """JSON object keyed by user id, each value the full balance record."""
    return json.dumps(
        {user_id: balance.to_dict() for user_id, balance in distribution.items()},
        ensure_ascii=False,
    )


def deserialize_distribution(text: str) -> dict[str, ContributorBalance]:
    """Structural inverse of :func:`serialize_distribution`."""
    data = json.loads(text)
    return {user_id: ContributorBalance.from_dict(value) for user_id, value in data.items()}
