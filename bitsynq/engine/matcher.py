"""
bitsynq.engine.matcher — Participant → Project Member Matching
===============================================================

Resolves parsed participant names against a project roster using a fixed
precedence of exact, alias, and containment rules.  Pure and
deterministic: the first roster member (in roster order) satisfying a
rule wins.  No fuzzy or distance-based guessing beyond those rules.

Roster entries are plain mappings::

    {"id": "u1", "display_name": "John Doe", "email": "john@example.com",
     "aliases": ["Johnny"]}          # or '["Johnny"]' as a JSON string
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from bitsynq.constants import CJK_IDEOGRAPH, MATCH_SUBSTRING_MIN_LENGTH
from bitsynq.engine.participants import ParsedParticipant

logger = logging.getLogger(__name__)

__all__ = ["match_participant", "match_participants_to_members", "parse_aliases"]


def parse_aliases(raw: Any) -> list[str]:
    """Normalise an alias field to a list of strings.

    Accepts a list or a JSON-encoded list.  Anything unparseable is treated
    as "no aliases", never an error.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.debug("Ignoring malformed alias JSON: %r", raw)
            return []
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(alias) for alias in raw if isinstance(alias, str) and alias.strip()]


def _member_matches(name: str, member: Mapping[str, Any]) -> bool:
    display = str(member.get("display_name") or "").strip().lower()
    email_prefix = str(member.get("email") or "").split("@", 1)[0].strip().lower()

    # 1. Exact display name or email local part
    if name == display or (email_prefix and name == email_prefix):
        return True

    # 2. Alias
    aliases = parse_aliases(member.get("aliases"))
    if any(name == alias.strip().lower() for alias in aliases):
        return True

    # 3. Containment for names long enough to be meaningful
    if len(name) > MATCH_SUBSTRING_MIN_LENGTH:
        if display and (name in display or display in name):
            return True
        if email_prefix and name in email_prefix:
            return True

    # 4. Partial CJK name ("和融" within "黃和融")
    if CJK_IDEOGRAPH.search(name) and len(name) >= 2 and name in display:
        return True

    return False


def match_participant(name: str, roster: Sequence[Mapping[str, Any]]) -> str | None:
    """Return the id of the first roster member matching *name*, else ``None``."""
    needle = name.strip().lower()
    if not needle:
        return None
    for member in roster:
        if _member_matches(needle, member):
            return str(member["id"])
    return None


def match_participants_to_members(
    participants: Sequence[ParsedParticipant],
    roster: Sequence[Mapping[str, Any]],
) -> list[ParsedParticipant]:
    """Annotate each participant with ``matched_user_id``.

    Returns new records in the same order; unmatched participants keep
    ``matched_user_id = None`` for human resolution downstream.
    """
    matched = [p.with_match(match_participant(p.name, roster)) for p in participants]
    logger.debug(
        "Matched %d/%d participants against %d members",
        sum(1 for p in matched if p.matched_user_id is not None),
        len(matched),
        len(roster),
    )
    return matched
