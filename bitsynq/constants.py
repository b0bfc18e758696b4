"""
bitsynq.constants — Static Parser Tables
==========================================

Single source of truth for the closed word lists and weighted keyword
table used by the transcript parser and participant matcher.  These are
configuration data, not logic; import from here instead of inlining
literals in the matching code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Section headers recognised in Zoom-style meeting summaries
# ---------------------------------------------------------------------------
SECTION_QUICK_RECAP = "Quick recap"
SECTION_NEXT_STEPS = "Next steps"
SECTION_SUMMARY = "Summary"
SECTION_MEETING_SUMMARY = "Meeting summary"

SECTION_HEADERS: tuple[str, ...] = (
    SECTION_QUICK_RECAP,
    SECTION_NEXT_STEPS,
    SECTION_SUMMARY,
    SECTION_MEETING_SUMMARY,
)

# Candidate assignee names equal to one of these are header noise.
HEADER_KEYWORDS: frozenset[str] = frozenset({
    "quick recap",
    "next steps",
    "summary",
    "meeting summary",
    "action items",
    "notes",
    "discussion",
    "agenda",
})


# ---------------------------------------------------------------------------
# Contribution keyword table — (pattern, weight, category)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ContributionKeyword:
    """One weighted keyword category matched against an action item."""

    pattern: re.Pattern[str]
    weight: int
    category: str


CONTRIBUTION_KEYWORDS: tuple[ContributionKeyword, ...] = (
    # High impact
    ContributionKeyword(
        re.compile(r"complete|finish|implement|develop|build|create|design", re.IGNORECASE),
        3,
        "implementation",
    ),
    ContributionKeyword(re.compile(r"決定|決議|同意|通過|確認|完成|實作|開發"), 3, "decision"),
    # Medium impact
    ContributionKeyword(
        re.compile(r"contact|schedule|share|get|obtain|access|figure out", re.IGNORECASE),
        2,
        "coordination",
    ),
    ContributionKeyword(re.compile(r"提案|建議|提議|提出|聯繫|分享|取得"), 2, "proposal"),
    # Lower impact
    ContributionKeyword(re.compile(r"continue|try|explore|discuss", re.IGNORECASE), 1, "ongoing"),
    ContributionKeyword(re.compile(r"繼續|嘗試|探索|討論"), 1, "discussion"),
)

BASE_ACTION_SCORE = 1.0
MENTION_SCORE = 0.5
SECONDS_PER_ACTION = 60


# ---------------------------------------------------------------------------
# Name extraction
# ---------------------------------------------------------------------------
# Literal separators for multi-assignee lines ("Saad and Sunny: ...").
ASSIGNEE_SEPARATORS = re.compile(r" and | & |,")

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 40

CJK_CHARS = "\\u4e00-\\u9fff"
CJK_IDEOGRAPH = re.compile(f"[{CJK_CHARS}]")

# Common single-character Chinese surnames anchoring summary mentions.
CJK_SURNAMES = "胡黃李張陳王林劉楊吳趙周徐孫朱馬郭何高羅鄭梁"

# Capitalised words that look like names but are not.
COMMON_WORDS: frozenset[str] = frozenset({
    "the", "this", "that", "these", "those", "here", "there",
    "meeting", "summary", "project", "team", "work", "week",
    "monday", "tuesday", "wednesday", "thursday", "friday",
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
    "chatgpt", "bitsync", "bitsynq", "ethereum", "layer", "token", "blockchain",
    "next", "steps", "quick", "recap", "action", "items", "notes",
    "all", "everyone", "team members", "they", "we",
})


# ---------------------------------------------------------------------------
# Parse confidence weights
# ---------------------------------------------------------------------------
CONFIDENCE_PER_PARTICIPANT = 15
CONFIDENCE_PARTICIPANT_CAP = 40
CONFIDENCE_PER_ACTION = 5
CONFIDENCE_ACTION_CAP = 30
CONFIDENCE_NEXT_STEPS_BONUS = 20
CONFIDENCE_NEXT_STEPS_MIN_CHARS = 50
CONFIDENCE_SUMMARY_BONUS = 10
CONFIDENCE_SUMMARY_MIN_CHARS = 100
CONFIDENCE_MAX = 100

# Matcher: substring containment only for names longer than this.
MATCH_SUBSTRING_MIN_LENGTH = 3
