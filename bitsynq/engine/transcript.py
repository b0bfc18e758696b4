"""
bitsynq.engine.transcript — Meeting Transcript Parser
======================================================

Pure parsing pipeline for Zoom-style AI meeting summaries.
No DB I/O, no network, never raises on malformed text.

Pipeline stages:
  transcript → Sections → Next-steps actions → Keyword scoring
             → Summary mentions → Ratios → Confidence → ParsedMeetingData

Expected layout::

    Meeting summary
    <title>

    Quick recap
    ...

    Next steps
    和融: Complete the token sender design
    Saad and Sunny: Discuss the implementation details

    Summary
    ...
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from bitsynq.constants import (
    ASSIGNEE_SEPARATORS,
    BASE_ACTION_SCORE,
    CJK_CHARS,
    CJK_IDEOGRAPH,
    CJK_SURNAMES,
    COMMON_WORDS,
    CONFIDENCE_ACTION_CAP,
    CONFIDENCE_MAX,
    CONFIDENCE_NEXT_STEPS_BONUS,
    CONFIDENCE_NEXT_STEPS_MIN_CHARS,
    CONFIDENCE_PARTICIPANT_CAP,
    CONFIDENCE_PER_ACTION,
    CONFIDENCE_PER_PARTICIPANT,
    CONFIDENCE_SUMMARY_BONUS,
    CONFIDENCE_SUMMARY_MIN_CHARS,
    CONTRIBUTION_KEYWORDS,
    HEADER_KEYWORDS,
    MAX_NAME_LENGTH,
    MENTION_SCORE,
    MIN_NAME_LENGTH,
    SECONDS_PER_ACTION,
    SECTION_HEADERS,
    SECTION_NEXT_STEPS,
    SECTION_SUMMARY,
)
from bitsynq.engine.participants import ParsedMeetingData, ParsedParticipant

logger = logging.getLogger(__name__)

__all__ = [
    "ActionItem",
    "calculate_confidence",
    "extract_meeting_title",
    "extract_section",
    "is_common_word",
    "parse_meeting_transcript",
    "parse_next_steps",
    "parse_summary_mentions",
    "score_action",
    "split_assignees",
]

_HEADER_PREFIX = r"^[ \t]*(?:#{1,3}[ \t]+)?"
_ANY_HEADER = re.compile(
    _HEADER_PREFIX + "(?:" + "|".join(re.escape(h) for h in SECTION_HEADERS) + r")[ \t\r]*$",
    re.IGNORECASE | re.MULTILINE,
)
_ACTION_LINE = re.compile(r"^([^:：]+)[：:]\s*(.+)$")
_BULLET = re.compile(r"^(?:[-*•]|\d+[.)])\s+")
_CJK_NAME = re.compile(
    rf"(?<![a-zA-Z{CJK_CHARS}])([{CJK_SURNAMES}][a-zA-Z{CJK_CHARS}]{{1,3}})(?![a-zA-Z{CJK_CHARS}])"
)
_LATIN_NAME = re.compile(r"(?<![A-Za-z])([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)?)(?![A-Za-z])")
_MEETING_SUMMARY_LINE = re.compile(r"meeting summary", re.IGNORECASE)
_FALLBACK_TITLE = re.compile(r"^[A-Z][\w\s]+$")


@dataclass(frozen=True, slots=True)
class ActionItem:
    """One (assignee, task) pair from the Next steps section."""

    name: str
    task: str


@dataclass
class _Tally:
    """Running per-participant totals while merging sources."""

    name: str
    actions: list[str] = field(default_factory=list)
    score: float = 0.0
    keywords: dict[str, None] = field(default_factory=dict)  # ordered set


# ---------------------------------------------------------------------------
# Stage 1: Sectioning
# ---------------------------------------------------------------------------
def extract_section(transcript: str, section_name: str) -> str:
    """Return the text between *section_name*'s header and the next header.

    Headers match case-insensitively on their own line, optionally prefixed
    by ``#``, ``##`` or ``###``.  Returns ``""`` when the section is absent.
    """
    pattern = re.compile(
        _HEADER_PREFIX + re.escape(section_name) + r"[ \t\r]*$",
        re.IGNORECASE | re.MULTILINE,
    )
    match = pattern.search(transcript)
    if match is None:
        return ""
    start = match.end()
    following = _ANY_HEADER.search(transcript, start)
    end = following.start() if following else len(transcript)
    return transcript[start:end].strip()


def _is_header_text(text: str) -> bool:
    return text.strip().lower() in HEADER_KEYWORDS


def is_common_word(word: str) -> bool:
    """True if *word* is a stopword that merely looks like a name."""
    lowered = word.strip().lower()
    if lowered in COMMON_WORDS:
        return True
    parts = lowered.split()
    return len(parts) > 1 and all(part in COMMON_WORDS for part in parts)


# ---------------------------------------------------------------------------
# Stage 2: Next steps → action items
# ---------------------------------------------------------------------------
def split_assignees(candidate: str) -> list[str]:
    """Split a multi-assignee name ("Saad and Sunny") and drop noise."""
    names: list[str] = []
    for fragment in ASSIGNEE_SEPARATORS.split(candidate):
        name = fragment.strip()
        if not name or is_common_word(name):
            continue
        if len(name) < MIN_NAME_LENGTH and not CJK_IDEOGRAPH.search(name):
            continue
        if len(name) > MAX_NAME_LENGTH:
            continue
        names.append(name)
    return names


def parse_next_steps(section: str) -> list[ActionItem]:
    """Extract ``<name>: <task>`` action items from the Next steps text.

    The first ASCII or full-width colon separates name from task.
    """
    actions: list[ActionItem] = []
    for line in section.split("\n"):
        trimmed = _BULLET.sub("", line.strip())
        if not trimmed:
            continue
        match = _ACTION_LINE.match(trimmed)
        if match is None:
            continue
        candidate, task = match.group(1).strip(), match.group(2).strip()
        if not candidate or _is_header_text(candidate):
            continue
        for name in split_assignees(candidate):
            actions.append(ActionItem(name=name, task=task))
    return actions


def score_action(task: str) -> tuple[float, list[str]]:
    """Base score plus keyword weights; returns (score, categories)."""
    score = BASE_ACTION_SCORE
    categories: list[str] = []
    for keyword in CONTRIBUTION_KEYWORDS:
        if keyword.pattern.search(task):
            score += keyword.weight
            categories.append(keyword.category)
    return score, categories


# ---------------------------------------------------------------------------
# Stage 3: Summary mentions
# ---------------------------------------------------------------------------
def parse_summary_mentions(section: str) -> dict[str, int]:
    """Count raw name mentions in the Summary text (name → count)."""
    mentions: dict[str, int] = {}
    for pattern in (_CJK_NAME, _LATIN_NAME):
        for match in pattern.finditer(section):
            name = match.group(1)
            if is_common_word(name):
                continue
            mentions[name] = mentions.get(name, 0) + 1
    return mentions


# ---------------------------------------------------------------------------
# Stage 4: Title & confidence
# ---------------------------------------------------------------------------
def extract_meeting_title(transcript: str) -> str | None:
    """Title under a leading "Meeting summary" line, else first title-ish line."""
    lines = [line for line in transcript.split("\n") if line.strip()]
    if not lines:
        return None

    if _MEETING_SUMMARY_LINE.search(lines[0]):
        for line in lines[1:5]:
            candidate = line.strip()
            if candidate and not _ANY_HEADER.match(candidate):
                return candidate

    for line in lines:
        if _FALLBACK_TITLE.match(line):
            return line.strip()
    return None


def calculate_confidence(
    participants: list[ParsedParticipant], next_steps: str, summary: str
) -> int:
    """Heuristic 0–100 confidence in the parse."""
    if not participants:
        return 0

    with_actions = sum(1 for p in participants if p.speak_count > 0)
    total_actions = sum(p.speak_count for p in participants)

    confidence = min(with_actions * CONFIDENCE_PER_PARTICIPANT, CONFIDENCE_PARTICIPANT_CAP)
    confidence += min(total_actions * CONFIDENCE_PER_ACTION, CONFIDENCE_ACTION_CAP)
    if len(next_steps) > CONFIDENCE_NEXT_STEPS_MIN_CHARS:
        confidence += CONFIDENCE_NEXT_STEPS_BONUS
    if len(summary) > CONFIDENCE_SUMMARY_MIN_CHARS:
        confidence += CONFIDENCE_SUMMARY_BONUS
    return min(confidence, CONFIDENCE_MAX)


def _suggested_ratios(tallies: list[_Tally]) -> list[float]:
    """Two-decimal ratios summing to exactly 100 when any score is positive.

    Rounding drift from independent ``round(…, 2)`` calls is folded into the
    first highest-ratio participant.
    """
    total = sum(t.score for t in tallies)
    if total <= 0:
        return [0.0] * len(tallies)

    ratios = [round(t.score / total * 100, 2) for t in tallies]
    drift = round(100 - sum(ratios), 2)
    if drift:
        top = max(range(len(ratios)), key=lambda i: ratios[i])
        ratios[top] = round(ratios[top] + drift, 2)
    return ratios


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------
def parse_meeting_transcript(transcript: str) -> ParsedMeetingData:
    """Parse a meeting summary into scored participants.

    This is a PURE function and never raises: empty or unrecognised input
    yields an empty participant list with zero confidence.
    """
    if not transcript or not transcript.strip():
        return ParsedMeetingData()
    transcript = transcript.replace("\r\n", "\n").replace("\r", "\n")

    next_steps = extract_section(transcript, SECTION_NEXT_STEPS)
    summary = extract_section(transcript, SECTION_SUMMARY)

    tallies: dict[str, _Tally] = {}

    # Next steps are the primary source of contribution data
    for action in parse_next_steps(next_steps):
        tally = tallies.setdefault(action.name, _Tally(name=action.name))
        tally.actions.append(action.task)
        score, categories = score_action(action.task)
        tally.score += score
        for category in categories:
            tally.keywords[category] = None

    # Summary mentions add a smaller bonus
    for name, count in parse_summary_mentions(summary).items():
        tally = tallies.setdefault(name, _Tally(name=name))
        tally.score += count * MENTION_SCORE

    ordered = list(tallies.values())
    participants = [
        ParsedParticipant(
            name=t.name,
            speak_count=len(t.actions),
            estimated_duration_seconds=len(t.actions) * SECONDS_PER_ACTION,
            keywords_found=list(t.keywords),
            score=t.score,
            suggested_ratio=ratio,
        )
        for t, ratio in zip(ordered, _suggested_ratios(ordered))
    ]
    participants.sort(key=lambda p: p.suggested_ratio, reverse=True)

    result = ParsedMeetingData(
        participants=participants,
        meeting_title=extract_meeting_title(transcript),
        total_duration_seconds=sum(p.estimated_duration_seconds for p in participants),
        parse_confidence=calculate_confidence(participants, next_steps, summary),
    )
    logger.debug(
        "Parsed transcript: %d participants, confidence %d",
        len(participants),
        result.parse_confidence,
    )
    return result
