"""
bitsynq.engine.participants — Parsed meeting records
=====================================================

Transient records produced fresh by every transcript parse.  They travel
from the parser through the matcher into the ``meetings.parsed_data``
column, so each carries a JSON-friendly ``to_dict``/``from_dict`` pair
using the snake_case field names stored in the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

__all__ = ["ParsedMeetingData", "ParsedParticipant"]


@dataclass
class ParsedParticipant:
    """One participant extracted from a transcript."""

    name: str
    matched_user_id: str | None = None
    speak_count: int = 0
    estimated_duration_seconds: int = 0
    keywords_found: list[str] = field(default_factory=list)
    score: float = 0.0
    suggested_ratio: float = 0.0

    def with_match(self, user_id: str | None) -> ParsedParticipant:
        """Return a copy annotated with *user_id*."""
        return replace(self, matched_user_id=user_id, keywords_found=list(self.keywords_found))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "matched_user_id": self.matched_user_id,
            "speak_count": self.speak_count,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "keywords_found": list(self.keywords_found),
            "score": self.score,
            "suggested_ratio": self.suggested_ratio,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParsedParticipant:
        return cls(
            name=data["name"],
            matched_user_id=data.get("matched_user_id"),
            speak_count=int(data.get("speak_count", 0)),
            estimated_duration_seconds=int(data.get("estimated_duration_seconds", 0)),
            keywords_found=list(data.get("keywords_found") or []),
            score=float(data.get("score", 0.0)),
            suggested_ratio=float(data.get("suggested_ratio", 0.0)),
        )


@dataclass
class ParsedMeetingData:
    """Full parser output for one transcript."""

    participants: list[ParsedParticipant] = field(default_factory=list)
    meeting_title: str | None = None
    meeting_date: str | None = None
    total_duration_seconds: int = 0
    parse_confidence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "participants": [p.to_dict() for p in self.participants],
            "meeting_title": self.meeting_title,
            "meeting_date": self.meeting_date,
            "total_duration_seconds": self.total_duration_seconds,
            "parse_confidence": self.parse_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParsedMeetingData:
        return cls(
            participants=[
                ParsedParticipant.from_dict(p) for p in data.get("participants") or []
            ],
            meeting_title=data.get("meeting_title"),
            meeting_date=data.get("meeting_date"),
            total_duration_seconds=int(data.get("total_duration_seconds", 0)),
            parse_confidence=int(data.get("parse_confidence", 0)),
        )
