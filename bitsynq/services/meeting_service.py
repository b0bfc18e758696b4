"""
bitsynq.services.meeting_service — Meeting Upload & Review
===========================================================

Lifecycle of an uploaded transcript:

    create_meeting   → parse + match against roster → status "pending"
    (human review of suggested ratios)
    process_meeting  → contributions written, status "processed" (terminal)

Processing is all-or-nothing: the contributions, balance bumps and the
status flip share one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from bitsynq.config import default_config
from bitsynq.database.engine import get_session
from bitsynq.database.models import Contribution, Meeting, MeetingStatus, MemberRole, SourceType
from bitsynq.engine.matcher import match_participants_to_members
from bitsynq.engine.participants import ParsedMeetingData
from bitsynq.engine.transcript import parse_meeting_transcript
from bitsynq.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from bitsynq.services.project_service import (
    get_membership,
    get_or_create_balance,
    get_roster,
    require_admin,
    require_member,
)
from bitsynq.services.schemas import CreateMeetingRequest, ProcessMeetingRequest, parse_request

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def meeting_to_dict(meeting: Meeting, *, include_transcript: bool = False) -> dict[str, Any]:
    data = {
        "id": meeting.id,
        "project_id": meeting.project_id,
        "title": meeting.title,
        "meeting_date": meeting.meeting_date,
        "status": meeting.status,
        "created_by": meeting.created_by,
        "created_at": meeting.created_at.isoformat() if meeting.created_at else None,
        "parsed_data": meeting.parsed_data,
    }
    if include_transcript:
        data["raw_transcript"] = meeting.raw_transcript
    return data


def _load_meeting(session: Session, project_id: str, meeting_id: str) -> Meeting:
    meeting = session.get(Meeting, meeting_id)
    if meeting is None or meeting.project_id != project_id:
        raise NotFoundError(f"Meeting {meeting_id} not found")
    return meeting


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------
def create_meeting(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    request: CreateMeetingRequest | Mapping[str, Any],
) -> Meeting:
    """Parse a transcript, match its participants and store a pending meeting.

    Explicit ``title`` / ``meeting_date`` in the request win over the values
    detected by the parser.
    """
    req = parse_request(CreateMeetingRequest, request)
    parsed = parse_meeting_transcript(req.transcript)

    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        parsed.participants = match_participants_to_members(
            parsed.participants, get_roster(session, project_id)
        )

        meeting = Meeting(
            project_id=project_id,
            title=req.title or parsed.meeting_title,
            meeting_date=req.meeting_date or parsed.meeting_date,
            raw_transcript=req.transcript,
            parsed_data=parsed.to_dict(),
            status=MeetingStatus.PENDING.value,
            created_by=actor_id,
        )
        session.add(meeting)
        session.flush()
        logger.info(
            "Meeting uploaded: %s (project=%s), %d participants, confidence %d",
            meeting.id,
            project_id,
            len(parsed.participants),
            parsed.parse_confidence,
        )
        return meeting


def get_meeting(engine: Engine, *, project_id: str, actor_id: str, meeting_id: str) -> Meeting:
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        return _load_meeting(session, project_id, meeting_id)


def get_parsed_data(meeting: Meeting) -> ParsedMeetingData | None:
    """Typed view of a meeting's stored parse result."""
    if not meeting.parsed_data:
        return None
    return ParsedMeetingData.from_dict(meeting.parsed_data)


def list_meetings(engine: Engine, *, project_id: str, actor_id: str) -> list[Meeting]:
    """All meetings of a project, newest first."""
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        return list(
            session.scalars(
                select(Meeting)
                .where(Meeting.project_id == project_id)
                .order_by(Meeting.created_at.desc(), Meeting.id)
            ).all()
        )


# ---------------------------------------------------------------------------
# Review → contributions
# ---------------------------------------------------------------------------
def process_meeting(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    meeting_id: str,
    request: ProcessMeetingRequest | Mapping[str, Any],
    tolerance: float | None = None,
) -> list[Contribution]:
    """Admin-only: turn reviewed ratios into meeting contributions.

    The ratios must sum to 100 ± *tolerance* (``meeting_ratio_tolerance``
    from config by default) and every user must be a project member.

    Raises
    ------
    ConflictError
        If the meeting was already processed.
    ValidationError
        On a bad ratio total or a non-member user.
    """
    req = parse_request(ProcessMeetingRequest, request)
    if tolerance is None:
        tolerance = default_config().meeting_ratio_tolerance

    with get_session(engine) as session:
        require_admin(session, project_id, actor_id)
        meeting = _load_meeting(session, project_id, meeting_id)
        if meeting.status == MeetingStatus.PROCESSED:
            raise ConflictError("Meeting has already been processed")

        total_ratio = sum(item.ratio for item in req.contributions)
        if abs(total_ratio - 100) > tolerance:
            raise ValidationError(
                f"Total ratio should be approximately 100%, got {total_ratio:.2f}%"
            )

        default_description = f"From meeting: {meeting.title or meeting.id}"
        created: list[Contribution] = []
        for item in req.contributions:
            if get_membership(session, project_id, item.user_id) is None:
                raise ValidationError(f"User {item.user_id} is not a project member")
            contrib = Contribution(
                project_id=project_id,
                user_id=item.user_id,
                ratio=item.ratio,
                source_type=SourceType.MEETING.value,
                source_id=meeting.id,
                description=item.description or default_description,
                created_by=actor_id,
            )
            session.add(contrib)
            get_or_create_balance(session, item.user_id, project_id).total_contributed += item.ratio
            created.append(contrib)

        meeting.status = MeetingStatus.PROCESSED.value
        session.flush()
        logger.info(
            "Meeting processed: %s (project=%s), %d contributions",
            meeting.id,
            project_id,
            len(created),
        )
        return created


def delete_meeting(engine: Engine, *, project_id: str, actor_id: str, meeting_id: str) -> None:
    """Delete a pending meeting; allowed for admins and the uploader."""
    with get_session(engine) as session:
        membership = require_member(session, project_id, actor_id)
        meeting = _load_meeting(session, project_id, meeting_id)
        if membership.role != MemberRole.ADMIN and meeting.created_by != actor_id:
            raise PermissionDeniedError("Only admins or the creator can delete meetings")
        if meeting.status == MeetingStatus.PROCESSED:
            raise ConflictError("Cannot delete a processed meeting")
        session.delete(meeting)
        logger.info("Meeting deleted: %s (project=%s)", meeting_id, project_id)
