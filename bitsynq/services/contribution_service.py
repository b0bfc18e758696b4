"""
bitsynq.services.contribution_service — Contribution Ledger
============================================================

Manual contribution records plus listing and per-user summaries.
Contributions are append-only: the only mutation after creation is
deletion, which also rolls back the user's ``total_contributed``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from bitsynq.database.engine import get_session
from bitsynq.database.models import Contribution, SourceType, User
from bitsynq.services.errors import NotFoundError, ValidationError
from bitsynq.services.project_service import (
    get_membership,
    get_or_create_balance,
    require_admin,
    require_member,
)
from bitsynq.services.schemas import CreateContributionRequest, parse_request

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def contribution_to_dict(contrib: Contribution, user: User | None = None) -> dict[str, Any]:
    data = {
        "id": contrib.id,
        "project_id": contrib.project_id,
        "user_id": contrib.user_id,
        "ratio": contrib.ratio,
        "source_type": contrib.source_type,
        "source_id": contrib.source_id,
        "description": contrib.description,
        "created_by": contrib.created_by,
        "created_at": contrib.created_at.isoformat() if contrib.created_at else None,
    }
    if user is not None:
        data["user_display_name"] = user.display_name
    return data


def add_contribution(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    request: CreateContributionRequest | Mapping[str, Any],
) -> Contribution:
    """Admin-only: record a manual contribution for a project member."""
    req = parse_request(CreateContributionRequest, request)
    with get_session(engine) as session:
        require_admin(session, project_id, actor_id)
        if get_membership(session, project_id, req.user_id) is None:
            raise ValidationError("User is not a member of this project")

        contrib = Contribution(
            project_id=project_id,
            user_id=req.user_id,
            ratio=req.ratio,
            source_type=SourceType.MANUAL.value,
            description=req.description,
            created_by=actor_id,
        )
        session.add(contrib)
        balance = get_or_create_balance(session, req.user_id, project_id)
        balance.total_contributed += req.ratio
        session.flush()
        logger.info(
            "Manual contribution: project=%s user=%s ratio=%.2f", project_id, req.user_id, req.ratio
        )
        return contrib


def list_contributions(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    """Newest-first page of contributions with display names."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        total = session.scalar(
            select(func.count()).select_from(Contribution).where(Contribution.project_id == project_id)
        ) or 0
        rows = session.execute(
            select(Contribution, User)
            .join(User, User.id == Contribution.user_id)
            .where(Contribution.project_id == project_id)
            .order_by(Contribution.created_at.desc(), Contribution.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return {
            "contributions": [contribution_to_dict(c, u) for c, u in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit),
            },
        }


def contribution_summary(engine: Engine, *, project_id: str, actor_id: str) -> dict[str, Any]:
    """Per-user ratio totals with their share of the grand total (2 dp)."""
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        rows = session.execute(
            select(
                Contribution.user_id,
                User.display_name,
                func.sum(Contribution.ratio).label("total_ratio"),
                func.count(Contribution.id).label("contribution_count"),
                func.max(Contribution.created_at).label("last_contribution"),
            )
            .join(User, User.id == Contribution.user_id)
            .where(Contribution.project_id == project_id)
            .group_by(Contribution.user_id, User.display_name)
            .order_by(func.sum(Contribution.ratio).desc())
        ).all()

    grand_total = sum(float(r.total_ratio or 0) for r in rows)
    summary = []
    for row in rows:
        total_ratio = float(row.total_ratio or 0)
        last = row.last_contribution
        summary.append({
            "user_id": row.user_id,
            "display_name": row.display_name,
            "total_ratio": total_ratio,
            "contribution_count": row.contribution_count,
            "last_contribution": last.isoformat() if hasattr(last, "isoformat") else last,
            "percentage": round(total_ratio / grand_total * 100, 2) if grand_total > 0 else 0.0,
        })
    return {"summary": summary, "grand_total": grand_total}


def delete_contribution(
    engine: Engine, *, project_id: str, actor_id: str, contribution_id: str
) -> None:
    """Admin-only: remove a contribution and roll back the contributed total."""
    with get_session(engine) as session:
        require_admin(session, project_id, actor_id)
        contrib = session.get(Contribution, contribution_id)
        if contrib is None or contrib.project_id != project_id:
            raise NotFoundError(f"Contribution {contribution_id} not found")

        balance = get_or_create_balance(session, contrib.user_id, project_id)
        balance.total_contributed = max(balance.total_contributed - contrib.ratio, 0.0)
        session.delete(contrib)
        logger.info("Contribution deleted: %s (project=%s)", contribution_id, project_id)
