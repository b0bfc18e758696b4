"""
bitsynq.services.project_service — Projects, Membership & Rosters
==================================================================

Project creation, membership management and the access checks every other
service runs before touching project data.  The session-level helpers
(``get_membership``, ``require_member``, ``require_admin``, ``get_roster``)
take an open :class:`Session` so callers keep them inside their own
transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from bitsynq.database.engine import get_session
from bitsynq.database.models import MemberRole, Project, ProjectMember, User, UserBalance
from bitsynq.services.errors import ConflictError, NotFoundError, PermissionDeniedError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Access checks
# ---------------------------------------------------------------------------
def get_membership(session: Session, project_id: str, user_id: str) -> ProjectMember | None:
    return session.get(ProjectMember, (project_id, user_id))


def require_member(session: Session, project_id: str, user_id: str) -> ProjectMember:
    """Return the membership row or raise.

    Raises :class:`NotFoundError` for an unknown project and
    :class:`PermissionDeniedError` when *user_id* is not a member.
    """
    if session.get(Project, project_id) is None:
        raise NotFoundError(f"Project {project_id} not found")
    membership = get_membership(session, project_id, user_id)
    if membership is None:
        raise PermissionDeniedError("Not a member of this project")
    return membership


def require_admin(session: Session, project_id: str, user_id: str) -> ProjectMember:
    membership = require_member(session, project_id, user_id)
    if membership.role != MemberRole.ADMIN:
        raise PermissionDeniedError("Only project admins can perform this action")
    return membership


def get_or_create_balance(session: Session, user_id: str, project_id: str) -> UserBalance:
    """Fetch or insert the user's balance row for a project."""
    balance = session.get(UserBalance, (user_id, project_id))
    if balance is None:
        balance = UserBalance(user_id=user_id, project_id=project_id, balance=0, total_contributed=0.0)
        session.add(balance)
        session.flush()
    return balance


# ---------------------------------------------------------------------------
# Projects & members
# ---------------------------------------------------------------------------
def create_project(
    engine: Engine,
    *,
    owner_id: str,
    name: str,
    description: str | None = None,
    token_symbol: str | None = None,
) -> Project:
    """Create a project; the owner becomes its first admin with a zero balance."""
    with get_session(engine) as session:
        if session.get(User, owner_id) is None:
            raise NotFoundError(f"User {owner_id} not found")
        project = Project(
            name=name,
            description=description,
            owner_id=owner_id,
            token_symbol=token_symbol,
        )
        session.add(project)
        session.flush()
        session.add(ProjectMember(project_id=project.id, user_id=owner_id, role=MemberRole.ADMIN.value))
        get_or_create_balance(session, owner_id, project.id)
        logger.info("Project created: %s (%s) owner=%s", project.name, project.id, owner_id)
        return project


def add_member(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    user_id: str,
    role: str = MemberRole.MEMBER.value,
) -> ProjectMember:
    """Admin-only: add *user_id* to the project with *role*."""
    role = MemberRole(role).value
    with get_session(engine) as session:
        require_admin(session, project_id, actor_id)
        if session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")
        if get_membership(session, project_id, user_id) is not None:
            raise ConflictError("User is already a member of this project")
        member = ProjectMember(project_id=project_id, user_id=user_id, role=role)
        session.add(member)
        get_or_create_balance(session, user_id, project_id)
        session.flush()
        logger.info("Member added: project=%s user=%s role=%s", project_id, user_id, role)
        return member


# ---------------------------------------------------------------------------
# Roster for participant matching
# ---------------------------------------------------------------------------
def get_roster(session: Session, project_id: str) -> list[dict[str, Any]]:
    """Project members as matcher roster entries, in join order."""
    rows = session.execute(
        select(User)
        .join(ProjectMember, ProjectMember.user_id == User.id)
        .where(ProjectMember.project_id == project_id)
        .order_by(ProjectMember.joined_at, User.id)
    ).scalars().all()
    return [
        {
            "id": user.id,
            "display_name": user.display_name,
            "email": user.email,
            "aliases": user.aliases,
        }
        for user in rows
    ]
