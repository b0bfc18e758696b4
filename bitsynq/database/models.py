"""
bitsynq.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users               — People who can join projects (wallet, aliases)
- projects            — Token-issuing projects
- project_members     — Membership + role (admin / member)
- meetings            — Uploaded transcripts and their parsed data
- contributions       — Append-only contribution ratio records
- token_distributions — Point-in-time allocation snapshots
- user_balances       — Running per-project token balance
- transaction_logs    — On-chain transaction journal
- transaction_inputs  — Per-recipient rows of a batch transaction
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite dev / tests)
JSON_DOCUMENT = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Bitsynq ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class MemberRole(enum.StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


class ProjectStatus(enum.StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class MeetingStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"


class SourceType(enum.StrEnum):
    """Where a contribution record came from."""
    MEETING = "meeting"
    MANUAL = "manual"
    IMPORT = "import"


class DistributionStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class TxType(enum.StrEnum):
    MINT = "mint"
    TRANSFER = "transfer"
    BATCH_TRANSFER = "batch_transfer"


class TxStatus(enum.StrEnum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    aliases: Mapped[str | None] = mapped_column(Text, default=None)  # JSON list
    wallet_address: Mapped[str | None] = mapped_column(String(42), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    memberships: Mapped[list[ProjectMember]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.display_name!r}>"


# ---------------------------------------------------------------------------
# Projects & membership
# ---------------------------------------------------------------------------
class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    token_symbol: Mapped[str | None] = mapped_column(String(20), default=None)
    status: Mapped[str] = mapped_column(String(20), default=ProjectStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    members: Mapped[list[ProjectMember]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project id={self.id} name={self.name!r}>"


class ProjectMember(Base):
    __tablename__ = "project_members"

    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(20), default=MemberRole.MEMBER.value)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    project: Mapped[Project] = relationship(back_populates="members")
    user: Mapped[User] = relationship(back_populates="memberships")

    def __repr__(self) -> str:
        return f"<ProjectMember project={self.project_id} user={self.user_id} role={self.role}>"


# ---------------------------------------------------------------------------
# Meetings — transcripts awaiting review
# ---------------------------------------------------------------------------
class Meeting(Base):
    __tablename__ = "meetings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str | None] = mapped_column(String(300), default=None)
    meeting_date: Mapped[str | None] = mapped_column(String(40), default=None)
    raw_transcript: Mapped[str | None] = mapped_column(Text, default=None)
    parsed_data: Mapped[dict | None] = mapped_column(JSON_DOCUMENT, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=MeetingStatus.PENDING.value)
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_meetings_project_time", "project_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Meeting id={self.id} title={self.title!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Contributions — immutable once written (delete only)
# ---------------------------------------------------------------------------
class Contribution(Base):
    __tablename__ = "contributions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    ratio: Mapped[float] = mapped_column(Float, nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(36), default=None)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_contributions_project_user", "project_id", "user_id"),
        Index("ix_contributions_project_time", "project_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Contribution id={self.id} user={self.user_id} ratio={self.ratio}>"


# ---------------------------------------------------------------------------
# TokenDistribution — one completed allocation run
# ---------------------------------------------------------------------------
class TokenDistribution(Base):
    """Point-in-time allocation snapshot.

    ``distribution_data`` holds the serialized allocation so later
    contribution edits never alter a past distribution.
    """
    __tablename__ = "token_distributions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    milestone_name: Mapped[str | None] = mapped_column(String(200), default=None)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    distribution_data: Mapped[str | None] = mapped_column(Text, default=None)
    tx_hash: Mapped[str | None] = mapped_column(String(66), default=None)
    status: Mapped[str] = mapped_column(String(20), default=DistributionStatus.PENDING.value)
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_token_distributions_project_time", "project_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<TokenDistribution id={self.id} total={self.total_tokens} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# UserBalance — running per-project totals
# ---------------------------------------------------------------------------
class UserBalance(Base):
    __tablename__ = "user_balances"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    balance: Mapped[int] = mapped_column(Integer, default=0)
    total_contributed: Mapped[float] = mapped_column(Float, default=0.0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<UserBalance user={self.user_id} project={self.project_id} bal={self.balance}>"


# ---------------------------------------------------------------------------
# TransactionLog — on-chain journal
# ---------------------------------------------------------------------------
class TransactionLog(Base):
    __tablename__ = "transaction_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    distribution_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("token_distributions.id", ondelete="SET NULL"), nullable=True
    )
    tx_hash: Mapped[str | None] = mapped_column(String(66), default=None)
    tx_type: Mapped[str] = mapped_column(String(20), nullable=False)
    from_address: Mapped[str] = mapped_column(String(42), nullable=False)
    to_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[str] = mapped_column(String(80), nullable=False)  # base units
    token_symbol: Mapped[str] = mapped_column(String(20), default="BTS")
    status: Mapped[str] = mapped_column(String(20), default=TxStatus.PENDING.value)
    block_number: Mapped[int | None] = mapped_column(Integer, default=None)
    gas_used: Mapped[int | None] = mapped_column(Integer, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    inputs: Mapped[list[TransactionInput]] = relationship(
        back_populates="transaction_log", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_transaction_logs_project_time", "project_id", "created_at"),
        Index("ix_transaction_logs_tx_hash", "tx_hash"),
    )

    def __repr__(self) -> str:
        return f"<TransactionLog id={self.id} type={self.tx_type} status={self.status}>"


class TransactionInput(Base):
    __tablename__ = "transaction_inputs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    transaction_log_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transaction_logs.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[str] = mapped_column(String(80), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    transaction_log: Mapped[TransactionLog] = relationship(back_populates="inputs")

    __table_args__ = (
        UniqueConstraint("transaction_log_id", "user_id", name="uq_transaction_inputs_log_user"),
    )

    def __repr__(self) -> str:
        return f"<TransactionInput log={self.transaction_log_id} user={self.user_id}>"
