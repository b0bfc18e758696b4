"""Initial Bitsynq schema

Revision ID: 5c2e8a1f0b3d
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "5c2e8a1f0b3d"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    """Users, projects, ledger, distributions and the transaction journal."""
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("aliases", sa.Text, nullable=True),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "projects",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_symbol", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "project_members",
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "meetings",
        _id(),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(300), nullable=True),
        sa.Column("meeting_date", sa.String(40), nullable=True),
        sa.Column("raw_transcript", sa.Text, nullable=True),
        sa.Column("parsed_data", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
    )
    op.create_index("ix_meetings_project_time", "meetings", ["project_id", "created_at"])

    op.create_table(
        "contributions",
        _id(),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ratio", sa.Float, nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("source_id", sa.String(36), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
    )
    op.create_index("ix_contributions_project_user", "contributions", ["project_id", "user_id"])
    op.create_index("ix_contributions_project_time", "contributions", ["project_id", "created_at"])

    op.create_table(
        "token_distributions",
        _id(),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("milestone_name", sa.String(200), nullable=True),
        sa.Column("total_tokens", sa.Integer, nullable=False),
        sa.Column("distribution_data", sa.Text, nullable=True),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_token_distributions_project_time", "token_distributions", ["project_id", "created_at"]
    )

    op.create_table(
        "user_balances",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("balance", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_contributed", sa.Float, nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "transaction_logs",
        _id(),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "distribution_id",
            sa.String(36),
            sa.ForeignKey("token_distributions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("tx_type", sa.String(20), nullable=False),
        sa.Column("from_address", sa.String(42), nullable=False),
        sa.Column("to_address", sa.String(42), nullable=False),
        sa.Column("amount", sa.String(80), nullable=False),
        sa.Column("token_symbol", sa.String(20), nullable=False, server_default="BTS"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("block_number", sa.Integer, nullable=True),
        sa.Column("gas_used", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_transaction_logs_project_time", "transaction_logs", ["project_id", "created_at"]
    )
    op.create_index("ix_transaction_logs_tx_hash", "transaction_logs", ["tx_hash"])

    op.create_table(
        "transaction_inputs",
        _id(),
        sa.Column(
            "transaction_log_id",
            sa.String(36),
            sa.ForeignKey("transaction_logs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("amount", sa.String(80), nullable=False),
        _created_at(),
        sa.UniqueConstraint("transaction_log_id", "user_id", name="uq_transaction_inputs_log_user"),
    )


def downgrade() -> None:
    op.drop_table("transaction_inputs")
    op.drop_index("ix_transaction_logs_tx_hash", table_name="transaction_logs")
    op.drop_index("ix_transaction_logs_project_time", table_name="transaction_logs")
    op.drop_table("transaction_logs")
    op.drop_table("user_balances")
    op.drop_index("ix_token_distributions_project_time", table_name="token_distributions")
    op.drop_table("token_distributions")
    op.drop_index("ix_contributions_project_time", table_name="contributions")
    op.drop_index("ix_contributions_project_user", table_name="contributions")
    op.drop_table("contributions")
    op.drop_index("ix_meetings_project_time", table_name="meetings")
    op.drop_table("meetings")
    op.drop_table("project_members")
    op.drop_table("projects")
    op.drop_table("users")
