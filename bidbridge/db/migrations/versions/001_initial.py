"""Initial schema - marketplace tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # Users (directory mirror)
    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="provider"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
    )

    # Projects
    op.create_table(
        "projects",
        *_base_columns(),
        sa.Column(
            "poster_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("budget", sa.Numeric(14, 2), nullable=True),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open", index=True),
        sa.Column("quote_count", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("quote_sequence", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column(
            "assigned_provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=True,
            index=True,
        ),
        sa.Column("approved_quote_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_amount", sa.Numeric(14, 2), nullable=True),
        sa.CheckConstraint("quote_count >= 0", name="ck_projects_quote_count_non_negative"),
    )

    # Quotes
    op.create_table(
        "quotes",
        *_base_columns(),
        sa.Column(
            "project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False, index=True
        ),
        sa.Column(
            "provider_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True
        ),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("timeline_days", sa.Integer, nullable=True),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("attachments", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("status", sa.String(20), nullable=False, server_default="submitted"),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_quotes_project_provider_active",
        "quotes",
        ["project_id", "provider_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'withdrawn'"),
    )
    op.create_index(
        "uq_quotes_project_approved",
        "quotes",
        ["project_id"],
        unique=True,
        postgresql_where=sa.text("status = 'approved'"),
    )

    # Conversations
    op.create_table(
        "conversations",
        *_base_columns(),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column(
            "participant_one_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "participant_two_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("last_message", sa.Text, nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("last_sender_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("message_sequence", sa.Integer, nullable=False, server_default=sa.text("0")),
    )

    # Messages
    op.create_table(
        "messages",
        *_base_columns(),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("sender_name", sa.String(255), nullable=True),
        sa.Column("text", sa.Text, nullable=False, server_default=""),
        sa.Column("attachment", postgresql.JSONB, nullable=True),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.UniqueConstraint("conversation_id", "sequence", name="uq_messages_conversation_sequence"),
    )

    # Notifications
    op.create_table(
        "notifications",
        *_base_columns(),
        sa.Column(
            "user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True
        ),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("is_seen", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
    )
    op.create_index(
        "ix_notifications_user_listing", "notifications", ["user_id", "is_deleted", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_user_listing", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_index("uq_quotes_project_approved", table_name="quotes")
    op.drop_index("uq_quotes_project_provider_active", table_name="quotes")
    op.drop_table("quotes")
    op.drop_table("projects")
    op.drop_table("users")
