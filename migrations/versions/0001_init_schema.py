"""init schema"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Extensions
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=100)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
    )

    op.create_table(
        "chats",
        sa.Column("id", sa.String(length=100), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("idx_chats_user_created", "chats", ["user_id", "created_at"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=100), primary_key=True),
        sa.Column("chat_id", sa.String(length=100), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        # Plain string or list of {type: text | tool-call | tool-result, ...} parts
        sa.Column("content", postgresql.JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("role IN ('user', 'assistant', 'tool', 'system')", name="ck_messages_role"),
    )
    op.create_index("idx_messages_chat_created", "messages", ["chat_id", "created_at"])

    # One row per version; the newest created_at is the current document
    op.create_table(
        "documents",
        sa.Column("id", sa.String(length=100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("clock_timestamp()"),
        ),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("content", sa.Text),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", "created_at", name="pk_documents"),
    )
    op.create_index("idx_documents_user", "documents", ["user_id"])

    op.create_table(
        "suggestions",
        sa.Column("id", sa.String(length=100), primary_key=True),
        sa.Column("document_id", sa.String(length=100), nullable=False),
        sa.Column("document_created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_text", sa.Text, nullable=False),
        sa.Column("suggested_text", sa.Text, nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("is_resolved", sa.Boolean, nullable=False, server_default=sa.text("FALSE")),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.ForeignKeyConstraint(
            ["document_id", "document_created_at"],
            ["documents.id", "documents.created_at"],
            name="fk_suggestions_document",
            ondelete="CASCADE",
        ),
    )
    op.create_index("idx_suggestions_document", "suggestions", ["document_id"])

    # Seed default user for local development
    op.execute(
        """
        INSERT INTO users (email, display_name)
        VALUES ('local@quill.dev', 'Local User')
        ON CONFLICT (email) DO NOTHING;
        """
    )


def downgrade() -> None:
    op.drop_table("suggestions")
    op.drop_table("documents")
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_table("users")
