"""initial schema: messages and admin_users

Revision ID: 3c1e9a7f2b40
Revises:
Create Date: 2026-10-18 09:12:41.518204

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c1e9a7f2b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the message and operator tables."""
    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("match_id", sa.String(length=36), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("encrypted_content", sa.Text(), nullable=True),
        sa.Column("encryption_iv", sa.Text(), nullable=True),
        sa.Column("keys_metadata", sa.JSON(), nullable=True),
        sa.Column("media_path", sa.Text(), nullable=True),
        sa.Column("media_type", sa.String(length=16), nullable=True),
        sa.Column("moderation_status", sa.String(length=16), nullable=True),
        sa.Column("flag_reason", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_messages_user_id", "messages", ["user_id"])
    op.create_index("ix_messages_match_id", "messages", ["match_id"])
    op.create_index("ix_messages_version", "messages", ["version"])
    op.create_index("ix_messages_moderation_status", "messages", ["moderation_status"])
    op.create_index("ix_messages_created_at", "messages", ["created_at"])

    op.create_table(
        "admin_users",
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )


def downgrade() -> None:
    """Drop the message and operator tables."""
    op.drop_table("admin_users")
    op.drop_index("ix_messages_created_at", table_name="messages")
    op.drop_index("ix_messages_moderation_status", table_name="messages")
    op.drop_index("ix_messages_version", table_name="messages")
    op.drop_index("ix_messages_match_id", table_name="messages")
    op.drop_index("ix_messages_user_id", table_name="messages")
    op.drop_table("messages")
