"""Initial ledger schema

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # clock
    op.create_table(
        "checkpoints",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("last_block", sa.Integer(), nullable=False, server_default="0"),
    )

    # network singleton (admin, pause flag, counter, discovery seed)
    op.create_table(
        "network_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("network_admin", sa.String(length=32), nullable=False),
        sa.Column(
            "network_paused", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("message_counter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("random_seed", sa.BigInteger(), nullable=False, server_default="0"),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("author", sa.String(length=32), nullable=False),
        sa.Column("content_hash", sa.String(length=256), nullable=False),
        sa.Column("activation_point", sa.Integer(), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("target_user", sa.String(length=32), nullable=True),
        sa.Column(
            "is_processed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("is_disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("upvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("downvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("msg_type", sa.String(length=16), nullable=False, server_default="text"),
    )
    op.create_index("ix_messages_author", "messages", ["author"])
    op.create_index("ix_messages_activation_point", "messages", ["activation_point"])
    op.create_index("ix_messages_target_user", "messages", ["target_user"])

    op.create_table(
        "message_details",
        sa.Column(
            "message_id", sa.Integer(), sa.ForeignKey("messages.id"), primary_key=True
        ),
        sa.Column("subject", sa.String(length=64), nullable=False),
        sa.Column("content", sa.String(length=256), nullable=False),
        sa.Column("creation_block", sa.Integer(), nullable=False),
        sa.Column("last_update", sa.Integer(), nullable=False),
        sa.Column("tags", sa.Text(), nullable=True),
    )

    op.create_table(
        "upvotes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=32), nullable=False),
        sa.Column("block_num", sa.Integer(), nullable=False),
        sa.UniqueConstraint("message_id", "username", name="uq_upvote_message_user"),
    )
    op.create_index("ix_upvotes_message_id", "upvotes", ["message_id"])
    op.create_index("ix_upvotes_username", "upvotes", ["username"])

    op.create_table(
        "user_activity",
        sa.Column("username", sa.String(length=32), primary_key=True),
        sa.Column("messages_posted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_claimed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("upvotes_given", sa.Integer(), nullable=False, server_default="0"),
    )

    # audit of report/disable calls
    op.create_table(
        "moderation_actions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("block_num", sa.Integer(), nullable=False),
    )
    op.create_index(
        "ix_moderation_actions_message_id", "moderation_actions", ["message_id"]
    )
    op.create_index("ix_moderation_actions_actor", "moderation_actions", ["actor"])
    op.create_index(
        "ix_moderation_actions_block_num", "moderation_actions", ["block_num"]
    )


def downgrade() -> None:
    op.drop_table("moderation_actions")
    op.drop_table("user_activity")
    op.drop_table("upvotes")
    op.drop_table("message_details")
    op.drop_table("messages")
    op.drop_table("network_state")
    op.drop_table("checkpoints")
