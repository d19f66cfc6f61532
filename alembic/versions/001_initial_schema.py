"""Initial schema - users, themes, collages, photos, friendships, invites

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("avatar_url", sa.String(1024), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    # Themes
    op.create_table(
        "themes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("text", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_themes"),
    )

    # Collages
    op.create_table(
        "collages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("theme", sa.String(255), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("invite_code", sa.String(16), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("background_url", sa.String(1024), nullable=True),
        sa.Column("preview_url", sa.String(1024), nullable=True),
        sa.Column("is_party_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_collages"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name="fk_collages_created_by_users", ondelete="CASCADE"),
        sa.UniqueConstraint("invite_code", name="uq_collages_invite_code"),
    )
    op.create_index("ix_collages_created_by", "collages", ["created_by"])
    op.create_index("ix_collages_expires_at", "collages", ["expires_at"])

    # Collage members
    op.create_table(
        "collage_members",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("collage_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_collage_members"),
        sa.ForeignKeyConstraint(["collage_id"], ["collages.id"], name="fk_collage_members_collage_id_collages", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_collage_members_user_id_users", ondelete="CASCADE"),
        sa.UniqueConstraint("collage_id", "user_id", name="uq_collage_members_pair"),
    )
    op.create_index("ix_collage_members_collage_id", "collage_members", ["collage_id"])
    op.create_index("ix_collage_members_user_id", "collage_members", ["user_id"])

    # Photos
    op.create_table(
        "photos",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("collage_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("image_url", sa.String(1024), nullable=False),
        sa.Column("position_x", sa.Float(), nullable=False, server_default="0"),
        sa.Column("position_y", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rotation", sa.Float(), nullable=False, server_default="0"),
        sa.Column("scale", sa.Float(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_photos"),
        sa.ForeignKeyConstraint(["collage_id"], ["collages.id"], name="fk_photos_collage_id_collages", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_photos_user_id_users", ondelete="CASCADE"),
    )
    op.create_index("ix_photos_collage_id", "photos", ["collage_id"])
    op.create_index("ix_photos_user_id", "photos", ["user_id"])

    # Friendships
    op.create_table(
        "friendships",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("friend_id", sa.Uuid(), nullable=False),
        sa.Column("pair_key", sa.String(80), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_friendships"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_friendships_user_id_users", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["friend_id"], ["users.id"], name="fk_friendships_friend_id_users", ondelete="CASCADE"),
        sa.UniqueConstraint("pair_key", name="uq_friendships_pair"),
    )
    op.create_index("ix_friendships_user_id", "friendships", ["user_id"])
    op.create_index("ix_friendships_friend_id", "friendships", ["friend_id"])

    # Collage invites
    op.create_table(
        "collage_invites",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("collage_id", sa.Uuid(), nullable=False),
        sa.Column("sender_id", sa.Uuid(), nullable=False),
        sa.Column("receiver_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_collage_invites"),
        sa.ForeignKeyConstraint(["collage_id"], ["collages.id"], name="fk_collage_invites_collage_id_collages", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], name="fk_collage_invites_sender_id_users", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["receiver_id"], ["users.id"], name="fk_collage_invites_receiver_id_users", ondelete="CASCADE"),
        sa.UniqueConstraint("collage_id", "receiver_id", name="uq_collage_invites_receiver"),
    )
    op.create_index("ix_collage_invites_collage_id", "collage_invites", ["collage_id"])
    op.create_index("ix_collage_invites_receiver_id", "collage_invites", ["receiver_id"])


def downgrade() -> None:
    op.drop_table("collage_invites")
    op.drop_table("friendships")
    op.drop_table("photos")
    op.drop_table("collage_members")
    op.drop_table("collages")
    op.drop_table("themes")
    op.drop_table("users")
