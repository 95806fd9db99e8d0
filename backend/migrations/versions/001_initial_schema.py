"""Initial schema - users, groups, memberships, invitations, relationships.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  Schema changes go into a NEW migration file.

Enum columns are VARCHAR + CHECK (SQLAlchemy Enum with native_enum=False),
so no CREATE TYPE statements are needed and the same models run on SQLite.

Creation order (FK dependencies):
  users → groups → group_members, group_invitations
  users → relationship_categories → relationship_subcategories

ON DELETE policies:
  groups.creator_id                  → RESTRICT
  group_members.group_id             → CASCADE   (deleting a group drops its roster)
  group_members.user_id              → RESTRICT
  group_members.invited_by           → SET NULL
  group_invitations.group_id         → CASCADE
  group_invitations.inviter/invitee  → none (weak references)
  relationship_*.user_id             → CASCADE

The invariant-bearing partial unique indexes live in 002.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration - no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── users ──────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("mode", sa.String(16), nullable=False, server_default="FULL"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("LENGTH(TRIM(username)) > 0", name="ck_users_username_nonempty"),
        sa.CheckConstraint("mode IN ('FULL', 'RESTRICTED')", name="ck_users_mode"),
    )

    # ── groups ─────────────────────────────────────────────────────────────
    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.String(2048), nullable=True),
        sa.Column("cover_image", sa.String(2048), nullable=True),
        sa.Column("color", sa.String(7), nullable=True),
        sa.Column("privacy", sa.String(16), nullable=False, server_default="FRIENDS_ONLY"),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("creator_id", sa.Integer(), nullable=False),
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
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.ForeignKeyConstraint(
            ["creator_id"], ["users.id"],
            name="fk_groups_creator_id",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
        sa.CheckConstraint("member_count >= 0", name="ck_groups_member_count_nonnegative"),
        sa.CheckConstraint(
            "privacy IN ('PUBLIC', 'FRIENDS_ONLY', 'PRIVATE')",
            name="ck_groups_privacy",
        ),
    )
    op.create_index("ix_groups_creator_id", "groups", ["creator_id"])

    # ── group_members ──────────────────────────────────────────────────────
    # Composite primary key: one row per (group, user).
    op.create_table(
        "group_members",
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="MEMBER"),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("invited_by", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("group_id", "user_id", name="pk_group_members"),
        sa.ForeignKeyConstraint(
            ["group_id"], ["groups.id"],
            name="fk_group_members_group_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_group_members_user_id",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["invited_by"], ["users.id"],
            name="fk_group_members_invited_by",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint("role IN ('OWNER', 'ADMIN', 'MEMBER')", name="ck_group_members_role"),
    )
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

    # ── group_invitations ──────────────────────────────────────────────────
    op.create_table(
        "group_invitations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("inviter_id", sa.Integer(), nullable=False),
        sa.Column("invitee_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_group_invitations"),
        sa.ForeignKeyConstraint(
            ["group_id"], ["groups.id"],
            name="fk_group_invitations_group_id",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'DECLINED', 'EXPIRED')",
            name="ck_group_invitations_status",
        ),
    )
    op.create_index("ix_group_invitations_group_id", "group_invitations", ["group_id"])
    op.create_index("ix_group_invitations_invitee_id", "group_invitations", ["invitee_id"])

    # ── relationship taxonomy (read by the suggestion lookup) ─────────────
    op.create_table(
        "relationship_categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("icon", sa.String(16), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id", name="pk_relationship_categories"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_relationship_categories_user_id",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("user_id", "name", name="uq_relationship_categories_user_name"),
    )
    op.create_index(
        "ix_relationship_categories_user_id", "relationship_categories", ["user_id"],
    )

    op.create_table(
        "relationship_subcategories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("icon", sa.String(16), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id", name="pk_relationship_subcategories"),
        sa.ForeignKeyConstraint(
            ["category_id"], ["relationship_categories.id"],
            name="fk_relationship_subcategories_category_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_relationship_subcategories_user_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_relationship_subcategories_category_id",
        "relationship_subcategories",
        ["category_id"],
    )


def downgrade() -> None:
    """Drops everything in reverse FK order."""
    op.drop_table("relationship_subcategories")
    op.drop_table("relationship_categories")
    op.drop_table("group_invitations")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")
