"""Add partial unique indexes backing the membership invariants.

Revision: 002_add_invariant_indexes
Created:  2026-10-19

Two rules the services check before writing, enforced here as well so that
concurrent transactions cannot both pass the check:

  uq_group_members_single_owner
    UNIQUE (group_id) WHERE role = 'OWNER'
    At most one OWNER per group. Ownership transfer demotes the old owner
    (flush) before promoting the new one, so the index never sees two.

  uq_group_invitations_one_pending
    UNIQUE (group_id, invitee_id) WHERE status = 'PENDING'
    At most one live invitation per (group, invitee). Terminal rows are
    unconstrained, so re-inviting after a decline or expiry is allowed.

A violation surfaces as IntegrityError, which the services translate into
ALREADY_MEMBER or CONCURRENT_UPDATE (409).
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "002_add_invariant_indexes"
down_revision: str | None = "001_initial_schema"
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    op.create_index(
        "uq_group_members_single_owner",
        "group_members",
        ["group_id"],
        unique=True,
        postgresql_where=sa.text("role = 'OWNER'"),
        sqlite_where=sa.text("role = 'OWNER'"),
    )
    op.create_index(
        "uq_group_invitations_one_pending",
        "group_invitations",
        ["group_id", "invitee_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )


def downgrade() -> None:
    op.drop_index("uq_group_invitations_one_pending", table_name="group_invitations")
    op.drop_index("uq_group_members_single_owner", table_name="group_members")
