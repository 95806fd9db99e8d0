"""
models/membership.py - Membership (group_members) table definition.

No business logic. No imports from services or routes.

Storage-level invariants:
  - PRIMARY KEY (group_id, user_id): a user belongs to a group at most once.
    Two racing inserts for the same pair cannot both commit; the loser gets an
    IntegrityError, which the services map to ALREADY_MEMBER.
  - Partial UNIQUE index on group_id WHERE role = 'OWNER': a group can never
    hold two OWNER rows, whatever order concurrent role changes commit in.

FK policy: group_id ON DELETE CASCADE (memberships are owned by their group);
user_id and invited_by ON DELETE RESTRICT / SET NULL.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.orbit.clock import utcnow
from backend.orbit.extensions import db


class Role(str, enum.Enum):
    OWNER  = "OWNER"    # exactly one per non-empty group
    ADMIN  = "ADMIN"    # manages members and invitations
    MEMBER = "MEMBER"   # no management rights


# Roster order: OWNER first, then ADMIN, then MEMBER.
ROLE_RANK: dict[Role, int] = {Role.OWNER: 0, Role.ADMIN: 1, Role.MEMBER: 2}

_OWNER_ONLY = text("role = 'OWNER'")


class Membership(db.Model):
    __tablename__ = "group_members"

    __table_args__ = (
        Index(
            "uq_group_members_single_owner",
            "group_id",
            unique=True,
            postgresql_where=_OWNER_ONLY,
            sqlite_where=_OWNER_ONLY,
        ),
    )

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        primary_key=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        primary_key=True,
        index=True,   # "which groups am I in" lookups
    )

    role: Mapped[Role] = mapped_column(
        Enum(
            Role,
            name="group_role",
            native_enum=False,
            create_constraint=True,
            length=16,
        ),
        nullable=False,
        default=Role.MEMBER,
        server_default=Role.MEMBER.value,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # Set when the membership came from an invitation or from the creator's
    # initial member list.
    invited_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
        foreign_keys=[user_id],
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership group_id={self.group_id} "
            f"user_id={self.user_id} "
            f"role={self.role.value}>"
        )
