"""
models/group.py - Group table definition.

No business logic. No imports from services or routes.

member_count is denormalised: it must always equal the number of
group_members rows for the group. Only the membership and invitation services
change it, and always in the same transaction as the row insert/delete, via a
SQL-side increment (member_count = member_count ± 1).

Deleting a group deletes its memberships and invitations (ORM cascade plus
ON DELETE CASCADE on both child tables).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.orbit.clock import utcnow
from backend.orbit.extensions import db


class Privacy(str, enum.Enum):
    PUBLIC       = "PUBLIC"        # discoverable, joinable without invitation
    FRIENDS_ONLY = "FRIENDS_ONLY"
    PRIVATE      = "PRIVATE"       # invitation-only, not discoverable


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
        CheckConstraint(
            "member_count >= 0",
            name="ck_groups_member_count_nonnegative",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    cover_image: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # "#RRGGBB" - format enforced by the schema.
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)

    privacy: Mapped[Privacy] = mapped_column(
        Enum(
            Privacy,
            name="group_privacy",
            native_enum=False,
            create_constraint=True,
            length=16,
        ),
        nullable=False,
        default=Privacy.FRIENDS_ONLY,
        server_default=Privacy.FRIENDS_ONLY.value,
    )

    member_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    # The user who created the group. Not necessarily the current OWNER:
    # ownership can be transferred with a role change.
    creator_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    creator: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[creator_id],
    )

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="group",
        cascade="all, delete-orphan",
    )

    invitations: Mapped[list["Invitation"]] = relationship(  # noqa: F821
        "Invitation",
        back_populates="group",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Group id={self.id} name={self.name!r} "
            f"privacy={self.privacy.value} members={self.member_count}>"
        )
