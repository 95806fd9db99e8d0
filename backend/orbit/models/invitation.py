"""
models/invitation.py - Invitation (group_invitations) table definition.

No business logic. No imports from services or routes.

State machine: PENDING → ACCEPTED | DECLINED | EXPIRED. All three are
terminal. Expiry is lazy: a PENDING row whose expires_at has passed is flipped
to EXPIRED the first time a service reads it for a decision.

inviter_id / invitee_id are weak references: plain user ids, no FK. The
invitation never owns a user. group_id is ON DELETE CASCADE - deleting a group
drops its invitations.

Partial UNIQUE index on (group_id, invitee_id) WHERE status = 'PENDING':
at most one live invitation per (group, invitee) pair.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.orbit.clock import as_utc, utcnow
from backend.orbit.extensions import db


class InvitationStatus(str, enum.Enum):
    PENDING  = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED  = "EXPIRED"


_PENDING_ONLY = text("status = 'PENDING'")


class Invitation(db.Model):
    __tablename__ = "group_invitations"

    __table_args__ = (
        Index(
            "uq_group_invitations_one_pending",
            "group_id",
            "invitee_id",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    inviter_id: Mapped[int] = mapped_column(Integer, nullable=False)

    invitee_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,   # "my pending invitations" lookups
    )

    status: Mapped[InvitationStatus] = mapped_column(
        Enum(
            InvitationStatus,
            name="invitation_status",
            native_enum=False,
            create_constraint=True,
            length=16,
        ),
        nullable=False,
        default=InvitationStatus.PENDING,
        server_default=InvitationStatus.PENDING.value,
    )

    # NULL means the invitation never expires.
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="invitations",
    )

    # ── Convenience ────────────────────────────────────────────────────────
    # Read-only; inspects column values only.

    @property
    def is_pending(self) -> bool:
        return self.status == InvitationStatus.PENDING

    def is_past_expiry(self, now: datetime) -> bool:
        """True if expires_at is set and not in the future relative to `now`."""
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and expires_at <= now

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Invitation id={self.id} group_id={self.group_id} "
            f"invitee_id={self.invitee_id} status={self.status.value}>"
        )
