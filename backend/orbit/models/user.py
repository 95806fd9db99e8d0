"""
models/user.py - User table definition.

Users are owned by the identity provider. This service reads them to resolve
the authenticated actor's account mode and to validate user ids it is asked to
add or invite; it never creates or edits them through the API.
No business logic. No imports from services or routes.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.orbit.clock import utcnow
from backend.orbit.extensions import db


class AccountMode(str, enum.Enum):
    """FULL accounts may create and manage groups; RESTRICTED accounts may not."""
    FULL       = "FULL"
    RESTRICTED = "RESTRICTED"


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    username: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    # Stored as VARCHAR + CHECK rather than a native enum so the same
    # metadata works on PostgreSQL and on the SQLite test database.
    mode: Mapped[AccountMode] = mapped_column(
        Enum(
            AccountMode,
            name="account_mode",
            native_enum=False,
            create_constraint=True,
            length=16,
        ),
        nullable=False,
        default=AccountMode.FULL,
        server_default=AccountMode.FULL.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="user",
        foreign_keys="[Membership.user_id]",
    )

    @property
    def is_restricted(self) -> bool:
        return self.mode == AccountMode.RESTRICTED

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} username={self.username!r} mode={self.mode.value}>"
