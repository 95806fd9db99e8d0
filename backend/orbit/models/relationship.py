"""
models/relationship.py - Relationship taxonomy tables (read-only here).

Each user owns a personal taxonomy of relationship categories (Work, School,
Social, ...) with named subcategories. The taxonomy is managed by the
relationships feature; this service only reads it to build the advisory
relationship suggestion after a join or an accepted invitation.
"""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.orbit.extensions import db


class RelationshipCategory(db.Model):
    __tablename__ = "relationship_categories"

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_relationship_categories_user_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    subcategories: Mapped[list["RelationshipSubcategory"]] = relationship(
        "RelationshipSubcategory",
        back_populates="category",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RelationshipCategory id={self.id} user_id={self.user_id} name={self.name!r}>"


class RelationshipSubcategory(db.Model):
    __tablename__ = "relationship_subcategories"

    id: Mapped[int] = mapped_column(primary_key=True)

    category_id: Mapped[int] = mapped_column(
        ForeignKey("relationship_categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    category: Mapped[RelationshipCategory] = relationship(
        "RelationshipCategory",
        back_populates="subcategories",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RelationshipSubcategory id={self.id} name={self.name!r}>"
