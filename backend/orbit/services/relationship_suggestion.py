"""
services/relationship_suggestion.py - Advisory relationship suggestion.

After a user joins a group (public join or accepted invitation) the client
offers to file the group under the user's personal relationship taxonomy,
e.g. "Acme Corp Team" → category "Work", subcategory "Acme Corp Team".

This module is read-only. Its result is advisory: routes compute it after the
membership transaction has committed, and a failure here never turns a
successful join into an error (see safe_suggest_relationship).
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.orbit.errors import WarningCode
from backend.orbit.models.relationship import RelationshipCategory, RelationshipSubcategory

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Social"

# Checked in order; the first category with a matching keyword wins.
# Matching is a case-insensitive substring test on the group name.
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Work",         ("work", "company", "corp", "inc")),
    ("School",       ("school", "university", "college", "academy")),
    ("Hobby",        ("hobby", "club", "sport")),
    ("Organization", ("org", "organization", "foundation")),
    ("Online",       ("online", "gaming", "discord")),
)


def classify_group_name(group_name: str) -> str:
    """Returns the relationship category name a group name suggests."""
    lowered = group_name.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def suggest_relationship(group_name: str, user_id: int, session: Session) -> dict | None:
    """
    Builds the suggestion payload for `user_id` joining a group named `group_name`.

    Returns None when the user has no category of the suggested name.
    Otherwise:
        {
          "category_id": int,
          "category_name": str,
          "subcategory_name": str,         # always the group name
          "subcategory_id": int | None,    # set when it already exists
          "should_create_subcategory": bool,
        }
    """
    category_name = classify_group_name(group_name)

    category = session.execute(
        select(RelationshipCategory).where(
            RelationshipCategory.user_id == user_id,
            RelationshipCategory.name == category_name,
        )
    ).scalar_one_or_none()

    if category is None:
        return None

    existing = session.execute(
        select(RelationshipSubcategory).where(
            RelationshipSubcategory.category_id == category.id,
            RelationshipSubcategory.name == group_name,
        )
    ).scalars().first()

    return {
        "category_id": category.id,
        "category_name": category_name,
        "subcategory_name": group_name,
        "subcategory_id": existing.id if existing is not None else None,
        "should_create_subcategory": existing is None,
    }


def safe_suggest_relationship(
        group_name: str,
        user_id: int,
        session: Session,
) -> tuple[dict | None, list[str]]:
    """
    Route-facing wrapper. Returns (suggestion, warnings).

    A storage failure is logged and reported as a SUGGESTION_UNAVAILABLE
    warning; it is never raised. Call only after the membership change has
    been committed.
    """
    try:
        return suggest_relationship(group_name, user_id, session), []
    except SQLAlchemyError:
        logger.warning(
            "Relationship suggestion lookup failed for user %s, group %r",
            user_id,
            group_name,
            exc_info=True,
        )
        session.rollback()
        return None, [WarningCode.SUGGESTION_UNAVAILABLE]
