"""
services/group_service.py - Group settings, listing and discovery.

Membership changes live in membership_service.py; this module covers the
group record itself.

Authorization rules:
  - Update settings: OWNER or ADMIN
  - Delete group:    OWNER only (cascades memberships and invitations)
  - List / discover: any authenticated user

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility - only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from backend.orbit.errors import AppError, ErrorCode
from backend.orbit.models.group import Group, Privacy
from backend.orbit.models.membership import Membership
from backend.orbit.services import authorization_policy as policy
from backend.orbit.services.common import (
    build_group_summary,
    get_group_or_404,
    get_role,
)

logger = logging.getLogger(__name__)

# Fields a PATCH may touch. Anything else in attrs is ignored.
_UPDATABLE_FIELDS = ("name", "description", "avatar_url", "cover_image", "color", "privacy")


def list_groups(user_id: int, session: Session) -> list[dict]:
    """
    Returns all groups the user belongs to, most recently updated first,
    each with the caller's role. No member list - use get_group for that.
    """
    stmt = (
        select(Group, Membership.role)
        .join(Membership, Group.id == Membership.group_id)
        .where(Membership.user_id == user_id)
        .order_by(Group.updated_at.desc(), Group.id.desc())
    )
    return [
        {**build_group_summary(group), "current_user_role": role.value}
        for group, role in session.execute(stmt).all()
    ]


def discover_public_groups(
        user_id: int,
        query: str | None,
        limit: int,
        session: Session,
) -> list[dict]:
    """
    Returns PUBLIC groups, largest first.

    Args:
        query: Optional case-insensitive substring matched against name and
               description. % and _ match themselves, not as wildcards.
        limit: Maximum number of groups; the route caps it at
               DISCOVER_MAX_LIMIT.
    """
    stmt = select(Group).where(Group.privacy == Privacy.PUBLIC)
    term = (query or "").strip()
    if term:
        stmt = stmt.where(or_(
            Group.name.icontains(term, autoescape=True),
            Group.description.icontains(term, autoescape=True),
        ))
    stmt = stmt.order_by(Group.member_count.desc(), Group.id.asc()).limit(limit)

    groups = session.execute(stmt).scalars().all()
    if not groups:
        return []

    joined = set(
        session.execute(
            select(Membership.group_id).where(
                Membership.user_id == user_id,
                Membership.group_id.in_([g.id for g in groups]),
            )
        ).scalars().all()
    )
    return [{**build_group_summary(g), "is_member": g.id in joined} for g in groups]


def update_group(actor_id: int, group_id: int, attrs: dict, session: Session) -> dict:
    """
    Applies a partial update to the group's settings.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)      - actor is not OWNER/ADMIN
      AppError(INVALID_FIELD, 400)  - name given but blank
    """
    group = get_group_or_404(group_id, session)

    if not policy.can_update_group(get_role(group_id, actor_id, session)):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only group owners or admins can update the group.",
            403,
        )

    changes = {key: attrs[key] for key in _UPDATABLE_FIELDS if key in attrs}

    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                "Group name must not be blank.",
                400,
                field="name",
            )
        changes["name"] = name

    if "privacy" in changes and changes["privacy"] is None:
        del changes["privacy"]

    for key, value in changes.items():
        setattr(group, key, value)
    session.flush()

    logger.info("User %s updated group %s: %s", actor_id, group_id, sorted(changes))
    return build_group_summary(group)


def delete_group(actor_id: int, group_id: int, session: Session) -> None:
    """
    Deletes the group with its memberships and invitations.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) - actor is not the OWNER
    """
    group = get_group_or_404(group_id, session)

    if not policy.can_delete_group(get_role(group_id, actor_id, session)):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the group owner can delete the group.",
            403,
        )

    session.delete(group)
    session.flush()
    logger.info("User %s deleted group %s", actor_id, group_id)
