"""
services/common.py - Lookups and serialisers shared by the group services.

Layer rules:
  - No Flask imports. Plain values in, ORM objects / dicts / AppError out.
  - Never writes. The one write path shared between services (admit_member)
    lives in membership_service.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.orbit.clock import isoformat
from backend.orbit.errors import AppError, ErrorCode
from backend.orbit.models.group import Group
from backend.orbit.models.invitation import Invitation
from backend.orbit.models.membership import Membership, Role
from backend.orbit.models.user import User


# ── Lookups ────────────────────────────────────────────────────────────────

def get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def lock_group_or_404(group_id: int, session: Session) -> Group:
    """
    Returns the Group with its row locked (SELECT ... FOR UPDATE) until the
    transaction ends, or raises GROUP_NOT_FOUND (404).

    Every write that adds or removes a member takes this lock before reading
    the roster, so membership changes to one group run one after another and
    the owner checks see committed state.
    """
    group = session.execute(
        select(Group)
        .where(Group.id == group_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def get_membership(
        group_id: int,
        user_id: int,
        session: Session,
        for_update: bool = False,
) -> Membership | None:
    """
    Returns the (group_id, user_id) membership row, or None.

    for_update=True takes a row lock (SELECT ... FOR UPDATE) so that two
    transactions changing the same rows serialise. Dialects without row locks
    (SQLite) ignore it.
    """
    stmt = select(Membership).where(
        Membership.group_id == group_id,
        Membership.user_id == user_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalar_one_or_none()


def role_of(membership: Membership | None) -> Role | None:
    return membership.role if membership is not None else None


def get_role(group_id: int, user_id: int, session: Session) -> Role | None:
    """The user's role in the group, or None for non-members."""
    return role_of(get_membership(group_id, user_id, session))


def group_has_owner(group_id: int, session: Session) -> bool:
    owners = session.execute(
        select(func.count())
        .select_from(Membership)
        .where(Membership.group_id == group_id, Membership.role == Role.OWNER)
    ).scalar_one()
    return owners > 0


def count_other_members(group_id: int, user_id: int, session: Session) -> int:
    return session.execute(
        select(func.count())
        .select_from(Membership)
        .where(Membership.group_id == group_id, Membership.user_id != user_id)
    ).scalar_one()


def dedupe_ids(ids: Iterable[int]) -> list[int]:
    """Drops repeated ids, keeping first-seen order."""
    seen: set[int] = set()
    result: list[int] = []
    for value in ids:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def require_users_exist(user_ids: list[int], session: Session) -> None:
    """
    Raises USER_NOT_FOUND (404) for the first id with no users row.
    Runs before any write so a bad id never leaves a partial batch behind.
    """
    if not user_ids:
        return
    found = set(
        session.execute(select(User.id).where(User.id.in_(user_ids))).scalars().all()
    )
    for user_id in user_ids:
        if user_id not in found:
            raise AppError(
                ErrorCode.USER_NOT_FOUND,
                f"User {user_id} does not exist.",
                404,
            )


# ── Serialisers ────────────────────────────────────────────────────────────

def build_group_summary(group: Group) -> dict:
    """Group fields safe to show anyone allowed to see the group."""
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "avatar_url": group.avatar_url,
        "cover_image": group.cover_image,
        "color": group.color,
        "privacy": group.privacy.value,
        "member_count": group.member_count,
        "creator_id": group.creator_id,
        "created_at": isoformat(group.created_at),
        "updated_at": isoformat(group.updated_at),
    }


def build_member_dict(membership: Membership) -> dict:
    user = membership.user
    return {
        "group_id": membership.group_id,
        "user_id": membership.user_id,
        "username": user.username if user is not None else None,
        "role": membership.role.value,
        "joined_at": isoformat(membership.joined_at),
        "invited_by": membership.invited_by,
    }


def build_invitation_dict(invitation: Invitation, include_group: bool = False) -> dict:
    payload = {
        "id": invitation.id,
        "group_id": invitation.group_id,
        "inviter_id": invitation.inviter_id,
        "invitee_id": invitation.invitee_id,
        "status": invitation.status.value,
        "expires_at": isoformat(invitation.expires_at),
        "responded_at": isoformat(invitation.responded_at),
        "created_at": isoformat(invitation.created_at),
    }
    if include_group:
        payload["group"] = build_group_summary(invitation.group)
    return payload
