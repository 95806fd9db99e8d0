"""
services/membership_service.py - Membership lifecycle.

Single source of truth for who belongs to a group and with which role.

Invariants enforced here (storage constraints back each of them):
  - group.member_count == number of group_members rows for the group.
    Every insert/delete is paired with a SQL-side member_count ± 1 in the
    same transaction.
  - At most one row per (group, user) - primary key on group_members.
  - Exactly one OWNER while the group has members - partial unique index plus
    the transfer/leave rules below.
  - Adding or removing a member locks the group row first, so roster
    changes to one group are serialised.

Authorization (see authorization_policy.py):
  - Add member:  OWNER or ADMIN
  - Remove:      OWNER or ADMIN, or the member themselves (leave)
  - Change role: OWNER only; promoting someone to OWNER demotes the actor
                 to ADMIN in the same transaction
  - Join:        anyone, PUBLIC groups only

Layer rules:
  - No Flask imports. Plain ints/dicts in, dicts out, AppError on failure.
  - Every precondition is checked before the first write.
  - Commits are the route's responsibility - only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from backend.orbit.clock import as_utc
from backend.orbit.errors import AppError, ErrorCode
from backend.orbit.models.group import Group, Privacy
from backend.orbit.models.membership import ROLE_RANK, Membership, Role
from backend.orbit.models.user import User
from backend.orbit.services import authorization_policy as policy
from backend.orbit.services.common import (
    build_group_summary,
    build_member_dict,
    count_other_members,
    dedupe_ids,
    get_group_or_404,
    get_membership,
    group_has_owner,
    lock_group_or_404,
    require_users_exist,
    role_of,
)

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _adjust_member_count(group_id: int, delta: int, session: Session) -> None:
    """member_count = member_count + delta, evaluated by the database."""
    session.execute(
        update(Group)
        .where(Group.id == group_id)
        .values(member_count=Group.member_count + delta)
    )


def _flush_or_conflict(session: Session, message: str) -> None:
    """
    Flushes pending writes. A uniqueness violation here means a concurrent
    transaction won a race the pre-checks could not see; the whole
    transaction is rolled back and CONCURRENT_UPDATE (409) raised.
    """
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise AppError(ErrorCode.CONCURRENT_UPDATE, message, 409) from exc


def _list_memberships(group_id: int, session: Session) -> list[Membership]:
    """Roster ordered OWNER, ADMIN, MEMBER, then by join time."""
    rows = session.execute(
        select(Membership)
        .options(joinedload(Membership.user))
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at.asc())
    ).scalars().all()
    return sorted(rows, key=lambda m: (ROLE_RANK[m.role], as_utc(m.joined_at)))


def _build_group_detail(
        group: Group,
        membership: Membership | None,
        members: list[Membership],
) -> dict:
    return {
        **build_group_summary(group),
        "members": [build_member_dict(m) for m in members],
        "is_member": membership is not None,
        "current_user_role": membership.role.value if membership is not None else None,
    }


# ── Shared write path ──────────────────────────────────────────────────────

def admit_member(
        group: Group,
        user_id: int,
        role: Role,
        session: Session,
        invited_by: int | None = None,
) -> Membership:
    """
    Inserts a membership row and increments member_count as one unit.

    Used by add_member, join_public_group and invitation acceptance. Callers
    run their own pre-checks first; the primary key is the real guarantee
    against duplicates: an IntegrityError on insert rolls the transaction back
    and surfaces as ALREADY_MEMBER (409) when the row now exists, or
    CONCURRENT_UPDATE (409) otherwise.

    A group whose last member left has no OWNER. Whoever enters it next is
    made OWNER so that a non-empty group always has exactly one. The group
    row is locked before the owner check, so a concurrent leave either
    commits first (and this entrant becomes OWNER) or waits for this insert
    (and finds someone else still in the group).
    """
    group_id = group.id
    lock_group_or_404(group_id, session)
    if not group_has_owner(group_id, session):
        logger.info("Group %s has no owner; user %s joins as OWNER", group_id, user_id)
        role = Role.OWNER

    membership = Membership(
        group_id=group_id,
        user_id=user_id,
        role=role,
        invited_by=invited_by,
    )
    session.add(membership)

    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        if get_membership(group_id, user_id, session) is not None:
            raise AppError(
                ErrorCode.ALREADY_MEMBER,
                f"User {user_id} is already a member of group {group_id}.",
                409,
            ) from exc
        raise AppError(
            ErrorCode.CONCURRENT_UPDATE,
            f"Group {group_id} changed while adding user {user_id}. Please retry.",
            409,
        ) from exc

    _adjust_member_count(group_id, 1, session)
    return membership


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        creator_id: int,
        attrs: dict,
        initial_member_ids: list[int],
        session: Session,
) -> dict:
    """
    Creates a group. The creator becomes OWNER; each initial member id becomes
    a MEMBER invited by the creator. member_count starts at 1 + len(ids).

    Args:
        creator_id:         The authenticated user.
        attrs:              name (required) plus optional description,
                            avatar_url, cover_image, color, privacy (Privacy).
        initial_member_ids: Users to add straight away. Duplicates and the
                            creator's own id are ignored.

    Raises:
      AppError(INVALID_FIELD, 400)   - name is empty or blank
      AppError(USER_NOT_FOUND, 404)  - an initial member id does not exist
    """
    name = (attrs.get("name") or "").strip()
    if not name:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "Group name must not be blank.",
            400,
            field="name",
        )

    member_ids = dedupe_ids(uid for uid in initial_member_ids if uid != creator_id)
    require_users_exist(member_ids, session)

    group = Group(
        name=name,
        description=attrs.get("description"),
        avatar_url=attrs.get("avatar_url"),
        cover_image=attrs.get("cover_image"),
        color=attrs.get("color"),
        privacy=attrs.get("privacy") or Privacy.FRIENDS_ONLY,
        member_count=1 + len(member_ids),
        creator_id=creator_id,
    )
    session.add(group)
    session.flush()  # populate group.id before creating memberships

    memberships = [Membership(group_id=group.id, user_id=creator_id, role=Role.OWNER)]
    memberships.extend(
        Membership(group_id=group.id, user_id=uid, role=Role.MEMBER, invited_by=creator_id)
        for uid in member_ids
    )
    session.add_all(memberships)
    session.flush()

    logger.info(
        "User %s created group %s (%s) with %d initial members",
        creator_id, group.id, group.privacy.value, len(member_ids),
    )
    return _build_group_detail(group, memberships[0], _list_memberships(group.id, session))


def get_group(actor_id: int, group_id: int, session: Session) -> dict:
    """
    Returns the group as the actor may see it.

    - Non-members may see PUBLIC groups only (FORBIDDEN otherwise); for them
      members is always [] and current_user_role is None.
    - Members see the roster only if can_view_member_list allows it.
    """
    group = get_group_or_404(group_id, session)
    membership = get_membership(group_id, actor_id, session)
    is_member = membership is not None

    if not policy.can_view_group(is_member, group.privacy):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Group {group_id} not found or access denied.",
            403,
        )

    members: list[Membership] = []
    if is_member and policy.can_view_member_list(membership.role, group.privacy):
        members = _list_memberships(group_id, session)

    return _build_group_detail(group, membership, members)


def list_members(actor_id: int, group_id: int, session: Session) -> list[dict]:
    """
    Returns the roster, or [] when policy hides it (ordinary member of a
    PUBLIC group). The empty list is deliberate: it does not reveal the
    group's size.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) - caller is not a member
    """
    group = get_group_or_404(group_id, session)
    membership = get_membership(group_id, actor_id, session)

    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You must be a member of group {group_id} to view its members.",
            403,
        )

    if not policy.can_view_member_list(membership.role, group.privacy):
        return []

    return [build_member_dict(m) for m in _list_memberships(group_id, session)]


def add_member(
        actor_id: int,
        group_id: int,
        user_id: int,
        session: Session,
        role: Role = Role.MEMBER,
) -> dict:
    """
    Adds a user directly (no invitation).

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)       - actor is not OWNER/ADMIN
      AppError(INVALID_FIELD, 400)   - role is OWNER (use change_role)
      AppError(USER_NOT_FOUND, 404)
      AppError(ALREADY_MEMBER, 409)
    """
    group = get_group_or_404(group_id, session)

    if not policy.can_manage_members(role_of(get_membership(group_id, actor_id, session))):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only group owners or admins can add members.",
            403,
        )

    if not policy.can_assign_on_add(role):
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "Members can be added as MEMBER or ADMIN. Transfer ownership with a role change.",
            400,
            field="role",
        )

    if session.get(User, user_id) is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )

    if get_membership(group_id, user_id, session) is not None:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {user_id} is already a member of group {group_id}.",
            409,
        )

    membership = admit_member(group, user_id, role, session)
    logger.info(
        "User %s added user %s to group %s as %s",
        actor_id, user_id, group_id, membership.role.value,
    )
    return build_member_dict(membership)


def remove_member(
        actor_id: int,
        group_id: int,
        target_user_id: int,
        session: Session,
) -> None:
    """
    Removes a member, or lets a member leave.

    The sole OWNER cannot leave (or be removed) while anyone else remains;
    ownership has to be transferred first. An OWNER who is the last member
    may leave, which leaves an empty group with member_count 0. The group row
    is locked first so no one can enter between the roster count and the
    delete.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)                  - not self and not OWNER/ADMIN
      AppError(MEMBER_NOT_FOUND, 404)           - target is not a member
      AppError(OWNER_MUST_TRANSFER_FIRST, 409)
    """
    lock_group_or_404(group_id, session)
    actor_role = role_of(get_membership(group_id, actor_id, session))

    if not policy.can_remove_member(actor_id, actor_role, target_user_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only group owners or admins can remove other members.",
            403,
        )

    target = get_membership(group_id, target_user_id, session)
    if target is None:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
            404,
        )

    if target.role == Role.OWNER and count_other_members(group_id, target_user_id, session) > 0:
        raise AppError(
            ErrorCode.OWNER_MUST_TRANSFER_FIRST,
            "Transfer ownership before leaving. You are the only owner.",
            409,
        )

    result = session.execute(
        delete(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == target_user_id,
        )
    )
    if result.rowcount == 0:
        # Removed by a concurrent request after our read; nothing to decrement.
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
            404,
        )

    _adjust_member_count(group_id, -1, session)
    logger.info("User %s removed user %s from group %s", actor_id, target_user_id, group_id)


def change_role(
        actor_id: int,
        group_id: int,
        target_user_id: int,
        new_role: Role,
        session: Session,
) -> dict:
    """
    Changes a member's role. OWNER only.

    Promoting someone to OWNER demotes the actor to ADMIN in the same
    transaction. The demotion is flushed before the promotion because the
    single-owner index is checked row by row. Both rows are locked first so
    concurrent transfers serialise.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)                  - actor is not the OWNER
      AppError(MEMBER_NOT_FOUND, 404)
      AppError(OWNER_MUST_TRANSFER_FIRST, 409)  - owner demoting themselves
      AppError(CONCURRENT_UPDATE, 409)

    Returns: the target's membership dict.
    """
    get_group_or_404(group_id, session)

    actor = get_membership(group_id, actor_id, session, for_update=True)
    if not policy.can_change_roles(role_of(actor)):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the group owner can change member roles.",
            403,
        )

    target = get_membership(group_id, target_user_id, session, for_update=True)
    if target is None:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
            404,
        )

    if target_user_id == actor_id:
        if new_role == Role.OWNER:
            return build_member_dict(target)
        raise AppError(
            ErrorCode.OWNER_MUST_TRANSFER_FIRST,
            "Promote another member to OWNER instead of demoting yourself.",
            409,
        )

    conflict = f"Roles in group {group_id} changed concurrently. Please retry."
    if new_role == Role.OWNER:
        actor.role = Role.ADMIN
        _flush_or_conflict(session, conflict)
        target.role = Role.OWNER
        logger.info(
            "Ownership of group %s transferred from user %s to user %s",
            group_id, actor_id, target_user_id,
        )
    else:
        target.role = new_role
        logger.info(
            "User %s set role of user %s in group %s to %s",
            actor_id, target_user_id, group_id, new_role.value,
        )
    _flush_or_conflict(session, conflict)

    return build_member_dict(target)


def join_public_group(user_id: int, group_id: int, session: Session) -> dict:
    """
    Joins a PUBLIC group as MEMBER without an invitation.

    The route computes the relationship suggestion after commit.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(NOT_PUBLIC, 403)
      AppError(ALREADY_MEMBER, 409)

    Returns: {"group": {...}, "membership": {...}}
    """
    group = get_group_or_404(group_id, session)

    if group.privacy != Privacy.PUBLIC:
        raise AppError(
            ErrorCode.NOT_PUBLIC,
            "This group is not public. You need an invitation.",
            403,
        )

    if get_membership(group_id, user_id, session) is not None:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            "You are already a member of this group.",
            409,
        )

    membership = admit_member(group, user_id, Role.MEMBER, session)
    session.refresh(group)
    logger.info("User %s joined public group %s", user_id, group_id)

    return {
        "group": build_group_summary(group),
        "membership": build_member_dict(membership),
    }
