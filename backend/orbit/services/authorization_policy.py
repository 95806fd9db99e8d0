"""
services/authorization_policy.py - Who may do what inside a group.

Pure decision functions: explicit inputs in, bool out. No I/O, no session, no
Flask, no module state. Services look up the actor's role and the group's
privacy, ask these functions, and raise the matching AppError themselves.

`actor_role` is None when the actor is not a member of the group.
"""

from __future__ import annotations

from backend.orbit.models.group import Privacy
from backend.orbit.models.membership import Role

_MANAGER_ROLES = frozenset({Role.OWNER, Role.ADMIN})

# AddMember may grant these roles. OWNER is only reachable through a role
# change so that the previous owner is demoted in the same transaction.
ASSIGNABLE_ON_ADD = frozenset({Role.MEMBER, Role.ADMIN})


def can_manage_members(actor_role: Role | None) -> bool:
    """Add/remove members, send/cancel/list invitations."""
    return actor_role in _MANAGER_ROLES


def can_change_roles(actor_role: Role | None) -> bool:
    """Role changes, including handing over ownership, are owner-exclusive."""
    return actor_role == Role.OWNER


def can_delete_group(actor_role: Role | None) -> bool:
    return actor_role == Role.OWNER


def can_update_group(actor_role: Role | None) -> bool:
    return actor_role in _MANAGER_ROLES


def can_view_member_list(actor_role: Role | None, privacy: Privacy) -> bool:
    """
    Admins always see the roster. Ordinary members see it unless the group is
    PUBLIC (public groups hide their full roster to limit scraping).
    Non-members never do.
    """
    if actor_role is None:
        return False
    if actor_role in _MANAGER_ROLES:
        return True
    return privacy != Privacy.PUBLIC


def can_view_group(is_member: bool, privacy: Privacy) -> bool:
    return is_member or privacy == Privacy.PUBLIC


def can_remove_member(actor_id: int, actor_role: Role | None, target_user_id: int) -> bool:
    """Anyone may leave; removing someone else needs manager rights."""
    return actor_id == target_user_id or can_manage_members(actor_role)


def can_assign_on_add(role: Role) -> bool:
    return role in ASSIGNABLE_ON_ADD
