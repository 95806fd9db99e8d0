"""
services/invitation_service.py - Group invitations.

State machine:
    PENDING → ACCEPTED   (invitee accepts; membership created in the same unit)
    PENDING → DECLINED   (invitee declines)
    PENDING → EXPIRED    (first decision-time read after expires_at)

Terminal rows are never touched again. A cancelled invitation is deleted.

Authorization:
  - Invite / cancel / list for a group: OWNER or ADMIN of that group
  - Respond: the invitee only
  - List own pending: any authenticated user

Layer rules:
  - No Flask imports. `now` is injectable so expiry can be tested without
    sleeping.
  - Commits are the route's responsibility - only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from backend.orbit.clock import utcnow
from backend.orbit.errors import AppError, ErrorCode
from backend.orbit.models.invitation import Invitation, InvitationStatus
from backend.orbit.models.membership import Membership, Role
from backend.orbit.services import authorization_policy as policy
from backend.orbit.services.common import (
    build_group_summary,
    build_invitation_dict,
    build_member_dict,
    dedupe_ids,
    get_group_or_404,
    get_membership,
    get_role,
    require_users_exist,
)
from backend.orbit.services.membership_service import admit_member

logger = logging.getLogger(__name__)

DEFAULT_INVITATION_TTL = timedelta(days=7)


def _get_invitation_or_404(
        invitation_id: int,
        session: Session,
        for_update: bool = False,
) -> Invitation:
    stmt = select(Invitation).where(Invitation.id == invitation_id)
    if for_update:
        stmt = stmt.with_for_update()
    invitation = session.execute(stmt).scalar_one_or_none()
    if invitation is None:
        raise AppError(
            ErrorCode.INVITATION_NOT_FOUND,
            f"Invitation {invitation_id} does not exist.",
            404,
        )
    return invitation


def _require_manager(actor_id: int, group_id: int, session: Session, action: str) -> None:
    if not policy.can_manage_members(get_role(group_id, actor_id, session)):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only group owners or admins can {action}.",
            403,
        )


def invite(
        actor_id: int,
        group_id: int,
        invitee_ids: list[int],
        session: Session,
        ttl: timedelta | None = DEFAULT_INVITATION_TTL,
        now: datetime | None = None,
) -> dict:
    """
    Creates PENDING invitations for each invitee that needs one.

    Invitees are skipped, without error, when they are already members or
    already hold a live PENDING invitation to the group. A PENDING invitation
    whose expiry has passed is marked EXPIRED first and a fresh one created.

    Args:
        invitee_ids: Repeats are ignored; first-seen order is kept.
        ttl:         Lifetime of each invitation. None means no expiry.
        now:         Clock override for tests.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)        - actor is not OWNER/ADMIN
      AppError(USER_NOT_FOUND, 404)   - an invitee id does not exist
      AppError(CONCURRENT_UPDATE, 409)

    Returns: {"invitations": [...created...], "count": n}
    """
    now = now or utcnow()
    group = get_group_or_404(group_id, session)
    _require_manager(actor_id, group_id, session, "invite members")

    ids = dedupe_ids(invitee_ids)
    require_users_exist(ids, session)

    expires_at = now + ttl if ttl is not None else None
    created: list[Invitation] = []

    for invitee_id in ids:
        if get_membership(group_id, invitee_id, session) is not None:
            continue

        pending = session.execute(
            select(Invitation).where(
                Invitation.group_id == group_id,
                Invitation.invitee_id == invitee_id,
                Invitation.status == InvitationStatus.PENDING,
            )
        ).scalar_one_or_none()

        if pending is not None:
            if not pending.is_past_expiry(now):
                continue
            pending.status = InvitationStatus.EXPIRED
            # The one-pending index must see the old row leave PENDING first.
            session.flush()

        invitation = Invitation(
            group_id=group_id,
            inviter_id=actor_id,
            invitee_id=invitee_id,
            status=InvitationStatus.PENDING,
            expires_at=expires_at,
            created_at=now,
        )
        session.add(invitation)
        created.append(invitation)

    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise AppError(
            ErrorCode.CONCURRENT_UPDATE,
            f"Invitations for group {group_id} changed concurrently. Please retry.",
            409,
        ) from exc

    logger.info(
        "User %s invited %d of %d users to group %s (%s)",
        actor_id, len(created), len(ids), group_id, group.name,
    )
    return {
        "invitations": [build_invitation_dict(inv) for inv in created],
        "count": len(created),
    }


def respond_to_invitation(
        actor_id: int,
        invitation_id: int,
        accept: bool,
        session: Session,
        now: datetime | None = None,
) -> dict:
    """
    Accepts or declines a PENDING invitation.

    Accepting creates the membership (MEMBER, invited_by = inviter),
    increments member_count and marks the invitation ACCEPTED in one unit.

    An invitation past its expiry is marked EXPIRED and INVITATION_EXPIRED is
    raised. The transition is flushed but not committed; the route commits it
    before returning the error.

    Raises:
      AppError(INVITATION_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)           - actor is not the invitee
      AppError(ALREADY_RESPONDED, 409)   - not PENDING
      AppError(INVITATION_EXPIRED, 410)
      AppError(ALREADY_MEMBER, 409)      - accept, but already a member

    Returns:
      {"invitation": {...}, "group": {...}, "membership": {...} | None}
    """
    now = now or utcnow()
    invitation = _get_invitation_or_404(invitation_id, session, for_update=True)

    if invitation.invitee_id != actor_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the invited user can respond to this invitation.",
            403,
        )

    if not invitation.is_pending:
        raise AppError(
            ErrorCode.ALREADY_RESPONDED,
            f"Invitation {invitation_id} is already {invitation.status.value}.",
            409,
        )

    if invitation.is_past_expiry(now):
        invitation.status = InvitationStatus.EXPIRED
        session.flush()
        logger.info("Invitation %s expired before user %s responded", invitation_id, actor_id)
        raise AppError(
            ErrorCode.INVITATION_EXPIRED,
            "This invitation has expired.",
            410,
        )

    group = invitation.group
    group_id = invitation.group_id
    membership: Membership | None = None

    if accept:
        if get_membership(group_id, actor_id, session) is not None:
            raise AppError(
                ErrorCode.ALREADY_MEMBER,
                "You are already a member of this group.",
                409,
            )
        membership = admit_member(
            group, actor_id, Role.MEMBER, session, invited_by=invitation.inviter_id,
        )
        invitation.status = InvitationStatus.ACCEPTED
    else:
        invitation.status = InvitationStatus.DECLINED

    invitation.responded_at = now
    session.flush()
    session.refresh(group)

    logger.info(
        "User %s %s invitation %s to group %s",
        actor_id, invitation.status.value.lower(), invitation_id, group_id,
    )
    return {
        "invitation": build_invitation_dict(invitation),
        "group": build_group_summary(group),
        "membership": build_member_dict(membership) if membership is not None else None,
    }


def cancel_invitation(actor_id: int, invitation_id: int, session: Session) -> None:
    """
    Withdraws a PENDING invitation by deleting it.

    Raises:
      AppError(INVITATION_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)          - actor is not OWNER/ADMIN of the group
      AppError(ALREADY_RESPONDED, 409)  - the invitation is no longer PENDING
    """
    invitation = _get_invitation_or_404(invitation_id, session, for_update=True)
    _require_manager(actor_id, invitation.group_id, session, "cancel invitations")

    if not invitation.is_pending:
        raise AppError(
            ErrorCode.ALREADY_RESPONDED,
            f"Invitation {invitation_id} is already {invitation.status.value}.",
            409,
        )

    session.delete(invitation)
    session.flush()
    logger.info("User %s cancelled invitation %s", actor_id, invitation_id)


def list_pending_for_user(
        user_id: int,
        session: Session,
        now: datetime | None = None,
) -> list[dict]:
    """
    The user's live invitations, newest first, each with its group summary.
    Stale PENDING rows are left for the next decision-time read to expire.
    """
    now = now or utcnow()
    invitations = session.execute(
        select(Invitation)
        .options(joinedload(Invitation.group))
        .where(
            Invitation.invitee_id == user_id,
            Invitation.status == InvitationStatus.PENDING,
            or_(Invitation.expires_at.is_(None), Invitation.expires_at > now),
        )
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
    ).scalars().all()
    return [build_invitation_dict(inv, include_group=True) for inv in invitations]


def list_pending_for_group(actor_id: int, group_id: int, session: Session) -> list[dict]:
    """
    Every PENDING invitation of the group, newest first. OWNER or ADMIN only.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)
    """
    get_group_or_404(group_id, session)
    _require_manager(actor_id, group_id, session, "view pending invitations")

    invitations = session.execute(
        select(Invitation)
        .where(
            Invitation.group_id == group_id,
            Invitation.status == InvitationStatus.PENDING,
        )
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
    ).scalars().all()
    return [build_invitation_dict(inv) for inv in invitations]
