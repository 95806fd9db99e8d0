"""
services/reconcile_service.py - Repairs drifted member counts.

member_count is maintained incrementally by membership_service. This module
recomputes it from group_members for operators (see the
`reconcile-member-counts` CLI command registered in create_app).
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.orbit.models.group import Group
from backend.orbit.models.membership import Membership

logger = logging.getLogger(__name__)


def reconcile_member_counts(session: Session) -> list[dict]:
    """
    Sets member_count to the real number of membership rows for every group
    whose cached value differs. Flushes; the caller commits.

    Returns one {"group_id", "old_count", "new_count"} entry per corrected group.
    """
    actual_counts = (
        select(Membership.group_id, func.count().label("actual"))
        .group_by(Membership.group_id)
        .subquery()
    )
    rows = session.execute(
        select(Group, func.coalesce(actual_counts.c.actual, 0))
        .outerjoin(actual_counts, Group.id == actual_counts.c.group_id)
        .order_by(Group.id)
    ).all()

    corrected = []
    for group, actual in rows:
        if group.member_count == actual:
            continue
        logger.warning(
            "Group %s member_count drifted: stored %s, actual %s",
            group.id, group.member_count, actual,
        )
        corrected.append({"group_id": group.id, "old_count": group.member_count, "new_count": actual})
        group.member_count = actual

    session.flush()
    return corrected
