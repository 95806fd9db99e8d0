"""
End-to-end scenarios and the membership invariants they must preserve:

  - member_count equals the number of membership rows after every operation
  - a group with members has exactly one OWNER
  - at most one PENDING invitation per (group, invitee)
  - answering an invitation twice fails and changes nothing
  - invite followed by cancel leaves no trace
  - all of the above hold when joins, leaves and acceptances interleave
"""

from __future__ import annotations

import threading
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.orbit.clock import utcnow
from backend.orbit.errors import AppError, ErrorCode
from backend.orbit.extensions import db
from backend.orbit.models.invitation import Invitation, InvitationStatus
from backend.orbit.models.membership import Membership, Role
from backend.orbit.models.relationship import RelationshipCategory
from backend.orbit.services import membership_service

from .conftest import (
    add_member,
    auth_headers,
    invite,
    make_group,
    make_user,
    member_count_matches_rows,
    owner_count,
    respond,
    token_for,
)

SVC = "backend.orbit.services.membership_service"


def _membership_rows(app, group_id: int) -> int:
    with app.app_context():
        return db.session.execute(
            select(func.count()).select_from(Membership).where(Membership.group_id == group_id)
        ).scalar_one()


# ═══════════════════════════════════════════════════════════════════════════
# Scenarios
# ═══════════════════════════════════════════════════════════════════════════

class TestScenarios:

    def test_a_private_group_cannot_be_joined(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        group = make_group(client, token_for(app, u1), "Acme Corp Team", privacy="PRIVATE")

        assert group["member_count"] == 1
        assert group["members"][0]["user_id"] == u1
        assert group["members"][0]["role"] == "OWNER"

        resp = client.post(f"/api/v1/groups/{group['id']}/join", headers=auth_headers(token_for(app, u2)))
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "NOT_PUBLIC"

    def test_b_accepted_invitation_suggests_work_relationship(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        with app.app_context():
            db.session.add(RelationshipCategory(user_id=u2, name="Work"))
            db.session.commit()
        token = token_for(app, u1)
        group = make_group(client, token, "Acme Corp Team")
        inv = invite(client, token, group["id"], [u2]).get_json()["data"]["invitations"][0]

        resp = respond(client, token_for(app, u2), inv["id"], accept=True)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["warnings"] == []
        assert body["data"]["invitation"]["status"] == "ACCEPTED"
        assert body["data"]["membership"]["user_id"] == u2
        assert body["data"]["membership"]["role"] == "MEMBER"
        assert body["data"]["group"]["member_count"] == 2
        suggestion = body["data"]["relationship_suggestion"]
        assert suggestion["category_name"] == "Work"
        assert suggestion["subcategory_name"] == "Acme Corp Team"
        assert member_count_matches_rows(app, group["id"])

    def test_c_sole_owner_may_leave_only_when_alone(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        t1 = token_for(app, u1)
        group = make_group(client, t1, "Acme Corp Team", privacy="PUBLIC")
        gid = group["id"]

        resp = client.delete(f"/api/v1/groups/{gid}/members/{u1}", headers=auth_headers(t1))
        assert resp.status_code == 200
        assert _membership_rows(app, gid) == 0
        assert member_count_matches_rows(app, gid)

        # The first user back into an owner-less group becomes its OWNER.
        resp = client.post(f"/api/v1/groups/{gid}/join", headers=auth_headers(t1))
        assert resp.status_code == 201
        assert resp.get_json()["data"]["membership"]["role"] == "OWNER"
        assert add_member(client, t1, gid, u2).status_code == 201

        resp = client.delete(f"/api/v1/groups/{gid}/members/{u1}", headers=auth_headers(t1))
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "OWNER_MUST_TRANSFER_FIRST"
        assert _membership_rows(app, gid) == 2
        assert member_count_matches_rows(app, gid)

    def test_d_ownership_transfer_keeps_single_owner(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        t1 = token_for(app, u1)
        group = make_group(client, t1, "Acme Corp Team", member_ids=[u2])

        resp = client.put(
            f"/api/v1/groups/{group['id']}/members/{u2}/role",
            json={"role": "OWNER"},
            headers=auth_headers(t1),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"]["role"] == "OWNER"
        roles = {
            m["user_id"]: m["role"]
            for m in client.get(
                f"/api/v1/groups/{group['id']}/members", headers=auth_headers(t1),
            ).get_json()["data"]
        }
        assert roles == {u1: "ADMIN", u2: "OWNER"}
        assert owner_count(app, group["id"]) == 1

        # The former owner has lost owner-only rights.
        resp = client.delete(f"/api/v1/groups/{group['id']}", headers=auth_headers(t1))
        assert resp.status_code == 403

    def test_e_expired_invitation_cannot_be_accepted(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        token = token_for(app, u1)
        group = make_group(client, token, "Acme Corp Team")
        inv = invite(client, token, group["id"], [u2]).get_json()["data"]["invitations"][0]
        with app.app_context():
            db.session.get(Invitation, inv["id"]).expires_at = utcnow() - timedelta(days=8)
            db.session.commit()

        resp = respond(client, token_for(app, u2), inv["id"], accept=True)

        assert resp.status_code == 410
        assert resp.get_json()["error"]["code"] == "INVITATION_EXPIRED"
        with app.app_context():
            assert db.session.get(Invitation, inv["id"]).status == InvitationStatus.EXPIRED
        assert _membership_rows(app, group["id"]) == 1

        # EXPIRED is terminal.
        resp = respond(client, token_for(app, u2), inv["id"], accept=True)
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_RESPONDED"


# ═══════════════════════════════════════════════════════════════════════════
# Idempotence and round trips
# ═══════════════════════════════════════════════════════════════════════════

class TestIdempotence:

    @pytest.mark.parametrize("second_accept", [True, False])
    def test_second_response_fails_and_changes_nothing(self, app, client, second_accept):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        token = token_for(app, u1)
        group = make_group(client, token, "Trip")
        inv = invite(client, token, group["id"], [u2]).get_json()["data"]["invitations"][0]
        assert respond(client, token_for(app, u2), inv["id"], accept=True).status_code == 200

        resp = respond(client, token_for(app, u2), inv["id"], accept=second_accept)

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_RESPONDED"
        with app.app_context():
            assert db.session.get(Invitation, inv["id"]).status == InvitationStatus.ACCEPTED
        assert _membership_rows(app, group["id"]) == 2
        assert member_count_matches_rows(app, group["id"])

    def test_invite_then_cancel_leaves_no_trace(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        token = token_for(app, u1)
        group = make_group(client, token, "Trip")

        inv = invite(client, token, group["id"], [u2]).get_json()["data"]["invitations"][0]
        assert client.delete(f"/api/v1/invitations/{inv['id']}", headers=auth_headers(token)).status_code == 200

        with app.app_context():
            assert db.session.execute(select(Invitation)).scalars().all() == []
        assert _membership_rows(app, group["id"]) == 1
        assert member_count_matches_rows(app, group["id"])


# ═══════════════════════════════════════════════════════════════════════════
# Storage-level guarantees
# ═══════════════════════════════════════════════════════════════════════════

class TestStorageConstraints:

    def test_second_owner_row_is_rejected(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        group = make_group(client, token_for(app, u1), "Trip", member_ids=[u2])

        with app.app_context():
            membership = db.session.get(Membership, (group["id"], u2))
            membership.role = Role.OWNER
            with pytest.raises(IntegrityError):
                db.session.flush()
            db.session.rollback()

        assert owner_count(app, group["id"]) == 1

    def test_second_pending_invitation_row_is_rejected(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        token = token_for(app, u1)
        group = make_group(client, token, "Trip")
        invite(client, token, group["id"], [u2])

        with app.app_context():
            db.session.add(Invitation(group_id=group["id"], inviter_id=u1, invitee_id=u2))
            with pytest.raises(IntegrityError):
                db.session.flush()
            db.session.rollback()

    def test_duplicate_membership_row_is_rejected(self, app, client):
        u1 = make_user(app, "u1")
        group = make_group(client, token_for(app, u1), "Trip")

        with app.app_context():
            db.session.add(Membership(group_id=group["id"], user_id=u1, role=Role.MEMBER))
            with pytest.raises(IntegrityError):
                db.session.flush()
            db.session.rollback()

    def test_count_matches_rows_through_a_busy_sequence(self, app, client):
        owner = make_user(app, "owner")
        others = [make_user(app, f"user{i}") for i in range(4)]
        token = token_for(app, owner)
        group = make_group(client, token, "Busy", privacy="PUBLIC", member_ids=others[:2])
        gid = group["id"]

        client.post(f"/api/v1/groups/{gid}/join", headers=auth_headers(token_for(app, others[2])))
        inv = invite(client, token, gid, [others[3]]).get_json()["data"]["invitations"][0]
        respond(client, token_for(app, others[3]), inv["id"], accept=True)
        client.delete(f"/api/v1/groups/{gid}/members/{others[0]}", headers=auth_headers(token))
        client.delete(
            f"/api/v1/groups/{gid}/members/{others[1]}", headers=auth_headers(token_for(app, others[1])),
        )
        add_member(client, token, gid, others[0])

        assert _membership_rows(app, gid) == 4
        assert member_count_matches_rows(app, gid)
        assert owner_count(app, gid) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Interleaved membership changes
# ═══════════════════════════════════════════════════════════════════════════

def _interleave(real, action, before: bool = False):
    """
    Wraps a service helper so that `action` runs exactly once, right before
    or right after the first call. Nested calls made by `action` itself go
    straight to the real helper.
    """
    pending = [action]

    def wrapper(*args, **kwargs):
        if before and pending:
            pending.pop()()
        result = real(*args, **kwargs)
        if not before and pending:
            pending.pop()()
        return result

    return wrapper


def _in_other_transaction(work):
    """Runs work(session) in its own session and commits it."""
    def action():
        with Session(db.engine) as other:
            work(other)
            other.commit()
    return action


class TestInterleavedMembershipChanges:

    def test_duplicate_join_after_precheck_gets_already_member(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        group = make_group(client, token_for(app, u1), "Open", privacy="PUBLIC")
        gid = group["id"]

        racing_join = _in_other_transaction(
            lambda s: membership_service.join_public_group(u2, gid, s),
        )
        with patch(f"{SVC}.get_membership", _interleave(membership_service.get_membership, racing_join)):
            resp = client.post(f"/api/v1/groups/{gid}/join", headers=auth_headers(token_for(app, u2)))

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_MEMBER"
        assert _membership_rows(app, gid) == 2
        assert member_count_matches_rows(app, gid)
        assert owner_count(app, gid) == 1

    def test_owner_leaving_during_join_hands_ownership_to_joiner(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        group = make_group(client, token_for(app, u1), "Open", privacy="PUBLIC")
        gid = group["id"]

        owner_leaves = _in_other_transaction(
            lambda s: membership_service.remove_member(u1, gid, u1, s),
        )
        with patch(f"{SVC}.get_group_or_404", _interleave(membership_service.get_group_or_404, owner_leaves)):
            resp = client.post(f"/api/v1/groups/{gid}/join", headers=auth_headers(token_for(app, u2)))

        assert resp.status_code == 201
        assert resp.get_json()["data"]["membership"]["role"] == "OWNER"
        assert _membership_rows(app, gid) == 1
        assert member_count_matches_rows(app, gid)
        assert owner_count(app, gid) == 1

    def test_join_during_owner_leave_blocks_the_leave(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        t1 = token_for(app, u1)
        group = make_group(client, t1, "Open", privacy="PUBLIC")
        gid = group["id"]

        someone_joins = _in_other_transaction(
            lambda s: membership_service.join_public_group(u2, gid, s),
        )
        lock = _interleave(membership_service.lock_group_or_404, someone_joins, before=True)
        with patch(f"{SVC}.lock_group_or_404", lock):
            resp = client.delete(f"/api/v1/groups/{gid}/members/{u1}", headers=auth_headers(t1))

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "OWNER_MUST_TRANSFER_FIRST"
        assert _membership_rows(app, gid) == 2
        assert member_count_matches_rows(app, gid)
        assert owner_count(app, gid) == 1

    def test_owner_leaving_during_acceptance_hands_ownership_to_invitee(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        t1 = token_for(app, u1)
        group = make_group(client, t1, "Crew")
        gid = group["id"]
        inv = invite(client, t1, gid, [u2]).get_json()["data"]["invitations"][0]

        owner_leaves = _in_other_transaction(
            lambda s: membership_service.remove_member(u1, gid, u1, s),
        )
        lock = _interleave(membership_service.lock_group_or_404, owner_leaves, before=True)
        with patch(f"{SVC}.lock_group_or_404", lock):
            resp = respond(client, token_for(app, u2), inv["id"], accept=True)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["membership"]["role"] == "OWNER"
        assert _membership_rows(app, gid) == 1
        assert member_count_matches_rows(app, gid)
        assert owner_count(app, gid) == 1


class TestConcurrentMembershipChanges:
    """
    Two real transactions on separate connections. Needs row locks, so these
    run only when TEST_DATABASE_URL points at PostgreSQL.
    """

    @pytest.fixture(autouse=True)
    def _require_row_locks(self, app):
        with app.app_context():
            if db.engine.dialect.name != "postgresql":
                pytest.skip("row-level locking needs PostgreSQL")

    @staticmethod
    def _run_in_thread(app, work, outcome: dict) -> threading.Thread:
        def target():
            with app.app_context(), Session(db.engine) as session:
                try:
                    work(session)
                    session.commit()
                    outcome["code"] = None
                except AppError as exc:
                    session.rollback()
                    outcome["code"] = exc.code

        thread = threading.Thread(target=target)
        thread.start()
        return thread

    def test_leave_waits_for_uncommitted_join(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        gid = make_group(client, token_for(app, u1), "Open", privacy="PUBLIC")["id"]
        outcome: dict = {}

        with app.app_context(), Session(db.engine) as joiner:
            membership_service.join_public_group(u2, gid, joiner)
            leave = self._run_in_thread(
                app, lambda s: membership_service.remove_member(u1, gid, u1, s), outcome,
            )
            leave.join(timeout=0.5)
            assert leave.is_alive()
            joiner.commit()
        leave.join(timeout=10)

        assert outcome["code"] == ErrorCode.OWNER_MUST_TRANSFER_FIRST
        assert _membership_rows(app, gid) == 2
        assert member_count_matches_rows(app, gid)
        assert owner_count(app, gid) == 1

    def test_join_waits_for_uncommitted_leave(self, app, client):
        u1 = make_user(app, "u1")
        u2 = make_user(app, "u2")
        gid = make_group(client, token_for(app, u1), "Open", privacy="PUBLIC")["id"]
        outcome: dict = {}

        with app.app_context(), Session(db.engine) as leaver:
            membership_service.remove_member(u1, gid, u1, leaver)
            join = self._run_in_thread(
                app, lambda s: membership_service.join_public_group(u2, gid, s), outcome,
            )
            join.join(timeout=0.5)
            assert join.is_alive()
            leaver.commit()
        join.join(timeout=10)

        assert outcome["code"] is None
        with app.app_context():
            assert db.session.get(Membership, (gid, u2)).role == Role.OWNER
        assert _membership_rows(app, gid) == 1
        assert member_count_matches_rows(app, gid)
        assert owner_count(app, gid) == 1
