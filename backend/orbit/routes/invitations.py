"""
routes/invitations.py - Invitation route handlers.

Registered at url_prefix=/api/v1 because this blueprint owns both the
group-scoped paths (/groups/:id/invitations) and the invitation-ID paths
(/invitations/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - Responding to an expired invitation is the one place a route catches
    AppError: the EXPIRED transition is committed before the error is
    returned.

Endpoints:
  POST   /groups/:id/invitations      → 201  invite users              [full mode]
  GET    /groups/:id/invitations      → 200  pending invitations (OWNER/ADMIN)
  GET    /invitations/pending         → 200  caller's live invitations
  POST   /invitations/:id/respond     → 200  accept or decline
  DELETE /invitations/:id             → 200  cancel (OWNER/ADMIN)
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.orbit.errors import AppError, ErrorCode
from backend.orbit.extensions import db
from backend.orbit.middleware.auth_middleware import require_auth, require_full_mode
from backend.orbit.schemas.invitation_schema import InviteSchema, RespondSchema
from backend.orbit.services import invitation_service
from backend.orbit.services.relationship_suggestion import safe_suggest_relationship

invitations_bp = Blueprint("invitations", __name__)


# ── Group-scoped invitation routes ─────────────────────────────────────────

@invitations_bp.route("/groups/<int:group_id>/invitations", methods=["POST"])
@require_auth
@require_full_mode
def invite(group_id: int):
    """
    POST /groups/:id/invitations - Invite one or more users.
    Members and users with a live invitation are skipped silently.
    """
    data = InviteSchema().load(request.get_json(silent=True) or {})
    result = invitation_service.invite(
        actor_id=g.user_id,
        group_id=group_id,
        invitee_ids=data["user_ids"],
        session=db.session,
        ttl=current_app.config["INVITATION_TTL"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@invitations_bp.route("/groups/<int:group_id>/invitations", methods=["GET"])
@require_auth
def list_group_invitations(group_id: int):
    """GET /groups/:id/invitations - Pending invitations of the group. OWNER or ADMIN."""
    result = invitation_service.list_pending_for_group(
        actor_id=g.user_id,
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


# ── Invitation-ID routes ───────────────────────────────────────────────────

@invitations_bp.route("/invitations/pending", methods=["GET"])
@require_auth
def list_my_invitations():
    """GET /invitations/pending - The caller's unexpired invitations, newest first."""
    result = invitation_service.list_pending_for_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@invitations_bp.route("/invitations/<int:invitation_id>/respond", methods=["POST"])
@require_auth
def respond(invitation_id: int):
    """POST /invitations/:id/respond - {"accept": true|false}. Invitee only."""
    data = RespondSchema().load(request.get_json(silent=True) or {})
    try:
        result = invitation_service.respond_to_invitation(
            actor_id=g.user_id,
            invitation_id=invitation_id,
            accept=data["accept"],
            session=db.session,
        )
    except AppError as error:
        if error.code == ErrorCode.INVITATION_EXPIRED:
            db.session.commit()
        raise
    db.session.commit()

    warnings: list[str] = []
    suggestion = None
    if data["accept"]:
        suggestion, warnings = safe_suggest_relationship(
            result["group"]["name"], g.user_id, db.session,
        )
    result["relationship_suggestion"] = suggestion
    return jsonify({"data": result, "warnings": warnings}), 200


@invitations_bp.route("/invitations/<int:invitation_id>", methods=["DELETE"])
@require_auth
def cancel(invitation_id: int):
    """DELETE /invitations/:id - Withdraw a pending invitation. OWNER or ADMIN."""
    invitation_service.cancel_invitation(
        actor_id=g.user_id,
        invitation_id=invitation_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"cancelled": True, "invitation_id": invitation_id},
        "warnings": [],
    }), 200
