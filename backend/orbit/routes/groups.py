"""
routes/groups.py - Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - The relationship suggestion after a join runs only once the membership
    has been committed; its failure becomes a warning, never an error.

Endpoints (url_prefix=/api/v1/groups):
  POST   /groups                              → 201  create group             [full mode]
  GET    /groups                              → 200  list caller's groups
  GET    /groups/discover?q=&limit=           → 200  browse PUBLIC groups
  GET    /groups/:id                          → 200  group + visible roster
  PATCH  /groups/:id                          → 200  update settings          [full mode]
  DELETE /groups/:id                          → 200  delete group (owner)     [full mode]
  POST   /groups/:id/members                  → 201  add member               [full mode]
  GET    /groups/:id/members                  → 200  roster (may be [])
  DELETE /groups/:id/members/:uid             → 200  remove member / leave
  PUT    /groups/:id/members/:uid/role        → 200  change role (owner)      [full mode]
  POST   /groups/:id/join                     → 201  join a PUBLIC group
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.orbit.extensions import db
from backend.orbit.middleware.auth_middleware import require_auth, require_full_mode
from backend.orbit.schemas.group_schema import (
    AddMemberSchema,
    ChangeRoleSchema,
    CreateGroupSchema,
    DiscoverQuerySchema,
    UpdateGroupSchema,
)
from backend.orbit.services import group_service, membership_service
from backend.orbit.services.relationship_suggestion import safe_suggest_relationship

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_auth
@require_full_mode
def create_group():
    """POST /groups - Create a group. Caller becomes OWNER; member_ids join as MEMBER."""
    data = CreateGroupSchema().load(request.get_json(silent=True) or {})
    member_ids = data.pop("member_ids")
    result = membership_service.create_group(
        creator_id=g.user_id,
        attrs=data,
        initial_member_ids=member_ids,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups - Groups the caller belongs to, most recently updated first."""
    result = group_service.list_groups(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/discover", methods=["GET"])
@require_auth
def discover_groups():
    """GET /groups/discover - PUBLIC groups, optionally filtered by q."""
    params = DiscoverQuerySchema().load(request.args.to_dict())
    result = group_service.discover_public_groups(
        user_id=g.user_id,
        query=params["q"],
        limit=min(params["limit"], current_app.config["DISCOVER_MAX_LIMIT"]),
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    """GET /groups/:id - Group details. Non-members may only see PUBLIC groups."""
    result = membership_service.get_group(
        actor_id=g.user_id,
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["PATCH"])
@require_auth
@require_full_mode
def update_group(group_id: int):
    """PATCH /groups/:id - Partial settings update. OWNER or ADMIN."""
    data = UpdateGroupSchema().load(request.get_json(silent=True) or {})
    result = group_service.update_group(
        actor_id=g.user_id,
        group_id=group_id,
        attrs=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
@require_auth
@require_full_mode
def delete_group(group_id: int):
    """DELETE /groups/:id - Delete the group with its memberships and invitations. OWNER only."""
    group_service.delete_group(
        actor_id=g.user_id,
        group_id=group_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": {"deleted": True, "group_id": group_id}, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_auth
@require_full_mode
def add_member(group_id: int):
    """POST /groups/:id/members - Add a user directly. OWNER or ADMIN."""
    data = AddMemberSchema().load(request.get_json(silent=True) or {})
    result = membership_service.add_member(
        actor_id=g.user_id,
        group_id=group_id,
        user_id=data["user_id"],
        role=data["role"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members", methods=["GET"])
@require_auth
def list_members(group_id: int):
    """GET /groups/:id/members - Roster; [] when the caller may not see it."""
    result = membership_service.list_members(
        actor_id=g.user_id,
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members/<int:target_uid>", methods=["DELETE"])
@require_auth
def remove_member(group_id: int, target_uid: int):
    """DELETE /groups/:id/members/:uid - Remove a member, or leave when uid is the caller."""
    membership_service.remove_member(
        actor_id=g.user_id,
        group_id=group_id,
        target_user_id=target_uid,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "removed": True,
            "group_id": group_id,
            "user_id": target_uid,
        },
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/members/<int:target_uid>/role", methods=["PUT"])
@require_auth
@require_full_mode
def change_role(group_id: int, target_uid: int):
    """PUT /groups/:id/members/:uid/role - OWNER only. role=OWNER transfers ownership."""
    data = ChangeRoleSchema().load(request.get_json(silent=True) or {})
    result = membership_service.change_role(
        actor_id=g.user_id,
        group_id=group_id,
        target_user_id=target_uid,
        new_role=data["role"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/join", methods=["POST"])
@require_auth
def join_group(group_id: int):
    """POST /groups/:id/join - Join a PUBLIC group as MEMBER."""
    result = membership_service.join_public_group(
        user_id=g.user_id,
        group_id=group_id,
        session=db.session,
    )
    db.session.commit()

    suggestion, warnings = safe_suggest_relationship(
        result["group"]["name"], g.user_id, db.session,
    )
    result["relationship_suggestion"] = suggestion
    return jsonify({"data": result, "warnings": warnings}), 201
