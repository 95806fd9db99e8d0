"""
schemas/invitation_schema.py - Marshmallow schemas for invitation endpoints.

IMPORTANT: Inherits from marshmallow.Schema directly - never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, post_load, validate, validates_schema

_positive_id = validate.Range(min=1, error="Ids must be positive integers.")


class InviteSchema(Schema):
    """
    POST /groups/:id/invitations

    Accepts a single `user_id`, a `user_ids` list, or both. The loaded data
    always carries the merged list under `user_ids`.
    """

    user_id  = fields.Int(strict=True, validate=_positive_id)
    user_ids = fields.List(fields.Int(strict=True, validate=_positive_id))

    @validates_schema
    def _require_someone(self, data: dict, **kwargs) -> None:
        if "user_id" not in data and not data.get("user_ids"):
            raise ValidationError(
                "Missing data for required field. Provide user_id or user_ids.",
                field_name="user_ids",
            )

    @post_load
    def _merge_ids(self, data: dict, **kwargs) -> dict:
        ids = list(data.get("user_ids") or [])
        if "user_id" in data:
            ids.insert(0, data["user_id"])
        return {"user_ids": ids}


class RespondSchema(Schema):
    """POST /invitations/:id/respond"""

    accept = fields.Bool(required=True)
