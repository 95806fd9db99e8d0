"""
schemas/group_schema.py - Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-blank checks, enum values.
  - services/*: everything that needs the database (GROUP_NOT_FOUND,
    USER_NOT_FOUND, ALREADY_MEMBER, role and privacy rules).

IMPORTANT: Inherits from marshmallow.Schema directly - never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate

from backend.orbit.models.group import Privacy
from backend.orbit.models.membership import Role


def _validate_non_empty_after_trim(value: str) -> None:
    """
    validate.Length(min=1) accepts "   ". Group names must contain something
    other than whitespace.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_positive_id = validate.Range(min=1, error="Ids must be positive integers.")

_hex_color = validate.Regexp(
    r"^#[0-9A-Fa-f]{6}$",
    error="color must be a hex colour such as #1A2B3C.",
)


class CreateGroupSchema(Schema):
    """POST /groups"""

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )
    description = fields.Str(load_default=None, allow_none=True)
    avatar_url  = fields.Url(load_default=None, allow_none=True)
    cover_image = fields.Url(load_default=None, allow_none=True)
    color       = fields.Str(load_default=None, allow_none=True, validate=_hex_color)
    privacy     = fields.Enum(Privacy, by_value=True, load_default=Privacy.FRIENDS_ONLY)

    # Users added straight away as MEMBER. Repeats and the creator are ignored.
    member_ids = fields.List(
        fields.Int(strict=True, validate=_positive_id),
        load_default=list,
    )


class UpdateGroupSchema(Schema):
    """
    PATCH /groups/:id

    Every field is optional; only keys present in the body are applied.
    """

    name = fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )
    description = fields.Str(allow_none=True)
    avatar_url  = fields.Url(allow_none=True)
    cover_image = fields.Url(allow_none=True)
    color       = fields.Str(allow_none=True, validate=_hex_color)
    privacy     = fields.Enum(Privacy, by_value=True)


class AddMemberSchema(Schema):
    """
    POST /groups/:id/members

    OWNER is rejected by the service: ownership moves only through a role
    change.
    """

    user_id = fields.Int(
        required=True,
        strict=True,  # reject floats like 1.0 - integers only
        validate=validate.Range(
            min=1,
            error="user_id must be a positive integer.",
        ),
    )
    role = fields.Enum(Role, by_value=True, load_default=Role.MEMBER)


class ChangeRoleSchema(Schema):
    """PUT /groups/:id/members/:user_id/role"""

    role = fields.Enum(Role, by_value=True, required=True)


class DiscoverQuerySchema(Schema):
    """
    GET /groups/discover query string.

    limit is clamped to DISCOVER_MAX_LIMIT by the route, not rejected.
    """

    q     = fields.Str(load_default=None, validate=validate.Length(max=100))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1))
