"""
middleware/auth_middleware.py - JWT authentication and account-mode gating.

Tokens are issued by the identity provider; this service only verifies them.

The @require_auth decorator:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Decodes and verifies the JWT signature (JWT_ALGORITHM, default HS256)
  3. Checks token expiry
  4. Attaches user_id (int, from the `sub` claim) to flask.g

The @require_full_mode decorator (use below @require_auth):
  5. Loads the user and rejects RESTRICTED accounts with UPGRADE_REQUIRED

Responsibility boundary:
  - Middleware = authentication (401) and account capability (403
    UPGRADE_REQUIRED). Group-level authorization (OWNER/ADMIN) belongs to the
    services.
  - Services receive user_id as a plain integer argument, with no knowledge
    of JWT or HTTP headers.

Error codes:
  TOKEN_MISSING     (401) - no Authorization header
  TOKEN_INVALID     (401) - malformed header, bad signature, bad payload,
                            or a `sub` with no users row
  TOKEN_EXPIRED     (401) - valid token but exp claim is in the past
  UPGRADE_REQUIRED  (403) - RESTRICTED account on a full-mode endpoint
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.orbit.errors import AppError, ErrorCode
from backend.orbit.extensions import db
from backend.orbit.models.user import User


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Attaches the authenticated user's ID to flask.g.user_id.
    Raises AppError for all auth failures - the global error handler converts
    these to the correct JSON response.

    Usage:
        @groups_bp.route("/", methods=["GET"])
        @require_auth
        def list_groups():
            user_id = g.user_id  # always an int when this runs
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_full_mode(f: Callable) -> Callable:
    """
    Route decorator for endpoints RESTRICTED accounts may not call
    (creating groups, adding members, inviting, ...). Must be applied
    after @require_auth so that g.user_id is set.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _require_full_mode_user()
        return f(*args, **kwargs)

    return decorated


def _authenticate_request() -> None:
    """
    Performs the full JWT authentication sequence and sets flask.g.user_id.

    Separated from the decorator wrapper so tests can call it directly inside
    a request context.
    """
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    # ── Step 3: Decode and verify the JWT ─────────────────────────────────
    try:
        payload = jwt.decode(
            parts[1],
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Sign in again to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        # Covers: bad signature, malformed token, invalid claims, etc.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    # ── Step 4: Extract and validate the sub (user_id) claim ──────────────
    sub = payload.get("sub")
    if sub is None:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is missing the required 'sub' claim.",
            401,
        )

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
            401,
        )

    # ── Step 5: Attach user_id to flask.g ─────────────────────────────────
    g.user_id = user_id


def _require_full_mode_user() -> None:
    user = db.session.get(User, g.user_id)
    if user is None:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token refers to an unknown user.",
            401,
        )
    if user.is_restricted:
        raise AppError(
            ErrorCode.UPGRADE_REQUIRED,
            "This action requires a full account. Upgrade to continue.",
            403,
        )
