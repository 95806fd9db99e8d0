"""
errors.py - AppError base class and error code registry.

Every error returned by the Orbit groups API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - 401 (unauthenticated) and 403 (unauthorized) are never conflated.
  - Visibility denials on rosters are NOT errors: the service returns an
    empty list. FORBIDDEN is reserved for rejected operations.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_REQUEST            = "INVALID_REQUEST"         # malformed HTTP request (4xx from werkzeug)

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    MEMBER_NOT_FOUND           = "MEMBER_NOT_FOUND"
    INVITATION_NOT_FOUND       = "INVITATION_NOT_FOUND"
    ROUTE_NOT_FOUND            = "ROUTE_NOT_FOUND"         # no such endpoint

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    ALREADY_RESPONDED          = "ALREADY_RESPONDED"
    OWNER_MUST_TRANSFER_FIRST  = "OWNER_MUST_TRANSFER_FIRST"
    # A racing write tripped a uniqueness constraint. Re-read, then retry.
    CONCURRENT_UPDATE          = "CONCURRENT_UPDATE"

    # ── Gone (410) ─────────────────────────────────────────────────────────
    INVITATION_EXPIRED         = "INVITATION_EXPIRED"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403
    UPGRADE_REQUIRED           = "UPGRADE_REQUIRED"       # 403 - RESTRICTED account
    NOT_PUBLIC                 = "NOT_PUBLIC"             # 403 - join needs an invitation

    # ── System Errors ──────────────────────────────────────────────────────
    STORAGE_ERROR              = "STORAGE_ERROR"          # 503
    INTERNAL_ERROR             = "INTERNAL_ERROR"         # 500


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # The relationship suggestion lookup failed after the membership change
    # committed. The membership change itself succeeded.
    SUGGESTION_UNAVAILABLE = "SUGGESTION_UNAVAILABLE"
