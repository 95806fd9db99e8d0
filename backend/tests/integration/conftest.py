"""
tests/integration/conftest.py - Fixtures and helpers for all integration tests.

Design:
  - Tests run against a real database: in-memory SQLite by default,
    TEST_DATABASE_URL (e.g. PostgreSQL) when set.
  - The app is created once per session using create_app("testing").
  - All tables (and the partial unique indexes) are created once via
    db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Users are issued by the identity provider, so there is no register endpoint:
  - make_user(app, ...)      → user id, row inserted directly
  - token_for(app, user_id)  → signed access token, minted with PyJWT
  - auth_headers(token)      → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)  → group dict (HTTP)
  - add_member(...)          → HTTP response
  - invite(...)              → HTTP response
  - respond(...)             → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from backend.orbit import create_app
from backend.orbit.extensions import db as _db
from backend.orbit.models.user import AccountMode, User


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire
    test session, with every table created up front.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test, children before parents.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM group_invitations"))
            conn.execute(text("DELETE FROM group_members"))
            conn.execute(text("DELETE FROM relationship_subcategories"))
            conn.execute(text("DELETE FROM relationship_categories"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_user(
    app,
    username: str = "alice",
    mode: AccountMode = AccountMode.FULL,
) -> int:
    """Inserts a user row and returns its id."""
    with app.app_context():
        user = User(username=username, email=f"{username}@test.com", mode=mode)
        _db.session.add(user)
        _db.session.commit()
        return user.id


def token_for(app, user_id: int, expires_in: timedelta = timedelta(minutes=15)) -> str:
    """Mints an access token the way the identity provider does."""
    now = datetime.now(timezone.utc)
    payload = {"sub": str(user_id), "iat": now, "exp": now + expires_in}
    return jwt.encode(
        payload,
        app.config["JWT_SECRET_KEY"],
        algorithm=app.config["JWT_ALGORITHM"],
    )


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_group(
    client,
    token: str,
    name: str = "Test Group",
    privacy: str = "FRIENDS_ONLY",
    member_ids: list[int] | None = None,
) -> dict:
    """
    Creates a group and returns the group detail dict.
    The caller (token owner) becomes the OWNER.
    """
    resp = client.post(
        "/api/v1/groups/",
        json={"name": name, "privacy": privacy, "member_ids": member_ids or []},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, group_id: int, user_id: int, role: str = "MEMBER"):
    """Adds a user to a group directly. Returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/members",
        json={"user_id": user_id, "role": role},
        headers=auth_headers(token),
    )


def invite(client, token: str, group_id: int, user_ids: list[int]):
    """Invites users to a group. Returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/invitations",
        json={"user_ids": user_ids},
        headers=auth_headers(token),
    )


def respond(client, token: str, invitation_id: int, accept: bool = True):
    """Accepts or declines an invitation. Returns the HTTP response."""
    return client.post(
        f"/api/v1/invitations/{invitation_id}/respond",
        json={"accept": accept},
        headers=auth_headers(token),
    )


def member_count_matches_rows(app, group_id: int) -> bool:
    """True when groups.member_count equals the number of group_members rows."""
    with app.app_context():
        stored = _db.session.execute(
            text("SELECT member_count FROM groups WHERE id = :gid"), {"gid": group_id},
        ).scalar_one()
        actual = _db.session.execute(
            text("SELECT COUNT(*) FROM group_members WHERE group_id = :gid"), {"gid": group_id},
        ).scalar_one()
        return stored == actual


def owner_count(app, group_id: int) -> int:
    with app.app_context():
        return _db.session.execute(
            text("SELECT COUNT(*) FROM group_members WHERE group_id = :gid AND role = 'OWNER'"),
            {"gid": group_id},
        ).scalar_one()
