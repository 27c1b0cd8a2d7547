"""Tests for account signup, login and the cookie session endpoints."""
from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import ValidationError

from callroom.core.security import hash_password, verify_password
from callroom.db.session import get_session
from callroom.main import app
from callroom.repositories import users as users_repo
from callroom.schemas import auth as schemas
from callroom.services import auth as auth_service


class DummySession:
    """Minimal session stub supporting async transaction context."""

    def begin(self):  # noqa: D401 - mimic SQLAlchemy's async begin
        session = self

        class _Tx:
            async def __aenter__(self_inner):
                return session

            async def __aexit__(self_inner, exc_type, exc, tb):
                return False

        return _Tx()


@pytest.fixture
def user_table(monkeypatch):
    users: dict[str, SimpleNamespace] = {}

    async def get_by_username(session, username):
        return users.get(username)

    async def create_user(session, *, username, password_hash):
        user = SimpleNamespace(id=f"user-{len(users) + 1}", username=username, password_hash=password_hash)
        users[username] = user
        return user

    monkeypatch.setattr(users_repo, "get_by_username", get_by_username)
    monkeypatch.setattr(users_repo, "create_user", create_user)
    return users


def test_password_hashing_round_trip():
    hashed = hash_password("s3cret")

    assert hashed != "s3cret"
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret", "not-a-bcrypt-hash")


@pytest.mark.asyncio
async def test_signup_creates_user_and_rejects_duplicates(user_table):
    session = DummySession()

    user = await auth_service.signup(schemas.Credentials(username=" alice ", password="pw"), session)

    assert user.username == "alice"
    assert verify_password("pw", user_table["alice"].password_hash)

    with pytest.raises(HTTPException) as excinfo:
        await auth_service.signup(schemas.Credentials(username="alice", password="other"), session)
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == auth_service.USER_EXISTS


@pytest.mark.asyncio
async def test_login_uses_a_generic_error(user_table):
    session = DummySession()
    await auth_service.signup(schemas.Credentials(username="alice", password="pw"), session)

    user = await auth_service.login(schemas.Credentials(username="alice", password="pw"), session)
    assert user.username == "alice"

    for username, password in (("alice", "nope"), ("nobody", "pw")):
        with pytest.raises(HTTPException) as excinfo:
            await auth_service.login(schemas.Credentials(username=username, password=password), session)
        assert excinfo.value.detail == auth_service.INVALID_CREDENTIALS


@pytest.mark.asyncio
async def test_session_endpoints(user_table):
    async def override_session():
        yield DummySession()

    app.dependency_overrides[get_session] = override_session
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            assert (await client.get("/auth/me")).status_code == 401

            signup = await client.post("/auth/signup", json={"username": "alice", "password": "pw"})
            assert signup.json() == {"message": "Signup successful"}

            me = await client.get("/auth/me")
            assert me.json() == {"id": "user-1", "username": "alice"}

            logout = await client.post("/auth/logout")
            assert logout.json() == {"message": "Logged out"}
            assert (await client.get("/auth/me")).status_code == 401

            bad = await client.post("/auth/login", json={"username": "alice", "password": "wrong"})
            assert bad.status_code == 400
            assert bad.json() == {"detail": "Invalid credentials"}

            good = await client.post("/auth/login", json={"username": "alice", "password": "pw"})
            assert good.json() == {"message": "Login successful"}
            assert (await client.get("/auth/me")).status_code == 200
    finally:
        app.dependency_overrides.pop(get_session, None)


def test_password_longer_than_bcrypt_accepts_is_rejected():
    assert schemas.Credentials(username="alice", password="x" * 72).password == "x" * 72

    with pytest.raises(ValidationError):
        schemas.Credentials(username="alice", password="x" * 100)
    with pytest.raises(ValidationError):
        schemas.Credentials(username="alice", password="é" * 37)


@pytest.mark.asyncio
async def test_signup_with_overlong_password_is_a_client_error(user_table):
    async def override_session():
        yield DummySession()

    app.dependency_overrides[get_session] = override_session
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post("/auth/signup", json={"username": "alice", "password": "x" * 100})
    finally:
        app.dependency_overrides.pop(get_session, None)

    assert response.status_code == 422
    assert user_table == {}
