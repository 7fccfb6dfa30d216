"""Full-flow E2E integration test — the account lifecycle over HTTP.

Learn: This test walks through the whole client journey using the API
alone. It proves that all the pieces connect: signup → emailed link →
verify → login → access token expires → refresh → back in.

Run with: pytest tests/test_e2e_flow.py -v
"""

import uuid
from datetime import timedelta

import pytest

from conftest import PASSWORD, bearer
from notevault.auth.tokens import create_access_token
from notevault.db.models import User
from notevault.main import app


@pytest.mark.asyncio
async def test_full_account_lifecycle(client, mail_transport, session_factory):
    email = "journey@example.com"

    # ─── 1. Signup: account is pending, a link is mailed ───
    resp = await client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": PASSWORD, "confirm_password": PASSWORD},
    )
    assert resp.status_code == 201
    user = resp.json()["data"]
    assert user["status"] == "PENDING_VERIFICATION"

    # Unverified accounts cannot log in yet
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 403
    assert resp.json()["errors"][0]["code"] == "AUTH_NOT_VERIFIED"

    await app.state.mail_dispatcher.join()
    token = mail_transport.last_token_for(email)

    # ─── 2. Verify ───
    resp = await client.post("/api/v1/auth/verify-email", json={"token": token})
    assert resp.status_code == 200

    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200
    tokens = resp.json()["data"]

    resp = await client.get("/api/v1/auth/me", headers=bearer(tokens["access_token"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "VERIFIED"

    # ─── 3. Access token expires ───
    async with session_factory() as db:
        stored = await db.get(User, uuid.UUID(user["id"]))
    expired = create_access_token(stored, expires_delta=timedelta(seconds=-1))

    resp = await client.get("/api/v1/notes", headers=bearer(expired))
    assert resp.status_code == 401
    assert resp.json()["errors"][0]["code"] == "AUTH_TOKEN_EXPIRED"

    # ─── 4. Refresh and carry on ───
    resp = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert resp.status_code == 200
    fresh = resp.json()["data"]
    assert fresh["refresh_token"] != tokens["refresh_token"]

    resp = await client.get("/api/v1/notes", headers=bearer(fresh["access_token"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["items"] == []

    resp = await client.post(
        "/api/v1/notes", json={"title": "First note"}, headers=bearer(fresh["access_token"])
    )
    assert resp.status_code == 201

    # ─── 5. Logout ends the session ───
    resp = await client.post(
        "/api/v1/auth/logout", json={"refresh_token": fresh["refresh_token"]}
    )
    assert resp.status_code == 200
    resp = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": fresh["refresh_token"]}
    )
    assert resp.status_code == 401
