"""Auth API tests.

Learn: Tests cover:
1. Signup → PENDING_VERIFICATION + verification mail, validation errors
2. Email verification (single use, superseded links)
3. Login error policy (invalid credentials vs not verified)
4. Per-identity login throttling before any password comparison
5. Refresh rotation, logout, logout-all, /me
"""

import asyncio

import pytest
from sqlalchemy import select

from conftest import PASSWORD, bearer, login
from notevault.config import settings
from notevault.db.models import EmailVerificationToken, RefreshSession, User, UserStatus

SIGNUP_URL = "/api/v1/auth/signup"


def _signup_body(email: str, password: str = PASSWORD, confirm: str = None) -> dict:
    return {
        "email": email,
        "password": password,
        "confirm_password": password if confirm is None else confirm,
    }


@pytest.fixture
def dispatcher(client):
    """The mail dispatcher the client fixture installed."""
    from notevault.main import app
    return app.state.mail_dispatcher


# ═══════════════════════════════════════════════════════════
# Signup
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_signup_creates_pending_user(client, db_session, mail_transport, dispatcher):
    """Valid signup → PENDING_VERIFICATION and exactly one open token."""
    r = await client.post(SIGNUP_URL, json=_signup_body("New.User@Example.com"))
    assert r.status_code == 201
    body = r.json()
    assert body["meta"]["status"] == "success"
    assert body["meta"]["alertType"] == "info"
    user = body["data"]
    assert user["email"] == "new.user@example.com"
    assert user["status"] == "PENDING_VERIFICATION"
    assert user["role"] == "client"
    assert user["email_verified_at"] is None
    assert "password_hash" not in user

    result = await db_session.execute(select(EmailVerificationToken))
    tokens = result.scalars().all()
    assert len(tokens) == 1
    assert tokens[0].used_at is None
    assert tokens[0].superseded_at is None

    await dispatcher.join()
    assert len(mail_transport.sent) == 1
    message = mail_transport.sent[0]
    assert message["to"] == "new.user@example.com"
    assert message["template"] == "verify_email"
    assert message["payload"]["token"] in message["payload"]["link"]


@pytest.mark.asyncio
async def test_signup_stores_only_token_hash(client, db_session, mail_transport, dispatcher):
    await client.post(SIGNUP_URL, json=_signup_body("hash@example.com"))
    await dispatcher.join()
    raw = mail_transport.last_token_for("hash@example.com")

    token = (await db_session.execute(select(EmailVerificationToken))).scalars().one()
    assert token.token_hash != raw
    assert len(token.token_hash) == 64


@pytest.mark.asyncio
async def test_signup_duplicate_email_conflicts(client):
    r1 = await client.post(SIGNUP_URL, json=_signup_body("dup@example.com"))
    assert r1.status_code == 201
    r2 = await client.post(SIGNUP_URL, json=_signup_body("DUP@example.com"))
    assert r2.status_code == 409
    err = r2.json()["errors"][0]
    assert err["code"] == "CONFLICT"
    assert err["field"] == "email"


@pytest.mark.asyncio
async def test_signup_validation_errors_are_field_level(client):
    r = await client.post(
        SIGNUP_URL,
        json={"email": "not-an-email", "password": "short", "confirm_password": "other"},
    )
    assert r.status_code == 422
    body = r.json()
    assert body["meta"]["status"] == "error"
    fields = {e["field"] for e in body["errors"]}
    assert {"email", "password"} <= fields
    assert all(e["code"] == "VALIDATION" for e in body["errors"])


@pytest.mark.asyncio
async def test_signup_password_mismatch(client):
    r = await client.post(
        SIGNUP_URL,
        json=_signup_body("mismatch@example.com", confirm="different-pass-1"),
    )
    assert r.status_code == 422
    errors = r.json()["errors"]
    assert errors[0]["field"] == "confirm_password"
    assert errors[0]["message"] == "Passwords do not match"


@pytest.mark.asyncio
async def test_signup_survives_mail_failure(client, db_session, mail_transport, dispatcher):
    """A permanent mail error never rolls back the account."""
    from notevault.services.mail import MailTransportError

    mail_transport.failures = [MailTransportError("rejected", transient=False)]
    r = await client.post(SIGNUP_URL, json=_signup_body("nomail@example.com"))
    assert r.status_code == 201
    await dispatcher.join()
    assert mail_transport.sent == []

    user = (await db_session.execute(select(User))).scalars().one()
    assert user.email == "nomail@example.com"


# ═══════════════════════════════════════════════════════════
# Verification
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_verify_email_then_reuse_fails(client, mail_transport, dispatcher):
    """First consume → VERIFIED; second → ALREADY_USED."""
    await client.post(SIGNUP_URL, json=_signup_body("verify@example.com"))
    await dispatcher.join()
    token = mail_transport.last_token_for("verify@example.com")

    r1 = await client.post("/api/v1/auth/verify-email", json={"token": token})
    assert r1.status_code == 200
    assert r1.json()["data"]["status"] == "VERIFIED"
    assert r1.json()["data"]["email_verified_at"] is not None

    r2 = await client.post("/api/v1/auth/verify-email", json={"token": token})
    assert r2.status_code == 409
    err = r2.json()["errors"][0]
    assert err["code"] == "CONFLICT"
    assert err["reason"] == "ALREADY_USED"


@pytest.mark.asyncio
async def test_verify_unknown_token(client):
    r = await client.post("/api/v1/auth/verify-email", json={"token": "no-such-token"})
    assert r.status_code == 400
    err = r.json()["errors"][0]
    assert err["code"] == "AUTH_TOKEN_INVALID"
    assert err["reason"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_resend_supersedes_previous_link(client, mail_transport, dispatcher):
    await client.post(SIGNUP_URL, json=_signup_body("resend@example.com"))
    await dispatcher.join()
    first = mail_transport.last_token_for("resend@example.com")

    r = await client.post("/api/v1/auth/resend-verification", json={"email": "resend@example.com"})
    assert r.status_code == 202
    await dispatcher.join()
    second = mail_transport.last_token_for("resend@example.com")
    assert second != first

    r_old = await client.post("/api/v1/auth/verify-email", json={"token": first})
    assert r_old.status_code == 400
    assert r_old.json()["errors"][0]["code"] == "AUTH_TOKEN_EXPIRED"

    r_new = await client.post("/api/v1/auth/verify-email", json={"token": second})
    assert r_new.status_code == 200


@pytest.mark.asyncio
async def test_resend_does_not_reveal_accounts(client, mail_transport, dispatcher, make_user):
    verified = await make_user()
    r_unknown = await client.post(
        "/api/v1/auth/resend-verification", json={"email": "ghost@example.com"}
    )
    r_verified = await client.post(
        "/api/v1/auth/resend-verification", json={"email": verified.email}
    )
    assert r_unknown.status_code == r_verified.status_code == 202
    assert r_unknown.json()["meta"]["message"] == r_verified.json()["meta"]["message"]
    await dispatcher.join()
    assert mail_transport.sent == []


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_returns_tokens(client, make_user):
    user = await make_user()
    r = await client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["access_token"]
    assert data["refresh_token"]
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 15 * 60
    assert data["user"]["id"] == str(user.id)


@pytest.mark.asyncio
async def test_login_errors_are_indistinguishable(client, make_user):
    """Unknown email, wrong password and DISABLED look identical."""
    user = await make_user()
    disabled = await make_user(status=UserStatus.DISABLED)

    responses = [
        await client.post("/api/v1/auth/login", json={"email": "nobody@example.com", "password": PASSWORD}),
        await client.post("/api/v1/auth/login", json={"email": user.email, "password": "wrong-pass-1"}),
        await client.post("/api/v1/auth/login", json={"email": disabled.email, "password": PASSWORD}),
    ]
    for r in responses:
        assert r.status_code == 401
        assert r.json()["errors"][0]["code"] == "AUTH_INVALID_CREDENTIALS"
        assert r.json()["meta"]["message"] == responses[0].json()["meta"]["message"]


@pytest.mark.asyncio
async def test_login_pending_account_not_verified(client, make_user):
    user = await make_user(status=UserStatus.PENDING_VERIFICATION)
    r = await client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 403
    assert r.json()["errors"][0]["code"] == "AUTH_NOT_VERIFIED"


@pytest.mark.asyncio
async def test_login_rate_limited_before_password_check(client, make_user, monkeypatch):
    """The N+1th attempt is refused without touching the password hash."""
    from notevault.config import settings
    from notevault.services import auth_service

    user = await make_user()
    calls = []
    real_verify = auth_service.verify_password

    def counting_verify(password, password_hash):
        calls.append(1)
        return real_verify(password, password_hash)

    monkeypatch.setattr(auth_service, "verify_password", counting_verify)

    limit = settings.rate_limit_login_per_identity
    for _ in range(limit):
        r = await client.post("/api/v1/auth/login", json={"email": user.email, "password": "wrong-pass-1"})
        assert r.status_code == 401
    assert len(calls) == limit

    # Case-variant of the same identity shares the window
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": user.email.upper(), "password": PASSWORD},
    )
    assert r.status_code == 429
    assert r.json()["errors"][0]["code"] == "RATE_LIMITED"
    assert "Retry-After" in r.headers
    assert len(calls) == limit


# ═══════════════════════════════════════════════════════════
# Refresh / logout
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_refresh_rotates_token(client, make_user, db_session):
    user = await make_user()
    tokens = await login(client, user.email)

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["access_token"]
    assert data["refresh_token"] and data["refresh_token"] != tokens["refresh_token"]

    sessions = (await db_session.execute(select(RefreshSession))).scalars().all()
    assert len(sessions) == 2
    old = next(s for s in sessions if s.revoked_at is not None)
    new = next(s for s in sessions if s.revoked_at is None)
    assert old.replaced_by_id == new.id


@pytest.mark.asyncio
async def test_refresh_reuse_revokes_all_sessions(client, make_user):
    """Replaying a rotated token is treated as theft: every session dies."""
    user = await make_user()
    tokens = await login(client, user.email)
    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    successor = r.json()["data"]["refresh_token"]

    replay = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["errors"][0]["code"] == "AUTH_TOKEN_REVOKED"

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": successor})
    assert r.status_code == 401
    assert r.json()["errors"][0]["reason"] == "REVOKED"


@pytest.mark.asyncio
async def test_concurrent_refresh_same_token(client, make_user):
    """Two refreshes of one token in flight: one 200, one 401, never a 500."""
    user = await make_user()
    tokens = await login(client, user.email)
    body = {"refresh_token": tokens["refresh_token"]}

    responses = await asyncio.gather(
        client.post("/api/v1/auth/refresh", json=body),
        client.post("/api/v1/auth/refresh", json=body),
    )
    statuses = sorted(r.status_code for r in responses)
    assert statuses == [200, 401]
    loser = next(r for r in responses if r.status_code == 401)
    assert loser.json()["errors"][0]["code"] in ("AUTH_TOKEN_REVOKED", "AUTH_TOKEN_INVALID")


@pytest.mark.asyncio
async def test_late_duplicate_refresh_keeps_successor_when_opted_out(client, make_user, monkeypatch):
    """Without family revocation a late retry fails alone; the successor lives."""
    monkeypatch.setattr(settings, "revoke_all_on_refresh_reuse", False)
    user = await make_user()
    tokens = await login(client, user.email)
    body = {"refresh_token": tokens["refresh_token"]}

    r = await client.post("/api/v1/auth/refresh", json=body)
    assert r.status_code == 200
    successor = r.json()["data"]["refresh_token"]

    r = await client.post("/api/v1/auth/refresh", json=body)
    assert r.status_code == 401
    assert r.json()["errors"][0]["code"] == "AUTH_TOKEN_REVOKED"

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": successor})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_refresh_unknown_token(client):
    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": "bogus"})
    assert r.status_code == 401
    assert r.json()["errors"][0]["reason"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_logout_is_idempotent(client, make_user):
    user = await make_user()
    tokens = await login(client, user.email)

    for _ in range(2):
        r = await client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert r.status_code == 200

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_all(client, make_user):
    user = await make_user()
    first = await login(client, user.email)
    second = await login(client, user.email)

    r = await client.post("/api/v1/auth/logout-all", headers=bearer(first["access_token"]))
    assert r.status_code == 200
    assert r.json()["data"]["revoked"] == 2

    for tokens in (first, second):
        r = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Me
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_token(client, make_user):
    user = await make_user()
    tokens = await login(client, user.email)
    r = await client.get("/api/v1/auth/me", headers=bearer(tokens["access_token"]))
    assert r.status_code == 200
    assert r.json()["data"]["email"] == user.email


@pytest.mark.asyncio
async def test_me_without_token(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.json()["errors"][0]["code"] == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_me_with_garbage_token(client):
    r = await client.get("/api/v1/auth/me", headers=bearer("not.a.jwt"))
    assert r.status_code == 401
    assert r.json()["errors"][0]["code"] == "AUTH_TOKEN_INVALID"
