"""Test fixtures — a throwaway SQLite database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own SQLite file (tmp_path) with the schema created
   from Base.metadata — no server needed, nothing shared between tests.
2. get_db and get_session_factory are overridden so the app, the audit
   recorder and the test itself all talk to that file. Services really
   commit, so concurrency tests (two refreshes racing) see real
   transactions, not savepoints.
3. app.state gets a fresh in-memory rate limiter and a mail dispatcher
   backed by a RecordingTransport, so tests can read the verification
   link that "was emailed".

Env vars are set before anything imports notevault: the settings
singleton is built on first import.
"""

import os

os.environ.setdefault("NOTEVAULT_DATABASE_URL", "sqlite+aiosqlite:///./notevault-test.db")
os.environ.setdefault("NOTEVAULT_BCRYPT_ROUNDS", "4")
os.environ.setdefault("NOTEVAULT_RATE_LIMIT_AUTH_RPM", "1000")
os.environ.setdefault("NOTEVAULT_RATE_LIMIT_RPM", "1000")
os.environ.setdefault("NOTEVAULT_LOG_LEVEL", "WARNING")

import uuid  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from typing import Any, Optional  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from notevault.config import settings  # noqa: E402
from notevault.db.engine import get_db, get_session_factory  # noqa: E402
from notevault.db.models import Base, Role, UserStatus  # noqa: E402
from notevault.main import app  # noqa: E402
from notevault.ratelimit import InMemoryRateLimiter  # noqa: E402
from notevault.services.mail import MailDispatcher, MailTransport, MailTransportError  # noqa: E402
from notevault.services.user_service import UserService  # noqa: E402

PASSWORD = "correct-horse-42"


class RecordingTransport(MailTransport):
    """Mail transport that keeps every message it was asked to send.

    `failures` is a list of MailTransportErrors raised, in order, before
    sends start succeeding.
    """

    def __init__(self, failures: Optional[list[MailTransportError]] = None):
        self.sent: list[dict[str, Any]] = []
        self.calls = 0
        self.failures = list(failures or [])

    async def send(self, address: str, template_id: str, payload: dict[str, Any]) -> None:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append({"to": address, "template": template_id, "payload": payload})

    def last_token_for(self, address: str) -> str:
        for message in reversed(self.sent):
            if message["to"] == address:
                return message["payload"]["token"]
        raise AssertionError(f"no mail sent to {address}")


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'notevault.db'}",
        connect_args={"timeout": 10},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def mail_transport():
    return RecordingTransport()


@pytest_asyncio.fixture()
async def client(session_factory, mail_transport):
    """HTTP client that passes the gateway (X-Internal-Key set)."""
    async with _app_client(session_factory, mail_transport, trusted=True) as ac:
        yield ac


@pytest_asyncio.fixture()
async def untrusted_client(session_factory, mail_transport):
    """HTTP client WITHOUT the internal key — as if it bypassed the gateway."""
    async with _app_client(session_factory, mail_transport, trusted=False) as ac:
        yield ac


@asynccontextmanager
async def _app_client(session_factory, mail_transport, trusted: bool):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    saved_state = (app.state.rate_limiter, app.state.mail_dispatcher)
    app.state.rate_limiter = InMemoryRateLimiter()
    app.state.mail_dispatcher = MailDispatcher(mail_transport, backoff_seconds=0)

    headers = {}
    if trusted:
        headers[settings.internal_key_header] = settings.internal_api_key
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            headers=headers,
        ) as ac:
            yield ac
        await app.state.mail_dispatcher.join()
    finally:
        app.state.rate_limiter, app.state.mail_dispatcher = saved_state
        app.dependency_overrides.clear()


# ─── Account helpers ─────────────────────────────────────


@pytest_asyncio.fixture()
async def make_user(session_factory):
    """Factory: create an account directly in the store.

    Usage: user = await make_user(role=Role.ADMIN)
    """

    async def _make(
        email: Optional[str] = None,
        password: str = PASSWORD,
        role: Role = Role.CLIENT,
        status: UserStatus = UserStatus.VERIFIED,
    ):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        async with session_factory() as db:
            user = await UserService(db).create_user(email, password, role=role, status=status)
            await db.commit()
        return user

    return _make


async def login(client: AsyncClient, email: str, password: str = PASSWORD) -> dict:
    r = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["data"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture()
async def login_as(client, make_user):
    """Factory: create an account with a role and return (user, auth headers)."""

    async def _login_as(role: Role = Role.CLIENT):
        user = await make_user(role=role)
        tokens = await login(client, user.email)
        return user, bearer(tokens["access_token"])

    return _login_as
