"""Audit recorder tests — append, read back, fail-closed vs best-effort."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from notevault.audit.actions import OUTCOME_ALLOWED, OUTCOME_DENIED
from notevault.audit.recorder import AuditRecorder, read_entries
from notevault.config import settings
from notevault.db.engine import get_session_factory
from notevault.db.models import Role
from notevault.errors import DependencyUnavailableError
from notevault.main import app


@pytest_asyncio.fixture()
async def broken_session_factory(tmp_path):
    """Sessions pointing at a database file that can never be opened."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'audit.db'}"
    )
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_record_and_read_back(session_factory, make_user):
    user = await make_user()
    recorder = AuditRecorder(session_factory, request_id="req-1")
    await recorder.record(str(user.id), "user.list", OUTCOME_DENIED, details={"reason": "x"})
    await recorder.record(str(user.id), "user.read", OUTCOME_ALLOWED, target_id="t-1")
    await recorder.record(None, "user.create", OUTCOME_ALLOWED)

    async with session_factory() as db:
        everything = await read_entries(db)
        mine = await read_entries(db, actor_id=user.id)
        reads = await read_entries(db, action="user.read")
        after_first = await read_entries(db, after_id=everything[0].id)

    assert [e.action for e in everything] == ["user.list", "user.read", "user.create"]
    assert len(mine) == 2
    assert reads[0].target_id == "t-1"
    assert reads[0].request_id == "req-1"
    assert everything[0].details == {"reason": "x"}
    assert everything[0].created_at is not None
    assert [e.action for e in after_first] == ["user.read", "user.create"]


@pytest.mark.asyncio
async def test_fail_closed_raises(broken_session_factory):
    recorder = AuditRecorder(broken_session_factory, fail_closed=True)
    with pytest.raises(DependencyUnavailableError) as exc:
        await recorder.record(None, "user.list", OUTCOME_ALLOWED)
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_best_effort_returns_none(broken_session_factory):
    recorder = AuditRecorder(broken_session_factory, fail_closed=False)
    assert await recorder.record(None, "user.list", OUTCOME_ALLOWED) is None


@pytest.mark.asyncio
async def test_admin_action_blocked_when_audit_unavailable(
    client, login_as, broken_session_factory
):
    _, headers = await login_as(Role.ADMIN)
    app.dependency_overrides[get_session_factory] = lambda: broken_session_factory

    r = await client.get("/api/v1/admin/users", headers=headers)
    assert r.status_code == 503
    assert r.json()["errors"][0]["code"] == "DEPENDENCY_UNAVAILABLE"


@pytest.mark.asyncio
async def test_admin_action_proceeds_when_best_effort(
    client, login_as, broken_session_factory, monkeypatch
):
    _, headers = await login_as(Role.ADMIN)
    app.dependency_overrides[get_session_factory] = lambda: broken_session_factory
    monkeypatch.setattr(settings, "audit_fail_closed", False)

    r = await client.get("/api/v1/admin/users", headers=headers)
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_own_actions_are_not_audited(client, login_as, session_factory):
    user, headers = await login_as()
    await client.post("/api/v1/notes", json={"title": "mine"}, headers=headers)
    await client.get("/api/v1/notes", headers=headers)

    async with session_factory() as db:
        assert await read_entries(db, actor_id=user.id) == []
