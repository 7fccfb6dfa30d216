"""Operator CLI tests.

Learn: Click commands are synchronous and start their own event loop,
so these tests are plain functions driven by CliRunner. The CLI's
session factory is pointed at a throwaway SQLite file; NullPool keeps
connections from leaking between the separate event loops.
"""

import asyncio

import pytest
from click.testing import CliRunner
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import notevault.cli.main as cli
from conftest import PASSWORD
from notevault.audit.recorder import read_entries
from notevault.db.models import Base, Role, UserStatus
from notevault.services.token_service import TokenService
from notevault.services.user_service import UserService


@pytest.fixture()
def cli_db(tmp_path, monkeypatch):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}", poolclass=NullPool
    )

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    factory = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(cli, "async_session_factory", factory)
    return factory


def _query(factory, fn):
    async def _go():
        async with factory() as db:
            return await fn(db)

    return asyncio.run(_go())


def test_create_user(cli_db):
    result = CliRunner().invoke(
        cli.main,
        ["create-user", "--email", "Root@Example.com", "--password", PASSWORD, "--role", "super_admin"],
    )
    assert result.exit_code == 0, result.output
    assert "root@example.com" in result.output

    user = _query(cli_db, lambda db: UserService(db).get_by_email("root@example.com"))
    assert user.role == Role.SUPER_ADMIN.value
    assert user.status == UserStatus.VERIFIED.value
    assert user.email_verified_at is not None

    entries = _query(cli_db, lambda db: read_entries(db, action="user.create"))
    assert entries[0].actor_id is None
    assert entries[0].details == {"initiator": "cli", "role": "super_admin"}


def test_create_user_rejects_weak_password(cli_db):
    result = CliRunner().invoke(
        cli.main, ["create-user", "--email", "a@example.com", "--password", "short"]
    )
    assert result.exit_code == 1
    assert "password" in result.output


def test_create_user_duplicate(cli_db):
    args = ["create-user", "--email", "a@example.com", "--password", PASSWORD]
    assert CliRunner().invoke(cli.main, args).exit_code == 0
    result = CliRunner().invoke(cli.main, args)
    assert result.exit_code == 1
    assert "already registered" in result.output


def test_set_role(cli_db):
    CliRunner().invoke(cli.main, ["create-user", "--email", "a@example.com", "--password", PASSWORD])

    result = CliRunner().invoke(cli.main, ["set-role", "a@example.com", "admin"])
    assert result.exit_code == 0, result.output

    user = _query(cli_db, lambda db: UserService(db).get_by_email("a@example.com"))
    assert user.role == "admin"
    entries = _query(cli_db, lambda db: read_entries(db, action="user.change_role"))
    assert entries[0].details == {"initiator": "cli", "from": "client", "to": "admin"}


def test_set_role_unknown_account(cli_db):
    result = CliRunner().invoke(cli.main, ["set-role", "ghost@example.com", "admin"])
    assert result.exit_code == 1
    assert "no account" in result.output


def test_revoke_sessions(cli_db):
    CliRunner().invoke(cli.main, ["create-user", "--email", "a@example.com", "--password", PASSWORD])

    async def _login_twice(db):
        user = await UserService(db).get_by_email("a@example.com")
        tokens = TokenService(db)
        await tokens.issue_refresh_session(user)
        await tokens.issue_refresh_session(user)
        await db.commit()

    _query(cli_db, _login_twice)

    result = CliRunner().invoke(cli.main, ["revoke-sessions", "a@example.com"])
    assert result.exit_code == 0, result.output
    assert "Revoked 2" in result.output

    entries = _query(cli_db, lambda db: read_entries(db, action="auth.sessions_revoked_all"))
    assert entries[0].details["sessions_revoked"] == 2


def test_users_listing(cli_db):
    result = CliRunner().invoke(cli.main, ["users"])
    assert "No accounts." in result.output

    for email in ("a@example.com", "b@example.com"):
        CliRunner().invoke(cli.main, ["create-user", "--email", email, "--password", PASSWORD])
    CliRunner().invoke(cli.main, ["set-role", "b@example.com", "admin"])

    result = CliRunner().invoke(cli.main, ["users"])
    assert result.exit_code == 0
    assert "a@example.com" in result.output and "b@example.com" in result.output

    result = CliRunner().invoke(cli.main, ["users", "--role", "admin"])
    assert "b@example.com" in result.output
    assert "a@example.com" not in result.output
