"""NoteVault operator CLI — account bootstrap and emergency controls.

Usage:
    notevault create-user --email root@example.com --role super_admin
    notevault set-role alice@example.com admin
    notevault revoke-sessions alice@example.com
    notevault users --status VERIFIED

Talks to the database directly (same NOTEVAULT_DATABASE_URL as the API),
so it works before any super_admin exists. Every change is audited with
an empty actor and "initiator": "cli".
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click

from notevault import __version__
from notevault.audit.actions import OUTCOME_ALLOWED, SESSIONS_REVOKED_ALL, USER_CREATED
from notevault.audit.recorder import AuditRecorder
from notevault.auth.password import password_policy_violations
from notevault.auth.policy import Action
from notevault.db.engine import async_session_factory
from notevault.db.models import Role, UserStatus
from notevault.errors import AppError
from notevault.services.token_service import TokenService
from notevault.services.user_service import UserService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _audit() -> AuditRecorder:
    return AuditRecorder(async_session_factory, fail_closed=True)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    colors = {
        UserStatus.VERIFIED.value: "green",
        UserStatus.PENDING_VERIFICATION.value: "yellow",
        UserStatus.DISABLED.value: "red",
    }
    return colors.get(status, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="notevault")
def main():
    """NoteVault — operator commands for accounts and sessions."""


# ---------------------------------------------------------------------------
# notevault create-user
# ---------------------------------------------------------------------------


@main.command("create-user")
@click.option("--email", required=True, help="Account email (normalized to lowercase)")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Account password (prompted when omitted)",
)
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.CLIENT.value,
    show_default=True,
)
def create_user(email: str, password: str, role: str):
    """Create an already-verified account (e.g. the first super_admin)."""
    problems = password_policy_violations(password)
    if problems:
        _fail("password " + ", ".join(problems))
    _run(_create_user_impl(email, password, Role(role)))


async def _create_user_impl(email: str, password: str, role: Role):
    async with async_session_factory() as db:
        try:
            user = await UserService(db).create_user(
                email, password, role=role, status=UserStatus.VERIFIED
            )
            await db.commit()
        except AppError as e:
            _fail(e.message)

    await _audit().record(
        actor_id=None,
        action=USER_CREATED,
        outcome=OUTCOME_ALLOWED,
        target_id=str(user.id),
        details={"initiator": "cli", "role": role.value},
    )
    click.secho(f"Created {user.email} ({role.value}) — {user.id}", fg="green")


# ---------------------------------------------------------------------------
# notevault set-role
# ---------------------------------------------------------------------------


@main.command("set-role")
@click.argument("email")
@click.argument("role", type=click.Choice([r.value for r in Role]))
def set_role(email: str, role: str):
    """Change the role of the account with EMAIL."""
    _run(_set_role_impl(email, Role(role)))


async def _set_role_impl(email: str, role: Role):
    async with async_session_factory() as db:
        svc = UserService(db)
        user = await svc.get_by_email(email)
        if user is None:
            _fail(f"no account for {email}")
        previous = user.role
        await _audit().record(
            actor_id=None,
            action=Action.USER_CHANGE_ROLE.value,
            outcome=OUTCOME_ALLOWED,
            target_id=str(user.id),
            details={"initiator": "cli", "from": previous, "to": role.value},
        )
        await svc.set_role(user, role)
        await db.commit()
    click.secho(f"{user.email}: {previous} → {role.value}", fg="green")


# ---------------------------------------------------------------------------
# notevault revoke-sessions
# ---------------------------------------------------------------------------


@main.command("revoke-sessions")
@click.argument("email")
def revoke_sessions(email: str):
    """Revoke every refresh session of the account with EMAIL."""
    _run(_revoke_sessions_impl(email))


async def _revoke_sessions_impl(email: str):
    async with async_session_factory() as db:
        user = await UserService(db).get_by_email(email)
        if user is None:
            _fail(f"no account for {email}")
        count = await TokenService(db).revoke_all_for_user(user.id)
        await db.commit()

    await _audit().record(
        actor_id=None,
        action=SESSIONS_REVOKED_ALL,
        outcome=OUTCOME_ALLOWED,
        target_id=str(user.id),
        details={"initiator": "cli", "sessions_revoked": count},
    )
    click.echo(f"Revoked {count} session(s) for {user.email}")


# ---------------------------------------------------------------------------
# notevault users
# ---------------------------------------------------------------------------


@main.command()
@click.option("--status", type=click.Choice([s.value for s in UserStatus]), default=None)
@click.option("--role", type=click.Choice([r.value for r in Role]), default=None)
@click.option("--limit", default=50, show_default=True)
def users(status: Optional[str], role: Optional[str], limit: int):
    """List accounts, oldest first."""
    _run(_users_impl(status, role, limit))


async def _users_impl(status: Optional[str], role: Optional[str], limit: int):
    async with async_session_factory() as db:
        rows, _ = await UserService(db).list_users(limit=limit, status=status, role=role)

    if not rows:
        click.echo("No accounts.")
        return
    _print_table(
        [
            {
                "email": u.email,
                "role": u.role,
                "status": click.style(u.status, fg=_status_color(u.status)),
                "created": u.created_at.strftime("%Y-%m-%d %H:%M"),
            }
            for u in rows
        ],
        [("EMAIL", "email", 36), ("ROLE", "role", 12), ("STATUS", "status", 30), ("CREATED", "created", 16)],
    )


if __name__ == "__main__":
    main()
