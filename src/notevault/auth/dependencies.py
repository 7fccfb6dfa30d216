"""FastAPI auth and service dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request, and to build the
services each handler needs.

Authentication is a Bearer JWT access token. Verifying it is pure —
no database lookup — so a protected request costs one signature check.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notevault.audit.actions import OUTCOME_ALLOWED, OUTCOME_DENIED
from notevault.audit.recorder import AuditRecorder
from notevault.auth.policy import Action, Actor, Target, authorize, is_admin_scoped
from notevault.auth.tokens import verify_access_token
from notevault.config import settings
from notevault.db.engine import get_db, get_session_factory
from notevault.db.models import Role
from notevault.errors import ForbiddenError, TokenInvalidError
from notevault.schemas.envelope import request_id_of
from notevault.services.auth_service import AuthService
from notevault.services.mail import MailDispatcher
from notevault.services.token_service import TokenService


class CurrentIdentity:
    """Represents the authenticated user making the request.

    Learn: Built only from verified access-token claims. Downstream code
    uses it as the Actor for authorization checks.
    """

    def __init__(self, user_id: str, role: str, email_verified: bool = False):
        self.user_id = user_id
        self.role = role
        self.email_verified = email_verified

    @property
    def uuid(self) -> uuid.UUID:
        return uuid.UUID(self.user_id)

    def as_actor(self) -> Actor:
        try:
            role = Role(self.role)
        except ValueError:
            role = self.role  # authorize() denies unknown roles
        return Actor(id=self.user_id, role=role)


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if missing or invalid)."""
    if not authorization or not authorization.startswith("Bearer "):
        raise TokenInvalidError("Authentication required.", reason="MISSING")

    claims = verify_access_token(authorization[7:].strip())
    return CurrentIdentity(
        user_id=claims.user_id,
        role=claims.role,
        email_verified=claims.email_verified,
    )


# ─── Services ───────────────────────────────────────────


def get_mail_dispatcher(request: Request) -> Optional[MailDispatcher]:
    return getattr(request.app.state, "mail_dispatcher", None)


def get_audit_recorder(
    request: Request,
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AuditRecorder:
    return AuditRecorder(
        session_factory,
        fail_closed=settings.audit_fail_closed,
        timeout=settings.audit_timeout_seconds,
        request_id=request_id_of(request),
    )


def get_token_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> TokenService:
    return TokenService(db, audit=audit)


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    mailer: Optional[MailDispatcher] = Depends(get_mail_dispatcher),
) -> AuthService:
    return AuthService(db, tokens=tokens, mailer=mailer)


# ─── Authorization ──────────────────────────────────────


class Authorizer:
    """Per-request policy gate.

    Learn: check() evaluates the pure policy and, for admin-scoped
    actions, appends an audit entry for the decision — allowed *and*
    denied — before anything executes. A denial raises ForbiddenError.
    """

    def __init__(self, identity: CurrentIdentity, audit: AuditRecorder):
        self.identity = identity
        self.audit = audit

    async def check(
        self,
        action: Action,
        target: Optional[Target] = None,
        details: Optional[dict] = None,
    ) -> None:
        decision = authorize(self.identity.as_actor(), action, target)
        if is_admin_scoped(action):
            await self.audit.record(
                actor_id=self.identity.user_id,
                action=action.value,
                outcome=OUTCOME_ALLOWED if decision.allowed else OUTCOME_DENIED,
                target_id=target.id if target else None,
                details={"reason": decision.reason, **(details or {})},
            )
        if not decision.allowed:
            raise ForbiddenError()


def get_authorizer(
    identity: CurrentIdentity = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Authorizer:
    return Authorizer(identity, audit)
