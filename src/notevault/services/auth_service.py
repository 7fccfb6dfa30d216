"""Auth service — the signup / verification / login state machine.

Learn: Composes the credential store (UserService), TokenService and
VerificationService into the flows the API exposes:

  signup  → user PENDING_VERIFICATION + verification token → COMMIT
          → enqueue verification mail (after commit, best-effort)
  verify  → consume token → user VERIFIED
  login   → credentials → status gate → access token + refresh session
  refresh → TokenService.refresh (rotation per config)
  logout  → revoke the presented refresh session (idempotent)

Login error policy: unknown email, wrong password and DISABLED account
all return the same AUTH_INVALID_CREDENTIALS. Only a correct password on
a PENDING_VERIFICATION account returns AUTH_NOT_VERIFIED, so the client
can route the user to "resend verification".
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.auth.password import burn_password_check, verify_password
from notevault.config import settings
from notevault.db.models import User, UserStatus
from notevault.errors import InvalidCredentialsError, NotVerifiedError
from notevault.services.mail import TEMPLATE_VERIFY_EMAIL, MailDispatcher
from notevault.services.token_service import RefreshResult, TokenService
from notevault.services.user_service import UserService, normalize_email
from notevault.services.verification_service import VerificationService

logger = structlog.get_logger()


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    user: User


class AuthService:
    """Business logic for account authentication flows."""

    def __init__(
        self,
        db: AsyncSession,
        tokens: TokenService,
        mailer: Optional[MailDispatcher] = None,
    ):
        self.db = db
        self.users = UserService(db)
        self.tokens = tokens
        self.verification = VerificationService(db)
        self.mailer = mailer

    # ─── Signup / verification ──────────────────────────

    async def signup(self, email: str, password: str) -> User:
        """Create a pending account and send its verification link."""
        user = await self.users.create_user(email, password)
        raw_token = await self.verification.issue(user)
        await self.db.commit()
        logger.info("auth.signed_up", user_id=str(user.id))

        self._send_verification(user, raw_token)
        return user

    async def verify_email(self, raw_token: str) -> User:
        user_id = await self.verification.consume(raw_token)
        user = await self.db.get(User, user_id, populate_existing=True)
        return user

    async def resend_verification(self, email: str) -> None:
        """Issue a fresh link if the account is still pending. Silent otherwise."""
        user = await self.users.get_by_email(email)
        if user is None or user.status != UserStatus.PENDING_VERIFICATION.value:
            logger.info("auth.resend_skipped")
            return
        raw_token = await self.verification.issue(user)
        await self.db.commit()
        self._send_verification(user, raw_token)

    def _send_verification(self, user: User, raw_token: str) -> None:
        if self.mailer is None:
            logger.warning("auth.mailer_missing", user_id=str(user.id))
            return
        link = f"{settings.app_base_url.rstrip('/')}/verify-email?token={raw_token}"
        self.mailer.enqueue(
            user.email,
            TEMPLATE_VERIFY_EMAIL,
            {"token": raw_token, "link": link, "email": user.email},
        )

    # ─── Login / refresh / logout ───────────────────────

    async def login(
        self,
        email: str,
        password: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> LoginResult:
        user = await self.users.get_by_email(normalize_email(email))
        if user is None:
            burn_password_check(password)
            logger.info("auth.login_failed", reason="unknown_email")
            raise InvalidCredentialsError()

        if not verify_password(password, user.password_hash):
            logger.info("auth.login_failed", reason="bad_password", user_id=str(user.id))
            raise InvalidCredentialsError()

        if user.status == UserStatus.DISABLED.value:
            logger.info("auth.login_failed", reason="disabled", user_id=str(user.id))
            raise InvalidCredentialsError()

        if user.status != UserStatus.VERIFIED.value:
            logger.info("auth.login_failed", reason="not_verified", user_id=str(user.id))
            raise NotVerifiedError()

        raw_refresh, _ = await self.tokens.issue_refresh_session(
            user, user_agent=user_agent, ip_address=ip_address
        )
        await self.db.commit()
        logger.info("auth.login_succeeded", user_id=str(user.id))
        return LoginResult(
            access_token=self.tokens.issue_access_token(user),
            refresh_token=raw_refresh,
            user=user,
        )

    async def refresh(
        self,
        raw_token: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RefreshResult:
        return await self.tokens.refresh(
            raw_token, user_agent=user_agent, ip_address=ip_address
        )

    async def logout(self, raw_token: str) -> None:
        changed = await self.tokens.revoke_by_token(raw_token)
        logger.info("auth.logged_out", revoked=changed)

    async def logout_all(self, user_id: uuid.UUID) -> int:
        count = await self.tokens.revoke_all_for_user(user_id)
        await self.db.commit()
        return count
