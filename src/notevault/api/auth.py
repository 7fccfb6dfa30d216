"""Auth API — signup, verification, login, refresh, logout.

Learn: Routes for account authentication:
- POST /auth/signup → pending account + verification email
- POST /auth/verify-email → consume the one-time token
- POST /auth/resend-verification → fresh link (supersedes older ones)
- POST /auth/login → email/password → access token + refresh token
- POST /auth/refresh → refresh token → new access token (rotating)
- POST /auth/logout → revoke the presented refresh session
- POST /auth/logout-all → revoke every session of the caller
- GET /auth/me → current user info
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.audit.actions import OUTCOME_ALLOWED, SESSIONS_REVOKED_ALL
from notevault.auth.dependencies import (
    Authorizer,
    CurrentIdentity,
    get_auth_service,
    get_authorizer,
    get_current_user,
)
from notevault.auth.policy import Action, Target
from notevault.config import settings
from notevault.db.engine import get_db
from notevault.errors import RateLimitedError
from notevault.middleware.rate_limit import client_ip
from notevault.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshRequest,
    ResendVerificationRequest,
    RevokedCount,
    SignupRequest,
    TokenPair,
    VerifyEmailRequest,
)
from notevault.schemas.envelope import Envelope, ok
from notevault.schemas.user import UserRead
from notevault.services.auth_service import AuthService
from notevault.services.user_service import UserService, normalize_email

router = APIRouter(prefix="/auth")


def _expires_in() -> int:
    return settings.access_token_expire_minutes * 60


# ─── Signup / verification ──────────────────────────────


@router.post("/signup", response_model=Envelope[UserRead], status_code=201)
async def signup(
    request: Request,
    body: SignupRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Register a new account. It stays PENDING_VERIFICATION until verified."""
    user = await auth.signup(body.email, body.password)
    return ok(
        request,
        UserRead.model_validate(user),
        message="Account created. Check your email to verify your address.",
        alert_type="info",
    )


@router.post("/verify-email", response_model=Envelope[UserRead])
async def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    auth: AuthService = Depends(get_auth_service),
):
    user = await auth.verify_email(body.token)
    return ok(request, UserRead.model_validate(user), message="Email verified.")


@router.post("/resend-verification", response_model=Envelope[None], status_code=202)
async def resend_verification(
    request: Request,
    body: ResendVerificationRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Same answer whether or not the account exists."""
    await auth.resend_verification(body.email)
    return ok(
        request,
        message="If the account exists and is unverified, a new link has been sent.",
        alert_type="info",
    )


# ─── Login / refresh / logout ───────────────────────────


@router.post("/login", response_model=Envelope[LoginResponse])
async def login(
    request: Request,
    body: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Authenticate with email + password.

    Learn: The per-identity limit is checked before any credential work,
    so a throttled attempt never reaches the password comparison.
    """
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is not None:
        allowed = await limiter.allow(
            f"login:{normalize_email(body.email)}",
            settings.rate_limit_login_per_identity,
            settings.rate_limit_window_seconds,
        )
        if not allowed:
            raise RateLimitedError("Too many login attempts. Try again later.")

    result = await auth.login(
        body.email,
        body.password,
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    return ok(
        request,
        LoginResponse(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=_expires_in(),
            user=UserRead.model_validate(result.user),
        ),
        message="Logged in.",
    )


@router.post("/refresh", response_model=Envelope[TokenPair])
async def refresh(
    request: Request,
    body: RefreshRequest,
    auth: AuthService = Depends(get_auth_service),
):
    result = await auth.refresh(
        body.refresh_token,
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    return ok(
        request,
        TokenPair(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=_expires_in(),
        ),
        message="Token refreshed.",
    )


@router.post("/logout", response_model=Envelope[None])
async def logout(
    request: Request,
    body: LogoutRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Idempotent: unknown or already-revoked tokens still return success."""
    await auth.logout(body.refresh_token)
    return ok(request, message="Logged out.")


@router.post("/logout-all", response_model=Envelope[RevokedCount])
async def logout_all(
    request: Request,
    authz: Authorizer = Depends(get_authorizer),
    auth: AuthService = Depends(get_auth_service),
):
    identity = authz.identity
    await authz.check(Action.LOGOUT_ALL, Target(id=identity.user_id, owner_id=identity.user_id))
    count = await auth.logout_all(identity.uuid)
    await authz.audit.record(
        actor_id=identity.user_id,
        action=SESSIONS_REVOKED_ALL,
        outcome=OUTCOME_ALLOWED,
        target_id=identity.user_id,
        details={"sessions_revoked": count, "initiator": "self"},
    )
    return ok(request, RevokedCount(revoked=count), message="All sessions revoked.")


@router.get("/me", response_model=Envelope[UserRead])
async def me(
    request: Request,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await UserService(db).get_or_404(identity.uuid)
    return ok(request, UserRead.model_validate(user))
