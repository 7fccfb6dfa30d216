"""Pydantic schemas for the auth endpoints.

Learn: Input validation happens here, at the boundary. Failures become
VALIDATION envelopes with one field-level entry per problem (see the
RequestValidationError handler in main.py).
"""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator

from notevault.auth.password import password_policy_violations
from notevault.schemas.user import UserRead


# ─── Signup / verification ──────────────────────────────

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    confirm_password: str = Field(..., min_length=1, max_length=128)

    @field_validator("password")
    @classmethod
    def password_meets_policy(cls, v: str) -> str:
        problems = password_policy_violations(v)
        if problems:
            raise ValueError("Password " + ", ".join(problems))
        return v

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info: ValidationInfo) -> str:
        password = info.data.get("password")
        if password is not None and v != password:
            raise ValueError("Passwords do not match")
        return v


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)


class ResendVerificationRequest(BaseModel):
    email: EmailStr


# ─── Login / refresh / logout ───────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=256)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=256)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None  # None when rotation is disabled
    token_type: str = "bearer"
    expires_in: int  # access token lifetime, seconds


class LoginResponse(TokenPair):
    user: UserRead


class RevokedCount(BaseModel):
    revoked: int
