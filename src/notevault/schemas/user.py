"""Pydantic schemas for users (self view and admin views)."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from notevault.db.models import Role, UserStatus


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    role: str
    status: str
    email_verified_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AdminUserRead(UserRead):
    updated_at: datetime
    active_sessions: Optional[int] = None


class UserStatusUpdate(BaseModel):
    """PATCH admin/users/{id} — account status only."""
    status: UserStatus = Field(..., description="VERIFIED, DISABLED or PENDING_VERIFICATION")


class UserRoleUpdate(BaseModel):
    """PATCH admin/users/{id}/role — super_admin only."""
    role: Role
