"""Authorization engine — role × action × ownership.

Learn: Authorization is a pure function over a closed Role enum and a
closed Action enum. No role classes, no virtual dispatch: the policy is
a table you can read top to bottom.

Rules:
- OWN actions are allowed for any role, but only when the target's
  stored owner is the actor.
- Admin-scope actions depend on the actor's role (and, for status
  changes, on the target's role).
- Anything not in the table is denied (fail-closed).
"""

import enum
from dataclasses import dataclass
from typing import Optional

from notevault.db.models import Role


class Action(str, enum.Enum):
    # Owner-scoped
    NOTE_CREATE = "note.create"
    NOTE_READ = "note.read"
    NOTE_UPDATE = "note.update"
    NOTE_DELETE = "note.delete"
    NOTE_LIST = "note.list"
    LOGOUT_ALL = "auth.logout_all"

    # Admin-scoped
    NOTE_LIST_ANY = "note.list_any"
    NOTE_READ_ANY = "note.read_any"
    USER_LIST = "user.list"
    USER_READ = "user.read"
    USER_UPDATE_STATUS = "user.update_status"
    USER_REVOKE_SESSIONS = "user.revoke_sessions"
    USER_CHANGE_ROLE = "user.change_role"


OWN_ACTIONS = frozenset({
    Action.NOTE_CREATE,
    Action.NOTE_READ,
    Action.NOTE_UPDATE,
    Action.NOTE_DELETE,
    Action.NOTE_LIST,
    Action.LOGOUT_ALL,
})

ADMIN_ACTIONS = frozenset(Action) - OWN_ACTIONS

_ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})
_PROTECTED_TARGET_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

# action → roles allowed (before target-specific checks)
_ADMIN_TABLE: dict[Action, frozenset[Role]] = {
    Action.NOTE_LIST_ANY: _ADMIN_ROLES,
    Action.NOTE_READ_ANY: _ADMIN_ROLES,
    Action.USER_LIST: _ADMIN_ROLES,
    Action.USER_READ: _ADMIN_ROLES,
    Action.USER_UPDATE_STATUS: _ADMIN_ROLES,
    Action.USER_REVOKE_SESSIONS: _ADMIN_ROLES,
    Action.USER_CHANGE_ROLE: frozenset({Role.SUPER_ADMIN}),
}

# Actions where an admin may only touch client/guest accounts.
_TARGET_ROLE_GUARDED = frozenset({
    Action.USER_UPDATE_STATUS,
    Action.USER_REVOKE_SESSIONS,
})


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role


@dataclass(frozen=True)
class Target:
    """What the action is aimed at.

    owner_id must come from the stored resource (note.created_by,
    user.id), never from request input.
    """

    id: Optional[str] = None
    owner_id: Optional[str] = None
    role: Optional[Role] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _parse_role(value) -> Optional[Role]:
    try:
        return Role(value)
    except ValueError:
        return None


def authorize(actor: Actor, action: Action, target: Optional[Target] = None) -> Decision:
    """Evaluate the policy table. Fail-closed on anything unknown."""
    role = _parse_role(actor.role)
    if role is None:
        return Decision(False, "unknown_role")
    target = target or Target()

    if action in OWN_ACTIONS:
        if target.owner_id is not None and target.owner_id == actor.id:
            return Decision(True, "owner")
        return Decision(False, "not_owner")

    allowed_roles = _ADMIN_TABLE.get(action)
    if allowed_roles is None:
        return Decision(False, "no_rule")
    if role not in allowed_roles:
        return Decision(False, "role_not_permitted")

    if action in _TARGET_ROLE_GUARDED and role is not Role.SUPER_ADMIN:
        target_role = _parse_role(target.role) if target.role is not None else None
        if target_role is None or target_role in _PROTECTED_TARGET_ROLES:
            return Decision(False, "target_protected")

    return Decision(True, "role")


def is_admin_scoped(action: Action) -> bool:
    return action in ADMIN_ACTIONS
