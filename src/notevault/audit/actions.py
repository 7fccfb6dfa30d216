"""Audit action and outcome constants.

Learn: Centralizing audit names as constants prevents typos and makes
it easy to discover everything that ends up in the audit trail.
Privileged actions reuse the authorization Action values
(e.g. "user.change_role"); security events are defined here.
"""

# ─── Outcomes ────────────────────────────────────────────

OUTCOME_ALLOWED = "allowed"
OUTCOME_DENIED = "denied"
OUTCOME_FAILED = "failed"

# ─── Security events ─────────────────────────────────────

REFRESH_TOKEN_REUSE = "auth.refresh_reuse_detected"
SESSIONS_REVOKED_ALL = "auth.sessions_revoked_all"

# ─── Operator (CLI) actions ──────────────────────────────

USER_CREATED = "user.create"
