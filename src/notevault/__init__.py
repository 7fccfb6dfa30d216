"""NoteVault — notes service with a hardened auth core.

Email/password accounts with verification, short-lived JWT access
tokens, revocable refresh sessions, four-role authorization, and an
append-only audit trail for privileged actions.
"""

__version__ = "0.1.0"
