"""Authentication and authorization.

Learn: Users sign in with email + password (bcrypt, see password.py) and
get a short-lived JWT access token (tokens.py) plus an opaque refresh
token. Only the refresh token's SHA-256 hash is stored, one
RefreshSession row per issued token, so it can be rotated and revoked.

Every request resolves a bearer token to an Identity (dependencies.py).
What that identity may do is decided by the pure role/action table in
policy.py; the Authorizer wraps it and audits admin-scoped decisions.
"""
