"""
Shared helpers for NoteVault examples.

Handles the gateway header and authentication so each example can
focus on its specific workflow.
"""

import os
import sys

import httpx

BASE = os.environ.get("NOTEVAULT_BASE", "http://localhost:8000/api/v1")
INTERNAL_KEY = os.environ.get("NOTEVAULT_INTERNAL_API_KEY", "dev-internal-key")
GATEWAY_HEADERS = {"X-Internal-Key": INTERNAL_KEY}


def check_backend() -> None:
    """Verify the backend is reachable and ready."""
    try:
        resp = httpx.get(f"{BASE}/ready", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {BASE}")
        print("Start it with:  uvicorn notevault.main:app --reload --port 8000")
        sys.exit(1)

    checks = resp.json()["data"] or {}
    print("Backend readiness:")
    print(f"  Database: {'✓' if checks.get('database') == 'ok' else '✗'}")
    if "redis" in checks:
        print(f"  Redis:    {'✓' if checks['redis'] == 'ok' else '✗'}")

    if resp.status_code != 200:
        print("\nERROR: Database is not connected. Start it with: docker compose up -d")
        sys.exit(1)


def new_client(token: str | None = None) -> httpx.Client:
    """httpx Client that passes the gateway, optionally with a bearer token."""
    headers = dict(GATEWAY_HEADERS)
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.Client(base_url=BASE, timeout=10, headers=headers)


def expect(resp: httpx.Response, status: int) -> dict:
    """Assert a status code and unwrap the envelope's data."""
    if resp.status_code != status:
        body = resp.json()
        errors = ", ".join(f"{e['code']}: {e['message']}" for e in body.get("errors", []))
        print(f"ERROR: {resp.request.method} {resp.request.url.path} → {resp.status_code} ({errors})")
        sys.exit(1)
    return resp.json()["data"]


def login(email: str, password: str) -> dict:
    """Login and return the token pair (with the user)."""
    with new_client() as client:
        return expect(client.post("/auth/login", json={"email": email, "password": password}), 200)
