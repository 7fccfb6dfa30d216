#!/usr/bin/env python3
"""
NoteVault Quickstart — the account lifecycle in one script.

Signs up → verifies the emailed token → logs in → creates and pages
through notes → refreshes → logs out.
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:8000

With the default log mail backend nothing is actually sent; paste the
verification token when prompted (or run the API with an HTTP mail
backend and copy it from the message).
"""

import uuid

from _common import check_backend, expect, login, new_client

PASSWORD = "demo-password-123"


def main():
    run_id = uuid.uuid4().hex[:6]
    email = f"demo-{run_id}@example.com"

    print("Checking backend...")
    check_backend()

    # ── Signup ────────────────────────────────────────────────────
    print("\n1. Signing up...")
    with new_client() as client:
        user = expect(client.post("/auth/signup", json={
            "email": email,
            "password": PASSWORD,
            "confirm_password": PASSWORD,
        }), 201)
    print(f"   User: {user['email']} ({user['status']})")

    # ── Verify ────────────────────────────────────────────────────
    print("\n2. Verifying email...")
    token = input("   Verification token: ").strip()
    with new_client() as client:
        user = expect(client.post("/auth/verify-email", json={"token": token}), 200)
    print(f"   Status: {user['status']}")

    # ── Login ─────────────────────────────────────────────────────
    print("\n3. Logging in...")
    tokens = login(email, PASSWORD)
    print(f"   Access token expires in {tokens['expires_in']}s")

    # ── Notes ─────────────────────────────────────────────────────
    print("\n4. Creating notes...")
    with new_client(tokens["access_token"]) as client:
        for i in range(5):
            note = expect(client.post("/notes", json={
                "title": f"Note {i + 1}",
                "content": f"Quickstart note number {i + 1}",
            }), 201)
            print(f"   Note: {note['title']} ({note['id'][:8]}...)")

        print("\n5. Paging through notes (2 per page)...")
        cursor, page = None, 1
        while True:
            params = {"limit": 2}
            if cursor:
                params["cursor"] = cursor
            data = expect(client.get("/notes", params=params), 200)
            print(f"   Page {page}: {[n['title'] for n in data['items']]}")
            cursor = data["next_cursor"]
            if not cursor:
                break
            page += 1

    # ── Refresh ───────────────────────────────────────────────────
    print("\n6. Refreshing the session...")
    with new_client() as client:
        fresh = expect(client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]}), 200)
    print("   New access token issued" + (" (refresh token rotated)" if fresh["refresh_token"] else ""))

    # ── Logout ────────────────────────────────────────────────────
    print("\n7. Logging out...")
    refresh_token = fresh["refresh_token"] or tokens["refresh_token"]
    with new_client() as client:
        expect(client.post("/auth/logout", json={"refresh_token": refresh_token}), 200)
        resp = client.post("/auth/refresh", json={"refresh_token": refresh_token})
    print(f"   Refresh after logout → {resp.status_code} {resp.json()['errors'][0]['code']}")

    print("\nDone.")


if __name__ == "__main__":
    main()
