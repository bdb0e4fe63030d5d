"""
API tests for registration, login and password reset.
"""

from datetime import timedelta

import pytest

from helpers import create_shop, login, register
from kaching.config import settings
from kaching.db import utcnow
from kaching.dependencies import get_db


@pytest.fixture
def sent_resets(monkeypatch):
    """Capture password reset emails instead of logging them."""
    sent = []

    async def fake_send(email, token):
        sent.append((email, token))

    monkeypatch.setattr("kaching.routes.auth.send_password_reset_email", fake_send)
    return sent


class TestRegister:
    """Tests for POST /api/auth/register."""

    def test_creates_account(self, client):
        """Registration lowercases the email and never returns the password hash."""
        response = client.post("/api/auth/register", json={
            "email": "Owner@Example.com",
            "password": "correct-horse",
            "confirm_password": "correct-horse",
            "name": "Owner",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Account created successfully"
        assert body["user"]["email"] == "owner@example.com"
        assert "password_hash" not in body["user"]

    def test_duplicate_email_rejected(self, client):
        """An email already on file, in any case, is a 409."""
        register(client, "owner@example.com")

        response = client.post("/api/auth/register", json={
            "email": "OWNER@example.com",
            "password": "correct-horse",
            "confirm_password": "correct-horse",
        })

        assert response.status_code == 409
        assert response.json()["detail"] == "Email already registered"

    @pytest.mark.parametrize("password,confirm,detail", [
        ("short", "short", "Password must be at least 8 characters"),
        ("correct-horse", "correct-horsf", "Passwords must match"),
    ])
    def test_password_rules(self, client, password, confirm, detail):
        """Short or mismatched passwords are rejected before anything is stored."""
        response = client.post("/api/auth/register", json={
            "email": "owner@example.com", "password": password, "confirm_password": confirm,
        })

        assert response.status_code == 400
        assert response.json()["detail"] == detail

    def test_lost_registration_race_is_conflict(self, client, monkeypatch):
        """A duplicate that slips past the lookup is still answered with 409."""
        register(client, "owner@example.com")

        async def not_found(email):
            return None

        monkeypatch.setattr(get_db(), "get_user_by_email", not_found)

        response = client.post("/api/auth/register", json={
            "email": "owner@example.com", "password": "correct-horse", "confirm_password": "correct-horse",
        })

        assert response.status_code == 409
        assert response.json()["detail"] == "Email already registered"

    def test_invalid_email_rejected(self, client):
        """A malformed email fails request validation."""
        response = client.post("/api/auth/register", json={
            "email": "not-an-email", "password": "correct-horse", "confirm_password": "correct-horse",
        })

        assert response.status_code == 422


class TestLogin:
    """Tests for login, logout and /me."""

    def test_login_sets_session(self, client):
        """Logging in sets the session cookie that /me then accepts."""
        register(client, "owner@example.com", name="Owner")

        body = login(client, "owner@example.com")

        assert body["user"]["name"] == "Owner"
        assert body["shops"] == []
        assert body["active_shop_id"] is None

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["user"]["email"] == "owner@example.com"

    def test_login_picks_first_shop(self, client):
        """A user with shops starts the session in their first one."""
        register(client, "owner@example.com")
        login(client, "owner@example.com")
        shop = create_shop(client)

        body = login(client, "owner@example.com")

        assert body["active_shop_id"] == shop["id"]
        assert body["shops"][0]["role"] == "OWNER"

    def test_wrong_password(self, client):
        """A bad password gets the generic credentials message."""
        register(client, "owner@example.com")

        response = client.post("/api/auth/login", json={
            "email": "owner@example.com", "password": "wrong-horse",
        })

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_unknown_email_same_answer(self, client):
        """An unknown email gets the same message as a bad password."""
        response = client.post("/api/auth/login", json={
            "email": "nobody@example.com", "password": "correct-horse",
        })

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_rate_limited_after_five_attempts(self, client):
        """The sixth attempt in the window is refused with Retry-After."""
        register(client, "owner@example.com")
        for _ in range(5):
            client.post("/api/auth/login", json={"email": "owner@example.com", "password": "wrong-horse"})

        response = client.post("/api/auth/login", json={
            "email": "owner@example.com", "password": "correct-horse",
        })

        assert response.status_code == 429
        assert response.json()["detail"] == "Too many login attempts. Please try again later."
        assert int(response.headers["Retry-After"]) > 0

    def test_forwarded_header_ignored_without_trusted_proxy(self, client):
        """Rotating X-Forwarded-For does not reset the per-client budget."""
        register(client, "owner@example.com")
        statuses = [
            client.post(
                "/api/auth/login",
                json={"email": "owner@example.com", "password": "wrong-horse"},
                headers={"X-Forwarded-For": f"10.0.0.{i}"},
            ).status_code
            for i in range(6)
        ]

        assert statuses == [401, 401, 401, 401, 401, 429]

    def test_forwarded_header_used_behind_trusted_proxy(self, client, monkeypatch):
        """Behind a trusted proxy each forwarded client has its own budget."""
        monkeypatch.setattr(settings, "trusted_proxies", "testclient")
        register(client, "owner@example.com")
        bad = {"email": "owner@example.com", "password": "wrong-horse"}
        for _ in range(5):
            client.post("/api/auth/login", json=bad, headers={"X-Forwarded-For": "203.0.113.7"})

        blocked = client.post("/api/auth/login", json=bad, headers={"X-Forwarded-For": "203.0.113.7"})
        other = client.post(
            "/api/auth/login", json=bad, headers={"X-Forwarded-For": "198.51.100.1, 203.0.113.9"}
        )

        assert blocked.status_code == 429
        assert other.status_code == 401

    def test_logout_ends_session(self, client):
        """Logging out deletes the session record."""
        register(client, "owner@example.com")
        login(client, "owner@example.com")

        assert client.post("/api/auth/logout").status_code == 200

        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_me_requires_session(self, client):
        """/me without a cookie is a 401."""
        assert client.get("/api/auth/me").status_code == 401


class TestPasswordReset:
    """Tests for the password reset flow."""

    def test_unknown_email_gets_same_answer(self, client, sent_resets):
        """Reset requests do not reveal whether an account exists."""
        response = client.post("/api/auth/password-reset/request", json={"email": "nobody@example.com"})

        assert response.status_code == 200
        assert response.json()["message"] == "If account exists, reset email has been sent"
        assert sent_resets == []

    def test_reset_changes_password_and_revokes_sessions(self, client, sent_resets):
        """A reset replaces the password and signs out every session."""
        register(client, "owner@example.com")
        login(client, "owner@example.com")

        client.post("/api/auth/password-reset/request", json={"email": "owner@example.com"})
        (email, token), = sent_resets
        assert email == "owner@example.com"

        response = client.post("/api/auth/password-reset/confirm", json={
            "token": token, "password": "battery-staple", "confirm_password": "battery-staple",
        })

        assert response.status_code == 200
        assert response.json()["message"] == "Password reset successfully"
        assert client.get("/api/auth/me").status_code == 401

        bad = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "correct-horse"})
        assert bad.status_code == 401
        login(client, "owner@example.com", "battery-staple")

    def test_token_single_use(self, client, sent_resets):
        """A reset token works once."""
        register(client, "owner@example.com")
        client.post("/api/auth/password-reset/request", json={"email": "owner@example.com"})
        token = sent_resets[0][1]
        payload = {"token": token, "password": "battery-staple", "confirm_password": "battery-staple"}

        assert client.post("/api/auth/password-reset/confirm", json=payload).status_code == 200

        again = client.post("/api/auth/password-reset/confirm", json=payload)
        assert again.status_code == 400
        assert again.json()["detail"] == "Invalid reset link"

    def test_new_request_invalidates_old_token(self, client, sent_resets):
        """Requesting a new reset link voids the previous one."""
        register(client, "owner@example.com")
        client.post("/api/auth/password-reset/request", json={"email": "owner@example.com"})
        client.post("/api/auth/password-reset/request", json={"email": "owner@example.com"})
        old_token = sent_resets[0][1]

        response = client.post("/api/auth/password-reset/confirm", json={
            "token": old_token, "password": "battery-staple", "confirm_password": "battery-staple",
        })

        assert response.status_code == 400

    def test_expired_token(self, client, sent_resets):
        """An expired reset token is refused with its own message."""
        register(client, "owner@example.com")
        client.post("/api/auth/password-reset/request", json={"email": "owner@example.com"})
        token = sent_resets[0][1]
        client.portal.call(
            get_db().execute,
            "UPDATE password_reset_tokens SET expires_at = ? WHERE token = ?",
            ((utcnow() - timedelta(minutes=1)).isoformat(timespec="microseconds"), token),
        )

        response = client.post("/api/auth/password-reset/confirm", json={
            "token": token, "password": "battery-staple", "confirm_password": "battery-staple",
        })

        assert response.status_code == 400
        assert response.json()["detail"] == "Reset link expired, request a new one"
