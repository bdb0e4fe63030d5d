"""
Tests for passwords, sessions, rate limiting and role permissions.
"""

import pytest
from fastapi import FastAPI, Request, Response
from fastapi.testclient import TestClient

from kaching.auth import (
    ROLE_PERMISSIONS,
    SESSION_COOKIE_NAME,
    Permission,
    SessionManager,
    SlidingWindowLimiter,
    has_permission,
    hash_password,
    verify_password,
)
from kaching.db import UserRole


class TestPasswords:
    """Tests for bcrypt hashing."""

    def test_hash_and_verify(self):
        """Hashes verify the right password only."""
        hashed = hash_password("correct-horse")

        assert hashed != "correct-horse"
        assert verify_password("correct-horse", hashed)
        assert not verify_password("wrong-horse", hashed)

    def test_missing_hash_never_matches(self):
        """Users without a password hash cannot log in with a password."""
        assert not verify_password("anything", None)
        assert not verify_password("anything", "")


class TestPermissions:
    """Tests for the role permission table."""

    def test_owner_has_every_shop_permission(self):
        """OWNER holds every permission except system admin."""
        for permission in Permission:
            expected = permission != Permission.SYSTEM_ADMIN
            assert has_permission(UserRole.OWNER, permission) == expected

    def test_accountant_sees_financials_not_inventory(self):
        """ACCOUNTANT covers money, not stock or team."""
        assert has_permission(UserRole.ACCOUNTANT, Permission.ACCESS_FINANCIALS)
        assert has_permission("ACCOUNTANT", "canCreateExpenses")
        assert not has_permission(UserRole.ACCOUNTANT, Permission.ACCESS_INVENTORY)
        assert not has_permission(UserRole.ACCOUNTANT, Permission.MANAGE_TEAM)

    def test_packer_only_inventory(self):
        """PACKER only gets inventory."""
        granted = [name for name, allowed in ROLE_PERMISSIONS[UserRole.PACKER].items() if allowed]
        assert granted == ["canAccessInventory"]

    def test_unknown_role_or_permission_denied(self):
        """Unknown roles and permissions are denied."""
        assert not has_permission("SUPERUSER", Permission.MANAGE_TEAM)
        assert not has_permission(UserRole.OWNER, "canLaunchRockets")


class TestSlidingWindowLimiter:
    """Tests for the login rate limiter."""

    def test_blocks_after_limit(self):
        """The hit after the limit is refused with the reset time."""
        now = [1000.0]
        limiter = SlidingWindowLimiter(limit=3, window=60, clock=lambda: now[0])

        results = [limiter.hit("1.2.3.4") for _ in range(4)]

        assert [r.success for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].reset == 1060.0

    def test_window_slides(self):
        """Old hits leave the window one by one."""
        now = [1000.0]
        limiter = SlidingWindowLimiter(limit=2, window=60, clock=lambda: now[0])
        limiter.hit("ip")
        now[0] = 1030.0
        limiter.hit("ip")
        assert not limiter.hit("ip").success

        now[0] = 1060.0

        assert limiter.hit("ip").success
        assert not limiter.hit("ip").success

    def test_rejected_hits_not_counted(self):
        """Refused attempts do not extend the block."""
        now = [1000.0]
        limiter = SlidingWindowLimiter(limit=1, window=60, clock=lambda: now[0])
        limiter.hit("ip")
        for _ in range(10):
            now[0] += 5
            limiter.hit("ip")

        now[0] = 1060.0
        assert limiter.hit("ip").success

    def test_expired_keys_are_dropped(self):
        """Keys with no hits left in the window are forgotten."""
        now = [1000.0]
        limiter = SlidingWindowLimiter(limit=2, window=60, clock=lambda: now[0])
        for i in range(50):
            limiter.hit(f"10.0.0.{i}")
        assert len(limiter) == 50

        now[0] = 1060.0
        assert limiter.hit("192.168.1.1").success

        assert len(limiter) == 1

    def test_keys_are_independent(self):
        """Each key has its own budget and can be reset."""
        limiter = SlidingWindowLimiter(limit=1, window=60)
        assert limiter.hit("a").success
        assert limiter.hit("b").success
        assert not limiter.hit("a").success

        limiter.reset("a")
        assert limiter.hit("a").success


class TestSessionManager:
    """Tests for the signed session cookie."""

    @pytest.fixture
    def app(self):
        manager = SessionManager("secret-1")
        app = FastAPI()

        @app.post("/login")
        def login(response: Response):
            manager.create_session(response, "token-abc")
            return {}

        @app.get("/whoami")
        def whoami(request: Request):
            return {"token": manager.read_token(request)}

        @app.post("/logout")
        def logout(response: Response):
            manager.clear_session(response)
            return {}

        return app

    def test_cookie_round_trip(self, app):
        """The cookie carries a signed form of the token."""
        client = TestClient(app)

        response = client.post("/login")

        assert SESSION_COOKIE_NAME in response.cookies
        assert response.cookies[SESSION_COOKIE_NAME] != "token-abc"
        assert client.get("/whoami").json() == {"token": "token-abc"}

    def test_tampered_cookie_ignored(self, app):
        """An unsigned cookie is ignored."""
        client = TestClient(app)
        client.cookies.set(SESSION_COOKIE_NAME, "token-abc")

        assert client.get("/whoami").json() == {"token": None}

    def test_cookie_from_other_secret_ignored(self, app):
        """A cookie signed with another secret is ignored."""
        client = TestClient(app)
        other = SessionManager("secret-2")
        client.cookies.set(SESSION_COOKIE_NAME, other._serializer.dumps("token-abc"))

        assert client.get("/whoami").json() == {"token": None}

    def test_logout_clears_cookie(self, app):
        """Clearing the session removes the cookie."""
        client = TestClient(app)
        client.post("/login")

        client.post("/logout")

        assert client.get("/whoami").json() == {"token": None}
