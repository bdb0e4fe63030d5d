"""
Shared fixtures: a fresh SQLite store per test and an API client.
"""

from datetime import timedelta

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from helpers import PARTNER_ID, PARTNER_KEY
from kaching.config import settings
from kaching.crypto import encrypt_token
from kaching.db import ShopCreate, SQLiteDatabase, User, utcnow


@pytest_asyncio.fixture
async def db(tmp_path):
    database = SQLiteDatabase(str(tmp_path / "kaching.db"), max_webhook_retries=5)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def make_user(db):
    async def factory(email="owner@example.com", name="Owner"):
        return await db.create_user(User(email=email, name=name, password_hash="x"))
    return factory


@pytest.fixture
def make_shop(db):
    async def factory(owner_id, name="Sari-Sari Store"):
        return await db.create_shop_with_owner(
            ShopCreate(name=name, tin_number="123456789012", business_address="Manila"),
            owner_id,
        )
    return factory


@pytest.fixture
def connect_shopee(db):
    """Store an active integration with encrypted tokens."""
    async def factory(shop_id, shopee_shop_id="555", expires_in=timedelta(hours=4)):
        return await db.upsert_integration(
            shop_id,
            shopee_shop_id,
            encrypt_token("access-1"),
            encrypt_token("refresh-1"),
            utcnow() + expires_in,
        )
    return factory


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "database_path", str(tmp_path / "api.db"))
    monkeypatch.setattr(settings, "shopee_partner_id", PARTNER_ID)
    monkeypatch.setattr(settings, "shopee_partner_key", PARTNER_KEY)

    from kaching.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
