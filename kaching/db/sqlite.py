"""
SQLite database implementation.
Simple and direct: one connection, explicit transactions, plain SQL.
"""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

import aiosqlite
from pydantic import BaseModel

from .commerce import CommerceMixin
from .identity import IdentityMixin
from .models import Page
from .tenancy import TenancyMixin

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

ISOLATION_LEVELS = ("DEFERRED", "IMMEDIATE", "EXCLUSIVE")

# Set while the current task is inside SQLiteDatabase.transaction()
_in_transaction: ContextVar[bool] = ContextVar("kaching_in_transaction", default=False)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        name TEXT,
        password_hash TEXT,
        email_verified_at TEXT,
        image TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        provider TEXT NOT NULL,
        provider_account_id TEXT NOT NULL,
        access_token TEXT,
        refresh_token TEXT,
        expires_at INTEGER,
        token_type TEXT,
        scope TEXT,
        id_token TEXT,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(provider, provider_account_id)
    );

    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        session_token TEXT NOT NULL UNIQUE,
        user_id TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        active_shop_id TEXT,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS verification_tokens (
        identifier TEXT NOT NULL,
        token TEXT NOT NULL UNIQUE,
        expires_at TEXT NOT NULL,
        UNIQUE(identifier, token)
    );

    CREATE TABLE IF NOT EXISTS password_reset_tokens (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        token TEXT NOT NULL UNIQUE,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS shops (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        tin_number TEXT NOT NULL,
        business_address TEXT NOT NULL,
        contact_number TEXT,
        owner_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS shop_users (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        shop_id TEXT NOT NULL,
        role TEXT NOT NULL,
        joined_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (shop_id) REFERENCES shops(id) ON DELETE CASCADE,
        UNIQUE(user_id, shop_id)
    );

    CREATE TABLE IF NOT EXISTS invitations (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        shop_id TEXT NOT NULL,
        role TEXT NOT NULL,
        token TEXT NOT NULL UNIQUE,
        invited_by_id TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        accepted_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (shop_id) REFERENCES shops(id) ON DELETE CASCADE,
        FOREIGN KEY (invited_by_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS shopee_integrations (
        id TEXT PRIMARY KEY,
        shop_id TEXT NOT NULL UNIQUE,
        access_token TEXT NOT NULL,
        refresh_token TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        shopee_shop_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'HEALTHY',
        last_sync_at TEXT,
        failure_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted_at TEXT,
        FOREIGN KEY (shop_id) REFERENCES shops(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS products (
        id TEXT PRIMARY KEY,
        shop_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        shopee_product_id TEXT,
        name TEXT NOT NULL,
        sku TEXT,
        stock INTEGER NOT NULL DEFAULT 0,
        price TEXT NOT NULL,
        image_url TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (shop_id) REFERENCES shops(id) ON DELETE CASCADE,
        UNIQUE(shop_id, shopee_product_id)
    );

    CREATE TABLE IF NOT EXISTS orders (
        id TEXT PRIMARY KEY,
        shop_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        shopee_order_id TEXT NOT NULL,
        order_number TEXT NOT NULL,
        total_amount TEXT NOT NULL,
        customer_name TEXT NOT NULL,
        customer_email TEXT,
        customer_phone TEXT,
        shipping_address TEXT,
        order_date TEXT NOT NULL,
        items TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (shop_id) REFERENCES shops(id) ON DELETE CASCADE,
        UNIQUE(shop_id, shopee_order_id)
    );

    CREATE TABLE IF NOT EXISTS webhook_payloads (
        id TEXT PRIMARY KEY,
        shop_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        event_type TEXT NOT NULL,
        raw_payload TEXT NOT NULL,
        signature TEXT,
        status TEXT NOT NULL DEFAULT 'PENDING',
        processed_at TEXT,
        error_message TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (shop_id) REFERENCES shops(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_shop_users_shop_id ON shop_users(shop_id);
    CREATE INDEX IF NOT EXISTS idx_invitations_shop_email ON invitations(shop_id, email);
    CREATE INDEX IF NOT EXISTS idx_integrations_status ON shopee_integrations(status);
    CREATE INDEX IF NOT EXISTS idx_integrations_shopee_shop ON shopee_integrations(shopee_shop_id);
    CREATE INDEX IF NOT EXISTS idx_products_shop_updated ON products(shop_id, updated_at DESC);
    CREATE INDEX IF NOT EXISTS idx_orders_shop_date ON orders(shop_id, order_date DESC);
    CREATE INDEX IF NOT EXISTS idx_webhooks_shop_id ON webhook_payloads(shop_id);
    CREATE INDEX IF NOT EXISTS idx_webhooks_status ON webhook_payloads(status);
    CREATE INDEX IF NOT EXISTS idx_webhooks_event_type ON webhook_payloads(event_type);
    CREATE INDEX IF NOT EXISTS idx_webhooks_created_at ON webhook_payloads(created_at);
"""


class SQLiteDatabase(IdentityMixin, TenancyMixin, CommerceMixin):
    """SQLite database for all operations."""

    def __init__(self, db_path: str, max_webhook_retries: int = 5):
        self.db_path = db_path
        self.max_webhook_retries = max_webhook_retries
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()  # one statement or transaction at a time

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            if self.db_path != ":memory:":
                os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
            # Autocommit mode; multi-statement units go through transaction()
            self._connection = await aiosqlite.connect(self.db_path, isolation_level=None)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    async def initialize(self) -> None:
        """Create database tables."""
        conn = await self._get_connection()
        await conn.executescript(SCHEMA)
        logger.debug(f"Database schema ready at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # ===== Raw Interface =====

    @asynccontextmanager
    async def _use_connection(self):
        """Take the connection, or reuse it when this task already holds a transaction."""
        conn = await self._get_connection()
        if _in_transaction.get():
            yield conn
            return
        async with self._lock:
            yield conn

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the number of affected rows."""
        async with self._use_connection() as conn:
            cursor = await conn.execute(sql, params)
            return cursor.rowcount

    async def query_raw(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a read statement and return rows as dicts."""
        async with self._use_connection() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        async with self._use_connection() as conn:
            cursor = await conn.execute(sql, params)
            row = await cursor.fetchone()
        return dict(row) if row else None

    @asynccontextmanager
    async def transaction(self, isolation_level: str = "DEFERRED"):
        """
        Run a block of statements atomically.

        Commits when the block exits normally and rolls back when it raises.
        Transactions cannot be nested.
        """
        level = isolation_level.upper()
        if level not in ISOLATION_LEVELS:
            raise ValueError(f"Unsupported isolation level: {isolation_level}")
        if _in_transaction.get():
            raise RuntimeError("Nested transactions are not supported")

        conn = await self._get_connection()
        async with self._lock:
            token = _in_transaction.set(True)
            try:
                await conn.execute(f"BEGIN {level}")
                try:
                    yield self
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT")
            finally:
                _in_transaction.reset(token)

    # ===== Helper Methods =====

    @staticmethod
    def _to_model(
        model: Type[M],
        row: Optional[Dict[str, Any]],
        json_fields: Iterable[str] = ()
    ) -> Optional[M]:
        """Convert a database row to a model, decoding JSON columns."""
        if row is None:
            return None
        data = dict(row)
        for field in json_fields:
            if data.get(field) is not None:
                data[field] = json.loads(data[field])
        return model(**data)

    async def _paginate(
        self,
        model: Type[M],
        table: str,
        where: str,
        params: List[Any],
        order_column: str,
        cursor: Optional[str],
        limit: int,
        json_fields: Iterable[str] = ()
    ) -> Page:
        """
        Keyset pagination over (order_column DESC, id DESC).

        The cursor is the id of the first row of the next page.
        """
        query = f"SELECT * FROM {table} WHERE {where}"
        values = list(params)

        if cursor:
            anchor = await self._fetch_one(
                f"SELECT {order_column} AS k FROM {table} WHERE id = ? AND {where}",
                [cursor, *params]
            )
            if anchor is None:
                raise ValueError(f"Unknown cursor: {cursor}")
            query += f" AND ({order_column} < ? OR ({order_column} = ? AND id <= ?))"
            values.extend([anchor["k"], anchor["k"], cursor])

        query += f" ORDER BY {order_column} DESC, id DESC LIMIT ?"
        values.append(limit + 1)

        rows = await self.query_raw(query, values)
        next_cursor = None
        if len(rows) > limit:
            next_cursor = rows[limit]["id"]
            rows = rows[:limit]

        return Page(
            items=[self._to_model(model, row, json_fields) for row in rows],
            next_cursor=next_cursor
        )
