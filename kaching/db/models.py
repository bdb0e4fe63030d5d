"""
Pydantic models for database entities.
Integration tokens are stored encrypted (see kaching.crypto).
"""

import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Role of a user inside a shop."""
    OWNER = "OWNER"
    ACCOUNTANT = "ACCOUNTANT"
    PACKER = "PACKER"
    ADMIN = "ADMIN"


class Platform(str, Enum):
    """Marketplace a product or order came from."""
    SHOPEE = "SHOPEE"
    LAZADA = "LAZADA"
    TIKTOK = "TIKTOK"


class IntegrationStatus(str, Enum):
    """Health of a marketplace connection."""
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    DISCONNECTED = "DISCONNECTED"


class WebhookStatus(str, Enum):
    """Processing state of an inbound webhook."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def generate_token() -> str:
    """Generate a URL-safe secret token (64 hex chars)."""
    return secrets.token_hex(32)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===== Identity =====

class User(BaseModel):
    """An account holder."""
    id: str = Field(default_factory=generate_uuid)
    email: str
    name: Optional[str] = None
    password_hash: Optional[str] = None
    email_verified_at: Optional[datetime] = None
    image: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Account(BaseModel):
    """Federated login linked to a user (provider + provider account id)."""
    id: str = Field(default_factory=generate_uuid)
    user_id: str
    type: str = "oauth"
    provider: str
    provider_account_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # unix seconds
    token_type: Optional[str] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None


class AuthSession(BaseModel):
    """Server-side record backing a session cookie."""
    id: str = Field(default_factory=generate_uuid)
    session_token: str = Field(default_factory=generate_token)
    user_id: str
    expires_at: datetime
    active_shop_id: Optional[str] = None


class VerificationToken(BaseModel):
    """One-time token tied to an identifier (usually an email address)."""
    identifier: str
    token: str = Field(default_factory=generate_token)
    expires_at: datetime


class PasswordResetToken(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    user_id: str
    token: str = Field(default_factory=generate_token)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)


# ===== Tenancy =====

class Shop(BaseModel):
    """A tenant."""
    id: str = Field(default_factory=generate_uuid)
    name: str
    tin_number: str
    business_address: str
    contact_number: Optional[str] = None
    owner_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ShopCreate(BaseModel):
    """Input for creating a new shop."""
    name: str
    tin_number: str
    business_address: str
    contact_number: Optional[str] = None


class ShopUser(BaseModel):
    """Membership of a user in a shop."""
    id: str = Field(default_factory=generate_uuid)
    user_id: str
    shop_id: str
    role: UserRole
    joined_at: datetime = Field(default_factory=utcnow)


class Membership(BaseModel):
    """A membership joined with its shop, for listings."""
    shop_id: str
    shop_name: str
    role: UserRole
    joined_at: datetime
    member_count: int = 0


class Member(BaseModel):
    """A membership joined with its user, for team listings."""
    id: str
    user_id: str
    name: Optional[str]
    email: str
    role: UserRole
    joined_at: datetime


class Invitation(BaseModel):
    """Pending offer of a shop role to an email address."""
    id: str = Field(default_factory=generate_uuid)
    email: str
    shop_id: str
    role: UserRole
    token: str = Field(default_factory=generate_token)
    invited_by_id: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or utcnow())


# ===== Marketplace =====

class ShopeeIntegration(BaseModel):
    """Shopee credentials and health bookkeeping for a shop."""
    id: str = Field(default_factory=generate_uuid)
    shop_id: str
    access_token: str  # encrypted
    refresh_token: str  # encrypted
    expires_at: datetime
    shopee_shop_id: str
    status: IntegrationStatus = IntegrationStatus.HEALTHY
    last_sync_at: Optional[datetime] = None
    failure_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


class Product(BaseModel):
    """Shop-scoped catalog item."""
    id: str = Field(default_factory=generate_uuid)
    shop_id: str
    platform: Platform
    shopee_product_id: Optional[str] = None
    name: str
    sku: Optional[str] = None
    stock: int = 0
    price: Decimal = Decimal("0.00")
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Order(BaseModel):
    """Shop-scoped order record."""
    id: str = Field(default_factory=generate_uuid)
    shop_id: str
    platform: Platform
    shopee_order_id: str
    order_number: str
    total_amount: Decimal
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    order_date: datetime
    items: Any = Field(default_factory=list)
    status: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WebhookPayload(BaseModel):
    """Durable log of an inbound webhook delivery."""
    id: str = Field(default_factory=generate_uuid)
    shop_id: str
    platform: Platform
    event_type: str
    raw_payload: Any
    signature: Optional[str] = None
    status: WebhookStatus = WebhookStatus.PENDING
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Page(BaseModel):
    """A cursor-paginated slice of rows."""
    items: list
    next_cursor: Optional[str] = None
