"""
Database package - SQLite only.
"""

from .models import (
    Account, AuthSession, IntegrationStatus, Invitation, Member, Membership, Order,
    Page, PasswordResetToken, Platform, Product, Shop, ShopCreate, ShopUser,
    ShopeeIntegration, User, UserRole, VerificationToken, WebhookPayload,
    WebhookStatus, generate_token, generate_uuid, utcnow
)
from .sqlite import SQLiteDatabase

__all__ = [
    "SQLiteDatabase",
    "Account",
    "AuthSession",
    "IntegrationStatus",
    "Invitation",
    "Member",
    "Membership",
    "Order",
    "Page",
    "PasswordResetToken",
    "Platform",
    "Product",
    "Shop",
    "ShopCreate",
    "ShopUser",
    "ShopeeIntegration",
    "User",
    "UserRole",
    "VerificationToken",
    "WebhookPayload",
    "WebhookStatus",
    "generate_token",
    "generate_uuid",
    "utcnow",
]
