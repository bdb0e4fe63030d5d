"""
Role-based permissions inside a shop.
"""

from enum import Enum
from typing import Dict, Union

from ..db.models import UserRole


class Permission(str, Enum):
    MANAGE_TEAM = "canManageTeam"
    MANAGE_SHOP = "canManageShop"
    ACCESS_FINANCIALS = "canAccessFinancials"
    ACCESS_INVENTORY = "canAccessInventory"
    CREATE_RECEIPTS = "canCreateReceipts"
    CREATE_EXPENSES = "canCreateExpenses"
    SYSTEM_ADMIN = "isSystemAdmin"


def _grant(*permissions: Permission) -> Dict[str, bool]:
    return {p.value: p in permissions for p in Permission}


ROLE_PERMISSIONS: Dict[UserRole, Dict[str, bool]] = {
    UserRole.OWNER: _grant(
        Permission.MANAGE_TEAM,
        Permission.MANAGE_SHOP,
        Permission.ACCESS_FINANCIALS,
        Permission.ACCESS_INVENTORY,
        Permission.CREATE_RECEIPTS,
        Permission.CREATE_EXPENSES,
    ),
    UserRole.ACCOUNTANT: _grant(
        Permission.ACCESS_FINANCIALS,
        Permission.CREATE_RECEIPTS,
        Permission.CREATE_EXPENSES,
    ),
    UserRole.PACKER: _grant(Permission.ACCESS_INVENTORY),
    # Platform staff; shop data access goes through separate tooling
    UserRole.ADMIN: _grant(Permission.SYSTEM_ADMIN),
}

ROLE_NAMES: Dict[UserRole, str] = {
    UserRole.OWNER: "Owner",
    UserRole.ACCOUNTANT: "Accountant",
    UserRole.PACKER: "Packer",
    UserRole.ADMIN: "Admin",
}

ROLE_DESCRIPTIONS: Dict[UserRole, str] = {
    UserRole.OWNER: "Full access to all shop features and settings",
    UserRole.ACCOUNTANT: "Can manage receipts, expenses, and view financial reports",
    UserRole.PACKER: "Can view and manage inventory only",
    UserRole.ADMIN: "System administrator with cross-shop access",
}


def has_permission(role: Union[UserRole, str], permission: Union[Permission, str]) -> bool:
    """Unknown roles and unknown permissions are denied."""
    try:
        role = UserRole(role)
        permission = Permission(permission)
    except ValueError:
        return False
    return ROLE_PERMISSIONS[role][permission.value]
