"""
Shop, membership and invitation storage.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional

from ..errors import BadRequestError, ConflictError
from .columns import to_db_datetime
from .models import (
    Invitation, Member, Membership, Shop, ShopCreate, ShopUser, UserRole, utcnow
)

# UserRole declaration order: OWNER, ACCOUNTANT, PACKER, ADMIN
ROLE_ORDER_SQL = (
    "CASE role WHEN 'OWNER' THEN 0 WHEN 'ACCOUNTANT' THEN 1 "
    "WHEN 'PACKER' THEN 2 WHEN 'ADMIN' THEN 3 ELSE 4 END"
)


class TenancyMixin:
    """Operations on tenants and their members."""

    # ===== Shop Operations =====

    async def create_shop_with_owner(self, data: ShopCreate, owner_id: str) -> Shop:
        """Create a shop and its OWNER membership atomically."""
        shop = Shop(owner_id=owner_id, **data.model_dump())
        membership = ShopUser(user_id=owner_id, shop_id=shop.id, role=UserRole.OWNER)

        async with self.transaction("IMMEDIATE"):
            await self.execute(
                """
                INSERT INTO shops (id, name, tin_number, business_address, contact_number,
                                   owner_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    shop.id,
                    shop.name,
                    shop.tin_number,
                    shop.business_address,
                    shop.contact_number,
                    shop.owner_id,
                    to_db_datetime(shop.created_at),
                    to_db_datetime(shop.updated_at)
                )
            )
            await self.add_member(membership)

        return shop

    async def get_shop(self, shop_id: str) -> Optional[Shop]:
        row = await self._fetch_one("SELECT * FROM shops WHERE id = ?", (shop_id,))
        return self._to_model(Shop, row)

    async def update_shop(self, shop_id: str, **kwargs) -> Optional[Shop]:
        if not kwargs:
            return await self.get_shop(shop_id)

        allowed = {"name", "tin_number", "business_address", "contact_number"}
        updates = []
        values = []
        for key, value in kwargs.items():
            if key not in allowed:
                raise ValueError(f"Unknown shop field: {key}")
            updates.append(f"{key} = ?")
            values.append(value)

        updates.append("updated_at = ?")
        values.append(to_db_datetime(utcnow()))
        values.append(shop_id)

        await self.execute(f"UPDATE shops SET {', '.join(updates)} WHERE id = ?", values)
        return await self.get_shop(shop_id)

    async def delete_shop(self, shop_id: str) -> bool:
        # Members, invitations, integration, catalog and webhooks cascade
        return await self.execute("DELETE FROM shops WHERE id = ?", (shop_id,)) > 0

    # ===== Membership Operations =====

    async def add_member(self, membership: ShopUser) -> ShopUser:
        try:
            await self.execute(
                """
                INSERT INTO shop_users (id, user_id, shop_id, role, joined_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    membership.id,
                    membership.user_id,
                    membership.shop_id,
                    membership.role.value,
                    to_db_datetime(membership.joined_at)
                )
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise ConflictError("User is already a member") from e
        return membership

    async def get_membership(self, user_id: str, shop_id: str) -> Optional[ShopUser]:
        row = await self._fetch_one(
            "SELECT * FROM shop_users WHERE user_id = ? AND shop_id = ?",
            (user_id, shop_id)
        )
        return self._to_model(ShopUser, row)

    async def get_member(self, member_id: str) -> Optional[ShopUser]:
        row = await self._fetch_one("SELECT * FROM shop_users WHERE id = ?", (member_id,))
        return self._to_model(ShopUser, row)

    async def find_member_by_email(self, shop_id: str, email: str) -> Optional[ShopUser]:
        row = await self._fetch_one(
            """
            SELECT su.* FROM shop_users su
            JOIN users u ON u.id = su.user_id
            WHERE su.shop_id = ? AND u.email = ?
            """,
            (shop_id, email)
        )
        return self._to_model(ShopUser, row)

    async def list_user_memberships(self, user_id: str) -> List[Membership]:
        """All shops a user belongs to, oldest membership first."""
        rows = await self.query_raw(
            """
            SELECT s.id AS shop_id, s.name AS shop_name, su.role, su.joined_at,
                   (SELECT COUNT(*) FROM shop_users m WHERE m.shop_id = s.id) AS member_count
            FROM shop_users su
            JOIN shops s ON s.id = su.shop_id
            WHERE su.user_id = ?
            ORDER BY su.joined_at ASC
            """,
            (user_id,)
        )
        return [Membership(**row) for row in rows]

    async def list_members(self, shop_id: str) -> List[Member]:
        rows = await self.query_raw(
            f"""
            SELECT su.id, su.user_id, u.name, u.email, su.role, su.joined_at
            FROM shop_users su
            JOIN users u ON u.id = su.user_id
            WHERE su.shop_id = ?
            ORDER BY {ROLE_ORDER_SQL}, su.joined_at ASC
            """,
            (shop_id,)
        )
        return [Member(**row) for row in rows]

    async def count_members(self, shop_id: str) -> int:
        row = await self._fetch_one(
            "SELECT COUNT(*) AS n FROM shop_users WHERE shop_id = ?", (shop_id,)
        )
        return row["n"]

    async def update_member_role(self, member_id: str, role: UserRole) -> Optional[ShopUser]:
        await self.execute(
            "UPDATE shop_users SET role = ? WHERE id = ?", (role.value, member_id)
        )
        return await self.get_member(member_id)

    async def remove_member(self, member_id: str) -> bool:
        return await self.execute("DELETE FROM shop_users WHERE id = ?", (member_id,)) > 0

    # ===== Invitation Operations =====

    async def create_invitation(self, invitation: Invitation) -> Invitation:
        await self.execute(
            """
            INSERT INTO invitations (id, email, shop_id, role, token, invited_by_id,
                                     expires_at, accepted_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                invitation.id,
                invitation.email,
                invitation.shop_id,
                invitation.role.value,
                invitation.token,
                invitation.invited_by_id,
                to_db_datetime(invitation.expires_at),
                to_db_datetime(invitation.accepted_at),
                to_db_datetime(invitation.created_at)
            )
        )
        return invitation

    async def get_invitation(self, invitation_id: str) -> Optional[Invitation]:
        row = await self._fetch_one("SELECT * FROM invitations WHERE id = ?", (invitation_id,))
        return self._to_model(Invitation, row)

    async def get_invitation_by_token(self, token: str) -> Optional[Invitation]:
        row = await self._fetch_one("SELECT * FROM invitations WHERE token = ?", (token,))
        return self._to_model(Invitation, row)

    async def find_pending_invitation(
        self,
        shop_id: str,
        email: str,
        now: Optional[datetime] = None
    ) -> Optional[Invitation]:
        row = await self._fetch_one(
            """
            SELECT * FROM invitations
            WHERE shop_id = ? AND email = ? COLLATE NOCASE
              AND accepted_at IS NULL AND expires_at > ?
            """,
            (shop_id, email, to_db_datetime(now or utcnow()))
        )
        return self._to_model(Invitation, row)

    async def list_pending_invitations(
        self,
        shop_id: str,
        now: Optional[datetime] = None
    ) -> List[Invitation]:
        rows = await self.query_raw(
            """
            SELECT * FROM invitations
            WHERE shop_id = ? AND accepted_at IS NULL AND expires_at > ?
            ORDER BY created_at DESC
            """,
            (shop_id, to_db_datetime(now or utcnow()))
        )
        return [self._to_model(Invitation, row) for row in rows]

    async def extend_invitation(self, invitation_id: str, expires_at: datetime) -> Optional[Invitation]:
        await self.execute(
            "UPDATE invitations SET expires_at = ? WHERE id = ?",
            (to_db_datetime(expires_at), invitation_id)
        )
        return await self.get_invitation(invitation_id)

    async def mark_invitation_accepted(self, invitation_id: str) -> None:
        await self.execute(
            "UPDATE invitations SET accepted_at = ? WHERE id = ?",
            (to_db_datetime(utcnow()), invitation_id)
        )

    async def delete_invitation(self, invitation_id: str) -> bool:
        return await self.execute("DELETE FROM invitations WHERE id = ?", (invitation_id,)) > 0

    async def accept_invitation(self, invitation: Invitation, user_id: str) -> ShopUser:
        """
        Mark the invitation accepted and create the membership in one transaction.

        The invitation is claimed with a conditional update, so of two
        concurrent accepts only one gets a membership.
        """
        membership = ShopUser(user_id=user_id, shop_id=invitation.shop_id, role=invitation.role)
        async with self.transaction("IMMEDIATE"):
            claimed = await self.execute(
                "UPDATE invitations SET accepted_at = ? WHERE id = ? AND accepted_at IS NULL",
                (to_db_datetime(utcnow()), invitation.id)
            )
            if not claimed:
                raise BadRequestError("Invitation already accepted")
            await self.add_member(membership)
        return membership
