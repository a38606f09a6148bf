"""
CareNote Backend — Tenancy Service
====================================

What:  Queries and writes over the self-referential tenancy model.
How:   A tenant is {owner} ∪ {u : u.invited_by = owner.id}. Depth is fixed
       at one, so every query is a single indexed lookup on `invited_by`.

Operations:
    member_count_of(owner_id)    → |members| + 1 (the owner)
    list_members(owner_id)       → members, newest first
    get_member(owner, member_id) → a member of this owner, else NotFound
    get_billing_owner(user)      → user itself, or the user that invited it
    sync_workplace(owner)        → copies the owner's workplace to members
"""

import logging
import uuid
from typing import List

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.exceptions import NotFoundError
from carenote.models.user import User

logger = logging.getLogger(__name__)


class TenancyService:

    async def member_count_of(self, db: AsyncSession, owner_id: uuid.UUID) -> int:
        """Tenant headcount used for tier resolution, owner included."""
        result = await db.execute(
            select(func.count()).select_from(User).where(User.invited_by == owner_id)
        )
        return int(result.scalar_one()) + 1

    async def list_members(self, db: AsyncSession, owner_id: uuid.UUID) -> List[User]:
        result = await db.execute(
            select(User).where(User.invited_by == owner_id).order_by(User.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_member(self, db: AsyncSession, owner: User, member_id: uuid.UUID) -> User:
        result = await db.execute(
            select(User).where(User.id == member_id, User.invited_by == owner.id)
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFoundError(resource="member", resource_id=str(member_id))
        return member

    async def get_billing_owner(self, db: AsyncSession, user: User) -> User:
        """
        The user whose subscription gates `user`.

        Raises:
            NotFoundError: the inviter no longer exists (the FK sets
                invited_by to NULL on delete, so this only happens mid-delete).
        """
        if user.invited_by is None:
            return user
        owner = await db.get(User, user.invited_by)
        if owner is None:
            raise NotFoundError(resource="tenant owner", resource_id=str(user.invited_by))
        return owner

    async def sync_workplace(self, db: AsyncSession, owner: User) -> int:
        """Fan-out write of the owner's workplace to every member."""
        result = await db.execute(
            update(User)
            .where(User.invited_by == owner.id)
            .values(workplace=owner.workplace)
            .execution_options(synchronize_session="fetch")
        )
        updated = result.rowcount or 0
        logger.info("Synced workplace for %d members of owner %s", updated, owner.id)
        return updated


# ── Singleton Instance ────────────────────────────────────────────────────
tenancy_service = TenancyService()
