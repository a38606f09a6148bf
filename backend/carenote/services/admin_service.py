"""
CareNote Backend — Super Admin Console Service
================================================

What:  Cross-tenant user management and billing overrides for super admins.
How:   Plain queries over users/subscriptions. Super-admin accounts are
       never listed, modified or deleted through this service.
Who:   /api/admin routes (guarded by require_super_admin).
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.database import utcnow
from carenote.exceptions import NotFoundError, ValidationError
from carenote.models.subscription import Subscription
from carenote.models.user import ROLE_SUPER_ADMIN, User
from carenote.services.pricing import BILLING_INTERVALS, YEARLY
from carenote.services.subscription_service import subscription_service
from carenote.services.tenancy_service import tenancy_service

logger = logging.getLogger(__name__)

RECENT_REGISTRATION_DAYS = 7


class AdminService:

    # ── Users ─────────────────────────────────────────────────────────────
    async def list_users(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
    ) -> Tuple[List[Tuple[User, Optional[Subscription]]], int]:
        filters = [User.role != ROLE_SUPER_ADMIN]
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(
                User.name.ilike(pattern),
                User.email.ilike(pattern),
                User.workplace.ilike(pattern),
            ))

        total = (await db.execute(select(func.count()).select_from(User).where(*filters))).scalar_one()
        result = await db.execute(
            select(User, Subscription)
            .outerjoin(Subscription, Subscription.user_id == User.id)
            .where(*filters)
            .order_by(User.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return [(user, subscription) for user, subscription in result.all()], int(total)

    async def _get_managed_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        if user.is_super_admin:
            raise ValidationError(message="Super admin accounts cannot be managed here")
        return user

    async def user_details(self, db: AsyncSession, user_id: uuid.UUID) -> Dict[str, Any]:
        user = await self._get_managed_user(db, user_id)
        result = await db.execute(select(Subscription).where(Subscription.user_id == user.id))
        return {
            "user": user,
            "subscription": result.scalar_one_or_none(),
            "members": await tenancy_service.list_members(db, user.id) if user.is_owner else [],
            "member_count": await tenancy_service.member_count_of(db, user.id) if user.is_owner else None,
        }

    async def delete_user(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        """
        Delete a user and its subscription. Members it invited are detached
        and lose access until they join another clinic or subscribe.
        """
        user = await self._get_managed_user(db, user_id)

        await db.execute(
            update(User)
            .where(User.invited_by == user.id)
            .values(invited_by=None)
            .execution_options(synchronize_session="fetch")
        )
        result = await db.execute(select(Subscription).where(Subscription.user_id == user.id))
        subscription = result.scalar_one_or_none()
        if subscription is not None:
            user.subscription_id = None
            await db.flush()
            await db.delete(subscription)
        await db.delete(user)
        await db.flush()
        logger.info("Super admin deleted user %s", user_id)

    # ── Subscriptions ─────────────────────────────────────────────────────
    async def mark_subscription(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        status: str,
        period_start: datetime,
        period_end: datetime,
        billing_amount: int,
        billing_interval: str,
    ) -> Subscription:
        """Record an offline payment / manual billing state for an owner."""
        if billing_interval not in BILLING_INTERVALS:
            raise ValidationError(
                message=f"Billing interval must be one of: {', '.join(BILLING_INTERVALS)}",
                field="billing_interval",
            )
        user = await self._get_managed_user(db, user_id)
        subscription = await subscription_service.get_for_owner(db, user)
        subscription.mark(
            status=status,
            period_start=period_start,
            period_end=period_end,
            billing_amount=billing_amount,
            billing_interval=billing_interval,
            is_trial=False,
        )
        await db.flush()
        logger.info(
            "Super admin marked subscription %s: status=%s until %s",
            subscription.id, status, period_end.isoformat(),
        )
        return subscription

    async def extend_subscription(self, db: AsyncSession, user_id: uuid.UUID, days: int) -> Subscription:
        user = await self._get_managed_user(db, user_id)
        return await subscription_service.extend(db, user, days)

    # ── Analytics ─────────────────────────────────────────────────────────
    async def analytics(self, db: AsyncSession) -> Dict[str, Any]:
        not_admin = User.role != ROLE_SUPER_ADMIN

        async def count_users(*filters) -> int:
            result = await db.execute(select(func.count()).select_from(User).where(not_admin, *filters))
            return int(result.scalar_one())

        total = await count_users()
        active = await count_users(User.is_active.is_(True))
        owners = await count_users(User.is_company_admin.is_(True), User.invited_by.is_(None))
        members = await count_users(User.invited_by.is_not(None))
        recent = await count_users(
            User.created_at >= utcnow() - timedelta(days=RECENT_REGISTRATION_DAYS)
        )

        result = await db.execute(select(Subscription))
        subscriptions = list(result.scalars().all())
        now = utcnow()
        by_status: Dict[str, int] = {}
        trialing = paying = 0
        mrr = 0.0
        for subscription in subscriptions:
            by_status[subscription.status] = by_status.get(subscription.status, 0) + 1
            if not subscription.has_access(now):
                continue
            if subscription.is_trial:
                trialing += 1
                continue
            paying += 1
            amount = subscription.billing_amount
            mrr += amount / 12 if subscription.billing_interval == YEARLY else amount

        return {
            "users": {
                "total": total,
                "active": active,
                "owners": owners,
                "members": members,
                "new_registrations_7_days": recent,
            },
            "subscriptions": {
                "total": len(subscriptions),
                "by_status": by_status,
                "trialing": trialing,
                "paying": paying,
            },
            "monthly_recurring_revenue": round(mrr, 2),
        }


# ── Singleton Instance ────────────────────────────────────────────────────
admin_service = AdminService()
