"""
CareNote Backend — Subscription Service
=========================================

What:  Persistence-aware wrapper around the Subscription lifecycle.
How:   Loads the billing owner's subscription, calls the entity's transition
       methods and flushes. Every tier change goes through the resolver via
       `Subscription.apply_plan`; nothing here sets `num_licenses` directly.
Who:   AuthService (create at registration), InvitationService (auto-upgrade),
       subscription routes and the admin console.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.config import settings
from carenote.exceptions import ConflictError, NotFoundError, ValidationError
from carenote.models.subscription import Subscription
from carenote.models.user import User
from carenote.services.pricing import resolve_license_plan
from carenote.services.tenancy_service import tenancy_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanSnapshot:
    num_licenses: int
    price_per_license: int
    pricing_tier: str
    billing_amount: int
    billing_interval: str

    @classmethod
    def of(cls, subscription: Subscription) -> "PlanSnapshot":
        return cls(
            num_licenses=subscription.num_licenses,
            price_per_license=subscription.price_per_license,
            pricing_tier=subscription.pricing_tier,
            billing_amount=subscription.billing_amount,
            billing_interval=subscription.billing_interval,
        )


@dataclass(frozen=True)
class PlanChange:
    """Before/after breakdown reported to the tenant owner."""
    before: PlanSnapshot
    after: PlanSnapshot
    member_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "before": asdict(self.before),
            "after": asdict(self.after),
            "member_count": self.member_count,
        }


class SubscriptionService:

    # ── Lookups ───────────────────────────────────────────────────────────
    async def get_for_owner(self, db: AsyncSession, owner: User) -> Subscription:
        subscription = None
        if owner.subscription_id is not None:
            subscription = await db.get(Subscription, owner.subscription_id)
        if subscription is None:
            result = await db.execute(select(Subscription).where(Subscription.user_id == owner.id))
            subscription = result.scalar_one_or_none()
        if subscription is None:
            raise NotFoundError(resource="subscription", context={"user_id": str(owner.id)})
        return subscription

    async def get_for_user(self, db: AsyncSession, user: User) -> Subscription:
        """The subscription that gates `user` (its own, or its owner's)."""
        owner = await tenancy_service.get_billing_owner(db, user)
        return await self.get_for_owner(db, owner)

    # ── Create ────────────────────────────────────────────────────────────
    async def create_trial(
        self,
        db: AsyncSession,
        owner: User,
        num_licenses: int = 1,
        interval: str = "monthly",
        trial_end: Optional[datetime] = None,
    ) -> Subscription:
        """
        Create the owner's one and only subscription, in trial.

        Raises:
            ValidationError: owner is an invited member, or license count out of range.
            ConflictError: the owner already has a subscription.
        """
        if owner.invited_by is not None:
            raise ValidationError(message="Invited members cannot hold their own subscription")
        self._check_license_range(num_licenses)

        existing = await db.execute(select(Subscription.id).where(Subscription.user_id == owner.id))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(message="A subscription already exists for this account")

        plan = resolve_license_plan(num_licenses, interval)
        subscription = Subscription.start_trial(
            owner_id=owner.id,
            plan=plan,
            trial_days=settings.trial_days,
            trial_end=trial_end,
        )
        db.add(subscription)
        await db.flush()
        owner.subscription_id = subscription.id

        logger.info(
            "Created trial subscription %s for %s: tier=%s capacity=%d amount=%d",
            subscription.id, owner.id, plan.tier_label, plan.capacity, plan.billing_amount,
        )
        return subscription

    # ── Tier changes ──────────────────────────────────────────────────────
    async def ensure_capacity(
        self, db: AsyncSession, subscription: Subscription, member_count: int
    ) -> Optional[PlanChange]:
        """
        Auto-upgrade when `member_count` exceeds the current capacity.

        Never downgrades. Returns the change, or None when nothing moved.
        """
        if member_count <= subscription.num_licenses:
            return None
        before = PlanSnapshot.of(subscription)
        plan = resolve_license_plan(member_count, subscription.billing_interval)
        subscription.apply_plan(plan)
        await db.flush()
        change = PlanChange(before=before, after=PlanSnapshot.of(subscription), member_count=member_count)
        logger.info(
            "Auto-upgraded subscription %s from %s (%d) to %s (%d) for %d members",
            subscription.id, before.pricing_tier, before.num_licenses,
            plan.tier_label, plan.capacity, member_count,
        )
        return change

    async def change_plan(
        self,
        db: AsyncSession,
        owner: User,
        num_licenses: int,
        interval: Optional[str] = None,
    ) -> PlanChange:
        """
        Owner-requested license count or interval change.

        Raises:
            ValidationError: fewer licenses than current members, or out of range.
        """
        self._check_license_range(num_licenses)
        subscription = await self.get_for_owner(db, owner)
        member_count = await tenancy_service.member_count_of(db, owner.id)
        if num_licenses < member_count:
            raise ValidationError(
                message=f"License count must be at least the current member count ({member_count})",
                field="num_licenses",
            )

        before = PlanSnapshot.of(subscription)
        plan = resolve_license_plan(num_licenses, interval or subscription.billing_interval)
        subscription.apply_plan(plan)
        await db.flush()
        return PlanChange(before=before, after=PlanSnapshot.of(subscription), member_count=member_count)

    # ── State transitions ─────────────────────────────────────────────────
    async def cancel(self, db: AsyncSession, owner: User, cancelled_by: User) -> Subscription:
        subscription = await self.get_for_owner(db, owner)
        subscription.cancel(by=cancelled_by.id)
        await db.flush()
        logger.info("Subscription %s cancelled by %s", subscription.id, cancelled_by.id)
        return subscription

    async def reactivate(self, db: AsyncSession, owner: User) -> Subscription:
        subscription = await self.get_for_owner(db, owner)
        subscription.reactivate()
        await db.flush()
        logger.info("Subscription %s reactivated", subscription.id)
        return subscription

    async def extend(self, db: AsyncSession, owner: User, days: int) -> Subscription:
        subscription = await self.get_for_owner(db, owner)
        subscription.extend(days)
        await db.flush()
        logger.info("Subscription %s extended by %d days", subscription.id, days)
        return subscription

    # ── Summary ───────────────────────────────────────────────────────────
    async def summary_for(self, db: AsyncSession, user: User) -> Dict[str, Any]:
        owner = await tenancy_service.get_billing_owner(db, user)
        subscription = await self.get_for_owner(db, owner)
        member_count = await tenancy_service.member_count_of(db, owner.id)
        return {
            "subscription": subscription,
            "has_access": subscription.has_access(),
            "days_remaining": subscription.days_remaining(),
            "member_count": member_count,
            "available_seats": max(0, subscription.num_licenses - member_count),
            "is_owner": owner.id == user.id,
        }

    @staticmethod
    def _check_license_range(num_licenses: int) -> None:
        if num_licenses < 1 or num_licenses > settings.max_licenses:
            raise ValidationError(
                message=f"Number of licenses must be between 1 and {settings.max_licenses}",
                field="num_licenses",
            )


# ── Singleton Instance ────────────────────────────────────────────────────
subscription_service = SubscriptionService()
