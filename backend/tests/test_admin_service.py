"""
CareNote Backend — Admin Console Service Tests
================================================

What we test:
    ✅ User listing hides super admins and supports search
    ✅ Marking an offline payment activates the subscription
    ✅ MRR counts paying subscriptions, yearly amounts divided by 12
    ✅ Deleting an owner detaches its members
    ❌ Super admin accounts cannot be managed
    ❌ Unknown billing interval → ValidationError
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from carenote.database import utcnow
from carenote.exceptions import NotFoundError, ValidationError
from carenote.models.subscription import Subscription
from carenote.models.user import User
from carenote.services.admin_service import admin_service


class TestUsers:

    @pytest.mark.asyncio
    async def test_list_hides_super_admins(self, db_session, make_owner, make_super_admin):
        await make_owner()
        await make_owner(email="syd@klinik.dk", workplace="Klinik Syd")
        await make_super_admin()

        users, total = await admin_service.list_users(db_session)
        assert total == 2
        assert all(not user.is_super_admin for user, _ in users)
        assert all(subscription is not None for _, subscription in users)

        found, total = await admin_service.list_users(db_session, search="syd")
        assert total == 1
        assert found[0][0].email == "syd@klinik.dk"

    @pytest.mark.asyncio
    async def test_super_admin_cannot_be_managed(self, db_session, make_super_admin):
        admin = await make_super_admin()
        with pytest.raises(ValidationError):
            await admin_service.user_details(db_session, admin.id)

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFoundError):
            await admin_service.user_details(db_session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_delete_owner_detaches_members(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        owner_id = owner.id

        await admin_service.delete_user(db_session, owner_id)
        await db_session.commit()

        assert await db_session.get(User, owner_id) is None
        await db_session.refresh(member)
        assert member.invited_by is None
        remaining = await db_session.execute(
            select(Subscription).where(Subscription.user_id == owner_id)
        )
        assert remaining.scalar_one_or_none() is None


class TestBilling:

    @pytest.mark.asyncio
    async def test_mark_subscription_and_mrr(self, db_session, make_owner):
        owner = await make_owner(num_licenses=5, billing_interval="yearly")
        now = utcnow()

        subscription = await admin_service.mark_subscription(
            db_session, owner.id,
            status="active",
            period_start=now,
            period_end=now + timedelta(days=365),
            billing_amount=25680,
            billing_interval="yearly",
        )
        await db_session.commit()

        assert subscription.status == "active"
        assert subscription.is_trial is False
        assert subscription.has_access()

        stats = await admin_service.analytics(db_session)
        assert stats["subscriptions"]["paying"] == 1
        assert stats["subscriptions"]["trialing"] == 0
        assert stats["monthly_recurring_revenue"] == 2140.0

    @pytest.mark.asyncio
    async def test_trials_do_not_count_towards_mrr(self, db_session, make_owner):
        await make_owner()
        stats = await admin_service.analytics(db_session)
        assert stats["subscriptions"]["trialing"] == 1
        assert stats["monthly_recurring_revenue"] == 0.0

    @pytest.mark.asyncio
    async def test_mark_unknown_interval(self, db_session, make_owner):
        owner = await make_owner()
        now = utcnow()
        with pytest.raises(ValidationError):
            await admin_service.mark_subscription(
                db_session, owner.id, status="active", period_start=now,
                period_end=now + timedelta(days=30), billing_amount=559, billing_interval="weekly",
            )

    @pytest.mark.asyncio
    async def test_extend(self, db_session, make_owner):
        owner = await make_owner()
        subscription = await admin_service.extend_subscription(db_session, owner.id, 30)
        assert subscription.days_remaining() >= 39
