"""
CareNote Backend — Authorization Tests
========================================

What:  Tests for the subscription gate (402) and the ownership gate.

What we test:
    ✅ Owner with a trial passes the gate; its members pass through it
    ✅ Super admin passes without a subscription
    ✅ Owner sees own and members' sessions; member sees only its own
    ✅ Super admin sees everything
    ❌ Member of an expired owner → PaymentRequiredError
    ❌ Cancelled owner → PaymentRequiredError(reason="cancelled")
    ❌ Stranger's session → NotFoundError (never Forbidden)
"""

import uuid
from datetime import timedelta

import pytest

from carenote.authorization import AccessContext, check_subscription_access
from carenote.database import utcnow
from carenote.exceptions import NotFoundError, PaymentRequiredError
from carenote.models.clinical_session import ClinicalSession
from carenote.services.session_service import session_service
from carenote.services.subscription_service import subscription_service


async def _add_session(db, user) -> ClinicalSession:
    session = ClinicalSession(
        user_id=user.id,
        corti_interaction_id=f"int-{uuid.uuid4()}",
        status="active",
        session_title="Konsultation",
        facts=[],
    )
    db.add(session)
    await db.commit()
    return session


class TestSubscriptionGate:

    @pytest.mark.asyncio
    async def test_owner_in_trial_passes(self, db_session, make_owner):
        owner = await make_owner()
        sub = await check_subscription_access(db_session, AccessContext.for_user(owner))
        assert sub.user_id == owner.id

    @pytest.mark.asyncio
    async def test_member_uses_owner_subscription(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        sub = await check_subscription_access(db_session, AccessContext.for_user(member))
        assert sub.user_id == owner.id

    @pytest.mark.asyncio
    async def test_member_of_expired_owner_is_blocked(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        sub = await subscription_service.get_for_owner(db_session, owner)
        sub.current_period_end = utcnow() - timedelta(seconds=1)
        await db_session.commit()

        with pytest.raises(PaymentRequiredError) as exc_info:
            await check_subscription_access(db_session, AccessContext.for_user(member))
        assert exc_info.value.reason == "expired"

    @pytest.mark.asyncio
    async def test_cancelled_owner_is_blocked(self, db_session, make_owner):
        owner = await make_owner()
        await subscription_service.cancel(db_session, owner, cancelled_by=owner)
        with pytest.raises(PaymentRequiredError) as exc_info:
            await check_subscription_access(db_session, AccessContext.for_user(owner))
        assert exc_info.value.reason == "cancelled"

    @pytest.mark.asyncio
    async def test_user_without_subscription_is_blocked(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        # A detached member has no billing owner other than itself
        member.detach_from_tenant()
        await db_session.commit()
        with pytest.raises(PaymentRequiredError) as exc_info:
            await check_subscription_access(db_session, AccessContext.for_user(member))
        assert exc_info.value.reason == "no_subscription"

    @pytest.mark.asyncio
    async def test_super_admin_bypasses_gate(self, db_session, make_super_admin):
        admin = await make_super_admin()
        ctx = AccessContext.for_user(admin)
        assert ctx.is_elevated is True
        assert await check_subscription_access(db_session, ctx) is None


class TestOwnershipGate:

    @pytest.mark.asyncio
    async def test_self_access(self, db_session, make_owner):
        owner = await make_owner()
        session = await _add_session(db_session, owner)
        loaded = await AccessContext.for_user(owner).load_owned(db_session, ClinicalSession, session.id, "session")
        assert loaded.id == session.id

    @pytest.mark.asyncio
    async def test_owner_reads_member_session(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        session = await _add_session(db_session, member)
        loaded = await AccessContext.for_user(owner).load_owned(db_session, ClinicalSession, session.id, "session")
        assert loaded.user_id == member.id

    @pytest.mark.asyncio
    async def test_member_cannot_read_owner_session(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        session = await _add_session(db_session, owner)
        with pytest.raises(NotFoundError):
            await AccessContext.for_user(member).load_owned(db_session, ClinicalSession, session.id, "session")

    @pytest.mark.asyncio
    async def test_stranger_gets_not_found(self, db_session, make_owner):
        owner = await make_owner()
        stranger = await make_owner(email="stranger@klinik.dk")
        session = await _add_session(db_session, owner)
        with pytest.raises(NotFoundError):
            await AccessContext.for_user(stranger).load_owned(db_session, ClinicalSession, session.id, "session")

    @pytest.mark.asyncio
    async def test_super_admin_reads_anything(self, db_session, make_owner, make_super_admin):
        owner = await make_owner()
        admin = await make_super_admin()
        session = await _add_session(db_session, owner)
        loaded = await AccessContext.for_user(admin).load_owned(db_session, ClinicalSession, session.id, "session")
        assert loaded.id == session.id

    @pytest.mark.asyncio
    async def test_missing_resource(self, db_session, make_owner):
        owner = await make_owner()
        with pytest.raises(NotFoundError):
            await AccessContext.for_user(owner).load_owned(db_session, ClinicalSession, uuid.uuid4(), "session")

    @pytest.mark.asyncio
    async def test_listing_follows_visibility(self, db_session, make_owner, make_member, make_super_admin):
        owner = await make_owner()
        member = await make_member(owner)
        stranger = await make_owner(email="stranger@klinik.dk")
        admin = await make_super_admin()
        await _add_session(db_session, owner)
        await _add_session(db_session, member)
        await _add_session(db_session, stranger)

        _, owner_total = await session_service.list_sessions(db_session, AccessContext.for_user(owner))
        _, member_total = await session_service.list_sessions(db_session, AccessContext.for_user(member))
        _, admin_total = await session_service.list_sessions(db_session, AccessContext.for_user(admin))
        assert (owner_total, member_total, admin_total) == (2, 1, 3)

        ids = await AccessContext.for_user(owner).visible_user_ids(db_session)
        assert set(ids) == {owner.id, member.id}
