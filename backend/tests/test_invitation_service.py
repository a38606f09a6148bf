"""
CareNote Backend — Invitation & Auto-Upgrade Tests
====================================================

What:  Tests for the invite / accept / remove workflow.
How:   Real SQLite database; the email dispatcher is patched where a
       failure is simulated.

What we test:
    ✅ 1 → 2 members: no upgrade; 2 → 3: upgrade to 3+ (528 × 3 = 1584, capacity 4)
    ✅ Delegated inviter (can_invite) adds to the owner's clinic
    ✅ Accepting activates the member and returns tokens
    ✅ Pending member removal deletes; accepted member removal detaches
    ✅ Removing members never downgrades
    ❌ Email failure removes the member, keeps the upgrade, raises 502-class error
    ❌ Duplicate email → ConflictError
    ❌ Plain member inviting → ForbiddenError
    ❌ Expired invitation → ValidationError
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from carenote.database import utcnow
from carenote.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from carenote.models.user import User
from carenote.security import decode_token, verify_password
from carenote.services.invitation_service import invitation_service
from carenote.services.subscription_service import subscription_service
from carenote.services.tenancy_service import tenancy_service


def _failing_email():
    mock = MagicMock()
    mock.send_invitation = AsyncMock(
        side_effect=UpstreamServiceError(service="email", operation="send_invitation")
    )
    return mock


class TestInviteMember:
    """Tests for the invite saga and the automatic upgrade."""

    @pytest.mark.asyncio
    async def test_upgrade_scenario(self, db_session, make_owner):
        """Second invitation pushes a 1+ clinic over capacity 2 into tier 3+."""
        owner = await make_owner(num_licenses=1)
        sub = await subscription_service.get_for_owner(db_session, owner)
        assert (sub.pricing_tier, sub.price_per_license, sub.billing_amount) == ("1+", 559, 559)

        first = await invitation_service.invite_member(db_session, owner, "a@klinik.dk", "Alice")
        assert first.member_count == 2
        assert first.subscription_upgraded is False
        assert sub.pricing_tier == "1+"

        second = await invitation_service.invite_member(db_session, owner, "b@klinik.dk", "Bob")
        assert second.member_count == 3
        assert second.subscription_upgraded is True
        assert second.plan_change.before.pricing_tier == "1+"

        await db_session.refresh(sub)
        assert sub.pricing_tier == "3+"
        assert sub.price_per_license == 528
        assert sub.billing_amount == 1584
        assert sub.num_licenses == 4

    @pytest.mark.asyncio
    async def test_new_member_is_pending(self, db_session, make_owner):
        owner = await make_owner(workplace="Klinik Nord")
        result = await invitation_service.invite_member(db_session, owner, "New@Klinik.dk", "Nina")
        member = result.member
        assert member.email == "new@klinik.dk"
        assert member.invited_by == owner.id
        assert member.workplace == "Klinik Nord"
        assert member.is_active is False
        assert member.is_pending_invitation is True
        assert member.subscription_id is None

    @pytest.mark.asyncio
    async def test_email_failure_removes_member_and_keeps_upgrade(self, db_session, make_owner, make_member):
        owner = await make_owner(num_licenses=1)
        await make_member(owner, "a@klinik.dk")

        with patch("carenote.services.invitation_service.email_service", _failing_email()):
            with pytest.raises(UpstreamServiceError) as exc_info:
                await invitation_service.invite_member(db_session, owner, "b@klinik.dk", "Bob")

        assert exc_info.value.service == "email"
        result = await db_session.execute(select(User).where(User.email == "b@klinik.dk"))
        assert result.scalar_one_or_none() is None
        assert await tenancy_service.member_count_of(db_session, owner.id) == 2

        sub = await subscription_service.get_for_owner(db_session, owner)
        await db_session.refresh(sub)
        assert sub.pricing_tier == "3+"
        assert sub.num_licenses == 4

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, db_session, make_owner):
        owner = await make_owner()
        with pytest.raises(ConflictError):
            await invitation_service.invite_member(db_session, owner, "OWNER@klinik.dk", "Me Again")

    @pytest.mark.asyncio
    async def test_plain_member_cannot_invite(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        with pytest.raises(ForbiddenError):
            await invitation_service.invite_member(db_session, member, "x@klinik.dk", "Xena")

    @pytest.mark.asyncio
    async def test_delegated_inviter_adds_to_owner_tenant(self, db_session, make_owner, make_member):
        owner = await make_owner()
        delegate = await make_member(owner, can_invite=True)
        result = await invitation_service.invite_member(db_session, delegate, "x@klinik.dk", "Xena")
        assert result.member.invited_by == owner.id
        assert result.member_count == 3
        assert result.subscription_upgraded is True

    @pytest.mark.asyncio
    async def test_resend_restamps_token(self, db_session, make_owner):
        owner = await make_owner()
        member = (await invitation_service.invite_member(db_session, owner, "a@klinik.dk", "Alice")).member
        old_token = member.invitation_token
        resent = await invitation_service.resend_invitation(db_session, owner, member.id)
        assert resent.invitation_token != old_token

    @pytest.mark.asyncio
    async def test_resend_to_accepted_member_rejected(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        with pytest.raises(ValidationError):
            await invitation_service.resend_invitation(db_session, owner, member.id)


class TestAcceptInvitation:

    @pytest.mark.asyncio
    async def test_accept_activates_member(self, db_session, make_owner):
        owner = await make_owner(workplace="Klinik Nord")
        member = (await invitation_service.invite_member(db_session, owner, "a@klinik.dk", "Alice")).member
        token = member.invitation_token

        info = await invitation_service.verify_invitation(db_session, token)
        assert info["tenant_name"] == "Klinik Nord"
        assert info["invited_by"] == owner.name

        accepted = await invitation_service.accept_invitation(db_session, token, "NewPass123")
        assert accepted.user.is_active is True
        assert accepted.user.email_verified is True
        assert accepted.user.invitation_token is None
        assert verify_password("NewPass123", accepted.user.password_hash)
        assert decode_token(accepted.tokens["access_token"]) == member.id

    @pytest.mark.asyncio
    async def test_unknown_token(self, db_session):
        with pytest.raises(NotFoundError):
            await invitation_service.verify_invitation(db_session, "nope")

    @pytest.mark.asyncio
    async def test_expired_invitation(self, db_session, make_owner):
        owner = await make_owner()
        member = (await invitation_service.invite_member(db_session, owner, "a@klinik.dk", "Alice")).member
        member.invitation_sent_at = utcnow() - timedelta(days=8)
        await db_session.commit()
        with pytest.raises(ValidationError):
            await invitation_service.accept_invitation(db_session, member.invitation_token, "NewPass123")

    @pytest.mark.asyncio
    async def test_tenant_name_falls_back_to_default(self, make_owner):
        owner = await make_owner(workplace=None)
        assert invitation_service.tenant_name_of(owner) == "Klinik"


class TestMembershipManagement:

    @pytest.mark.asyncio
    async def test_remove_pending_member_deletes(self, db_session, make_owner):
        owner = await make_owner()
        member = (await invitation_service.invite_member(db_session, owner, "a@klinik.dk", "Alice")).member
        outcome = await invitation_service.remove_member(db_session, owner, member.id)
        await db_session.commit()
        assert outcome == "deleted"
        assert await db_session.get(User, member.id) is None

    @pytest.mark.asyncio
    async def test_remove_accepted_member_detaches(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        outcome = await invitation_service.remove_member(db_session, owner, member.id)
        assert outcome == "detached"
        assert member.invited_by is None
        assert member.workplace is None
        assert await tenancy_service.member_count_of(db_session, owner.id) == 1

    @pytest.mark.asyncio
    async def test_removal_does_not_downgrade(self, db_session, make_owner, make_member):
        owner = await make_owner()
        await invitation_service.invite_member(db_session, owner, "a@klinik.dk", "Alice")
        second = (await invitation_service.invite_member(db_session, owner, "b@klinik.dk", "Bob")).member
        await invitation_service.remove_member(db_session, owner, second.id)

        sub = await subscription_service.get_for_owner(db_session, owner)
        assert sub.pricing_tier == "3+"
        assert sub.num_licenses == 4

    @pytest.mark.asyncio
    async def test_owner_cannot_remove_self(self, db_session, make_owner):
        owner = await make_owner()
        with pytest.raises(ValidationError):
            await invitation_service.remove_member(db_session, owner, owner.id)

    @pytest.mark.asyncio
    async def test_deactivate_member(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        updated = await invitation_service.set_member_active(db_session, owner, member.id, False)
        assert updated.is_active is False

    @pytest.mark.asyncio
    async def test_cannot_activate_pending_invitation(self, db_session, make_owner):
        owner = await make_owner()
        member = (await invitation_service.invite_member(db_session, owner, "a@klinik.dk", "Alice")).member
        with pytest.raises(ValidationError):
            await invitation_service.set_member_active(db_session, owner, member.id, True)
