"""
CareNote Backend — Invitation & Auto-Upgrade Workflow
=======================================================

What:  Adds members to a tenant, accepts invitations, and removes members.
How:   `invite_member` is a saga with a single compensating action:

    1. authorize      caller is owner or holds can_invite     → ForbiddenError
    2. uniqueness     email not already registered            → ConflictError
    3. headcount      new_total = member_count + 1
    4. auto-upgrade   new_total > capacity → resolver plan applied
    5. provision      inactive member, invitation token, throwaway password
       └── steps 4 and 5 are committed together
    6. dispatch       invitation email
       └── on failure: delete the member, commit, raise UpstreamServiceError.
           The upgrade from step 4 stays in place.

Capacity only grows automatically. Removing a member never re-runs the
resolver.

Member removal:
    pending (token set, inactive) → hard delete
    accepted                      → soft-detach (invited_by/workplace cleared)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.config import settings
from carenote.database import utcnow
from carenote.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from carenote.models.user import User
from carenote.security import (
    generate_throwaway_password,
    generate_token,
    hash_password,
    issue_token_pair,
)
from carenote.services.email_service import email_service
from carenote.services.subscription_service import PlanChange, subscription_service
from carenote.services.tenancy_service import tenancy_service

logger = logging.getLogger(__name__)


@dataclass
class InvitationResult:
    member: User
    member_count: int
    plan_change: Optional[PlanChange]

    @property
    def subscription_upgraded(self) -> bool:
        return self.plan_change is not None


@dataclass
class AcceptedInvitation:
    user: User
    tenant_name: str
    tokens: Dict[str, Any]


class InvitationService:

    def tenant_name_of(self, owner: Optional[User]) -> str:
        if owner is not None and owner.workplace:
            return owner.workplace
        return settings.default_tenant_name

    async def _resolve_tenant_owner(self, db: AsyncSession, inviter: User) -> User:
        if inviter.is_owner:
            return inviter
        if inviter.can_invite:
            return await tenancy_service.get_billing_owner(db, inviter)
        raise ForbiddenError(message="Only the clinic administrator can invite members")

    # ══════════════════════════════════════════════════════════════════════
    # Invite
    # ══════════════════════════════════════════════════════════════════════

    async def invite_member(
        self,
        db: AsyncSession,
        inviter: User,
        email: str,
        name: str,
        phone: Optional[str] = None,
        specialty: Optional[str] = None,
    ) -> InvitationResult:
        """
        Invite a new member under the inviter's tenant.

        Raises:
            ForbiddenError: inviter is neither owner nor delegated inviter.
            ConflictError: email already belongs to a user.
            UpstreamServiceError: invitation email failed; the member was removed.
        """
        owner = await self._resolve_tenant_owner(db, inviter)
        email = email.strip().lower()

        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(
                message="A user with this email already exists",
                context={"field": "email"},
            )

        subscription = await subscription_service.get_for_owner(db, owner)
        new_total = await tenancy_service.member_count_of(db, owner.id) + 1

        plan_change = await subscription_service.ensure_capacity(db, subscription, new_total)

        token = generate_token()
        member = User(
            id=uuid.uuid4(),
            email=email,
            name=name,
            phone=phone,
            specialty=specialty,
            workplace=owner.workplace,
            journal_system=owner.journal_system,
            password_hash=hash_password(generate_throwaway_password()),
            invited_by=owner.id,
            is_company_admin=False,
            is_active=False,
            email_verified=False,
            invitation_token=token,
            invitation_sent_at=utcnow(),
        )
        db.add(member)
        await db.commit()

        try:
            await email_service.send_invitation(
                email=member.email,
                token=token,
                tenant_name=self.tenant_name_of(owner),
                inviter_name=inviter.name,
                invitee_name=member.name,
            )
        except UpstreamServiceError:
            # Compensate the member only; the subscription upgrade persists
            await db.delete(member)
            await db.commit()
            logger.warning(
                "Invitation email to %s failed; member removed, subscription upgrade kept=%s",
                email, plan_change is not None,
            )
            raise

        logger.info(
            "Owner %s invited %s (members=%d, upgraded=%s)",
            owner.id, member.id, new_total, plan_change is not None,
        )
        return InvitationResult(member=member, member_count=new_total, plan_change=plan_change)

    async def resend_invitation(self, db: AsyncSession, inviter: User, member_id: uuid.UUID) -> User:
        owner = await self._resolve_tenant_owner(db, inviter)
        member = await tenancy_service.get_member(db, owner, member_id)
        if not member.is_pending_invitation:
            raise ValidationError(message="This member has already accepted the invitation")

        member.invitation_token = generate_token()
        member.invitation_sent_at = utcnow()
        await db.flush()
        await email_service.send_invitation(
            email=member.email,
            token=member.invitation_token,
            tenant_name=self.tenant_name_of(owner),
            inviter_name=inviter.name,
            invitee_name=member.name,
        )
        return member

    # ══════════════════════════════════════════════════════════════════════
    # Accept
    # ══════════════════════════════════════════════════════════════════════

    async def _load_invitation(self, db: AsyncSession, token: str) -> User:
        result = await db.execute(select(User).where(User.invitation_token == token))
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFoundError(resource="invitation")

        sent_at = member.invitation_sent_at or member.created_at
        if utcnow() > sent_at + timedelta(days=settings.invitation_ttl_days):
            raise ValidationError(message="The invitation has expired", field="token")
        return member

    async def verify_invitation(self, db: AsyncSession, token: str) -> Dict[str, Any]:
        member = await self._load_invitation(db, token)
        owner = await db.get(User, member.invited_by) if member.invited_by else None
        return {
            "email": member.email,
            "name": member.name,
            "tenant_name": self.tenant_name_of(owner),
            "invited_by": owner.name if owner else None,
        }

    async def accept_invitation(self, db: AsyncSession, token: str, password: str) -> AcceptedInvitation:
        member = await self._load_invitation(db, token)
        member.password_hash = hash_password(password)
        member.is_active = True
        member.email_verified = True
        member.invitation_token = None
        member.invitation_sent_at = None
        member.last_login = utcnow()
        await db.flush()

        owner = await db.get(User, member.invited_by) if member.invited_by else None
        logger.info("Member %s accepted invitation", member.id)
        return AcceptedInvitation(
            user=member,
            tenant_name=self.tenant_name_of(owner),
            tokens=issue_token_pair(member.id),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Membership management
    # ══════════════════════════════════════════════════════════════════════

    async def remove_member(self, db: AsyncSession, owner: User, member_id: uuid.UUID) -> str:
        """Returns "deleted" for pending members, "detached" for accepted ones."""
        if member_id == owner.id:
            raise ValidationError(message="The owner cannot be removed from the clinic")
        member = await tenancy_service.get_member(db, owner, member_id)

        if member.is_pending_invitation:
            await db.delete(member)
            outcome = "deleted"
        else:
            member.detach_from_tenant()
            outcome = "detached"
        await db.flush()
        logger.info("Member %s removed from owner %s (%s)", member_id, owner.id, outcome)
        return outcome

    async def set_member_active(
        self, db: AsyncSession, owner: User, member_id: uuid.UUID, active: bool
    ) -> User:
        member = await tenancy_service.get_member(db, owner, member_id)
        if member.is_pending_invitation:
            raise ValidationError(message="A pending invitation cannot be activated by the owner")
        member.is_active = active
        await db.flush()
        return member


# ── Singleton Instance ────────────────────────────────────────────────────
invitation_service = InvitationService()
