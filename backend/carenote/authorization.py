"""
CareNote Backend — Authorization Rules
========================================

What:  The two checks shared by protected routes:
       - subscription gate: does the caller's billing owner have access?
       - resource ownership gate: may the caller see a session/template?
How:   An AccessContext is built once per request. Super-admin status is a
       single capability flag on it (`is_elevated`), consulted only by the
       helpers below; routes never test roles themselves.

Ownership rule:
    caller owns the resource
    OR caller is a tenant owner and the resource owner was invited by the caller
    OR caller is elevated
Failures surface as NotFoundError so other tenants' records stay invisible.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Type, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.exceptions import NotFoundError, PaymentRequiredError
from carenote.models.subscription import ACCESS_STATUSES, Subscription
from carenote.models.user import User
from carenote.services.subscription_service import subscription_service
from carenote.services.tenancy_service import tenancy_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AccessContext:
    user: User
    is_elevated: bool

    @classmethod
    def for_user(cls, user: User) -> "AccessContext":
        return cls(user=user, is_elevated=user.is_super_admin)

    # ── Ownership gate ────────────────────────────────────────────────────
    def can_access(self, resource_owner: User) -> bool:
        if self.is_elevated:
            return True
        if resource_owner.id == self.user.id:
            return True
        return self.user.is_owner and resource_owner.invited_by == self.user.id

    def visibility_clause(self, owner_column):
        """
        SQL filter restricting `owner_column` (a user id column) to what the
        caller may see. None means no restriction.
        """
        if self.is_elevated:
            return None
        if self.user.is_owner:
            members = select(User.id).where(User.invited_by == self.user.id)
            return or_(owner_column == self.user.id, owner_column.in_(members))
        return owner_column == self.user.id

    async def load_owned(
        self,
        db: AsyncSession,
        model: Type[T],
        resource_id: uuid.UUID,
        resource_name: str,
    ) -> T:
        """
        Fetch `model` by id and apply the ownership gate.

        Raises:
            NotFoundError: absent, or present but not visible to the caller.
        """
        resource = await db.get(model, resource_id)
        if resource is None:
            raise NotFoundError(resource=resource_name, resource_id=str(resource_id))

        owner_id = getattr(resource, "user_id")
        if owner_id == self.user.id or self.is_elevated:
            return resource
        owner = await db.get(User, owner_id)
        if owner is None or not self.can_access(owner):
            logger.info(
                "User %s denied access to %s %s", self.user.id, resource_name, resource_id
            )
            raise NotFoundError(resource=resource_name, resource_id=str(resource_id))
        return resource

    async def visible_user_ids(self, db: AsyncSession) -> Optional[List[uuid.UUID]]:
        if self.is_elevated:
            return None
        ids = [self.user.id]
        if self.user.is_owner:
            ids.extend(member.id for member in await tenancy_service.list_members(db, self.user.id))
        return ids


# ── Subscription gate ─────────────────────────────────────────────────────

async def check_subscription_access(db: AsyncSession, ctx: AccessContext) -> Optional[Subscription]:
    """
    Require that the caller's billing owner has an accessible subscription.

    Elevated callers pass without a subscription (returns None).

    Raises:
        PaymentRequiredError: missing, cancelled, inactive or expired subscription.
    """
    if ctx.is_elevated:
        return None

    try:
        subscription = await subscription_service.get_for_user(db, ctx.user)
    except NotFoundError:
        raise PaymentRequiredError(
            message="No subscription found for this account",
            reason="no_subscription",
        )

    if not subscription.has_access():
        reason = "expired" if subscription.status in ACCESS_STATUSES else subscription.status
        raise PaymentRequiredError(
            message="Your subscription does not grant access. Please renew to continue.",
            reason=reason,
            context={"subscription_id": str(subscription.id)},
        )
    return subscription
