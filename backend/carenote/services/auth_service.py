"""
CareNote Backend — Authentication & Account Service
=====================================================

What:  Registration, login, token refresh, profile and password management,
       email verification.
How:   Passwords are bcrypt hashes, sessions are stateless JWT pairs
       (see security.py). Registration creates the owner and its trial
       subscription in the request transaction.

Email failure policy:
    register             → welcome email is best-effort (logged)
    forgot_password      → reset token cleared, UpstreamServiceError raised
    resend_verification  → UpstreamServiceError raised
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.config import settings
from carenote.database import as_utc, utcnow
from carenote.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from carenote.models.subscription import Subscription
from carenote.models.user import User
from carenote.security import (
    REFRESH_TOKEN,
    create_access_token,
    decode_token,
    generate_token,
    hash_password,
    issue_token_pair,
    verify_password,
)
from carenote.services.email_service import email_service
from carenote.services.subscription_service import subscription_service
from carenote.services.tenancy_service import tenancy_service

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "phone", "specialty", "workplace", "journal_system")


@dataclass
class Registration:
    user: User
    subscription: Subscription
    verification_token: str


class AuthService:

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    # ── Registration ──────────────────────────────────────────────────────
    async def register(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        name: str,
        num_licenses: int = 1,
        billing_interval: str = "monthly",
        phone: Optional[str] = None,
        specialty: Optional[str] = None,
        workplace: Optional[str] = None,
        journal_system: Optional[str] = None,
        trial_end_date: Optional[datetime] = None,
    ) -> Registration:
        """
        Create a tenant owner with a trial subscription.

        Raises:
            ConflictError: email already registered.
            ValidationError: invalid license count, interval or trial end date.
        """
        if await self.get_by_email(db, email) is not None:
            raise ConflictError(message="A user with this email already exists", context={"field": "email"})
        trial_end_date = as_utc(trial_end_date)
        if trial_end_date is not None and trial_end_date <= utcnow():
            raise ValidationError(message="Trial end date must be in the future", field="trial_end_date")

        token = generate_token()
        user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=hash_password(password),
            name=name,
            phone=phone,
            specialty=specialty,
            workplace=workplace,
            journal_system=journal_system,
            is_company_admin=True,
            invited_by=None,
            email_verified=False,
            verification_token=token,
            is_active=True,
        )
        db.add(user)
        await db.flush()

        subscription = await subscription_service.create_trial(
            db,
            owner=user,
            num_licenses=num_licenses,
            interval=billing_interval,
            trial_end=trial_end_date,
        )

        try:
            await email_service.send_welcome(user.email, user.name, token)
        except UpstreamServiceError as e:
            # The account is usable; the user can request a new link
            logger.warning("Welcome email for %s not sent: %s", user.id, e.message)

        logger.info("Registered owner %s with %d licenses (%s)", user.id, num_licenses, billing_interval)
        return Registration(user=user, subscription=subscription, verification_token=token)

    # ── Login / tokens ────────────────────────────────────────────────────
    async def login(self, db: AsyncSession, email: str, password: str) -> Dict[str, Any]:
        user = await self.get_by_email(db, email)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError(message="Invalid email or password")
        if not user.email_verified:
            raise AuthenticationError(
                message="Email not verified. Please check your inbox and verify your account before logging in.",
                context={"reason": "email_not_verified"},
            )
        if not user.is_active:
            raise AuthenticationError(message="Account is deactivated", context={"reason": "inactive"})

        user.last_login = utcnow()
        await db.flush()
        return {"user": user, **issue_token_pair(user.id)}

    async def refresh(self, db: AsyncSession, refresh_token: str) -> Dict[str, Any]:
        user_id = decode_token(refresh_token, expected_type=REFRESH_TOKEN)
        user = await db.get(User, user_id)
        if user is None or not user.is_active:
            raise AuthenticationError(message="Invalid token")
        return {
            "access_token": create_access_token(user.id),
            "token_type": "bearer",
            "expires_in": settings.jwt_access_expire_minutes * 60,
        }

    # ── Profile ───────────────────────────────────────────────────────────
    async def update_profile(self, db: AsyncSession, user: User, changes: Dict[str, Any]) -> User:
        """
        Apply profile changes. An owner's workplace change is fanned out to
        every member of the tenant.
        """
        workplace_changed = "workplace" in changes and changes["workplace"] != user.workplace
        for field in PROFILE_FIELDS:
            if field in changes:
                setattr(user, field, changes[field])
        await db.flush()

        if workplace_changed and user.is_owner:
            await tenancy_service.sync_workplace(db, user)
        return user

    async def change_password(
        self, db: AsyncSession, user: User, current_password: str, new_password: str
    ) -> None:
        if not verify_password(current_password, user.password_hash):
            raise ValidationError(message="Current password is incorrect", field="current_password")
        user.password_hash = hash_password(new_password)
        await db.flush()

    # ── Password reset ────────────────────────────────────────────────────
    async def forgot_password(self, db: AsyncSession, email: str) -> None:
        """Unknown emails return silently so the endpoint cannot probe accounts."""
        user = await self.get_by_email(db, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return

        user.reset_password_token = generate_token()
        user.reset_password_expires = utcnow() + timedelta(minutes=settings.password_reset_ttl_minutes)
        await db.commit()

        try:
            await email_service.send_password_reset(user.email, user.name, user.reset_password_token)
        except UpstreamServiceError:
            user.reset_password_token = None
            user.reset_password_expires = None
            await db.commit()
            raise

    async def reset_password(self, db: AsyncSession, token: str, new_password: str) -> None:
        result = await db.execute(select(User).where(User.reset_password_token == token))
        user = result.scalar_one_or_none()
        if user is None or user.reset_password_expires is None or user.reset_password_expires < utcnow():
            raise ValidationError(message="Invalid or expired reset token", field="token")

        user.password_hash = hash_password(new_password)
        user.reset_password_token = None
        user.reset_password_expires = None
        await db.flush()

    # ── Email verification ────────────────────────────────────────────────
    async def verify_email(self, db: AsyncSession, token: str) -> User:
        result = await db.execute(select(User).where(User.verification_token == token))
        user = result.scalar_one_or_none()
        if user is None:
            raise ValidationError(message="Invalid or expired verification token", field="token")
        user.email_verified = True
        user.verification_token = None
        await db.flush()
        return user

    async def resend_verification(self, db: AsyncSession, email: str) -> None:
        user = await self.get_by_email(db, email)
        if user is None:
            raise NotFoundError(resource="user")
        if user.email_verified:
            raise ValidationError(message="Email is already verified")
        if not user.is_active:
            raise ValidationError(message="Account is deactivated")

        user.verification_token = generate_token()
        await db.flush()
        await email_service.send_verification_reminder(user.email, user.name, user.verification_token)


# ── Singleton Instance ────────────────────────────────────────────────────
auth_service = AuthService()
