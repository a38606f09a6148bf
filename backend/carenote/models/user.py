"""
CareNote Backend — User SQLAlchemy Model
==========================================

What:  ORM model for the `users` table. One entity plays three roles:
       solo subscriber, tenant owner ("company admin") and invited member.
How:   Tenancy is a self-reference: `invited_by` points at the owner.
       A tenant is the owner plus every user whose `invited_by` is the
       owner's id. There is no organization table.

    Owner:  is_company_admin=True,  invited_by=None,     subscription_id set
    Member: is_company_admin=False, invited_by=owner.id, subscription_id None

Invariant:
    A user with `invited_by` set never holds its own billable subscription;
    its access is resolved through the owner (see authorization.py).
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates

from carenote.database import Base, UTCDateTime, utcnow

ROLE_USER = "user"
ROLE_SUPER_ADMIN = "super_admin"
ROLES = (ROLE_USER, ROLE_SUPER_ADMIN)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Identity ──────────────────────────────────────────────────────────
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Profile ───────────────────────────────────────────────────────────
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    specialty: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    workplace: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    journal_system: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # ── Roles ─────────────────────────────────────────────────────────────
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLE_USER)
    is_company_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_invite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # ── Tenancy ───────────────────────────────────────────────────────────
    invited_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey(
            "subscriptions.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_users_subscription_id",
        ),
        nullable=True,
    )

    # ── Lifecycle ─────────────────────────────────────────────────────────
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    invitation_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # Start of the invitation TTL; re-stamped when the invitation is resent
    invitation_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    reset_password_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reset_password_expires: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        # "all members of owner X"
        Index("idx_users_invited_by", "invited_by"),
        Index("idx_users_invitation_token", "invitation_token"),
    )

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    # ── Derived roles ─────────────────────────────────────────────────────
    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    @property
    def is_member(self) -> bool:
        return self.invited_by is not None

    @property
    def is_owner(self) -> bool:
        return self.is_company_admin and self.invited_by is None

    @property
    def is_pending_invitation(self) -> bool:
        """Invited but never accepted."""
        return self.invitation_token is not None and not self.is_active

    @property
    def billing_owner_id(self) -> uuid.UUID:
        """Id of the user whose subscription gates this account."""
        return self.invited_by if self.invited_by is not None else self.id

    def detach_from_tenant(self) -> None:
        """Soft-detach an accepted member from its owner."""
        self.invited_by = None
        self.workplace = None
        self.is_company_admin = False
        self.can_invite = False

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
