"""
CareNote Backend — Subscription SQLAlchemy Model & Lifecycle
==============================================================

What:  ORM model for the `subscriptions` table plus its state machine.
How:   Lifecycle transitions are methods on the entity; callers mutate a
       subscription only through them. A subscription is created once at
       registration and mutated in place afterwards, never replaced.

State Machine:
    create ──► active (is_trial=True, period_end = now + trial_days)
    active ──cancel(by)──► cancelled
    cancelled ──reactivate()──► active       (period untouched)
    any ──extend(days)──► same state, period_end += days
    any ──apply_plan(plan)──► same state, tier fields recomputed

Access predicate:
    status ∈ {active, trialing} and (period_end is None or now ≤ period_end)

Invariant:
    current_period_end ≥ current_period_start. `num_licenses` is the
    capacity of the resolved tier and is written only by apply_plan().
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carenote.database import Base, UTCDateTime, as_utc, utcnow
from carenote.exceptions import ValidationError
from carenote.services.pricing import CURRENCY, MONTHLY, LicensePlan

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"
STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE, STATUS_EXPIRED, STATUS_CANCELLED)

# "trialing" is accepted for rows written by older clients
ACCESS_STATUSES = frozenset({STATUS_ACTIVE, "trialing"})


def _validate_period(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError(
            message="Period end must not be before period start",
            field="current_period_end",
        )


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # ── Tier (written by apply_plan only) ─────────────────────────────────
    num_licenses: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    price_per_license: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pricing_tier: Mapped[str] = mapped_column(String(10), nullable=False, default="1+")
    billing_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    billing_interval: Mapped[str] = mapped_column(String(20), nullable=False, default=MONTHLY)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=CURRENCY)

    # ── State ─────────────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_ACTIVE)
    is_trial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    trial_end_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    # Weak reference: the canceller may be deleted later
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # ══════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ══════════════════════════════════════════════════════════════════════

    @classmethod
    def start_trial(
        cls,
        owner_id: uuid.UUID,
        plan: LicensePlan,
        trial_days: int,
        trial_end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "Subscription":
        """New subscriptions always start active and in trial."""
        now = now or utcnow()
        period_end = as_utc(trial_end) or now + timedelta(days=trial_days)
        subscription = cls(
            id=uuid.uuid4(),
            user_id=owner_id,
            status=STATUS_ACTIVE,
            is_trial=True,
            trial_end_date=period_end,
            current_period_start=now,
            current_period_end=period_end,
            currency=CURRENCY,
        )
        subscription._check_period()
        subscription.apply_plan(plan)
        return subscription

    def has_access(self, now: Optional[datetime] = None) -> bool:
        if self.status not in ACCESS_STATUSES:
            return False
        if self.current_period_end is None:
            return True
        return (now or utcnow()) <= self.current_period_end

    def cancel(self, by: Optional[uuid.UUID], now: Optional[datetime] = None) -> None:
        # Cancelling twice re-stamps; nothing else changes
        self.status = STATUS_CANCELLED
        self.cancelled_at = now or utcnow()
        self.cancelled_by = by

    def reactivate(self) -> None:
        """Back to active. The period is not extended."""
        self.status = STATUS_ACTIVE
        self.cancelled_at = None
        self.cancelled_by = None

    def extend(self, days: int, now: Optional[datetime] = None) -> None:
        """Manual billing top-up; valid in any state and never changes status."""
        if days < 1:
            raise ValidationError(message="Extension must be at least one day", field="days")
        now = now or utcnow()
        base = self.current_period_end or now
        self.current_period_end = base + timedelta(days=days)
        if self.current_period_start is None:
            self.current_period_start = now
        self.last_payment_date = now

    def apply_plan(self, plan: LicensePlan) -> None:
        """The only writer of the tier fields. Status and period are untouched."""
        self.num_licenses = plan.capacity
        self.price_per_license = plan.price_per_license
        self.pricing_tier = plan.tier_label
        self.billing_amount = plan.billing_amount
        self.billing_interval = plan.interval

    def mark(
        self,
        status: Optional[str] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        billing_amount: Optional[int] = None,
        billing_interval: Optional[str] = None,
        is_trial: Optional[bool] = None,
    ) -> None:
        """
        Super-admin manual override of billing state.

        Every argument is checked before any field is written, so a rejected
        mark leaves the subscription untouched.
        """
        if status is not None and status not in STATUSES:
            raise ValidationError(
                message=f"Status must be one of: {', '.join(STATUSES)}", field="status"
            )
        if billing_amount is not None and billing_amount < 0:
            raise ValidationError(message="Billing amount cannot be negative", field="billing_amount")
        period_start = as_utc(period_start)
        period_end = as_utc(period_end)
        _validate_period(
            period_start if period_start is not None else self.current_period_start,
            period_end if period_end is not None else self.current_period_end,
        )

        if status is not None:
            self.status = status
        if period_start is not None:
            self.current_period_start = period_start
        if period_end is not None:
            self.current_period_end = period_end
        if billing_amount is not None:
            self.billing_amount = billing_amount
        if billing_interval is not None:
            self.billing_interval = billing_interval
        if is_trial is not None:
            self.is_trial = is_trial
        if status == STATUS_ACTIVE and is_trial is False:
            self.last_payment_date = utcnow()

    # ── Helpers ───────────────────────────────────────────────────────────
    def days_remaining(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.current_period_end is None:
            return None
        delta = self.current_period_end - (now or utcnow())
        return max(0, delta.days)

    def _check_period(self) -> None:
        _validate_period(self.current_period_start, self.current_period_end)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, status='{self.status}', "
            f"tier='{self.pricing_tier}', licenses={self.num_licenses})>"
        )
