"""
CareNote Backend — Pricing Table & License/Tier Resolver
==========================================================

What:  The static per-license price schedule and the resolver that turns a
       tenant's headcount into a billed tier, a capacity ceiling and an amount.
How:   Pure functions over immutable tables. Nothing here touches the
       database, so a plan can be recomputed whenever headcount changes.
Who:   SubscriptionService (registration, upgrade), InvitationService
       (auto-upgrade), the pricing routes.

Tiers (DKK per license per month):

    min │ monthly │ yearly │ label │ capacity band
    ────┼─────────┼────────┼───────┼──────────────────
      1 │   559   │  475   │  1+   │ 2
      3 │   528   │  448   │  3+   │ 4
      5 │   503   │  428   │  5+   │ 9
     10 │   471   │  400   │  10+  │ actual member count

Total price: price_per_license × n, ×12 for yearly. This is the only yearly
formula; there is no stored yearly total.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from carenote.config import settings
from carenote.exceptions import InvariantViolationError, ValidationError

CURRENCY = "DKK"

MONTHLY = "monthly"
YEARLY = "yearly"
BILLING_INTERVALS = (MONTHLY, YEARLY)

YEARLY_DISCOUNT_PERCENT = 15

FEATURES = (
    "Ubegrænsede konsultationer",
    "Notatgenerering (SOAP + kort note)",
    "Automatisk transskription",
    "Henvisningsskriver",
    "Alle produktopdateringer",
    "Prioriteret support",
)
YEARLY_EXTRA_FEATURES = ("Gratis mikrofon",)


@dataclass(frozen=True)
class PricingTier:
    min_licenses: int
    price_per_license: int
    label: str
    interval: str
    savings_percent: int = 0
    discount_percent: int = 0
    # Display-only perk, nothing enforces it
    free_microphone: bool = False


@dataclass(frozen=True)
class PriceQuote:
    tier: PricingTier
    num_licenses: int
    price_per_license: int
    total_price: int
    interval: str


@dataclass(frozen=True)
class LicensePlan:
    """
    Everything a Subscription stores about its tier.

    Built only by `resolve_license_plan`; `Subscription.apply_plan` is the
    single place that copies it onto the row.
    """
    quote: PriceQuote
    tier_label: str
    capacity: int
    member_count: int

    @property
    def price_per_license(self) -> int:
        return self.quote.price_per_license

    @property
    def billing_amount(self) -> int:
        return self.quote.total_price

    @property
    def interval(self) -> str:
        return self.quote.interval


# ══════════════════════════════════════════════════════════════════════════
# Pricing Table
# ══════════════════════════════════════════════════════════════════════════

_TIERS: Dict[str, Tuple[PricingTier, ...]] = {
    MONTHLY: (
        PricingTier(1, 559, "1+", MONTHLY),
        PricingTier(3, 528, "3+", MONTHLY, savings_percent=6),
        PricingTier(5, 503, "5+", MONTHLY, savings_percent=10),
        PricingTier(10, 471, "10+", MONTHLY, savings_percent=15),
    ),
    YEARLY: (
        PricingTier(1, 475, "1+", YEARLY, discount_percent=YEARLY_DISCOUNT_PERCENT, free_microphone=True),
        PricingTier(3, 448, "3+", YEARLY, savings_percent=6,
                    discount_percent=YEARLY_DISCOUNT_PERCENT, free_microphone=True),
        PricingTier(5, 428, "5+", YEARLY, savings_percent=10,
                    discount_percent=YEARLY_DISCOUNT_PERCENT, free_microphone=True),
        PricingTier(10, 400, "10+", YEARLY, savings_percent=15,
                    discount_percent=YEARLY_DISCOUNT_PERCENT, free_microphone=True),
    ),
}


def all_tiers(interval: str = MONTHLY) -> Tuple[PricingTier, ...]:
    """Ordered tiers for an interval; empty for an unknown interval."""
    return _TIERS.get(interval, ())


def tier_for(min_licenses: int, interval: str = MONTHLY) -> Optional[PricingTier]:
    """Exact match on a tier's minimum license count."""
    for tier in all_tiers(interval):
        if tier.min_licenses == min_licenses:
            return tier
    return None


def price_for(num_licenses: int, interval: str = MONTHLY) -> Optional[PriceQuote]:
    """
    Price `num_licenses` seats on `interval`.

    Picks the highest tier whose minimum is ≤ num_licenses. Returns None for
    num_licenses < 1 or an unknown interval.

    Example:
        >>> price_for(5, "yearly").total_price
        25680
    """
    tiers = all_tiers(interval)
    if not tiers or num_licenses < 1:
        return None

    for tier in reversed(tiers):
        if num_licenses >= tier.min_licenses:
            months = 12 if interval == YEARLY else 1
            return PriceQuote(
                tier=tier,
                num_licenses=num_licenses,
                price_per_license=tier.price_per_license,
                total_price=tier.price_per_license * num_licenses * months,
                interval=interval,
            )
    return None


# ══════════════════════════════════════════════════════════════════════════
# License/Tier Resolver
# ══════════════════════════════════════════════════════════════════════════

# tier minimum → fixed capacity; the 10+ band has no fixed ceiling
_CAPACITY_BANDS = ((5, 9), (3, 4), (1, 2))


def resolve_tier_label(min_licenses: int) -> str:
    if min_licenses >= 10:
        return "10+"
    if min_licenses >= 5:
        return "5+"
    if min_licenses >= 3:
        return "3+"
    return "1+"


def capacity_for(tier_min_licenses: int, actual_member_count: int) -> int:
    """
    Maximum seats a tier holds before the next tier is required.

    At 10+ the capacity is the actual member count, so it grows one for one.
    """
    if tier_min_licenses >= 10:
        return actual_member_count
    for band_min, ceiling in _CAPACITY_BANDS:
        if tier_min_licenses >= band_min:
            return ceiling
    return _CAPACITY_BANDS[-1][1]


def resolve_license_plan(member_count: int, interval: str = MONTHLY) -> LicensePlan:
    """
    Resolve the tier, capacity and bill for a tenant of `member_count` seats.

    Raises:
        ValidationError: unknown billing interval (client input).
        InvariantViolationError: member_count < 1, or the resolved capacity
            would not hold the members. Both indicate a caller bug.
    """
    if interval not in BILLING_INTERVALS:
        raise ValidationError(
            message=f"Billing interval must be one of: {', '.join(BILLING_INTERVALS)}",
            field="billing_interval",
        )
    if member_count < 1:
        raise InvariantViolationError(
            message="License math requires at least one member",
            context={"member_count": member_count},
        )

    quote = price_for(member_count, interval)
    if quote is None:
        raise InvariantViolationError(
            message="No pricing tier matched",
            context={"member_count": member_count, "interval": interval},
        )

    capacity = capacity_for(quote.tier.min_licenses, member_count)
    if member_count > capacity:
        raise InvariantViolationError(
            message="Resolved capacity is below the member count",
            context={"member_count": member_count, "capacity": capacity},
        )

    return LicensePlan(
        quote=quote,
        tier_label=resolve_tier_label(quote.tier.min_licenses),
        capacity=capacity,
        member_count=member_count,
    )


def pricing_overview() -> Dict[str, Any]:
    """Public pricing payload served by GET /api/pricing."""

    def _tier_dict(tier: PricingTier) -> Dict[str, Any]:
        return {
            "min_licenses": tier.min_licenses,
            "price_per_license": tier.price_per_license,
            "label": f"{tier.label} licenser",
            "tier": tier.label,
            "savings_percent": tier.savings_percent,
            "discount_percent": tier.discount_percent,
            "free_microphone": tier.free_microphone,
        }

    return {
        "currency": CURRENCY,
        "trial_days": settings.trial_days,
        "monthly": [_tier_dict(t) for t in all_tiers(MONTHLY)],
        "yearly": [_tier_dict(t) for t in all_tiers(YEARLY)],
        "yearly_discount_percent": YEARLY_DISCOUNT_PERCENT,
        "features": list(FEATURES),
        "yearly_features": list(FEATURES + YEARLY_EXTRA_FEATURES),
    }
