"""Pricing and subscription schemas."""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PricingTierResponse(BaseModel):
    min_licenses: int
    price_per_license: int
    label: str
    tier: str
    savings_percent: int
    discount_percent: int
    free_microphone: bool


class PricingResponse(BaseModel):
    currency: str
    trial_days: int
    monthly: List[PricingTierResponse]
    yearly: List[PricingTierResponse]
    yearly_discount_percent: int
    features: List[str]
    yearly_features: List[str]


class PriceQuoteResponse(BaseModel):
    num_licenses: int
    interval: str
    tier: str
    price_per_license: int
    total_price: int = Field(description="price × licenses, × 12 for yearly")
    capacity: int = Field(description="Members the resolved tier admits")
    currency: str


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    num_licenses: int
    price_per_license: int
    pricing_tier: str
    billing_amount: int
    billing_interval: str
    currency: str
    status: str
    is_trial: bool
    trial_end_date: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    last_payment_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubscriptionSummaryResponse(BaseModel):
    subscription: SubscriptionResponse
    has_access: bool
    days_remaining: Optional[int] = None
    member_count: int
    available_seats: int
    is_owner: bool


class UpgradeRequest(BaseModel):
    num_licenses: int = Field(ge=1, le=500)
    billing_interval: Optional[Literal["monthly", "yearly"]] = None


class PlanSnapshotResponse(BaseModel):
    num_licenses: int
    price_per_license: int
    pricing_tier: str
    billing_amount: int
    billing_interval: str


class PlanChangeResponse(BaseModel):
    before: PlanSnapshotResponse
    after: PlanSnapshotResponse
    member_count: int


class UpgradeResponse(BaseModel):
    message: str
    subscription: SubscriptionResponse
    change: PlanChangeResponse
