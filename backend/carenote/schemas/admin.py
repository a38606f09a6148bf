"""Super-admin console schemas."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from carenote.schemas.auth import UserResponse
from carenote.schemas.clinic import MemberResponse
from carenote.schemas.common import PageMeta, UTCDatetime
from carenote.schemas.lead import LeadResponse
from carenote.schemas.subscription import SubscriptionResponse


class AdminUserItem(BaseModel):
    user: UserResponse
    subscription: Optional[SubscriptionResponse] = None


class AdminUserListResponse(BaseModel):
    users: List[AdminUserItem]
    pagination: PageMeta


class AdminUserDetailResponse(BaseModel):
    user: UserResponse
    subscription: Optional[SubscriptionResponse] = None
    members: List[MemberResponse]
    member_count: Optional[int] = None


class MarkSubscriptionRequest(BaseModel):
    status: Literal["active", "inactive", "expired", "cancelled"]
    access_date: UTCDatetime = Field(description="New current_period_start")
    expiry_date: UTCDatetime = Field(description="New current_period_end")
    billing_amount: int = Field(ge=0)
    billing_interval: Literal["monthly", "yearly"]

    @model_validator(mode="after")
    def check_period(self) -> "MarkSubscriptionRequest":
        if self.expiry_date < self.access_date:
            raise ValueError("expiry_date must not be before access_date")
        return self


class ExtendSubscriptionRequest(BaseModel):
    days: int = Field(ge=1, le=3650)


class UserAnalytics(BaseModel):
    total: int
    active: int
    owners: int
    members: int
    new_registrations_7_days: int


class SubscriptionAnalytics(BaseModel):
    total: int
    by_status: Dict[str, int]
    trialing: int
    paying: int


class AnalyticsResponse(BaseModel):
    users: UserAnalytics
    subscriptions: SubscriptionAnalytics
    monthly_recurring_revenue: float


class LeadListResponse(BaseModel):
    leads: List[LeadResponse]
    pagination: PageMeta
