"""Clinic (tenant) membership schemas."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from carenote.schemas.subscription import PlanChangeResponse


class MemberResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    phone: Optional[str] = None
    specialty: Optional[str] = None
    workplace: Optional[str] = None
    can_invite: bool
    is_active: bool
    email_verified: bool
    is_pending_invitation: bool
    invitation_sent_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MemberListResponse(BaseModel):
    tenant_name: str
    members: List[MemberResponse]
    member_count: int = Field(description="Members plus the owner")
    num_licenses: int
    available_seats: int


class InviteMemberRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    specialty: Optional[str] = Field(default=None, max_length=100)


class InviteMemberResponse(BaseModel):
    message: str
    member: MemberResponse
    member_count: int
    subscription_upgraded: bool
    upgrade: Optional[PlanChangeResponse] = None


class MemberStatusRequest(BaseModel):
    is_active: bool


class MemberRemovalResponse(BaseModel):
    message: str
    outcome: str = Field(description="deleted (pending invitation) or detached (accepted member)")
