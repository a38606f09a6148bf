"""
CareNote Backend — Auth & Account Schemas
===========================================

Password rule: at least `password_min_length` characters with one lowercase
letter, one uppercase letter and one digit.
"""

import re
import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator

from carenote.config import settings
from carenote.schemas.common import UTCDatetime
from carenote.schemas.subscription import SubscriptionResponse


def check_password_strength(value: str) -> str:
    if len(value) < settings.password_min_length:
        raise ValueError(f"Password must be at least {settings.password_min_length} characters long")
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError("Password must contain at least one lowercase letter, one uppercase letter, and one number")
    return value


StrongPassword = Annotated[str, AfterValidator(check_password_strength)]


# ══════════════════════════════════════════════════════════════════════════
# Requests
# ══════════════════════════════════════════════════════════════════════════


class RegisterRequest(BaseModel):
    email: EmailStr
    password: StrongPassword = Field(max_length=128)
    name: str = Field(min_length=2, max_length=100)
    num_licenses: int = Field(default=1, ge=1, le=500, description="Licenses requested at signup")
    billing_interval: Literal["monthly", "yearly"] = "monthly"
    phone: Optional[str] = Field(default=None, max_length=50)
    specialty: Optional[str] = Field(default=None, max_length=100)
    workplace: Optional[str] = Field(default=None, max_length=200)
    journal_system: Optional[str] = Field(default=None, max_length=100)
    trial_end_date: Optional[UTCDatetime] = Field(
        default=None, description="Explicit trial end (defaults to the standard trial length)"
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be between 2 and 100 characters")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    specialty: Optional[str] = Field(default=None, max_length=100)
    workplace: Optional[str] = Field(default=None, max_length=200)
    journal_system: Optional[str] = Field(default=None, max_length=100)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: StrongPassword = Field(max_length=128)


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: StrongPassword = Field(max_length=128)


class TokenRequest(BaseModel):
    token: str


class AcceptInvitationRequest(BaseModel):
    token: str
    password: StrongPassword = Field(max_length=128)


# ══════════════════════════════════════════════════════════════════════════
# Responses
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    phone: Optional[str] = None
    specialty: Optional[str] = None
    workplace: Optional[str] = None
    journal_system: Optional[str] = None
    role: str
    is_company_admin: bool
    can_invite: bool
    invited_by: Optional[uuid.UUID] = None
    email_verified: bool
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token lifetime in seconds")


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class RegisterResponse(BaseModel):
    message: str
    user: UserResponse
    subscription: SubscriptionResponse


class LoginResponse(TokenPair):
    user: UserResponse


class MeResponse(BaseModel):
    user: UserResponse
    is_owner: bool
    is_super_admin: bool


class InvitationInfoResponse(BaseModel):
    email: str
    name: str
    tenant_name: str
    invited_by: Optional[str] = None


class AcceptInvitationResponse(TokenPair):
    user: UserResponse
    tenant_name: str
