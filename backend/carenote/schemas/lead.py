"""Landing-page lead capture schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class LeadCreateRequest(BaseModel):
    email: EmailStr
    marketing_opt_in: bool = False
    source: Optional[str] = Field(default=None, max_length=100)


class LeadResponse(BaseModel):
    id: uuid.UUID
    email: str
    marketing_opt_in: bool
    source: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
