"""Clinical template (generated note) schemas."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from carenote.schemas.common import PageMeta

TemplateType = Literal["soap", "brief-clinical-note", "nursing-note", "custom"]
TemplateStatus = Literal["draft", "final", "archived"]


class GenerateTemplateRequest(BaseModel):
    session_id: uuid.UUID
    type: TemplateType = "brief-clinical-note"
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    referral: Optional[str] = Field(default=None, max_length=5000)


class RegenerateTemplateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)


class TemplateUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = None
    status: Optional[TemplateStatus] = None
    referral: Optional[str] = Field(default=None, max_length=5000)


class TemplateResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    session_id: Optional[uuid.UUID] = None
    title: str
    content: str
    type: str
    specialty: Optional[str] = None
    status: str
    facts_snapshot: List[Any] = Field(default_factory=list)
    referral: Optional[str] = None
    version: int
    previous_version_id: Optional[uuid.UUID] = None
    regenerated_count: int
    last_regenerated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TemplateListResponse(BaseModel):
    templates: List[TemplateResponse]
    pagination: PageMeta


class TemplateStatsResponse(BaseModel):
    total_templates: int
    by_status: Dict[str, int]
    by_type: Dict[str, int]
    avg_regenerations: float
