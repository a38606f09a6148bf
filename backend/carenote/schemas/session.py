"""Clinical session and fact schemas."""

import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from carenote.schemas.common import PageMeta

EncounterType = Literal["consultation", "follow_up", "emergency", "routine"]


class StartSessionRequest(BaseModel):
    session_title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    specialty: Optional[str] = Field(default=None, max_length=100)
    patient_identifier: Optional[str] = Field(default=None, max_length=100)
    encounter_type: EncounterType = "consultation"


class FactResponse(BaseModel):
    id: uuid.UUID
    fact_id: Optional[str] = None
    text: str
    group: str
    confidence: float
    source: str
    is_discarded: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    corti_interaction_id: str
    websocket_url: Optional[str] = None
    status: str
    session_title: Optional[str] = None
    specialty: Optional[str] = None
    patient_identifier: Optional[str] = None
    encounter_type: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: int
    created_at: datetime

    model_config = {"from_attributes": True}


class StartSessionResponse(BaseModel):
    session: SessionResponse
    stream_token: Optional[str] = Field(
        default=None, description="Short-lived token for the Corti streaming socket"
    )


class SessionListItem(SessionResponse):
    facts_count: int
    active_facts_count: int


class SessionListResponse(BaseModel):
    sessions: List[SessionListItem]
    pagination: PageMeta


class FactsResponse(BaseModel):
    session_id: uuid.UUID
    facts: List[FactResponse]
    facts_by_group: Dict[str, List[FactResponse]]
    total_facts: int
    active_facts: int
    synced: bool = Field(description="False when Corti was unreachable and stored facts were returned")


class FactCreateRequest(BaseModel):
    text: str = Field(min_length=1, max_length=1000)
    group: str = Field(min_length=1, max_length=100)
    confidence: float = Field(default=1.0, ge=0, le=1)


class FactUpdateRequest(BaseModel):
    text: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    group: Optional[str] = Field(default=None, min_length=1, max_length=100)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    is_discarded: Optional[bool] = None


class EndSessionResponse(BaseModel):
    session: SessionResponse
    duration: int
    facts_count: int


class FactGroupResponse(BaseModel):
    key: str
    name: str
