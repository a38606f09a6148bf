"""
CareNote Backend — Clinical Session Route Handlers
====================================================

Every endpoint requires an active subscription (402 otherwise) and only
returns sessions the caller may see: its own, or its members' for owners.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.authorization import AccessContext
from carenote.database import get_db_session
from carenote.dependencies import require_active_subscription
from carenote.models.clinical_session import ClinicalSession
from carenote.schemas.common import ErrorResponse, PageMeta
from carenote.schemas.session import (
    EndSessionResponse,
    FactCreateRequest,
    FactGroupResponse,
    FactResponse,
    FactsResponse,
    FactUpdateRequest,
    SessionListItem,
    SessionListResponse,
    SessionResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from carenote.services.corti_service import corti_service
from carenote.services.session_service import session_service

router = APIRouter(
    prefix="/api/sessions",
    tags=["Sessions"],
    responses={402: {"model": ErrorResponse, "description": "Subscription does not grant access"}},
)


def _list_item(session: ClinicalSession) -> SessionListItem:
    return SessionListItem(
        **SessionResponse.model_validate(session).model_dump(),
        facts_count=len(session.facts),
        active_facts_count=len(session.active_facts),
    )


@router.post(
    "",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Start a recording session (creates a Corti interaction)",
)
async def start_session(
    body: StartSessionRequest,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> StartSessionResponse:
    started = await session_service.start_session(
        db,
        ctx.user,
        session_title=body.session_title,
        specialty=body.specialty,
        patient_identifier=body.patient_identifier,
        encounter_type=body.encounter_type,
    )
    return StartSessionResponse(
        session=SessionResponse.model_validate(started.session),
        stream_token=started.stream_token,
    )


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    days: Optional[int] = Query(default=None, ge=1, le=365),
    user_id: Optional[uuid.UUID] = Query(default=None, description="Narrow to one member"),
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> SessionListResponse:
    sessions, total = await session_service.list_sessions(
        db, ctx, page=page, limit=limit, status=status_filter, days=days, user_id=user_id
    )
    return SessionListResponse(
        sessions=[_list_item(s) for s in sessions],
        pagination=PageMeta.build(page, limit, total),
    )


@router.get("/recent", response_model=List[SessionListItem], summary="Sessions from the last two days")
async def recent_sessions(
    limit: int = Query(default=100, ge=1, le=200),
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> List[SessionListItem]:
    return [_list_item(s) for s in await session_service.recent_sessions(db, ctx, limit=limit)]


@router.get("/fact-groups", response_model=List[FactGroupResponse])
async def fact_groups(ctx: AccessContext = Depends(require_active_subscription)) -> List[FactGroupResponse]:
    groups = await corti_service.get_fact_groups()
    return [FactGroupResponse(key=g.get("key", ""), name=g.get("name", g.get("key", ""))) for g in groups]


@router.get("/{session_id}", response_model=SessionResponse, responses={404: {"model": ErrorResponse}})
async def get_session(
    session_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> SessionResponse:
    return SessionResponse.model_validate(await session_service.get_session(db, ctx, session_id))


@router.get(
    "/{session_id}/facts",
    response_model=FactsResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Facts for a session, refreshed from Corti when reachable",
)
async def get_facts(
    session_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> FactsResponse:
    sync = await session_service.sync_facts(db, ctx, session_id)
    session = sync.session
    return FactsResponse(
        session_id=session.id,
        facts=[FactResponse.model_validate(f) for f in session.active_facts],
        facts_by_group={
            group: [FactResponse.model_validate(f) for f in facts]
            for group, facts in session.facts_by_group().items()
        },
        total_facts=len(session.facts),
        active_facts=len(session.active_facts),
        synced=sync.synced,
    )


@router.post(
    "/{session_id}/facts",
    response_model=FactResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def add_fact(
    session_id: uuid.UUID,
    body: FactCreateRequest,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> FactResponse:
    fact = await session_service.add_fact(db, ctx, session_id, body.text, body.group, body.confidence)
    return FactResponse.model_validate(fact)


@router.patch("/{session_id}/facts/{fact_id}", response_model=FactResponse, responses={404: {"model": ErrorResponse}})
async def update_fact(
    session_id: uuid.UUID,
    fact_id: uuid.UUID,
    body: FactUpdateRequest,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> FactResponse:
    fact = await session_service.update_fact(
        db, ctx, session_id, fact_id, body.model_dump(exclude_unset=True)
    )
    return FactResponse.model_validate(fact)


@router.post("/{session_id}/start-recording", response_model=SessionResponse)
async def start_recording(
    session_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> SessionResponse:
    return SessionResponse.model_validate(await session_service.start_recording(db, ctx, session_id))


@router.post("/{session_id}/end", response_model=EndSessionResponse)
async def end_session(
    session_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> EndSessionResponse:
    session = await session_service.end_session(db, ctx, session_id)
    return EndSessionResponse(
        session=SessionResponse.model_validate(session),
        duration=session.duration,
        facts_count=len(session.active_facts),
    )
