"""
CareNote Backend — Clinical Template Route Handlers
=====================================================

Generated notes. Subscription-gated and access-scoped like sessions.
Regeneration returns a new version (201); the previous row is kept.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.authorization import AccessContext
from carenote.database import get_db_session
from carenote.dependencies import require_active_subscription
from carenote.schemas.common import ErrorResponse, PageMeta
from carenote.schemas.template import (
    GenerateTemplateRequest,
    RegenerateTemplateRequest,
    TemplateListResponse,
    TemplateResponse,
    TemplateStatsResponse,
    TemplateUpdateRequest,
)
from carenote.services.template_service import template_service

router = APIRouter(
    prefix="/api/templates",
    tags=["Templates"],
    responses={402: {"model": ErrorResponse, "description": "Subscription does not grant access"}},
)


@router.post(
    "/generate",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Generate a clinical note from a session's facts",
)
async def generate_template(
    body: GenerateTemplateRequest,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateResponse:
    template = await template_service.generate(
        db,
        ctx,
        ctx.user,
        session_id=body.session_id,
        template_type=body.type,
        title=body.title,
        referral=body.referral,
    )
    return TemplateResponse.model_validate(template)


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    type_filter: Optional[str] = Query(default=None, alias="type"),
    search: Optional[str] = Query(default=None, max_length=200),
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateListResponse:
    templates, total = await template_service.list_templates(
        db, ctx, page=page, limit=limit, status=status_filter, template_type=type_filter, search=search
    )
    response.headers["X-Total-Count"] = str(total)
    return TemplateListResponse(
        templates=[TemplateResponse.model_validate(t) for t in templates],
        pagination=PageMeta.build(page, limit, total),
    )


@router.get("/stats", response_model=TemplateStatsResponse)
async def template_stats(
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateStatsResponse:
    return TemplateStatsResponse(**await template_service.stats(db, ctx))


@router.get("/session/{session_id}", response_model=List[TemplateResponse], responses={404: {"model": ErrorResponse}})
async def templates_for_session(
    session_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> List[TemplateResponse]:
    templates = await template_service.for_session(db, ctx, session_id)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.get("/{template_id}", response_model=TemplateResponse, responses={404: {"model": ErrorResponse}})
async def get_template(
    template_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateResponse:
    return TemplateResponse.model_validate(await template_service.get(db, ctx, template_id))


@router.put("/{template_id}", response_model=TemplateResponse, responses={404: {"model": ErrorResponse}})
async def update_template(
    template_id: uuid.UUID,
    body: TemplateUpdateRequest,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateResponse:
    template = await template_service.update(db, ctx, template_id, body.model_dump(exclude_unset=True))
    return TemplateResponse.model_validate(template)


@router.post(
    "/{template_id}/regenerate",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def regenerate_template(
    template_id: uuid.UUID,
    body: Optional[RegenerateTemplateRequest] = None,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateResponse:
    title = body.title if body else None
    return TemplateResponse.model_validate(await template_service.regenerate(db, ctx, template_id, title))


@router.post("/{template_id}/finalize", response_model=TemplateResponse)
async def finalize_template(
    template_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateResponse:
    return TemplateResponse.model_validate(await template_service.finalize(db, ctx, template_id))


@router.post("/{template_id}/archive", response_model=TemplateResponse)
async def archive_template(
    template_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> TemplateResponse:
    return TemplateResponse.model_validate(await template_service.archive(db, ctx, template_id))


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT, responses={404: {"model": ErrorResponse}})
async def delete_template(
    template_id: uuid.UUID,
    ctx: AccessContext = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await template_service.delete(db, ctx, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
