"""
CareNote Backend — Super Admin Route Handlers
===============================================

All endpoints require the super-admin capability (403 otherwise).
Super-admin accounts themselves are never listed or modified here.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.authorization import AccessContext
from carenote.database import get_db_session
from carenote.dependencies import require_super_admin
from carenote.schemas.admin import (
    AdminUserDetailResponse,
    AdminUserItem,
    AdminUserListResponse,
    AnalyticsResponse,
    ExtendSubscriptionRequest,
    LeadListResponse,
    MarkSubscriptionRequest,
)
from carenote.schemas.clinic import MemberResponse
from carenote.schemas.common import ErrorResponse, PageMeta
from carenote.schemas.lead import LeadResponse
from carenote.schemas.subscription import SubscriptionResponse
from carenote.services.admin_service import admin_service
from carenote.services.lead_service import lead_service

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    responses={403: {"model": ErrorResponse, "description": "Super admin access required"}},
)


@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=200),
    ctx: AccessContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AdminUserListResponse:
    rows, total = await admin_service.list_users(db, page=page, limit=limit, search=search)
    return AdminUserListResponse(
        users=[AdminUserItem(user=user, subscription=subscription) for user, subscription in rows],
        pagination=PageMeta.build(page, limit, total),
    )


@router.get("/users/{user_id}", response_model=AdminUserDetailResponse, responses={404: {"model": ErrorResponse}})
async def user_details(
    user_id: uuid.UUID,
    ctx: AccessContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AdminUserDetailResponse:
    details = await admin_service.user_details(db, user_id)
    return AdminUserDetailResponse(
        user=details["user"],
        subscription=details["subscription"],
        members=[MemberResponse.model_validate(m) for m in details["members"]],
        member_count=details["member_count"],
    )


@router.get("/analytics", response_model=AnalyticsResponse)
async def analytics(
    ctx: AccessContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AnalyticsResponse:
    return AnalyticsResponse(**await admin_service.analytics(db))


@router.put("/users/{user_id}/subscription", response_model=SubscriptionResponse, responses={404: {"model": ErrorResponse}})
async def mark_subscription(
    user_id: uuid.UUID,
    body: MarkSubscriptionRequest,
    ctx: AccessContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionResponse:
    subscription = await admin_service.mark_subscription(
        db,
        user_id,
        status=body.status,
        period_start=body.access_date,
        period_end=body.expiry_date,
        billing_amount=body.billing_amount,
        billing_interval=body.billing_interval,
    )
    return SubscriptionResponse.model_validate(subscription)


@router.post("/users/{user_id}/subscription/extend", response_model=SubscriptionResponse)
async def extend_subscription(
    user_id: uuid.UUID,
    body: ExtendSubscriptionRequest,
    ctx: AccessContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionResponse:
    subscription = await admin_service.extend_subscription(db, user_id, body.days)
    return SubscriptionResponse.model_validate(subscription)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT, responses={404: {"model": ErrorResponse}})
async def delete_user(
    user_id: uuid.UUID,
    ctx: AccessContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await admin_service.delete_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/leads", response_model=LeadListResponse)
async def list_leads(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    ctx: AccessContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> LeadListResponse:
    leads, total = await lead_service.list_leads(db, page=page, limit=limit)
    return LeadListResponse(
        leads=[LeadResponse.model_validate(lead) for lead in leads],
        pagination=PageMeta.build(page, limit, total),
    )
