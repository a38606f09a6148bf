"""
CareNote Backend — Pricing & Subscription Route Handlers
==========================================================

    GET  /api/pricing                public tier table
    GET  /api/pricing/quote          price + capacity for a license count
    GET  /api/subscription           caller's (billing owner's) subscription
    POST /api/subscription/upgrade   owner: change license count / interval
    POST /api/subscription/cancel    owner
    POST /api/subscription/reactivate owner
"""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.database import get_db_session
from carenote.dependencies import get_current_user, require_owner
from carenote.models.user import User
from carenote.schemas.common import ErrorResponse
from carenote.schemas.subscription import (
    PriceQuoteResponse,
    PricingResponse,
    SubscriptionResponse,
    SubscriptionSummaryResponse,
    UpgradeRequest,
    UpgradeResponse,
)
from carenote.services.pricing import CURRENCY, MONTHLY, pricing_overview, resolve_license_plan
from carenote.services.subscription_service import subscription_service

router = APIRouter(prefix="/api", tags=["Subscription"])


@router.get("/pricing", response_model=PricingResponse, summary="Public pricing table")
async def get_pricing(response: Response) -> PricingResponse:
    response.headers["Cache-Control"] = "public, max-age=3600"
    return PricingResponse(**pricing_overview())


@router.get("/pricing/quote", response_model=PriceQuoteResponse, responses={400: {"model": ErrorResponse}})
async def get_quote(
    licenses: int = Query(ge=1, le=500, description="Number of licenses"),
    interval: str = Query(default=MONTHLY, description="monthly or yearly"),
) -> PriceQuoteResponse:
    plan = resolve_license_plan(licenses, interval)
    return PriceQuoteResponse(
        num_licenses=licenses,
        interval=plan.interval,
        tier=plan.tier_label,
        price_per_license=plan.price_per_license,
        total_price=plan.billing_amount,
        capacity=plan.capacity,
        currency=CURRENCY,
    )


@router.get(
    "/subscription",
    response_model=SubscriptionSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_subscription(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionSummaryResponse:
    return SubscriptionSummaryResponse(**await subscription_service.summary_for(db, user))


@router.post(
    "/subscription/upgrade",
    response_model=UpgradeResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def upgrade_subscription(
    body: UpgradeRequest,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db_session),
) -> UpgradeResponse:
    change = await subscription_service.change_plan(db, owner, body.num_licenses, body.billing_interval)
    subscription = await subscription_service.get_for_owner(db, owner)
    return UpgradeResponse(
        message="Subscription updated",
        subscription=subscription,
        change=change.as_dict(),
    )


@router.post("/subscription/cancel", response_model=SubscriptionResponse, responses={403: {"model": ErrorResponse}})
async def cancel_subscription(
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionResponse:
    subscription = await subscription_service.cancel(db, owner, cancelled_by=owner)
    return SubscriptionResponse.model_validate(subscription)


@router.post("/subscription/reactivate", response_model=SubscriptionResponse, responses={403: {"model": ErrorResponse}})
async def reactivate_subscription(
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionResponse:
    subscription = await subscription_service.reactivate(db, owner)
    return SubscriptionResponse.model_validate(subscription)
