"""Public lead capture: POST /api/leads (201 new, 200 existing, 409 registered user)."""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.database import get_db_session
from carenote.schemas.common import ErrorResponse
from carenote.schemas.lead import LeadCreateRequest, LeadResponse
from carenote.services.lead_service import lead_service

router = APIRouter(prefix="/api/leads", tags=["Leads"])


@router.post(
    "",
    response_model=LeadResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"model": LeadResponse, "description": "Lead already captured"},
        409: {"model": ErrorResponse, "description": "Email belongs to a registered user"},
    },
)
async def create_lead(
    body: LeadCreateRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> LeadResponse:
    lead, created = await lead_service.capture(db, body.email, body.marketing_opt_in, body.source)
    if not created:
        response.status_code = status.HTTP_200_OK
    return LeadResponse.model_validate(lead)
