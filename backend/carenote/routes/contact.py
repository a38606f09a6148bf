"""Public contact form: POST /api/contact forwards the message to the support inbox."""

import logging

from fastapi import APIRouter, status

from carenote.schemas.common import ErrorResponse, MessageResponse
from carenote.schemas.contact import ContactRequest
from carenote.services.email_service import email_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contact", tags=["Contact"])


@router.post(
    "",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={502: {"model": ErrorResponse, "description": "The message could not be delivered"}},
    summary="Send a message to CareNote support",
)
async def send_contact_message(body: ContactRequest) -> MessageResponse:
    await email_service.send_contact_message(
        name=body.name,
        email=body.email,
        subject=body.subject,
        message=body.message,
    )
    logger.info("Contact message forwarded to support")
    return MessageResponse(message="Din besked er blevet sendt. Vi vender tilbage hurtigst muligt.")
