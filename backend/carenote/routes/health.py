"""
CareNote Backend — Health Check Route
=======================================

What:  Health probe for Docker and load balancers.
How:   SELECT 1 against the database; Corti is reported from the circuit
       breaker state plus a token fetch (no clinical calls).

    healthy:   all dependencies operational            (HTTP 200)
    degraded:  Corti unavailable, database up          (HTTP 200)
    unhealthy: database unreachable                    (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from carenote import __version__
from carenote.database import engine
from carenote.exceptions import CareNoteError
from carenote.schemas.common import HealthResponse
from carenote.services.corti_service import CircuitBreaker, corti_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    corti_status = "available"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if corti_service.circuit_breaker.state == CircuitBreaker.OPEN:
        corti_status = "circuit_open"
    else:
        try:
            available = await corti_service.health_check()
        except CareNoteError as e:
            logger.warning("Health check: Corti unreachable: %s", e.message)
            available = False
        if not available:
            corti_status = "unavailable"
    if corti_status != "available" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        corti=corti_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
