"""
CareNote Backend — Lead Capture Service
=========================================

What:  Stores landing-page email sign-ups (with marketing opt-in) before
       the visitor registers.

Rules:
    email belongs to a registered user → ConflictError (already_registered)
    email already captured            → existing lead, created=False
    otherwise                         → new lead, created=True
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.exceptions import ConflictError
from carenote.models.lead import Lead
from carenote.models.user import User

logger = logging.getLogger(__name__)


class LeadService:

    async def capture(
        self,
        db: AsyncSession,
        email: str,
        marketing_opt_in: bool = False,
        source: Optional[str] = None,
    ) -> Tuple[Lead, bool]:
        email = email.strip().lower()

        registered = await db.execute(select(User.id).where(User.email == email))
        if registered.scalar_one_or_none() is not None:
            raise ConflictError(
                message="Denne e-mail er allerede registreret. Log venligst ind i stedet.",
                context={"already_registered": True},
            )

        existing = await db.execute(select(Lead).where(Lead.email == email))
        lead = existing.scalar_one_or_none()
        if lead is not None:
            return lead, False

        lead = Lead(email=email, marketing_opt_in=marketing_opt_in, source=source)
        db.add(lead)
        await db.flush()
        logger.info("Captured lead %s (opt-in=%s)", lead.id, marketing_opt_in)
        return lead, True

    async def list_leads(
        self, db: AsyncSession, page: int = 1, limit: int = 50
    ) -> Tuple[List[Lead], int]:
        total = (await db.execute(select(func.count()).select_from(Lead))).scalar_one()
        result = await db.execute(
            select(Lead).order_by(Lead.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), int(total)


# ── Singleton Instance ────────────────────────────────────────────────────
lead_service = LeadService()
