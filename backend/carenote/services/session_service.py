"""
CareNote Backend — Clinical Session Service
=============================================

What:  Lifecycle of recorded consultations and their extracted facts.
How:   Every session mirrors a Corti interaction. Facts are pulled from
       Corti on read and merged into `session_facts` by Corti's fact id;
       clinician edits are pushed back to Corti.
Who:   Session routes. All lookups go through AccessContext, so owners
       see their members' sessions and everyone else sees only their own.

Orchestration Flow (POST /api/sessions):
    ┌──────────┐    ┌──────────────────┐    ┌────────────┐
    │  Route   │───▶│ Corti: create    │───▶│  Store     │
    │          │    │ interaction      │    │  (DB)      │
    └──────────┘    └──────────────────┘    └────────────┘

Upstream failures while reading facts are tolerated (stored facts are
returned with synced=False). Failures while creating a session or adding a
fact propagate as UpstreamServiceError / CircuitBreakerOpenError.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.authorization import AccessContext
from carenote.database import utcnow
from carenote.exceptions import CircuitBreakerOpenError, NotFoundError, UpstreamServiceError, ValidationError
from carenote.models.clinical_session import SESSION_STATUSES, ClinicalSession, SessionFact
from carenote.models.user import User
from carenote.services.corti_service import corti_service

logger = logging.getLogger(__name__)

RECENT_DAYS = 2
EDITABLE_STATUSES = ("active", "started")


@dataclass
class StartedSession:
    session: ClinicalSession
    # Short-lived Corti token for the browser's streaming socket; never stored
    stream_token: Optional[str]


@dataclass
class FactSync:
    session: ClinicalSession
    synced: bool


class SessionService:

    # ── Create ────────────────────────────────────────────────────────────
    async def start_session(
        self,
        db: AsyncSession,
        user: User,
        session_title: Optional[str] = None,
        specialty: Optional[str] = None,
        patient_identifier: Optional[str] = None,
        encounter_type: str = "consultation",
    ) -> StartedSession:
        """
        Open a Corti interaction and record it as an `active` session.

        Raises:
            UpstreamServiceError / CircuitBreakerOpenError: Corti unavailable.
        """
        interaction = await corti_service.create_interaction(patient_identifier)

        session = ClinicalSession(
            user_id=user.id,
            corti_interaction_id=interaction.interaction_id,
            websocket_url=interaction.websocket_url,
            status="active",
            session_title=session_title or "Recording Session",
            specialty=specialty or user.specialty or "general",
            patient_identifier=patient_identifier,
            encounter_type=encounter_type,
            facts=[],
        )
        db.add(session)
        await db.flush()

        stream_token = await corti_service.get_access_token()
        logger.info(
            "Started session %s (interaction %s) for user %s",
            session.id, interaction.interaction_id, user.id,
        )
        return StartedSession(session=session, stream_token=stream_token)

    # ── Read ──────────────────────────────────────────────────────────────
    async def get_session(
        self, db: AsyncSession, ctx: AccessContext, session_id: uuid.UUID
    ) -> ClinicalSession:
        return await ctx.load_owned(db, ClinicalSession, session_id, "session")

    async def list_sessions(
        self,
        db: AsyncSession,
        ctx: AccessContext,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = None,
        days: Optional[int] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[ClinicalSession], int]:
        """
        Sessions visible to the caller, newest first.

        `user_id` narrows the result to one user inside the caller's
        visibility (an owner looking at a single member).
        """
        if status is not None and status not in SESSION_STATUSES:
            raise ValidationError(message=f"Unknown session status '{status}'", field="status")

        filters = []
        clause = ctx.visibility_clause(ClinicalSession.user_id)
        if clause is not None:
            filters.append(clause)
        if user_id is not None:
            filters.append(ClinicalSession.user_id == user_id)
        if status is not None:
            filters.append(ClinicalSession.status == status)
        if days is not None:
            filters.append(ClinicalSession.created_at >= utcnow() - timedelta(days=days))

        total = (
            await db.execute(select(func.count()).select_from(ClinicalSession).where(*filters))
        ).scalar_one()
        result = await db.execute(
            select(ClinicalSession)
            .where(*filters)
            .order_by(ClinicalSession.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total)

    async def recent_sessions(
        self, db: AsyncSession, ctx: AccessContext, limit: int = 100
    ) -> List[ClinicalSession]:
        sessions, _ = await self.list_sessions(db, ctx, page=1, limit=limit, days=RECENT_DAYS)
        return sessions

    # ── Facts ─────────────────────────────────────────────────────────────
    async def sync_facts(
        self, db: AsyncSession, ctx: AccessContext, session_id: uuid.UUID
    ) -> FactSync:
        """Pull facts from Corti; on upstream failure keep the stored ones."""
        session = await self.get_session(db, ctx, session_id)
        try:
            remote = await corti_service.get_facts(session.corti_interaction_id)
        except (UpstreamServiceError, CircuitBreakerOpenError) as e:
            logger.warning(
                "Failed to sync facts for session %s, using stored facts: %s", session.id, e.message
            )
            return FactSync(session=session, synced=False)

        self._merge_facts(session, remote)
        session.facts_synced_at = utcnow()
        await db.flush()
        return FactSync(session=session, synced=True)

    @staticmethod
    def _merge_facts(session: ClinicalSession, remote: List[Dict[str, Any]]) -> None:
        # `remote` holds only non-discarded facts; anything upstream-known and
        # missing from it has been discarded in Corti
        local = {fact.fact_id: fact for fact in session.facts if fact.fact_id}
        seen = set()
        for raw in remote:
            fact_id = raw.get("id")
            if not fact_id:
                continue
            seen.add(fact_id)
            fact = local.get(fact_id)
            if fact is None:
                session.facts.append(SessionFact(
                    fact_id=fact_id,
                    text=raw["text"][:1000],
                    group=raw["group"][:100],
                    confidence=raw.get("confidence", 1.0),
                    source=raw.get("source", "ai"),
                ))
            else:
                fact.text = raw["text"][:1000]
                fact.group = raw["group"][:100]
                fact.is_discarded = False
        for fact_id, fact in local.items():
            if fact_id not in seen:
                fact.is_discarded = True

    async def add_fact(
        self,
        db: AsyncSession,
        ctx: AccessContext,
        session_id: uuid.UUID,
        text: str,
        group: str,
        confidence: float = 1.0,
    ) -> SessionFact:
        """
        Add a clinician-written fact. It is created in Corti first so the
        generated documents include it.
        """
        session = await self.get_session(db, ctx, session_id)
        if session.status not in EDITABLE_STATUSES:
            raise ValidationError(message="Facts can only be added to an active session")

        created = await corti_service.add_fact(session.corti_interaction_id, text, group, source="user")
        fact = SessionFact(
            fact_id=created.get("id"),
            text=text,
            group=group,
            confidence=confidence,
            source="user",
        )
        session.facts.append(fact)
        await db.flush()
        return fact

    async def update_fact(
        self,
        db: AsyncSession,
        ctx: AccessContext,
        session_id: uuid.UUID,
        fact_id: uuid.UUID,
        changes: Dict[str, Any],
    ) -> SessionFact:
        """
        Edit or discard a stored fact. The Corti update is best-effort: the
        local edit is kept even when Corti is unreachable.
        """
        session = await self.get_session(db, ctx, session_id)
        fact = next((f for f in session.facts if f.id == fact_id), None)
        if fact is None:
            raise NotFoundError(resource="fact", resource_id=str(fact_id))

        for field in ("text", "group", "confidence", "is_discarded"):
            if changes.get(field) is not None:
                setattr(fact, field, changes[field])

        if fact.fact_id:
            try:
                await corti_service.update_fact(
                    session.corti_interaction_id,
                    fact.fact_id,
                    text=fact.text,
                    group=fact.group,
                    is_discarded=fact.is_discarded,
                )
            except (UpstreamServiceError, CircuitBreakerOpenError) as e:
                logger.warning("Failed to update fact %s in Corti: %s", fact.fact_id, e.message)

        await db.flush()
        return fact

    # ── Status transitions ────────────────────────────────────────────────
    async def start_recording(
        self, db: AsyncSession, ctx: AccessContext, session_id: uuid.UUID
    ) -> ClinicalSession:
        session = await self.get_session(db, ctx, session_id)
        if session.status != "active":
            raise ValidationError(message=f"Session is '{session.status}', expected 'active'")
        session.start_recording()
        await db.flush()
        return session

    async def end_session(
        self, db: AsyncSession, ctx: AccessContext, session_id: uuid.UUID
    ) -> ClinicalSession:
        session = await self.get_session(db, ctx, session_id)
        if session.status not in EDITABLE_STATUSES:
            raise ValidationError(message=f"Session is already '{session.status}'")
        session.end()
        await db.flush()
        logger.info("Session %s ended after %ds", session.id, session.duration)
        return session


# ── Singleton Instance ────────────────────────────────────────────────────
session_service = SessionService()
