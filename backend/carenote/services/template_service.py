"""
CareNote Backend — Clinical Template Service
==============================================

What:  Generates clinical notes from session facts and manages their
       versions and status (draft → final → archived).
How:   Generation asks Corti for a document of the requested type, using
       the session's current facts, and stores it with a facts snapshot.
       Regeneration creates a new row linked through previous_version_id.
Who:   Template routes; access is scoped with AccessContext like sessions.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.authorization import AccessContext
from carenote.database import utcnow
from carenote.exceptions import NotFoundError, ValidationError
from carenote.models.clinical_session import ClinicalSession
from carenote.models.template import TEMPLATE_STATUSES, TEMPLATE_TYPES, Template
from carenote.models.user import User
from carenote.services.corti_service import DEFAULT_TEMPLATE, TEMPLATE_KEYS, corti_service

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "content", "status", "referral")


def default_title(template_type: str) -> str:
    _, name = TEMPLATE_KEYS.get(template_type, DEFAULT_TEMPLATE)
    if template_type == "custom":
        name = "Custom Note"
    return f"{name} {utcnow():%d.%m.%Y %H:%M}"


class TemplateService:

    # ── Generate ──────────────────────────────────────────────────────────
    async def generate(
        self,
        db: AsyncSession,
        ctx: AccessContext,
        user: User,
        session_id: uuid.UUID,
        template_type: str = "brief-clinical-note",
        title: Optional[str] = None,
        referral: Optional[str] = None,
    ) -> Template:
        """
        Generate a draft note from a session the caller may access.

        Raises:
            ValidationError: unknown template type.
            NotFoundError: session missing or not visible.
            UpstreamServiceError / CircuitBreakerOpenError: Corti unavailable.
        """
        self._check_type(template_type)
        session = await ctx.load_owned(db, ClinicalSession, session_id, "session")

        document = await corti_service.generate_document(session.corti_interaction_id, template_type)
        template = Template(
            user_id=user.id,
            session_id=session.id,
            title=title or default_title(template_type),
            content=document.content,
            type=template_type,
            specialty=session.specialty or user.specialty,
            status="draft",
            facts_snapshot=document.facts,
            referral=referral,
        )
        db.add(template)
        await db.flush()
        logger.info(
            "Generated %s template %s from session %s using %d facts",
            template_type, template.id, session.id, len(document.facts),
        )
        return template

    async def regenerate(
        self,
        db: AsyncSession,
        ctx: AccessContext,
        template_id: uuid.UUID,
        title: Optional[str] = None,
    ) -> Template:
        """New version from the session's current facts; the old row is kept."""
        template = await self.get(db, ctx, template_id)
        if template.session_id is None:
            raise NotFoundError(resource="template session")
        session = await db.get(ClinicalSession, template.session_id)
        if session is None:
            raise NotFoundError(resource="template session", resource_id=str(template.session_id))

        document = await corti_service.generate_document(session.corti_interaction_id, template.type)
        new_template = template.new_version(document.content, title)
        new_template.facts_snapshot = document.facts
        db.add(new_template)
        await db.flush()
        logger.info(
            "Regenerated template %s as version %d (%s)",
            template.id, new_template.version, new_template.id,
        )
        return new_template

    # ── Read ──────────────────────────────────────────────────────────────
    async def get(self, db: AsyncSession, ctx: AccessContext, template_id: uuid.UUID) -> Template:
        return await ctx.load_owned(db, Template, template_id, "template")

    async def list_templates(
        self,
        db: AsyncSession,
        ctx: AccessContext,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        template_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Template], int]:
        filters = []
        clause = ctx.visibility_clause(Template.user_id)
        if clause is not None:
            filters.append(clause)
        if status is not None:
            self._check_status(status)
            filters.append(Template.status == status)
        if template_type is not None:
            self._check_type(template_type)
            filters.append(Template.type == template_type)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(Template.title.ilike(pattern), Template.content.ilike(pattern)))

        total = (
            await db.execute(select(func.count()).select_from(Template).where(*filters))
        ).scalar_one()
        result = await db.execute(
            select(Template)
            .where(*filters)
            .order_by(Template.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total)

    async def for_session(
        self, db: AsyncSession, ctx: AccessContext, session_id: uuid.UUID
    ) -> List[Template]:
        """All versions generated from one session, newest first."""
        session = await ctx.load_owned(db, ClinicalSession, session_id, "session")
        result = await db.execute(
            select(Template)
            .where(Template.session_id == session.id)
            .order_by(Template.created_at.desc())
        )
        return list(result.scalars().all())

    async def stats(self, db: AsyncSession, ctx: AccessContext) -> Dict[str, Any]:
        filters = []
        clause = ctx.visibility_clause(Template.user_id)
        if clause is not None:
            filters.append(clause)
        result = await db.execute(
            select(Template.status, Template.type, func.count(), func.avg(Template.regenerated_count))
            .where(*filters)
            .group_by(Template.status, Template.type)
        )
        stats: Dict[str, Any] = {
            "total_templates": 0,
            "by_status": {status: 0 for status in TEMPLATE_STATUSES},
            "by_type": {t: 0 for t in TEMPLATE_TYPES},
            "avg_regenerations": 0.0,
        }
        weighted = 0.0
        for status, template_type, count, avg_regen in result.all():
            stats["total_templates"] += count
            stats["by_status"][status] = stats["by_status"].get(status, 0) + count
            stats["by_type"][template_type] = stats["by_type"].get(template_type, 0) + count
            weighted += float(avg_regen or 0) * count
        if stats["total_templates"]:
            stats["avg_regenerations"] = round(weighted / stats["total_templates"], 2)
        return stats

    # ── Write ─────────────────────────────────────────────────────────────
    async def update(
        self, db: AsyncSession, ctx: AccessContext, template_id: uuid.UUID, changes: Dict[str, Any]
    ) -> Template:
        template = await self.get(db, ctx, template_id)
        if changes.get("status") is not None:
            self._check_status(changes["status"])
        for field in EDITABLE_FIELDS:
            if changes.get(field) is not None:
                setattr(template, field, changes[field])
        await db.flush()
        return template

    async def finalize(self, db: AsyncSession, ctx: AccessContext, template_id: uuid.UUID) -> Template:
        template = await self.get(db, ctx, template_id)
        if template.status == "archived":
            raise ValidationError(message="Archived templates cannot be finalized")
        template.status = "final"
        await db.flush()
        return template

    async def archive(self, db: AsyncSession, ctx: AccessContext, template_id: uuid.UUID) -> Template:
        template = await self.get(db, ctx, template_id)
        template.status = "archived"
        await db.flush()
        return template

    async def delete(self, db: AsyncSession, ctx: AccessContext, template_id: uuid.UUID) -> None:
        template = await self.get(db, ctx, template_id)
        await db.delete(template)
        await db.flush()
        logger.info("Deleted template %s", template_id)

    @staticmethod
    def _check_type(template_type: str) -> None:
        if template_type not in TEMPLATE_TYPES:
            raise ValidationError(
                message=f"Template type must be one of: {', '.join(TEMPLATE_TYPES)}",
                field="type",
            )

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in TEMPLATE_STATUSES:
            raise ValidationError(
                message=f"Template status must be one of: {', '.join(TEMPLATE_STATUSES)}",
                field="status",
            )


# ── Singleton Instance ────────────────────────────────────────────────────
template_service = TemplateService()
