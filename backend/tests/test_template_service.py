"""
CareNote Backend — Template Service Tests
===========================================

What:  Tests for clinical note generation, versioning and status changes.
How:   Corti's document generation is mocked; templates are real rows.

What we test:
    ✅ Generation stores content, type, specialty and the facts snapshot
    ✅ Regeneration creates version 2 and keeps version 1
    ✅ Search, filters and stats
    ✅ Owner sees a member's templates
    ❌ Unknown template type → ValidationError
    ❌ Finalizing an archived template → ValidationError
    ❌ Member reading the owner's template → NotFoundError
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from carenote.authorization import AccessContext
from carenote.exceptions import NotFoundError, ValidationError
from carenote.models.clinical_session import ClinicalSession
from carenote.services.clinical_ai_base import GeneratedDocument
from carenote.services.template_service import template_service

FACTS = [{"id": "f1", "text": "Hoste", "group": "symptoms", "confidence": 1.0, "source": "ai", "is_discarded": False}]


def _corti_mock(content: str = "Subjective:\nHoste"):
    mock = MagicMock()
    mock.generate_document = AsyncMock(
        return_value=GeneratedDocument(content=content, template_key="corti-soap", template_type="soap", facts=FACTS)
    )
    return mock


async def _session(db, user) -> ClinicalSession:
    session = ClinicalSession(
        user_id=user.id,
        corti_interaction_id=f"int-{uuid.uuid4()}",
        status="completed",
        specialty="almen medicin",
        facts=[],
    )
    db.add(session)
    await db.commit()
    return session


async def _generate(db, user, session, template_type="soap", content="Subjective:\nHoste", **kwargs):
    with patch("carenote.services.template_service.corti_service", _corti_mock(content)):
        return await template_service.generate(
            db, AccessContext.for_user(user), user, session.id, template_type, **kwargs
        )


class TestGenerate:

    @pytest.mark.asyncio
    async def test_generate_soap(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session(db_session, owner)

        template = await _generate(db_session, owner, session, referral="Til øre-næse-hals")

        assert template.type == "soap"
        assert template.status == "draft"
        assert template.version == 1
        assert template.content == "Subjective:\nHoste"
        assert template.specialty == "almen medicin"
        assert template.facts_snapshot == FACTS
        assert template.referral == "Til øre-næse-hals"
        assert template.title.startswith("SOAP Note ")

    @pytest.mark.asyncio
    async def test_unknown_type(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session(db_session, owner)
        with pytest.raises(ValidationError):
            await _generate(db_session, owner, session, template_type="discharge")

    @pytest.mark.asyncio
    async def test_generate_from_invisible_session(self, db_session, make_owner):
        owner = await make_owner()
        stranger = await make_owner(email="stranger@klinik.dk")
        session = await _session(db_session, owner)
        with pytest.raises(NotFoundError):
            await _generate(db_session, stranger, session)

    @pytest.mark.asyncio
    async def test_regenerate_creates_new_version(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session(db_session, owner)
        first = await _generate(db_session, owner, session, title="Konsultation")

        with patch("carenote.services.template_service.corti_service", _corti_mock("Subjective:\nTør hoste")):
            second = await template_service.regenerate(db_session, AccessContext.for_user(owner), first.id)

        assert second.id != first.id
        assert second.version == 2
        assert second.previous_version_id == first.id
        assert second.regenerated_count == 1
        assert second.title == "Konsultation"
        assert second.content == "Subjective:\nTør hoste"
        assert first.content == "Subjective:\nHoste"

        versions = await template_service.for_session(db_session, AccessContext.for_user(owner), session.id)
        assert {t.version for t in versions} == {1, 2}


class TestManageTemplates:

    @pytest.mark.asyncio
    async def test_search_and_filters(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session(db_session, owner)
        await _generate(db_session, owner, session, title="Knæskade")
        await _generate(db_session, owner, session, template_type="nursing-note", title="Sårpleje")
        ctx = AccessContext.for_user(owner)

        found, total = await template_service.list_templates(db_session, ctx, search="knæ")
        assert total == 1
        assert found[0].title == "Knæskade"

        _, nursing = await template_service.list_templates(db_session, ctx, template_type="nursing-note")
        assert nursing == 1

        with pytest.raises(ValidationError):
            await template_service.list_templates(db_session, ctx, status="published")

    @pytest.mark.asyncio
    async def test_stats(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session(db_session, owner)
        template = await _generate(db_session, owner, session)
        await _generate(db_session, owner, session, template_type="brief-clinical-note")
        await template_service.finalize(db_session, AccessContext.for_user(owner), template.id)

        stats = await template_service.stats(db_session, AccessContext.for_user(owner))
        assert stats["total_templates"] == 2
        assert stats["by_status"]["final"] == 1
        assert stats["by_status"]["draft"] == 1
        assert stats["by_type"]["soap"] == 1
        assert stats["avg_regenerations"] == 0.0

    @pytest.mark.asyncio
    async def test_update_and_status_flow(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session(db_session, owner)
        template = await _generate(db_session, owner, session)
        ctx = AccessContext.for_user(owner)

        updated = await template_service.update(db_session, ctx, template.id, {"content": "Rettet", "title": None})
        assert updated.content == "Rettet"
        assert updated.title == template.title

        await template_service.archive(db_session, ctx, template.id)
        with pytest.raises(ValidationError):
            await template_service.finalize(db_session, ctx, template.id)

    @pytest.mark.asyncio
    async def test_delete(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session(db_session, owner)
        template = await _generate(db_session, owner, session)
        ctx = AccessContext.for_user(owner)

        await template_service.delete(db_session, ctx, template.id)
        with pytest.raises(NotFoundError):
            await template_service.get(db_session, ctx, template.id)

    @pytest.mark.asyncio
    async def test_owner_sees_member_templates_but_not_reverse(self, db_session, make_owner, make_member):
        owner = await make_owner()
        member = await make_member(owner)
        member_session = await _session(db_session, member)
        owner_session = await _session(db_session, owner)
        member_template = await _generate(db_session, member, member_session)
        owner_template = await _generate(db_session, owner, owner_session)

        loaded = await template_service.get(db_session, AccessContext.for_user(owner), member_template.id)
        assert loaded.id == member_template.id
        with pytest.raises(NotFoundError):
            await template_service.get(db_session, AccessContext.for_user(member), owner_template.id)
