"""
CareNote Backend — Clinical Session Service Tests
===================================================

What:  Tests for SessionService with the Corti client mocked.
How:   Patches `corti_service` where SessionService looks it up.

What we test:
    ✅ Starting a session stores the interaction and returns a stream token
    ✅ Fact sync merges by Corti fact id and marks vanished facts discarded
    ✅ Upstream failure during sync keeps stored facts (synced=False)
    ✅ Clinician facts are created in Corti first
    ✅ Fact edits survive a Corti outage
    ✅ active → started → completed with duration
    ❌ Facts on a completed session → ValidationError
    ❌ Ending twice → ValidationError
    ❌ Unknown status filter → ValidationError
"""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from carenote.authorization import AccessContext
from carenote.database import utcnow
from carenote.exceptions import CircuitBreakerOpenError, UpstreamServiceError, ValidationError
from carenote.models.clinical_session import ClinicalSession, SessionFact
from carenote.services.clinical_ai_base import Interaction
from carenote.services.session_service import session_service


def _corti_mock():
    mock = MagicMock()
    mock.create_interaction = AsyncMock(return_value=Interaction("int-1", "wss://stream/int-1"))
    mock.get_access_token = AsyncMock(return_value="stream-token")
    mock.get_facts = AsyncMock(return_value=[])
    mock.add_fact = AsyncMock(return_value={"id": "f-new", "text": "x", "group": "other"})
    mock.update_fact = AsyncMock(return_value={})
    return mock


async def _session_with_facts(db, user, status="active") -> ClinicalSession:
    session = ClinicalSession(
        user_id=user.id,
        corti_interaction_id=f"int-{uuid.uuid4()}",
        status=status,
        facts=[
            SessionFact(fact_id="f1", text="Hoste", group="symptoms", source="ai"),
            SessionFact(fact_id="f2", text="Feber", group="symptoms", source="ai"),
        ],
    )
    db.add(session)
    await db.commit()
    return session


class TestStartSession:

    @pytest.mark.asyncio
    async def test_start_session(self, db_session, make_owner):
        owner = await make_owner()
        owner.specialty = "almen medicin"
        with patch("carenote.services.session_service.corti_service", _corti_mock()) as corti:
            started = await session_service.start_session(db_session, owner, patient_identifier="p-1")

        session = started.session
        assert started.stream_token == "stream-token"
        assert session.corti_interaction_id == "int-1"
        assert session.websocket_url == "wss://stream/int-1"
        assert session.status == "active"
        assert session.session_title == "Recording Session"
        assert session.specialty == "almen medicin"
        assert session.facts == []
        corti.create_interaction.assert_awaited_once_with("p-1")

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, db_session, make_owner):
        owner = await make_owner()
        corti = _corti_mock()
        corti.create_interaction.side_effect = UpstreamServiceError(service="corti", operation="create_interaction")
        with patch("carenote.services.session_service.corti_service", corti):
            with pytest.raises(UpstreamServiceError):
                await session_service.start_session(db_session, owner)


class TestFacts:

    @pytest.mark.asyncio
    async def test_sync_merges_by_fact_id(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session_with_facts(db_session, owner)
        corti = _corti_mock()
        corti.get_facts.return_value = [
            {"id": "f1", "text": "Tør hoste", "group": "symptoms", "confidence": 0.9, "source": "ai"},
            {"id": "f3", "text": "Penicillin", "group": "allergies", "confidence": 1.0, "source": "ai"},
        ]

        with patch("carenote.services.session_service.corti_service", corti):
            result = await session_service.sync_facts(db_session, AccessContext.for_user(owner), session.id)

        assert result.synced is True
        by_id = {f.fact_id: f for f in result.session.facts}
        assert by_id["f1"].text == "Tør hoste"
        assert by_id["f2"].is_discarded is True
        assert by_id["f3"].group == "allergies"
        assert {f.fact_id for f in result.session.active_facts} == {"f1", "f3"}
        assert result.session.facts_synced_at is not None

    @pytest.mark.asyncio
    async def test_sync_failure_keeps_stored_facts(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session_with_facts(db_session, owner)
        corti = _corti_mock()
        corti.get_facts.side_effect = CircuitBreakerOpenError(recovery_time=30)

        with patch("carenote.services.session_service.corti_service", corti):
            result = await session_service.sync_facts(db_session, AccessContext.for_user(owner), session.id)

        assert result.synced is False
        assert len(result.session.active_facts) == 2

    @pytest.mark.asyncio
    async def test_add_fact(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session_with_facts(db_session, owner)
        corti = _corti_mock()

        with patch("carenote.services.session_service.corti_service", corti):
            fact = await session_service.add_fact(
                db_session, AccessContext.for_user(owner), session.id, "Ryger", "social-history"
            )

        assert fact.fact_id == "f-new"
        assert fact.source == "user"
        assert len(session.facts) == 3
        corti.add_fact.assert_awaited_once_with(session.corti_interaction_id, "Ryger", "social-history", source="user")

    @pytest.mark.asyncio
    async def test_add_fact_to_completed_session(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session_with_facts(db_session, owner, status="completed")
        with patch("carenote.services.session_service.corti_service", _corti_mock()):
            with pytest.raises(ValidationError):
                await session_service.add_fact(
                    db_session, AccessContext.for_user(owner), session.id, "Ryger", "other"
                )

    @pytest.mark.asyncio
    async def test_update_fact_survives_corti_outage(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session_with_facts(db_session, owner)
        fact = session.facts[0]
        corti = _corti_mock()
        corti.update_fact.side_effect = UpstreamServiceError(service="corti", operation="update_fact")

        with patch("carenote.services.session_service.corti_service", corti):
            updated = await session_service.update_fact(
                db_session, AccessContext.for_user(owner), session.id, fact.id,
                {"text": "Produktiv hoste", "is_discarded": None},
            )

        assert updated.text == "Produktiv hoste"
        assert updated.is_discarded is False
        corti.update_fact.assert_awaited_once()


class TestStatusTransitions:

    @pytest.mark.asyncio
    async def test_record_and_end(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session_with_facts(db_session, owner)
        ctx = AccessContext.for_user(owner)

        await session_service.start_recording(db_session, ctx, session.id)
        assert session.status == "started"
        session.started_at = utcnow() - timedelta(minutes=5)

        ended = await session_service.end_session(db_session, ctx, session.id)
        assert ended.status == "completed"
        assert 299 <= ended.duration <= 301

        with pytest.raises(ValidationError):
            await session_service.end_session(db_session, ctx, session.id)

    @pytest.mark.asyncio
    async def test_start_recording_requires_active(self, db_session, make_owner):
        owner = await make_owner()
        session = await _session_with_facts(db_session, owner, status="completed")
        with pytest.raises(ValidationError):
            await session_service.start_recording(db_session, AccessContext.for_user(owner), session.id)

    @pytest.mark.asyncio
    async def test_unknown_status_filter(self, db_session, make_owner):
        owner = await make_owner()
        with pytest.raises(ValidationError):
            await session_service.list_sessions(db_session, AccessContext.for_user(owner), status="paused")

    @pytest.mark.asyncio
    async def test_recent_sessions_window(self, db_session, make_owner):
        owner = await make_owner()
        fresh = await _session_with_facts(db_session, owner)
        old = await _session_with_facts(db_session, owner)
        old.created_at = utcnow() - timedelta(days=5)
        await db_session.commit()

        recent = await session_service.recent_sessions(db_session, AccessContext.for_user(owner))
        assert [s.id for s in recent] == [fresh.id]
