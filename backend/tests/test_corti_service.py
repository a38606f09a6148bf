"""
CareNote Backend — Corti Client Tests (Mocked Transport)
==========================================================

What:  Tests for CortiService and its CircuitBreaker.
How:   httpx.MockTransport answers both the token endpoint and the API, so
       no network is used. Retry waits are zero in the test settings.

What we test:
    ✅ Circuit breaker state transitions
    ✅ Access token is fetched once and cached
    ✅ Tenant and bearer headers on API calls
    ✅ Transient 5xx / transport errors are retried, then recover
    ✅ Discarded facts are filtered out
    ✅ Multi-section documents are formatted "name:\\ntext" in sort order
    ✅ Fallback fact groups while the breaker is open
    ❌ Exhausted retries → UpstreamServiceError naming the operation
    ❌ 4xx is not retried and does not trip the breaker
    ❌ 401 drops the cached token
"""

import json
import time

import httpx
import pytest

from carenote.config import settings
from carenote.exceptions import CircuitBreakerOpenError, UpstreamServiceError
from carenote.services.corti_service import FALLBACK_FACT_GROUPS, CircuitBreaker, CortiService

TOKEN_PATH = "/realms/test-tenant/protocol/openid-connect/token"


class FakeCorti:
    """Programmable stand-in for the Corti auth server and API."""

    def __init__(self):
        self.calls = []
        self.token_requests = 0
        self.routes = {}

    def route(self, method: str, path: str, *responses):
        # Responses are consumed in order; the last one repeats
        self.routes[(method, path)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == TOKEN_PATH:
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": f"tok-{self.token_requests}", "expires_in": 300})

        self.calls.append(request)
        responses = self.routes.get((request.method, request.url.path))
        if not responses:
            return httpx.Response(404, json={"error": "unrouted"})
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)


@pytest.fixture
def fake_corti():
    return FakeCorti()


@pytest.fixture
def corti(fake_corti):
    return CortiService(transport=httpx.MockTransport(fake_corti))


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"

    def test_open_circuit_rejects_calls(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert 1 <= exc_info.value.recovery_time <= 60

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        assert cb.failure_count == 2

        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == "closed"

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        assert cb.state == "open"

        assert cb.can_execute() is True
        assert cb.state == "half_open"

    def test_failure_while_half_open_reopens(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            cb.record_failure()
        cb.can_execute()
        cb.record_failure()
        assert cb.state == "open"

    def test_success_after_half_open_closes(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        cb.can_execute()

        cb.record_success()
        assert cb.state == "closed"
        assert cb.failure_count == 0


class TestCortiTransport:
    """Token handling, retries and breaker bookkeeping."""

    @pytest.mark.asyncio
    async def test_token_is_cached(self, corti, fake_corti):
        fake_corti.route("GET", "/v2/interactions/abc/facts", httpx.Response(200, json={"facts": []}))

        await corti.get_facts("abc")
        await corti.get_facts("abc")

        assert fake_corti.token_requests == 1
        request = fake_corti.calls[0]
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.headers["Tenant-Name"] == "test-tenant"

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self, corti, fake_corti):
        fake_corti.route("GET", "/v2/interactions/abc/facts", httpx.Response(503))

        with pytest.raises(UpstreamServiceError) as exc_info:
            await corti.get_facts("abc")

        assert exc_info.value.service == "corti"
        assert exc_info.value.operation == "get_facts"
        assert len(fake_corti.calls) == settings.retry_max_attempts
        assert corti.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, corti, fake_corti):
        fake_corti.route(
            "GET", "/v2/interactions/abc/facts",
            httpx.Response(502),
            httpx.Response(200, json={"facts": [{"id": "f1", "text": "Hoste", "group": "symptoms"}]}),
        )

        facts = await corti.get_facts("abc")

        assert [f["id"] for f in facts] == ["f1"]
        assert len(fake_corti.calls) == 2
        assert corti.circuit_breaker.state == "closed"
        assert corti.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, corti, fake_corti):
        fake_corti.route(
            "GET", "/v2/interactions/abc/facts",
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json={"facts": []}),
        )
        assert await corti.get_facts("abc") == []
        assert len(fake_corti.calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, corti, fake_corti):
        fake_corti.route("GET", "/v2/interactions/abc/facts", httpx.Response(404))

        with pytest.raises(UpstreamServiceError) as exc_info:
            await corti.get_facts("abc")

        assert exc_info.value.context["status_code"] == 404
        assert len(fake_corti.calls) == 1
        assert corti.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_unauthorized_drops_cached_token(self, corti, fake_corti):
        fake_corti.route(
            "GET", "/v2/interactions/abc/facts",
            httpx.Response(401),
            httpx.Response(200, json={"facts": []}),
        )

        with pytest.raises(UpstreamServiceError):
            await corti.get_facts("abc")
        await corti.get_facts("abc")

        assert fake_corti.token_requests == 2

    @pytest.mark.asyncio
    async def test_authentication_failure(self):
        def handler(request):
            return httpx.Response(500)

        corti = CortiService(transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamServiceError) as exc_info:
            await corti.get_facts("abc")
        assert exc_info.value.operation == "authenticate"
        assert corti.circuit_breaker.failure_count == 1
        assert await corti.health_check() is False

    @pytest.mark.asyncio
    async def test_open_breaker_sheds_calls(self, corti, fake_corti):
        corti.circuit_breaker.state = CircuitBreaker.OPEN
        corti.circuit_breaker.last_failure_time = time.monotonic()

        with pytest.raises(CircuitBreakerOpenError):
            await corti.get_facts("abc")
        assert fake_corti.calls == []
        assert await corti.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_fetches_token(self, corti, fake_corti):
        assert await corti.health_check() is True
        assert fake_corti.token_requests == 1


class TestCortiOperations:
    """Payload mapping for interactions, facts and documents."""

    @pytest.mark.asyncio
    async def test_create_interaction(self, corti, fake_corti):
        fake_corti.route(
            "POST", "/v2/interactions/",
            httpx.Response(201, json={"interactionId": "int-1", "websocketUrl": "wss://stream/int-1"}),
        )

        interaction = await corti.create_interaction("patient-7")

        assert interaction.interaction_id == "int-1"
        assert interaction.websocket_url == "wss://stream/int-1"
        body = json.loads(fake_corti.calls[0].content)
        assert body["patient"]["identifier"] == "patient-7"

    @pytest.mark.asyncio
    async def test_create_interaction_without_id(self, corti, fake_corti):
        fake_corti.route("POST", "/v2/interactions/", httpx.Response(201, json={}))
        with pytest.raises(UpstreamServiceError):
            await corti.create_interaction()

    @pytest.mark.asyncio
    async def test_get_facts_normalizes_and_filters(self, corti, fake_corti):
        fake_corti.route(
            "GET", "/v2/interactions/abc/facts",
            httpx.Response(200, json={"facts": [
                {"id": "f1", "text": "Feber", "group": "symptoms", "source": "core"},
                {"id": "f2", "text": "Forkert", "group": "other", "isDiscarded": True},
                {"id": "f3", "text": "Ingen gruppe", "source": "user", "confidence": 0.4},
            ]}),
        )

        facts = await corti.get_facts("abc")

        assert [f["id"] for f in facts] == ["f1", "f3"]
        assert facts[0]["source"] == "ai"
        assert facts[0]["confidence"] == 1.0
        assert facts[1]["group"] == "other"
        assert facts[1]["source"] == "user"
        assert facts[1]["confidence"] == 0.4

    @pytest.mark.asyncio
    async def test_add_fact_returns_created(self, corti, fake_corti):
        fake_corti.route(
            "POST", "/v2/interactions/abc/facts/",
            httpx.Response(201, json={"facts": [{"id": "f9", "text": "Allergi: penicillin",
                                                 "group": "allergies", "source": "user"}]}),
        )

        created = await corti.add_fact("abc", "Allergi: penicillin", "allergies")

        assert created["id"] == "f9"
        body = json.loads(fake_corti.calls[0].content)
        assert body == {"facts": [{"text": "Allergi: penicillin", "group": "allergies", "source": "user"}]}

    @pytest.mark.asyncio
    async def test_generate_soap_document(self, corti, fake_corti):
        fake_corti.route(
            "POST", "/v2/interactions/abc/documents/",
            httpx.Response(200, json={"sections": [
                {"name": "Objective", "text": "Temp 38.5", "sort": 2},
                {"name": "Subjective", "text": "Hoste i 3 dage", "sort": 1},
            ]}),
        )
        facts = [{"text": "Hoste", "group": "symptoms", "source": "ai"}]

        document = await corti.generate_document("abc", "soap", facts=facts)

        assert document.content == "Subjective:\nHoste i 3 dage\n\nObjective:\nTemp 38.5"
        assert document.template_key == "corti-soap"
        body = json.loads(fake_corti.calls[0].content)
        assert body["templateKey"] == "corti-soap"
        assert body["outputLanguage"] == "da"
        assert body["context"][0]["data"] == facts

    @pytest.mark.asyncio
    async def test_generate_brief_note_fetches_facts(self, corti, fake_corti):
        fake_corti.route(
            "GET", "/v2/interactions/abc/facts",
            httpx.Response(200, json={"facts": [{"id": "f1", "text": "Hoste", "group": "symptoms"}]}),
        )
        fake_corti.route(
            "POST", "/v2/interactions/abc/documents/",
            httpx.Response(200, json={"sections": [{"name": "Note", "text": "Kort notat"}]}),
        )

        document = await corti.generate_document("abc", "brief-clinical-note")

        assert document.content == "Kort notat"
        assert document.template_key == "corti-brief-clinical-note"
        assert [f["id"] for f in document.facts] == ["f1"]

    @pytest.mark.asyncio
    async def test_fact_groups_fallback_when_breaker_open(self, corti):
        corti.circuit_breaker.state = CircuitBreaker.OPEN
        corti.circuit_breaker.last_failure_time = time.monotonic()

        groups = await corti.get_fact_groups()

        assert groups == [dict(g) for g in FALLBACK_FACT_GROUPS]

    def test_format_sections_empty(self):
        assert CortiService.format_sections("soap", []) == ""
