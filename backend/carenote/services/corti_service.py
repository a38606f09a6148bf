"""
CareNote Backend — Corti Clinical AI Client
=============================================

What:  Concrete ClinicalAIService backed by the Corti REST API (v2).
How:   httpx AsyncClient, OAuth client-credentials token cached until shortly
       before expiry, tenacity retry for transport errors / 429 / 5xx, and a
       circuit breaker in front of every call.
Who:   SessionService (interactions, facts) and TemplateService (documents).

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker sheds calls while Corti is failing
    3. 4xx responses are not retried and do not trip the breaker
    4. Every failure becomes UpstreamServiceError(service="corti", operation=...)

Token cache:
    Read-check-then-use with no lock. Two concurrent refreshes both fetch a
    token and the later one wins; either token is valid.
"""

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from carenote.config import settings
from carenote.exceptions import CircuitBreakerOpenError, UpstreamServiceError
from carenote.middleware.request_id import request_id_var
from carenote.services.clinical_ai_base import ClinicalAIService, GeneratedDocument, Interaction

logger = logging.getLogger(__name__)

TEMPLATE_KEYS = {
    "soap": ("corti-soap", "SOAP Note"),
    "nursing-note": ("corti-nursing-note", "Nursing Note"),
}
DEFAULT_TEMPLATE = ("corti-brief-clinical-note", "Brief Clinical Note")
MULTI_SECTION_TYPES = frozenset(TEMPLATE_KEYS)

FALLBACK_FACT_GROUPS = (
    {"key": "symptoms", "name": "Symptoms"},
    {"key": "diagnosis", "name": "Diagnosis"},
    {"key": "medications", "name": "Medications"},
    {"key": "allergies", "name": "Allergies"},
    {"key": "vitals", "name": "Vital Signs"},
    {"key": "procedures", "name": "Procedures"},
    {"key": "family-history", "name": "Family History"},
    {"key": "social-history", "name": "Social History"},
    {"key": "physical-exam", "name": "Physical Exam"},
    {"key": "lab-results", "name": "Lab Results"},
    {"key": "imaging", "name": "Imaging"},
    {"key": "treatment-plan", "name": "Treatment Plan"},
    {"key": "other", "name": "Other"},
)


class RetryableStatusError(Exception):
    """Corti answered 429 or 5xx; worth another attempt."""

    def __init__(self, status_code: int):
        super().__init__(f"Corti responded with HTTP {status_code}")
        self.status_code = status_code


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    CLOSED → (failure_threshold consecutive failures) → OPEN
    OPEN   → (recovery_timeout elapsed)               → HALF_OPEN
    HALF_OPEN → success → CLOSED, failure → OPEN

    Not shared across worker processes; each uvicorn worker keeps its own.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout has not elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.monotonic() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning("Circuit breaker OPENING after %d consecutive failures", self.failure_count)
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Corti Service
# ══════════════════════════════════════════════════════════════════════════

class CortiService(ClinicalAIService):
    """Corti API client. One instance per process (holds token cache + breaker)."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.corti_timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Authentication ────────────────────────────────────────────────────
    async def get_access_token(self) -> str:
        """
        Cached client-credentials token, refreshed `corti_token_leeway`
        seconds before Corti's `expires_in`.
        """
        now = time.monotonic()
        if self._token and now < self._token_expires_at:
            return self._token

        try:
            response = await self._get_client().post(
                settings.corti_token_url,
                data={
                    "client_id": settings.corti_client_id,
                    "client_secret": settings.corti_client_secret,
                    "grant_type": "client_credentials",
                    "scope": "openid",
                },
            )
            response.raise_for_status()
            payload = response.json()
            token = payload["access_token"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error("Corti authentication failed: %s", str(e))
            raise UpstreamServiceError(
                service="corti",
                operation="authenticate",
                message="Could not authenticate with the clinical AI service",
                context={"error_type": type(e).__name__},
            ) from e

        expires_in = int(payload.get("expires_in", 300))
        self._token = token
        self._token_expires_at = now + max(0, expires_in - settings.corti_token_leeway)
        logger.debug("Fetched Corti access token (expires_in=%ds)", expires_in)
        return token

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    # ── Transport ─────────────────────────────────────────────────────────
    async def _call(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        """
        One logical Corti call: breaker check, retried request, breaker update.

        Raises:
            CircuitBreakerOpenError: breaker is open.
            UpstreamServiceError: Corti failed or rejected the request.
        """
        self.circuit_breaker.can_execute()
        request_id = request_id_var.get("") or str(uuid.uuid4())[:8]

        try:
            data = await self._send_with_retry(operation, method, path, request_id, **kwargs)
        except (httpx.TransportError, RetryableStatusError) as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Corti %s failed after retries: %s", request_id, operation, str(e))
            raise UpstreamServiceError(
                service="corti",
                operation=operation,
                message="The clinical AI service is temporarily unavailable. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            ) from e
        except UpstreamServiceError as e:
            if e.operation == "authenticate":
                self.circuit_breaker.record_failure()
            raise

        self.circuit_breaker.record_success()
        return data

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, RetryableStatusError)),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=settings.retry_jitter,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send_with_retry(
        self, operation: str, method: str, path: str, request_id: str, **kwargs: Any
    ) -> Any:
        token = await self.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Tenant-Name": settings.corti_tenant_name,
        }
        start_time = time.perf_counter()
        response = await self._get_client().request(
            method, f"{settings.corti_api_base}{path}", headers=headers, **kwargs
        )
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "[%s] Corti %s %s → %d in %.0fms",
            request_id, method, path, response.status_code, duration_ms,
        )

        status = response.status_code
        if status == 429 or status >= 500:
            raise RetryableStatusError(status)
        if status == 401:
            self.invalidate_token()
        if status >= 400:
            raise UpstreamServiceError(
                service="corti",
                operation=operation,
                message=f"The clinical AI service rejected the request (HTTP {status})",
                context={"request_id": request_id, "status_code": status},
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamServiceError(
                service="corti",
                operation=operation,
                message="The clinical AI service returned an unreadable response",
                context={"request_id": request_id},
            ) from e

    # ── Interactions ──────────────────────────────────────────────────────
    async def create_interaction(self, patient_identifier: Optional[str] = None) -> Interaction:
        now_iso = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        stamp = int(time.time() * 1000)
        payload = {
            "encounter": {
                "identifier": f"{stamp}-carenote-encounter",
                "status": "planned",
                "type": "first_consultation",
                "period": {"startedAt": now_iso},
                "title": "CareNote Recording Session",
            },
            "patient": {
                "identifier": patient_identifier or f"{stamp}-patient",
                "gender": "unknown",
            },
        }
        data = await self._call("create_interaction", "POST", "/interactions/", json=payload)
        interaction_id = data.get("interactionId") or data.get("id")
        if not interaction_id:
            raise UpstreamServiceError(
                service="corti",
                operation="create_interaction",
                message="The clinical AI service did not return an interaction id",
            )
        return Interaction(interaction_id=str(interaction_id), websocket_url=data.get("websocketUrl"))

    # ── Facts ─────────────────────────────────────────────────────────────
    @staticmethod
    def _normalize_fact(raw: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": raw.get("id"),
            "text": raw.get("text", ""),
            "group": raw.get("group") or "other",
            "confidence": raw.get("confidence") if raw.get("confidence") is not None else 1.0,
            "source": "user" if raw.get("source") == "user" else "ai",
            "is_discarded": bool(raw.get("isDiscarded", False)),
        }

    async def get_facts(self, interaction_id: str) -> List[Dict[str, Any]]:
        data = await self._call("get_facts", "GET", f"/interactions/{interaction_id}/facts")
        facts = [self._normalize_fact(f) for f in data.get("facts", [])]
        return [f for f in facts if not f["is_discarded"]]

    async def add_fact(self, interaction_id: str, text: str, group: str, source: str = "user") -> Dict[str, Any]:
        payload = {"facts": [{"text": text, "group": group, "source": source}]}
        data = await self._call("add_fact", "POST", f"/interactions/{interaction_id}/facts/", json=payload)
        created = data.get("facts") or []
        if created:
            return self._normalize_fact(created[0])
        return {"id": None, "text": text, "group": group, "confidence": 1.0,
                "source": source, "is_discarded": False}

    async def update_fact(
        self,
        interaction_id: str,
        fact_id: str,
        text: Optional[str] = None,
        group: Optional[str] = None,
        is_discarded: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"isDiscarded": is_discarded}
        if text is not None:
            payload["text"] = text
        if group is not None:
            payload["group"] = group
        data = await self._call(
            "update_fact", "PATCH", f"/interactions/{interaction_id}/facts/{fact_id}", json=payload
        )
        return self._normalize_fact(data) if data else {}

    async def get_fact_groups(self) -> List[Dict[str, Any]]:
        """Fact groups for the UI; the static list is used when Corti is unreachable."""
        try:
            data = await self._call("get_fact_groups", "GET", "/factgroups/")
        except (UpstreamServiceError, CircuitBreakerOpenError) as e:
            logger.warning("Using fallback fact groups: %s", e.message)
            return [dict(group) for group in FALLBACK_FACT_GROUPS]
        groups = data.get("data") if isinstance(data, dict) else data
        return list(groups or FALLBACK_FACT_GROUPS)

    # ── Documents ─────────────────────────────────────────────────────────
    @staticmethod
    def format_sections(template_type: str, sections: List[Dict[str, Any]]) -> str:
        """Multi-section notes become "name:\\ntext" blocks; brief notes use the first section."""
        if not sections:
            return ""
        if template_type in MULTI_SECTION_TYPES:
            ordered = sorted(sections, key=lambda s: s.get("sort", 0))
            return "\n\n".join(f"{s.get('name', '')}:\n{s.get('text', '')}" for s in ordered)
        return sections[0].get("text", "")

    async def generate_document(
        self,
        interaction_id: str,
        template_type: str,
        facts: Optional[List[Dict[str, Any]]] = None,
        output_language: str = "da",
    ) -> GeneratedDocument:
        if facts is None:
            facts = await self.get_facts(interaction_id)
        template_key, template_name = TEMPLATE_KEYS.get(template_type, DEFAULT_TEMPLATE)
        payload = {
            "context": [{
                "type": "facts",
                "data": [{"text": f["text"], "group": f["group"], "source": f["source"]} for f in facts],
            }],
            "templateKey": template_key,
            "name": template_name,
            "outputLanguage": output_language,
        }
        data = await self._call(
            "generate_document", "POST", f"/interactions/{interaction_id}/documents/", json=payload
        )
        return GeneratedDocument(
            content=self.format_sections(template_type, data.get("sections") or []),
            template_key=template_key,
            template_type=template_type,
            facts=facts,
        )

    async def health_check(self) -> bool:
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return False
        try:
            await self.get_access_token()
        except UpstreamServiceError:
            return False
        return True


# ── Singleton Instance ────────────────────────────────────────────────────
corti_service = CortiService()
