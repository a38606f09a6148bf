"""
CareNote Backend — Abstract Clinical AI Service Interface
===========================================================

What:  The contract the session and template services need from a
       clinical AI provider: interactions, facts and generated documents.
How:   Concrete providers (CortiService) inherit from ClinicalAIService.
       Tests substitute an AsyncMock built from this interface.

Contract:
    - Provider-specific failures are raised as UpstreamServiceError naming
      the operation, or CircuitBreakerOpenError when the provider is shed.
    - Facts are plain dicts: {"id", "text", "group", "confidence",
      "source", "is_discarded"}.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Interaction:
    interaction_id: str
    websocket_url: Optional[str]


@dataclass
class GeneratedDocument:
    content: str
    template_key: str
    template_type: str
    facts: List[Dict[str, Any]] = field(default_factory=list)


class ClinicalAIService(ABC):

    @abstractmethod
    async def create_interaction(self, patient_identifier: Optional[str] = None) -> Interaction:
        """Open a recording interaction and return its id and streaming URL."""
        ...

    @abstractmethod
    async def get_facts(self, interaction_id: str) -> List[Dict[str, Any]]:
        """Non-discarded facts extracted so far."""
        ...

    @abstractmethod
    async def add_fact(self, interaction_id: str, text: str, group: str, source: str = "user") -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_fact(
        self,
        interaction_id: str,
        fact_id: str,
        text: Optional[str] = None,
        group: Optional[str] = None,
        is_discarded: bool = False,
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def generate_document(
        self,
        interaction_id: str,
        template_type: str,
        facts: Optional[List[Dict[str, Any]]] = None,
    ) -> GeneratedDocument:
        """Turn the interaction's facts into a formatted clinical document."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight connectivity check (token endpoint only)."""
        ...
