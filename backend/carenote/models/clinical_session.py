"""
CareNote Backend — Clinical Session & Fact Models
===================================================

What:  ORM models for recorded consultations (`sessions`) and the clinical
       facts extracted from them (`session_facts`).
How:   A session mirrors a Corti interaction (`corti_interaction_id`).
       Facts are synced from Corti or added by the clinician; each fact
       keeps Corti's id in `fact_id` so updates can be pushed back.

Status flow:
    active ──start_recording()──► started ──end()──► completed
                       └──────────────(failure)──► failed / cancelled
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carenote.database import Base, UTCDateTime, utcnow

SESSION_STATUSES = ("active", "started", "completed", "failed", "cancelled")
ENCOUNTER_TYPES = ("consultation", "follow_up", "emergency", "routine")
FACT_SOURCES = ("ai", "user")


class ClinicalSession(Base):
    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    corti_interaction_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    websocket_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    session_title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    specialty: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    patient_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    encounter_type: Mapped[str] = mapped_column(String(20), nullable=False, default="consultation")

    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    # Seconds between started_at and ended_at
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    facts_synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    facts: Mapped[List["SessionFact"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SessionFact.created_at",
    )

    __table_args__ = (
        Index("idx_sessions_user_created", "user_id", "created_at"),
        Index("idx_sessions_status", "status"),
    )

    def start_recording(self, now: Optional[datetime] = None) -> None:
        self.status = "started"
        self.started_at = now or utcnow()

    def end(self, now: Optional[datetime] = None) -> None:
        self.ended_at = now or utcnow()
        self.status = "completed"
        if self.started_at is not None:
            self.duration = max(0, int((self.ended_at - self.started_at).total_seconds()))

    @property
    def active_facts(self) -> List["SessionFact"]:
        return [fact for fact in self.facts if not fact.is_discarded]

    def facts_by_group(self) -> Dict[str, List["SessionFact"]]:
        grouped: Dict[str, List["SessionFact"]] = {}
        for fact in self.active_facts:
            grouped.setdefault(fact.group, []).append(fact)
        return grouped

    def __repr__(self) -> str:
        return f"<ClinicalSession(id={self.id}, status='{self.status}')>"


class SessionFact(Base):
    __tablename__ = "session_facts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Corti's fact id; None until the fact exists upstream
    fact_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    text: Mapped[str] = mapped_column(String(1000), nullable=False)
    group: Mapped[str] = mapped_column(String(100), nullable=False, default="other")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    source: Mapped[str] = mapped_column(String(10), nullable=False, default="ai")
    is_discarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    session: Mapped[ClinicalSession] = relationship(back_populates="facts")
