"""
CareNote Backend — Clinical Note Template Model
=================================================

What:  Generated clinical documents (SOAP, brief clinical note, nursing
       note, custom) produced from a session's facts.
How:   Regeneration never overwrites: it creates a new row with
       `version + 1` pointing at `previous_version_id`.
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carenote.database import Base, UTCDateTime, utcnow

TEMPLATE_TYPES = ("soap", "brief-clinical-note", "nursing-note", "custom")
TEMPLATE_STATUSES = ("draft", "final", "archived")


class Template(Base):
    __tablename__ = "templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="brief-clinical-note")
    specialty: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    facts_snapshot: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    referral: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    previous_version_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("templates.id", ondelete="SET NULL"), nullable=True
    )
    regenerated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_regenerated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_templates_user_created", "user_id", "created_at"),
        Index("idx_templates_session", "session_id"),
    )

    def new_version(self, content: str, title: Optional[str] = None) -> "Template":
        now = utcnow()
        return Template(
            id=uuid.uuid4(),
            user_id=self.user_id,
            session_id=self.session_id,
            title=title or self.title,
            content=content,
            type=self.type,
            specialty=self.specialty,
            status="draft",
            facts_snapshot=list(self.facts_snapshot or []),
            referral=self.referral,
            version=self.version + 1,
            previous_version_id=self.id,
            regenerated_count=self.regenerated_count + 1,
            last_regenerated_at=now,
            created_at=now,
            updated_at=now,
        )

    def __repr__(self) -> str:
        return f"<Template(id={self.id}, type='{self.type}', version={self.version})>"
