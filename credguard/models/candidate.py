from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credguard.models.base import Base, JSONType, TimestampMixin, utcnow


class Candidate(Base, TimestampMixin):
    """Pending doctor application awaiting approval or rejection."""

    __tablename__ = "candidates"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    specializations: Mapped[list] = mapped_column(JSONType, default=list)
    experience: Mapped[str | None] = mapped_column(String(255), nullable=True)
    about: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    licenses: Mapped[list[CandidateLicense]] = relationship(
        order_by="CandidateLicense.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def license_numbers(self) -> list[str]:
        return [license.license_number for license in self.licenses]


class CandidateLicense(Base):
    """License number declared by a candidate."""

    __tablename__ = "candidate_licenses"

    candidate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("candidates.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    license_number: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
