from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from credguard.models.base import Base, JSONType, TimestampMixin, utcnow


class SuspensionKind(str, enum.Enum):
    """Whether a suspension has a scheduled end."""

    TEMPORARY = "TEMPORARY"
    INDEFINITE = "INDEFINITE"


class SuspensionStatus(str, enum.Enum):
    """Possible states for a suspension record."""

    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class Severity(str, enum.Enum):
    """Severity assigned by the issuing admin."""

    MINOR = "MINOR"
    MODERATE = "MODERATE"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"


class SuspensionRecord(Base, TimestampMixin):
    """One suspension event in a provider's permanent history.

    ``sequence_number`` is the 1-based ordinal of the record among every
    record created for the provider; the unique constraint on
    ``(provider_id, sequence_number)`` is what makes two concurrent writers
    unable to claim the same ordinal.
    """

    __tablename__ = "suspension_records"
    __table_args__ = (
        UniqueConstraint(
            "provider_id",
            "sequence_number",
            name="uq_suspension_records_provider_sequence",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[SuspensionKind] = mapped_column(
        Enum(SuspensionKind, name="suspension_kind"),
        default=SuspensionKind.TEMPORARY,
        nullable=False,
    )
    status: Mapped[SuspensionStatus] = mapped_column(
        Enum(SuspensionStatus, name="suspension_status"),
        default=SuspensionStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    severity: Mapped[Severity] = mapped_column(
        Enum(Severity, name="suspension_severity"),
        default=Severity.MAJOR,
        nullable=False,
    )
    reasons: Mapped[list] = mapped_column(JSONType, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    blocks_patient_access: Mapped[bool] = mapped_column(Boolean, default=False)
    blocks_scheduling: Mapped[bool] = mapped_column(Boolean, default=False)
    blocks_prescribing: Mapped[bool] = mapped_column(Boolean, default=False)
    blocks_system_access: Mapped[bool] = mapped_column(Boolean, default=False)
    issued_by: Mapped[str] = mapped_column(String(255), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
