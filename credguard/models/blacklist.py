from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credguard.models.base import Base, TimestampMixin, utcnow


class BlacklistReason(str, enum.Enum):
    """Why a credential fingerprint was excluded."""

    PROVIDER_TERMINATED = "PROVIDER_TERMINATED"
    CANDIDATE_REJECTED_REPEATEDLY = "CANDIDATE_REJECTED_REPEATEDLY"
    LICENSE_CONFLICT = "LICENSE_CONFLICT"
    MANUAL = "MANUAL"


class OriginEntityType(str, enum.Enum):
    """Kind of identity a blacklist entry was derived from."""

    PROVIDER = "PROVIDER"
    CANDIDATE = "CANDIDATE"


class BlacklistEntry(Base, TimestampMixin):
    """Excluded credential fingerprint.

    Any non-empty subset of email, phone and license numbers may be set.
    """

    __tablename__ = "blacklist_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    reason: Mapped[BlacklistReason] = mapped_column(
        Enum(BlacklistReason, name="blacklist_reason"), nullable=False, index=True
    )
    origin_entity_type: Mapped[OriginEntityType] = mapped_column(
        Enum(OriginEntityType, name="blacklist_origin_entity_type"), nullable=False
    )
    origin_entity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    origin_display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    blacklisted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    licenses: Mapped[list[BlacklistLicense]] = relationship(
        order_by="BlacklistLicense.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def license_numbers(self) -> list[str]:
        return [license.license_number for license in self.licenses]

    def in_force(self, now: datetime) -> bool:
        """Active and not past its expiry."""

        return self.is_active and (self.expires_at is None or self.expires_at > now)


class BlacklistLicense(Base):
    """License number covered by a blacklist entry."""

    __tablename__ = "blacklist_licenses"

    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("blacklist_entries.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    license_number: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
