from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credguard.models.base import Base, JSONType, TimestampMixin


class LifecycleState(str, enum.Enum):
    """Lifecycle states of a doctor identity."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    TERMINATED = "TERMINATED"


class Provider(Base, TimestampMixin):
    """Approved doctor account."""

    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    specializations: Mapped[list] = mapped_column(JSONType, default=list)
    state: Mapped[LifecycleState] = mapped_column(
        Enum(LifecycleState, name="provider_state"),
        default=LifecycleState.ACTIVE,
        nullable=False,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    licenses: Mapped[list[ProviderLicense]] = relationship(
        order_by="ProviderLicense.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def license_numbers(self) -> list[str]:
        return [license.license_number for license in self.licenses]


class ProviderLicense(Base):
    """License number held by a provider, kept in declaration order."""

    __tablename__ = "provider_licenses"

    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    license_number: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
