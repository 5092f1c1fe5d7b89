from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from credguard.models.base import Base, TimestampMixin


class RejectionCounter(Base, TimestampMixin):
    """Rejections recorded per candidate email, independent of candidate rows."""

    __tablename__ = "rejection_counters"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
