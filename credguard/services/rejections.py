"""Persisted rejection counter keyed by candidate email."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from credguard.models import RejectionCounter
from credguard.models.base import utcnow


class RejectionTally:
    """Monotonic per-email counter that outlives the candidate rows."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def count_for(self, email: str) -> int:
        value = self.db.execute(
            select(RejectionCounter.count).where(RejectionCounter.email == email)
        ).scalar_one_or_none()
        return int(value or 0)

    def increment(self, email: str) -> int:
        """Add one rejection and return the post-increment count."""

        if not self._bump(email):
            try:
                with self.db.begin_nested():
                    self.db.add(
                        RejectionCounter(email=email, count=1, last_rejected_at=utcnow())
                    )
                    self.db.flush()
                return 1
            except IntegrityError:
                # another rejection created the row first
                self._bump(email)
        return self.count_for(email)

    def _bump(self, email: str) -> bool:
        stmt = (
            update(RejectionCounter)
            .where(RejectionCounter.email == email)
            .values(count=RejectionCounter.count + 1, last_rejected_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return bool(self.db.execute(stmt).rowcount)
