"""Registry of excluded credential fingerprints."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from credguard.models import (
    BlacklistEntry,
    BlacklistLicense,
    BlacklistReason,
    OriginEntityType,
)
from credguard.models.base import to_naive_utc, utcnow
from credguard.services.credentials import Credentials
from credguard.services.errors import NotFound, ValidationFailed

logger = logging.getLogger(__name__)


def _in_force_clause(now: datetime):
    return (
        BlacklistEntry.is_active.is_(True),
        or_(BlacklistEntry.expires_at.is_(None), BlacklistEntry.expires_at > now),
    )


class BlacklistRegistry:
    """Append-mostly store answering "is this credential set excluded?".

    A credential set collides with an entry when the emails are equal, the
    phones are equal, or the license sets intersect. Fields missing on
    either side never match.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def is_blacklisted(
        self, credentials: Credentials, *, now: datetime | None = None
    ) -> BlacklistEntry | None:
        """Return the first in-force entry colliding with ``credentials``."""

        clauses = []
        if credentials.email:
            clauses.append(BlacklistEntry.email == credentials.email)
        if credentials.phone:
            clauses.append(BlacklistEntry.phone == credentials.phone)
        if credentials.licenses:
            clauses.append(
                BlacklistEntry.licenses.any(
                    BlacklistLicense.license_number.in_(credentials.licenses)
                )
            )
        if not clauses:
            return None

        stmt = (
            select(BlacklistEntry)
            .where(*_in_force_clause(now or utcnow()), or_(*clauses))
            .order_by(BlacklistEntry.blacklisted_at, BlacklistEntry.id)
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def add(
        self,
        credentials: Credentials,
        *,
        reason: BlacklistReason,
        origin_entity_type: OriginEntityType,
        origin_entity_id: UUID | None = None,
        origin_display_name: str | None = None,
        description: str | None = None,
        created_by: str | None = None,
        expires_at: datetime | None = None,
    ) -> BlacklistEntry:
        """Insert a new in-force entry; colliding entries are tolerated."""

        if credentials.is_empty:
            raise ValidationFailed(
                "A blacklist entry needs an email, a phone or a license number",
                detail={"field": "credentials"},
            )

        entry = BlacklistEntry(
            email=credentials.email,
            phone=credentials.phone,
            reason=reason,
            origin_entity_type=origin_entity_type,
            origin_entity_id=origin_entity_id,
            origin_display_name=origin_display_name,
            description=description,
            created_by=created_by,
            is_active=True,
            blacklisted_at=utcnow(),
            expires_at=to_naive_utc(expires_at),
            licenses=[
                BlacklistLicense(position=index, license_number=license_number)
                for index, license_number in enumerate(credentials.licenses)
            ],
        )
        self.db.add(entry)
        self.db.flush()
        logger.info(
            "blacklist entry added",
            extra={
                "blacklist_entry_id": str(entry.id),
                "reason": reason.value,
                "origin_entity_type": origin_entity_type.value,
                "origin_entity_id": str(origin_entity_id) if origin_entity_id else None,
            },
        )
        return entry

    def get(self, entry_id: UUID) -> BlacklistEntry:
        entry = self.db.get(BlacklistEntry, entry_id)
        if entry is None:
            raise NotFound("Blacklist entry not found", detail={"entry_id": str(entry_id)})
        return entry

    def deactivate(self, entry_id: UUID, *, permanent: bool = False) -> str:
        """Lift an entry: soft delete, or remove it when ``permanent``.

        Returns ``"removed"``, ``"deactivated"`` or ``"already_inactive"``.
        """

        entry = self.get(entry_id)
        if permanent:
            self.db.delete(entry)
            self.db.flush()
            logger.info("blacklist entry removed", extra={"blacklist_entry_id": str(entry_id)})
            return "removed"
        if not entry.is_active:
            return "already_inactive"
        entry.is_active = False
        self.db.flush()
        logger.info("blacklist entry deactivated", extra={"blacklist_entry_id": str(entry_id)})
        return "deactivated"

    def list_entries(
        self,
        *,
        reason: BlacklistReason | None = None,
        is_active: bool | None = True,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[BlacklistEntry], int]:
        """Return one page of entries, newest first, and the total count."""

        filters = []
        if reason is not None:
            filters.append(BlacklistEntry.reason == reason)
        if is_active is not None:
            filters.append(BlacklistEntry.is_active.is_(is_active))

        total = self.db.execute(
            select(func.count()).select_from(BlacklistEntry).where(*filters)
        ).scalar_one()
        stmt = (
            select(BlacklistEntry)
            .where(*filters)
            .order_by(BlacklistEntry.blacklisted_at.desc(), BlacklistEntry.id)
            .offset(max(0, page - 1) * limit)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all()), int(total)

    def expire_overdue(self, *, now: datetime | None = None) -> int:
        """Deactivate active entries whose expiry has passed."""

        stmt = (
            update(BlacklistEntry)
            .where(
                BlacklistEntry.is_active.is_(True),
                BlacklistEntry.expires_at.is_not(None),
                BlacklistEntry.expires_at <= (now or utcnow()),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return int(result.rowcount or 0)


def serialize_blacklist_entry(entry: BlacklistEntry) -> dict[str, object]:
    """Return a JSON-friendly representation of a blacklist entry."""

    return {
        "id": str(entry.id),
        "email": entry.email,
        "phone": entry.phone,
        "licenses": entry.license_numbers,
        "reason": entry.reason.value,
        "origin": {
            "entity_type": entry.origin_entity_type.value,
            "entity_id": str(entry.origin_entity_id) if entry.origin_entity_id else None,
            "display_name": entry.origin_display_name,
        },
        "description": entry.description,
        "is_active": entry.is_active,
        "created_by": entry.created_by,
        "blacklisted_at": entry.blacklisted_at.isoformat() if entry.blacklisted_at else None,
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
    }
