"""Append-only ledger of suspension events per provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from credguard.core.config import settings
from credguard.models import (
    Provider,
    Severity,
    SuspensionKind,
    SuspensionRecord,
    SuspensionStatus,
)
from credguard.models.base import to_naive_utc, utcnow
from credguard.services.errors import NotFound, StorageFailure, ValidationFailed

logger = logging.getLogger(__name__)

SEQUENCE_CONSTRAINT = "uq_suspension_records_provider_sequence"
DEFAULT_REASON = "Administrative suspension"
INDEFINITE_DURATION = -1


def _is_sequence_clash(exc: IntegrityError) -> bool:
    """True when the insert lost the race for its sequence number."""

    constraint = getattr(getattr(exc.orig, "diag", None), "constraint_name", None)
    if constraint is not None:
        return constraint == SEQUENCE_CONSTRAINT
    message = str(exc.orig)
    return SEQUENCE_CONSTRAINT in message or "suspension_records.sequence_number" in message


@dataclass
class SuspensionDetails:
    """What an admin supplies when suspending a provider.

    ``duration_days=-1`` or ``kind=INDEFINITE`` means no end date; an explicit
    ``ends_at`` wins over ``duration_days``.
    """

    reasons: list[str] = field(default_factory=list)
    kind: SuspensionKind = SuspensionKind.TEMPORARY
    severity: Severity = Severity.MAJOR
    duration_days: int | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    blocks_patient_access: bool = False
    blocks_scheduling: bool = False
    blocks_prescribing: bool = False
    blocks_system_access: bool = False
    issued_by: str | None = None

    def clean_reasons(self) -> list[str]:
        reasons = [reason.strip() for reason in self.reasons if reason and reason.strip()]
        return reasons or [DEFAULT_REASON]

    def resolve_period(
        self, default_days: int
    ) -> tuple[SuspensionKind, datetime, datetime | None, int | None]:
        """Return ``(kind, starts_at, ends_at, duration_days)``."""

        starts_at = to_naive_utc(self.starts_at) or utcnow()
        if self.kind == SuspensionKind.INDEFINITE or self.duration_days == INDEFINITE_DURATION:
            return SuspensionKind.INDEFINITE, starts_at, None, None

        if self.duration_days is not None and self.duration_days <= 0:
            raise ValidationFailed(
                "Suspension duration must be a positive number of days or -1",
                detail={"field": "duration_days", "value": self.duration_days},
            )

        ends_at = to_naive_utc(self.ends_at)
        if ends_at is not None:
            if ends_at <= starts_at:
                raise ValidationFailed(
                    "Suspension end must be after its start",
                    detail={"field": "ends_at"},
                )
            duration = self.duration_days or max(1, (ends_at - starts_at).days)
            return SuspensionKind.TEMPORARY, starts_at, ends_at, duration

        duration = self.duration_days or default_days
        return (
            SuspensionKind.TEMPORARY,
            starts_at,
            starts_at + timedelta(days=duration),
            duration,
        )


class SuspensionLedger:
    """Per-provider suspension history with an atomic sequence.

    The suspension count used by policy is the number of records ever
    created for a provider, whatever their state. Records are only deleted
    all at once when the provider is terminated, so the highest sequence
    number always equals the count.
    """

    def __init__(self, db: Session, *, max_retries: int | None = None) -> None:
        self.db = db
        self.max_retries = max(1, max_retries or settings.ledger_max_retries)

    def count_for(self, provider_id: UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(SuspensionRecord)
            .where(SuspensionRecord.provider_id == provider_id)
        )
        return int(self.db.execute(stmt).scalar_one())

    def _next_sequence(self, provider_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(SuspensionRecord.sequence_number), 0)).where(
            SuspensionRecord.provider_id == provider_id
        )
        return int(self.db.execute(stmt).scalar_one()) + 1

    def record_suspension(
        self,
        provider_id: UUID,
        details: SuspensionDetails,
        *,
        default_days: int | None = None,
    ) -> SuspensionRecord:
        """Append a record whose sequence number is claimed atomically.

        The insert is conditional on ``(provider_id, sequence_number)`` being
        free; a concurrent writer that claimed the number first makes the
        insert fail inside a savepoint and the number is read again.
        """

        kind, starts_at, ends_at, duration = details.resolve_period(
            default_days or settings.default_suspension_days
        )
        reasons = details.clean_reasons()

        for attempt in range(1, self.max_retries + 1):
            sequence = self._next_sequence(provider_id)
            record = SuspensionRecord(
                provider_id=provider_id,
                sequence_number=sequence,
                kind=kind,
                status=SuspensionStatus.ACTIVE,
                severity=details.severity,
                reasons=reasons,
                starts_at=starts_at,
                ends_at=ends_at,
                duration_days=duration,
                blocks_patient_access=details.blocks_patient_access,
                blocks_scheduling=details.blocks_scheduling,
                blocks_prescribing=details.blocks_prescribing,
                blocks_system_access=details.blocks_system_access,
                issued_by=details.issued_by or "system",
            )
            try:
                with self.db.begin_nested():
                    self.db.add(record)
                    self.db.flush()
            except IntegrityError as exc:
                if not _is_sequence_clash(exc):
                    self._raise_for_integrity_error(provider_id, exc)
                logger.info(
                    "suspension sequence already claimed, retrying",
                    extra={
                        "provider_id": str(provider_id),
                        "sequence_number": sequence,
                        "attempt": attempt,
                    },
                )
                continue
            except SQLAlchemyError as exc:
                raise StorageFailure(
                    "Could not write suspension record",
                    detail={"provider_id": str(provider_id)},
                ) from exc

            logger.info(
                "suspension recorded",
                extra={
                    "provider_id": str(provider_id),
                    "suspension_id": str(record.id),
                    "sequence_number": sequence,
                    "kind": kind.value,
                },
            )
            return record

        raise StorageFailure(
            "Could not allocate a suspension sequence number",
            detail={"provider_id": str(provider_id), "attempts": self.max_retries},
        )

    def _raise_for_integrity_error(self, provider_id: UUID, exc: IntegrityError) -> None:
        if self.db.get(Provider, provider_id, populate_existing=True) is None:
            raise NotFound(
                "Provider not found",
                detail={"provider_id": str(provider_id)},
            ) from exc
        raise StorageFailure(
            "Could not write suspension record",
            detail={"provider_id": str(provider_id)},
        ) from exc

    def revoke_active(self, provider_id: UUID) -> int:
        """Revoke every Active record of the provider; returns how many."""

        stmt = (
            update(SuspensionRecord)
            .where(
                SuspensionRecord.provider_id == provider_id,
                SuspensionRecord.status == SuspensionStatus.ACTIVE,
            )
            .values(status=SuspensionStatus.REVOKED, revoked_at=utcnow())
        )
        result = self.db.execute(stmt)
        return int(result.rowcount or 0)

    def purge(self, provider_id: UUID) -> int:
        """Delete the whole history of a provider being terminated."""

        stmt = delete(SuspensionRecord).where(SuspensionRecord.provider_id == provider_id)
        result = self.db.execute(stmt)
        return int(result.rowcount or 0)

    def history(self, provider_id: UUID) -> list[SuspensionRecord]:
        stmt = (
            select(SuspensionRecord)
            .where(SuspensionRecord.provider_id == provider_id)
            .order_by(SuspensionRecord.sequence_number)
        )
        return list(self.db.execute(stmt).scalars().all())


def serialize_suspension(record: SuspensionRecord) -> dict[str, object]:
    """Return a JSON-friendly representation of a suspension record."""

    return {
        "id": str(record.id),
        "provider_id": str(record.provider_id),
        "sequence_number": record.sequence_number,
        "kind": record.kind.value,
        "status": record.status.value,
        "severity": record.severity.value,
        "reasons": list(record.reasons),
        "period": {
            "starts_at": record.starts_at.isoformat() if record.starts_at else None,
            "ends_at": record.ends_at.isoformat() if record.ends_at else None,
            "duration_days": record.duration_days,
        },
        "impact": {
            "patient_access": record.blocks_patient_access,
            "scheduling": record.blocks_scheduling,
            "prescribing": record.blocks_prescribing,
            "system_access": record.blocks_system_access,
        },
        "issued_by": record.issued_by,
        "revoked_at": record.revoked_at.isoformat() if record.revoked_at else None,
    }
