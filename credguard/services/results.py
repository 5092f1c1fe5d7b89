"""Structured record of everything a lifecycle operation did."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from credguard.services.events import OutboundEvent


@dataclass
class RemovedIdentity:
    entity_type: str
    entity_id: UUID

    def as_dict(self) -> dict[str, str]:
        return {"entity_type": self.entity_type, "entity_id": str(self.entity_id)}


@dataclass
class OperationResult:
    """Saga result returned by every orchestrator operation.

    Callers and tests assert on the full cascade from here instead of
    inferring it from logs.
    """

    operation: str
    outcome: str
    subject_id: UUID | None = None
    sequence_number: int | None = None
    suspension_records: list[UUID] = field(default_factory=list)
    revoked_records: int = 0
    purged_records: int = 0
    blacklist_entries: list[UUID] = field(default_factory=list)
    removed: list[RemovedIdentity] = field(default_factory=list)
    events: list[OutboundEvent] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def terminated(self) -> bool:
        return self.outcome == "terminated"

    def merge(self, other: OperationResult) -> None:
        """Fold the side effects of a nested operation into this one."""

        self.suspension_records.extend(other.suspension_records)
        self.revoked_records += other.revoked_records
        self.purged_records += other.purged_records
        self.blacklist_entries.extend(other.blacklist_entries)
        self.removed.extend(other.removed)
        self.events.extend(other.events)

    def as_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "outcome": self.outcome,
            "subject_id": str(self.subject_id) if self.subject_id else None,
            "sequence_number": self.sequence_number,
            "suspension_records": [str(record_id) for record_id in self.suspension_records],
            "revoked_records": self.revoked_records,
            "purged_records": self.purged_records,
            "blacklist_entries": [str(entry_id) for entry_id in self.blacklist_entries],
            "removed": [identity.as_dict() for identity in self.removed],
            "events": [event.as_dict() for event in self.events],
            "data": self.data,
        }
