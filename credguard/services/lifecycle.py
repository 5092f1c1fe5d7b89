"""Policy engine for the doctor account lifecycle.

State machine per provider::

    Pending -> Active -> Suspended <-> Active
    Active | Suspended -> Terminated   (identity removed, credentials blacklisted)

Candidates never terminate directly; repeated rejections of the same email
blacklist it instead. Every operation runs inside the caller's transaction
and returns an ``OperationResult`` describing each side effect performed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from credguard.core.config import settings
from credguard.logging_utils import get_current_actor
from credguard.models import (
    BlacklistEntry,
    BlacklistReason,
    LifecycleState,
    OriginEntityType,
    Provider,
    Severity,
    SuspensionKind,
    SuspensionRecord,
)
from credguard.services.blacklist import BlacklistRegistry, serialize_blacklist_entry
from credguard.services.conflicts import ConflictResolver
from credguard.services.credentials import (
    Credentials,
    normalize_email,
    normalize_licenses,
    validate_phone,
)
from credguard.services.directory import (
    CANDIDATE,
    PROVIDER,
    ProviderDirectory,
    credentials_of,
    serialize_candidate,
    serialize_provider,
)
from credguard.services.errors import (
    BlockedBlacklisted,
    BlockedDuplicateCredential,
    ValidationFailed,
)
from credguard.services.events import EventType, OutboundEventSink, emit_safely
from credguard.services.passwords import hash_password
from credguard.services.rejections import RejectionTally
from credguard.services.results import OperationResult, RemovedIdentity
from credguard.services.suspension_ledger import (
    SuspensionDetails,
    SuspensionLedger,
    serialize_suspension,
)
from credguard.services.transitions import ensure_transition

logger = logging.getLogger(__name__)

MANUAL_DELETE_REASONS = (BlacklistReason.MANUAL, BlacklistReason.PROVIDER_TERMINATED)


@dataclass
class CandidateSubmission:
    """Registration form of a doctor applying to the platform."""

    full_name: str
    email: str
    password: str
    phone: str
    licenses: list[str] = field(default_factory=list)
    specializations: list[str] = field(default_factory=list)
    experience: str | None = None
    about: str | None = None


class LifecycleOrchestrator:
    """Applies approval, rejection, suspension and termination policy."""

    def __init__(
        self,
        db: Session,
        sink: OutboundEventSink,
        *,
        termination_threshold: int | None = None,
        rejection_threshold: int | None = None,
        default_suspension_days: int | None = None,
    ) -> None:
        self.db = db
        self.sink = sink
        self.directory = ProviderDirectory(db)
        self.blacklist = BlacklistRegistry(db)
        self.ledger = SuspensionLedger(db)
        self.conflicts = ConflictResolver(self.directory)
        self.rejections = RejectionTally(db)
        self.termination_threshold = (
            termination_threshold or settings.suspension_termination_threshold
        )
        self.rejection_threshold = rejection_threshold or settings.rejection_blacklist_threshold
        self.default_suspension_days = (
            default_suspension_days or settings.default_suspension_days
        )

    def _emit(
        self, result: OperationResult, event_type: EventType, payload: dict[str, Any]
    ) -> None:
        result.events.append(emit_safely(self.sink, event_type, payload))

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def register_candidate(self, submission: CandidateSubmission) -> OperationResult:
        """Create a candidate unless its credentials are excluded or taken.

        Checks run in order: blacklist, email/phone duplicates, licenses. A
        license held by a provider suspends that provider indefinitely and
        still rejects the registration.
        """

        result = OperationResult(operation="register_candidate", outcome="registered")

        full_name = (submission.full_name or "").strip()
        email = normalize_email(submission.email)
        missing = [
            name
            for name, value in (
                ("full_name", full_name),
                ("email", email),
                ("password", submission.password),
            )
            if not value
        ]
        if missing:
            raise ValidationFailed(
                f"Missing required fields: {', '.join(missing)}",
                detail={"missing": missing},
            )
        phone = validate_phone(submission.phone)
        credentials = Credentials(
            email=email, phone=phone, licenses=normalize_licenses(submission.licenses)
        )

        entry = self.blacklist.is_blacklisted(credentials)
        if entry is not None:
            result.outcome = "blocked"
            logger.warning(
                "registration blocked by blacklist",
                extra={"blacklist_entry_id": str(entry.id), "email": email},
            )
            self._emit(
                result,
                EventType.REGISTRATION_BLOCKED,
                {
                    "category": "security",
                    "priority": "high",
                    "cause": "blacklisted",
                    "candidate_name": full_name,
                    "email": email,
                    "blacklist_entry_id": str(entry.id),
                    "blacklist_reason": entry.reason.value,
                },
            )
            raise BlockedBlacklisted(
                "Registration blocked: these credentials have been blacklisted "
                "and cannot be used for registration.",
                detail={
                    "blacklist_entry_id": str(entry.id),
                    "blacklist_reason": entry.reason.value,
                    "origin_display_name": entry.origin_display_name,
                },
                result=result,
            )

        conflict = self.conflicts.find_email_or_phone_conflict(email, phone)
        if conflict is not None:
            result.outcome = "blocked"
            logger.warning(
                "registration blocked by duplicate credential",
                extra={"field": conflict.field, "holder_id": str(conflict.holder.entity_id)},
            )
            self._emit(
                result,
                EventType.REGISTRATION_BLOCKED,
                {
                    "category": "registration",
                    "priority": "medium",
                    "cause": f"duplicate_{conflict.field}",
                    "candidate_name": full_name,
                    "email": email,
                    "conflict": conflict.as_dict(),
                },
            )
            raise BlockedDuplicateCredential(
                "A user with similar credentials exists. "
                f"Please use a different {'email address' if conflict.field == 'email' else 'phone number'}.",
                detail=conflict.as_dict(),
                result=result,
            )

        conflict = self.conflicts.find_license_conflict(credentials.licenses)
        if conflict is not None:
            result.outcome = "blocked"
            license_number = conflict.value
            detail: dict[str, Any] = {
                **conflict.as_dict(),
                "conflicting_license": license_number,
                "holder_suspended": False,
                "action_taken": "license_conflict_detected",
            }
            message = (
                f'License number "{license_number}" is already registered to another '
                "doctor. Please use a different license number."
            )
            if conflict.with_provider:
                suspension = self.suspend_provider(
                    conflict.holder.entity_id,
                    SuspensionDetails(
                        reasons=[
                            f"License number conflict detected: {license_number}. "
                            "Suspended due to duplicate license registration."
                        ],
                        kind=SuspensionKind.INDEFINITE,
                        severity=Severity.MAJOR,
                        issued_by="system",
                    ),
                )
                result.merge(suspension)
                result.sequence_number = suspension.sequence_number
                detail.update(
                    holder_suspended=True,
                    holder_terminated=suspension.terminated,
                    sequence_number=suspension.sequence_number,
                    action_taken="existing_doctor_suspended",
                )
                message = (
                    f'License number "{license_number}" is already registered to another '
                    "doctor. The existing doctor has been suspended due to this conflict."
                )
            logger.warning(
                "registration blocked by license conflict",
                extra={
                    "license_number": license_number,
                    "holder_id": str(conflict.holder.entity_id),
                    "holder_suspended": detail["holder_suspended"],
                },
            )
            self._emit(
                result,
                EventType.REGISTRATION_BLOCKED,
                {
                    "category": "security",
                    "priority": "high",
                    "cause": "license_conflict",
                    "candidate_name": full_name,
                    "email": email,
                    "conflict": detail,
                },
            )
            raise BlockedDuplicateCredential(message, detail=detail, result=result)

        candidate = self.directory.insert_candidate(
            full_name=full_name,
            credentials=credentials,
            password_hash=hash_password(submission.password),
            specializations=submission.specializations,
            experience=submission.experience,
            about=submission.about,
        )
        result.subject_id = candidate.id
        result.data = {"candidate": serialize_candidate(candidate)}
        logger.info("candidate registered", extra={"candidate_id": str(candidate.id)})
        self._emit(
            result,
            EventType.CANDIDATE_REGISTERED,
            {
                "category": "candidates",
                "priority": "low",
                "candidate_id": str(candidate.id),
                "candidate_name": candidate.full_name,
                "email": candidate.email,
            },
        )
        return result

    def approve_candidate(self, candidate_id: UUID) -> OperationResult:
        """Turn a candidate into an Active provider; the first approval of an email wins."""

        candidate = self.directory.require_candidate(candidate_id)
        missing = [
            name
            for name, value in (
                ("full_name", candidate.full_name),
                ("email", candidate.email),
                ("password", candidate.password_hash),
                ("phone", candidate.phone),
            )
            if not (value or "").strip()
        ]
        if missing:
            raise ValidationFailed(
                f"Missing required fields: {', '.join(missing)}",
                detail={"missing": missing, "candidate_id": str(candidate_id)},
            )
        ensure_transition(LifecycleState.PENDING, LifecycleState.ACTIVE)

        existing = self.directory.find_provider_by_email(candidate.email)
        if existing is not None:
            raise BlockedDuplicateCredential(
                "A doctor with this email already exists",
                detail={
                    "field": "email",
                    "value": candidate.email,
                    "entity_type": PROVIDER,
                    "entity_id": str(existing.id),
                    "display_name": existing.full_name,
                },
            )

        provider = self.directory.insert_provider(candidate)
        self.directory.remove_candidate(candidate)

        result = OperationResult(
            operation="approve_candidate", outcome="approved", subject_id=provider.id
        )
        result.removed.append(RemovedIdentity(CANDIDATE, candidate_id))
        result.data = {"provider": serialize_provider(provider), "candidate_id": str(candidate_id)}
        logger.info(
            "candidate approved",
            extra={"candidate_id": str(candidate_id), "provider_id": str(provider.id)},
        )
        self._emit(
            result,
            EventType.CANDIDATE_APPROVED,
            {
                "category": "candidates",
                "priority": "medium",
                "candidate_id": str(candidate_id),
                "provider_id": str(provider.id),
                "provider_name": provider.full_name,
                "email": provider.email,
            },
        )
        return result

    def reject_candidate(self, candidate_id: UUID, reason: str | None = None) -> OperationResult:
        """Reject a candidate and blacklist its credentials on the threshold rejection."""

        candidate = self.directory.require_candidate(candidate_id)
        credentials = credentials_of(candidate)
        reason = (reason or "").strip() or "No reason provided"

        rejection_count = self.rejections.increment(candidate.email)
        result = OperationResult(
            operation="reject_candidate", outcome="rejected", subject_id=candidate_id
        )

        blacklisted = rejection_count >= self.rejection_threshold
        if blacklisted:
            entry = self.blacklist.add(
                credentials,
                reason=BlacklistReason.CANDIDATE_REJECTED_REPEATEDLY,
                origin_entity_type=OriginEntityType.CANDIDATE,
                origin_entity_id=candidate.id,
                origin_display_name=candidate.full_name,
                description=(
                    f"Candidate blacklisted after {rejection_count} rejections. "
                    f"Last reason: {reason}"
                ),
                created_by=get_current_actor(),
            )
            result.blacklist_entries.append(entry.id)
            self._emit(
                result,
                EventType.CANDIDATE_BLACKLISTED,
                {
                    "category": "security",
                    "priority": "high",
                    "candidate_id": str(candidate.id),
                    "candidate_name": candidate.full_name,
                    "email": candidate.email,
                    "rejection_count": rejection_count,
                    "blacklist_entry_id": str(entry.id),
                },
            )

        self.directory.remove_candidate(candidate)
        result.removed.append(RemovedIdentity(CANDIDATE, candidate_id))
        result.data = {
            "rejection_count": rejection_count,
            "blacklisted": blacklisted,
            "reason": reason,
        }
        logger.info(
            "candidate rejected",
            extra={
                "candidate_id": str(candidate_id),
                "rejection_count": rejection_count,
                "blacklisted": blacklisted,
            },
        )
        self._emit(
            result,
            EventType.CANDIDATE_REJECTED,
            {
                "category": "candidates",
                "priority": "medium",
                "candidate_id": str(candidate_id),
                "candidate_name": candidate.full_name,
                "email": candidate.email,
                "reason": reason,
                "rejection_count": rejection_count,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def reconcile_provider(self, provider_id: UUID) -> OperationResult | None:
        """Finish a termination that was interrupted before the provider was removed.

        Returns the termination result, or ``None`` when nothing was pending.
        """

        provider = self.directory.get_provider(provider_id)
        if provider is None:
            return None
        count = self.ledger.count_for(provider_id)
        if count < self.termination_threshold:
            return None

        logger.warning(
            "completing interrupted termination",
            extra={"provider_id": str(provider_id), "suspension_count": count},
        )
        result = OperationResult(
            operation="reconcile_provider",
            outcome="terminated",
            subject_id=provider_id,
            sequence_number=count,
        )
        self._terminate(provider, result, count)
        return result

    def suspend_provider(self, provider_id: UUID, details: SuspensionDetails) -> OperationResult:
        """Record a suspension; the threshold suspension terminates the provider.

        The threshold is checked against the sequence number claimed by the
        ledger insert itself, so two concurrent suspensions can neither both
        terminate nor both miss the threshold.
        """

        recovered = self.reconcile_provider(provider_id)
        if recovered is not None:
            recovered.operation = "suspend_provider"
            return recovered

        provider = self.directory.require_provider(provider_id)
        ensure_transition(provider.state, LifecycleState.SUSPENDED)
        if not details.issued_by:
            details.issued_by = get_current_actor()

        record = self.ledger.record_suspension(
            provider_id, details, default_days=self.default_suspension_days
        )
        sequence = record.sequence_number
        result = OperationResult(
            operation="suspend_provider",
            outcome="suspended",
            subject_id=provider_id,
            sequence_number=sequence,
        )
        result.suspension_records.append(record.id)
        payload = self._suspension_payload(provider, record)

        if sequence >= self.termination_threshold:
            self._emit(result, EventType.PROVIDER_SUSPENDED, payload)
            self._terminate(provider, result, sequence)
            return result

        self.directory.update_state(provider, LifecycleState.SUSPENDED)
        result.data = {
            "provider": serialize_provider(provider),
            "suspension": serialize_suspension(record),
            "suspension_count": sequence,
        }
        self._emit(result, EventType.PROVIDER_SUSPENDED, payload)
        return result

    def unsuspend_provider(self, provider_id: UUID) -> OperationResult:
        """Revoke active suspensions; the suspension count is never reset."""

        recovered = self.reconcile_provider(provider_id)
        if recovered is not None:
            recovered.operation = "unsuspend_provider"
            return recovered

        provider = self.directory.require_provider(provider_id)
        ensure_transition(provider.state, LifecycleState.ACTIVE)
        revoked = self.ledger.revoke_active(provider_id)
        self.directory.update_state(provider, LifecycleState.ACTIVE)

        result = OperationResult(
            operation="unsuspend_provider",
            outcome="unsuspended",
            subject_id=provider_id,
            revoked_records=revoked,
        )
        suspension_count = self.ledger.count_for(provider_id)
        result.data = {
            "provider": serialize_provider(provider),
            "suspension_count": suspension_count,
        }
        self._emit(
            result,
            EventType.PROVIDER_UNSUSPENDED,
            {
                "category": "suspensions",
                "priority": "medium",
                "provider_id": str(provider_id),
                "provider_name": provider.full_name,
                "email": provider.email,
                "revoked_records": revoked,
                "suspension_count": suspension_count,
                "unsuspended_by": get_current_actor(),
            },
        )
        return result

    def delete_provider(
        self,
        provider_id: UUID,
        reason: str | None = None,
        *,
        blacklist_reason: BlacklistReason = BlacklistReason.PROVIDER_TERMINATED,
    ) -> OperationResult:
        """Admin override: blacklist the provider's credentials and remove it."""

        if blacklist_reason not in MANUAL_DELETE_REASONS:
            raise ValidationFailed(
                "Manual deletion blacklists as MANUAL or PROVIDER_TERMINATED",
                detail={"field": "blacklist_reason", "value": blacklist_reason.value},
            )

        recovered = self.reconcile_provider(provider_id)
        if recovered is not None:
            recovered.operation = "delete_provider"
            return recovered

        provider = self.directory.require_provider(provider_id)
        ensure_transition(provider.state, LifecycleState.TERMINATED)
        reason = (reason or "").strip() or "Manual deletion"

        result = OperationResult(
            operation="delete_provider", outcome="deleted", subject_id=provider_id
        )
        entry = self.blacklist.add(
            credentials_of(provider),
            reason=blacklist_reason,
            origin_entity_type=OriginEntityType.PROVIDER,
            origin_entity_id=provider.id,
            origin_display_name=provider.full_name,
            description=f"Doctor manually deleted. Reason: {reason}",
            created_by=get_current_actor(),
        )
        result.blacklist_entries.append(entry.id)
        result.purged_records = self.ledger.purge(provider_id)
        snapshot = serialize_provider(provider)
        self.directory.remove_provider(provider)
        result.removed.append(RemovedIdentity(PROVIDER, provider_id))
        result.data = {
            "provider": snapshot,
            "blacklist_entry": serialize_blacklist_entry(entry),
            "reason": reason,
        }
        logger.info(
            "provider deleted",
            extra={"provider_id": str(provider_id), "blacklist_entry_id": str(entry.id)},
        )
        self._emit(result, EventType.PROVIDER_BLACKLISTED, self._blacklist_payload(snapshot, entry))
        self._emit(
            result,
            EventType.PROVIDER_DELETED,
            {
                "category": "doctors",
                "priority": "high",
                "provider_id": str(provider_id),
                "provider_name": snapshot["full_name"],
                "email": snapshot["email"],
                "reason": reason,
            },
        )
        return result

    def suspension_history(self, provider_id: UUID) -> list[SuspensionRecord]:
        self.directory.require_provider(provider_id)
        return self.ledger.history(provider_id)

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------

    def blacklist_entry_for(self, credentials: Credentials) -> BlacklistEntry | None:
        return self.blacklist.is_blacklisted(credentials)

    def check_blacklist(self, credentials: Credentials) -> bool:
        return self.blacklist_entry_for(credentials) is not None

    def add_manual_blacklist_entry(
        self,
        credentials: Credentials,
        *,
        reason: BlacklistReason = BlacklistReason.MANUAL,
        origin_entity_type: OriginEntityType = OriginEntityType.PROVIDER,
        origin_entity_id: UUID | None = None,
        origin_display_name: str | None = None,
        description: str | None = None,
        expires_at: datetime | None = None,
    ) -> OperationResult:
        entry = self.blacklist.add(
            credentials,
            reason=reason,
            origin_entity_type=origin_entity_type,
            origin_entity_id=origin_entity_id,
            origin_display_name=origin_display_name,
            description=description,
            created_by=get_current_actor(),
            expires_at=expires_at,
        )
        result = OperationResult(
            operation="add_blacklist_entry", outcome="blacklisted", subject_id=entry.id
        )
        result.blacklist_entries.append(entry.id)
        result.data = {"blacklist_entry": serialize_blacklist_entry(entry)}
        return result

    def lift_blacklist_entry(self, entry_id: UUID, *, permanent: bool = False) -> OperationResult:
        status = self.blacklist.deactivate(entry_id, permanent=permanent)
        return OperationResult(
            operation="lift_blacklist_entry",
            outcome=status,
            subject_id=entry_id,
            data={"permanent": permanent},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _terminate(self, provider: Provider, result: OperationResult, sequence: int) -> None:
        """Blacklist, purge the suspension history and remove the provider."""

        snapshot = serialize_provider(provider)
        entry = self.blacklist.add(
            credentials_of(provider),
            reason=BlacklistReason.PROVIDER_TERMINATED,
            origin_entity_type=OriginEntityType.PROVIDER,
            origin_entity_id=provider.id,
            origin_display_name=provider.full_name,
            description=(
                f"Doctor automatically deleted due to suspension #{sequence}. "
                f"Suspension count: {sequence}"
            ),
            created_by=get_current_actor(),
        )
        result.blacklist_entries.append(entry.id)
        result.purged_records += self.ledger.purge(provider.id)
        self.directory.remove_provider(provider)
        result.removed.append(RemovedIdentity(PROVIDER, provider.id))
        result.outcome = "terminated"
        result.data = {
            "provider": snapshot,
            "suspension_count": sequence,
            "blacklist_entry": serialize_blacklist_entry(entry),
        }
        logger.warning(
            "provider terminated",
            extra={
                "provider_id": snapshot["id"],
                "suspension_count": sequence,
                "blacklist_entry_id": str(entry.id),
            },
        )
        self._emit(result, EventType.PROVIDER_BLACKLISTED, self._blacklist_payload(snapshot, entry))

    @staticmethod
    def _blacklist_payload(snapshot: dict[str, Any], entry: BlacklistEntry) -> dict[str, Any]:
        return {
            "category": "security",
            "priority": "high",
            "provider_id": snapshot["id"],
            "provider_name": snapshot["full_name"],
            "email": snapshot["email"],
            "blacklist_entry_id": str(entry.id),
            "blacklist_reason": entry.reason.value,
        }

    @staticmethod
    def _suspension_payload(provider: Provider, record: SuspensionRecord) -> dict[str, Any]:
        return {
            "category": "suspensions",
            "priority": "high",
            "provider_id": str(provider.id),
            "provider_name": provider.full_name,
            "email": provider.email,
            "suspension_id": str(record.id),
            "sequence_number": record.sequence_number,
            "kind": record.kind.value,
            "severity": record.severity.value,
            "reasons": list(record.reasons),
            "duration_days": record.duration_days,
            "ends_at": record.ends_at.isoformat() if record.ends_at else None,
            "issued_by": record.issued_by,
        }
