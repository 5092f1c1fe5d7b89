"""SQLAlchemy-backed directory of providers and pending candidates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from credguard.models import (
    Candidate,
    CandidateLicense,
    LifecycleState,
    Provider,
    ProviderLicense,
    SuspensionRecord,
)
from credguard.models.base import utcnow
from credguard.services.credentials import Credentials
from credguard.services.errors import BlockedDuplicateCredential, NotFound, StorageFailure
from credguard.services.transitions import ensure_transition

logger = logging.getLogger(__name__)

PROVIDER = "provider"
CANDIDATE = "candidate"


@dataclass(frozen=True)
class IdentityMatch:
    """A provider or candidate found by a credential lookup."""

    entity_type: str
    entity_id: UUID
    display_name: str
    state: LifecycleState

    @property
    def is_provider(self) -> bool:
        return self.entity_type == PROVIDER

    def as_dict(self) -> dict[str, str]:
        return {
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "display_name": self.display_name,
            "state": self.state.value,
        }


def _provider_match(provider: Provider) -> IdentityMatch:
    return IdentityMatch(PROVIDER, provider.id, provider.full_name, provider.state)


def _candidate_match(candidate: Candidate) -> IdentityMatch:
    return IdentityMatch(CANDIDATE, candidate.id, candidate.full_name, LifecycleState.PENDING)


def credentials_of(identity: Provider | Candidate) -> Credentials:
    """Full credential fingerprint of a stored identity."""

    return Credentials(
        email=identity.email,
        phone=identity.phone,
        licenses=tuple(identity.license_numbers),
    )


class ProviderDirectory:
    """Persistence for provider and candidate identities.

    Lookups return provider matches before candidate matches.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_provider(self, provider_id: UUID) -> Provider | None:
        return self.db.get(Provider, provider_id)

    def require_provider(self, provider_id: UUID) -> Provider:
        provider = self.get_provider(provider_id)
        if provider is None:
            raise NotFound("Provider not found", detail={"provider_id": str(provider_id)})
        return provider

    def get_candidate(self, candidate_id: UUID) -> Candidate | None:
        return self.db.get(Candidate, candidate_id)

    def require_candidate(self, candidate_id: UUID) -> Candidate:
        candidate = self.get_candidate(candidate_id)
        if candidate is None:
            raise NotFound("Candidate not found", detail={"candidate_id": str(candidate_id)})
        return candidate

    def find_provider_by_email(self, email: str) -> Provider | None:
        stmt = select(Provider).where(Provider.email == email).limit(1)
        return self.db.execute(stmt).scalars().first()

    def find_by_email(self, email: str) -> list[IdentityMatch]:
        providers = self.db.execute(
            select(Provider).where(Provider.email == email).order_by(Provider.created_at)
        ).scalars()
        candidates = self.db.execute(
            select(Candidate).where(Candidate.email == email).order_by(Candidate.submitted_at)
        ).scalars()
        return [_provider_match(p) for p in providers] + [
            _candidate_match(c) for c in candidates
        ]

    def find_by_phone(self, phone: str) -> list[IdentityMatch]:
        providers = self.db.execute(
            select(Provider).where(Provider.phone == phone).order_by(Provider.created_at)
        ).scalars()
        candidates = self.db.execute(
            select(Candidate).where(Candidate.phone == phone).order_by(Candidate.submitted_at)
        ).scalars()
        return [_provider_match(p) for p in providers] + [
            _candidate_match(c) for c in candidates
        ]

    def find_by_license(self, license_number: str) -> list[IdentityMatch]:
        providers = self.db.execute(
            select(Provider)
            .join(ProviderLicense)
            .where(ProviderLicense.license_number == license_number)
            .order_by(Provider.created_at)
        ).scalars()
        candidates = self.db.execute(
            select(Candidate)
            .join(CandidateLicense)
            .where(CandidateLicense.license_number == license_number)
            .order_by(Candidate.submitted_at)
        ).scalars()
        return [_provider_match(p) for p in providers.unique()] + [
            _candidate_match(c) for c in candidates.unique()
        ]

    def insert_candidate(
        self,
        *,
        full_name: str,
        credentials: Credentials,
        password_hash: str,
        specializations: list[str] | None = None,
        experience: str | None = None,
        about: str | None = None,
    ) -> Candidate:
        candidate = Candidate(
            full_name=full_name,
            email=credentials.email,
            phone=credentials.phone,
            password_hash=password_hash,
            specializations=list(specializations or []),
            experience=experience,
            about=about,
            submitted_at=utcnow(),
            licenses=[
                CandidateLicense(position=index, license_number=license_number)
                for index, license_number in enumerate(credentials.licenses)
            ],
        )
        self.db.add(candidate)
        self.db.flush()
        return candidate

    def insert_provider(self, candidate: Candidate) -> Provider:
        """Materialize an Active provider from a candidate.

        A unique-email violation here is the authoritative duplicate check:
        whichever approval reaches the database first wins.
        """

        provider = Provider(
            full_name=candidate.full_name,
            email=candidate.email,
            phone=candidate.phone,
            password_hash=candidate.password_hash,
            specializations=list(candidate.specializations or []),
            state=LifecycleState.ACTIVE,
            approved_at=utcnow(),
            licenses=[
                ProviderLicense(position=index, license_number=license_number)
                for index, license_number in enumerate(candidate.license_numbers)
            ],
        )
        try:
            with self.db.begin_nested():
                self.db.add(provider)
                self.db.flush()
        except IntegrityError as exc:
            raise BlockedDuplicateCredential(
                "A doctor with this email already exists",
                detail={"field": "email", "value": candidate.email},
            ) from exc
        except SQLAlchemyError as exc:
            raise StorageFailure(
                "Could not create provider", detail={"candidate_id": str(candidate.id)}
            ) from exc
        return provider

    def update_state(self, provider: Provider, target: LifecycleState) -> None:
        ensure_transition(provider.state, target)
        previous = provider.state
        provider.state = target
        self.db.flush()
        logger.info(
            "provider state changed",
            extra={
                "provider_id": str(provider.id),
                "from_state": previous.value,
                "to_state": target.value,
            },
        )

    def remove_provider(self, provider: Provider) -> None:
        ensure_transition(provider.state, LifecycleState.TERMINATED)
        provider.state = LifecycleState.TERMINATED
        self.db.delete(provider)
        self.db.flush()

    def remove_candidate(self, candidate: Candidate) -> None:
        self.db.delete(candidate)
        self.db.flush()

    def providers_over_threshold(self, threshold: int) -> list[UUID]:
        """Providers still in the directory with at least ``threshold`` suspensions."""

        stmt = (
            select(SuspensionRecord.provider_id)
            .join(Provider, Provider.id == SuspensionRecord.provider_id)
            .group_by(SuspensionRecord.provider_id)
            .having(func.count() >= threshold)
        )
        return list(self.db.execute(stmt).scalars().all())


def serialize_provider(provider: Provider) -> dict[str, object]:
    """Return a JSON-friendly representation of a provider."""

    return {
        "id": str(provider.id),
        "full_name": provider.full_name,
        "email": provider.email,
        "phone": provider.phone,
        "licenses": provider.license_numbers,
        "specializations": list(provider.specializations or []),
        "state": provider.state.value,
        "approved_at": provider.approved_at.isoformat() if provider.approved_at else None,
    }


def serialize_candidate(candidate: Candidate) -> dict[str, object]:
    """Return a JSON-friendly representation of a candidate."""

    return {
        "id": str(candidate.id),
        "full_name": candidate.full_name,
        "email": candidate.email,
        "phone": candidate.phone,
        "licenses": candidate.license_numbers,
        "specializations": list(candidate.specializations or []),
        "experience": candidate.experience,
        "about": candidate.about,
        "state": LifecycleState.PENDING.value,
        "submitted_at": candidate.submitted_at.isoformat() if candidate.submitted_at else None,
    }
