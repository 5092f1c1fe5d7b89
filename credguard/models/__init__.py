"""SQLAlchemy models for the CredGuard API."""

from credguard.models.blacklist import (
    BlacklistEntry,
    BlacklistLicense,
    BlacklistReason,
    OriginEntityType,
)
from credguard.models.candidate import Candidate, CandidateLicense
from credguard.models.provider import LifecycleState, Provider, ProviderLicense
from credguard.models.rejection_counter import RejectionCounter
from credguard.models.suspension import (
    Severity,
    SuspensionKind,
    SuspensionRecord,
    SuspensionStatus,
)

__all__ = [
    "BlacklistEntry",
    "BlacklistLicense",
    "BlacklistReason",
    "Candidate",
    "CandidateLicense",
    "LifecycleState",
    "OriginEntityType",
    "Provider",
    "ProviderLicense",
    "RejectionCounter",
    "Severity",
    "SuspensionKind",
    "SuspensionRecord",
    "SuspensionStatus",
]
