"""Import SQLAlchemy models for Alembic's autogenerate feature."""

from credguard.models.base import Base
from credguard.models import (  # noqa: F401
    BlacklistEntry,
    BlacklistLicense,
    Candidate,
    CandidateLicense,
    Provider,
    ProviderLicense,
    RejectionCounter,
    SuspensionRecord,
)

__all__ = [
    "Base",
    "BlacklistEntry",
    "BlacklistLicense",
    "Candidate",
    "CandidateLicense",
    "Provider",
    "ProviderLicense",
    "RejectionCounter",
    "SuspensionRecord",
]
