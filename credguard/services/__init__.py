"""Service layer of the CredGuard API."""

from credguard.services.errors import (
    BlockedBlacklisted,
    BlockedDuplicateCredential,
    InvalidTransition,
    LifecycleError,
    NotFound,
    PolicyViolation,
    StorageFailure,
    ValidationFailed,
)
from credguard.services.events import (
    CeleryEventSink,
    CompositeEventSink,
    EventType,
    LoggingEventSink,
    OutboundEvent,
    OutboundEventSink,
)
from credguard.services.lifecycle import CandidateSubmission, LifecycleOrchestrator
from credguard.services.results import OperationResult, RemovedIdentity
from credguard.services.suspension_ledger import SuspensionDetails

__all__ = [
    "BlockedBlacklisted",
    "BlockedDuplicateCredential",
    "CandidateSubmission",
    "CeleryEventSink",
    "CompositeEventSink",
    "EventType",
    "InvalidTransition",
    "LifecycleError",
    "LifecycleOrchestrator",
    "LoggingEventSink",
    "NotFound",
    "OperationResult",
    "OutboundEvent",
    "OutboundEventSink",
    "PolicyViolation",
    "RemovedIdentity",
    "StorageFailure",
    "SuspensionDetails",
    "ValidationFailed",
]
