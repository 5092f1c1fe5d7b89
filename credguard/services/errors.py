"""Error taxonomy of the lifecycle engine.

Services raise these; the API renders ``to_dict()`` with ``http_status``.
Only ``StorageFailure`` is retryable by the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from credguard.services.results import OperationResult


class LifecycleError(Exception):
    """Base class for every error surfaced by the lifecycle engine."""

    kind = "LifecycleError"
    code = "LIFECYCLE_ERROR"
    http_status = 500
    message = "Lifecycle operation failed"
    retryable = False

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: dict[str, Any] | None = None,
        code: str | None = None,
        result: OperationResult | None = None,
    ) -> None:
        if message:
            self.message = message
        if code:
            self.code = code
        self.detail = dict(detail or {})
        self.result = result
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.kind,
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
            "retryable": self.retryable,
        }
        if self.result is not None:
            payload["side_effects"] = self.result.as_dict()
        return payload


class PolicyViolation(LifecycleError):
    """Terminal policy outcome; never retried automatically."""

    http_status = 409


class BlockedBlacklisted(PolicyViolation):
    kind = "BlockedBlacklisted"
    code = "BLACKLISTED_CREDENTIALS"
    http_status = 403
    message = "Blocked: blacklisted credentials"


class BlockedDuplicateCredential(PolicyViolation):
    kind = "BlockedDuplicateCredential"
    code = "DUPLICATE_CREDENTIALS"
    http_status = 409
    message = "Blocked: duplicate credentials"


class ValidationFailed(LifecycleError):
    kind = "ValidationFailed"
    code = "VALIDATION_FAILED"
    http_status = 400
    message = "Validation failed"


class NotFound(LifecycleError):
    kind = "NotFound"
    code = "NOT_FOUND"
    http_status = 404
    message = "Not found"


class InvalidTransition(LifecycleError):
    kind = "InvalidTransition"
    code = "INVALID_TRANSITION"
    http_status = 409
    message = "Transition not allowed"


class StorageFailure(LifecycleError):
    kind = "StorageFailure"
    code = "STORAGE_FAILURE"
    http_status = 503
    message = "Storage write failed"
    retryable = True


__all__ = [
    "BlockedBlacklisted",
    "BlockedDuplicateCredential",
    "InvalidTransition",
    "LifecycleError",
    "NotFound",
    "PolicyViolation",
    "StorageFailure",
    "ValidationFailed",
]
