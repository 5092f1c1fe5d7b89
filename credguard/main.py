from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any
from uuid import UUID

from celery import Celery
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from credguard.core.config import settings
from credguard.db.session import get_db
from credguard.logging_utils import (
    configure_logging,
    _actor_id_ctx_var,
    _request_id_ctx_var,
)
from credguard.models import BlacklistReason, OriginEntityType, Severity, SuspensionKind
from credguard.services import (
    CandidateSubmission,
    CeleryEventSink,
    CompositeEventSink,
    LifecycleError,
    LifecycleOrchestrator,
    LoggingEventSink,
    NotFound,
    OutboundEventSink,
    SuspensionDetails,
)
from credguard.services.blacklist import serialize_blacklist_entry
from credguard.services.credentials import Credentials
from credguard.services.directory import serialize_candidate, serialize_provider
from credguard.services.suspension_ledger import serialize_suspension

configure_logging()

app = FastAPI(title=settings.app_name, version="0.1.0")

logger = logging.getLogger(__name__)

REQUEST_COUNTER = Counter(
    "credguard_api_requests_total",
    "Total number of processed HTTP requests.",
    ["method", "path", "status", "actor"],
)
REQUEST_LATENCY = Histogram(
    "credguard_api_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
)


class SimpleRateLimiter:
    """In-memory rate limiter keyed by IP and acting admin."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        self.limit = max(1, limit)
        self.window_seconds = max(1, window_seconds)
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        now = time.monotonic()
        async with self._lock:
            count, window_start = self._entries.get(key, (0, now))
            if now - window_start >= self.window_seconds:
                self._entries[key] = (1, now)
                return True
            if count >= self.limit:
                return False
            self._entries[key] = (count + 1, window_start)
            return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Populate request and actor context for logging."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        actor_hint = request.headers.get("X-Admin-ID")

        request.state.request_id = request_id
        request_id_token = _request_id_ctx_var.set(request_id)
        actor_token = _actor_id_ctx_var.set(actor_hint)

        try:
            response = await call_next(request)
        finally:
            _request_id_ctx_var.reset(request_id_token)
            _actor_id_ctx_var.reset(actor_token)

        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a coarse rate limit per IP and acting admin."""

    def __init__(self, app: FastAPI, limiter: SimpleRateLimiter) -> None:  # type: ignore[override]
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.method == "OPTIONS":
            return await call_next(request)

        client_host = request.client.host if request.client else "unknown"
        actor_value = _actor_id_ctx_var.get() or request.headers.get("X-Admin-ID") or "anonymous"
        rate_key = f"{client_host}:{actor_value}"

        allowed = await self.limiter.allow(rate_key)
        if not allowed:
            logger.warning(
                "rate limit exceeded",
                extra={"client_ip": client_host, "actor": actor_value},
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Rate limit exceeded"},
            )

        return await call_next(request)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit structured access logs and feed metrics."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start_time = time.perf_counter()
        path = request.scope.get("root_path", "") + request.scope.get("path", request.url.path)
        method = request.method
        actor = request.headers.get("X-Admin-ID") or "system"

        try:
            response = await call_next(request)
        except Exception:
            elapsed = time.perf_counter() - start_time
            REQUEST_COUNTER.labels(
                method=method, path=path, status="500", actor=actor
            ).inc()
            REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
            logger.exception(
                "request failed",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": round(elapsed * 1000, 2),
                },
            )
            raise

        elapsed = time.perf_counter() - start_time
        status_code = response.status_code

        REQUEST_COUNTER.labels(
            method=method,
            path=path,
            status=str(status_code),
            actor=actor,
        ).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)

        logger.info(
            "request completed",
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 2),
            },
        )

        return response


rate_limiter = SimpleRateLimiter(
    settings.rate_limit_requests, settings.rate_limit_window_seconds
)


app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)
app.add_middleware(AccessLogMiddleware)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def build_event_sink() -> OutboundEventSink:
    """Log every event; also queue it for the worker when notifications are enabled."""

    sink: OutboundEventSink = LoggingEventSink()
    if settings.notifications_enabled:
        notification_client = Celery("credguard", broker=settings.redis_url)
        sink = CompositeEventSink([sink, CeleryEventSink(notification_client)])
    return sink


event_sink = build_event_sink()


def get_event_sink() -> OutboundEventSink:
    return event_sink


def get_orchestrator(
    db: Session = Depends(get_db),
    sink: OutboundEventSink = Depends(get_event_sink),
) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(db, sink)


class CandidateCreate(BaseModel):
    full_name: str
    email: str
    password: str
    phone: str
    licenses: list[str] = Field(default_factory=list)
    specializations: list[str] = Field(default_factory=list)
    experience: str | None = None
    about: str | None = None


class CandidateRejection(BaseModel):
    reason: str | None = None


class SuspensionCreate(BaseModel):
    reasons: list[str] = Field(default_factory=list)
    kind: SuspensionKind = SuspensionKind.TEMPORARY
    severity: Severity = Severity.MAJOR
    duration_days: int | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    blocks_patient_access: bool = False
    blocks_scheduling: bool = False
    blocks_prescribing: bool = False
    blocks_system_access: bool = False


class CredentialQuery(BaseModel):
    email: str | None = None
    phone: str | None = None
    licenses: list[str] = Field(default_factory=list)

    def to_credentials(self) -> Credentials:
        return Credentials.build(email=self.email, phone=self.phone, licenses=self.licenses)


class BlacklistCreate(CredentialQuery):
    reason: BlacklistReason = BlacklistReason.MANUAL
    origin_entity_type: OriginEntityType = OriginEntityType.PROVIDER
    origin_entity_id: UUID | None = None
    origin_display_name: str | None = None
    description: str | None = None
    expires_at: datetime | None = None


@app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint used by infrastructure probes."""

    return {"status": "ok"}


@app.post("/api/v1/candidates", status_code=status.HTTP_201_CREATED)
def register_candidate(
    payload: CandidateCreate,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Submit a doctor application."""

    result = orchestrator.register_candidate(CandidateSubmission(**payload.model_dump()))
    return result.as_dict()


@app.get("/api/v1/candidates/{candidate_id}")
def read_candidate(
    candidate_id: UUID,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    candidate = orchestrator.directory.require_candidate(candidate_id)
    return {"candidate": serialize_candidate(candidate)}


@app.post("/api/v1/candidates/{candidate_id}/approve")
def approve_candidate(
    candidate_id: UUID,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return orchestrator.approve_candidate(candidate_id).as_dict()


@app.post("/api/v1/candidates/{candidate_id}/reject")
def reject_candidate(
    candidate_id: UUID,
    payload: CandidateRejection | None = None,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    reason = payload.reason if payload else None
    return orchestrator.reject_candidate(candidate_id, reason).as_dict()


@app.get("/api/v1/providers/{provider_id}")
def read_provider(
    provider_id: UUID,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Return a provider, completing any interrupted termination first."""

    recovered = orchestrator.reconcile_provider(provider_id)
    if recovered is not None:
        # returned rather than raised so the completed termination is committed
        error = NotFound(
            "Provider not found", detail={"provider_id": str(provider_id)}, result=recovered
        )
        return JSONResponse(status_code=error.http_status, content=error.to_dict())

    provider = orchestrator.directory.require_provider(provider_id)
    return {
        "provider": serialize_provider(provider),
        "suspension_count": orchestrator.ledger.count_for(provider_id),
    }


@app.post("/api/v1/providers/{provider_id}/suspend")
def suspend_provider(
    provider_id: UUID,
    payload: SuspensionCreate | None = None,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Suspend a provider; the threshold suspension terminates it."""

    details = SuspensionDetails(**(payload or SuspensionCreate()).model_dump())
    return orchestrator.suspend_provider(provider_id, details).as_dict()


@app.post("/api/v1/providers/{provider_id}/unsuspend")
def unsuspend_provider(
    provider_id: UUID,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return orchestrator.unsuspend_provider(provider_id).as_dict()


@app.delete("/api/v1/providers/{provider_id}")
def delete_provider(
    provider_id: UUID,
    reason: str | None = Query(default=None),
    blacklist_reason: BlacklistReason = Query(default=BlacklistReason.PROVIDER_TERMINATED),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Remove a provider and blacklist its credentials."""

    result = orchestrator.delete_provider(
        provider_id, reason, blacklist_reason=blacklist_reason
    )
    return result.as_dict()


@app.get("/api/v1/providers/{provider_id}/suspensions")
def list_suspensions(
    provider_id: UUID,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    records = orchestrator.suspension_history(provider_id)
    return {
        "provider_id": str(provider_id),
        "suspension_count": len(records),
        "suspensions": [serialize_suspension(record) for record in records],
    }


@app.post("/api/v1/blacklist/check")
def check_blacklist(
    payload: CredentialQuery,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Report whether a credential set collides with an in-force entry."""

    entry = orchestrator.blacklist_entry_for(payload.to_credentials())
    return {
        "blacklisted": entry is not None,
        "entry": serialize_blacklist_entry(entry) if entry else None,
    }


@app.get("/api/v1/blacklist")
def list_blacklist(
    reason: BlacklistReason | None = None,
    is_active: bool | None = True,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    entries, total = orchestrator.blacklist.list_entries(
        reason=reason, is_active=is_active, page=page, limit=limit
    )
    return {
        "entries": [serialize_blacklist_entry(entry) for entry in entries],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@app.post("/api/v1/blacklist", status_code=status.HTTP_201_CREATED)
def create_blacklist_entry(
    payload: BlacklistCreate,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    result = orchestrator.add_manual_blacklist_entry(
        payload.to_credentials(),
        reason=payload.reason,
        origin_entity_type=payload.origin_entity_type,
        origin_entity_id=payload.origin_entity_id,
        origin_display_name=payload.origin_display_name,
        description=payload.description,
        expires_at=payload.expires_at,
    )
    return result.as_dict()


@app.delete("/api/v1/blacklist/{entry_id}")
def deactivate_blacklist_entry(
    entry_id: UUID,
    permanent: bool = False,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return orchestrator.lift_blacklist_entry(entry_id, permanent=permanent).as_dict()
