import itertools
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["NOTIFICATIONS_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from credguard.db.base import Base
from credguard.db.session import (
    create_db_engine,
    create_session_factory,
    get_db,
    transactional_session,
)
from credguard.main import app, get_event_sink
from credguard.services import CandidateSubmission, LifecycleOrchestrator


class RecordingSink:
    """Event sink that keeps everything it is handed."""

    def __init__(self) -> None:
        self.events = []

    def emit(self, event_type, payload) -> None:
        self.events.append((event_type, payload))

    @property
    def types(self) -> list[str]:
        return [event_type.value for event_type, _ in self.events]


class FailingSink:
    def emit(self, event_type, payload) -> None:
        raise RuntimeError("notification backend unavailable")


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'credguard.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def orchestrator(db, sink):
    return LifecycleOrchestrator(db, sink)


_sequence = itertools.count(1)


def submission(**overrides) -> CandidateSubmission:
    """Registration form with unique credentials unless overridden."""

    n = next(_sequence)
    values = {
        "full_name": f"Dr. Test {n}",
        "email": f"doctor{n}@example.com",
        "password": "s3cret-pass",
        "phone": f"0300{n:07d}",
        "licenses": [f"PMDC-{n:05d}"],
        "specializations": ["Cardiology"],
    }
    values.update(overrides)
    return CandidateSubmission(**values)


@pytest.fixture
def make_provider(orchestrator):
    """Register and approve a candidate; returns the Active provider."""

    def _make(**overrides):
        registered = orchestrator.register_candidate(submission(**overrides))
        approved = orchestrator.approve_candidate(registered.subject_id)
        return orchestrator.directory.require_provider(approved.subject_id)

    return _make


@pytest.fixture
def client(session_factory, sink):
    def override_get_db():
        yield from transactional_session(session_factory)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_sink] = lambda: sink
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_submission():
    return submission


@pytest.fixture
def failing_sink():
    return FailingSink()
