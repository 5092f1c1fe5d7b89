from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from credguard.db.session import session_scope
from credguard.logging_utils import _actor_id_ctx_var
from credguard.models import (
    BlacklistEntry,
    BlacklistReason,
    Candidate,
    LifecycleState,
    Provider,
    Severity,
    SuspensionKind,
    SuspensionRecord,
)
from credguard.services import (
    BlockedBlacklisted,
    BlockedDuplicateCredential,
    InvalidTransition,
    LifecycleOrchestrator,
    NotFound,
    SuspensionDetails,
    ValidationFailed,
)
from credguard.services.credentials import Credentials
from credguard.services.events import EventType, LoggingEventSink
from credguard.services.passwords import verify_password


def suspend(orchestrator, provider_id, reason="policy violation"):
    return orchestrator.suspend_provider(provider_id, SuspensionDetails(reasons=[reason]))


def blacklist_reasons(db):
    return [entry.reason for entry in db.execute(select(BlacklistEntry)).scalars()]


# --------------------------------------------------------------------------
# registration
# --------------------------------------------------------------------------


def test_register_candidate_normalizes_and_hashes(orchestrator, make_submission, sink):
    result = orchestrator.register_candidate(
        make_submission(
            email="  New.Doc@Example.COM ",
            phone="+92 321 7654321",
            licenses=[" PMDC-9 ", "PMDC-9", ""],
        )
    )

    candidate = orchestrator.directory.require_candidate(result.subject_id)
    assert result.outcome == "registered"
    assert candidate.email == "new.doc@example.com"
    assert candidate.phone == "+92-321-7654321"
    assert candidate.license_numbers == ["PMDC-9"]
    assert verify_password("s3cret-pass", candidate.password_hash)
    assert sink.types == [EventType.CANDIDATE_REGISTERED.value]


def test_register_requires_name_email_and_password(orchestrator, make_submission):
    with pytest.raises(ValidationFailed) as excinfo:
        orchestrator.register_candidate(make_submission(full_name=" ", password=""))

    assert excinfo.value.detail["missing"] == ["full_name", "password"]


def test_register_rejects_invalid_phone(orchestrator, make_submission):
    with pytest.raises(ValidationFailed):
        orchestrator.register_candidate(make_submission(phone="call me"))


def test_blacklisted_credentials_cannot_register(orchestrator, make_submission, sink, db):
    orchestrator.add_manual_blacklist_entry(Credentials(licenses=("PMDC-BANNED",)))

    with pytest.raises(BlockedBlacklisted) as excinfo:
        orchestrator.register_candidate(make_submission(licenses=["X-1", "PMDC-BANNED"]))

    assert excinfo.value.detail["blacklist_reason"] == "MANUAL"
    assert excinfo.value.result.outcome == "blocked"
    assert sink.types == [EventType.REGISTRATION_BLOCKED.value]
    assert sink.events[0][1]["priority"] == "high"
    assert db.execute(select(func.count()).select_from(Candidate)).scalar_one() == 0


def test_blacklist_check_runs_before_duplicate_check(orchestrator, make_submission):
    orchestrator.register_candidate(make_submission(email="taken@example.com"))
    orchestrator.add_manual_blacklist_entry(Credentials(email="taken@example.com"))

    with pytest.raises(BlockedBlacklisted):
        orchestrator.register_candidate(make_submission(email="taken@example.com"))


def test_duplicate_email_or_phone_is_blocked(orchestrator, make_provider, make_submission, sink):
    provider = make_provider(email="dup@example.com", phone="03005550001")
    sink.events.clear()

    with pytest.raises(BlockedDuplicateCredential) as by_email:
        orchestrator.register_candidate(make_submission(email="DUP@example.com"))
    with pytest.raises(BlockedDuplicateCredential) as by_phone:
        orchestrator.register_candidate(make_submission(phone="+92 300 5550001"))

    assert by_email.value.detail["field"] == "email"
    assert by_email.value.detail["entity_id"] == str(provider.id)
    assert by_phone.value.detail["field"] == "phone"
    assert sink.types == [EventType.REGISTRATION_BLOCKED.value] * 2
    assert sink.events[0][1]["priority"] == "medium"


def test_duplicate_against_pending_candidate(orchestrator, make_submission):
    pending = orchestrator.register_candidate(make_submission(email="queue@example.com"))

    with pytest.raises(BlockedDuplicateCredential) as excinfo:
        orchestrator.register_candidate(make_submission(email="queue@example.com"))

    assert excinfo.value.detail["entity_type"] == "candidate"
    assert excinfo.value.detail["entity_id"] == str(pending.subject_id)


def test_license_conflict_with_active_provider_suspends_holder(
    orchestrator, make_provider, make_submission, db, sink
):
    holder = make_provider(licenses=["PMDC-77"])
    sink.events.clear()

    with pytest.raises(BlockedDuplicateCredential) as excinfo:
        orchestrator.register_candidate(make_submission(licenses=["PMDC-77"]))

    error = excinfo.value
    assert error.detail["conflicting_license"] == "PMDC-77"
    assert error.detail["holder_suspended"] is True
    assert error.detail["action_taken"] == "existing_doctor_suspended"
    assert "has been suspended" in error.message
    assert holder.state == LifecycleState.SUSPENDED

    (record,) = orchestrator.ledger.history(holder.id)
    assert record.kind == SuspensionKind.INDEFINITE
    assert record.severity == Severity.MAJOR
    assert record.ends_at is None
    assert record.reasons[0].startswith("License number conflict detected: PMDC-77")
    assert error.result.suspension_records == [record.id]
    assert sink.types == [
        EventType.PROVIDER_SUSPENDED.value,
        EventType.REGISTRATION_BLOCKED.value,
    ]
    assert db.execute(select(func.count()).select_from(Candidate)).scalar_one() == 0


def test_license_conflict_with_pending_candidate_only_rejects(
    orchestrator, make_submission, db
):
    orchestrator.register_candidate(make_submission(licenses=["PMDC-88"]))

    with pytest.raises(BlockedDuplicateCredential) as excinfo:
        orchestrator.register_candidate(make_submission(licenses=["PMDC-88"]))

    assert excinfo.value.detail["holder_suspended"] is False
    assert excinfo.value.detail["entity_type"] == "candidate"
    assert excinfo.value.result.suspension_records == []
    assert db.execute(select(func.count()).select_from(SuspensionRecord)).scalar_one() == 0


def test_license_conflict_prefers_the_provider_holder(
    orchestrator, make_provider, make_submission, db
):
    holder = make_provider(licenses=["PMDC-1"])
    orchestrator.directory.insert_candidate(
        full_name="Dr. Copy",
        credentials=Credentials(
            email="copy@example.com", phone="+92-300-9999999", licenses=("PMDC-1",)
        ),
        password_hash="hashed",
    )

    with pytest.raises(BlockedDuplicateCredential) as excinfo:
        orchestrator.register_candidate(make_submission(licenses=["PMDC-1"]))

    assert excinfo.value.detail["entity_id"] == str(holder.id)
    assert excinfo.value.detail["holder_suspended"] is True


def test_license_conflict_on_the_threshold_terminates_holder(
    orchestrator, make_provider, make_submission, db
):
    holder = make_provider(licenses=["PMDC-5"])
    holder_id, holder_email = holder.id, holder.email
    for _ in range(5):
        suspend(orchestrator, holder_id)

    with pytest.raises(BlockedDuplicateCredential) as excinfo:
        orchestrator.register_candidate(make_submission(licenses=["PMDC-5"]))

    assert excinfo.value.detail["holder_terminated"] is True
    assert orchestrator.directory.get_provider(holder_id) is None
    assert orchestrator.check_blacklist(Credentials(email=holder_email))


# --------------------------------------------------------------------------
# approval
# --------------------------------------------------------------------------


def test_approve_candidate_materializes_active_provider(orchestrator, make_submission, db, sink):
    registered = orchestrator.register_candidate(make_submission(licenses=["A", "B"]))

    result = orchestrator.approve_candidate(registered.subject_id)

    provider = db.get(Provider, result.subject_id)
    assert provider.state == LifecycleState.ACTIVE
    assert provider.license_numbers == ["A", "B"]
    assert provider.approved_at is not None
    assert orchestrator.directory.get_candidate(registered.subject_id) is None
    assert [identity.entity_type for identity in result.removed] == ["candidate"]
    assert sink.types[-1] == EventType.CANDIDATE_APPROVED.value


def test_approve_unknown_candidate(orchestrator):
    with pytest.raises(NotFound):
        orchestrator.approve_candidate(uuid4())


def test_approve_validates_required_fields(orchestrator, db):
    candidate = orchestrator.directory.insert_candidate(
        full_name="Dr. Incomplete",
        credentials=Credentials(email="incomplete@example.com", phone=""),
        password_hash="hashed",
    )

    with pytest.raises(ValidationFailed) as excinfo:
        orchestrator.approve_candidate(candidate.id)

    assert excinfo.value.detail["missing"] == ["phone"]
    assert orchestrator.directory.get_candidate(candidate.id) is not None
    assert db.execute(select(func.count()).select_from(Provider)).scalar_one() == 0


def test_first_approval_of_an_email_wins(orchestrator, db):
    first, second = (
        orchestrator.directory.insert_candidate(
            full_name=f"Dr. Twin {index}",
            credentials=Credentials(
                email="twin@example.com", phone=f"+92-300-000000{index}"
            ),
            password_hash="hashed",
        )
        for index in (1, 2)
    )

    orchestrator.approve_candidate(first.id)
    with pytest.raises(BlockedDuplicateCredential) as excinfo:
        orchestrator.approve_candidate(second.id)

    assert excinfo.value.detail["field"] == "email"
    assert orchestrator.directory.get_candidate(second.id) is not None


def test_unique_email_violation_at_materialization_is_terminal(orchestrator, db, monkeypatch):
    candidate = orchestrator.directory.insert_candidate(
        full_name="Dr. Race",
        credentials=Credentials(email="race@example.com", phone="+92-300-1234000"),
        password_hash="hashed",
    )
    db.add(
        Provider(
            full_name="Dr. Winner",
            email="race@example.com",
            phone="+92-300-1234001",
            password_hash="hashed",
        )
    )
    db.flush()
    # the advisory check saw no provider yet
    monkeypatch.setattr(orchestrator.directory, "find_provider_by_email", lambda email: None)

    with pytest.raises(BlockedDuplicateCredential) as excinfo:
        orchestrator.approve_candidate(candidate.id)

    assert excinfo.value.retryable is False
    assert orchestrator.directory.get_candidate(candidate.id) is not None


# --------------------------------------------------------------------------
# rejection
# --------------------------------------------------------------------------


def test_rejection_threshold_blacklists_on_third_rejection(orchestrator, make_submission, db, sink):
    results = []
    for attempt in range(3):
        registered = orchestrator.register_candidate(
            make_submission(email="Again@Example.com")
        )
        results.append(orchestrator.reject_candidate(registered.subject_id, f"try {attempt}"))
        if attempt < 2:
            assert blacklist_reasons(db) == []

    assert [result.data["rejection_count"] for result in results] == [1, 2, 3]
    assert [result.data["blacklisted"] for result in results] == [False, False, True]
    assert blacklist_reasons(db) == [BlacklistReason.CANDIDATE_REJECTED_REPEATEDLY]
    assert db.execute(select(func.count()).select_from(Candidate)).scalar_one() == 0
    assert EventType.CANDIDATE_BLACKLISTED.value in sink.types

    with pytest.raises(BlockedBlacklisted):
        orchestrator.register_candidate(make_submission(email="again@example.com"))


def test_rejection_below_threshold_creates_no_entry(orchestrator, make_submission, db):
    for _ in range(2):
        registered = orchestrator.register_candidate(make_submission(email="twice@example.com"))
        result = orchestrator.reject_candidate(registered.subject_id, "incomplete documents")
        assert result.removed[0].entity_id == registered.subject_id

    assert blacklist_reasons(db) == []
    assert orchestrator.rejections.count_for("twice@example.com") == 2


def test_rejection_blacklist_covers_the_full_credential_set(orchestrator, make_submission):
    for attempt in range(3):
        registered = orchestrator.register_candidate(
            make_submission(
                email="full@example.com",
                phone="03007770000",
                licenses=[f"LIC-{attempt}"],
            )
        )
        orchestrator.reject_candidate(registered.subject_id)

    assert orchestrator.check_blacklist(Credentials(licenses=("LIC-2",)))
    assert orchestrator.check_blacklist(Credentials(phone="+92-300-7770000"))
    assert not orchestrator.check_blacklist(Credentials(licenses=("LIC-0",)))


# --------------------------------------------------------------------------
# suspension and termination
# --------------------------------------------------------------------------


def test_suspend_sets_state_and_reports_sequence(orchestrator, make_provider, sink):
    provider = make_provider()
    sink.events.clear()

    result = suspend(orchestrator, provider.id)

    assert result.outcome == "suspended"
    assert result.sequence_number == 1
    assert provider.state == LifecycleState.SUSPENDED
    assert result.data["suspension"]["reasons"] == ["policy violation"]
    assert sink.types == [EventType.PROVIDER_SUSPENDED.value]


def test_sixth_suspension_terminates_and_blacklists(orchestrator, make_provider, db, sink):
    provider = make_provider(licenses=["PMDC-6"])
    provider_id, email = provider.id, provider.email

    results = [suspend(orchestrator, provider_id) for _ in range(6)]

    assert [result.outcome for result in results] == ["suspended"] * 5 + ["terminated"]
    final = results[-1]
    assert final.terminated
    assert final.sequence_number == 6
    assert final.purged_records == 6
    assert len(final.blacklist_entries) == 1
    assert [identity.entity_id for identity in final.removed] == [provider_id]
    assert [event.event_type for event in final.events] == [
        EventType.PROVIDER_SUSPENDED,
        EventType.PROVIDER_BLACKLISTED,
    ]
    assert orchestrator.directory.get_provider(provider_id) is None
    assert orchestrator.ledger.count_for(provider_id) == 0

    entry = orchestrator.blacklist_entry_for(Credentials(email=email))
    assert entry.reason == BlacklistReason.PROVIDER_TERMINATED
    assert entry.license_numbers == ["PMDC-6"]
    assert entry.origin_entity_id == provider_id


def test_revocation_does_not_reset_the_count(orchestrator, make_provider):
    provider = make_provider()
    for _ in range(5):
        suspend(orchestrator, provider.id)

    unsuspended = orchestrator.unsuspend_provider(provider.id)
    assert unsuspended.revoked_records == 5
    assert unsuspended.data["suspension_count"] == 5
    assert provider.state == LifecycleState.ACTIVE

    assert suspend(orchestrator, provider.id).terminated


def test_example_scenario_with_five_revoked_records(orchestrator, make_provider):
    provider = make_provider()
    provider_id, email = provider.id, provider.email
    for _ in range(5):
        suspend(orchestrator, provider_id)
        orchestrator.unsuspend_provider(provider_id)

    result = orchestrator.suspend_provider(provider_id, SuspensionDetails(reasons=["test"]))

    assert result.terminated
    assert orchestrator.blacklist.is_blacklisted(Credentials(email=email)) is not None
    with pytest.raises(NotFound):
        orchestrator.directory.require_provider(provider_id)


def test_unsuspend_active_provider_is_an_invalid_transition(orchestrator, make_provider):
    provider = make_provider()

    with pytest.raises(InvalidTransition):
        orchestrator.unsuspend_provider(provider.id)


def test_suspend_unknown_provider(orchestrator):
    with pytest.raises(NotFound):
        suspend(orchestrator, uuid4())


def test_issuer_defaults_to_current_actor(orchestrator, make_provider):
    provider = make_provider()
    token = _actor_id_ctx_var.set("admin-42")
    try:
        result = suspend(orchestrator, provider.id)
    finally:
        _actor_id_ctx_var.reset(token)

    assert result.data["suspension"]["issued_by"] == "admin-42"


def test_concurrent_suspensions_yield_contiguous_sequences(session_factory, make_submission):
    with session_scope(session_factory) as db:
        orchestrator = LifecycleOrchestrator(db, LoggingEventSink())
        registered = orchestrator.register_candidate(make_submission())
        provider_id = orchestrator.approve_candidate(registered.subject_id).subject_id

    def run(_):
        with session_scope(session_factory) as db:
            return suspend(LifecycleOrchestrator(db, LoggingEventSink()), provider_id)

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(run, range(5)))

    assert sorted(result.sequence_number for result in results) == [1, 2, 3, 4, 5]
    assert not any(result.terminated for result in results)


def test_concurrent_suspensions_terminate_exactly_once(session_factory, make_submission):
    with session_scope(session_factory) as db:
        orchestrator = LifecycleOrchestrator(db, LoggingEventSink())
        registered = orchestrator.register_candidate(make_submission())
        provider_id = orchestrator.approve_candidate(registered.subject_id).subject_id

    def run(_):
        try:
            with session_scope(session_factory) as db:
                return suspend(LifecycleOrchestrator(db, LoggingEventSink()), provider_id).outcome
        except NotFound:
            return "not_found"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(run, range(8)))

    assert outcomes.count("terminated") == 1
    assert outcomes.count("suspended") == 5
    assert outcomes.count("not_found") == 2
    with session_scope(session_factory) as db:
        reasons = [entry.reason for entry in db.execute(select(BlacklistEntry)).scalars()]
    assert reasons == [BlacklistReason.PROVIDER_TERMINATED]


# --------------------------------------------------------------------------
# manual deletion, reconciliation, events
# --------------------------------------------------------------------------


def test_delete_provider_blacklists_and_removes(orchestrator, make_provider, sink):
    provider = make_provider()
    provider_id, email = provider.id, provider.email
    suspend(orchestrator, provider_id)
    sink.events.clear()

    result = orchestrator.delete_provider(
        provider_id, "fraud", blacklist_reason=BlacklistReason.MANUAL
    )

    assert result.outcome == "deleted"
    assert result.purged_records == 1
    assert orchestrator.directory.get_provider(provider_id) is None
    entry = orchestrator.blacklist_entry_for(Credentials(email=email))
    assert entry.reason == BlacklistReason.MANUAL
    assert "fraud" in entry.description
    assert sink.types == [
        EventType.PROVIDER_BLACKLISTED.value,
        EventType.PROVIDER_DELETED.value,
    ]


def test_delete_provider_refuses_non_manual_blacklist_reason(orchestrator, make_provider):
    provider = make_provider()

    with pytest.raises(ValidationFailed):
        orchestrator.delete_provider(
            provider.id, blacklist_reason=BlacklistReason.CANDIDATE_REJECTED_REPEATEDLY
        )

    assert orchestrator.directory.get_provider(provider.id) is not None


def test_interrupted_termination_is_completed_on_next_access(orchestrator, make_provider):
    provider = make_provider()
    provider_id, email = provider.id, provider.email
    for _ in range(6):
        orchestrator.ledger.record_suspension(provider_id, SuspensionDetails())

    result = orchestrator.unsuspend_provider(provider_id)

    assert result.terminated
    assert result.operation == "unsuspend_provider"
    assert result.purged_records == 6
    assert orchestrator.directory.get_provider(provider_id) is None
    assert orchestrator.check_blacklist(Credentials(email=email))


def test_reconcile_is_a_no_op_below_threshold(orchestrator, make_provider):
    provider = make_provider()
    suspend(orchestrator, provider.id)

    assert orchestrator.reconcile_provider(provider.id) is None
    assert orchestrator.directory.get_provider(provider.id) is not None


def test_failing_sink_never_blocks_the_transition(db, failing_sink, make_submission):
    orchestrator = LifecycleOrchestrator(db, failing_sink)
    registered = orchestrator.register_candidate(make_submission())
    provider_id = orchestrator.approve_candidate(registered.subject_id).subject_id

    result = suspend(orchestrator, provider_id)

    assert result.outcome == "suspended"
    assert [event.delivered for event in result.events] == [False]
    assert orchestrator.directory.require_provider(provider_id).state == LifecycleState.SUSPENDED


def test_result_as_dict_is_json_friendly(orchestrator, make_provider):
    provider = make_provider()

    payload = suspend(orchestrator, provider.id).as_dict()

    assert payload["operation"] == "suspend_provider"
    assert payload["subject_id"] == str(provider.id)
    assert payload["events"][0]["event_type"] == "provider.suspended"
    assert isinstance(payload["suspension_records"][0], str)
