from credguard.models import LifecycleState
from credguard.services.conflicts import ConflictResolver
from credguard.services.credentials import Credentials
from credguard.services.directory import ProviderDirectory


def add_candidate(directory, email, phone, licenses=()):
    return directory.insert_candidate(
        full_name=f"Dr. {email.split('@')[0].title()}",
        credentials=Credentials(email=email, phone=phone, licenses=tuple(licenses)),
        password_hash="hashed",
    )


def test_email_conflict_against_candidate_pool(db):
    directory = ProviderDirectory(db)
    candidate = add_candidate(directory, "pending@example.com", "+92-300-0000001")

    conflict = ConflictResolver(directory).find_email_or_phone_conflict(
        "pending@example.com", "+92-300-0000009"
    )

    assert conflict.field == "email"
    assert conflict.holder.entity_id == candidate.id
    assert not conflict.with_provider
    assert conflict.holder.state == LifecycleState.PENDING


def test_provider_match_is_reported_before_candidate(db):
    directory = ProviderDirectory(db)
    candidate = add_candidate(directory, "old@example.com", "+92-300-0000002", ["L-1"])
    provider = directory.insert_provider(candidate)
    add_candidate(directory, "new@example.com", "+92-300-0000003", ["L-1"])

    conflict = ConflictResolver(directory).find_license_conflict(["L-1"])

    assert conflict.with_provider
    assert conflict.holder.entity_id == provider.id
    assert conflict.as_dict()["value"] == "L-1"


def test_phone_conflict_when_email_is_free(db):
    directory = ProviderDirectory(db)
    add_candidate(directory, "a@example.com", "+92-300-0000004")

    conflict = ConflictResolver(directory).find_email_or_phone_conflict(
        "b@example.com", "+92-300-0000004"
    )

    assert conflict.field == "phone"


def test_first_declared_license_wins(db):
    directory = ProviderDirectory(db)
    add_candidate(directory, "one@example.com", "+92-300-0000005", ["L-2"])
    add_candidate(directory, "two@example.com", "+92-300-0000006", ["L-3"])

    conflict = ConflictResolver(directory).find_license_conflict(["L-9", "L-3", "L-2"])

    assert conflict.value == "L-3"


def test_licenses_are_exact_strings(db):
    directory = ProviderDirectory(db)
    add_candidate(directory, "case@example.com", "+92-300-0000007", ["pmdc-10"])
    resolver = ConflictResolver(directory)

    assert resolver.find_license_conflict(["PMDC-10"]) is None
    assert resolver.find_license_conflict(["", "  "]) is None
    assert resolver.find_email_or_phone_conflict(None, None) is None
