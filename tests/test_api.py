from uuid import uuid4

ADMIN = {"X-Admin-ID": "admin-7"}


def candidate_payload(n, **overrides):
    payload = {
        "full_name": f"Dr. Api {n}",
        "email": f"api{n}@example.com",
        "password": "s3cret-pass",
        "phone": f"0311{n:07d}",
        "licenses": [f"API-{n}"],
        "specializations": ["Dermatology"],
    }
    payload.update(overrides)
    return payload


def create_provider(client, n, **overrides):
    registered = client.post("/api/v1/candidates", json=candidate_payload(n, **overrides))
    assert registered.status_code == 201
    approved = client.post(f"/api/v1/candidates/{registered.json()['subject_id']}/approve")
    assert approved.status_code == 200
    return approved.json()["subject_id"]


def test_register_read_and_approve_candidate(client):
    response = client.post("/api/v1/candidates", json=candidate_payload(1))
    assert response.status_code == 201
    body = response.json()
    assert body["outcome"] == "registered"
    candidate_id = body["subject_id"]

    read = client.get(f"/api/v1/candidates/{candidate_id}")
    assert read.status_code == 200
    assert read.json()["candidate"]["phone"] == "+92-311-0000001"
    assert "password_hash" not in read.json()["candidate"]

    approved = client.post(f"/api/v1/candidates/{candidate_id}/approve")
    assert approved.status_code == 200
    provider_id = approved.json()["subject_id"]

    provider = client.get(f"/api/v1/providers/{provider_id}")
    assert provider.status_code == 200
    assert provider.json()["provider"]["state"] == "ACTIVE"
    assert provider.json()["suspension_count"] == 0
    assert client.get(f"/api/v1/candidates/{candidate_id}").status_code == 404


def test_validation_and_not_found_errors(client):
    invalid = client.post("/api/v1/candidates", json=candidate_payload(2, phone="12"))
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "ValidationFailed"

    missing = client.get(f"/api/v1/providers/{uuid4()}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_suspend_records_acting_admin_and_unsuspend(client):
    provider_id = create_provider(client, 3)

    suspended = client.post(
        f"/api/v1/providers/{provider_id}/suspend",
        json={"reasons": ["late reports"], "severity": "MINOR", "duration_days": 7},
        headers=ADMIN,
    )
    assert suspended.status_code == 200
    assert suspended.json()["outcome"] == "suspended"
    assert suspended.json()["sequence_number"] == 1

    history = client.get(f"/api/v1/providers/{provider_id}/suspensions").json()
    assert history["suspension_count"] == 1
    record = history["suspensions"][0]
    assert record["issued_by"] == "admin-7"
    assert record["severity"] == "MINOR"
    assert record["period"]["duration_days"] == 7

    unsuspended = client.post(f"/api/v1/providers/{provider_id}/unsuspend")
    assert unsuspended.status_code == 200
    assert unsuspended.json()["revoked_records"] == 1

    again = client.post(f"/api/v1/providers/{provider_id}/unsuspend")
    assert again.status_code == 409
    assert again.json()["error"] == "InvalidTransition"


def test_suspend_without_body_uses_defaults(client):
    provider_id = create_provider(client, 4)

    response = client.post(f"/api/v1/providers/{provider_id}/suspend")

    assert response.status_code == 200
    assert response.json()["data"]["suspension"]["reasons"] == ["Administrative suspension"]


def test_sixth_suspension_terminates_over_http(client):
    provider_id = create_provider(client, 5, email="six@example.com")

    outcomes = [
        client.post(f"/api/v1/providers/{provider_id}/suspend", json={"reasons": ["x"]}).json()[
            "outcome"
        ]
        for _ in range(6)
    ]

    assert outcomes == ["suspended"] * 5 + ["terminated"]
    assert client.get(f"/api/v1/providers/{provider_id}").status_code == 404

    check = client.post("/api/v1/blacklist/check", json={"email": "SIX@example.com"})
    assert check.json()["blacklisted"] is True
    assert check.json()["entry"]["reason"] == "PROVIDER_TERMINATED"

    blocked = client.post(
        "/api/v1/candidates", json=candidate_payload(6, email="six@example.com")
    )
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "BLACKLISTED_CREDENTIALS"


def test_license_conflict_suspension_is_committed(client, sink):
    provider_id = create_provider(client, 7, licenses=["SHARED-1"])

    response = client.post(
        "/api/v1/candidates", json=candidate_payload(8, licenses=["SHARED-1"])
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "DUPLICATE_CREDENTIALS"
    assert body["detail"]["holder_suspended"] is True
    assert body["side_effects"]["suspension_records"]
    assert client.get(f"/api/v1/providers/{provider_id}").json()["provider"]["state"] == (
        "SUSPENDED"
    )
    assert "registration.blocked" in sink.types


def test_reject_candidate_three_times(client):
    for attempt in range(3):
        registered = client.post(
            "/api/v1/candidates",
            json=candidate_payload(10 + attempt, email="thrice@example.com"),
        )
        assert registered.status_code == 201
        rejected = client.post(
            f"/api/v1/candidates/{registered.json()['subject_id']}/reject",
            json={"reason": "documents unreadable"},
        )
        assert rejected.status_code == 200

    assert rejected.json()["data"] == {
        "rejection_count": 3,
        "blacklisted": True,
        "reason": "documents unreadable",
    }
    listing = client.get(
        "/api/v1/blacklist", params={"reason": "CANDIDATE_REJECTED_REPEATEDLY"}
    ).json()
    assert listing["pagination"]["total"] == 1


def test_delete_provider(client):
    provider_id = create_provider(client, 20, email="gone@example.com")

    response = client.delete(
        f"/api/v1/providers/{provider_id}",
        params={"reason": "license revoked", "blacklist_reason": "MANUAL"},
    )

    assert response.status_code == 200
    assert response.json()["outcome"] == "deleted"
    assert client.get(f"/api/v1/providers/{provider_id}").status_code == 404
    check = client.post("/api/v1/blacklist/check", json={"email": "gone@example.com"})
    assert check.json()["entry"]["reason"] == "MANUAL"


def test_manual_blacklist_lifecycle(client):
    created = client.post(
        "/api/v1/blacklist",
        json={"phone": "03219990000", "description": "chargeback fraud"},
        headers=ADMIN,
    )
    assert created.status_code == 201
    entry = created.json()["data"]["blacklist_entry"]
    assert entry["phone"] == "+92-321-9990000"
    assert entry["created_by"] == "admin-7"

    check = client.post("/api/v1/blacklist/check", json={"phone": "+92 321 9990000"})
    assert check.json()["blacklisted"] is True

    assert client.delete(f"/api/v1/blacklist/{entry['id']}").json()["outcome"] == "deactivated"
    assert (
        client.delete(f"/api/v1/blacklist/{entry['id']}").json()["outcome"]
        == "already_inactive"
    )
    inactive = client.get("/api/v1/blacklist", params={"is_active": "false"}).json()
    assert [item["id"] for item in inactive["entries"]] == [entry["id"]]

    removed = client.delete(f"/api/v1/blacklist/{entry['id']}", params={"permanent": "true"})
    assert removed.json()["outcome"] == "removed"
    assert client.delete(f"/api/v1/blacklist/{entry['id']}").status_code == 404


def test_empty_manual_entry_is_rejected(client):
    response = client.post("/api/v1/blacklist", json={"licenses": ["  "]})

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationFailed"


def test_delete_provider_rejects_candidate_blacklist_reason(client):
    provider_id = create_provider(client, 21)

    response = client.delete(
        f"/api/v1/providers/{provider_id}",
        params={"blacklist_reason": "CANDIDATE_REJECTED_REPEATEDLY"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationFailed"
    assert client.get(f"/api/v1/providers/{provider_id}").status_code == 200
