import json
import uuid

import pytest
from httpx import AsyncClient, ASGITransport

from leadrouter.api import deps
from leadrouter.core.security import compute_signature, create_oauth_state
from leadrouter.main import app
from leadrouter.schemas.lead import ClassifierResult

ADMIN = {"Authorization": "Bearer admin-token"}


@pytest.fixture
async def client(session_factory, mailbox_client, classifier):
    app.dependency_overrides[deps.get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_mailbox] = lambda: mailbox_client
    app.dependency_overrides[deps.get_classifier] = lambda: classifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _signed(payload):
    body = json.dumps(payload).encode()
    return body, {"X-Homestack-Signature": compute_signature(body, "hook-secret"), "Content-Type": "application/json"}


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.parametrize("method, path", [
    ("get", "/api/admin/rotation/"),
    ("get", "/api/admin/duplicates/"),
    ("get", "/api/admin/lead-sources"),
    ("post", "/api/cron/email-processing"),
    ("post", "/api/cron/mailbox-tokens/sweep"),
    ("post", "/api/leads/submit"),
    ("post", "/api/email/process"),
    ("post", "/api/webhooks/homestack"),
    ("post", "/api/pixel/capture"),
])
async def test_endpoints_require_credentials(client, method, path):
    response = await getattr(client, method)(path)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


async def test_signed_webhook_creates_then_deduplicates(client, add_agents):
    agents = await add_agents(1)
    body, headers = _signed({"event": "new_user", "data": {"id": 42, "firstName": "Ada", "email": "ada@example.com"}})

    first = await client.post("/api/webhooks/homestack", content=body, headers=headers)
    second = await client.post("/api/webhooks/homestack", content=body, headers=headers)

    assert first.status_code == 201
    assert first.json()["status"] == "created"
    assert first.json()["assigned_to"] == str(agents[0])
    assert second.status_code == 200
    assert second.json()["status"] == "duplicate"


async def test_webhook_with_bad_signature(client):
    body, headers = _signed({"id": 1, "email": "a@x.com"})
    headers["X-Homestack-Signature"] = "sha256=" + "0" * 64

    response = await client.post("/api/webhooks/homestack", content=body, headers=headers)

    assert response.status_code == 401


async def test_webhook_ignores_other_events(client):
    body, headers = _signed({"event": "listing.viewed", "id": 5})

    response = await client.post("/api/webhooks/homestack", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "ignored", "event": "listing.viewed"}


async def test_submission_without_identity_is_rejected(client):
    response = await client.post(
        "/api/leads/submit",
        json={"first_name": "Nobody"},
        headers={"X-Lead-Api-Key": "lead-key", "Idempotency-Key": "req-1"}
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "missing_identity"
    assert response.json()["outcome"]["status"] == "rejected"


async def test_malformed_submission(client):
    response = await client.post(
        "/api/leads/submit", json={"confidence": 3}, headers={"X-Lead-Api-Key": "lead-key"}
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_payload"


async def test_staged_submission(client):
    response = await client.post(
        "/api/leads/submit",
        json={"email": "Grace@Example.com", "phone": "+1 (555) 010-3000"},
        headers={"X-Lead-Api-Key": "lead-key"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "staged"


async def test_pixel_capture_with_admin_created_key(client):
    created = await client.post("/api/admin/pixel-keys", json={"name": "acme-site"}, headers=ADMIN)
    assert created.status_code == 201
    key = created.json()["key"]

    response = await client.post(
        "/api/pixel/capture",
        json={"lead_data": {"name": "Sam Buyer", "email": "sam@example.com", "bedrooms": "3", "submission_id": "s-1"}},
        headers={"X-API-Key": key}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "staged"
    person_id = response.json()["person_id"]
    person = await client.get(f"/api/people/{person_id}", headers=ADMIN)
    assert person.json()["lead_source"] == "pixel_acme-site"
    assert person.json()["first_name"] == "Sam"

    deactivated = await client.delete(f"/api/admin/pixel-keys/{created.json()['id']}", headers=ADMIN)
    assert deactivated.json()["is_active"] is False
    rejected = await client.post(
        "/api/pixel/capture", json={"lead_data": {"email": "x@example.com"}}, headers={"X-API-Key": key}
    )
    assert rejected.status_code == 401


async def test_rotation_admin(client):
    first, second = sorted((str(uuid.uuid4()) for _ in range(2)))
    for agent_id in (first, second):
        response = await client.post("/api/admin/rotation/", json={"agent_id": agent_id}, headers=ADMIN)
        assert response.status_code == 201

    duplicate = await client.post("/api/admin/rotation/", json={"agent_id": first}, headers=ADMIN)
    assert duplicate.status_code == 422
    assert duplicate.json()["error"]["code"] == "duplicate_agent"

    assert (await client.get("/api/admin/rotation/next", headers=ADMIN)).json() == {"agent_id": first}

    paused = await client.patch(f"/api/admin/rotation/{first}", json={"is_active": False}, headers=ADMIN)
    assert paused.json()["is_active"] is False
    assert (await client.get("/api/admin/rotation/next", headers=ADMIN)).json() == {"agent_id": second}

    removed = await client.delete(f"/api/admin/rotation/{second}", headers=ADMIN)
    assert removed.status_code == 200
    entries = (await client.get("/api/admin/rotation/", headers=ADMIN)).json()
    assert [entry["agent_id"] for entry in entries] == [first]

    missing = await client.delete(f"/api/admin/rotation/{uuid.uuid4()}", headers=ADMIN)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


async def test_people_lifecycle(client, add_agents):
    submitted = await client.post(
        "/api/leads/submit", json={"email": "a@x.com"}, headers={"X-Lead-Api-Key": "lead-key"}
    )
    person_id = submitted.json()["person_id"]

    await add_agents(1)
    assigned = await client.post(f"/api/people/{person_id}/assign", headers=ADMIN)
    assert assigned.json()["lead_status"] == "assigned"

    refused = await client.delete(f"/api/people/{person_id}", headers=ADMIN)
    assert refused.status_code == 409
    assert refused.json()["error"]["code"] == "invalid_transition"

    contacted = await client.post(f"/api/people/{person_id}/status", json={"status": "contacted"}, headers=ADMIN)
    assert contacted.json()["lead_status"] == "contacted"

    activities = (await client.get(f"/api/people/{person_id}/activities", headers=ADMIN)).json()
    assert {activity["type"] for activity in activities} == {"created", "assigned", "status_changed"}

    archived = await client.post(f"/api/people/{person_id}/archive", headers=ADMIN)
    assert archived.json()["archived_at"] is not None


async def test_delete_staging_person(client):
    submitted = await client.post(
        "/api/leads/submit", json={"email": "a@x.com"}, headers={"X-Lead-Api-Key": "lead-key"}
    )
    person_id = submitted.json()["person_id"]

    deleted = await client.delete(f"/api/people/{person_id}", headers=ADMIN)

    assert deleted.status_code == 200
    assert (await client.get(f"/api/people/{person_id}", headers=ADMIN)).status_code == 404


async def test_duplicate_review_and_merge(client):
    headers = {"X-Lead-Api-Key": "lead-key"}
    first = (await client.post("/api/leads/submit", json={"email": "a@x.com"}, headers=headers)).json()
    second = (await client.post("/api/leads/submit", json={"phone": "5550102000"}, headers=headers)).json()
    ambiguous = await client.post(
        "/api/leads/submit", json={"email": "a@x.com", "phone": "5550102000"}, headers=headers
    )
    assert ambiguous.json()["error"]["code"] == "ambiguous_match"

    flags = (await client.get("/api/admin/duplicates/", headers=ADMIN)).json()
    assert len(flags) == 1
    assert set(flags[0]["person_ids"]) == {first["person_id"], second["person_id"]}

    merged = await client.post(
        "/api/admin/duplicates/merge",
        json={"primary_person_id": first["person_id"], "duplicate_person_ids": [second["person_id"]]},
        headers=ADMIN
    )
    assert merged.status_code == 200
    assert merged.json()["phones"] == ["5550102000"]
    assert (await client.get("/api/admin/duplicates/", headers=ADMIN)).json() == []


async def test_pushed_email(client):
    response = await client.post(
        "/api/email/process",
        json={
            "email_id": "push-1",
            "from": "Lee <lee@example.com>",
            "subject": "Viewing",
            "body": "Can I see the house?",
            "ai_analysis": {"is_lead": True, "confidence": 0.92, "lead_data": {"name": "Lee Park"}}
        },
        headers={"Authorization": "Bearer push-token"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "staged"


async def test_cron_sweeps(client, mailbox_client, classifier, add_agents, add_token):
    await add_agents(1)
    await add_token(access_token="good")
    mailbox_client.valid_tokens.add("good")
    mailbox_client.add_message("m1")
    classifier.results["m1"] = ClassifierResult(is_lead=True, confidence=0.9, lead_data={"email": ["b@x.com"]})

    sweep = await client.post("/api/cron/email-processing", headers={"X-Cron-Secret": "cron-secret"})
    assert sweep.status_code == 200
    assert sweep.json()["total_processed"] == 1
    assert sweep.json()["per_source_results"][0]["created"] == 1

    tokens = await client.post("/api/cron/mailbox-tokens/sweep", headers={"Authorization": "Bearer cron-secret"})
    assert tokens.json() == {"processed": 1, "refreshed": 0, "deactivated": 0, "failed": 0}

    stats = (await client.get("/api/admin/email-processing/stats", headers=ADMIN)).json()
    assert stats["by_outcome"] == {"created": 1}
    ledger = (await client.get("/api/admin/email-processing/ledger", headers=ADMIN)).json()
    assert [row["message_id"] for row in ledger] == ["m1"]


async def test_mailbox_connect_flow(client):
    agent_id = uuid.uuid4()
    auth = await client.get("/api/mailbox/auth-url", params={"agent_id": str(agent_id)}, headers=ADMIN)
    assert auth.status_code == 200
    state = auth.json()["state"]

    callback = await client.get("/api/mailbox/callback", params={"code": "abc", "state": state})
    assert callback.status_code == 200
    assert callback.json()["agent_id"] == str(agent_id)
    assert "access_token" not in callback.json()

    status = await client.get(f"/api/mailbox/status/{agent_id}", headers=ADMIN)
    assert status.json()["mailbox_email"] == "agent@example.com"

    disconnected = await client.post("/api/mailbox/disconnect", json={"agent_id": str(agent_id)}, headers=ADMIN)
    assert disconnected.json()["deactivated"] == 1
    assert (await client.get(f"/api/mailbox/status/{agent_id}", headers=ADMIN)).status_code == 404


async def test_mailbox_callback_rejects_bad_state_and_code(client):
    forged = await client.get("/api/mailbox/callback", params={"code": "abc", "state": "not-a-jwt"})
    assert forged.status_code == 401

    state = create_oauth_state(uuid.uuid4())
    refused = await client.get("/api/mailbox/callback", params={"code": "bad-code", "state": state})
    assert refused.status_code == 401
    assert refused.json()["error"]["code"] == "token_invalid"
