import json

import pytest
from fastapi.testclient import TestClient

from conftest import Harness
from voice_orchestrator.api import create_app
from voice_orchestrator.services.transcript import SIGNATURE_HEADER


@pytest.fixture
def api():
    harness = Harness()
    app = create_app(orchestrator=harness.orchestrator, run_poller=False)
    with TestClient(app) as client:
        client.harness = harness
        yield client


def create_joined_session(api, channel="demo", uid=42) -> str:
    response = api.post("/api/v1/sessions", json={"channel": channel, "uid": uid})
    assert response.status_code == 201
    session_id = response.json()["session_id"]
    response = api.post(f"/api/v1/sessions/{session_id}/connection", json={"state": "connected"})
    assert response.json()["state"] == "joined"
    return session_id


def test_health(api):
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_issue_token(api):
    response = api.post(
        "/api/v1/tokens", json={"channel": "demo", "uid": 42, "ttl_seconds": 3600}
    )

    assert response.status_code == 201
    data = response.json()
    assert data["channel"] == "demo"
    assert data["uid"] == 42
    assert data["role"] == "publisher"
    assert data["token"].startswith("v1.")


@pytest.mark.parametrize(
    "payload",
    [
        {"channel": "", "uid": 42},
        {"channel": "demo", "uid": -1},
        {"channel": "demo", "uid": 42, "ttl_seconds": 5},
    ],
)
def test_invalid_token_requests_are_422(api, payload):
    response = api.post("/api/v1/tokens", json=payload)

    assert response.status_code == 422
    assert response.json()["error"]["kind"] == "validation"


def test_full_conversation_flow(api):
    api.harness.reasoning.reply = "Why don't skeletons fight? They don't have the guts."
    session_id = create_joined_session(api)

    response = api.post(
        f"/api/v1/sessions/{session_id}/agent", json={"system_prompt": "Be funny."}
    )
    assert response.status_code == 201
    assert response.json()["state"] == "agentActive"
    assert response.json()["agent_id"] == "agent-1"

    response = api.post(
        f"/api/v1/sessions/{session_id}/messages", json={"text": "Tell me a joke"}
    )
    assert response.status_code == 201
    data = response.json()
    assert data["user"]["speaker"] == "user"
    assert data["agent"]["speaker"] == "agent"
    assert data["agent"]["seq"] == data["user"]["seq"] + 1
    assert "guts" in data["agent"]["text"]

    response = api.get(f"/api/v1/sessions/{session_id}/transcript")
    transcript = response.json()
    assert [e["speaker"] for e in transcript["events"]] == ["user", "agent"]
    assert transcript["last_seq"] == data["agent"]["seq"]

    response = api.get(
        f"/api/v1/sessions/{session_id}/transcript", params={"since_seq": transcript["last_seq"]}
    )
    assert response.json()["events"] == []

    response = api.delete(f"/api/v1/sessions/{session_id}/agent")
    assert response.status_code == 200
    assert response.json()["state"] == "stopped"
    assert response.json()["agent_id"] is None

    # stopping again is a no-op
    response = api.delete(f"/api/v1/sessions/{session_id}/agent")
    assert response.status_code == 200
    assert api.harness.agent.left == ["agent-1"]


def test_second_agent_start_is_a_conflict(api):
    session_id = create_joined_session(api)
    api.post(f"/api/v1/sessions/{session_id}/agent")

    response = api.post(f"/api/v1/sessions/{session_id}/agent")

    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "invalid_state"


def test_message_before_agent_start_is_a_conflict(api):
    session_id = create_joined_session(api)

    response = api.post(f"/api/v1/sessions/{session_id}/messages", json={"text": "hello"})

    assert response.status_code == 409


def test_empty_message_is_422(api):
    session_id = create_joined_session(api)
    api.post(f"/api/v1/sessions/{session_id}/agent")

    response = api.post(f"/api/v1/sessions/{session_id}/messages", json={"text": "  "})

    assert response.status_code == 422
    assert response.json()["error"]["kind"] == "validation"


def test_unknown_session_is_404(api):
    response = api.get("/api/v1/sessions/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "not_found"


def test_unknown_connection_state_is_422(api):
    session_id = create_joined_session(api)

    response = api.post(f"/api/v1/sessions/{session_id}/connection", json={"state": "teleported"})

    assert response.status_code == 422


def test_renew_token(api):
    session_id = create_joined_session(api)
    api.harness.clock.advance(60)

    response = api.post(f"/api/v1/sessions/{session_id}/token")

    assert response.status_code == 200
    session = api.get(f"/api/v1/sessions/{session_id}").json()
    assert session["token"] == response.json()["token"]


def test_stop_session_keeps_it_readable(api):
    session_id = create_joined_session(api)

    response = api.delete(f"/api/v1/sessions/{session_id}")

    assert response.status_code == 200
    assert api.get(f"/api/v1/sessions/{session_id}").json()["state"] == "stopped"


def test_signed_webhook_is_stored_once(api):
    session_id = create_joined_session(api)
    api.post(f"/api/v1/sessions/{session_id}/agent")
    body = json.dumps(
        {"session_id": session_id, "speaker": "agent", "seq": 5, "text": "Hi!"}
    ).encode()
    headers = {SIGNATURE_HEADER: api.harness.verifier.sign(body)}

    first = api.post("/api/v1/webhooks/transcript", content=body, headers=headers)
    second = api.post("/api/v1/webhooks/transcript", content=body, headers=headers)

    assert first.json() == {"status": "ok", "stored": True}
    assert second.json() == {"status": "ok", "stored": False}
    events = api.get(f"/api/v1/sessions/{session_id}/transcript").json()["events"]
    assert [(e["seq"], e["origin_seq"], e["source"]) for e in events] == [(1, 5, "webhook")]


def test_unsigned_webhook_is_rejected(api):
    session_id = create_joined_session(api)
    body = json.dumps(
        {"session_id": session_id, "speaker": "agent", "seq": 1, "text": "Hi!"}
    ).encode()

    response = api.post("/api/v1/webhooks/transcript", content=body)

    assert response.status_code == 401
    assert response.json()["error"]["kind"] == "authentication"
    assert api.get(f"/api/v1/sessions/{session_id}").json()["transcript_size"] == 0
