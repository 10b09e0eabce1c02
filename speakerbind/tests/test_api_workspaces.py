import pytest
from fastapi.testclient import TestClient

from speakerbind.api.main import app
from speakerbind.internal_core.clock import ManualClock
from speakerbind.internal_core.config import SessionConfig
from speakerbind.session_store import InMemorySessionStore


def _config() -> SessionConfig:
    return SessionConfig(
        SPEAKERBIND_SESSION_TIMEOUT_MINUTES=2.0,
        SPEAKERBIND_WARNING_THRESHOLD_MINUTES=0.5,
        SPEAKERBIND_WARNING_REARM_MINUTES=0.2,
        SPEAKERBIND_KEEP_WORKING_MINUTES=5.0,
        SPEAKERBIND_EXTEND_MINUTES=120.0,
        SPEAKERBIND_TICK_SECONDS=5.0,
        SPEAKERBIND_SPEAKER_PREFIX="Speaker ",
        SPEAKERBIND_STORE_IDLE_GRACE_MINUTES=30.0,
        SPEAKERBIND_CORS_ORIGINS=("*",),
        SPEAKERBIND_LOG_LEVEL="INFO",
    )


SEGMENTS = [
    {"start": 0.0, "end": 2.0, "text": "What brings you in?", "speaker": "Speaker 1", "confidence": 0.92},
    {"start": 2.0, "end": 5.0, "text": "Trouble sleeping.", "speaker": "Speaker 2", "confidence": 0.85},
    {"start": 5.0, "end": 6.0, "text": "I see.", "speaker": "Speaker 3"},
]


@pytest.fixture()
def clock() -> ManualClock:
    clock = ManualClock()
    app.state.session_store = InMemorySessionStore(_config(), clock=clock)
    try:
        yield clock
    finally:
        if hasattr(app.state, "session_store"):
            delattr(app.state, "session_store")


def _create(client: TestClient) -> str:
    response = client.post("/workspaces")
    assert response.status_code == 200
    workspace_id = response.json()["workspace_id"]
    init = client.post(f"/workspaces/{workspace_id}/speakers/initialize", json={"segments": SEGMENTS})
    assert init.status_code == 200
    return workspace_id


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_workspace_and_initialize_from_segments(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)

    response = client.get(f"/workspaces/{workspace_id}/speakers")

    assert response.status_code == 200
    payload = response.json()
    assert [entry["speaker_id"] for entry in payload["entries"]] == ["Speaker 1", "Speaker 2", "Speaker 3"]
    assert payload["detected_speakers"] == ["Speaker 1", "Speaker 2", "Speaker 3"]
    assert payload["mapped_label"] == "0/3"
    assert payload["has_pending_changes"] is False


def test_initialize_requires_speakers_or_segments(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = client.post("/workspaces").json()["workspace_id"]

    response = client.post(f"/workspaces/{workspace_id}/speakers/initialize", json={})

    assert response.status_code == 400
    assert "Provide one of" in response.json()["detail"]


def test_edit_save_and_resolve_flow(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)
    base = f"/workspaces/{workspace_id}"

    assert client.post(f"{base}/speakers/Speaker 1/edit").status_code == 200
    patch = client.patch(f"{base}/speakers/Speaker 1", json={"field": "name", "value": "Alice"})
    assert patch.json()["errors"] == []

    blocked = client.post(f"{base}/speakers/save").json()
    assert blocked["ok"] is False

    assert client.post(f"{base}/speakers/Speaker 1/edit/confirm").json()["ok"] is True
    saved = client.post(f"{base}/speakers/save").json()
    assert saved == {"ok": True, "message": "", "errors": {}}

    resolved = client.get(f"{base}/resolve/Speaker 1").json()
    assert resolved == {"speaker_id": "Speaker 1", "display_name": "Alice"}
    assert client.get(f"{base}/speakers").json()["mapped_label"] == "1/3"


def test_invalid_name_returns_errors_and_save_fails(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)
    base = f"/workspaces/{workspace_id}"

    patch = client.patch(f"{base}/speakers/Speaker 2", json={"field": "name", "value": "B"})
    assert patch.json()["errors"][0]["message"] == "Name must be at least 2 characters long"

    saved = client.post(f"{base}/speakers/save").json()
    assert saved["ok"] is False
    assert list(saved["errors"]) == ["Speaker 2"]

    discarded = client.post(f"{base}/speakers/discard").json()
    assert discarded["has_pending_changes"] is False


def test_remove_last_speaker_is_rejected(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = client.post("/workspaces").json()["workspace_id"]
    base = f"/workspaces/{workspace_id}"
    client.post(f"{base}/speakers/initialize", json={"detected_speakers": ["Speaker 1", "Speaker 2"]})

    assert client.post(f"{base}/speakers/Speaker 2/remove").json()["ok"] is True
    assert client.post(f"{base}/speakers/remove/confirm").json()["ok"] is True
    rejected = client.post(f"{base}/speakers/Speaker 1/remove").json()

    assert rejected["ok"] is False
    assert "At least one speaker is required" in rejected["message"]


def test_override_revert_and_transcript_taint(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)
    base = f"/workspaces/{workspace_id}"

    applied = client.post(f"{base}/overrides/Speaker 2", json={"new_name": "Bob"})
    assert applied.status_code == 200
    assert applied.json()["display_name"] == "Bob"
    assert applied.json()["action"]["action"] == "Override"

    transcript = client.post(f"{base}/transcript/resolve", json={"segments": SEGMENTS}).json()
    assert transcript["tainted"] is True
    assert [item["display_name"] for item in transcript["segments"]] == ["Unassigned", "Bob", "Unassigned"]
    assert all(item["confidence_invalidated"] for item in transcript["segments"])
    assert [item["text"] for item in transcript["segments"]] == [item["text"] for item in SEGMENTS]

    reverted = client.delete(f"{base}/overrides/Speaker 2").json()
    assert reverted["display_name"] == "Unassigned"
    assert reverted["action"]["action"] == "Revert"
    assert client.get(f"{base}/snapshot").json()["speakers"]["Speaker 2"] == "Unassigned"


def test_invalid_override_returns_400(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)

    response = client.post(f"/workspaces/{workspace_id}/overrides/Speaker 1", json={"new_name": "B0b"})

    assert response.status_code == 400
    assert response.json()["detail"][0]["message"] == "Name contains invalid characters"


def test_unknown_workspace_and_speaker_return_404(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)

    missing_workspace = client.get("/workspaces/nope/status")
    missing_speaker = client.patch(
        f"/workspaces/{workspace_id}/speakers/Speaker 99",
        json={"field": "name", "value": "Alice"},
    )

    assert missing_workspace.status_code == 404
    assert "Unknown workspace_id" in missing_workspace.json()["detail"]
    assert missing_speaker.status_code == 404
    assert "Speaker 99" in missing_speaker.json()["detail"]


def test_session_status_warning_extend_and_expiry(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)
    base = f"/workspaces/{workspace_id}"
    client.post(f"{base}/overrides/Speaker 1", json={"new_name": "Alice"})

    clock.advance_minutes(1.6)
    status = client.get(f"{base}/status").json()
    assert status["state"] == "Warning"
    assert status["warning_visible"] is True
    assert status["override_count"] == 1

    dismissed = client.post(f"{base}/warning/dismiss").json()
    assert dismissed["warning_visible"] is False

    extended = client.post(f"{base}/extend", json={"minutes": 1}).json()
    assert extended["state"] == "Active"
    assert extended["extension_minutes"] == 1.0

    clock.advance_minutes(3.5)
    expired = client.get(f"{base}/status").json()
    assert expired["state"] == "Expired"
    assert expired["remaining_minutes"] == 0.0
    assert expired["override_count"] == 0
    assert client.get(f"{base}/speakers").json()["entries"] == []


def test_extend_rejects_non_positive_minutes(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)

    response = client.post(f"/workspaces/{workspace_id}/extend", json={"minutes": 0})

    assert response.status_code == 422


def test_clear_and_delete_workspace(clock: ManualClock) -> None:
    client = TestClient(app)
    workspace_id = _create(client)
    base = f"/workspaces/{workspace_id}"
    old_session = client.get(f"{base}/status").json()["session_id"]

    cleared = client.post(f"{base}/clear").json()
    assert cleared["session_id"] != old_session
    assert client.get(f"{base}/speakers").json()["entries"] == []

    assert client.delete(base).status_code == 200
    assert client.delete(base).status_code == 404
    assert client.get(f"{base}/status").status_code == 404
