from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from inkwell import __version__
from inkwell.config import AppConfig
from inkwell.main import create_app
from inkwell.progression.errors import ConcurrentUpdateConflict, StoreUnavailable
from inkwell.state.storage import MemoryStore

IDENTITY = {"X-Tenant-Id": "t1", "X-User-Id": "u1"}


def _config(**overrides: Any) -> AppConfig:
    payload: dict[str, Any] = {"storage": {"backend": "memory"}}
    payload.update(overrides)
    return AppConfig.model_validate(payload)


def _client(**overrides: Any) -> TestClient:
    return TestClient(create_app(config=_config(**overrides)))


def _entry_event(event_id: str = "evt-1", word_count: int = 120) -> dict[str, Any]:
    return {
        "id": event_id,
        "detail-type": "EntryCreated",
        "detail": {
            "entryId": "entry-1",
            "userId": "u1",
            "tenantId": "t1",
            "wordCount": word_count,
            "createdAt": "2024-01-01T09:00:00Z",
        },
    }


class _UnavailableStore(MemoryStore):
    def get_progress(self, *, tenant_id: str, user_id: str):
        raise StoreUnavailable("Progress store is unreachable.")

    def ping(self) -> bool:
        raise StoreUnavailable("Progress store is unreachable.")


class _ConflictingStore(MemoryStore):
    def put_progress(self, state, *, expected_version, event_id=None):
        raise ConcurrentUpdateConflict(state.tenant_id, state.user_id, expected_version)


def test_stats_for_new_user_returns_defaults() -> None:
    client = _client()
    response = client.get("/gamification/stats", headers=IDENTITY)

    assert response.status_code == 200
    payload = response.json()
    assert payload["tenant_id"] == "t1"
    assert payload["user_id"] == "u1"
    assert payload["points_balance"] == 0
    assert payload["lifetime_points"] == 0
    assert payload["level"] == 1
    assert payload["level_title"] == "Beginner"
    assert payload["next_level_points"] == 100
    assert payload["points_to_next_level"] == 100
    assert payload["current_streak"] == 0
    assert payload["last_entry_date"] is None
    assert len(payload["achievements"]) == 15
    assert all(item["unlocked"] is False for item in payload["achievements"])


def test_identity_headers_are_required() -> None:
    client = _client()
    assert client.get("/gamification/stats").status_code == 401
    assert client.get("/gamification/achievements", headers={"X-User-Id": "u1"}).status_code == 401


def test_api_key_is_enforced_when_configured() -> None:
    client = _client(server={"api_keys": ["secret-key"]})
    assert client.get("/gamification/stats", headers=IDENTITY).status_code == 401
    authorized = client.get(
        "/gamification/stats",
        headers={**IDENTITY, "Authorization": "Bearer secret-key"},
    )
    assert authorized.status_code == 200


def test_posted_event_is_reflected_in_reads() -> None:
    client = _client()
    ack = client.post("/gamification/events", json=_entry_event())

    assert ack.status_code == 200
    assert ack.json() == {
        "status": "success",
        "event_type": "EntryCreated",
        "points_awarded": 20,
        "achievements_unlocked": ["first_entry"],
        "ledger_recorded": True,
    }

    stats = client.get("/gamification/stats", headers=IDENTITY).json()
    assert stats["lifetime_points"] == 70
    assert stats["points_to_next_level"] == 30
    assert stats["current_streak"] == 1
    assert stats["last_entry_date"] == "2024-01-01"

    transactions = client.get("/gamification/transactions", headers=IDENTITY).json()
    assert isinstance(transactions, list)
    assert [item["points"] for item in transactions] == [20]
    assert transactions[0]["action"] == "entry_created"
    assert transactions[0]["description"] == "Created entry with 120 words"

    achievements = client.get("/gamification/achievements", headers=IDENTITY).json()
    assert isinstance(achievements, list)
    assert len(achievements) == 15
    first = next(item for item in achievements if item["id"] == "first_entry")
    assert first["unlocked"] is True
    assert first["name"] == "First Steps"
    assert first["points"] == 50
    assert first["unlocked_at"] is not None


def test_redelivered_event_is_acknowledged_as_duplicate() -> None:
    client = _client()
    client.post("/gamification/events", json=_entry_event())
    again = client.post("/gamification/events", json=_entry_event())

    assert again.json()["status"] == "duplicate"
    stats = client.get("/gamification/stats", headers=IDENTITY).json()
    assert stats["total_entries"] == 1


def test_bad_events_are_acknowledged_not_rejected() -> None:
    client = _client()
    not_json = client.post(
        "/gamification/events",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    malformed = client.post("/gamification/events", json={"type": "EntryCreated", "detail": {}})
    unknown = client.post("/gamification/events", json={"type": "MoodLogged", "detail": {}})
    edit = client.post(
        "/gamification/events",
        json={"type": "EntryUpdated", "detail": {"user_id": "u1", "tenant_id": "t1"}},
    )

    assert not_json.status_code == 200
    assert not_json.json()["status"] == "parse_error"
    assert malformed.json()["status"] == "parse_error"
    assert unknown.json()["status"] == "ignored"
    assert edit.json()["status"] == "acknowledged"


def test_transactions_limit_defaults_and_is_clamped_to_max() -> None:
    client = _client(
        progression={"transactions_default_limit": 2, "transactions_max_limit": 3}
    )
    for index in range(5):
        client.post(
            "/gamification/events",
            json={"id": f"p{index}", "type": "PromptUsed", "detail": {"user_id": "u1", "tenant_id": "t1"}},
        )

    default = client.get("/gamification/transactions", headers=IDENTITY).json()
    clamped = client.get("/gamification/transactions?limit=500", headers=IDENTITY).json()
    limited = client.get("/gamification/transactions?limit=1", headers=IDENTITY).json()

    assert len(default) == 2
    assert len(clamped) == 3
    assert len(limited) == 1
    assert all(item["action"] == "prompt_used" for item in clamped)
    assert client.get("/gamification/transactions?limit=0", headers=IDENTITY).status_code == 422


def test_event_for_another_user_is_forbidden() -> None:
    client = _client()
    response = client.post(
        "/gamification/events",
        json=_entry_event(),
        headers={"X-Tenant-Id": "t1", "X-User-Id": "someone-else"},
    )

    assert response.status_code == 403
    stats = client.get("/gamification/stats", headers=IDENTITY).json()
    assert stats["total_entries"] == 0
    assert client.get("/gamification/transactions", headers=IDENTITY).json() == []


def test_event_matching_caller_identity_is_applied() -> None:
    client = _client()
    response = client.post("/gamification/events", json=_entry_event(), headers=IDENTITY)

    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert client.get("/gamification/stats", headers=IDENTITY).json()["total_entries"] == 1


def test_event_with_partial_identity_headers_is_rejected() -> None:
    client = _client()
    response = client.post(
        "/gamification/events", json=_entry_event(), headers={"X-User-Id": "u1"}
    )
    assert response.status_code == 401


def test_store_outage_maps_to_503() -> None:
    app = create_app(config=_config())
    app.state.services["pipeline"].store = _UnavailableStore()
    client = TestClient(app)

    response = client.get("/gamification/stats", headers=IDENTITY)
    assert response.status_code == 503


def test_exhausted_conflicts_map_to_409() -> None:
    app = create_app(config=_config(progression={"max_conflict_retries": 1}))
    app.state.services["pipeline"].store = _ConflictingStore()
    client = TestClient(app)

    response = client.post("/gamification/events", json=_entry_event())
    assert response.status_code == 409


def test_diagnostics_endpoints_are_available() -> None:
    client = _client()
    assert client.get("/healthz").json()["status"] == "ok"
    readiness = client.get("/readyz").json()
    assert readiness["status"] == "ready"
    assert readiness["storage"] == {"backend": "memory", "ready": True}

    payload = client.get("/diagnostics").json()
    assert payload["service"] == "inkwell"
    assert payload["version"] == __version__
    assert payload["achievements"] == 15
    assert payload["config"]["storage"]["backend"] == "memory"
    assert payload["config"]["progression"]["max_conflict_retries"] == 3
    assert payload["config"]["progression"]["deduplicate_events"] is True


def test_readiness_is_degraded_when_store_is_down() -> None:
    app = create_app(config=_config())
    app.state.services["store"] = _UnavailableStore()
    client = TestClient(app)

    readiness = client.get("/readyz").json()
    assert readiness["status"] == "degraded"
    assert readiness["storage"]["ready"] is False
