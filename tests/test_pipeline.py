from __future__ import annotations

from datetime import datetime, timezone

import pytest

from inkwell.config import AppConfig
from inkwell.progression.errors import (
    ConcurrentUpdateConflict,
    DuplicateEvent,
    IdentityMismatch,
    LedgerWriteFailure,
)
from inkwell.progression.models import LedgerEntry, ProgressState, seed_achievements
from inkwell.state.pipeline import ProgressionPipeline
from inkwell.state.storage import MemoryStore

NOW = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


class _ConflictingOnceStore(MemoryStore):
    """Simulates a concurrent writer landing between our read and our write."""

    def __init__(self) -> None:
        super().__init__()
        self.put_calls = 0

    def put_progress(self, state, *, expected_version, event_id=None):
        self.put_calls += 1
        if self.put_calls == 1:
            competitor = super().get_progress(tenant_id=state.tenant_id, user_id=state.user_id)
            base = competitor if competitor is not None else state
            super().put_progress(
                ProgressState(
                    tenant_id=base.tenant_id,
                    user_id=base.user_id,
                    created_at=base.created_at,
                    updated_at=base.updated_at,
                    lifetime_points=5,
                    points_balance=5,
                    insights_requested=1,
                    achievements=seed_achievements(),
                ),
                expected_version=expected_version,
            )
        return super().put_progress(state, expected_version=expected_version, event_id=event_id)


class _AlwaysConflictingStore(MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.put_calls = 0

    def put_progress(self, state, *, expected_version, event_id=None):
        self.put_calls += 1
        raise ConcurrentUpdateConflict(state.tenant_id, state.user_id, expected_version)


class _RacingDuplicateStore(MemoryStore):
    def put_progress(self, state, *, expected_version, event_id=None):
        raise DuplicateEvent(event_id or "")


class _BrokenLedgerStore(MemoryStore):
    def append_ledger(self, entry: LedgerEntry) -> None:
        raise LedgerWriteFailure("ledger table unavailable")


def _config(**progression) -> AppConfig:
    return AppConfig.model_validate({"progression": progression})


def _pipeline(store=None, **progression) -> ProgressionPipeline:
    return ProgressionPipeline(
        config=_config(**progression),
        store=store if store is not None else MemoryStore(),
        clock=lambda: NOW,
    )


def _entry_envelope(event_id: str | None = "evt-1", word_count: int = 120) -> dict:
    envelope = {
        "type": "EntryCreated",
        "detail": {
            "entry_id": "entry-1",
            "user_id": "u1",
            "tenant_id": "t1",
            "word_count": word_count,
            "created_at": "2024-01-01T09:00:00Z",
        },
    }
    if event_id is not None:
        envelope["id"] = event_id
    return envelope


def test_entry_created_updates_state_and_ledger() -> None:
    pipeline = _pipeline()
    result = pipeline.handle_event(_entry_envelope())

    assert result.status == "success"
    assert result.points_awarded == 20
    assert result.achievements_unlocked == ("first_entry",)
    assert result.ledger_recorded is True
    state = pipeline.current_state(tenant_id="t1", user_id="u1")
    assert state.version == 1
    assert state.lifetime_points == 70
    ledger = pipeline.transactions(tenant_id="t1", user_id="u1")
    assert [entry.points for entry in ledger] == [20]
    assert ledger[0].metadata["event_id"] == "evt-1"


def test_redelivered_event_is_applied_once() -> None:
    pipeline = _pipeline()
    first = pipeline.handle_event(_entry_envelope())
    second = pipeline.handle_event(_entry_envelope())

    assert first.status == "success"
    assert second.status == "duplicate"
    state = pipeline.current_state(tenant_id="t1", user_id="u1")
    assert state.total_entries == 1
    assert state.lifetime_points == 70
    assert len(pipeline.transactions(tenant_id="t1", user_id="u1")) == 1


def test_events_without_id_are_not_deduplicated() -> None:
    pipeline = _pipeline()
    pipeline.handle_event(_entry_envelope(event_id=None))
    pipeline.handle_event(_entry_envelope(event_id=None))
    assert pipeline.current_state(tenant_id="t1", user_id="u1").total_entries == 2


def test_deduplication_can_be_disabled() -> None:
    pipeline = _pipeline(deduplicate_events=False)
    pipeline.handle_event(_entry_envelope())
    second = pipeline.handle_event(_entry_envelope())
    assert second.status == "success"
    assert pipeline.current_state(tenant_id="t1", user_id="u1").total_entries == 2


def test_duplicate_detected_at_write_time_is_acknowledged() -> None:
    result = _pipeline(store=_RacingDuplicateStore()).handle_event(_entry_envelope())
    assert result.status == "duplicate"
    assert result.points_awarded == 0


def test_conflict_is_retried_against_fresh_state() -> None:
    store = _ConflictingOnceStore()
    pipeline = _pipeline(store=store)
    result = pipeline.handle_event(_entry_envelope())

    assert result.status == "success"
    assert result.attempts == 2
    state = pipeline.current_state(tenant_id="t1", user_id="u1")
    assert state.version == 2
    # The competitor's write survives alongside ours.
    assert state.insights_requested == 1
    assert state.total_entries == 1
    assert state.lifetime_points == 5 + 70


def test_conflict_surfaces_after_retries_are_exhausted() -> None:
    store = _AlwaysConflictingStore()
    pipeline = _pipeline(store=store, max_conflict_retries=2)

    with pytest.raises(ConcurrentUpdateConflict):
        pipeline.handle_event(_entry_envelope())
    assert store.put_calls == 3


def test_ledger_failure_keeps_committed_state(caplog) -> None:
    pipeline = _pipeline(store=_BrokenLedgerStore())
    with caplog.at_level("WARNING"):
        result = pipeline.handle_event(_entry_envelope())

    assert result.status == "success"
    assert result.ledger_recorded is False
    assert pipeline.current_state(tenant_id="t1", user_id="u1").lifetime_points == 70
    assert "Ledger append failed" in caplog.text


def test_event_for_other_identity_is_rejected_before_writing() -> None:
    pipeline = _pipeline()
    with pytest.raises(IdentityMismatch):
        pipeline.handle_event(_entry_envelope(), tenant_id="t1", user_id="intruder")
    with pytest.raises(IdentityMismatch):
        pipeline.handle_event(_entry_envelope(), tenant_id="t2", user_id="u1")

    assert pipeline.store.get_progress(tenant_id="t1", user_id="u1") is None
    assert pipeline.store.is_event_processed(tenant_id="t1", user_id="u1", event_id="evt-1") is False


def test_event_matching_identity_is_applied() -> None:
    pipeline = _pipeline()
    result = pipeline.handle_event(_entry_envelope(), tenant_id="t1", user_id="u1")
    assert result.status == "success"
    assert pipeline.current_state(tenant_id="t1", user_id="u1").total_entries == 1


def test_malformed_event_is_acknowledged_as_parse_error() -> None:
    pipeline = _pipeline()
    result = pipeline.handle_event({"type": "EntryCreated", "detail": {"user_id": "u1"}})
    assert result.status == "parse_error"
    assert pipeline.store.get_progress(tenant_id="t1", user_id="u1") is None


def test_unknown_event_type_is_ignored() -> None:
    result = _pipeline().handle_event({"type": "MoodLogged", "detail": {}})
    assert result.status == "ignored"
    assert result.event_type == "MoodLogged"


def test_entry_edits_are_acknowledged_without_writes() -> None:
    pipeline = _pipeline()
    result = pipeline.handle_event(
        {"id": "evt-9", "type": "EntryDeleted", "detail": {"user_id": "u1", "tenant_id": "t1"}}
    )
    assert result.status == "acknowledged"
    assert pipeline.store.get_progress(tenant_id="t1", user_id="u1") is None


def test_current_state_for_new_user_is_default_and_not_persisted() -> None:
    pipeline = _pipeline()
    state = pipeline.current_state(tenant_id="t1", user_id="new")
    assert state.version == 0
    assert state.level == 1
    assert len(state.achievements) == 15
    assert pipeline.store.get_progress(tenant_id="t1", user_id="new") is None


def test_transactions_limit_is_clamped() -> None:
    store = MemoryStore()
    pipeline = _pipeline(store=store, transactions_default_limit=2, transactions_max_limit=3)
    for _ in range(5):
        pipeline.handle_event(
            {"type": "PromptUsed", "detail": {"user_id": "u1", "tenant_id": "t1"}}
        )

    assert len(pipeline.transactions(tenant_id="t1", user_id="u1")) == 2
    assert len(pipeline.transactions(tenant_id="t1", user_id="u1", limit=50)) == 3
    assert len(pipeline.transactions(tenant_id="t1", user_id="u1", limit=0)) == 1
