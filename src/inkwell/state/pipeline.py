from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from inkwell.config import AppConfig
from inkwell.logging_setup import get_logger
from inkwell.progression.engine import ProgressionEngine
from inkwell.progression.errors import (
    ConcurrentUpdateConflict,
    DuplicateEvent,
    IdentityMismatch,
    LedgerWriteFailure,
    MalformedEvent,
    UnknownEventType,
)
from inkwell.progression.events import parse_envelope
from inkwell.progression.models import (
    EntryDeleted,
    EntryUpdated,
    EventEnvelope,
    LedgerEntry,
    ProgressState,
    default_progress_state,
)
from inkwell.state.storage import ProgressStore


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IngestResult:
    status: str
    event_type: str | None = None
    points_awarded: int = 0
    achievements_unlocked: tuple[str, ...] = ()
    ledger_recorded: bool = False
    attempts: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "event_type": self.event_type,
            "points_awarded": self.points_awarded,
            "achievements_unlocked": list(self.achievements_unlocked),
            "ledger_recorded": self.ledger_recorded,
        }


class ProgressionPipeline:
    """Event ingress and read access over one progress store.

    Writes follow a read-apply-conditional-put loop: a version conflict
    re-reads the record and re-runs the engine against it.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        store: ProgressStore,
        engine: ProgressionEngine | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.config = config
        self.store = store
        self.engine = engine or ProgressionEngine()
        self.clock = clock
        self.logger = get_logger(__name__)

    def handle_event(
        self,
        payload: Any,
        *,
        tenant_id: str | None = None,
        user_id: str | None = None,
    ) -> IngestResult:
        """Parse and apply one envelope.

        When the caller identity is given, the event must name the same tenant
        and user; otherwise `IdentityMismatch` is raised before any write.
        """
        if self.config.logging.include_payloads:
            self.logger.debug("Event payload: %s", payload)
        try:
            envelope = parse_envelope(payload)
        except UnknownEventType as exc:
            self.logger.warning("Ignoring unknown event type: %s", exc.event_type)
            return IngestResult(status="ignored", event_type=exc.event_type)
        except MalformedEvent as exc:
            self.logger.warning("Dropping malformed event: %s", exc)
            return IngestResult(status="parse_error")
        event = envelope.event
        if (tenant_id is not None and event.tenant_id != tenant_id) or (
            user_id is not None and event.user_id != user_id
        ):
            self.logger.warning(
                "Rejecting event type=%s for user=%s submitted by user=%s",
                envelope.event_type,
                event.user_id,
                user_id,
            )
            raise IdentityMismatch(event.tenant_id, event.user_id)
        return self.process(envelope)

    def process(self, envelope: EventEnvelope) -> IngestResult:
        event = envelope.event
        self.logger.info(
            "Event received type=%s id=%s user=%s",
            envelope.event_type,
            envelope.event_id,
            event.user_id,
        )
        if isinstance(event, (EntryUpdated, EntryDeleted)):
            return IngestResult(status="acknowledged", event_type=envelope.event_type)

        dedupe_id = envelope.event_id if self.config.progression.deduplicate_events else None
        if dedupe_id is not None and self.store.is_event_processed(
            tenant_id=event.tenant_id, user_id=event.user_id, event_id=dedupe_id
        ):
            self.logger.info("Skipping duplicate event id=%s", dedupe_id)
            return IngestResult(status="duplicate", event_type=envelope.event_type)

        max_attempts = self.config.progression.max_conflict_retries + 1
        for attempt in range(1, max_attempts + 1):
            now = self.clock()
            current = self.current_state(
                tenant_id=event.tenant_id, user_id=event.user_id, now=now
            )
            result = self.engine.apply(event, current, now, event_id=envelope.event_id)
            try:
                self.store.put_progress(
                    result.state,
                    expected_version=current.version,
                    event_id=dedupe_id,
                )
            except ConcurrentUpdateConflict:
                if attempt >= max_attempts:
                    self.logger.warning(
                        "Giving up after %d conflicting writes user=%s",
                        attempt,
                        event.user_id,
                    )
                    raise
                self.logger.debug(
                    "Version conflict user=%s attempt=%d; retrying", event.user_id, attempt
                )
                continue
            except DuplicateEvent:
                self.logger.info("Skipping duplicate event id=%s", dedupe_id)
                return IngestResult(
                    status="duplicate", event_type=envelope.event_type, attempts=attempt
                )

            ledger_recorded = self._append_ledger(result.ledger_entry)
            self.logger.info(
                "Awarded %d points to user=%s for %s",
                result.points_awarded,
                event.user_id,
                envelope.event_type,
            )
            return IngestResult(
                status="success",
                event_type=envelope.event_type,
                points_awarded=result.points_awarded,
                achievements_unlocked=result.unlocked,
                ledger_recorded=ledger_recorded,
                attempts=attempt,
            )
        raise RuntimeError("unreachable: conflict retry loop exhausted without result")

    def _append_ledger(self, entry: LedgerEntry | None) -> bool:
        if entry is None:
            return False
        try:
            self.store.append_ledger(entry)
        except LedgerWriteFailure as exc:
            self.logger.warning("Ledger append failed; progress kept: %s", exc)
            return False
        return True

    def current_state(
        self, *, tenant_id: str, user_id: str, now: datetime | None = None
    ) -> ProgressState:
        stored = self.store.get_progress(tenant_id=tenant_id, user_id=user_id)
        if stored is not None:
            return stored
        return default_progress_state(
            tenant_id=tenant_id, user_id=user_id, now=now or self.clock()
        )

    def transactions(
        self, *, tenant_id: str, user_id: str, limit: int | None = None
    ) -> list[LedgerEntry]:
        progression = self.config.progression
        requested = limit if limit is not None else progression.transactions_default_limit
        bounded = min(max(1, requested), progression.transactions_max_limit)
        return self.store.list_ledger(
            tenant_id=tenant_id, user_id=user_id, limit=bounded, newest_first=True
        )
