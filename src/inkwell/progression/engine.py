from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping
from uuid import uuid4

from inkwell.logging_setup import get_logger
from inkwell.progression.catalog import AchievementDefinition, definitions_by_id
from inkwell.progression.models import (
    AIInsightRequested,
    ApplyResult,
    DomainEvent,
    EntryCreated,
    EntryDeleted,
    EntryUpdated,
    LedgerAction,
    LedgerEntry,
    ProgressState,
    PromptUsed,
)
from inkwell.progression.rules import (
    POINTS_AI_INSIGHT,
    POINTS_ENTRY_CREATED,
    POINTS_FIRST_ENTRY_OF_DAY,
    POINTS_PROMPT_USED,
    advance_streak,
    evaluate_achievements,
    with_level,
    word_bonus,
)


def _event_date(created_at: datetime) -> date:
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.astimezone(timezone.utc).date()


def _new_ledger_id() -> str:
    return str(uuid4())


class ProgressionEngine:
    """Pure decision logic: one domain event plus current state in, next state out.

    The engine never performs I/O and never mutates the state it is given.
    Every valid event yields a defined result; edits and deletions of entries
    are acknowledged without any change.
    """

    def __init__(
        self,
        *,
        definitions: Mapping[str, AchievementDefinition] | None = None,
        id_factory: Callable[[], str] = _new_ledger_id,
    ) -> None:
        self.definitions = definitions if definitions is not None else definitions_by_id()
        self.id_factory = id_factory
        self.logger = get_logger(__name__)

    def apply(
        self,
        event: DomainEvent,
        state: ProgressState,
        now: datetime,
        *,
        event_id: str | None = None,
    ) -> ApplyResult:
        if isinstance(event, EntryCreated):
            return self._entry_created(event, state, now, event_id)
        if isinstance(event, AIInsightRequested):
            return self._counter_event(
                state,
                now,
                event_id,
                action="ai_insight",
                points=POINTS_AI_INSIGHT,
                description="Requested AI insight",
                counter="insights_requested",
            )
        if isinstance(event, PromptUsed):
            return self._counter_event(
                state,
                now,
                event_id,
                action="prompt_used",
                points=POINTS_PROMPT_USED,
                description="Used writing prompt",
                counter="prompts_used",
            )
        if isinstance(event, (EntryUpdated, EntryDeleted)):
            return ApplyResult(state=state)
        raise TypeError(f"Unsupported domain event: {type(event).__name__}")

    def _entry_created(
        self,
        event: EntryCreated,
        state: ProgressState,
        now: datetime,
        event_id: str | None,
    ) -> ApplyResult:
        today = _event_date(event.created_at)
        transition = advance_streak(today, state.last_entry_date, state.current_streak)

        points = POINTS_ENTRY_CREATED + word_bonus(event.word_count)
        if transition.first_of_day:
            points += POINTS_FIRST_ENTRY_OF_DAY
        points += transition.bonus_points()

        last_entry_date = state.last_entry_date if transition.backdated else today
        updated = replace(
            state,
            points_balance=state.points_balance + points,
            lifetime_points=state.lifetime_points + points,
            total_entries=state.total_entries + 1,
            total_words=state.total_words + event.word_count,
            current_streak=transition.streak,
            longest_streak=max(state.longest_streak, transition.streak),
            last_entry_date=last_entry_date,
            updated_at=now,
        )
        if transition.milestones:
            self.logger.info(
                "Streak milestone user=%s streak=%d",
                event.user_id,
                transition.streak,
            )
        return self._finish(
            updated,
            now,
            action="entry_created",
            points=points,
            description=f"Created entry with {event.word_count} words",
            metadata={
                "event_id": event_id,
                "entry_id": event.entry_id,
                "word_count": event.word_count,
            },
        )

    def _counter_event(
        self,
        state: ProgressState,
        now: datetime,
        event_id: str | None,
        *,
        action: LedgerAction,
        points: int,
        description: str,
        counter: str,
    ) -> ApplyResult:
        updated = replace(
            state,
            points_balance=state.points_balance + points,
            lifetime_points=state.lifetime_points + points,
            updated_at=now,
            **{counter: getattr(state, counter) + 1},
        )
        return self._finish(
            updated,
            now,
            action=action,
            points=points,
            description=description,
            metadata={"event_id": event_id},
        )

    def _finish(
        self,
        state: ProgressState,
        now: datetime,
        *,
        action: LedgerAction,
        points: int,
        description: str,
        metadata: dict[str, Any],
    ) -> ApplyResult:
        leveled = with_level(state)
        evaluated, unlocked = evaluate_achievements(leveled, now, self.definitions)
        for achievement_id in unlocked:
            self.logger.info(
                "Achievement unlocked user=%s achievement=%s",
                state.user_id,
                achievement_id,
            )
        entry = LedgerEntry(
            id=self.id_factory(),
            tenant_id=state.tenant_id,
            user_id=state.user_id,
            action=action,
            points=points,
            description=description,
            created_at=now,
            metadata={
                **{k: v for k, v in metadata.items() if v is not None},
                "achievements_unlocked": list(unlocked),
            },
        )
        return ApplyResult(
            state=evaluated,
            ledger_entry=entry,
            points_awarded=points,
            unlocked=unlocked,
        )
