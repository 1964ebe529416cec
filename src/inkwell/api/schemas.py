from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from inkwell.progression.catalog import find_definition
from inkwell.progression.models import AchievementProgress, LedgerEntry, ProgressState
from inkwell.progression.rules import next_level_threshold


class AchievementView(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    points: int
    category: str
    requirement: int
    unlocked: bool = False
    unlocked_at: datetime | None = None
    progress: int | None = None

    @classmethod
    def from_progress(cls, item: AchievementProgress) -> "AchievementView | None":
        definition = find_definition(item.id)
        if definition is None:
            return None
        return cls(
            id=item.id,
            name=definition.name,
            description=definition.description,
            icon=definition.icon,
            points=definition.points,
            category=definition.category,
            requirement=definition.requirement,
            unlocked=item.unlocked,
            unlocked_at=item.unlocked_at,
            progress=item.progress,
        )


def achievement_views(state: ProgressState) -> list[AchievementView]:
    views = (AchievementView.from_progress(item) for item in state.achievements)
    return [view for view in views if view is not None]


class StatsView(BaseModel):
    tenant_id: str
    user_id: str
    points_balance: int
    lifetime_points: int
    level: int
    level_title: str
    next_level_points: int | None = None
    points_to_next_level: int = 0
    current_streak: int
    longest_streak: int
    last_entry_date: date | None = None
    total_entries: int
    total_words: int
    insights_requested: int
    prompts_used: int
    achievements: list[AchievementView] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_state(cls, state: ProgressState) -> "StatsView":
        threshold = next_level_threshold(state.lifetime_points)
        remaining = max(0, threshold - state.lifetime_points) if threshold is not None else 0
        return cls(
            tenant_id=state.tenant_id,
            user_id=state.user_id,
            points_balance=state.points_balance,
            lifetime_points=state.lifetime_points,
            level=state.level,
            level_title=state.level_title,
            next_level_points=threshold,
            points_to_next_level=remaining,
            current_streak=state.current_streak,
            longest_streak=state.longest_streak,
            last_entry_date=state.last_entry_date,
            total_entries=state.total_entries,
            total_words=state.total_words,
            insights_requested=state.insights_requested,
            prompts_used=state.prompts_used,
            achievements=achievement_views(state),
            created_at=state.created_at,
            updated_at=state.updated_at,
        )


class TransactionView(BaseModel):
    id: str
    user_id: str
    action: str
    points: int
    description: str
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "TransactionView":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            action=entry.action,
            points=entry.points,
            description=entry.description,
            created_at=entry.created_at,
            metadata=dict(entry.metadata),
        )


class EventAck(BaseModel):
    status: Literal["success", "acknowledged", "ignored", "parse_error", "duplicate"]
    event_type: str | None = None
    points_awarded: int = 0
    achievements_unlocked: list[str] = Field(default_factory=list)
    ledger_recorded: bool = False
