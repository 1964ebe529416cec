from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Union

from inkwell.progression.catalog import AchievementDefinition, achievement_catalog

LedgerAction = Literal["entry_created", "ai_insight", "prompt_used"]


@dataclass(frozen=True)
class AchievementProgress:
    id: str
    unlocked: bool = False
    unlocked_at: datetime | None = None
    progress: int | None = None


@dataclass(frozen=True)
class ProgressState:
    tenant_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    points_balance: int = 0
    lifetime_points: int = 0
    level: int = 1
    level_title: str = "Beginner"
    current_streak: int = 0
    longest_streak: int = 0
    last_entry_date: date | None = None
    total_entries: int = 0
    total_words: int = 0
    insights_requested: int = 0
    prompts_used: int = 0
    achievements: tuple[AchievementProgress, ...] = ()
    version: int = 0


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    tenant_id: str
    user_id: str
    action: LedgerAction
    points: int
    description: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EntryCreated:
    tenant_id: str
    user_id: str
    entry_id: str
    word_count: int
    created_at: datetime


@dataclass(frozen=True)
class EntryUpdated:
    tenant_id: str
    user_id: str
    entry_id: str | None = None


@dataclass(frozen=True)
class EntryDeleted:
    tenant_id: str
    user_id: str
    entry_id: str | None = None


@dataclass(frozen=True)
class AIInsightRequested:
    tenant_id: str
    user_id: str


@dataclass(frozen=True)
class PromptUsed:
    tenant_id: str
    user_id: str


DomainEvent = Union[EntryCreated, EntryUpdated, EntryDeleted, AIInsightRequested, PromptUsed]


@dataclass(frozen=True)
class EventEnvelope:
    event_type: str
    event: DomainEvent
    event_id: str | None = None


@dataclass(frozen=True)
class ApplyResult:
    state: ProgressState
    ledger_entry: LedgerEntry | None = None
    points_awarded: int = 0
    unlocked: tuple[str, ...] = ()

    def changed(self) -> bool:
        return self.ledger_entry is not None


def seed_achievements(
    catalog: tuple[AchievementDefinition, ...] | None = None,
) -> tuple[AchievementProgress, ...]:
    definitions = catalog if catalog is not None else achievement_catalog()
    return tuple(AchievementProgress(id=item.id) for item in definitions)


def default_progress_state(*, tenant_id: str, user_id: str, now: datetime) -> ProgressState:
    return ProgressState(
        tenant_id=tenant_id,
        user_id=user_id,
        created_at=now,
        updated_at=now,
        achievements=seed_achievements(),
    )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def achievements_to_json(achievements: tuple[AchievementProgress, ...]) -> str:
    return json.dumps(
        [
            {
                "id": item.id,
                "unlocked": item.unlocked,
                "unlocked_at": _isoformat(item.unlocked_at),
                "progress": item.progress,
            }
            for item in achievements
        ]
    )


def achievements_from_json(raw: Any) -> tuple[AchievementProgress, ...]:
    """Decode stored achievement progress and reconcile it with the catalog.

    Catalog entries missing from the stored list are appended unlocked=false;
    stored ids the catalog no longer knows are dropped.
    """
    items = json.loads(raw) if isinstance(raw, (str, bytes)) else (raw or [])
    stored: dict[str, AchievementProgress] = {}
    for item in items:
        if not isinstance(item, dict) or "id" not in item:
            continue
        progress = item.get("progress")
        stored[str(item["id"])] = AchievementProgress(
            id=str(item["id"]),
            unlocked=bool(item.get("unlocked", False)),
            unlocked_at=_parse_datetime(item.get("unlocked_at")),
            progress=int(progress) if progress is not None else None,
        )
    return tuple(
        stored.get(seed.id, seed) for seed in seed_achievements()
    )


def state_to_record(state: ProgressState) -> dict[str, Any]:
    return {
        "tenant_id": state.tenant_id,
        "user_id": state.user_id,
        "points_balance": state.points_balance,
        "lifetime_points": state.lifetime_points,
        "level": state.level,
        "level_title": state.level_title,
        "current_streak": state.current_streak,
        "longest_streak": state.longest_streak,
        "last_entry_date": state.last_entry_date,
        "total_entries": state.total_entries,
        "total_words": state.total_words,
        "insights_requested": state.insights_requested,
        "prompts_used": state.prompts_used,
        "achievements": achievements_to_json(state.achievements),
        "created_at": state.created_at,
        "updated_at": state.updated_at,
        "version": state.version,
    }


def state_from_record(row: dict[str, Any]) -> ProgressState:
    return ProgressState(
        tenant_id=str(row["tenant_id"]),
        user_id=str(row["user_id"]),
        created_at=_parse_datetime(row["created_at"]),  # type: ignore[arg-type]
        updated_at=_parse_datetime(row["updated_at"]),  # type: ignore[arg-type]
        points_balance=int(row.get("points_balance") or 0),
        lifetime_points=int(row.get("lifetime_points") or 0),
        level=max(1, int(row.get("level") or 1)),
        level_title=str(row.get("level_title") or "Beginner"),
        current_streak=int(row.get("current_streak") or 0),
        longest_streak=int(row.get("longest_streak") or 0),
        last_entry_date=_parse_date(row.get("last_entry_date")),
        total_entries=int(row.get("total_entries") or 0),
        total_words=int(row.get("total_words") or 0),
        insights_requested=int(row.get("insights_requested") or 0),
        prompts_used=int(row.get("prompts_used") or 0),
        achievements=achievements_from_json(row.get("achievements")),
        version=int(row.get("version") or 0),
    )


def ledger_from_record(row: dict[str, Any]) -> LedgerEntry:
    metadata = row.get("metadata") or {}
    if isinstance(metadata, (str, bytes)):
        metadata = json.loads(metadata)
    return LedgerEntry(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        user_id=str(row["user_id"]),
        action=row["action"],
        points=int(row["points"]),
        description=str(row.get("description") or ""),
        created_at=_parse_datetime(row["created_at"]),  # type: ignore[arg-type]
        metadata=dict(metadata),
    )
