from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from inkwell.progression.errors import MalformedEvent, UnknownEventType
from inkwell.progression.models import (
    AIInsightRequested,
    DomainEvent,
    EntryCreated,
    EntryDeleted,
    EntryUpdated,
    EventEnvelope,
    PromptUsed,
)

EVENT_TYPE_KEYS = ("type", "detail-type", "detail_type", "detailType")
KNOWN_EVENT_TYPES = frozenset(
    {"EntryCreated", "EntryUpdated", "EntryDeleted", "AIInsightRequested", "PromptUsed"}
)


class _Detail(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tenant_id: str = Field(validation_alias=AliasChoices("tenant_id", "tenantId"))
    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))

    @field_validator("tenant_id", "user_id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("must not be empty")
        return trimmed


class _EntryCreatedDetail(_Detail):
    entry_id: str = Field(validation_alias=AliasChoices("entry_id", "entryId", "id"))
    word_count: int = Field(ge=0, validation_alias=AliasChoices("word_count", "wordCount"))
    created_at: datetime = Field(validation_alias=AliasChoices("created_at", "createdAt"))

    @field_validator("created_at", mode="before")
    @classmethod
    def _date_only_is_midnight(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value.strip()) == 10:
            day = date.fromisoformat(value.strip())
            return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        return value

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class _EntryChangedDetail(_Detail):
    entry_id: str | None = Field(
        default=None, validation_alias=AliasChoices("entry_id", "entryId", "id")
    )


def _event_type(payload: dict[str, Any]) -> str:
    for key in EVENT_TYPE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise MalformedEvent("Event envelope has no type.")


def _event_id(payload: dict[str, Any]) -> str | None:
    value = payload.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _build_event(event_type: str, detail: dict[str, Any]) -> DomainEvent:
    if event_type == "EntryCreated":
        parsed = _EntryCreatedDetail.model_validate(detail)
        return EntryCreated(
            tenant_id=parsed.tenant_id,
            user_id=parsed.user_id,
            entry_id=parsed.entry_id,
            word_count=parsed.word_count,
            created_at=parsed.created_at,
        )
    if event_type in {"EntryUpdated", "EntryDeleted"}:
        changed = _EntryChangedDetail.model_validate(detail)
        event_cls = EntryUpdated if event_type == "EntryUpdated" else EntryDeleted
        return event_cls(
            tenant_id=changed.tenant_id,
            user_id=changed.user_id,
            entry_id=changed.entry_id,
        )
    if event_type in {"AIInsightRequested", "PromptUsed"}:
        base = _Detail.model_validate(detail)
        event_cls = AIInsightRequested if event_type == "AIInsightRequested" else PromptUsed
        return event_cls(tenant_id=base.tenant_id, user_id=base.user_id)
    raise UnknownEventType(event_type)


def parse_envelope(payload: Any) -> EventEnvelope:
    """Turn a bus envelope into a typed event.

    Raises ``UnknownEventType`` for event types this service ignores and
    ``MalformedEvent`` for anything that cannot be parsed.
    """
    if not isinstance(payload, dict):
        raise MalformedEvent("Event envelope must be a JSON object.")
    event_type = _event_type(payload)
    detail = payload.get("detail")
    if not isinstance(detail, dict):
        if event_type in KNOWN_EVENT_TYPES:
            raise MalformedEvent(f"{event_type} envelope has no detail object.")
        raise UnknownEventType(event_type)
    try:
        event = _build_event(event_type, detail)
    except ValidationError as exc:
        raise MalformedEvent(
            f"Invalid {event_type} payload: {exc.error_count()} validation error(s)."
        ) from exc
    return EventEnvelope(event_type=event_type, event=event, event_id=_event_id(payload))
