from __future__ import annotations

import json
from dataclasses import dataclass

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from starlette.concurrency import run_in_threadpool

from inkwell.api.schemas import (
    AchievementView,
    EventAck,
    StatsView,
    TransactionView,
    achievement_views,
)
from inkwell.logging_setup import get_logger

logger = get_logger(__name__)
TENANT_ID_HEADER = "X-Tenant-Id"
USER_ID_HEADER = "X-User-Id"


@dataclass(frozen=True)
class Identity:
    tenant_id: str
    user_id: str


def _require_api_key(request: Request) -> None:
    config = request.app.state.services["config"]
    valid_keys = [key for key in config.server.api_keys if key]
    if not valid_keys:
        return
    auth_header = request.headers.get("Authorization", "")
    token = auth_header.removeprefix("Bearer ").strip() if auth_header else ""
    if token not in valid_keys:
        logger.warning("Rejected request with invalid API key.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def _require_identity(request: Request) -> Identity:
    tenant_id = str(request.headers.get(TENANT_ID_HEADER, "") or "").strip()
    user_id = str(request.headers.get(USER_ID_HEADER, "") or "").strip()
    if not tenant_id or not user_id:
        logger.warning("Rejected request without tenant/user identity headers.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {TENANT_ID_HEADER} or {USER_ID_HEADER} header",
        )
    return Identity(tenant_id=tenant_id, user_id=user_id)


def _optional_identity(request: Request) -> Identity | None:
    """Caller identity for event ingress; internal publishers send neither header."""
    if not request.headers.get(TENANT_ID_HEADER) and not request.headers.get(USER_ID_HEADER):
        return None
    return _require_identity(request)


def create_gamification_router() -> APIRouter:
    router = APIRouter(
        prefix="/gamification",
        tags=["gamification"],
        dependencies=[Depends(_require_api_key)],
    )

    @router.get("/stats", response_model=StatsView)
    def get_stats(
        request: Request,
        identity: Identity = Depends(_require_identity),
    ) -> StatsView:
        pipeline = request.app.state.services["pipeline"]
        state = pipeline.current_state(
            tenant_id=identity.tenant_id, user_id=identity.user_id
        )
        logger.debug(
            "stats user=%s version=%d level=%d", identity.user_id, state.version, state.level
        )
        return StatsView.from_state(state)

    @router.get("/transactions", response_model=list[TransactionView])
    def list_transactions(
        request: Request,
        limit: int | None = Query(default=None, ge=1),
        identity: Identity = Depends(_require_identity),
    ) -> list[TransactionView]:
        pipeline = request.app.state.services["pipeline"]
        entries = pipeline.transactions(
            tenant_id=identity.tenant_id, user_id=identity.user_id, limit=limit
        )
        return [TransactionView.from_entry(entry) for entry in entries]

    @router.get("/achievements", response_model=list[AchievementView])
    def list_achievements(
        request: Request,
        identity: Identity = Depends(_require_identity),
    ) -> list[AchievementView]:
        pipeline = request.app.state.services["pipeline"]
        state = pipeline.current_state(
            tenant_id=identity.tenant_id, user_id=identity.user_id
        )
        return achievement_views(state)

    @router.post("/events", response_model=EventAck)
    async def ingest_event(
        request: Request,
        identity: Identity | None = Depends(_optional_identity),
    ) -> EventAck:
        pipeline = request.app.state.services["pipeline"]
        body = await request.body()
        try:
            payload = json.loads(body or b"null")
        except ValueError:
            logger.warning("Dropping event with a body that is not JSON.")
            return EventAck(status="parse_error")
        result = await run_in_threadpool(
            pipeline.handle_event,
            payload,
            tenant_id=identity.tenant_id if identity else None,
            user_id=identity.user_id if identity else None,
        )
        logger.info(
            "events.ingest status=%s type=%s points=%d",
            result.status,
            result.event_type,
            result.points_awarded,
        )
        return EventAck(**result.as_dict())

    return router
