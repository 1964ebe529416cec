from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from inkwell import __version__
from inkwell.api.gamification_api import create_gamification_router
from inkwell.config import AppConfig, load_config
from inkwell.diagnostics import diagnostics_payload, health_payload, readiness_payload
from inkwell.logging_setup import configure_logging, get_logger
from inkwell.progression.engine import ProgressionEngine
from inkwell.progression.errors import (
    ConcurrentUpdateConflict,
    IdentityMismatch,
    StoreUnavailable,
)
from inkwell.state.pipeline import ProgressionPipeline
from inkwell.state.storage import build_store


def _ensure_runtime_dirs(config: AppConfig) -> None:
    if config.logging.output in {"file", "both"}:
        config.logging.directory.mkdir(parents=True, exist_ok=True)


def build_services(config: AppConfig) -> dict[str, Any]:
    logger = get_logger(__name__)
    _ensure_runtime_dirs(config)
    store = build_store(config.storage)
    if config.storage.backend == "postgres" and config.storage.database.auto_migrate:
        try:
            applied = store.migrate()
        except StoreUnavailable as exc:
            logger.warning("Skipping auto-migration; store unreachable: %s", exc)
        else:
            logger.info("Schema migrations applied: %s", ", ".join(applied) or "none")
    engine = ProgressionEngine()
    pipeline = ProgressionPipeline(config=config, store=store, engine=engine)
    return {
        "config": config,
        "store": store,
        "engine": engine,
        "pipeline": pipeline,
    }


def create_app(
    config_path: str | Path | None = None, *, config: AppConfig | None = None
) -> FastAPI:
    config = config or load_config(config_path)
    configure_logging(config.logging)
    logger = get_logger(__name__)
    logger.info("Initializing Inkwell app...")

    services = build_services(config)
    logger.info(
        "Services initialized (storage_backend=%s, dedupe=%s, max_conflict_retries=%d)",
        config.storage.backend,
        config.progression.deduplicate_events,
        config.progression.max_conflict_retries,
    )

    app = FastAPI(title="Inkwell", version=__version__)
    app.state.services = services
    app.include_router(create_gamification_router())

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(_: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.warning("Request failed; progress store unavailable: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Progress store unavailable"},
        )

    @app.exception_handler(ConcurrentUpdateConflict)
    async def update_conflict(_: Request, exc: ConcurrentUpdateConflict) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc)},
        )

    @app.exception_handler(IdentityMismatch)
    async def identity_mismatch(_: Request, exc: IdentityMismatch) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": str(exc)},
        )

    if config.diagnostics.enabled:
        endpoints = config.diagnostics.endpoints

        @app.get(endpoints.health, tags=["diagnostics"])
        async def healthz() -> dict[str, Any]:
            return health_payload()

        @app.get(endpoints.readiness, tags=["diagnostics"])
        def readyz() -> dict[str, Any]:
            return readiness_payload(config, services["store"])

        @app.get(endpoints.diagnostics, tags=["diagnostics"])
        def diagnostics() -> dict[str, Any]:
            return diagnostics_payload(config, services["store"])

        logger.info(
            "Diagnostics routes active (%s, %s, %s)",
            endpoints.health,
            endpoints.readiness,
            endpoints.diagnostics,
        )

    return app
