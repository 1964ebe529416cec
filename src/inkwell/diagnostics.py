from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from inkwell import __version__
from inkwell.config import AppConfig
from inkwell.logging_setup import get_logger
from inkwell.progression.catalog import achievement_catalog
from inkwell.progression.errors import StoreUnavailable
from inkwell.state.migrations import migration_versions
from inkwell.state.storage import ProgressStore

logger = get_logger(__name__)


def health_payload() -> dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _store_ready(store: ProgressStore | None) -> tuple[bool, str | None]:
    if store is None:
        return False, "store not initialized"
    try:
        return store.ping(), None
    except (StoreUnavailable, RuntimeError) as exc:
        logger.warning("Readiness probe failed: %s", exc)
        return False, str(exc)


def readiness_payload(config: AppConfig, store: ProgressStore | None = None) -> dict[str, Any]:
    ready, error = _store_ready(store)
    storage: dict[str, Any] = {"backend": config.storage.backend, "ready": ready}
    if error:
        storage["error"] = error
    return {
        "status": "ready" if ready else "degraded",
        "storage": storage,
    }


def diagnostics_payload(
    config: AppConfig, store: ProgressStore | None = None
) -> dict[str, Any]:
    ready, _ = _store_ready(store)
    return {
        "service": "inkwell",
        "version": __version__,
        "achievements": len(achievement_catalog()),
        "config": {
            "server": {
                "host": config.server.host,
                "port": config.server.port,
                "api_keys_configured": len([key for key in config.server.api_keys if key]),
            },
            "storage": {
                "backend": config.storage.backend,
                "ready": ready,
                "database": {
                    "dsn_configured": bool(config.storage.database.dsn),
                    "auto_migrate": config.storage.database.auto_migrate,
                    "connect_timeout_seconds": config.storage.database.connect_timeout_seconds,
                },
                "migrations": migration_versions(),
            },
            "progression": {
                "max_conflict_retries": config.progression.max_conflict_retries,
                "deduplicate_events": config.progression.deduplicate_events,
                "transactions_default_limit": config.progression.transactions_default_limit,
                "transactions_max_limit": config.progression.transactions_max_limit,
            },
            "logging": {
                "level": config.logging.level,
                "output": config.logging.output,
                "directory": str(config.logging.directory),
                "filename": config.logging.filename,
            },
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
