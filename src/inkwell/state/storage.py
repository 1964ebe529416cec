from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, Protocol

from inkwell.config import StorageConfig
from inkwell.logging_setup import get_logger
from inkwell.progression.errors import (
    ConcurrentUpdateConflict,
    DuplicateEvent,
    LedgerWriteFailure,
    StoreUnavailable,
)
from inkwell.progression.models import (
    LedgerEntry,
    ProgressState,
    ledger_from_record,
    state_from_record,
    state_to_record,
)
from inkwell.state.migrations import MIGRATIONS_TABLE_SQL, migration_sql, pending_versions


class ProgressStore(Protocol):
    backend: str

    def ping(self) -> bool: ...

    def migrate(self) -> list[str]: ...

    def get_progress(self, *, tenant_id: str, user_id: str) -> ProgressState | None: ...

    def put_progress(
        self,
        state: ProgressState,
        *,
        expected_version: int,
        event_id: str | None = None,
    ) -> ProgressState: ...

    def is_event_processed(self, *, tenant_id: str, user_id: str, event_id: str) -> bool: ...

    def append_ledger(self, entry: LedgerEntry) -> None: ...

    def list_ledger(
        self,
        *,
        tenant_id: str,
        user_id: str,
        limit: int,
        newest_first: bool = True,
    ) -> list[LedgerEntry]: ...


class MemoryStore:
    """Process-local store with the same conditional-write contract as Postgres."""

    backend = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[tuple[str, str], ProgressState] = {}
        self._ledger: dict[tuple[str, str], list[LedgerEntry]] = {}
        self._processed: set[tuple[str, str, str]] = set()

    def ping(self) -> bool:
        return True

    def migrate(self) -> list[str]:
        return []

    def get_progress(self, *, tenant_id: str, user_id: str) -> ProgressState | None:
        with self._lock:
            return self._states.get((tenant_id, user_id))

    def put_progress(
        self,
        state: ProgressState,
        *,
        expected_version: int,
        event_id: str | None = None,
    ) -> ProgressState:
        key = (state.tenant_id, state.user_id)
        with self._lock:
            current = self._states.get(key)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise ConcurrentUpdateConflict(
                    state.tenant_id, state.user_id, expected_version
                )
            if event_id is not None:
                marker = (state.tenant_id, state.user_id, event_id)
                if marker in self._processed:
                    raise DuplicateEvent(event_id)
                self._processed.add(marker)
            stored = replace(state, version=current_version + 1)
            self._states[key] = stored
            return stored

    def is_event_processed(self, *, tenant_id: str, user_id: str, event_id: str) -> bool:
        with self._lock:
            return (tenant_id, user_id, event_id) in self._processed

    def append_ledger(self, entry: LedgerEntry) -> None:
        with self._lock:
            self._ledger.setdefault((entry.tenant_id, entry.user_id), []).append(entry)

    def list_ledger(
        self,
        *,
        tenant_id: str,
        user_id: str,
        limit: int,
        newest_first: bool = True,
    ) -> list[LedgerEntry]:
        with self._lock:
            entries = list(enumerate(self._ledger.get((tenant_id, user_id), [])))
        # Insertion order breaks created_at ties, matching the seq column in Postgres.
        entries.sort(key=lambda item: (item[1].created_at, item[0]), reverse=newest_first)
        return [entry for _, entry in entries[: max(1, limit)]]


class PostgresStore:
    backend = "postgres"

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    @staticmethod
    def _import_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg  # type: ignore[import-not-found]
            from psycopg.rows import dict_row  # type: ignore[import-not-found]
        except Exception as exc:
            raise RuntimeError(
                "psycopg is required for storage.backend=postgres."
            ) from exc
        return psycopg, dict_row

    @contextmanager
    def _connect(self) -> Iterator[Any]:
        dsn = (self.config.database.dsn or "").strip()
        if not dsn:
            raise RuntimeError("storage.database.dsn is empty.")
        psycopg, dict_row = self._import_psycopg()
        try:
            conn = psycopg.connect(
                dsn,
                connect_timeout=self.config.database.connect_timeout_seconds,
                row_factory=dict_row,
            )
        except psycopg.OperationalError as exc:
            self.logger.warning("Progress store connection failed: %s", exc.__class__.__name__)
            raise StoreUnavailable("Progress store is unreachable.") from exc
        try:
            yield conn
        except psycopg.OperationalError as exc:
            self.logger.warning("Progress store operation failed: %s", exc.__class__.__name__)
            raise StoreUnavailable("Progress store operation failed.") from exc
        finally:
            conn.close()

    def ping(self) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1 AS ok")
                row = cursor.fetchone()
                conn.rollback()
                return bool(row and row["ok"] == 1)

    def migrate(self) -> list[str]:
        with self._connect() as conn:
            try:
                with conn.cursor() as cursor:
                    cursor.execute(MIGRATIONS_TABLE_SQL)
                    cursor.execute("SELECT version FROM schema_migrations")
                    applied = {str(row["version"]) for row in cursor.fetchall()}
                    pending = pending_versions(applied)
                    for version in pending:
                        self.logger.info("Applying schema migration %s", version)
                        cursor.execute(migration_sql(version))
                        cursor.execute(
                            "INSERT INTO schema_migrations(version) VALUES (%s)",
                            (version,),
                        )
                conn.commit()
                return pending
            except Exception:
                conn.rollback()
                raise

    def get_progress(self, *, tenant_id: str, user_id: str) -> ProgressState | None:
        with self._connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
SELECT tenant_id, user_id, version, points_balance, lifetime_points, level,
       level_title, current_streak, longest_streak, last_entry_date,
       total_entries, total_words, insights_requested, prompts_used,
       achievements, created_at, updated_at
FROM progress_states
WHERE tenant_id = %s AND user_id = %s
""",
                    (tenant_id, user_id),
                )
                row = cursor.fetchone()
                conn.rollback()
                if not row:
                    return None
                return state_from_record(dict(row))

    @staticmethod
    def _mark_event(cursor: Any, *, tenant_id: str, user_id: str, event_id: str) -> bool:
        cursor.execute(
            """
INSERT INTO processed_events(tenant_id, user_id, event_id)
VALUES (%s, %s, %s)
ON CONFLICT (tenant_id, user_id, event_id)
DO NOTHING
RETURNING event_id
""",
            (tenant_id, user_id, event_id),
        )
        return cursor.fetchone() is not None

    def put_progress(
        self,
        state: ProgressState,
        *,
        expected_version: int,
        event_id: str | None = None,
    ) -> ProgressState:
        record = state_to_record(state)
        values = (
            record["points_balance"],
            record["lifetime_points"],
            record["level"],
            record["level_title"],
            record["current_streak"],
            record["longest_streak"],
            record["last_entry_date"],
            record["total_entries"],
            record["total_words"],
            record["insights_requested"],
            record["prompts_used"],
            record["achievements"],
            record["updated_at"],
        )
        with self._connect() as conn:
            try:
                with conn.cursor() as cursor:
                    if event_id is not None and not self._mark_event(
                        cursor,
                        tenant_id=state.tenant_id,
                        user_id=state.user_id,
                        event_id=event_id,
                    ):
                        conn.rollback()
                        raise DuplicateEvent(event_id)

                    if expected_version == 0:
                        cursor.execute(
                            """
INSERT INTO progress_states(
    points_balance,
    lifetime_points,
    level,
    level_title,
    current_streak,
    longest_streak,
    last_entry_date,
    total_entries,
    total_words,
    insights_requested,
    prompts_used,
    achievements,
    updated_at,
    tenant_id,
    user_id,
    created_at,
    version
)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s, 1)
ON CONFLICT (tenant_id, user_id)
DO NOTHING
RETURNING version
""",
                            values + (state.tenant_id, state.user_id, record["created_at"]),
                        )
                    else:
                        cursor.execute(
                            """
UPDATE progress_states
SET points_balance = %s,
    lifetime_points = %s,
    level = %s,
    level_title = %s,
    current_streak = %s,
    longest_streak = %s,
    last_entry_date = %s,
    total_entries = %s,
    total_words = %s,
    insights_requested = %s,
    prompts_used = %s,
    achievements = %s::jsonb,
    updated_at = %s,
    version = version + 1
WHERE tenant_id = %s AND user_id = %s AND version = %s
RETURNING version
""",
                            values + (state.tenant_id, state.user_id, expected_version),
                        )
                    written = cursor.fetchone()
                    if not written:
                        conn.rollback()
                        raise ConcurrentUpdateConflict(
                            state.tenant_id, state.user_id, expected_version
                        )
                    conn.commit()
                    return replace(state, version=int(written["version"]))
            except (ConcurrentUpdateConflict, DuplicateEvent):
                raise
            except Exception as exc:
                conn.rollback()
                self.logger.warning("Failed to write progress: %s", exc.__class__.__name__)
                raise

    def is_event_processed(self, *, tenant_id: str, user_id: str, event_id: str) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
SELECT 1 AS hit
FROM processed_events
WHERE tenant_id = %s AND user_id = %s AND event_id = %s
""",
                    (tenant_id, user_id, event_id),
                )
                row = cursor.fetchone()
                conn.rollback()
                return row is not None

    def append_ledger(self, entry: LedgerEntry) -> None:
        try:
            with self._connect() as conn:
                try:
                    with conn.cursor() as cursor:
                        cursor.execute(
                            """
INSERT INTO point_transactions(
    id,
    tenant_id,
    user_id,
    action,
    points,
    description,
    metadata,
    created_at
)
VALUES (%s::uuid, %s, %s, %s, %s, %s, %s::jsonb, %s)
""",
                            (
                                entry.id,
                                entry.tenant_id,
                                entry.user_id,
                                entry.action,
                                entry.points,
                                entry.description,
                                json.dumps(entry.metadata, default=str),
                                entry.created_at,
                            ),
                        )
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except Exception as exc:
            raise LedgerWriteFailure(
                f"Failed to append ledger entry {entry.id}: {exc.__class__.__name__}"
            ) from exc

    def list_ledger(
        self,
        *,
        tenant_id: str,
        user_id: str,
        limit: int,
        newest_first: bool = True,
    ) -> list[LedgerEntry]:
        order = "DESC" if newest_first else "ASC"
        with self._connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"""
SELECT id, tenant_id, user_id, action, points, description, metadata, created_at
FROM point_transactions
WHERE tenant_id = %s AND user_id = %s
ORDER BY created_at {order}, seq {order}
LIMIT %s
""",
                    (tenant_id, user_id, max(1, limit)),
                )
                rows = cursor.fetchall()
                conn.rollback()
                return [ledger_from_record(dict(row)) for row in rows]


def build_store(config: StorageConfig) -> ProgressStore:
    if config.backend == "postgres":
        return PostgresStore(config)
    return MemoryStore()
