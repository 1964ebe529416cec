from __future__ import annotations

Migration = tuple[str, str]

MIGRATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS progress_states (
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    version BIGINT NOT NULL CHECK (version >= 1),
    points_balance BIGINT NOT NULL DEFAULT 0,
    lifetime_points BIGINT NOT NULL DEFAULT 0 CHECK (lifetime_points >= 0),
    level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
    level_title TEXT NOT NULL,
    current_streak INTEGER NOT NULL DEFAULT 0 CHECK (current_streak >= 0),
    longest_streak INTEGER NOT NULL DEFAULT 0,
    last_entry_date DATE NULL,
    total_entries INTEGER NOT NULL DEFAULT 0,
    total_words BIGINT NOT NULL DEFAULT 0,
    insights_requested INTEGER NOT NULL DEFAULT 0,
    prompts_used INTEGER NOT NULL DEFAULT 0,
    achievements JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (tenant_id, user_id),
    CHECK (current_streak <= longest_streak)
);

CREATE TABLE IF NOT EXISTS point_transactions (
    id UUID PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('entry_created', 'ai_insight', 'prompt_used')),
    points BIGINT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS processed_events (
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    event_id TEXT NOT NULL,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (tenant_id, user_id, event_id)
);

CREATE INDEX IF NOT EXISTS idx_point_transactions_user_created_desc
    ON point_transactions(tenant_id, user_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_processed_events_processed_at
    ON processed_events(processed_at);
"""

LEDGER_SEQUENCE_SQL = """
ALTER TABLE point_transactions ADD COLUMN IF NOT EXISTS seq BIGSERIAL;

DROP INDEX IF EXISTS idx_point_transactions_user_created_desc;
CREATE INDEX IF NOT EXISTS idx_point_transactions_user_created_seq_desc
    ON point_transactions(tenant_id, user_id, created_at DESC, seq DESC);
"""

MIGRATIONS: tuple[Migration, ...] = (
    (
        "0001",
        SCHEMA_SQL,
    ),
    (
        "0002",
        LEDGER_SEQUENCE_SQL,
    ),
)


def migration_versions() -> list[str]:
    return [version for version, _ in MIGRATIONS]


def migration_sql(version: str) -> str:
    for candidate, sql in MIGRATIONS:
        if candidate == version:
            return sql
    raise KeyError(f"Unknown migration version: {version}")


def pending_versions(applied: set[str]) -> list[str]:
    return [version for version in migration_versions() if version not in applied]
