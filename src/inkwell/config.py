from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ENV_REF_PATTERN = re.compile(r"^\$\{ENV:([A-Z0-9_]+)\}$")


class StrictConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ServerConfig(StrictConfigModel):
    host: str = "0.0.0.0"
    port: int = 8080
    api_keys: list[str | None] = Field(default_factory=list)


class DatabaseConfig(StrictConfigModel):
    dsn: str | None = None
    connect_timeout_seconds: int = Field(default=5, ge=1)
    auto_migrate: bool = True


class StorageConfig(StrictConfigModel):
    backend: Literal["memory", "postgres"] = "memory"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @model_validator(mode="after")
    def _postgres_requires_dsn(self) -> "StorageConfig":
        if self.backend == "postgres" and not (self.database.dsn or "").strip():
            raise ValueError("storage.database.dsn is required when storage.backend=postgres.")
        return self


class ProgressionConfig(StrictConfigModel):
    max_conflict_retries: int = Field(default=3, ge=0)
    deduplicate_events: bool = True
    transactions_default_limit: int = Field(default=20, ge=1)
    transactions_max_limit: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _validate_limits(self) -> "ProgressionConfig":
        if self.transactions_max_limit < self.transactions_default_limit:
            raise ValueError(
                "progression.transactions_max_limit must be >= transactions_default_limit."
            )
        return self


class DiagnosticEndpointsConfig(StrictConfigModel):
    health: str = "/healthz"
    readiness: str = "/readyz"
    diagnostics: str = "/diagnostics"


class DiagnosticsConfig(StrictConfigModel):
    enabled: bool = True
    endpoints: DiagnosticEndpointsConfig = Field(
        default_factory=DiagnosticEndpointsConfig
    )


class LoggingConfig(StrictConfigModel):
    level: Literal["ERROR", "WARNING", "INFO", "DEBUG", "TRACE"] = "INFO"
    output: Literal["console", "file", "both"] = "console"
    directory: Path = Path("./data/logs")
    filename: str = "inkwell.log"
    daily_rotation: bool = True
    retention_days: int = Field(default=14, ge=1)
    utc: bool = True
    include_payloads: bool = False

    @field_validator("filename")
    @classmethod
    def _filename_non_empty(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("logging.filename must not be empty.")
        return trimmed


class AppConfig(StrictConfigModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    progression: ProgressionConfig = Field(default_factory=ProgressionConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _expand_env_refs(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _expand_env_refs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_refs(v) for v in value]
    if isinstance(value, str):
        match = ENV_REF_PATTERN.match(value.strip())
        if match:
            return os.getenv(match.group(1))
    return value


def _maybe_load_dotenv() -> None:
    disabled = os.getenv("INKWELL_DISABLE_DOTENV", "").strip().lower() in {
        "1",
        "true",
        "yes",
        "on",
    }
    if disabled:
        return
    dotenv_path = Path(os.getenv("INKWELL_DOTENV_PATH", ".env"))
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    _maybe_load_dotenv()
    path = (
        Path(config_path)
        if config_path
        else Path(os.getenv("INKWELL_CONFIG", "config.yaml"))
    )
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}. "
            "Provide INKWELL_CONFIG or create config.yaml."
        )
    with path.open("r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f)
    if loaded is None:
        raise ValueError(f"Config file is empty: {path}")
    if not isinstance(loaded, dict):
        raise TypeError(f"Config root must be a YAML mapping/object: {path}")

    raw: dict[str, Any] = loaded
    return AppConfig.model_validate(_expand_env_refs(raw))
