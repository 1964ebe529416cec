from __future__ import annotations

import argparse
import json
import os
import socket
from collections import Counter
from pathlib import Path

import uvicorn

from inkwell import __version__
from inkwell.config import AppConfig, DiagnosticEndpointsConfig, load_config
from inkwell.logging_setup import configure_logging
from inkwell.main import build_services
from inkwell.progression.errors import ProgressionError, StoreUnavailable
from inkwell.state.migrations import migration_versions
from inkwell.state.storage import build_store

DEFAULT_CONFIG_PATH = Path("config.yaml")
DEFAULT_ENV_PATH = Path(".env")


def _resolve_config_path(config_path: str | None) -> Path:
    if config_path:
        return Path(config_path)
    env_config = os.getenv("INKWELL_CONFIG", "").strip()
    if env_config:
        return Path(env_config)
    return DEFAULT_CONFIG_PATH


def _resolve_env_path(env_file: str | None) -> Path:
    if env_file:
        return Path(env_file)
    env_dotenv = os.getenv("INKWELL_DOTENV_PATH", "").strip()
    if env_dotenv:
        return Path(env_dotenv)
    return DEFAULT_ENV_PATH


def _try_load_config(path: Path) -> tuple[AppConfig | None, str | None]:
    try:
        return load_config(path), None
    except Exception as exc:
        return None, f"{exc.__class__.__name__}: {exc}"


def _path_state(path: Path) -> str:
    return "exists" if path.exists() else "missing"


def _detect_local_ip() -> str:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip = sock.getsockname()[0]
            if ip:
                return ip
    except OSError:
        pass
    return "127.0.0.1"


def _cmd_version() -> int:
    print(f"inkwell {__version__}")
    return 0


def _cmd_paths(args: argparse.Namespace) -> int:
    cfg_path = _resolve_config_path(getattr(args, "config_path", None))
    env_path = _resolve_env_path(getattr(args, "env_file", None))
    config, error = _try_load_config(cfg_path)
    if config is not None:
        log_dir = config.logging.directory
        log_file = config.logging.directory / config.logging.filename
    else:
        log_dir = Path("./data/logs")
        log_file = log_dir / "inkwell.log"

    print("")
    print("Inkwell Paths")
    print("=============")
    print(f"Config YAML:    {cfg_path} ({_path_state(cfg_path)})")
    print(f"Env file:       {env_path} ({_path_state(env_path)})")
    print(f"Logs directory: {log_dir} ({_path_state(log_dir)})")
    print(f"Log file:       {log_file} ({_path_state(log_file)})")
    if config is not None:
        print(f"Storage:        {config.storage.backend}")
    if error:
        print("")
        print(f"Config load note: {error}")
    print("")
    return 0


def _cmd_diagnostics(args: argparse.Namespace) -> int:
    cfg_path = _resolve_config_path(getattr(args, "config_path", None))
    config, error = _try_load_config(cfg_path)

    host = config.server.host if config is not None else "0.0.0.0"
    port = config.server.port if config is not None else 8080
    endpoints = (
        config.diagnostics.endpoints if config is not None else DiagnosticEndpointsConfig()
    )
    ip = _detect_local_ip()
    public_host = ip if host in {"0.0.0.0", "::", ""} else host

    local_base = f"http://127.0.0.1:{port}"
    public_base = f"http://{public_host}:{port}"

    print("")
    print("Inkwell Diagnostics")
    print("===================")
    print(f"Detected IP: {ip}")
    print(f"Configured bind host: {host}")
    print(f"Configured port: {port}")
    if error:
        print(f"Config load note: {error}")
    print("")
    print("Quick checks:")
    for path in (endpoints.health, endpoints.readiness, endpoints.diagnostics):
        print(f"  curl -sS --max-time 3 {local_base}{path}")
    print("")
    print("From another machine on your LAN:")
    for path in (endpoints.health, endpoints.readiness, endpoints.diagnostics):
        print(f"  curl -sS --max-time 5 {public_base}{path}")
    print("")
    return 0


def _cmd_db_migrate(args: argparse.Namespace) -> int:
    config = load_config(getattr(args, "config_path", None))
    configure_logging(config.logging)
    if config.storage.backend != "postgres":
        print("storage.backend is 'memory'; nothing to migrate.")
        return 0
    store = build_store(config.storage)
    if getattr(args, "dry_run", False):
        print("Known migrations: " + ", ".join(migration_versions()))
        return 0
    try:
        applied = store.migrate()
    except StoreUnavailable as exc:
        print(f"Migration failed: {exc}")
        return 1
    if applied:
        print("Applied migrations: " + ", ".join(applied))
    else:
        print("Schema is up to date.")
    return 0


def _cmd_ingest(args: argparse.Namespace) -> int:
    source = Path(args.file)
    if not source.exists():
        print(f"Event file not found: {source}")
        return 2
    config = load_config(getattr(args, "config_path", None))
    configure_logging(config.logging)
    if config.storage.backend == "memory" and not getattr(args, "allow_memory", False):
        print(
            "storage.backend is 'memory'; replayed progress would be discarded on exit. "
            "Pass --allow-memory for a dry run."
        )
        return 2
    pipeline = build_services(config)["pipeline"]

    statuses: Counter[str] = Counter()
    points = 0
    with source.open("r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                payload = json.loads(line)
            except ValueError:
                print(f"line {line_number}: not valid JSON, skipped")
                statuses["parse_error"] += 1
                continue
            try:
                result = pipeline.handle_event(payload)
            except ProgressionError as exc:
                print(f"line {line_number}: {exc.__class__.__name__}: {exc}")
                statuses["failed"] += 1
                if args.stop_on_error:
                    break
                continue
            statuses[result.status] += 1
            points += result.points_awarded

    summary = ", ".join(f"{status}={count}" for status, count in sorted(statuses.items()))
    print(f"Ingested {sum(statuses.values())} event(s): {summary or 'none'}")
    print(f"Points awarded: {points}")
    return 1 if statuses.get("failed") else 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inkwell")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run API server")
    serve_parser.add_argument("--config", dest="config_path", default=None)
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    subparsers.add_parser("version", help="Print Inkwell version")

    paths_parser = subparsers.add_parser("paths", help="Print runtime file paths")
    paths_parser.add_argument("--config", dest="config_path", default=None)
    paths_parser.add_argument("--env-file", dest="env_file", default=None)

    diagnostics_parser = subparsers.add_parser(
        "diagnostics", help="Print diagnostics curl commands and detected IP"
    )
    diagnostics_parser.add_argument("--config", dest="config_path", default=None)

    ingest_parser = subparsers.add_parser(
        "ingest", help="Replay a JSON-lines file of event envelopes"
    )
    ingest_parser.add_argument("file", help="Path to a .jsonl file, one envelope per line")
    ingest_parser.add_argument("--config", dest="config_path", default=None)
    ingest_parser.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Stop at the first event that fails with a store error",
    )
    ingest_parser.add_argument(
        "--allow-memory",
        action="store_true",
        help="Replay into the in-memory backend (nothing is kept after exit)",
    )

    db_parser = subparsers.add_parser("db", help="Database utilities")
    db_subparsers = db_parser.add_subparsers(dest="db_command")
    db_migrate_parser = db_subparsers.add_parser(
        "migrate", help="Apply pending schema migrations"
    )
    db_migrate_parser.add_argument("--config", dest="config_path", default=None)
    db_migrate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List known migrations without applying them",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    command = args.command or "serve"

    if command == "version":
        raise SystemExit(_cmd_version())
    if command == "paths":
        raise SystemExit(_cmd_paths(args))
    if command == "diagnostics":
        raise SystemExit(_cmd_diagnostics(args))
    if command == "ingest":
        raise SystemExit(_cmd_ingest(args))
    if command == "db":
        db_command = getattr(args, "db_command", None)
        if db_command == "migrate":
            raise SystemExit(_cmd_db_migrate(args))
        print("Usage: inkwell db migrate [options]")
        raise SystemExit(2)

    # Without a subcommand argparse leaves the serve-only fields unset.
    config_path = getattr(args, "config_path", None)
    config = load_config(config_path)
    if config_path:
        os.environ["INKWELL_CONFIG"] = str(config_path)
    host = getattr(args, "host", None) or config.server.host
    port = getattr(args, "port", None) or config.server.port
    uvicorn.run(
        "inkwell.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    main()
