"""PostgreSQL tuning, init SQL rendering, and backups for the n8n stack.

The tuning set is applied with ``ALTER SYSTEM`` by the init script the
postgres container runs on first start. The same table drives
:func:`settings_drift`, which compares it against a running server.

Backups use ``pg_dump`` inside the postgres container and land in
``backups/backup_YYYYMMDD_HHMMSS.sql``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Union

from swarm.docker import DockerClient
from utils.common import timestamp_slug
from utils.config import EnvConfig, StackSettings
from utils.patterns import BACKUP_FILENAME, PG_DURATION, PG_MEMORY, VOLUME_ARCHIVE

logger = logging.getLogger(__name__)

SettingValue = Union[int, float, str]

DEFAULT_APP_USER = "n8n_user"
DEFAULT_DATABASE = "n8n_production"

# (section heading, [(parameter, value, trailing comment)])
TUNING_SECTIONS: list[tuple[str, list[tuple[str, SettingValue, str]]]] = [
    ("Connection pooling", [
        ("max_connections", 200, ""),
        ("superuser_reserved_connections", 3, ""),
    ]),
    ("Shared memory", [
        ("shared_buffers", "256MB", ""),
        ("effective_cache_size", "1GB", ""),
    ]),
    ("Work memory (per operation)", [
        ("work_mem", "10MB", ""),
    ]),
    ("Maintenance memory", [
        ("maintenance_work_mem", "128MB", ""),
    ]),
    ("Query planning", [
        ("random_page_cost", 1.1, ""),
        ("cpu_tuple_cost", 0.01, ""),
        ("cpu_index_tuple_cost", 0.005, ""),
    ]),
    ("Write-ahead log", [
        ("wal_level", "replica", ""),
        ("max_wal_senders", 10, ""),
        ("wal_keep_size", "1GB", ""),
        ("checkpoint_timeout", "15min", ""),
        ("checkpoint_completion_target", 0.9, ""),
    ]),
    ("Autovacuum for high-throughput workflows", [
        ("autovacuum", "on", ""),
        ("autovacuum_naptime", "10s", ""),
        ("autovacuum_vacuum_threshold", 50, ""),
        ("autovacuum_analyze_threshold", 50, ""),
        ("autovacuum_vacuum_scale_factor", 0.01, ""),
        ("autovacuum_analyze_scale_factor", 0.005, ""),
    ]),
    ("Logging", [
        ("log_min_duration_statement", 5000, "queries slower than 5 seconds"),
        ("log_connections", "on", ""),
        ("log_disconnections", "on", ""),
        ("log_statement", "mod", "DDL + DML + CALL"),
        ("log_duration", "off", ""),
    ]),
    ("Extensions (takes effect after restart)", [
        ("shared_preload_libraries", "pg_stat_statements", ""),
    ]),
]

TUNING_PARAMETERS: dict[str, SettingValue] = {
    name: value for _, params in TUNING_SECTIONS for name, value, _ in params
}

# Settings echoed back at the end of the init script
REPORTED_SETTINGS = (
    "max_connections",
    "shared_buffers",
    "effective_cache_size",
    "work_mem",
    "maintenance_work_mem",
    "wal_level",
    "autovacuum",
    "shared_preload_libraries",
)

_BARE_WORDS = {"on", "off", "replica"}

_MEMORY_KB = {"b": 1 / 1024, "kb": 1, "8kb": 8, "mb": 1024, "gb": 1024 ** 2, "tb": 1024 ** 3}
_DURATION_MS = {"us": 0.001, "ms": 1, "s": 1000, "min": 60_000, "h": 3_600_000, "d": 86_400_000}


class BackupError(RuntimeError):
    """pg_dump could not produce a backup."""


# ── init SQL ──────────────────────────────────────────────────────────────────


def sql_literal(value: SettingValue) -> str:
    """Render a setting the way ``ALTER SYSTEM SET`` expects it."""
    if isinstance(value, bool):
        return "on" if value else "off"
    if isinstance(value, (int, float)):
        return repr(value)
    if value in _BARE_WORDS:
        return value
    return "'" + str(value).replace("'", "''") + "'"


def _heading(title: str) -> list[str]:
    rule = "-- " + "=" * 76
    return [rule, f"-- {title.upper()}", rule, ""]


def render_init_sql(sections=TUNING_SECTIONS, app_user: str = DEFAULT_APP_USER,
                    database: str = DEFAULT_DATABASE) -> str:
    """Build the first-start init script for the postgres container.

    The application password stays a ``${POSTGRES_PASSWORD}`` placeholder;
    it is never written into the file.
    """
    lines = [
        "-- PostgreSQL initialization script for n8n",
        "-- Runs once, when the postgres container starts with an empty data volume",
        "",
    ]
    lines += _heading("Performance tuning parameters")
    for title, params in sections:
        lines.append(f"-- {title}")
        for name, value, comment in params:
            stmt = f"ALTER SYSTEM SET {name} = {sql_literal(value)};"
            lines.append(f"{stmt} -- {comment}" if comment else stmt)
        lines.append("")

    lines += _heading("User and database setup")
    lines += [
        "DO $$",
        "BEGIN",
        f"  IF NOT EXISTS (SELECT FROM pg_user WHERE usename = '{app_user}') THEN",
        f"    CREATE USER {app_user} WITH PASSWORD '${{POSTGRES_PASSWORD}}';",
        "  END IF;",
        "END",
        "$$;",
        "",
        f"ALTER USER {app_user} WITH NOCREATEDB NOCREATEROLE;",
        "",
        f"CREATE DATABASE {database} OWNER {app_user};",
        f"ALTER DATABASE {database} OWNER TO {app_user};",
        "",
        f"\\c {database}",
        "",
        f"GRANT ALL PRIVILEGES ON SCHEMA public TO {app_user};",
        f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TABLES TO {app_user};",
        f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON SEQUENCES TO {app_user};",
        f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT EXECUTE ON FUNCTIONS TO {app_user};",
        "",
    ]

    lines += _heading("Extensions")
    lines += ["CREATE EXTENSION IF NOT EXISTS pg_stat_statements;", ""]

    lines += _heading("Monitoring schema")
    lines += [
        f"CREATE SCHEMA IF NOT EXISTS monitoring AUTHORIZATION {app_user};",
        "",
        "CREATE TABLE IF NOT EXISTS monitoring.execution_stats (",
        "  id SERIAL PRIMARY KEY,",
        "  date DATE NOT NULL DEFAULT CURRENT_DATE,",
        "  workflow_id UUID,",
        "  total_executions BIGINT DEFAULT 0,",
        "  successful_executions BIGINT DEFAULT 0,",
        "  failed_executions BIGINT DEFAULT 0,",
        "  average_duration INTERVAL,",
        "  created_at TIMESTAMP NOT NULL DEFAULT NOW()",
        ");",
        "",
        "CREATE TABLE IF NOT EXISTS monitoring.events (",
        "  id SERIAL PRIMARY KEY,",
        "  event_type VARCHAR(100) NOT NULL,",
        "  event_data JSONB,",
        "  created_at TIMESTAMP NOT NULL DEFAULT NOW()",
        ");",
        "",
        f"GRANT ALL PRIVILEGES ON SCHEMA monitoring TO {app_user};",
        f"GRANT ALL PRIVILEGES ON monitoring.execution_stats TO {app_user};",
        f"GRANT ALL PRIVILEGES ON monitoring.events TO {app_user};",
        "",
    ]

    lines += _heading("Statistics and reload")
    reported = ",\n".join(f"  '{name}'" for name in REPORTED_SETTINGS)
    lines += [
        "ANALYZE;",
        "",
        "SELECT name, setting FROM pg_settings",
        "WHERE name IN (",
        reported,
        ");",
        "",
        "-- Some settings only apply after a restart",
        "SELECT pg_reload_conf();",
        "",
        f"GRANT pg_monitor TO {app_user};",
        "",
    ]
    return "\n".join(lines)


def write_init_sql(path: Path, app_user: str = DEFAULT_APP_USER,
                   database: str = DEFAULT_DATABASE) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_init_sql(app_user=app_user, database=database))
    logger.info("Wrote init SQL: %s", path)
    return path


# ── settings drift ────────────────────────────────────────────────────────────


def normalise_setting(value: SettingValue, unit: str | None = None) -> tuple[str, object]:
    """Reduce a setting to a comparable ``(kind, value)`` pair.

    Memory becomes kB and durations become milliseconds, whether the unit is
    part of the value (``'256MB'``) or reported separately by ``pg_settings``
    (``'32768'`` with unit ``'8kB'``).
    """
    text = str(value).strip()
    m = PG_MEMORY.match(text)
    if m:
        return "memory", float(m.group(1)) * _MEMORY_KB[m.group(2).lower()]
    m = PG_DURATION.match(text)
    if m:
        return "duration", float(m.group(1)) * _DURATION_MS[m.group(2).lower()]
    try:
        number = float(text)
    except ValueError:
        return "text", text.lower()
    if unit:
        u = unit.strip().lower()
        if u in _MEMORY_KB:
            return "memory", number * _MEMORY_KB[u]
        if u in _DURATION_MS:
            return "duration", number * _DURATION_MS[u]
    return "number", number


def settings_drift(rows: Iterable[tuple[str, str, str | None]],
                   expected: dict[str, SettingValue] | None = None) -> list[dict]:
    """Compare ``pg_settings`` rows against the tuning parameters.

    Args:
        rows: ``(name, setting, unit)`` tuples from the running server.
        expected: Parameter map; defaults to :data:`TUNING_PARAMETERS`.

    Returns:
        One dict per mismatched or missing parameter, in expected order.
    """
    expected = TUNING_PARAMETERS if expected is None else expected
    actual = {name: (setting, unit) for name, setting, unit in rows}
    drift = []
    for name, want in expected.items():
        if name not in actual:
            drift.append({"name": name, "expected": str(want), "actual": None})
            continue
        setting, unit = actual[name]
        if isinstance(want, (int, float)) and not isinstance(want, bool):
            # Bare numbers are already in the server's base unit
            matches = normalise_setting(setting) == ("number", float(want))
        else:
            matches = normalise_setting(want) == normalise_setting(setting, unit)
        if not matches:
            shown = f"{setting} ({unit})" if unit else setting
            drift.append({"name": name, "expected": str(want), "actual": shown})
    return drift


def parse_settings_output(text: str) -> list[tuple[str, str, str | None]]:
    """Parse ``psql -At -F '|'`` output of ``SELECT name, setting, unit``."""
    rows = []
    for line in text.splitlines():
        parts = line.split("|")
        if len(parts) != 3:
            continue
        name, setting, unit = (p.strip() for p in parts)
        rows.append((name, setting, unit or None))
    return rows


def fetch_settings(client: DockerClient, env: EnvConfig,
                   settings: StackSettings | None = None) -> list[tuple[str, str, str | None]]:
    """Read the tuned parameters from the running server (empty if unreachable)."""
    settings = settings or StackSettings()
    container = client.container_id(settings.service("postgres"))
    if not container:
        return []
    names = ", ".join(f"'{n}'" for n in TUNING_PARAMETERS)
    result = client.exec(container, [
        "psql", "-U", env["POSTGRES_USER"], "-d", env["POSTGRES_DB"], "-At", "-F", "|",
        "-c", f"SELECT name, setting, unit FROM pg_settings WHERE name IN ({names})",
    ])
    return parse_settings_output(result.stdout) if result.ok else []


# ── backups ───────────────────────────────────────────────────────────────────


def backup_database(client: DockerClient, env: EnvConfig, dest_dir: Path,
                    settings: StackSettings | None = None) -> Path:
    """Dump the n8n database to ``dest_dir/backup_<timestamp>.sql``.

    Raises:
        BackupError: If the postgres container is missing or pg_dump fails.
            A partial dump file is removed.
    """
    settings = settings or StackSettings()
    container = client.container_id(settings.service("postgres"))
    if not container and not client.dry_run:
        raise BackupError("PostgreSQL container not found; is the stack running?")

    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    backup_path = dest_dir / f"backup_{timestamp_slug()}.sql"

    logger.info("Starting backup: %s -> %s", env["POSTGRES_DB"], backup_path)
    result = client.exec_to_file(
        container or settings.service("postgres"),
        ["pg_dump", "-U", env["POSTGRES_USER"], env["POSTGRES_DB"]],
        backup_path,
    )
    if not result.ok:
        backup_path.unlink(missing_ok=True)
        raise BackupError(f"pg_dump failed: {result.stderr.strip() or result.returncode}")

    if backup_path.exists():
        logger.info("Backup complete: %s (%d KB)", backup_path, backup_path.stat().st_size // 1024)
    return backup_path


def list_backups(dest_dir: Path) -> list[Path]:
    """Backup files in *dest_dir*, oldest first."""
    dest_dir = Path(dest_dir)
    if not dest_dir.is_dir():
        return []
    return sorted(
        (f for f in dest_dir.iterdir() if BACKUP_FILENAME.match(f.name)),
        key=lambda p: p.name,  # lexicographic = chronological for our filename
    )


def list_volume_archives(dest_dir: Path) -> list[Path]:
    """Volume tarballs written by the fix tool before a PostgreSQL reset."""
    dest_dir = Path(dest_dir)
    if not dest_dir.is_dir():
        return []
    return sorted(f for f in dest_dir.iterdir() if VOLUME_ARCHIVE.match(f.name))


def prune_old_backups(dest_dir: Path, keep: int) -> list[Path]:
    """Remove old backups so that only the *keep* most-recent are retained.

    Only files matching ``backup_YYYYMMDD_HHMMSS.sql`` are considered;
    other files in *dest_dir* are left untouched.

    Returns:
        List of deleted backup paths.
    """
    if keep < 1:
        raise ValueError(f"--keep must be >= 1, got {keep}")

    backups = list_backups(dest_dir)
    to_delete = backups[:-keep] if len(backups) > keep else []
    for path in to_delete:
        logger.info("Pruning old backup: %s", path)
        path.unlink()

    if to_delete:
        logger.info("Pruned %d old backup(s); %d retained", len(to_delete), keep)
    return to_delete
