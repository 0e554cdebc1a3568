"""
Tests for swarm/postgres.py - init SQL, settings drift, backups
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from swarm.postgres import (
    TUNING_PARAMETERS,
    BackupError,
    backup_database,
    fetch_settings,
    list_backups,
    normalise_setting,
    parse_settings_output,
    prune_old_backups,
    render_init_sql,
    settings_drift,
    sql_literal,
    write_init_sql,
)
from utils.config import EnvConfig

PS_POSTGRES = ("ps", "-q", "-f", "name=n8n_postgres")


# ── init SQL ──────────────────────────────────────────────────────────────────

class TestSqlLiteral:
    def test_numbers_bare(self):
        assert sql_literal(200) == "200"
        assert sql_literal(1.1) == "1.1"

    def test_keywords_bare(self):
        assert sql_literal("on") == "on"
        assert sql_literal("replica") == "replica"

    def test_strings_quoted(self):
        assert sql_literal("256MB") == "'256MB'"
        assert sql_literal("it's") == "'it''s'"


class TestRenderInitSql:
    def test_alter_system_block(self):
        sql = render_init_sql()
        assert "ALTER SYSTEM SET max_connections = 200;" in sql
        assert "ALTER SYSTEM SET shared_buffers = '256MB';" in sql
        assert "ALTER SYSTEM SET wal_level = replica;" in sql
        assert "ALTER SYSTEM SET log_min_duration_statement = 5000; -- queries slower than 5 seconds" in sql
        assert "ALTER SYSTEM SET shared_preload_libraries = 'pg_stat_statements';" in sql

    def test_every_parameter_present(self):
        sql = render_init_sql()
        for name in TUNING_PARAMETERS:
            assert f"ALTER SYSTEM SET {name} = " in sql

    def test_password_placeholder_only(self):
        sql = render_init_sql()
        assert "WITH PASSWORD '${POSTGRES_PASSWORD}'" in sql

    def test_user_and_database(self):
        sql = render_init_sql(app_user="app", database="appdb")
        assert "WHERE usename = 'app'" in sql
        assert "CREATE DATABASE appdb OWNER app;" in sql
        assert "\\c appdb" in sql
        assert "GRANT pg_monitor TO app;" in sql

    def test_monitoring_and_reload(self):
        sql = render_init_sql()
        assert "CREATE EXTENSION IF NOT EXISTS pg_stat_statements;" in sql
        assert "monitoring.execution_stats" in sql
        assert "monitoring.events" in sql
        assert "SELECT pg_reload_conf();" in sql
        assert sql.index("ANALYZE;") < sql.index("pg_reload_conf")

    def test_write(self, tmp_path):
        path = write_init_sql(tmp_path / "config" / "postgres" / "init-data.sql")
        assert path.read_text() == render_init_sql()


# ── settings drift ────────────────────────────────────────────────────────────

class TestNormaliseSetting:
    def test_memory_with_unit_suffix(self):
        assert normalise_setting("256MB") == ("memory", 262144.0)

    def test_memory_in_pages(self):
        assert normalise_setting("32768", "8kB") == ("memory", 262144.0)

    def test_duration(self):
        assert normalise_setting("15min") == ("duration", 900000.0)
        assert normalise_setting("900", "s") == ("duration", 900000.0)

    def test_text_case_insensitive(self):
        assert normalise_setting("ON") == normalise_setting("on")

    def test_number(self):
        assert normalise_setting("0.9") == ("number", 0.9)


class TestSettingsDrift:
    ROWS = [
        ("max_connections", "200", None),
        ("shared_buffers", "32768", "8kB"),
        ("work_mem", "10240", "kB"),
        ("checkpoint_timeout", "900", "s"),
        ("log_min_duration_statement", "5000", "ms"),
        ("wal_level", "replica", None),
    ]

    def test_matching_rows(self):
        expected = {name: TUNING_PARAMETERS[name] for name, _, _ in self.ROWS}
        assert settings_drift(self.ROWS, expected) == []

    def test_mismatch_reported(self):
        rows = [("work_mem", "4096", "kB")]
        drift = settings_drift(rows, {"work_mem": "10MB"})
        assert drift == [{"name": "work_mem", "expected": "10MB", "actual": "4096 (kB)"}]

    def test_missing_reported(self):
        drift = settings_drift([], {"max_connections": 200})
        assert drift == [{"name": "max_connections", "expected": "200", "actual": None}]

    def test_defaults_to_tuning_parameters(self):
        assert len(settings_drift([])) == len(TUNING_PARAMETERS)

    def test_parse_output(self):
        text = "max_connections|200|\nshared_buffers|32768|8kB\ngarbage\n"
        assert parse_settings_output(text) == [
            ("max_connections", "200", None),
            ("shared_buffers", "32768", "8kB"),
        ]

    def test_fetch_settings(self, fake_docker, env_values):
        fake_docker.respond(*PS_POSTGRES, stdout="pg1\n")
        fake_docker.respond("exec", "pg1", stdout="max_connections|100|\n")
        rows = fetch_settings(fake_docker, EnvConfig(env_values))
        assert rows == [("max_connections", "100", None)]
        assert "-At" in fake_docker.calls[-1]

    def test_fetch_settings_no_container(self, fake_docker, env_values):
        assert fetch_settings(fake_docker, EnvConfig(env_values)) == []


# ── backups ───────────────────────────────────────────────────────────────────

class TestBackupDatabase:
    def test_writes_dump(self, fake_docker, env_values, tmp_path):
        fake_docker.respond(*PS_POSTGRES, stdout="pg1\n")
        fake_docker.respond("exec", "pg1", "pg_dump", stdout="-- PostgreSQL database dump\n")
        path = backup_database(fake_docker, EnvConfig(env_values), tmp_path / "backups")
        assert path.parent == tmp_path / "backups"
        assert path.name.startswith("backup_") and path.suffix == ".sql"
        assert path.read_text().startswith("-- PostgreSQL")
        assert fake_docker.calls[-1] == ["exec", "pg1", "pg_dump", "-U", "n8n_user", "n8n_production"]

    def test_no_container(self, fake_docker, env_values, tmp_path):
        with pytest.raises(BackupError, match="container not found"):
            backup_database(fake_docker, EnvConfig(env_values), tmp_path)

    def test_failed_dump_removes_partial(self, fake_docker, env_values, tmp_path):
        fake_docker.respond(*PS_POSTGRES, stdout="pg1\n")
        fake_docker.respond("exec", "pg1", "pg_dump", returncode=1, stderr="auth failed")
        with pytest.raises(BackupError, match="auth failed"):
            backup_database(fake_docker, EnvConfig(env_values), tmp_path / "b")
        assert list((tmp_path / "b").iterdir()) == []


class TestListAndPrune:
    def _make(self, directory, names):
        directory.mkdir(parents=True, exist_ok=True)
        for name in names:
            (directory / name).write_text("x")

    def test_list_sorted_and_filtered(self, tmp_path):
        self._make(tmp_path, ["backup_20260102_000000.sql", "backup_20260101_000000.sql", "notes.txt"])
        assert [p.name for p in list_backups(tmp_path)] == [
            "backup_20260101_000000.sql", "backup_20260102_000000.sql",
        ]

    def test_list_missing_dir(self, tmp_path):
        assert list_backups(tmp_path / "nope") == []

    def test_prune_keeps_newest(self, tmp_path):
        names = [f"backup_2026010{d}_000000.sql" for d in range(1, 6)]
        self._make(tmp_path, names + ["keep_me.sql"])
        deleted = prune_old_backups(tmp_path, keep=2)
        assert [p.name for p in deleted] == names[:3]
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == sorted(names[3:] + ["keep_me.sql"])

    def test_prune_nothing_to_do(self, tmp_path):
        self._make(tmp_path, ["backup_20260101_000000.sql"])
        assert prune_old_backups(tmp_path, keep=3) == []

    def test_prune_invalid_keep(self, tmp_path):
        with pytest.raises(ValueError):
            prune_old_backups(tmp_path, keep=0)
