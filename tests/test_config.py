"""
Tests for utils/config.py - StackSettings, EnvConfig, KnownVariables
"""
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import SECRET_VALUES, write_env
from utils.config import (
    PLACEHOLDER_VALUE,
    Config,
    EnvConfig,
    EnvFileError,
    KnownVariables,
    StackSettings,
)


class TestStackSettings:
    def test_defaults(self):
        s = StackSettings()
        assert s.stack_name == "n8n"
        assert s.network_name == "n8n-network"
        assert s.stack_file == Path("docker-stack.yml")
        assert s.single_node_stack_file == Path("docker-stack.orbstack.yml")
        assert s.backup_dir == Path("backups")

    def test_scoped_names(self):
        s = StackSettings()
        assert s.service("postgres") == "n8n_postgres"
        assert s.volume("postgres_data") == "n8n_postgres_data"
        assert s.stack_network == "n8n_n8n-network"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("N8N_STACK_NAME", "staging")
        monkeypatch.setenv("N8N_NETWORK_NAME", "stg-net")
        monkeypatch.setenv("BACKUP_DIR", "/srv/backups")
        s = StackSettings()
        assert s.service("redis") == "staging_redis"
        assert s.stack_network == "staging_stg-net"
        assert s.backup_dir == Path("/srv/backups")

    def test_json_round_trip(self, tmp_path):
        s = StackSettings()
        s.stack_name = "other"
        path = tmp_path / "settings.json"
        s.save_json(path)
        loaded = StackSettings.load_json(path)
        assert loaded.stack_name == "other"
        assert json.loads(path.read_text())["network_name"] == "n8n-network"


class TestConfigBase:
    def test_to_dict_skips_private(self):
        c = Config()
        c.visible = 1
        c._hidden = 2
        assert c.to_dict() == {"visible": 1}

    def test_from_dict(self):
        c = Config.from_dict({"a": 1})
        assert c.a == 1


class TestEnvConfigLoad:
    def test_missing_file_required(self, tmp_path):
        with pytest.raises(EnvFileError):
            EnvConfig.load(tmp_path / ".env")

    def test_missing_file_optional(self, tmp_path):
        env = EnvConfig.load(tmp_path / ".env", required=False, environ={})
        assert env.missing_required() == list(KnownVariables.REQUIRED)

    def test_values_from_file(self, env_file):
        env = EnvConfig.load(env_file, environ={})
        assert env["POSTGRES_USER"] == "n8n_user"
        assert env.redis_port == "6380"

    def test_file_wins_over_environ(self, env_file):
        env = EnvConfig.load(env_file, environ={"POSTGRES_USER": "from_shell"})
        assert env["POSTGRES_USER"] == "n8n_user"

    def test_environ_fills_gaps(self, tmp_path):
        path = write_env(tmp_path / ".env", {"POSTGRES_USER": "u"})
        env = EnvConfig.load(path, environ={"N8N_HOST": "shell.example.test", "UNRELATED": "x"})
        assert env["N8N_HOST"] == "shell.example.test"
        assert env.get("UNRELATED") is None

    def test_defaults_apply(self, tmp_path):
        path = write_env(tmp_path / ".env", {"POSTGRES_USER": "u"})
        env = EnvConfig.load(path, environ={})
        assert env.redis_port == "6379"
        assert env["REDIS_MAXMEMORY"] == "512mb"
        assert env["N8N_WORKER_CONCURRENCY"] == "10"

    def test_unset_reads_as_empty(self):
        assert EnvConfig({})["POSTGRES_DB"] == ""


class TestEnvConfigChecks:
    def test_all_required_set(self, env_values):
        assert EnvConfig(env_values).missing_required() == []

    def test_first_missing_in_declaration_order(self, env_values):
        del env_values["N8N_HOST"]
        del env_values["N8N_BASIC_AUTH_PASSWORD"]
        assert EnvConfig(env_values).missing_required() == ["N8N_HOST", "N8N_BASIC_AUTH_PASSWORD"]

    def test_placeholder_counts_as_unset(self, env_values):
        env_values["POSTGRES_PASSWORD"] = PLACEHOLDER_VALUE
        env = EnvConfig(env_values)
        assert not env.is_set("POSTGRES_PASSWORD")
        assert env.missing_required()[0] == "POSTGRES_PASSWORD"

    def test_empty_counts_as_unset(self, env_values):
        env_values["N8N_ENCRYPTION_KEY"] = ""
        assert EnvConfig(env_values).missing_required() == ["N8N_ENCRYPTION_KEY"]


class TestEnvConfigDisplay:
    def test_secrets_masked(self, env_values):
        env = EnvConfig(env_values)
        assert env.display_value("POSTGRES_PASSWORD") == "[SET]"
        assert env.display_value("POSTGRES_USER") == "n8n_user"

    def test_unset_secret(self):
        assert EnvConfig({}).display_value("REDIS_PASSWORD") == "[NOT SET]"

    def test_to_dict_never_leaks(self, env_values):
        dumped = json.dumps(EnvConfig(env_values).to_dict())
        for secret in SECRET_VALUES:
            assert secret not in dumped
