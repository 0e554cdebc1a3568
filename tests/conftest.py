"""
Pytest fixtures for the n8n stack tools.

Nothing here talks to a real Docker daemon: ``FakeDocker`` answers docker
invocations from canned responses keyed on the leading arguments and
records every call it receives.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from swarm.docker import CommandResult, DockerClient, DockerError
from utils.config import KnownVariables, StackSettings


ENV_VALUES = {
    "POSTGRES_USER": "n8n_user",
    "POSTGRES_PASSWORD": "pg-secret-value",
    "POSTGRES_DB": "n8n_production",
    "REDIS_PASSWORD": "redis-secret-value",
    "REDIS_PORT": "6380",
    "N8N_ENCRYPTION_KEY": "enc-key-value",
    "N8N_HOST": "n8n.example.test",
    "N8N_BASIC_AUTH_USER": "admin",
    "N8N_BASIC_AUTH_PASSWORD": "auth-secret-value",
    "GRAFANA_ADMIN_USER": "grafana",
    "GRAFANA_ADMIN_PASSWORD": "grafana-secret-value",
    "TIMEZONE": "Asia/Dhaka",
}

SECRET_VALUES = [v for k, v in ENV_VALUES.items() if "PASSWORD" in k or "KEY" in k]


class FakeDocker(DockerClient):
    """DockerClient whose ``run`` is answered from canned responses.

    ``respond(*prefix, stdout=..., returncode=...)`` registers an answer for
    any invocation whose arguments start with *prefix*; later registrations
    win. Unmatched invocations succeed with empty output.
    """

    def __init__(self):
        super().__init__(binary="docker")
        self.responses = []
        self.calls = []

    def respond(self, *prefix, stdout="", returncode=0, stderr=""):
        self.responses.append((tuple(prefix), returncode, stdout, stderr))
        return self

    def _lookup(self, args):
        for prefix, returncode, stdout, stderr in reversed(self.responses):
            if tuple(args[:len(prefix)]) == prefix:
                return CommandResult(["docker", *args], returncode, stdout, stderr)
        return CommandResult(["docker", *args], 0, "", "")

    def run(self, *args, check=True, capture=True, merge_stderr=False, timeout=None):
        self.calls.append(list(args))
        result = self._lookup(list(args))
        if check and not result.ok:
            raise DockerError(result.args, result.returncode, result.stderr or result.stdout)
        return result

    def exec_to_file(self, container, command, dest):
        args = ["exec", container, *command]
        self.calls.append(args)
        result = self._lookup(args)
        if result.ok:
            Path(dest).write_text(result.stdout)
        else:
            Path(dest).write_text("")
        return CommandResult(result.args, result.returncode, "", result.stderr)

    def called(self, *prefix):
        return any(tuple(call[:len(prefix)]) == prefix for call in self.calls)

    def calls_with(self, *prefix):
        return [call for call in self.calls if tuple(call[:len(prefix)]) == prefix]


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Keep the developer's shell environment out of every test."""
    for name in KnownVariables.ALL + ("N8N_STACK_NAME", "N8N_NETWORK_NAME", "BACKUP_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("NO_COLOR", raising=False)


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def env_values():
    return dict(ENV_VALUES)


def write_env(path, values):
    path.write_text("".join(f"{k}={v}\n" for k, v in values.items()))
    return path


@pytest.fixture
def env_file(tmp_path, env_values):
    """A complete .env with every required variable set."""
    return write_env(tmp_path / ".env", env_values)


@pytest.fixture
def settings(tmp_path):
    """StackSettings with every output path under tmp_path."""
    s = StackSettings()
    s.stack_file = tmp_path / "docker-stack.yml"
    s.production_stack_file = tmp_path / "docker-stack.production.yml"
    s.single_node_stack_file = tmp_path / "docker-stack.orbstack.yml"
    s.backup_dir = tmp_path / "backups"
    s.traefik_config_dir = tmp_path / "config" / "traefik"
    s.certs_dir = tmp_path / "config" / "traefik" / "certs"
    s.init_sql_path = tmp_path / "config" / "postgres" / "init-data.sql"
    s.logs_dir = tmp_path / "logs"
    return s
