"""
Tests for swarm/docker.py - DockerClient with subprocess.run patched
"""
import json
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from swarm.docker import (
    CommandResult,
    DockerClient,
    DockerError,
    DockerNotFoundError,
    loggable,
)


def _proc(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestRun:
    def test_builds_command(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout="ok\n")) as run:
            result = DockerClient().run("service", "ls")
        assert run.call_args[0][0] == ["docker", "service", "ls"]
        assert result.ok
        assert result.lines == ["ok"]

    def test_nonzero_raises(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(1, stderr="boom\n")):
            with pytest.raises(DockerError) as exc:
                DockerClient().run("stack", "deploy")
        assert exc.value.returncode == 1
        assert exc.value.stderr == "boom"
        assert "boom" in str(exc.value)

    def test_nonzero_tolerated(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(1)):
            assert not DockerClient().run("network", "rm", "x", check=False).ok

    def test_missing_binary(self):
        with patch("swarm.docker.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(DockerNotFoundError) as exc:
                DockerClient().run("info")
        assert exc.value.returncode == 127

    def test_timeout(self):
        err = subprocess.TimeoutExpired(["docker"], 5)
        with patch("swarm.docker.subprocess.run", side_effect=err):
            with pytest.raises(DockerError, match="timed out"):
                DockerClient(timeout=5).run("info")

    def test_merge_stderr(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc()) as run:
            DockerClient().run("service", "logs", "x", merge_stderr=True)
        assert run.call_args[1]["stderr"] == subprocess.STDOUT

    def test_no_capture(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout=None)) as run:
            DockerClient().passthrough("stack", "ps", "n8n")
        assert "stdout" not in run.call_args[1]

    def test_dry_run_never_executes(self, caplog):
        with patch("swarm.docker.subprocess.run") as run:
            with caplog.at_level("INFO", logger="swarm.docker"):
                result = DockerClient(dry_run=True).run("stack", "rm", "n8n")
        run.assert_not_called()
        assert result.ok
        assert "[DRY RUN] Would execute: docker stack rm n8n" in caplog.text

    def test_redis_password_masked_in_logs(self, caplog):
        args = ("exec", "r1", "redis-cli", "-p", "6379", "-a", "redis-secret-value", "ping")
        with patch("swarm.docker.subprocess.run", return_value=_proc(1, stderr="NOAUTH")):
            with caplog.at_level("DEBUG", logger="swarm.docker"):
                with pytest.raises(DockerError) as exc:
                    DockerClient().run(*args)
                DockerClient(dry_run=True).run(*args)
        assert "redis-secret-value" not in caplog.text
        assert "redis-secret-value" not in str(exc.value)
        assert "-a **** ping" in caplog.text

    def test_loggable_leaves_other_flags(self):
        cmd = ["docker", "system", "prune", "-a", "-f", "--volumes"]
        assert loggable(cmd) == "docker system prune -a -f --volumes"


class TestHelpers:
    def test_container_id(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout="abc\ndef\n")) as run:
            assert DockerClient().container_id("n8n_postgres") == "abc"
        assert run.call_args[0][0] == ["docker", "ps", "-q", "-f", "name=n8n_postgres"]

    def test_container_id_none(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout="")):
            assert DockerClient().container_id("n8n_postgres") is None

    def test_network_create_flags(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc()) as run:
            assert DockerClient().network_create("n8n-network")
        assert run.call_args[0][0] == [
            "docker", "network", "create", "--driver", "overlay", "--attachable", "n8n-network",
        ]

    def test_network_create_exists(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(1, stderr="already exists")):
            assert DockerClient().network_create("n8n-network") is False

    def test_service_env_parses_json(self):
        env = ["DB_TYPE=postgresdb", "N8N_PORT=5678"]
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout=json.dumps(env))):
            assert DockerClient().service_env("n8n_n8n-mcp") == env

    def test_service_env_missing_service(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(1, stderr="no such service")):
            assert DockerClient().service_env("n8n_nope") is None

    def test_node_labels_null(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout="null\n")):
            assert DockerClient().node_labels("orbstack") == {}

    def test_node_hostnames_role_filter(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout="m1\n")) as run:
            assert DockerClient().node_hostnames(role="manager") == ["m1"]
        assert "role=manager" in run.call_args[0][0]

    def test_service_logs_follow_streams(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout=None)) as run:
            DockerClient().service_logs("n8n_redis", follow=True)
        assert run.call_args[0][0] == ["docker", "service", "logs", "-f", "n8n_redis"]
        assert "stdout" not in run.call_args[1]

    def test_service_logs_tail(self):
        with patch("swarm.docker.subprocess.run", return_value=_proc(stdout="line\n")) as run:
            DockerClient().service_logs("n8n_n8n-mcp", tail=20)
        assert run.call_args[0][0] == ["docker", "service", "logs", "--tail", "20", "n8n_n8n-mcp"]


class TestFilesAndVolumes:
    def test_exec_to_file(self, tmp_path):
        dest = tmp_path / "dump.sql"

        def fake_run(cmd, stdout=None, **kwargs):
            stdout.write("-- dump\n")
            return _proc()

        with patch("swarm.docker.subprocess.run", side_effect=fake_run):
            result = DockerClient().exec_to_file("abc", ["pg_dump", "-U", "u", "db"], dest)
        assert result.ok
        assert dest.read_text() == "-- dump\n"

    def test_exec_to_file_missing_docker_leaves_no_file(self, tmp_path):
        dest = tmp_path / "backup_20260101_000000.sql"
        with patch("swarm.docker.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(DockerNotFoundError):
                DockerClient().exec_to_file("abc", ["pg_dump", "db"], dest)
        assert not dest.exists()

    def test_exec_to_file_timeout(self, tmp_path):
        dest = tmp_path / "backup_20260101_000000.sql"
        err = subprocess.TimeoutExpired(["docker"], 5)
        with patch("swarm.docker.subprocess.run", side_effect=err):
            with pytest.raises(DockerError, match="timed out"):
                DockerClient(timeout=5).exec_to_file("abc", ["pg_dump", "db"], dest)
        assert not dest.exists()

    def test_archive_volume(self, tmp_path):
        with patch("swarm.docker.subprocess.run", return_value=_proc()) as run:
            result = DockerClient().archive_volume("n8n_postgres_data", tmp_path / "b", "v.tar.gz")
        cmd = run.call_args[0][0]
        assert result.ok
        assert cmd[:3] == ["docker", "run", "--rm"]
        assert "n8n_postgres_data:/data:ro" in cmd
        assert f"{(tmp_path / 'b').resolve()}:/backup" in cmd
        assert cmd[-6:] == ["tar", "czf", "/backup/v.tar.gz", "-C", "/data", "."]
        assert (tmp_path / "b").is_dir()

    def test_archive_volume_dry_run_creates_nothing(self, tmp_path):
        with patch("swarm.docker.subprocess.run") as run:
            DockerClient(dry_run=True).archive_volume("v", tmp_path / "b", "v.tar.gz")
        run.assert_not_called()
        assert not (tmp_path / "b").exists()


class TestCommandResult:
    def test_lines_skip_blank(self):
        assert CommandResult(["docker"], 0, "a\n\n b \n").lines == ["a", " b "]
