"""
Tests for scripts/n8n_mcp.py - the mcp-remote bridge launcher
"""
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from scripts import n8n_mcp
from utils.config import EnvConfig


class TestHelpers:
    def test_default_url_from_env(self):
        env = EnvConfig({"N8N_HOST": "n8n.example.test"})
        assert n8n_mcp.default_url(env) == "https://n8n.example.test:8645/mcp/filesystem"

    def test_default_url_fallback_host(self):
        assert n8n_mcp.default_url(EnvConfig({})) == "https://n8n.agentshq.net:8645/mcp/filesystem"

    def test_build_command(self):
        assert n8n_mcp.build_command("https://h/mcp", "/usr/bin/npx") == [
            "/usr/bin/npx", "mcp-remote", "https://h/mcp",
        ]

    def test_bridge_environ_disables_node_tls(self):
        env = n8n_mcp.bridge_environ({"PATH": "/usr/bin"})
        assert env == {"PATH": "/usr/bin", "NODE_TLS_REJECT_UNAUTHORIZED": "0"}


class TestMain:
    def test_execs_npx(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("N8N_HOST=n8n.example.test\n")
        with patch("scripts.n8n_mcp.shutil.which", return_value="/usr/bin/npx"), \
                patch("scripts.n8n_mcp.node_major", return_value=22), \
                patch("scripts.n8n_mcp.os.execvpe") as execvpe:
            n8n_mcp.main(["--env-file", str(env_file)])
        path, command, environ = execvpe.call_args[0]
        assert path == "/usr/bin/npx"
        assert command == ["/usr/bin/npx", "mcp-remote",
                           "https://n8n.example.test:8645/mcp/filesystem"]
        assert environ["NODE_TLS_REJECT_UNAUTHORIZED"] == "0"

    def test_explicit_url_without_env_file(self, tmp_path):
        with patch("scripts.n8n_mcp.shutil.which", return_value="npx"), \
                patch("scripts.n8n_mcp.node_major", return_value=23), \
                patch("scripts.n8n_mcp.os.execvpe") as execvpe:
            n8n_mcp.main(["--url", "https://other:1/mcp", "--env-file", str(tmp_path / "none")])
        assert execvpe.call_args[0][1][-1] == "https://other:1/mcp"

    def test_missing_npx(self, tmp_path):
        with patch("scripts.n8n_mcp.shutil.which", return_value=None), \
                patch("scripts.n8n_mcp.os.execvpe") as execvpe:
            assert n8n_mcp.main(["--env-file", str(tmp_path / "none")]) == 1
        execvpe.assert_not_called()

    def test_old_node_refused(self, tmp_path, caplog):
        with patch("scripts.n8n_mcp.shutil.which", return_value="/usr/bin/npx"), \
                patch("scripts.n8n_mcp.node_major", return_value=18), \
                patch("scripts.n8n_mcp.os.execvpe") as execvpe:
            assert n8n_mcp.main(["--env-file", str(tmp_path / "none")]) == 1
        execvpe.assert_not_called()
        assert "Node.js 22 or newer required (found v18)" in caplog.text

    def test_missing_node_refused(self, tmp_path):
        def which(name):
            return "/usr/bin/npx" if name == "npx" else None

        with patch("scripts.n8n_mcp.shutil.which", side_effect=which), \
                patch("scripts.n8n_mcp.os.execvpe") as execvpe:
            assert n8n_mcp.main(["--env-file", str(tmp_path / "none")]) == 1
        execvpe.assert_not_called()


class TestNodeMajor:
    def test_parses_version(self):
        proc = MagicMock(returncode=0, stdout="v22.11.0\n")
        with patch("scripts.n8n_mcp.subprocess.run", return_value=proc) as run:
            assert n8n_mcp.node_major("/usr/bin/node") == 22
        assert run.call_args[0][0] == ["/usr/bin/node", "--version"]

    def test_unparseable_output(self):
        proc = MagicMock(returncode=0, stdout="command not found\n")
        with patch("scripts.n8n_mcp.subprocess.run", return_value=proc):
            assert n8n_mcp.node_major("node") is None

    def test_node_hangs(self):
        err = subprocess.TimeoutExpired(["node", "--version"], 10)
        with patch("scripts.n8n_mcp.subprocess.run", side_effect=err):
            assert n8n_mcp.node_major("node") is None
