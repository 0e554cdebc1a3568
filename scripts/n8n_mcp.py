#!/usr/bin/env python3
"""
Bridge an MCP client to the n8n MCP endpoint through ``npx mcp-remote``.

TLS verification is disabled for Node because the stack serves a
self-signed certificate. mcp-remote needs Node.js 22 or newer (`nvm use 22`);
the launcher refuses to start on an older node. The process replaces itself
with npx so the MCP client talks to mcp-remote directly over stdio.

Usage:
    python scripts/n8n_mcp.py                                # https://$N8N_HOST:8645/mcp/filesystem
    python scripts/n8n_mcp.py --url https://n8n.example.test:8645/mcp/filesystem
"""

import argparse
import logging
import os
import re
import shutil
import subprocess
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from utils.config import EnvConfig  # noqa: E402

_logger = logging.getLogger("n8n_mcp")

MCP_PORT = 8645
MCP_PATH = "/mcp/filesystem"
DEFAULT_HOST = "n8n.agentshq.net"
MIN_NODE_MAJOR = 22


def default_url(env: EnvConfig) -> str:
    host = env.get("N8N_HOST") or DEFAULT_HOST
    return f"https://{host}:{MCP_PORT}{MCP_PATH}"


def node_major(node: str) -> int | None:
    """Major version reported by `node --version` (v22.11.0 -> 22), or None."""
    try:
        proc = subprocess.run([node, "--version"], capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return None
    match = re.match(r"v?(\d+)\.", proc.stdout.strip())
    return int(match.group(1)) if match else None


def build_command(url: str, npx: str = "npx") -> list[str]:
    return [npx, "mcp-remote", url]


def bridge_environ(base: dict | None = None) -> dict:
    env = dict(os.environ if base is None else base)
    env["NODE_TLS_REJECT_UNAUTHORIZED"] = "0"
    return env


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run mcp-remote against the n8n MCP endpoint.")
    parser.add_argument("--url", default=None, help="MCP endpoint URL")
    parser.add_argument("--env-file", type=Path, default=Path(".env"),
                        help="Environment file providing N8N_HOST")
    args = parser.parse_args(argv)
    # stdout belongs to the MCP protocol; log to stderr only
    logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s",
                        level=logging.INFO, stream=sys.stderr)

    url = args.url or default_url(EnvConfig.load(args.env_file, required=False))
    npx = shutil.which("npx")
    if npx is None:
        _logger.error("npx not found on PATH; install Node.js %d", MIN_NODE_MAJOR)
        return 1

    node = shutil.which("node")
    major = node_major(node) if node else None
    if major is None or major < MIN_NODE_MAJOR:
        _logger.error("Node.js %d or newer required (found %s); run `nvm use %d`",
                      MIN_NODE_MAJOR, f"v{major}" if major else "none", MIN_NODE_MAJOR)
        return 1

    command = build_command(url, npx)
    _logger.info("Starting %s", " ".join(command))
    os.execvpe(npx, command, bridge_environ())
    return 0  # not reached


if __name__ == "__main__":
    sys.exit(main())
