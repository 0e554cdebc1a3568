"""Health checks for a deployed n8n stack.

Each check returns a :class:`CheckResult`; none of them raise for an
unhealthy service. Only a missing docker binary propagates, since nothing
else can run without it.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from swarm.docker import DockerClient
from utils.config import EnvConfig, StackSettings
from utils.patterns import FAILED_TASK, REDIS_PONG, SWARM_INFO

DOCKER_SOCKET = Path("/var/run/docker.sock")
TRAEFIK_PORTS = (80, 443, 8080)


@dataclass
class CheckResult:
    """Outcome of one health check."""

    name: str
    ok: bool
    detail: str = ""
    output: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "ok": self.ok, "detail": self.detail}
        if self.output:
            d["output"] = self.output
        return d


@dataclass
class NodeSummary:
    """Swarm node counts by role."""

    hostnames: list[str] = field(default_factory=list)
    managers: int = 0
    workers: int = 0

    @property
    def total(self) -> int:
        return len(self.hostnames)

    @property
    def current(self) -> str | None:
        return self.hostnames[0] if self.hostnames else None

    @property
    def single_node(self) -> bool:
        """No dedicated workers: global-mode worker services will never schedule."""
        return self.workers == 0

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "managers": self.managers, "workers": self.workers}


# ── databases ─────────────────────────────────────────────────────────────────


def check_postgres(client: DockerClient, env: EnvConfig,
                   settings: StackSettings | None = None,
                   query: str = "SELECT version();") -> CheckResult:
    """Run *query* through psql inside the postgres container."""
    settings = settings or StackSettings()
    container = client.container_id(settings.service("postgres"))
    if not container:
        return CheckResult("postgres", False, "PostgreSQL container not found")
    result = client.exec(container, [
        "psql", "-U", env["POSTGRES_USER"], "-d", env["POSTGRES_DB"], "-c", query,
    ])
    if result.ok:
        return CheckResult("postgres", True, "PostgreSQL connection OK", result.stdout)
    return CheckResult(
        "postgres", False,
        "PostgreSQL connection FAILED (check password in .env matches database)",
        result.stderr or result.stdout,
    )


def check_redis(client: DockerClient, env: EnvConfig,
                settings: StackSettings | None = None) -> CheckResult:
    """``redis-cli ping`` inside the redis container; healthy only on PONG."""
    settings = settings or StackSettings()
    container = client.container_id(settings.service("redis"))
    if not container:
        return CheckResult("redis", False, "Redis container not found")
    result = client.exec(container, [
        "redis-cli", "-p", env.redis_port, "-a", env["REDIS_PASSWORD"], "ping",
    ])
    if REDIS_PONG.search(result.stdout or ""):
        return CheckResult("redis", True, "Redis connection OK")
    return CheckResult("redis", False, "Redis connection FAILED", result.stdout or result.stderr)


# ── swarm state ───────────────────────────────────────────────────────────────


def failed_tasks(client: DockerClient, service: str) -> list[str]:
    """Task rows of *service* in a Failed or Shutdown state."""
    result = client.service_ps(service, no_trunc=True)
    return [ln for ln in result.stdout.splitlines() if FAILED_TASK.search(ln)]


def network_container_count(client: DockerClient, network: str) -> int | None:
    """Containers attached to *network*, or None when it does not exist."""
    data = client.network_inspect(network)
    if not data:
        return None
    return len(data[0].get("Containers") or {})


def node_summary(client: DockerClient) -> NodeSummary:
    return NodeSummary(
        hostnames=client.node_hostnames(),
        managers=len(client.node_hostnames(role="manager")),
        workers=len(client.node_hostnames(role="worker")),
    )


def swarm_info_section(info_text: str) -> str:
    """The ``Swarm:`` block of ``docker info`` output, or an empty string."""
    match = SWARM_INFO.search(info_text or "")
    return match.group(0).rstrip() if match else ""


# ── host ──────────────────────────────────────────────────────────────────────


def port_in_use(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    """True when something is already listening on *host*:*port*."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


def check_ports(ports=TRAEFIK_PORTS, host: str = "127.0.0.1") -> list[CheckResult]:
    results = []
    for port in ports:
        busy = port_in_use(port, host)
        results.append(CheckResult(
            f"port {port}", not busy, "ALREADY IN USE" if busy else "Available",
        ))
    return results


def check_docker_socket(path: Path = DOCKER_SOCKET) -> CheckResult:
    if path.exists():
        return CheckResult("docker socket", True, str(path))
    return CheckResult("docker socket", False, "Docker socket not found at standard location")


# ── HTTP ──────────────────────────────────────────────────────────────────────


def probe_http(name: str, url: str, expected_status: int = 200, timeout: float = 5,
               verify: bool = True, session: requests.Session | None = None) -> CheckResult:
    """GET *url* and compare the status code."""
    http = session or requests
    try:
        response = http.get(url, timeout=timeout, verify=verify)
    except requests.exceptions.SSLError as exc:
        return CheckResult(name, False, f"TLS error (self-signed cert? try --insecure): {exc}")
    except requests.exceptions.ConnectionError as exc:
        return CheckResult(name, False, f"Connection failed: {exc}")
    except requests.exceptions.Timeout:
        return CheckResult(name, False, f"Timed out after {timeout}s")
    except requests.exceptions.RequestException as exc:
        return CheckResult(name, False, f"Error: {exc}")

    if response.status_code != expected_status:
        return CheckResult(name, False, f"Expected {expected_status}, got {response.status_code}")
    return CheckResult(name, True, f"{response.status_code} OK")


def default_endpoints(n8n_url: str, traefik_url: str | None = None,
                      prometheus_url: str | None = None,
                      alertmanager_url: str | None = None) -> list[tuple[str, str]]:
    """(name, url) pairs for the stack's health endpoints."""
    endpoints = [("n8n health (GET /healthz)", f"{n8n_url.rstrip('/')}/healthz")]
    if traefik_url:
        endpoints.append(("Traefik ping (GET /ping)", f"{traefik_url.rstrip('/')}/ping"))
    if prometheus_url:
        endpoints.append(("Prometheus (GET /-/healthy)", f"{prometheus_url.rstrip('/')}/-/healthy"))
    if alertmanager_url:
        endpoints.append(
            ("Alertmanager (GET /-/healthy)", f"{alertmanager_url.rstrip('/')}/-/healthy")
        )
    return endpoints
