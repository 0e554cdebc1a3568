"""Stack file generation and validation.

Builds the n8n Swarm stack as plain dicts and renders it with PyYAML.
Two layouts exist:

- single-node (``docker-stack.orbstack.yml``): every service runs on the one
  manager node, the overlay network is created by the stack itself, and the
  worker service uses a fixed replica count.
- multi-node (``docker-stack.yml``): the overlay network is external
  (created by ``network-create``), stateful services are pinned to managers
  and the worker runs in global mode on worker nodes.

``${VAR}`` references are emitted literally; ``docker stack deploy``
substitutes them from the environment at deploy time.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from utils.config import StackSettings

logger = logging.getLogger(__name__)

COMPOSE_VERSION = "3.8"

POSTGRES_IMAGE = "postgres:16-alpine"
REDIS_IMAGE = "redis:7-alpine"
TRAEFIK_IMAGE = "traefik:v3.5.3"
N8N_IMAGE = "docker.n8n.io/n8nio/n8n:latest"
PROMETHEUS_IMAGE = "prom/prometheus:latest"
GRAFANA_IMAGE = "grafana/grafana:latest"
ALERTMANAGER_IMAGE = "prom/alertmanager:latest"

VOLUMES = (
    "postgres_data",
    "redis_data",
    "n8n_webhook_data",
    "n8n_mcp_data",
    "n8n_worker_data",
    "traefik_data",
    "letsencrypt",
    "prometheus_data",
    "grafana_data",
    "alertmanager_data",
)

SERVICES = (
    "postgres",
    "redis",
    "traefik",
    "n8n-webhook",
    "n8n-mcp",
    "n8n-worker",
    "prometheus",
    "grafana",
    "alertmanager",
)

SINGLE_NODE_HEADER = """\
# ============================================================================
# n8n Production Stack - OrbStack Single-Node Configuration
# All services run on the single manager node (no separate workers)
# ============================================================================
"""

MULTI_NODE_HEADER = """\
# ============================================================================
# n8n Production Stack - Docker Swarm
# Network is external: run `n8n-stack network-create` before deploying
# ============================================================================
"""


class StackConfigError(ValueError):
    """The stack file is missing or fails validation."""


# ── building blocks ───────────────────────────────────────────────────────────


def _logging(max_size: str, max_file: str) -> dict[str, Any]:
    return {"driver": "json-file", "options": {"max-size": max_size, "max-file": max_file}}


def _db_env(pool_size: int) -> dict[str, Any]:
    return {
        "DB_TYPE": "postgresdb",
        "DB_POSTGRESDB_HOST": "postgres",
        "DB_POSTGRESDB_PORT": 5432,
        "DB_POSTGRESDB_DATABASE": "${POSTGRES_DB}",
        "DB_POSTGRESDB_USER": "${POSTGRES_USER}",
        "DB_POSTGRESDB_PASSWORD": "${POSTGRES_PASSWORD}",
        "DB_POSTGRESDB_POOL_SIZE": pool_size,
    }


def _queue_env(health_check: bool = False) -> dict[str, Any]:
    env: dict[str, Any] = {
        "EXECUTIONS_MODE": "queue",
        "QUEUE_BULL_REDIS_HOST": "redis",
        "QUEUE_BULL_REDIS_PORT": "${REDIS_PORT:-6379}",
        "QUEUE_BULL_REDIS_DB": 0,
        "QUEUE_BULL_REDIS_PASSWORD": "${REDIS_PASSWORD}",
    }
    if health_check:
        env["QUEUE_HEALTH_CHECK_ACTIVE"] = "true"
    return env


def _auth_env() -> dict[str, Any]:
    return {
        "N8N_ENCRYPTION_KEY": "${N8N_ENCRYPTION_KEY}",
        "N8N_BASIC_AUTH_ACTIVE": "true",
        "N8N_BASIC_AUTH_USER": "${N8N_BASIC_AUTH_USER}",
        "N8N_BASIC_AUTH_PASSWORD": "${N8N_BASIC_AUTH_PASSWORD}",
        "N8N_ENFORCE_SETTINGS_FILE_PERMISSIONS": "false",
    }


def _public_url_env() -> dict[str, Any]:
    return {
        "N8N_HOST": "${N8N_HOST}",
        "N8N_PORT": 5678,
        "N8N_PROTOCOL": "https",
        "WEBHOOK_URL": "https://${N8N_HOST}/",
        "N8N_EDITOR_BASE_URL": "https://${N8N_HOST}/",
    }


def _tz_env() -> dict[str, Any]:
    return {"GENERIC_TIMEZONE": "${TIMEZONE}", "TZ": "${TIMEZONE}"}


def _log_env() -> dict[str, Any]:
    return {"LOG_LEVEL": "info", "LOG_OUTPUT": "console"}


def _n8n_healthcheck() -> dict[str, Any]:
    return {
        "test": ["CMD-SHELL", "wget --spider -q http://localhost:5678/healthz || exit 1"],
        "interval": "30s",
        "timeout": "10s",
        "retries": 3,
        "start_period": "60s",
    }


def _router_labels(router: str, rule: str, traefik_network: str | None,
                   priority: int | None = None, port: int = 5678,
                   middlewares: str | None = None) -> list[str]:
    labels = ["traefik.enable=true"]
    if traefik_network:
        labels.append(f"traefik.docker.network={traefik_network}")
    labels += [
        f"traefik.http.routers.{router}.rule={rule}",
        f"traefik.http.routers.{router}.entrypoints=websecure",
        f"traefik.http.routers.{router}.tls.certresolver=letsencrypt",
    ]
    if priority is not None:
        labels.append(f"traefik.http.routers.{router}.priority={priority}")
    labels.append(f"traefik.http.services.{router}.loadbalancer.server.port={port}")
    if middlewares:
        labels.append(f"traefik.http.routers.{router}.middlewares={middlewares}")
    return labels


# ── services ──────────────────────────────────────────────────────────────────


def _services(network: str, traefik_network: str, multi_node: bool) -> dict[str, Any]:
    manager_only = {"placement": {"constraints": ["node.role == manager"]}}

    def deploy(replicas: int = 1, pinned: bool = False, **extra: Any) -> dict[str, Any]:
        spec: dict[str, Any] = {"replicas": replicas}
        if multi_node and pinned:
            spec.update(manager_only)
        spec.update(extra)
        return spec

    webhook_env = {
        **_db_env(4),
        **_queue_env(health_check=True),
        **_auth_env(),
        **_public_url_env(),
        "EXECUTIONS_DATA_SAVE_ON_SUCCESS": "all",
        "EXECUTIONS_DATA_SAVE_ON_ERROR": "all",
        "EXECUTIONS_DATA_SAVE_ON_PROGRESS": "true",
        "EXECUTIONS_DATA_PRUNE": "true",
        "EXECUTIONS_DATA_MAX_AGE": 336,
        **_tz_env(),
        "N8N_PAYLOAD_SIZE_MAX": 16,
        "N8N_METRICS": "true",
        **_log_env(),
    }
    mcp_env = {
        **_db_env(2),
        **_queue_env(),
        **_auth_env(),
        **_public_url_env(),
        **_tz_env(),
        **_log_env(),
    }
    worker_env = {
        **_db_env(4),
        **_queue_env(),
        "N8N_ENCRYPTION_KEY": "${N8N_ENCRYPTION_KEY}",
        "N8N_ENFORCE_SETTINGS_FILE_PERMISSIONS": "false",
        **_tz_env(),
        "N8N_PAYLOAD_SIZE_MAX": 16,
        **_log_env(),
    }

    if multi_node:
        worker_deploy = {
            "mode": "global",
            "placement": {"constraints": ["node.role == worker"]},
        }
    else:
        worker_deploy = {"replicas": 2}

    return {
        "postgres": {
            "image": POSTGRES_IMAGE,
            "deploy": deploy(pinned=True),
            "environment": {
                "POSTGRES_USER": "${POSTGRES_USER}",
                "POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}",
                "POSTGRES_DB": "${POSTGRES_DB}",
                "TZ": "${TIMEZONE}",
            },
            "volumes": ["postgres_data:/var/lib/postgresql/data"],
            "healthcheck": {
                "test": ["CMD-SHELL",
                         "pg_isready -h localhost -U ${POSTGRES_USER} -d ${POSTGRES_DB}"],
                "interval": "10s",
                "timeout": "5s",
                "retries": 5,
                "start_period": "10s",
            },
            "networks": [network],
            "logging": _logging("50m", "5"),
        },
        "redis": {
            "image": REDIS_IMAGE,
            "deploy": deploy(pinned=True),
            "command": [
                "redis-server",
                "--appendonly", "yes",
                "--appendfsync", "everysec",
                "--maxmemory", "${REDIS_MAXMEMORY:-512mb}",
                "--maxmemory-policy", "${REDIS_MAXMEMORY_POLICY:-allkeys-lru}",
                "--requirepass", "${REDIS_PASSWORD}",
                "--port", "${REDIS_PORT:-6379}",
            ],
            "volumes": ["redis_data:/data"],
            "healthcheck": {
                "test": ["CMD", "redis-cli", "-p", "${REDIS_PORT:-6379}",
                         "-a", "${REDIS_PASSWORD}", "ping"],
                "interval": "10s",
                "timeout": "3s",
                "retries": 5,
                "start_period": "10s",
            },
            "networks": [network],
            "logging": _logging("50m", "5"),
        },
        "traefik": {
            "image": TRAEFIK_IMAGE,
            "deploy": deploy(pinned=True),
            "ports": ["80:80", "443:443", "8080:8080"],
            "volumes": [
                "/var/run/docker.sock:/var/run/docker.sock:ro",
                "letsencrypt:/letsencrypt",
                "./config/traefik/traefik.yml:/etc/traefik/traefik.yml:ro",
                "./config/traefik/dynamic.yml:/etc/traefik/dynamic.yml:ro",
            ],
            "healthcheck": {
                "test": ["CMD", "wget", "--no-verbose", "--tries=1", "--spider",
                         "http://localhost:8080/ping"],
                "interval": "10s",
                "timeout": "3s",
                "retries": 3,
                "start_period": "5s",
            },
            "networks": [network],
            "logging": _logging("50m", "5"),
        },
        "n8n-webhook": {
            "image": N8N_IMAGE,
            "deploy": deploy(labels=_router_labels(
                "n8n", "Host(`${N8N_HOST}`)", traefik_network, priority=10,
                middlewares="security-headers@file,compress@file",
            )),
            "environment": webhook_env,
            "volumes": ["n8n_webhook_data:/home/node/.n8n"],
            "healthcheck": _n8n_healthcheck(),
            "networks": [network],
            "logging": _logging("100m", "10"),
        },
        "n8n-mcp": {
            "image": N8N_IMAGE,
            "deploy": deploy(labels=_router_labels(
                "n8n-mcp", "Host(`${N8N_HOST}`) && PathPrefix(`/mcp`)", traefik_network,
                priority=100, middlewares="mcp-sse@file",
            )),
            "environment": mcp_env,
            "volumes": ["n8n_mcp_data:/home/node/.n8n"],
            "healthcheck": _n8n_healthcheck(),
            "networks": [network],
            "logging": _logging("100m", "10"),
        },
        "n8n-worker": {
            "image": N8N_IMAGE,
            "deploy": worker_deploy,
            "command": "n8n worker --concurrency=${N8N_WORKER_CONCURRENCY:-10}",
            "environment": worker_env,
            "volumes": ["n8n_worker_data:/home/node/.n8n"],
            "healthcheck": {
                "test": ["CMD-SHELL", "ps aux | grep -v grep | grep -q 'n8n worker' || exit 1"],
                "interval": "30s",
                "timeout": "5s",
                "retries": 3,
                "start_period": "60s",
            },
            "networks": [network],
            "logging": _logging("100m", "10"),
        },
        "prometheus": {
            "image": PROMETHEUS_IMAGE,
            "deploy": deploy(pinned=True),
            "command": [
                "--config.file=/etc/prometheus/prometheus.yml",
                "--storage.tsdb.path=/prometheus",
                "--storage.tsdb.retention.time=45d",
                "--web.listen-address=:9090",
            ],
            "ports": ["9090:9090"],
            "volumes": [
                "prometheus_data:/prometheus",
                "./config/prometheus/prometheus.yml:/etc/prometheus/prometheus.yml:ro",
            ],
            "networks": [network],
            "logging": _logging("50m", "5"),
        },
        "grafana": {
            "image": GRAFANA_IMAGE,
            "deploy": deploy(pinned=True, labels=_router_labels(
                "grafana", "Host(`grafana.${N8N_HOST}`)", None, port=3000,
            )),
            "environment": {
                "GF_SECURITY_ADMIN_USER": "${GRAFANA_ADMIN_USER}",
                "GF_SECURITY_ADMIN_PASSWORD": "${GRAFANA_ADMIN_PASSWORD}",
                "GF_SERVER_ROOT_URL": "https://grafana.${N8N_HOST}",
                "TZ": "${TIMEZONE}",
            },
            "volumes": ["grafana_data:/var/lib/grafana"],
            "networks": [network],
            "logging": _logging("50m", "5"),
        },
        "alertmanager": {
            "image": ALERTMANAGER_IMAGE,
            "deploy": deploy(pinned=True),
            "command": [
                "--config.file=/etc/alertmanager/alertmanager.yml",
                "--storage.path=/alertmanager",
            ],
            "ports": ["9093:9093"],
            "volumes": [
                "alertmanager_data:/alertmanager",
                "./config/alertmanager/alertmanager.yml:/etc/alertmanager/alertmanager.yml:ro",
            ],
            "networks": [network],
            "logging": _logging("30m", "3"),
        },
    }


# ── public API ────────────────────────────────────────────────────────────────


def build_stack(settings: StackSettings | None = None, single_node: bool = True) -> dict[str, Any]:
    """Return the stack definition as a dict ready for ``yaml.safe_dump``."""
    settings = settings or StackSettings()
    network = settings.network_name

    if single_node:
        network_spec: dict[str, Any] = {"driver": "overlay", "attachable": True}
        # Swarm prefixes stack-created networks with the stack name
        traefik_network = settings.stack_network
    else:
        network_spec = {"external": True}
        traefik_network = network

    return {
        "version": COMPOSE_VERSION,
        "volumes": {name: {"driver": "local"} for name in VOLUMES},
        "networks": {network: network_spec},
        "services": _services(network, traefik_network, multi_node=not single_node),
    }


def render_stack(stack: dict[str, Any], single_node: bool = True) -> str:
    header = SINGLE_NODE_HEADER if single_node else MULTI_NODE_HEADER
    body = yaml.safe_dump(stack, sort_keys=False, default_flow_style=False,
                          width=120, allow_unicode=True)
    return header + body


def write_stack_file(path: Path, settings: StackSettings | None = None,
                     single_node: bool = True) -> Path:
    """Generate the stack and write it to *path*, replacing any existing file."""
    path = Path(path)
    text = render_stack(build_stack(settings, single_node=single_node), single_node=single_node)
    if path.parent != Path("."):
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    logger.info("Wrote %s stack file: %s", "single-node" if single_node else "multi-node", path)
    return path


def load_stack_file(path: Path) -> dict[str, Any]:
    """Parse a stack file.

    Raises:
        StackConfigError: If the file is missing, unreadable as YAML, or not a
            mapping, or if a top-level section is not a mapping.
    """
    path = Path(path)
    if not path.is_file():
        raise StackConfigError(f"{path} not found")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise StackConfigError(f"{path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise StackConfigError(f"{path} does not contain a YAML mapping")
    for section in ("services", "networks", "volumes"):
        value = data.get(section)
        if value is not None and not isinstance(value, dict):
            raise StackConfigError(
                f"{path}: '{section}' must be a mapping, got {type(value).__name__}")
    return data


def external_networks(stack: dict[str, Any]) -> list[str]:
    networks = stack.get("networks") or {}
    return [
        name for name, spec in networks.items()
        if isinstance(spec, dict) and spec.get("external") is True
    ]


def config_check(path: Path) -> list[str]:
    """Validate a stack file for deployment.

    Returns:
        Names of the external networks the file declares.

    Raises:
        StackConfigError: If the file is missing, invalid, or declares no
            external network.
    """
    stack = load_stack_file(path)
    external = external_networks(stack)
    if not external:
        raise StackConfigError(f"Network not configured as external in {path}")
    return external
