#!/usr/bin/env python3
"""
n8n Docker Stack Management

Deploys, inspects and cleans up the n8n Swarm stack. Each subcommand is one
management target; targets that depend on others run them first (``deploy``
runs ``env-check``, ``config-check`` and ``network-create``).

Usage:
    python manage_stack.py                          # list targets
    python manage_stack.py deploy                   # validate, create network, deploy
    python manage_stack.py ps                       # stack tasks, services, network
    python manage_stack.py logs-worker              # follow worker logs
    python manage_stack.py backup-db                # pg_dump into backups/
    python manage_stack.py generate-stack --single-node
    python manage_stack.py clean --yes              # DESTRUCTIVE, no prompt
    python manage_stack.py deploy --dry-run         # print docker commands only
"""

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from swarm.docker import DockerClient, DockerError
from swarm.postgres import (
    BackupError,
    backup_database,
    list_backups,
    list_volume_archives,
    write_init_sql,
)
from swarm.stack import StackConfigError, config_check, write_stack_file
from utils.common import format_bytes
from utils.config import EnvConfig, EnvFileError, KnownVariables, StackSettings
from utils.formatting import CYAN, RESET, Console, TableFormatter
from utils.validation import ValidationIssue, ValidationRegistry

_logger = logging.getLogger("manage_stack")

# service suffix followed by each logs-* target
LOG_TARGETS = {
    "logs": "n8n-webhook",
    "logs-mcp": "n8n-mcp",
    "logs-postgres": "postgres",
    "logs-redis": "redis",
    "logs-worker": "n8n-worker",
}


# ── Checks shared by env-check, config-check and validate ────────────────────

def check_environment(manager: "StackManager") -> List[ValidationIssue]:
    """One error per required variable that is unset or still CHANGE_ME."""
    return [
        ValidationIssue("environment", "error", f"{name} is not set", target=name)
        for name in manager.env.missing_required()
    ]


def check_stack_file(manager: "StackManager") -> List[ValidationIssue]:
    try:
        config_check(manager.stack_file)
    except StackConfigError as exc:
        return [ValidationIssue("stack file", "error", str(exc))]
    return []


def build_registry() -> ValidationRegistry:
    registry = ValidationRegistry()
    registry.register("environment", check_environment)
    registry.register("stack file", check_stack_file)
    return registry


# ── Targets ──────────────────────────────────────────────────────────────────

class StackManager:
    """Implements the management targets against one stack."""

    def __init__(self, client: Optional[DockerClient] = None,
                 settings: Optional[StackSettings] = None,
                 env_file: Path = Path(".env"), stack_file: Optional[Path] = None,
                 assume_yes: bool = False, console: Optional[Console] = None,
                 single_node: bool = False):
        self.client = client or DockerClient()
        self.settings = settings or StackSettings()
        self.env_file = Path(env_file)
        self.stack_file = Path(stack_file) if stack_file else self.settings.stack_file
        self.assume_yes = assume_yes
        self.console = console or Console()
        self.single_node = single_node
        self._env: Optional[EnvConfig] = None

    @property
    def env(self) -> EnvConfig:
        if self._env is None:
            self._env = EnvConfig.load(self.env_file)
        return self._env

    @property
    def stack(self) -> str:
        return self.settings.stack_name

    def confirm(self, question: str) -> bool:
        if self.assume_yes:
            return True
        reply = input(f"{question} (y/n): ").strip().lower()
        return reply.startswith("y")

    # ── network ──

    def network_create(self) -> int:
        name = self.settings.network_name
        self.console.line(f"Creating external network {name}...")
        if self.client.network_create(name, driver="overlay", attachable=True):
            self.console.ok("Network created")
        else:
            self.console.info("Network already exists or error")
        return 0

    def network_remove(self) -> int:
        name = self.settings.network_name
        self.console.line(f"Removing external network {name}...")
        if self.client.network_rm(name):
            self.console.ok("Network removed")
        else:
            self.console.info("Network not found or error")
        return 0

    def network_info(self) -> int:
        data = self.client.network_inspect(self.settings.network_name)
        if data is None:
            self.console.line(f"Network {self.settings.network_name} not found")
            return 0
        self.console.line(json.dumps(data, indent=2))
        return 0

    # ── lifecycle ──

    def deploy(self) -> int:
        for step in (self.env_check, self.config_check, self.network_create):
            rc = step()
            if rc != 0:
                return rc
        self.console.line(f"Deploying {self.stack} stack...")
        self.client.stack_deploy(self.stack_file, self.stack)
        self.console.line("Stack deployed. Run 'manage_stack.py ps' to check status.")
        return 0

    def down(self) -> int:
        self.console.line(f"Removing {self.stack} stack...")
        self.client.stack_rm(self.stack)
        self.console.line("Stack removed.")
        return 0

    def restart(self) -> int:
        self.down()
        return self.deploy()

    # ── monitoring ──

    def ps(self) -> int:
        self.console.line("Stack services status:")
        self.client.passthrough("stack", "ps", self.stack)
        self.console.line()
        self.console.line("Stack services:")
        self.client.passthrough("stack", "services", self.stack)
        self.console.line()
        self.console.line("Network info:")
        for name in self.client.network_names():
            if self.settings.network_name in name:
                self.console.line(f"  {name}")
        return 0

    def logs(self, target: str = "logs") -> int:
        service = self.settings.service(LOG_TARGETS[target])
        return self.client.service_logs(service, follow=True).returncode

    def monitor(self, interval: float = 2.0, iterations: Optional[int] = None) -> int:
        """Poll ``docker service ls`` for this stack until Ctrl-C."""
        count = 0
        try:
            while iterations is None or count < iterations:
                result = self.client.service_ls()
                stamp = datetime.now().strftime("%H:%M:%S")
                self.console.line(f"Every {interval:g}s: docker service ls  ({stamp})")
                for line in result.lines:
                    if self.stack in line:
                        self.console.line(line)
                self.console.line()
                count += 1
                if iterations is None or count < iterations:
                    time.sleep(interval)
        except KeyboardInterrupt:
            self.console.line("Stopped.")
        return 0

    # ── database & redis ──

    def _container(self, service: str) -> Optional[str]:
        container = self.client.container_id(self.settings.service(service))
        if not container:
            self.console.fail(f"No running container for {self.settings.service(service)}")
        return container

    def postgres_cli(self) -> int:
        self.console.line("Connecting to PostgreSQL...")
        container = self._container("postgres")
        if not container:
            return 1
        return self.client.exec(container, [
            "psql", "-U", self.env["POSTGRES_USER"], "-d", self.env["POSTGRES_DB"],
        ], interactive=True).returncode

    def redis_cli(self) -> int:
        self.console.line("Connecting to Redis...")
        container = self._container("redis")
        if not container:
            return 1
        return self.client.exec(container, [
            "redis-cli", "-a", self.env["REDIS_PASSWORD"], "-p", self.env.redis_port,
        ], interactive=True).returncode

    # ── cleanup ──

    def clean(self) -> int:
        if not self.confirm("Remove the stack and prune ALL unused volumes?"):
            self.console.line("Aborted.")
            return 1
        self.down()
        self.console.line("Removing all volumes...")
        self.client.volume_prune()
        self.console.line("Cleanup complete.")
        return 0

    def clean_full(self) -> int:
        if not self.confirm("Remove the stack, the network and ALL unused volumes?"):
            self.console.line("Aborted.")
            return 1
        self.down()
        self.network_remove()
        self.console.line("Removing stack, network, and volumes...")
        self.client.volume_prune()
        self.console.line("Full cleanup complete.")
        return 0

    def clean_nuke(self) -> int:
        if not self.confirm("Prune ALL containers, images, volumes and networks on this host?"):
            self.console.line("Aborted.")
            return 1
        self.down()
        self.network_remove()
        self.console.line("Removing all containers, volumes, and networks...")
        self.client.system_prune()
        self.console.line("Nuclear cleanup complete.")
        return 0

    # ── validation ──

    def env_check(self) -> int:
        self.console.line("Checking environment variables...")
        issues = check_environment(self)
        if issues:
            self.console.line(f"ERROR: {issues[0].detail}")
            return 1
        self.console.ok("All required environment variables are set")
        return 0

    def config_check(self) -> int:
        self.console.line(f"Validating {self.stack_file}...")
        issues = check_stack_file(self)
        if issues:
            self.console.line(f"ERROR: {issues[0].detail}")
            return 1
        self.console.ok(f"{self.stack_file} found and valid")
        return 0

    def validate(self) -> int:
        result = build_registry().run_all(self)
        for issue in result.issues:
            self.console.fail(f"{issue.check_name}: {issue.detail}")
        if not result.is_valid():
            self.console.line(result.summary_text())
            return 1
        self.console.ok("All validation checks passed")
        return 0

    # ── debugging ──

    def debug_env(self) -> int:
        self.console.line("Current environment:")
        for name in KnownVariables.DEBUG_VISIBLE:
            self.console.detail(f"{name}: {self.env.display_value(name)}")
        return 0

    def _inspect_env(self, service: str) -> int:
        env = self.client.service_env(self.settings.service(service))
        if env is None:
            self.console.fail(f"Service {self.settings.service(service)} not found")
            return 1
        self.console.line(json.dumps(env, indent=2))
        return 0

    def inspect_mcp(self) -> int:
        return self._inspect_env("n8n-mcp")

    def inspect_webhook(self) -> int:
        return self._inspect_env("n8n-webhook")

    # ── backups ──

    def backup_db(self) -> int:
        path = backup_database(self.client, self.env, self.settings.backup_dir, self.settings)
        self.console.ok(f"Database backup created: {path}")
        return 0

    def list_backups(self) -> int:
        backup_dir = self.settings.backup_dir
        backups = list_backups(backup_dir) + list_volume_archives(backup_dir)
        if not backups:
            self.console.line("No backups found")
            return 0
        table = TableFormatter(["File", "Size", "Modified"])
        for path in backups:
            stat = path.stat()
            modified = datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
            table.add_row([path.name, format_bytes(stat.st_size), modified])
        self.console.line(table.to_string())
        return 0

    # ── generation ──

    def generate_stack(self) -> int:
        if self.single_node:
            path = self.settings.single_node_stack_file
        else:
            path = self.stack_file
        write_stack_file(path, self.settings, single_node=self.single_node)
        self.console.ok(f"Created {path}")
        return 0

    def render_init_sql(self) -> int:
        path = write_init_sql(self.settings.init_sql_path)
        self.console.ok(f"Created {path}")
        return 0


# target name -> (StackManager method name, description)
TARGETS: Dict[str, Tuple[str, str]] = {
    "help": ("", "Show this help"),
    "network-create": ("network_create", "Create external network"),
    "network-remove": ("network_remove", "Remove external network"),
    "deploy": ("deploy", "Deploy the stack (requires .env file)"),
    "down": ("down", "Remove the stack (but keep network)"),
    "restart": ("restart", "Restart the stack"),
    "ps": ("ps", "Show stack services status"),
    "logs": ("logs", "Follow logs from the webhook service"),
    "logs-mcp": ("logs", "Follow logs from MCP service"),
    "logs-postgres": ("logs", "Follow logs from PostgreSQL"),
    "logs-redis": ("logs", "Follow logs from Redis"),
    "logs-worker": ("logs", "Follow logs from workers"),
    "monitor": ("monitor", "Monitor stack services in real-time"),
    "postgres-cli": ("postgres_cli", "Connect to PostgreSQL database"),
    "redis-cli": ("redis_cli", "Connect to Redis"),
    "clean": ("clean", "Remove stack and clean volumes (DESTRUCTIVE)"),
    "clean-nuke": ("clean_nuke", "Nuclear option - remove everything (VERY DESTRUCTIVE)"),
    "clean-full": ("clean_full", "Full cleanup - stack, network, volumes"),
    "env-check": ("env_check", "Check if required environment variables are set"),
    "config-check": ("config_check", "Validate the stack file configuration"),
    "validate": ("validate", "Run all validation checks"),
    "debug-env": ("debug_env", "Show current environment variables (without passwords)"),
    "inspect-mcp": ("inspect_mcp", "Inspect MCP service configuration"),
    "inspect-webhook": ("inspect_webhook", "Inspect webhook service configuration"),
    "network-info": ("network_info", "Show network information"),
    "backup-db": ("backup_db", "Backup PostgreSQL database"),
    "list-backups": ("list_backups", "List available backups"),
    "generate-stack": ("generate_stack", "Write the stack file (--single-node for OrbStack)"),
    "render-init-sql": ("render_init_sql", "Write config/postgres/init-data.sql"),
}


def help_text(colour: bool = False) -> str:
    lines = ["n8n Docker Stack Management", "", "Available targets:"]
    for name, (_, description) in TARGETS.items():
        label = f"{name:<16}"
        if colour:
            label = f"{CYAN}{label}{RESET}"
        lines.append(f"  {label} {description}")
    return "\n".join(lines)


def dispatch(manager: StackManager, target: str) -> int:
    if target == "help":
        manager.console.line(help_text(manager.console.colour))
        return 0
    method_name, _ = TARGETS[target]
    method: Callable[..., int] = getattr(manager, method_name)
    if method_name == "logs":
        return method(target)
    return method()


# ── CLI ──────────────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage the n8n Docker Swarm stack.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("target", nargs="?", default="help", choices=list(TARGETS),
                        metavar="TARGET", help="Management target (run 'help' to list).")
    parser.add_argument("--env-file", type=Path, default=Path(".env"),
                        help="Deployment environment file.")
    parser.add_argument("--stack-file", type=Path, default=None,
                        help="Stack file to deploy/validate (default: docker-stack.yml).")
    parser.add_argument("--single-node", action="store_true",
                        help="generate-stack: write the single-node (OrbStack) layout.")
    parser.add_argument("--yes", "-y", action="store_true",
                        help="Do not prompt before destructive targets.")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print docker commands instead of running them.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return parser


def main(argv: Optional[list] = None) -> int:
    """Entry point.

    Returns:
        0 on success, 1 on error.
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    manager = StackManager(
        client=DockerClient(dry_run=args.dry_run),
        env_file=args.env_file,
        stack_file=args.stack_file,
        assume_yes=args.yes,
        single_node=args.single_node,
    )
    try:
        return dispatch(manager, args.target)
    except EnvFileError as exc:
        _logger.error("%s", exc)
        return 1
    except (DockerError, StackConfigError, BackupError) as exc:
        _logger.error("%s", exc)
        return 1
    except OSError as exc:
        _logger.error("%s failed: %s", args.target, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
