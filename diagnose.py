#!/usr/bin/env python3
"""
n8n Deployment Diagnostics

Read-only walk through a running stack: service status, failed tasks,
database and Redis connectivity, recent logs, environment, network and
Swarm nodes, followed by a guide to the common failure modes.

Usage:
    python diagnose.py                       # human-readable report
    python diagnose.py --json                # structured report on stdout
    python diagnose.py --strict              # exit 1 if any check failed
    python diagnose.py --postgres-settings   # also compare pg_settings to the tuning
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from ops.logging import RunLogger
from swarm.docker import DockerClient, DockerError
from swarm.health import (
    CheckResult,
    check_postgres,
    check_redis,
    failed_tasks,
    network_container_count,
    node_summary,
)
from swarm.postgres import fetch_settings, settings_drift
from utils.config import EnvConfig, EnvFileError, KnownVariables, StackSettings
from utils.formatting import Console

_logger = logging.getLogger("diagnose")

# services whose tasks and logs are inspected
WATCHED_SERVICES = ("n8n-mcp", "n8n-worker")
LOG_TAIL = 20

COMMON_ISSUES = [
    ("Database authentication failure",
     ["Run: python fix_deployment.py",
      "Or manually recreate the PostgreSQL volume"]),
    ("Worker shows 0/0 replicas",
     ["You're running single-node Docker (OrbStack)",
      "Use docker-stack.orbstack.yml instead (manage_stack.py generate-stack --single-node)"]),
    ("Services stuck in 'Starting'",
     ["Check logs: docker service logs <service_name>",
      "Verify dependencies (postgres, redis) are running"]),
]


class Diagnostics:
    """Runs the diagnostic sections and collects their results."""

    def __init__(self, client: DockerClient, env: EnvConfig,
                 settings: Optional[StackSettings] = None,
                 console: Optional[Console] = None, quiet: bool = False,
                 run_logger: Optional[RunLogger] = None):
        self.client = client
        self.env = env
        self.settings = settings or StackSettings()
        self.console = console or Console()
        self.quiet = quiet
        self.run_logger = run_logger
        self.results: List[CheckResult] = []
        self.report: Dict[str, Any] = {}

    # quiet mode (--json) keeps stdout clean for the report

    def _print(self, method: str, text: str = "") -> None:
        if not self.quiet:
            getattr(self.console, method)(text)

    def _record(self, result: CheckResult) -> CheckResult:
        self.results.append(result)
        if result.ok:
            self._print("ok", result.detail)
        else:
            self._print("fail", result.detail)
        return result

    # ── sections ──────────────────────────────────────────────────────────

    def service_status(self) -> None:
        self._print("section", "[1] Checking service status...")
        result = self.client.service_ls()
        self._print("line", result.stdout.rstrip())
        self.report["services"] = result.lines
        self.results.append(CheckResult("service status", result.ok,
                                        "docker service ls" if result.ok else result.stderr.strip()))

    def failed_task_check(self) -> None:
        self._print("section", "[2] Checking for failed tasks...")
        failures: Dict[str, List[str]] = {}
        for name in WATCHED_SERVICES:
            self._print("line", f"{name.upper()} Service:")
            lines = failed_tasks(self.client, self.settings.service(name))
            failures[name] = lines
            if lines:
                for line in lines:
                    self._print("detail", line)
            else:
                self._print("detail", "No failures")
            self.results.append(CheckResult(f"{name} tasks", not lines,
                                            f"{len(lines)} failed task(s)"))
        self.report["failed_tasks"] = failures

    def postgres_check(self) -> None:
        self._print("section", "[3] Testing PostgreSQL connection...")
        result = self._record(check_postgres(self.client, self.env, self.settings))
        if not result.ok and result.output:
            self._print("detail", result.output.strip())

    def redis_check(self) -> None:
        self._print("section", "[4] Testing Redis connection...")
        self._record(check_redis(self.client, self.env, self.settings))

    def recent_logs(self, number: int, name: str) -> None:
        self._print("section", f"[{number}] Recent {name} logs (last {LOG_TAIL} lines)...")
        result = self.client.service_logs(self.settings.service(name), tail=LOG_TAIL)
        text = result.stdout.rstrip() if result.ok else "Service not running"
        self._print("line", text)
        self.report.setdefault("logs", {})[name] = text.splitlines()

    def environment_check(self) -> None:
        self._print("section", "[7] Environment variables check...")
        for name in KnownVariables.ALL:
            self._print("detail", f"{name}: {self.env.display_value(name)}")
        missing = self.env.missing_required()
        self.report["environment"] = self.env.to_dict()
        self.results.append(CheckResult(
            "environment", not missing,
            "All required variables set" if not missing else "Missing: " + ", ".join(missing),
        ))
        if missing:
            self._print("warn", "Missing required variables: " + ", ".join(missing))

    def network_check(self) -> None:
        self._print("section", "[8] Network check...")
        network = self.settings.stack_network
        count = network_container_count(self.client, network)
        if count is None:
            self._record(CheckResult("network", False, "Network not found"))
        else:
            self._print("line", f"{network}: {count} containers")
            self.results.append(CheckResult("network", True, f"{network}: {count} containers"))
        self.report["network"] = {"name": network, "containers": count}

    def node_check(self) -> None:
        self._print("section", "[9] Docker Swarm node configuration...")
        self._print("line", self.client.run("node", "ls", check=False).stdout.rstrip())
        summary = node_summary(self.client)
        self._print("line", f"Manager nodes: {summary.managers}")
        self._print("line", f"Worker nodes: {summary.workers}")
        if summary.total and summary.single_node:
            self._print("warn", "No worker nodes: global-mode workers will show 0/0 replicas")
        self.report["nodes"] = summary.to_dict()

    def postgres_settings_check(self) -> None:
        self._print("section", "[+] PostgreSQL settings drift...")
        rows = fetch_settings(self.client, self.env, self.settings)
        if not rows:
            self._record(CheckResult("postgres settings", False, "Could not read pg_settings"))
            return
        drift = settings_drift(rows)
        for item in drift:
            self._print("detail", f"{item['name']}: expected {item['expected']}, "
                                  f"actual {item['actual'] or 'missing'}")
        self.report["postgres_settings_drift"] = drift
        self._record(CheckResult(
            "postgres settings", not drift,
            "Server matches tuning parameters" if not drift
            else f"{len(drift)} setting(s) differ from the tuning parameters",
        ))

    def common_issues(self) -> None:
        self._print("line")
        self._print("banner", "Common Issues & Solutions")
        for number, (title, fixes) in enumerate(COMMON_ISSUES, start=1):
            self._print("line")
            self._print("line", f"{number}. {title}:")
            for fix in fixes:
                self._print("line", f"   -> {fix}")

    # ── orchestration ─────────────────────────────────────────────────────

    def _step(self, name: str, fn, *args) -> None:
        if self.run_logger is None:
            fn(*args)
            return
        report = self.run_logger.start_step(name)
        before = len(self.results)
        try:
            fn(*args)
        except Exception:
            report.status = "failed"
            raise
        finally:
            for result in self.results[before:]:
                if not result.ok:
                    report.add_error(f"{result.name}: {result.detail}")
            report.metrics["checks"] = len(self.results) - before
            self.run_logger.finish_step(name, report)

    def run(self, postgres_settings: bool = False) -> Dict[str, Any]:
        self._print("banner", "n8n Deployment Diagnostics")
        self._step("services", self.service_status)
        self._step("failed_tasks", self.failed_task_check)
        self._step("postgres", self.postgres_check)
        self._step("redis", self.redis_check)
        self._step("mcp_logs", self.recent_logs, 5, "n8n-mcp")
        self._step("worker_logs", self.recent_logs, 6, "n8n-worker")
        self._step("environment", self.environment_check)
        self._step("network", self.network_check)
        self._step("nodes", self.node_check)
        if postgres_settings:
            self._step("postgres_settings", self.postgres_settings_check)
        self.common_issues()

        self.report["checks"] = [r.to_dict() for r in self.results]
        self.report["failed"] = [r.name for r in self.results if not r.ok]
        return self.report

    @property
    def all_passed(self) -> bool:
        return all(r.ok for r in self.results)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Diagnose a deployed n8n stack.")
    parser.add_argument("--env-file", type=Path, default=Path(".env"),
                        help="Deployment environment file (default: .env)")
    parser.add_argument("--json", action="store_true",
                        help="Print a JSON report instead of the console report")
    parser.add_argument("--strict", action="store_true",
                        help="Exit 1 when any check fails")
    parser.add_argument("--postgres-settings", action="store_true",
                        help="Compare live pg_settings against the tuning parameters")
    parser.add_argument("--no-run-log", action="store_true",
                        help="Do not write logs/diagnose/<run_id>/")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s",
                        level=logging.WARNING if args.json else logging.INFO)

    try:
        env = EnvConfig.load(args.env_file)
    except EnvFileError as exc:
        _logger.error("%s", exc)
        return 1

    settings = StackSettings()
    run_logger = None if args.no_run_log else RunLogger("diagnose", settings.logs_dir)
    diagnostics = Diagnostics(DockerClient(), env, settings,
                              quiet=args.json, run_logger=run_logger)
    try:
        report = diagnostics.run(postgres_settings=args.postgres_settings)
    except DockerError as exc:
        _logger.error("%s", exc)
        return 1
    finally:
        if run_logger is not None:
            run_logger.close()
            run_logger.write_summary()

    if args.json:
        print(json.dumps(report, indent=2, default=str))
    if args.strict and not diagnostics.all_passed:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
