#!/usr/bin/env python3
"""
Fix n8n Deployment Issues

Addresses the three usual failures of a fresh deployment:
1. Environment not loaded (missing .env, POSTGRES_PASSWORD unset)
2. PostgreSQL password mismatch between .env and an existing data volume
3. Single-node Swarm (OrbStack) where global-mode workers never schedule

The PostgreSQL reset is destructive, so it first archives the data volume
and attempts a pg_dump; if the archive fails nothing is removed. Every
state-changing action is written to logs/fix/<run_id>/summary.json.

Usage:
    python fix_deployment.py                 # interactive
    python fix_deployment.py --yes           # answer yes to every prompt
    python fix_deployment.py --dry-run       # print docker commands only
    python fix_deployment.py --wait 60       # wait longer after redeploys
"""

import argparse
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from ops.logging import RunLogger, StepReport
from swarm.docker import DockerClient, DockerError
from swarm.health import check_postgres, node_summary
from swarm.postgres import BackupError, backup_database
from swarm.stack import write_stack_file
from utils.common import elapsed, sleep_with_notice, timestamp_slug
from utils.config import EnvConfig, EnvFileError, StackSettings
from utils.formatting import YELLOW, Console

_logger = logging.getLogger("fix_deployment")


class FixWorkflow:
    """Runs the remediation steps in order, stopping at the first fatal one."""

    def __init__(self, client: DockerClient, env_file: Path = Path(".env"),
                 settings: Optional[StackSettings] = None, assume_yes: bool = False,
                 wait_seconds: int = 30, console: Optional[Console] = None,
                 run_logger: Optional[RunLogger] = None):
        self.client = client
        self.env_file = Path(env_file)
        self.settings = settings or StackSettings()
        self.assume_yes = assume_yes
        self.wait_seconds = wait_seconds
        self.console = console or Console()
        self.run_logger = run_logger or RunLogger("fix", self.settings.logs_dir)
        self.env: Optional[EnvConfig] = None
        self.nodes = None

    @property
    def dry_run(self) -> bool:
        return self.client.dry_run

    def confirm(self, question: str) -> bool:
        if self.assume_yes:
            return True
        reply = input(f"{question} (y/n): ").strip().lower()
        return reply.startswith("y")

    def wait(self) -> None:
        if self.dry_run:
            return
        sleep_with_notice(self.wait_seconds, notice=self.console.info)

    # ── step 1 ────────────────────────────────────────────────────────────

    def step_1_environment(self, report: StepReport) -> bool:
        self.console.section("[1] Checking environment variables...")
        try:
            self.env = EnvConfig.load(self.env_file)
        except EnvFileError:
            self.console.fail(".env file not found")
            report.fail(f"{self.env_file} not found")
            return False

        if not self.env.is_set("POSTGRES_PASSWORD"):
            self.console.fail("POSTGRES_PASSWORD not set in .env")
            report.fail("POSTGRES_PASSWORD not set")
            return False

        self.console.ok("Environment variables loaded")
        self.console.detail(f"DB User: {self.env['POSTGRES_USER']}")
        self.console.detail(f"DB Name: {self.env['POSTGRES_DB']}")
        return True

    # ── step 2 ────────────────────────────────────────────────────────────

    def step_2_postgres(self, report: StepReport) -> bool:
        self.console.section("[2] Testing PostgreSQL connection...")
        result = check_postgres(self.client, self.env, self.settings, query="SELECT 1")
        if result.ok:
            self.console.ok("PostgreSQL connection successful")
            report.add_skip("not_applicable", "connection healthy, no reset needed")
            return True
        if "not found" in result.detail:
            self.console.fail("PostgreSQL container not found")
            report.fail("PostgreSQL container not found")
            return False

        self.console.fail("PostgreSQL connection failed")
        self.console.warn("This usually means the password in .env doesn't match the database")
        self.console.warn("Solution: Recreate the postgres volume with correct password")
        self.console.info("The data volume is archived to "
                          f"{self.settings.backup_dir}/ before anything is removed")

        if not self.confirm("Recreate PostgreSQL with current .env password?"):
            report.add_skip("user_declined", "PostgreSQL reset declined")
            report.fail("PostgreSQL connection failed and reset was declined")
            return False
        return self.reset_postgres(report)

    def reset_postgres(self, report: StepReport) -> bool:
        """Archive, dump, then remove and recreate the PostgreSQL service and volume.

        Returns False (and removes nothing) when the production stack file is
        missing or the volume archive fails.
        """
        service = self.settings.service("postgres")
        volume = self.settings.volume("postgres_data")
        backup_dir = self.settings.backup_dir
        archive_name = f"volume_{volume}_{timestamp_slug()}.tar.gz"
        stack_file = self.settings.production_stack_file

        if not stack_file.is_file():
            self.console.fail(f"{stack_file} not found; aborting reset")
            report.fail(f"production stack file not found: {stack_file}")
            return False

        self.console.info(f"Archiving volume {volume}...")
        archived = self.client.archive_volume(volume, backup_dir, archive_name)
        report.record_action("volume_archive", volume, archived.ok,
                             str(backup_dir / archive_name) if archived.ok
                             else archived.stdout.strip() or f"exit {archived.returncode}")
        if not archived.ok:
            self.console.fail(f"Could not archive {volume}; aborting reset")
            report.fail(f"volume archive failed for {volume}")
            return False
        self.console.ok(f"Volume archived to {backup_dir / archive_name}")

        # A failed dump is tolerated once the volume archive exists
        try:
            dump = backup_database(self.client, self.env, backup_dir, self.settings)
            report.record_action("pg_dump", self.env["POSTGRES_DB"], True, str(dump))
        except BackupError as exc:
            report.record_action("pg_dump", self.env["POSTGRES_DB"], False, str(exc))
            self.console.warn(f"pg_dump failed ({exc}); continuing with the volume archive only")

        self.console.info("Stopping and removing PostgreSQL service...")
        try:
            self.client.service_rm(service)
        except DockerError as exc:
            report.record_action("service_rm", service, False, str(exc))
            report.fail(f"could not remove {service}")
            self.console.fail(str(exc))
            return False
        report.record_action("service_rm", service, True)

        removed = self.client.volume_rm(volume)
        report.record_action("volume_rm", volume, removed,
                             "" if removed else "volume not removed (still in use or missing)")

        self.console.info("Redeploying stack...")
        try:
            self.client.stack_deploy(stack_file, self.settings.stack_name)
        except DockerError as exc:
            report.record_action("stack_deploy", str(stack_file), False, str(exc))
            report.fail(f"redeploy failed after removing {service}; "
                        f"restore from {backup_dir / archive_name}")
            self.console.fail(str(exc))
            return False
        report.record_action("stack_deploy", str(stack_file), True)

        self.console.ok("PostgreSQL recreated")
        self.wait()
        return True

    # ── steps 3 & 4 ───────────────────────────────────────────────────────

    def step_3_nodes(self, report: StepReport) -> bool:
        self.console.section("[3] Checking Docker Swarm nodes...")
        summary = node_summary(self.client)
        self.console.detail(f"Total nodes: {summary.total}")
        self.console.detail(f"Manager nodes: {summary.managers}")
        self.console.detail(f"Worker nodes: {summary.workers}")
        report.metrics.update(summary.to_dict())
        if summary.single_node:
            self.console.warn("No worker nodes found")
            self.console.warn("Since you're on OrbStack (single node), workers won't run in global mode")
            self.console.warn("Solution: Change worker deployment to run on manager node")
        self.nodes = summary
        return True

    def step_4_labels(self, report: StepReport) -> bool:
        self.console.section("[4] Checking node labels...")
        node = self.nodes.current if self.nodes else None
        self.console.detail(f"Current node: {node or 'unknown'}")
        labels = self.client.node_labels(node) if node else {}
        if labels:
            rendered = " ".join(f"{k}={v}" for k, v in labels.items())
            self.console.detail(f"Labels: {rendered}")
        else:
            self.console.detail("No custom labels")
        report.metrics["labels"] = labels
        return True

    # ── steps 5 & 6 ───────────────────────────────────────────────────────

    def step_5_stack_file(self, report: StepReport) -> bool:
        path = self.settings.single_node_stack_file
        self.console.section("[5] Creating OrbStack-compatible stack file...")
        if self.dry_run:
            report.add_skip("dry_run", "stack file not written", item=str(path))
            self.console.info(f"[DRY RUN] Would write {path}")
            return True
        write_stack_file(path, self.settings, single_node=True)
        report.record_action("write_stack_file", str(path), True)
        self.console.ok(f"Created {path}")
        return True

    def step_6_redeploy(self, report: StepReport) -> bool:
        path = self.settings.single_node_stack_file
        self.console.section("[6] Redeploying stack with OrbStack configuration...")
        if not self.confirm("Redeploy now?"):
            report.add_skip("user_declined", "redeploy skipped")
            self.console.warn("Skipping redeploy. Run manually: "
                              f"docker stack deploy -c {path} {self.settings.stack_name}")
            return True
        self.client.stack_deploy(path, self.settings.stack_name)
        report.record_action("stack_deploy", str(path), True)
        self.console.ok("Stack redeployed")
        self.wait()
        return True

    # ── step 7 ────────────────────────────────────────────────────────────

    def step_7_status(self, report: StepReport) -> bool:
        self.console.section("[7] Final service status...")
        result = self.client.service_ls()
        self.console.line(result.stdout.rstrip())
        report.metrics["services"] = len(result.lines[1:]) if result.lines else 0
        return True

    def next_steps(self) -> None:
        stack = self.settings.stack_name
        host = self.env["N8N_HOST"] if self.env else ""
        self.console.line()
        self.console.banner("Deployment Fix Complete")
        self.console.line()
        self.console.line(self.console.paint("Next steps:", YELLOW))
        self.console.line("1. Check service logs: "
                          + self.console.command_hint(f"docker service logs {self.settings.service('n8n-mcp')}"))
        self.console.line("2. Verify all services running: "
                          + self.console.command_hint(f"docker stack ps {stack}"))
        self.console.line("3. Test n8n: " + self.console.command_hint(f"https://{host}"))

    # ── orchestration ─────────────────────────────────────────────────────

    def run(self) -> int:
        steps = [
            ("environment", self.step_1_environment),
            ("postgres", self.step_2_postgres),
            ("nodes", self.step_3_nodes),
            ("labels", self.step_4_labels),
            ("stack_file", self.step_5_stack_file),
            ("redeploy", self.step_6_redeploy),
            ("status", self.step_7_status),
        ]
        self.console.banner("Fixing n8n Deployment Issues")
        start = time.time()
        try:
            for name, step in steps:
                report = self.run_logger.start_step(name)
                try:
                    ok = step(report)
                except Exception:
                    report.status = "failed"
                    raise
                finally:
                    self.run_logger.finish_step(name, report)
                self.console.detail(f"{name}: {report.console_summary()}")
                if not ok:
                    self.console.fail(f"Stopped at step '{name}': {'; '.join(report.errors)}")
                    return 1
            self.next_steps()
            return 0
        finally:
            self.run_logger.close()
            self.run_logger.args_dict["finished"] = datetime.now().isoformat()
            self.run_logger.args_dict["elapsed"] = elapsed(start)
            path = self.run_logger.write_summary()
            self.console.info(f"Audit trail written to {path}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fix common n8n deployment issues.")
    parser.add_argument("--env-file", type=Path, default=Path(".env"),
                        help="Deployment environment file (default: .env)")
    parser.add_argument("--yes", "-y", action="store_true",
                        help="Answer yes to every confirmation prompt")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print docker commands instead of running them")
    parser.add_argument("--wait", type=int, default=30, metavar="SECONDS",
                        help="Seconds to wait after each redeploy (default: 30)")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s", level=logging.INFO)

    settings = StackSettings()
    run_logger = RunLogger("fix", settings.logs_dir)
    run_logger.args_dict = {
        "env_file": str(args.env_file),
        "yes": args.yes,
        "dry_run": args.dry_run,
        "wait": args.wait,
    }
    workflow = FixWorkflow(
        DockerClient(dry_run=args.dry_run),
        env_file=args.env_file,
        settings=settings,
        assume_yes=args.yes,
        wait_seconds=args.wait,
        run_logger=run_logger,
    )
    try:
        return workflow.run()
    except DockerError as exc:
        _logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
