"""
Run Logging - per-step log files, step reports and an audit trail.

Provides:
  - RunLogger: manages a ``logs/<tool>/<run_id>/`` directory with one log
    file per step of a diagnose/fix run and a ``summary.json``.
  - StepReport: what a step checked, what it skipped, what it changed.
  - AuditAction: one state-changing action (service removed, volume archived,
    stack redeployed) with its outcome.

Usage inside fix_deployment.py::

    from ops.logging import RunLogger

    rl = RunLogger("fix")                   # creates logs/fix/<run_id>/
    report = rl.start_step("postgres")      # opens postgres.log
    report.record_action("volume_archive", "n8n_postgres_data", ok=True,
                         detail="backups/volume_...tar.gz")
    rl.finish_step("postgres", report)
    rl.write_summary()                      # writes summary.json

Skip categories (for SkipRecord.category):
    user_declined   - the operator answered "n" at a confirmation prompt
    dry_run         - --dry-run suppressed the action
    not_applicable  - nothing to do (e.g. connection already healthy)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ── Data structures ───────────────────────────────────────────────────────────


@dataclass
class SkipRecord:
    """One thing that was skipped, with a machine-readable category."""

    category: str
    detail: str
    item: str = ""

    def to_dict(self) -> dict[str, str]:
        d: dict[str, str] = {"category": self.category, "detail": self.detail}
        if self.item:
            d["item"] = self.item
        return d


@dataclass
class AuditAction:
    """A state-changing action taken against the deployment."""

    action: str            # e.g. "service_rm", "volume_archive", "stack_deploy"
    target: str
    ok: bool
    detail: str = ""
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "action": self.action,
            "target": self.target,
            "ok": self.ok,
            "timestamp": self.timestamp,
        }
        if self.detail:
            d["detail"] = self.detail
        return d


@dataclass
class StepReport:
    """Structured summary of what one step accomplished."""

    step_name: str
    status: str = "not_started"               # started | completed | failed | skipped
    elapsed_seconds: float = 0.0
    skips: list[SkipRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    actions: list[AuditAction] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    detail: str = ""

    def add_skip(self, category: str, detail: str, item: str = "") -> None:
        self.skips.append(SkipRecord(category=category, detail=detail, item=item))

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def record_action(self, action: str, target: str, ok: bool, detail: str = "") -> AuditAction:
        entry = AuditAction(action=action, target=target, ok=ok, detail=detail)
        self.actions.append(entry)
        logging.getLogger("audit").info(
            "%s %s -> %s%s", action, target, "ok" if ok else "FAILED",
            f" ({detail})" if detail else "",
        )
        return entry

    def fail(self, message: str) -> None:
        self.add_error(message)
        self.status = "failed"

    def console_summary(self) -> str:
        """One-line summary suitable for the terminal."""
        parts: list[str] = []
        if self.actions:
            failed = sum(1 for a in self.actions if not a.ok)
            parts.append(f"{len(self.actions)} action(s)" + (f", {failed} failed" if failed else ""))
        if self.skips:
            parts.append(f"{len(self.skips)} skipped")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        if self.detail:
            parts.append(self.detail)
        return " | ".join(parts) if parts else "no activity"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "step_name": self.step_name,
            "status": self.status,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "metrics": self.metrics,
        }
        if self.detail:
            d["detail"] = self.detail
        if self.skips:
            d["skips"] = [s.to_dict() for s in self.skips]
        if self.errors:
            d["errors"] = self.errors
        if self.actions:
            d["actions"] = [a.to_dict() for a in self.actions]
        return d


# ── RunLogger ─────────────────────────────────────────────────────────────────


class RunLogger:
    """Manages per-run, per-step log files under ``logs/<tool>/``.

    Creates a directory like::

        logs/fix/2026-02-22T14-30-00/
            environment.log
            postgres.log
            nodes.log
            summary.json
    """

    def __init__(self, tool: str, logs_dir: Path | str = "logs") -> None:
        self.tool = tool
        self.logs_root = Path(logs_dir) / tool
        self.run_id = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        self.run_dir = self.logs_root / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)

        self._step_handlers: dict[str, logging.FileHandler] = {}
        self._step_start_times: dict[str, float] = {}
        self._reports: dict[str, StepReport] = {}

        self.run_start = time.monotonic()
        self.args_dict: dict[str, Any] = {}

    # ── step lifecycle ────────────────────────────────────────────────────

    def start_step(self, step_name: str) -> StepReport:
        """Open a log file for *step_name* and attach it to the root logger."""
        log_path = self.run_dir / f"{step_name}.log"
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s  %(levelname)-7s  %(name)s  %(message)s",
            datefmt="%H:%M:%S",
        ))
        logging.getLogger().addHandler(handler)
        self._step_handlers[step_name] = handler
        self._step_start_times[step_name] = time.monotonic()

        report = StepReport(step_name=step_name, status="started")
        self._reports[step_name] = report
        return report

    def finish_step(self, step_name: str, report: StepReport | None = None) -> None:
        """Detach the log handler for *step_name* and finalise the report."""
        t0 = self._step_start_times.pop(step_name, self.run_start)
        elapsed = time.monotonic() - t0

        if report is None:
            report = self._reports.get(step_name, StepReport(step_name=step_name))
        report.elapsed_seconds = elapsed
        if report.status == "started":
            report.status = "completed"
        self._reports[step_name] = report

        handler = self._step_handlers.pop(step_name, None)
        if handler:
            handler.stream.write(f"\n{'=' * 60}\n")
            handler.stream.write(f"STEP SUMMARY: {step_name}\n")
            handler.stream.write(f"  Status:    {report.status}\n")
            handler.stream.write(f"  Elapsed:   {elapsed:.1f}s\n")
            handler.stream.write(f"  Actions:   {len(report.actions)}\n")
            for action in report.actions:
                handler.stream.write(
                    f"    - {action.action} {action.target}: {'ok' if action.ok else 'FAILED'}\n"
                )
            if report.errors:
                handler.stream.write("  Error details:\n")
                for err in report.errors[:20]:
                    handler.stream.write(f"    - {err}\n")
            handler.stream.write(f"{'=' * 60}\n")
            handler.close()
            logging.getLogger().removeHandler(handler)

    def close(self) -> None:
        """Detach any handlers left open by a step that raised."""
        for step_name in list(self._step_handlers):
            report = self._reports.get(step_name)
            if report and report.status == "started":
                report.status = "failed"
            self.finish_step(step_name, report)

    # ── summary output ────────────────────────────────────────────────────

    def all_actions(self) -> list[AuditAction]:
        return [a for rpt in self._reports.values() for a in rpt.actions]

    def write_summary(self) -> Path:
        """Write a JSON summary of the entire run to the run directory."""
        total_elapsed = time.monotonic() - self.run_start
        summary = {
            "tool": self.tool,
            "run_id": self.run_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "total_elapsed_seconds": round(total_elapsed, 2),
            "args": self.args_dict,
            "steps": {name: rpt.to_dict() for name, rpt in self._reports.items()},
            "audit": [a.to_dict() for a in self.all_actions()],
        }
        path = self.run_dir / "summary.json"
        with open(path, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        return path

    @property
    def summary_path(self) -> Path:
        return self.run_dir / "summary.json"
