"""
Tests for ops/logging.py - RunLogger, StepReport and the audit trail
"""
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ops.logging import AuditAction, RunLogger, SkipRecord, StepReport


class TestStepReport:
    def test_skip_and_error(self):
        r = StepReport("postgres")
        r.add_skip("user_declined", "reset declined", item="n8n_postgres")
        r.add_error("connection failed")
        d = r.to_dict()
        assert d["skips"] == [{"category": "user_declined", "detail": "reset declined",
                               "item": "n8n_postgres"}]
        assert d["errors"] == ["connection failed"]

    def test_fail_sets_status(self):
        r = StepReport("env", status="started")
        r.fail("missing .env")
        assert r.status == "failed"

    def test_record_action_logs_to_audit(self, caplog):
        r = StepReport("postgres")
        with caplog.at_level(logging.INFO, logger="audit"):
            entry = r.record_action("volume_rm", "n8n_postgres_data", ok=False, detail="in use")
        assert isinstance(entry, AuditAction)
        assert r.actions == [entry]
        assert "volume_rm n8n_postgres_data -> FAILED (in use)" in caplog.text

    def test_console_summary(self):
        r = StepReport("x")
        assert r.console_summary() == "no activity"
        r.record_action("service_rm", "n8n_postgres", ok=True)
        r.record_action("volume_rm", "n8n_postgres_data", ok=False)
        r.add_skip("dry_run", "not written")
        assert r.console_summary() == "2 action(s), 1 failed | 1 skipped"

    def test_skip_record_without_item(self):
        assert SkipRecord("dry_run", "x").to_dict() == {"category": "dry_run", "detail": "x"}


class TestRunLogger:
    def test_creates_run_directory(self, tmp_path):
        rl = RunLogger("fix", tmp_path)
        assert rl.run_dir.parent == tmp_path / "fix"
        assert rl.run_dir.is_dir()

    def test_step_log_file_and_summary(self, tmp_path):
        rl = RunLogger("fix", tmp_path)
        report = rl.start_step("postgres")
        logging.getLogger("fix_deployment").warning("password mismatch")
        report.record_action("volume_archive", "n8n_postgres_data", ok=True, detail="backups/v.tar.gz")
        rl.finish_step("postgres", report)

        log_text = (rl.run_dir / "postgres.log").read_text()
        assert "password mismatch" in log_text
        assert "STEP SUMMARY: postgres" in log_text
        assert "volume_archive n8n_postgres_data: ok" in log_text

        summary = json.loads(rl.write_summary().read_text())
        assert summary["tool"] == "fix"
        assert summary["steps"]["postgres"]["status"] == "completed"
        assert summary["audit"][0]["action"] == "volume_archive"
        assert summary["audit"][0]["ok"] is True

    def test_handler_detached_after_finish(self, tmp_path):
        rl = RunLogger("diagnose", tmp_path)
        before = len(logging.getLogger().handlers)
        rl.start_step("nodes")
        assert len(logging.getLogger().handlers) == before + 1
        rl.finish_step("nodes")
        assert len(logging.getLogger().handlers) == before

    def test_failed_status_kept(self, tmp_path):
        rl = RunLogger("fix", tmp_path)
        report = rl.start_step("environment")
        report.fail(".env not found")
        rl.finish_step("environment", report)
        steps = json.loads(rl.write_summary().read_text())["steps"]
        assert steps["environment"]["status"] == "failed"

    def test_close_marks_open_steps_failed(self, tmp_path):
        rl = RunLogger("fix", tmp_path)
        rl.start_step("redeploy")
        rl.close()
        steps = json.loads(rl.write_summary().read_text())["steps"]
        assert steps["redeploy"]["status"] == "failed"

    def test_all_actions_across_steps(self, tmp_path):
        rl = RunLogger("fix", tmp_path)
        a = rl.start_step("a")
        a.record_action("service_rm", "s", ok=True)
        rl.finish_step("a", a)
        b = rl.start_step("b")
        b.record_action("stack_deploy", "f", ok=True)
        rl.finish_step("b", b)
        assert [x.action for x in rl.all_actions()] == ["service_rm", "stack_deploy"]
        assert rl.summary_path == rl.run_dir / "summary.json"
