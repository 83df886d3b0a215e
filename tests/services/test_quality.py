import subprocess
import threading

from sfpromoter.errors import PipelineError
from sfpromoter.services.quality import QualityCheck, QualityCheckService, default_checks


class DummyLogger:
    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def test_default_checks_cover_all_five_concerns():
    names = [check.name for check in default_checks("force-app", "reports")]

    assert names == ["format", "lint", "static_analysis", "vulnerability_scan", "license_check"]


def test_checks_run_concurrently_and_all_results_are_collected(tmp_path):
    checks = [QualityCheck(name, ("tool", name), f"{name}.txt") for name in ("a", "b", "c")]
    barrier = threading.Barrier(len(checks), timeout=5)

    def run_cmd(cmd, check=True, capture_output=False):
        # every sibling must be in flight at the same time to pass the barrier
        barrier.wait()
        returncode = 1 if cmd[1] == "b" else 0
        return subprocess.CompletedProcess(cmd, returncode, stdout=f"out-{cmd[1]}", stderr="")

    service = QualityCheckService(logger=DummyLogger(), console=DummyConsole(), checks=checks)
    results = service.run_checks(run_cmd, "force-app", str(tmp_path / "reports"))

    assert [result.name for result in results] == ["a", "b", "c"]
    assert service.summarize(results) == {"a": "passed", "b": "failed", "c": "passed"}
    assert (tmp_path / "reports" / "b.txt").read_text(encoding="utf-8") == "out-b"


def test_check_that_cannot_start_is_reported_as_failed(tmp_path):
    checks = [QualityCheck("license_check", ("npx", "license-checker"))]

    def run_cmd(cmd, check=True, capture_output=False):
        raise PipelineError("Required command not found: npx.")

    service = QualityCheckService(logger=DummyLogger(), console=DummyConsole(), checks=checks)
    results = service.run_checks(run_cmd, "force-app", str(tmp_path / "reports"))

    assert results[0].passed is False
    assert results[0].returncode is None
    assert "npx" in results[0].error


def test_report_that_cannot_be_written_fails_only_that_check(tmp_path):
    checks = [
        QualityCheck("format", ("npm", "run", "prettier:verify"), "format.txt"),
        QualityCheck("lint", ("npm", "run", "lint"), "missing-dir/eslint.json"),
    ]

    def run_cmd(cmd, check=True, capture_output=False):
        return subprocess.CompletedProcess(cmd, 0, stdout="ok", stderr="")

    service = QualityCheckService(logger=DummyLogger(), console=DummyConsole(), checks=checks)
    results = service.run_checks(run_cmd, "force-app", str(tmp_path / "reports"))

    assert service.summarize(results) == {"format": "passed", "lint": "failed"}
    assert results[1].report is None
    assert "Could not write report" in results[1].error
