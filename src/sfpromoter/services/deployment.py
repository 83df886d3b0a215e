"""Deploy, validate, backup and org-side verification for sfpromoter."""

import json
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from sfpromoter.errors import PipelineError
from sfpromoter.errors_catalog import actionable_error
from sfpromoter.models import Environment, TestLevel


class DeploymentService:
    """Builds and runs the `sf project` / `sf apex` / `sf org` invocations."""

    ORG_TEST_LEVEL = TestLevel.RUN_LOCAL_TESTS

    def __init__(self, logger, console, source_dir: str, wait_minutes: int = 60):
        self.logger = logger
        self.console = console
        self.source_dir = source_dir
        self.wait_minutes = wait_minutes

    @staticmethod
    def test_level_args(test_level: TestLevel, specified_tests: Sequence[str]) -> List[str]:
        args = ["--test-level", test_level.value]
        if test_level == TestLevel.RUN_SPECIFIED_TESTS:
            for test_name in specified_tests:
                args.extend(["--tests", test_name])
        return args

    def build_deploy_cmd(
        self,
        action: str,
        org_alias: str,
        test_level: TestLevel,
        specified_tests: Sequence[str] = (),
    ) -> List[str]:
        return (
            ["sf", "project", "deploy", action, "--source-dir", self.source_dir]
            + self.test_level_args(test_level, specified_tests)
            + ["--target-org", org_alias, "--wait", str(self.wait_minutes), "--json"]
        )

    def validate(
        self,
        org_alias: str,
        test_level: TestLevel,
        specified_tests: Sequence[str],
        result_file: str,
        run_cmd: Callable,
    ) -> Dict[str, Any]:
        self.console.print("[blue]Validating deployment (dry run)...[/blue]")
        cmd = self.build_deploy_cmd("validate", org_alias, test_level, specified_tests)
        payload = self._run_json(cmd, result_file, run_cmd)
        self.console.print("[green]Validation succeeded.[/green]")
        return payload

    def backup(self, org_alias: str, backup_root: str, run_cmd: Callable) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        backup_dir = os.path.join(backup_root, stamp)
        os.makedirs(backup_dir, exist_ok=True)
        self.console.print(f"[blue]Backing up current org metadata to {backup_dir}...[/blue]")

        run_cmd(
            [
                "sf",
                "project",
                "generate",
                "manifest",
                "--source-dir",
                self.source_dir,
                "--name",
                "backup-package",
                "--output-dir",
                backup_dir,
            ],
            capture_output=True,
        )
        run_cmd(
            [
                "sf",
                "project",
                "retrieve",
                "start",
                "--manifest",
                os.path.join(backup_dir, "backup-package.xml"),
                "--target-org",
                org_alias,
                "--target-metadata-dir",
                backup_dir,
                "--unzip",
                "--wait",
                str(self.wait_minutes),
            ],
            capture_output=True,
        )
        return backup_dir

    def deploy(
        self,
        environment: Environment,
        org_alias: str,
        test_level: TestLevel,
        specified_tests: Sequence[str],
        result_file: str,
        run_cmd: Callable,
    ) -> Dict[str, Any]:
        self.console.print(f"[blue]Deploying to {environment.value}...[/blue]")
        cmd = self.build_deploy_cmd("start", org_alias, test_level, specified_tests)
        try:
            payload = self._run_json(cmd, result_file, run_cmd)
        except PipelineError as exc:
            raise PipelineError(
                f"{actionable_error('deploy_failed', environment=environment.value)}\n{exc}"
            ) from exc

        result = payload.get("result") or {}
        self.console.print(
            f"[green]Deployment {result.get('id', '')} finished: {result.get('status', 'Succeeded')}.[/green]"
        )
        return payload

    def run_org_tests(self, org_alias: str, output_dir: str, run_cmd: Callable) -> Dict[str, Any]:
        self.console.print("[blue]Running org-side tests...[/blue]")
        os.makedirs(output_dir, exist_ok=True)
        cmd = [
            "sf",
            "apex",
            "run",
            "test",
            "--test-level",
            self.ORG_TEST_LEVEL.value,
            "--code-coverage",
            "--result-format",
            "json",
            "--output-dir",
            output_dir,
            "--target-org",
            org_alias,
            "--wait",
            str(self.wait_minutes),
        ]
        payload = self._run_json(cmd, os.path.join(output_dir, "test-run-result.json"), run_cmd)
        summary = (payload.get("result") or {}).get("summary") or {}
        if summary:
            self.console.print(
                f"[green]Org tests: {summary.get('outcome', 'Passed')}, "
                f"{summary.get('passing', '?')} passing, "
                f"coverage {summary.get('testRunCoverage', 'n/a')}.[/green]"
            )
        return summary

    def query_limits(self, org_alias: str, result_file: str, run_cmd: Callable) -> List[Dict[str, Any]]:
        cmd = ["sf", "org", "list", "limits", "--target-org", org_alias, "--json"]
        payload = self._run_json(cmd, result_file, run_cmd)
        limits = payload.get("result")
        if not isinstance(limits, list):
            raise PipelineError("Org limits response did not contain a list of limits.")
        return limits

    @staticmethod
    def find_limit_breaches(limits: List[Dict[str, Any]]) -> List[str]:
        breaches = []
        for limit in limits:
            maximum = limit.get("max") or 0
            remaining = limit.get("remaining")
            if maximum > 0 and remaining is not None and remaining <= 0:
                breaches.append(limit.get("name", "<unnamed>"))
        return breaches

    def _run_json(self, cmd: List[str], result_file: Optional[str], run_cmd: Callable) -> Dict[str, Any]:
        result = run_cmd(cmd, check=False, capture_output=True)
        raw_output = result.stdout or ""

        if result_file:
            os.makedirs(os.path.dirname(result_file) or ".", exist_ok=True)
            with open(result_file, "w", encoding="utf-8") as file_obj:
                file_obj.write(raw_output)

        try:
            payload = json.loads(raw_output) if raw_output.strip() else {}
        except ValueError:
            self.logger.debug("Non-JSON output from %s", " ".join(cmd[:4]))
            payload = {}

        if result.returncode != 0:
            message = payload.get("message") if isinstance(payload, dict) else None
            details = message or (result.stderr or "").strip() or "no output"
            raise PipelineError(f"Command failed ({result.returncode}): {' '.join(cmd)}\n{details}")

        return payload if isinstance(payload, dict) else {"result": payload}
