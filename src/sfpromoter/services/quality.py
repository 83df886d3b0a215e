"""Concurrent code quality and security checks."""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from sfpromoter.errors import PipelineError


@dataclass(frozen=True)
class QualityCheck:
    name: str
    cmd: Tuple[str, ...]
    report_file: Optional[str] = None


@dataclass(frozen=True)
class QualityCheckResult:
    name: str
    passed: bool
    returncode: Optional[int]
    report: Optional[str]
    error: Optional[str] = None


def default_checks(source_dir: str, reports_dir: str) -> List[QualityCheck]:
    return [
        QualityCheck("format", ("npm", "run", "prettier:verify"), "prettier.txt"),
        QualityCheck("lint", ("npm", "run", "lint", "--", "--format", "json"), "eslint.json"),
        QualityCheck(
            "static_analysis",
            (
                "sf",
                "scanner",
                "run",
                "--target",
                source_dir,
                "--engine",
                "pmd",
                "--format",
                "html",
                "--outfile",
                os.path.join(reports_dir, "pmd-report.html"),
            ),
            "pmd-scan.txt",
        ),
        QualityCheck("vulnerability_scan", ("npm", "audit", "--json"), "npm-audit.json"),
        QualityCheck("license_check", ("npx", "license-checker", "--csv"), "licenses.csv"),
    ]


class QualityCheckService:
    """Runs independent checks as concurrent siblings and joins on all of them."""

    def __init__(self, logger, console, checks: Optional[List[QualityCheck]] = None):
        self.logger = logger
        self.console = console
        self.checks = checks

    def run_checks(
        self,
        run_cmd: Callable,
        source_dir: str,
        reports_dir: str,
    ) -> List[QualityCheckResult]:
        checks = self.checks if self.checks is not None else default_checks(source_dir, reports_dir)
        os.makedirs(reports_dir, exist_ok=True)
        self.console.print(f"[blue]Running {len(checks)} code quality checks...[/blue]")

        if not checks:
            return []

        with ThreadPoolExecutor(max_workers=len(checks)) as executor:
            futures = [
                executor.submit(self._run_check, check, run_cmd, reports_dir) for check in checks
            ]
            results = [future.result() for future in futures]

        for result in results:
            if result.passed:
                self.console.print(f"[green]{result.name}: passed[/green]")
            else:
                self.console.print(f"[yellow]{result.name}: completed with findings[/yellow]")
        return results

    def _run_check(self, check: QualityCheck, run_cmd: Callable, reports_dir: str) -> QualityCheckResult:
        report_path = os.path.join(reports_dir, check.report_file) if check.report_file else None
        try:
            result = run_cmd(list(check.cmd), check=False, capture_output=True)
        except PipelineError as exc:
            self.logger.warning("Quality check %s could not run: %s", check.name, exc)
            return QualityCheckResult(
                name=check.name,
                passed=False,
                returncode=None,
                report=None,
                error=str(exc),
            )

        if report_path:
            try:
                with open(report_path, "w", encoding="utf-8") as file_obj:
                    file_obj.write(result.stdout or "")
                    if result.stderr:
                        file_obj.write(result.stderr)
            except OSError as exc:
                self.logger.warning("Could not write report for %s: %s", check.name, exc)
                return QualityCheckResult(
                    name=check.name,
                    passed=False,
                    returncode=result.returncode,
                    report=None,
                    error=f"Could not write report {report_path}: {exc}",
                )

        return QualityCheckResult(
            name=check.name,
            passed=result.returncode == 0,
            returncode=result.returncode,
            report=report_path,
        )

    @staticmethod
    def summarize(results: List[QualityCheckResult]) -> Dict[str, str]:
        return {result.name: "passed" if result.passed else "failed" for result in results}
