import logging
import os
import subprocess
import uuid
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from rich.console import Console
from rich.table import Table

from .constants import (
    ARTIFACTS_DIR,
    BACKUP_DIR,
    COVERAGE_DIR,
    DEFAULT_APPROVAL_POLL_SECONDS,
    DEFAULT_APPROVAL_TIMEOUT_HOURS,
    DEFAULT_COVERAGE_THRESHOLD,
    DEFAULT_DEPLOY_WAIT_MINUTES,
    DEFAULT_SOURCE_DIR,
    ORG_ALIAS,
    OUTPUT_DIR,
    REPORTS_DIR,
    STAGE_APPROVAL,
    STAGE_AUTHORIZE_ORG,
    STAGE_CODE_QUALITY,
    STAGE_DEPLOY,
    STAGE_INITIALIZE,
    STAGE_ORG_TESTS,
    STAGE_POST_DEPLOYMENT,
    STAGE_RELEASE_TAG,
    STAGE_SETUP_DEPENDENCIES,
    STAGE_UNIT_TESTS,
    STAGE_UPDATE_TICKET,
    STAGE_VALIDATE_DEPLOYMENT,
    TEST_RESULTS_DIR,
    WORK_DIR,
)
from .errors import ApprovalError, ConfigurationError, PipelineError
from .errors_catalog import actionable_error
from .models import Environment, PlannedStage, RunContext, RunParameters, RunStatus, TestLevel
from .services.approval import ApprovalService
from .services.command_runner import CommandRunner
from .services.deployment import DeploymentService
from .services.filesystem import FileSystemService
from .services.manifest import ManifestService
from .services.org_auth import OrgAuthService
from .services.plan import build_stage_plan
from .services.quality import QualityCheckService
from .services.source_control import SourceControlService
from .services.state import StateService
from .services.tracking import TrackingService
from .services.unit_tests import UnitTestService

console = Console()
logger = logging.getLogger("sfpromoter")


class PromotionPipeline:
    VALID_ENVIRONMENTS = [environment.value for environment in Environment]
    VALID_TEST_LEVELS = [level.value for level in TestLevel]

    def __init__(
        self,
        environment: str,
        run_tests: bool = True,
        skip_code_analysis: bool = False,
        deploy_only: bool = False,
        test_level: str = TestLevel.RUN_LOCAL_TESTS.value,
        version_tag: Optional[str] = None,
        specified_tests: Sequence[str] = (),
        coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD,
        source_dir: str = DEFAULT_SOURCE_DIR,
        backup_before_deploy: bool = True,
        deploy_wait_minutes: int = DEFAULT_DEPLOY_WAIT_MINUTES,
        approval_timeout_hours: float = DEFAULT_APPROVAL_TIMEOUT_HOURS,
        approval_poll_seconds: float = DEFAULT_APPROVAL_POLL_SECONDS,
        command_timeout: Optional[float] = None,
        tracker_url: Optional[str] = None,
        build_id: Optional[str] = None,
        build_url: Optional[str] = None,
        git_remote: str = "origin",
        resume: bool = False,
        state_file: Optional[str] = None,
        dry_run: bool = False,
    ):
        self.environment = environment
        self.run_tests = run_tests
        self.skip_code_analysis = skip_code_analysis
        self.deploy_only = deploy_only
        self.test_level = test_level
        self.version_tag = version_tag
        self.specified_tests = tuple(specified_tests or ())
        self.coverage_threshold = float(coverage_threshold)
        self.source_dir = source_dir
        self.backup_before_deploy = backup_before_deploy
        self.resume = resume
        self.dry_run = dry_run
        self.build_id = build_id or os.getenv("BUILD_NUMBER")
        self.build_url = build_url or os.getenv("BUILD_URL")

        self.cwd = os.getcwd()
        self.output_dir = os.path.join(self.cwd, OUTPUT_DIR)
        self.coverage_dir = os.path.join(self.cwd, COVERAGE_DIR)
        self.work_dir = os.path.join(self.cwd, WORK_DIR)
        self.temp_dir = os.path.join(self.work_dir, "tmp")
        self.lock_file = os.path.join(self.work_dir, "run.lock")
        self.state_file = state_file or os.path.join(self.output_dir, "run-state.json")
        self.manifest_file = os.path.join(self.output_dir, "run-manifest.json")

        self.params: Optional[RunParameters] = None
        self.state: Optional[Dict[str, Any]] = None
        self.current_step_name: Optional[str] = None
        self.warnings: List[str] = []
        self.status: Optional[RunStatus] = None

        self.state_service = StateService(state_file=self.state_file, logger=logger)
        self.manifest_service = ManifestService(manifest_file=self.manifest_file, logger=logger)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.command_runner = CommandRunner(logger=logger, default_timeout=command_timeout)
        self.source_control_service = SourceControlService(
            logger=logger,
            console=console,
            remote=git_remote,
        )
        self.quality_service = QualityCheckService(logger=logger, console=console)
        self.unit_test_service = UnitTestService(logger=logger, console=console)
        self.org_auth_service = OrgAuthService(
            logger=logger,
            console=console,
            filesystem_service=self.filesystem_service,
        )
        self.deployment_service = DeploymentService(
            logger=logger,
            console=console,
            source_dir=self.source_dir,
            wait_minutes=deploy_wait_minutes,
        )
        self.approval_service = ApprovalService(
            state_service=self.state_service,
            logger=logger,
            console=console,
            timeout_hours=approval_timeout_hours,
            poll_seconds=approval_poll_seconds,
        )
        self.tracking_service = TrackingService(
            logger=logger,
            console=console,
            tracker_url=tracker_url,
            requests_module=requests,
        )

        self.run_context = self._build_run_context()

    def _build_run_context(self) -> RunContext:
        run_id = uuid.uuid4().hex[:10]
        return RunContext(
            run_id=run_id,
            org_alias=f"{ORG_ALIAS}-{run_id}",
            work_dir=self.temp_dir,
            reports_dir=os.path.join(self.cwd, REPORTS_DIR),
            artifacts_dir=os.path.join(self.cwd, ARTIFACTS_DIR),
            test_results_dir=os.path.join(self.cwd, TEST_RESULTS_DIR),
            backup_dir=os.path.join(self.cwd, BACKUP_DIR),
        )

    def _build_parameters(self) -> RunParameters:
        environment = Environment.parse(self.environment)
        test_level = TestLevel.parse(self.test_level)

        if test_level == TestLevel.RUN_SPECIFIED_TESTS and not self.specified_tests:
            raise ConfigurationError(actionable_error("missing_specified_tests"))

        version_tag = None
        if self.version_tag and self.version_tag.strip():
            version_tag = self.source_control_service.validate_version_tag(self.version_tag)

        return RunParameters(
            environment=environment,
            run_tests=bool(self.run_tests),
            skip_code_analysis=bool(self.skip_code_analysis),
            deploy_only=bool(self.deploy_only),
            test_level=test_level,
            version_tag=version_tag,
            specified_tests=self.specified_tests,
        )

    def _parameters_metadata(self) -> Dict[str, Any]:
        return {
            "environment": self.params.environment.value,
            "run_tests": self.params.run_tests,
            "skip_code_analysis": self.params.skip_code_analysis,
            "deploy_only": self.params.deploy_only,
            "test_level": self.params.test_level.value,
            "version_tag": self.params.version_tag,
            "specified_tests": list(self.params.specified_tests),
            "build_id": self.build_id,
        }

    def _initialize_state(self) -> bool:
        state, resumed = self.state_service.initialize(
            metadata=self._parameters_metadata(),
            run_context=asdict(self.run_context),
            resume=self.resume,
        )
        self.state = state

        if resumed:
            context_data = state.get("run_context")
            if not isinstance(context_data, dict):
                raise PipelineError("State file is missing run context. Start a fresh run without --resume.")
            self.run_context = RunContext(**context_data)
            logger.info(
                "Resuming previous run '%s' at stage '%s'.",
                self.run_context.run_id,
                state.get("current_step") or "<none>",
            )
            if state.get("status") == "success":
                raise PipelineError(
                    "The state file already belongs to a successful run. Remove it or choose another --state-file."
                )
            state["status"] = "running"
            self.state_service.save(state)
        else:
            logger.debug("Run state initialized at %s", self.state_file)

        return resumed

    def _previous_run_id(self) -> Optional[str]:
        state = self.state_service.load()
        if not state:
            return None
        return (state.get("run_context") or {}).get("run_id")

    def _run_step(
        self,
        name: str,
        callback: Callable,
        *args,
        skip_when_completed: bool = True,
        **kwargs,
    ):
        if self.resume and skip_when_completed and self.state_service.is_step_completed(self.state, name):
            logger.info("Skipping completed stage from state: %s", name)
            if self.manifest_service.stage_status(name) != "success":
                self.manifest_service.step_skipped(name, "completed in resumed run")
            return None, True

        self.state_service.mark_step_started(self.state, name)
        self.manifest_service.step_started(name)
        self.current_step_name = name
        console.rule(f"[bold]{name}")

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.state_service.mark_step_failed(self.state, name, str(exc))
            self.manifest_service.step_finished(name, "failed", error=str(exc))
            raise
        except KeyboardInterrupt:
            self.state_service.mark_step_failed(self.state, name, "Operation cancelled by user.")
            self.manifest_service.step_finished(name, "failed", error="Operation cancelled by user.")
            raise

        self.state_service.mark_step_completed(self.state, name)
        details = result if isinstance(result, dict) else None
        self.manifest_service.step_finished(name, "success", details=details)
        self.current_step_name = None
        return result, False

    def _run_cmd(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
    ) -> subprocess.CompletedProcess:
        return self.command_runner.run(cmd, check=check, capture_output=capture_output)

    def _mark_unstable(self, message: str):
        self.warnings.append(message)
        logger.warning(message)
        console.print(f"[yellow]Warning:[/yellow] {message}")
        self.manifest_service.add_warning(message)

    def describe_run(self) -> str:
        parts = [self.params.environment.value, self.params.test_level.value]
        if self.build_id:
            parts.insert(0, f"#{self.build_id}")
        if self.params.deploy_only:
            parts.append("deploy only")
        if self.params.version_tag:
            parts.append(self.params.version_tag)
        return " | ".join(parts)

    def initialize(self) -> Dict[str, Any]:
        checkout = self.source_control_service.describe_checkout(self._run_cmd)
        console.print(
            f"[blue]Checked out {checkout.get('branch') or '<detached>'} "
            f"at {checkout.get('commit') or '<unknown>'}[/blue]"
        )
        tool_versions = self.source_control_service.tool_versions(self._run_cmd)
        description = self.describe_run()
        console.print(f"[bold blue]{description}[/bold blue]")
        return {"checkout": checkout, "tools": tool_versions, "description": description}

    def setup_dependencies(self):
        console.print("[blue]Installing npm dependencies...[/blue]")
        self._run_cmd(["npm", "ci"])

    def code_quality(self) -> Dict[str, Any]:
        results = self.quality_service.run_checks(
            run_cmd=self._run_cmd,
            source_dir=self.source_dir,
            reports_dir=self.run_context.reports_dir,
        )
        for result in results:
            if result.report:
                self.manifest_service.add_artifact(f"report_{result.name}", result.report)
            if not result.passed:
                self._mark_unstable(f"Code quality check '{result.name}' did not pass.")
        return {"checks": self.quality_service.summarize(results)}

    def unit_tests(self) -> Dict[str, Any]:
        coverage = self.unit_test_service.run_tests(
            run_cmd=self._run_cmd,
            coverage_dir=self.coverage_dir,
            threshold=self.coverage_threshold,
        )
        self.manifest_service.add_artifact("coverage", self.coverage_dir)
        return {"coverage": coverage, "threshold": self.coverage_threshold}

    def authorize_org(self):
        os.makedirs(self.run_context.work_dir, exist_ok=True)
        self.org_auth_service.authorize(
            environment=self.params.environment,
            org_alias=self.run_context.org_alias,
            work_dir=self.run_context.work_dir,
            run_cmd=self._run_cmd,
        )

    def validate_deployment(self):
        result_file = os.path.join(self.run_context.artifacts_dir, "validate-result.json")
        self.deployment_service.validate(
            org_alias=self.run_context.org_alias,
            test_level=self.params.test_level,
            specified_tests=self.params.specified_tests,
            result_file=result_file,
            run_cmd=self._run_cmd,
        )
        self.manifest_service.add_artifact("validate_result", result_file)

    def org_tests(self) -> Dict[str, Any]:
        summary = self.deployment_service.run_org_tests(
            org_alias=self.run_context.org_alias,
            output_dir=self.run_context.test_results_dir,
            run_cmd=self._run_cmd,
        )
        self.manifest_service.add_artifact("test_results", self.run_context.test_results_dir)
        return {"summary": summary}

    def approval(self) -> Dict[str, Any]:
        record = self.approval_service.wait(self.state, self.params.environment)
        return {"approver": record.get("approver"), "comment": record.get("comment")}

    def deploy(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        if self.params.environment == Environment.PRODUCTION and self.backup_before_deploy:
            backup_dir = self.deployment_service.backup(
                org_alias=self.run_context.org_alias,
                backup_root=self.run_context.backup_dir,
                run_cmd=self._run_cmd,
            )
            self.manifest_service.add_artifact("backup", backup_dir)
            details["backup"] = backup_dir

        result_file = os.path.join(self.run_context.artifacts_dir, "deploy-result.json")
        try:
            payload = self.deployment_service.deploy(
                environment=self.params.environment,
                org_alias=self.run_context.org_alias,
                test_level=self.params.test_level,
                specified_tests=self.params.specified_tests,
                result_file=result_file,
                run_cmd=self._run_cmd,
            )
        finally:
            if os.path.exists(result_file):
                self.manifest_service.add_artifact("deploy_result", result_file)

        details["deploy_id"] = (payload.get("result") or {}).get("id")
        return details

    def post_deployment_validation(self) -> Dict[str, Any]:
        result_file = os.path.join(self.run_context.artifacts_dir, "org-limits.json")
        try:
            limits = self.deployment_service.query_limits(
                org_alias=self.run_context.org_alias,
                result_file=result_file,
                run_cmd=self._run_cmd,
            )
        except PipelineError as exc:
            self._mark_unstable(f"Could not query org limits: {exc}")
            return {"limits_checked": False}

        self.manifest_service.add_artifact("org_limits", result_file)
        breaches = self.deployment_service.find_limit_breaches(limits)
        if breaches:
            self._mark_unstable(f"Org limits exhausted: {', '.join(breaches)}")
        else:
            console.print("[green]No org limit is exhausted.[/green]")
        return {"limits_checked": True, "breaches": breaches}

    def update_tracking_ticket(self) -> Optional[Dict[str, Any]]:
        try:
            message = self.source_control_service.latest_commit_message(self._run_cmd)
        except PipelineError as exc:
            self._mark_unstable(f"Could not read the latest commit message: {exc}")
            return None

        update = self.tracking_service.update_ticket(
            commit_message=message,
            environment=self.params.environment,
            build_description=self.describe_run(),
        )
        if update and update.get("error"):
            self._mark_unstable(f"Ticket {update['ticket']} was not updated: {update['error']}")
        return update

    def create_release_tag(self) -> Dict[str, Any]:
        tag = self.params.version_tag
        message = f"Release {tag} deployed to {self.params.environment.value}"
        self.source_control_service.create_release_tag(tag, message, self._run_cmd)
        return {"tag": tag}

    def _stage_handlers(self) -> Dict[str, Callable]:
        return {
            STAGE_INITIALIZE: self.initialize,
            STAGE_SETUP_DEPENDENCIES: self.setup_dependencies,
            STAGE_CODE_QUALITY: self.code_quality,
            STAGE_UNIT_TESTS: self.unit_tests,
            STAGE_AUTHORIZE_ORG: self.authorize_org,
            STAGE_VALIDATE_DEPLOYMENT: self.validate_deployment,
            STAGE_ORG_TESTS: self.org_tests,
            STAGE_APPROVAL: self.approval,
            STAGE_DEPLOY: self.deploy,
            STAGE_POST_DEPLOYMENT: self.post_deployment_validation,
            STAGE_UPDATE_TICKET: self.update_tracking_ticket,
            STAGE_RELEASE_TAG: self.create_release_tag,
        }

    def plan(self) -> List[PlannedStage]:
        if self.params is None:
            self.params = self._build_parameters()
        return build_stage_plan(self.params)

    def print_plan(self, stages: List[PlannedStage]):
        table = Table(title=f"Promotion plan: {self.describe_run()}")
        table.add_column("#", justify="right")
        table.add_column("Stage")
        table.add_column("Runs")
        table.add_column("Reason", style="dim")
        for index, stage in enumerate(stages, start=1):
            table.add_row(
                str(index),
                stage.title,
                "[green]yes[/green]" if stage.run else "[yellow]skip[/yellow]",
                stage.reason,
            )
        console.print(table)

    def print_summary(self, status: RunStatus, error: Optional[str]):
        colour = {
            RunStatus.SUCCESS: "green",
            RunStatus.UNSTABLE: "yellow",
            RunStatus.FAILURE: "red",
            RunStatus.ABORTED: "red",
        }[status]

        table = Table(title=f"[bold {colour}]{status.value}[/bold {colour}]")
        table.add_column("Stage")
        table.add_column("Status")
        table.add_column("Duration (s)", justify="right")
        for stage in self.manifest_service.stages:
            duration = stage.get("duration_seconds")
            table.add_row(
                stage["name"],
                stage["status"],
                f"{duration:.1f}" if duration is not None else "",
            )
        console.print(table)

        console.print(f"Environment: {self.params.environment.value}")
        console.print(f"Build: {self.build_id or self.run_context.run_id}")
        if self.build_url:
            console.print(f"Logs: {self.build_url.rstrip('/')}/console")
        else:
            console.print(f"Manifest: {self.manifest_file}")
        for warning in self.warnings:
            console.print(f"[yellow]- {warning}[/yellow]")
        if error:
            console.print(f"[bold red]Error:[/bold red] {error}")

    def cleanup(self):
        """Releases the org session and removes credentials and ephemeral files."""
        self.org_auth_service.logout(self.run_context.org_alias, self._run_cmd)
        self.org_auth_service.delete_credential_files()
        self.filesystem_service.cleanup_dir(self.temp_dir)

    def run(self) -> int:
        try:
            stages = self.plan()
        except ConfigurationError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            self.status = RunStatus.FAILURE
            return 1

        if self.dry_run:
            self.print_plan(stages)
            return 0

        try:
            previous_run_id = self._previous_run_id() if self.resume else None
            self.filesystem_service.acquire_lock(
                self.lock_file,
                previous_run_id or self.run_context.run_id,
                reclaimable_owner=previous_run_id,
            )
        except PipelineError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            self.status = RunStatus.FAILURE
            return 1

        status = RunStatus.FAILURE
        error: Optional[str] = None
        state_status = "failed"

        try:
            logger.info("Starting promotion to %s...", self.params.environment.value)
            resumed = self._initialize_state()
            self.manifest_service.start_run(
                run_id=self.run_context.run_id,
                parameters=self._parameters_metadata(),
                resume=resumed,
            )
            self.manifest_service.set_description(self.describe_run())
            # warnings from the interrupted attempt still count towards the run status
            self.warnings = list(self.manifest_service.warnings)

            handlers = self._stage_handlers()
            for stage in stages:
                if not stage.run:
                    logger.debug("Skipping stage %s: %s", stage.name, stage.reason)
                    if self.manifest_service.stage_status(stage.name) != "skipped":
                        self.manifest_service.step_skipped(stage.name, stage.reason)
                    continue
                # cleanup logs out, so a resumed run must authorize again
                self._run_step(
                    stage.name,
                    handlers[stage.name],
                    skip_when_completed=stage.name != STAGE_AUTHORIZE_ORG,
                )

            status = RunStatus.UNSTABLE if self.warnings else RunStatus.SUCCESS
            state_status = "success"
            return 0

        except KeyboardInterrupt:
            error = "Operation cancelled by user."
            logger.info(error)
            status = RunStatus.ABORTED
            state_status = "aborted"
            return 1
        except ApprovalError as exc:
            error = str(exc)
            logger.error(error)
            status = RunStatus.ABORTED
            state_status = "aborted"
            return 1
        except PipelineError as exc:
            error = str(exc)
            logger.error(error)
            return 1
        except Exception as exc:
            error = f"Unexpected error: {exc}"
            logger.exception("Unexpected error")
            return 1
        finally:
            self.status = status
            try:
                self.cleanup()
            finally:
                if self.state is not None:
                    self.state_service.mark_status(self.state, state_status, error)
                self.manifest_service.finalize(status.value, error=error)
                self.filesystem_service.release_lock(self.lock_file)
                self.print_summary(status, error)
