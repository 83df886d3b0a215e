import logging
import os

import click
from rich.logging import RichHandler
from rich.table import Table

from .constants import OUTPUT_DIR
from .core import PromotionPipeline, console
from .errors import PipelineError
from .services.approval import ApprovalService
from .services.config_loader import ConfigLoader
from .services.state import StateService

DEFAULT_CONFIG_FILE = ".sfpromoter.yml"
APPROVER_ROLES = ["tech-lead", "release-manager"]


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _default_state_file() -> str:
    return os.path.join(os.getcwd(), OUTPUT_DIR, "run-state.json")


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.group()
def main():
    """Promote a Salesforce DX project through DEV, QA, UAT and PRODUCTION."""


@main.command("run")
@click.option(
    "--environment",
    required=False,
    type=click.Choice(PromotionPipeline.VALID_ENVIRONMENTS, case_sensitive=False),
    help="Target environment.",
)
@click.option(
    "--run-tests/--no-run-tests",
    default=None,
    help="Run unit tests and org-side tests (default: enabled).",
)
@click.option(
    "--skip-code-analysis",
    is_flag=True,
    default=None,
    help="Skip the code quality and security checks.",
)
@click.option(
    "--deploy-only",
    is_flag=True,
    default=None,
    help="Skip dependency setup, code analysis and unit tests.",
)
@click.option(
    "--test-level",
    required=False,
    type=click.Choice(PromotionPipeline.VALID_TEST_LEVELS),
    help="Test level used by validation and deployment (default: RunLocalTests).",
)
@click.option(
    "--tests",
    "specified_tests",
    multiple=True,
    help="Apex test class for RunSpecifiedTests. Repeat for several classes.",
)
@click.option("--version-tag", required=False, help="Release tag created after a PRODUCTION deploy.")
@click.option(
    "--coverage-threshold",
    required=False,
    type=float,
    default=None,
    help="Minimum unit test line coverage in percent (default: 75).",
)
@click.option("--source-dir", required=False, help="Project source directory (default: force-app).")
@click.option(
    "--backup/--no-backup",
    "backup_before_deploy",
    default=None,
    help="Retrieve current PRODUCTION metadata before deploying (default: enabled).",
)
@click.option(
    "--deploy-wait-minutes",
    required=False,
    type=int,
    default=None,
    help="Minutes the sf CLI waits for deploy and test jobs (default: 60).",
)
@click.option(
    "--approval-timeout-hours",
    required=False,
    type=float,
    default=None,
    help="Hours to wait for approval before aborting (default: 24).",
)
@click.option(
    "--approval-poll-seconds",
    required=False,
    type=float,
    default=None,
    help="Seconds between approval checks (default: 30).",
)
@click.option(
    "--command-timeout",
    required=False,
    type=float,
    default=None,
    help="Timeout in seconds for each external command.",
)
@click.option("--tracker-url", required=False, help="Base URL of the issue tracker REST API.")
@click.option("--build-id", required=False, help="Build identifier (default: $BUILD_NUMBER).")
@click.option("--build-url", required=False, help="Build URL used for log links (default: $BUILD_URL).")
@click.option("--git-remote", required=False, help="Remote that receives release tags (default: origin).")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option(
    "--resume",
    is_flag=True,
    default=None,
    help="Resume a previously interrupted run using the run state file.",
)
@click.option(
    "--state-file",
    required=False,
    type=click.Path(),
    help="Path to the run state file (default: output/run-state.json).",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Validate parameters and print the stage plan without running anything.",
)
def run(
    environment,
    run_tests,
    skip_code_analysis,
    deploy_only,
    test_level,
    specified_tests,
    version_tag,
    coverage_threshold,
    source_dir,
    backup_before_deploy,
    deploy_wait_minutes,
    approval_timeout_hours,
    approval_poll_seconds,
    command_timeout,
    tracker_url,
    build_id,
    build_url,
    git_remote,
    config,
    verbose,
    log_file,
    resume,
    state_file,
    dry_run,
):
    """Run the promotion pipeline for one environment."""
    logger = logging.getLogger("sfpromoter")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc

    environment = _resolve_option(environment, config_values, "environment")
    run_tests = bool(_resolve_option(run_tests, config_values, "run_tests", default=True))
    skip_code_analysis = bool(
        _resolve_option(skip_code_analysis, config_values, "skip_code_analysis", default=False)
    )
    deploy_only = bool(_resolve_option(deploy_only, config_values, "deploy_only", default=False))
    test_level = _resolve_option(test_level, config_values, "test_level", default="RunLocalTests")
    specified_tests = _resolve_option(
        list(specified_tests) or None,
        config_values,
        "specified_tests",
        default=[],
    )
    version_tag = _resolve_option(version_tag, config_values, "version_tag")
    coverage_threshold = float(
        _resolve_option(coverage_threshold, config_values, "coverage_threshold", default=75.0)
    )
    source_dir = _resolve_option(source_dir, config_values, "source_dir", default="force-app")
    backup_before_deploy = bool(
        _resolve_option(backup_before_deploy, config_values, "backup_before_deploy", default=True)
    )
    deploy_wait_minutes = int(
        _resolve_option(deploy_wait_minutes, config_values, "deploy_wait_minutes", default=60)
    )
    approval_timeout_hours = float(
        _resolve_option(approval_timeout_hours, config_values, "approval_timeout_hours", default=24.0)
    )
    approval_poll_seconds = float(
        _resolve_option(approval_poll_seconds, config_values, "approval_poll_seconds", default=30.0)
    )
    command_timeout = _resolve_option(command_timeout, config_values, "command_timeout")
    tracker_url = _resolve_option(tracker_url, config_values, "tracker_url")
    build_id = _resolve_option(build_id, config_values, "build_id")
    build_url = _resolve_option(build_url, config_values, "build_url")
    git_remote = _resolve_option(git_remote, config_values, "git_remote", default="origin")
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    resume = bool(_resolve_option(resume, config_values, "resume", default=False))
    state_file = _resolve_option(state_file, config_values, "state_file")
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))

    if not environment:
        raise click.ClickException("Missing required option '--environment' (or provide it in config).")
    if isinstance(specified_tests, str):
        specified_tests = [name.strip() for name in specified_tests.split(",") if name.strip()]

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    pipeline = PromotionPipeline(
        environment=environment,
        run_tests=run_tests,
        skip_code_analysis=skip_code_analysis,
        deploy_only=deploy_only,
        test_level=test_level,
        version_tag=version_tag,
        specified_tests=specified_tests,
        coverage_threshold=coverage_threshold,
        source_dir=source_dir,
        backup_before_deploy=backup_before_deploy,
        deploy_wait_minutes=deploy_wait_minutes,
        approval_timeout_hours=approval_timeout_hours,
        approval_poll_seconds=approval_poll_seconds,
        command_timeout=float(command_timeout) if command_timeout is not None else None,
        tracker_url=tracker_url,
        build_id=str(build_id) if build_id is not None else None,
        build_url=build_url,
        git_remote=git_remote,
        resume=resume,
        state_file=state_file,
        dry_run=dry_run,
    )

    raise SystemExit(pipeline.run())


def _record_decision(state_file, approver, role, comment, approved: bool):
    logger = logging.getLogger("sfpromoter")
    state_service = StateService(state_file=state_file or _default_state_file(), logger=logger)
    approval_service = ApprovalService(state_service=state_service, logger=logger, console=console)
    try:
        record = approval_service.decide(approver=approver, role=role, approved=approved, comment=comment)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc

    verb = "approved" if approved else "rejected"
    console.print(f"[green]Deployment to {record['environment']} {verb} by {approver}.[/green]")


@main.command()
@click.option("--state-file", required=False, type=click.Path(), help="Path to the run state file.")
@click.option("--approver", required=True, help="Name of the person approving.")
@click.option("--role", required=True, type=click.Choice(APPROVER_ROLES), help="Role of the approver.")
@click.option("--comment", required=False, help="Optional comment stored with the decision.")
def approve(state_file, approver, role, comment):
    """Approve the pending deployment of a waiting run."""
    _record_decision(state_file, approver, role, comment, approved=True)


@main.command()
@click.option("--state-file", required=False, type=click.Path(), help="Path to the run state file.")
@click.option("--approver", required=True, help="Name of the person rejecting.")
@click.option("--role", required=True, type=click.Choice(APPROVER_ROLES), help="Role of the approver.")
@click.option("--comment", required=False, help="Reason for the rejection.")
def reject(state_file, approver, role, comment):
    """Reject the pending deployment of a waiting run."""
    _record_decision(state_file, approver, role, comment, approved=False)


@main.command()
@click.option("--state-file", required=False, type=click.Path(), help="Path to the run state file.")
def status(state_file):
    """Show the status of the current or last run."""
    state_service = StateService(
        state_file=state_file or _default_state_file(),
        logger=logging.getLogger("sfpromoter"),
    )
    try:
        state = state_service.load()
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc
    if state is None:
        raise click.ClickException(f"No run state found at {state_service.state_file}.")

    metadata = state.get("metadata", {})
    console.print(
        f"Run {state.get('run_context', {}).get('run_id')} "
        f"({metadata.get('environment')}): [bold]{state.get('status')}[/bold]"
    )

    table = Table()
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Error", style="red")
    for step in state.get("steps", []):
        table.add_row(step.get("name", ""), step.get("status", ""), step.get("error") or "")
    console.print(table)

    approval = state.get("approval")
    if approval:
        console.print(
            f"Approval: {approval.get('status')} (role {approval.get('required_role')}, "
            f"expires {approval.get('expires_at')}, approver {approval.get('approver') or '-'})"
        )
    if state.get("last_error"):
        console.print(f"[red]Last error:[/red] {state['last_error']}")


if __name__ == "__main__":
    main()
