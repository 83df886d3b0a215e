"""Org authentication: credential resolution and CLI session lifecycle."""

import os
import uuid
from typing import Callable, List, Mapping, Optional

from sfpromoter.constants import CREDENTIAL_FILE_MODE
from sfpromoter.errors import ConfigurationError, PipelineError
from sfpromoter.errors_catalog import actionable_error
from sfpromoter.models import Environment


def resolve_credential_id(environment) -> str:
    """Maps an environment to the logical name of its org auth URL secret."""
    if environment == Environment.DEV:
        return "SFDX_AUTH_URL_DEV"
    if environment == Environment.QA:
        return "SFDX_AUTH_URL_QA"
    if environment == Environment.UAT:
        return "SFDX_AUTH_URL_UAT"
    if environment == Environment.PRODUCTION:
        return "SFDX_AUTH_URL_PROD"
    raise ConfigurationError(actionable_error("unknown_environment", environment=environment))


class OrgAuthService:
    """Authenticates one org session and releases it again."""

    def __init__(self, logger, console, filesystem_service, secrets: Optional[Mapping[str, str]] = None):
        self.logger = logger
        self.console = console
        self.filesystem_service = filesystem_service
        self.secrets = secrets if secrets is not None else os.environ
        self.credential_files: List[str] = []

    def authorize(self, environment: Environment, org_alias: str, work_dir: str, run_cmd: Callable):
        credential_id = resolve_credential_id(environment)
        auth_url = self.secrets.get(credential_id)
        if not auth_url:
            raise PipelineError(
                actionable_error(
                    "missing_credential",
                    credential_id=credential_id,
                    environment=environment.value,
                )
            )

        self.console.print(f"[blue]Authorizing {environment.value} org as '{org_alias}'...[/blue]")
        credential_file = os.path.join(work_dir, f"auth-{uuid.uuid4().hex[:8]}.txt")
        self.credential_files.append(credential_file)
        self.filesystem_service.write_private_file(credential_file, auth_url, CREDENTIAL_FILE_MODE)
        try:
            run_cmd(
                [
                    "sf",
                    "org",
                    "login",
                    "sfdx-url",
                    "--sfdx-url-file",
                    credential_file,
                    "--alias",
                    org_alias,
                    "--set-default",
                ],
                capture_output=True,
            )
        finally:
            self.filesystem_service.remove_file(credential_file)

        run_cmd(["sf", "org", "display", "--target-org", org_alias], check=False, capture_output=True)
        self.console.print("[green]Org authorized.[/green]")

    def logout(self, org_alias: str, run_cmd: Callable):
        """Logs out of the org; failures are reported and never raised."""
        self.logger.info("Logging out of org '%s'...", org_alias)
        try:
            result = run_cmd(
                ["sf", "org", "logout", "--target-org", org_alias, "--no-prompt"],
                check=False,
                capture_output=True,
            )
        except PipelineError as exc:
            self.logger.warning("Org logout failed: %s", exc)
            return
        if result.returncode != 0:
            self.logger.warning("Org logout returned %s.", result.returncode)

    def delete_credential_files(self):
        for credential_file in self.credential_files:
            self.filesystem_service.remove_file(credential_file)
        self.credential_files = []
