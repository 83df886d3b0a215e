"""Stage plan: which stages of the promotion workflow run for given parameters."""

from typing import List

from sfpromoter.constants import (
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
)
from sfpromoter.models import Environment, PlannedStage, RunParameters

STAGE_TITLES = {
    STAGE_INITIALIZE: "Initialize",
    STAGE_SETUP_DEPENDENCIES: "Setup Dependencies",
    STAGE_CODE_QUALITY: "Code Quality & Security",
    STAGE_UNIT_TESTS: "Unit Tests",
    STAGE_AUTHORIZE_ORG: "Authorize Org",
    STAGE_VALIDATE_DEPLOYMENT: "Validate Deployment",
    STAGE_ORG_TESTS: "Run Org-Side Tests",
    STAGE_APPROVAL: "Approval Gate",
    STAGE_DEPLOY: "Deploy",
    STAGE_POST_DEPLOYMENT: "Post-Deployment Validation",
    STAGE_UPDATE_TICKET: "Update Tracking Ticket",
    STAGE_RELEASE_TAG: "Create Release Tag",
}


def _skip_reason(name: str, params: RunParameters) -> str:
    """Returns why a stage is skipped, or an empty string when it runs."""
    if name == STAGE_SETUP_DEPENDENCIES:
        return "deploy_only" if params.deploy_only else ""

    if name == STAGE_CODE_QUALITY:
        if params.deploy_only:
            return "deploy_only"
        return "skip_code_analysis" if params.skip_code_analysis else ""

    if name in (STAGE_UNIT_TESTS, STAGE_ORG_TESTS):
        if params.deploy_only:
            return "deploy_only"
        return "" if params.run_tests else "run_tests disabled"

    if name == STAGE_VALIDATE_DEPLOYMENT:
        return "not needed for DEV" if params.environment == Environment.DEV else ""

    if name == STAGE_APPROVAL:
        return "" if params.environment.requires_approval else "no approval for DEV/QA"

    if name == STAGE_RELEASE_TAG:
        if not params.version_tag:
            return "no version tag"
        return "" if params.environment == Environment.PRODUCTION else "only tagged for PRODUCTION"

    return ""


def build_stage_plan(params: RunParameters) -> List[PlannedStage]:
    plan = []
    for name, title in STAGE_TITLES.items():
        reason = _skip_reason(name, params)
        plan.append(PlannedStage(name=name, title=title, run=not reason, reason=reason))
    return plan
