"""Actionable error catalog for sfpromoter."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "unknown_environment": {
        "what": "Unknown environment: {environment}.",
        "next": "Use one of DEV, QA, UAT or PRODUCTION.",
    },
    "unknown_test_level": {
        "what": "Unknown test level: {test_level}.",
        "next": "Use one of NoTestRun, RunSpecifiedTests, RunLocalTests or RunAllTestsInOrg.",
    },
    "missing_specified_tests": {
        "what": "Test level RunSpecifiedTests requires at least one test class.",
        "next": "Pass `--tests` (repeatable) or set `specified_tests` in the config file.",
    },
    "invalid_version_tag": {
        "what": "Invalid version tag: {tag}.",
        "next": "Use a version such as `v1.2.3` or `1.2.3`.",
    },
    "missing_credential": {
        "what": "Credential `{credential_id}` is not available for {environment}.",
        "next": "Expose the org auth URL as the `{credential_id}` environment variable in the CI secret store.",
    },
    "coverage_report_missing": {
        "what": "Coverage summary not found: {path}",
        "next": "Make sure the unit test command writes a `json-summary` coverage report.",
    },
    "coverage_below_threshold": {
        "what": "Code coverage {coverage:.2f}% is below the required minimum of {threshold:.2f}%.",
        "next": "Add unit tests or adjust `coverage_threshold` for this project.",
    },
    "approval_timeout": {
        "what": "No approval for {environment} was recorded before {expires_at}.",
        "next": "Start a new run and ask a `{role}` to approve it with `sfpromoter approve`.",
    },
    "approval_rejected": {
        "what": "Deployment to {environment} was rejected by {approver}.",
        "next": "Review the rejection comment and start a new run once it is addressed.",
    },
    "run_in_progress": {
        "what": "Another run holds the lock file {path}.",
        "next": "Wait for the active run to finish or remove the stale lock file.",
    },
    "deploy_failed": {
        "what": "Deployment to {environment} failed.",
        "next": "Inspect `artifacts/deploy-result.json` for component and test failures.",
    },
}


def actionable_error(code: str, **kwargs) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
