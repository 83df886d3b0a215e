"""Shared constants for sfpromoter."""

CREDENTIAL_FILE_MODE = 0o600

ORG_ALIAS = "target-org"
DEFAULT_SOURCE_DIR = "force-app"
DEFAULT_COVERAGE_THRESHOLD = 75.0
DEFAULT_DEPLOY_WAIT_MINUTES = 60
DEFAULT_APPROVAL_TIMEOUT_HOURS = 24.0
DEFAULT_APPROVAL_POLL_SECONDS = 30.0

OUTPUT_DIR = "output"
REPORTS_DIR = "reports"
ARTIFACTS_DIR = "artifacts"
COVERAGE_DIR = "coverage"
TEST_RESULTS_DIR = "test-results"
BACKUP_DIR = "backup"
WORK_DIR = ".sfpromoter"

STAGE_INITIALIZE = "initialize"
STAGE_SETUP_DEPENDENCIES = "setup_dependencies"
STAGE_CODE_QUALITY = "code_quality"
STAGE_UNIT_TESTS = "unit_tests"
STAGE_AUTHORIZE_ORG = "authorize_org"
STAGE_VALIDATE_DEPLOYMENT = "validate_deployment"
STAGE_ORG_TESTS = "org_tests"
STAGE_APPROVAL = "approval"
STAGE_DEPLOY = "deploy"
STAGE_POST_DEPLOYMENT = "post_deployment_validation"
STAGE_UPDATE_TICKET = "update_tracking_ticket"
STAGE_RELEASE_TAG = "create_release_tag"
