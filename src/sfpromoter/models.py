"""Shared domain models for sfpromoter."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from .errors import ConfigurationError
from .errors_catalog import actionable_error


class Environment(str, Enum):
    DEV = "DEV"
    QA = "QA"
    UAT = "UAT"
    PRODUCTION = "PRODUCTION"

    @classmethod
    def parse(cls, value) -> "Environment":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ConfigurationError(
                actionable_error("unknown_environment", environment=value)
            ) from None

    @property
    def requires_approval(self) -> bool:
        return self in (Environment.UAT, Environment.PRODUCTION)


class TestLevel(str, Enum):
    NO_TEST_RUN = "NoTestRun"
    RUN_SPECIFIED_TESTS = "RunSpecifiedTests"
    RUN_LOCAL_TESTS = "RunLocalTests"
    RUN_ALL_TESTS_IN_ORG = "RunAllTestsInOrg"

    @classmethod
    def parse(cls, value) -> "TestLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise ConfigurationError(
                actionable_error("unknown_test_level", test_level=value)
            ) from None


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class RunParameters:
    """Inputs of a single pipeline execution. Never mutated after creation."""

    environment: Environment
    run_tests: bool = True
    skip_code_analysis: bool = False
    deploy_only: bool = False
    test_level: TestLevel = TestLevel.RUN_LOCAL_TESTS
    version_tag: Optional[str] = None
    specified_tests: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RunContext:
    """Runtime identifiers and paths isolated per execution."""

    run_id: str
    org_alias: str
    work_dir: str
    reports_dir: str
    artifacts_dir: str
    test_results_dir: str
    backup_dir: str


@dataclass(frozen=True)
class PlannedStage:
    name: str
    title: str
    run: bool
    reason: str = ""
