import json

from click.testing import CliRunner

import sfpromoter.cli as cli_module
from sfpromoter.services.state import StateService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


def _fake_pipeline(captured):
    class FakePipeline:
        VALID_ENVIRONMENTS = cli_module.PromotionPipeline.VALID_ENVIRONMENTS
        VALID_TEST_LEVELS = cli_module.PromotionPipeline.VALID_TEST_LEVELS

        def __init__(self, **kwargs):
            captured.update(kwargs)

        def run(self):
            return 0

    return FakePipeline


def test_cli_uses_config_and_allows_cli_override(tmp_path, monkeypatch):
    config_file = tmp_path / "promote.yml"
    config_file.write_text(
        "environment: QA\n"
        "test_level: RunAllTestsInOrg\n"
        "coverage_threshold: 80\n"
        "deploy_only: true\n",
        encoding="utf-8",
    )

    captured = {}
    monkeypatch.setattr(cli_module, "PromotionPipeline", _fake_pipeline(captured))

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        [
            "run",
            "--config",
            str(config_file),
            "--environment",
            "uat",
            "--coverage-threshold",
            "90",
            "--no-run-tests",
        ],
    )

    assert result.exit_code == 0, result.output
    assert captured["environment"] == "UAT"
    assert captured["test_level"] == "RunAllTestsInOrg"
    assert captured["coverage_threshold"] == 90.0
    assert captured["deploy_only"] is True
    assert captured["run_tests"] is False
    assert captured["backup_before_deploy"] is True


def test_cli_uses_default_config_file_when_present(tmp_path, monkeypatch):
    (tmp_path / ".sfpromoter.yml").write_text(
        "environment: PRODUCTION\n" "version_tag: v2.0.0\n" "specified_tests: AccountTest, LeadTest\n",
        encoding="utf-8",
    )

    captured = {}
    monkeypatch.setattr(cli_module, "PromotionPipeline", _fake_pipeline(captured))
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["run"])

    assert result.exit_code == 0, result.output
    assert captured["environment"] == "PRODUCTION"
    assert captured["version_tag"] == "v2.0.0"
    assert captured["specified_tests"] == ["AccountTest", "LeadTest"]


def test_cli_requires_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli_module.main, ["run"])

    assert result.exit_code != 0
    assert "--environment" in result.output


def test_cli_rejects_unknown_config_keys(tmp_path):
    config_file = tmp_path / "promote.yml"
    config_file.write_text("environment: DEV\nslack_channel: '#deploys'\n", encoding="utf-8")

    result = CliRunner().invoke(cli_module.main, ["run", "--config", str(config_file)])

    assert result.exit_code != 0
    assert "Unknown configuration keys: slack_channel" in result.output


def _pending_state(tmp_path, environment="PRODUCTION", role="release-manager"):
    state_file = tmp_path / "run-state.json"
    service = StateService(str(state_file), logger=DummyLogger())
    state, _ = service.initialize({"environment": environment}, {"run_id": "abc"}, resume=False)
    service.set_approval(
        state,
        {
            "status": "pending",
            "environment": environment,
            "required_role": role,
            "requested_at": "2026-01-01T00:00:00+00:00",
            "expires_at": "2026-01-02T00:00:00+00:00",
            "approver": None,
            "comment": None,
            "decided_at": None,
        },
    )
    return state_file


def test_approve_command_records_decision(tmp_path):
    state_file = _pending_state(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        [
            "approve",
            "--state-file",
            str(state_file),
            "--approver",
            "maria",
            "--role",
            "release-manager",
            "--comment",
            "go",
        ],
    )

    assert result.exit_code == 0, result.output
    approval = json.loads(state_file.read_text(encoding="utf-8"))["approval"]
    assert approval["status"] == "approved"
    assert approval["approver"] == "maria"
    assert approval["comment"] == "go"


def test_approve_command_rejects_wrong_role(tmp_path):
    state_file = _pending_state(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        ["approve", "--state-file", str(state_file), "--approver", "sam", "--role", "tech-lead"],
    )

    assert result.exit_code != 0
    assert "release-manager" in result.output
    approval = json.loads(state_file.read_text(encoding="utf-8"))["approval"]
    assert approval["status"] == "pending"


def test_reject_command_records_decision(tmp_path):
    state_file = _pending_state(tmp_path, environment="UAT", role="tech-lead")

    result = CliRunner().invoke(
        cli_module.main,
        ["reject", "--state-file", str(state_file), "--approver", "sam", "--role", "tech-lead"],
    )

    assert result.exit_code == 0, result.output
    approval = json.loads(state_file.read_text(encoding="utf-8"))["approval"]
    assert approval["status"] == "rejected"


def test_status_command_reports_missing_state(tmp_path):
    result = CliRunner().invoke(
        cli_module.main,
        ["status", "--state-file", str(tmp_path / "missing.json")],
    )

    assert result.exit_code != 0
    assert "No run state found" in result.output


def test_status_command_prints_approval(tmp_path):
    state_file = _pending_state(tmp_path)

    result = CliRunner().invoke(cli_module.main, ["status", "--state-file", str(state_file)])

    assert result.exit_code == 0, result.output
    assert "pending" in result.output
