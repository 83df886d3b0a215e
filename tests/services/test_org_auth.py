import subprocess
from pathlib import Path

import pytest

from sfpromoter.errors import ConfigurationError, PipelineError
from sfpromoter.models import Environment
from sfpromoter.services.filesystem import FileSystemService
from sfpromoter.services.org_auth import OrgAuthService, resolve_credential_id


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def _service(secrets):
    filesystem = FileSystemService(logger=DummyLogger(), console=DummyConsole())
    return OrgAuthService(
        logger=DummyLogger(),
        console=DummyConsole(),
        filesystem_service=filesystem,
        secrets=secrets,
    )


@pytest.mark.parametrize(
    "environment, credential_id",
    [
        (Environment.DEV, "SFDX_AUTH_URL_DEV"),
        (Environment.QA, "SFDX_AUTH_URL_QA"),
        (Environment.UAT, "SFDX_AUTH_URL_UAT"),
        (Environment.PRODUCTION, "SFDX_AUTH_URL_PROD"),
    ],
)
def test_resolve_credential_id(environment, credential_id):
    assert resolve_credential_id(environment) == credential_id


def test_resolve_credential_id_rejects_unknown_environment():
    with pytest.raises(ConfigurationError, match="Unknown environment"):
        resolve_credential_id("STAGING")


def test_authorize_logs_in_with_transient_credential_file(tmp_path):
    service = _service({"SFDX_AUTH_URL_QA": "force://qa"})
    commands = []
    contents = []

    def run_cmd(cmd, check=True, capture_output=False):
        commands.append(cmd)
        if cmd[:3] == ["sf", "org", "login"]:
            contents.append(Path(cmd[cmd.index("--sfdx-url-file") + 1]).read_text(encoding="utf-8"))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    service.authorize(Environment.QA, "target-org-1", str(tmp_path), run_cmd)

    assert contents == ["force://qa"]
    assert commands[0][:4] == ["sf", "org", "login", "sfdx-url"]
    assert "target-org-1" in commands[0]
    assert list(tmp_path.iterdir()) == []


def test_authorize_removes_credential_file_when_login_fails(tmp_path):
    service = _service({"SFDX_AUTH_URL_DEV": "force://dev"})

    def run_cmd(cmd, check=True, capture_output=False):
        raise PipelineError("Command failed (1): sf org login sfdx-url")

    with pytest.raises(PipelineError):
        service.authorize(Environment.DEV, "target-org-1", str(tmp_path), run_cmd)

    assert list(tmp_path.iterdir()) == []


def test_authorize_requires_credential(tmp_path):
    service = _service({})

    with pytest.raises(PipelineError, match="SFDX_AUTH_URL_PROD"):
        service.authorize(Environment.PRODUCTION, "target-org-1", str(tmp_path), lambda *a, **k: None)


def test_logout_failures_are_tolerated():
    service = _service({})

    def run_cmd(cmd, check=True, capture_output=False):
        raise PipelineError("Required command not found: sf.")

    service.logout("target-org-1", run_cmd)
