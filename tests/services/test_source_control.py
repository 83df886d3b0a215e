import subprocess

import pytest

from sfpromoter.errors import ConfigurationError
from sfpromoter.services.source_control import SourceControlService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def _service():
    return SourceControlService(logger=DummyLogger(), console=DummyConsole(), remote="upstream")


@pytest.mark.parametrize("tag", ["v1.2.3", "1.2.3", "V2.0.0rc1"])
def test_validate_version_tag_accepts_versions(tag):
    assert _service().validate_version_tag(f" {tag} ") == tag


@pytest.mark.parametrize("tag", ["release-final", "v", "vX.Y"])
def test_validate_version_tag_rejects_non_versions(tag):
    with pytest.raises(ConfigurationError, match="Invalid version tag"):
        _service().validate_version_tag(tag)


def test_describe_checkout_and_tool_versions():
    outputs = {
        ("git", "rev-parse", "HEAD"): (0, "0123abcd\n"),
        ("git", "rev-parse", "--abbrev-ref"): (0, "main\n"),
        ("sf", "--version"): (127, ""),
    }

    def run_cmd(cmd, check=True, capture_output=False):
        returncode, stdout = (0, f"{cmd[0]} 1.0\n")
        for prefix, value in outputs.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                returncode, stdout = value
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    service = _service()

    assert service.describe_checkout(run_cmd) == {"commit": "0123abcd", "branch": "main"}
    versions = service.tool_versions(run_cmd)
    assert versions["node"] == "node 1.0"
    assert versions["sf"] == "unavailable"


def test_create_release_tag_pushes_to_remote():
    commands = []

    def run_cmd(cmd, check=True, capture_output=False):
        commands.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    _service().create_release_tag("v1.2.3", "Release v1.2.3", run_cmd)

    assert commands == [
        ["git", "tag", "-a", "v1.2.3", "-m", "Release v1.2.3"],
        ["git", "push", "upstream", "v1.2.3"],
    ]
