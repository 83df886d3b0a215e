import pytest

from sfpromoter.errors import ConfigurationError
from sfpromoter.services.config_loader import ConfigLoader


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / ".sfpromoter.yml"
    config_file.write_text(
        "environment: QA\ntest_level: RunLocalTests\ncoverage_threshold: 82.5\n",
        encoding="utf-8",
    )

    loaded = ConfigLoader().load(str(config_file))

    assert loaded["environment"] == "QA"
    assert loaded["test_level"] == "RunLocalTests"
    assert loaded["coverage_threshold"] == 82.5


def test_config_loader_returns_empty_for_empty_file(tmp_path):
    config_file = tmp_path / ".sfpromoter.yml"
    config_file.write_text("", encoding="utf-8")

    assert ConfigLoader().load(str(config_file)) == {}


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / ".sfpromoter.yml"
    config_file.write_text("unknown_key: true\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
        ConfigLoader().load(str(config_file))


def test_config_loader_rejects_non_mapping(tmp_path):
    config_file = tmp_path / ".sfpromoter.yml"
    config_file.write_text("- DEV\n- QA\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="YAML mapping"):
        ConfigLoader().load(str(config_file))


def test_config_loader_reports_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Config file not found"):
        ConfigLoader().load(str(tmp_path / "missing.yml"))
