"""Configuration loader for sfpromoter."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from sfpromoter.errors import ConfigurationError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "environment",
        "run_tests",
        "skip_code_analysis",
        "deploy_only",
        "test_level",
        "specified_tests",
        "version_tag",
        "coverage_threshold",
        "source_dir",
        "backup_before_deploy",
        "deploy_wait_minutes",
        "approval_timeout_hours",
        "approval_poll_seconds",
        "command_timeout",
        "tracker_url",
        "build_id",
        "build_url",
        "git_remote",
        "verbose",
        "log_file",
        "resume",
        "state_file",
        "dry_run",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigurationError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigurationError(f"Unknown configuration keys: {unknown_list}")

        return parsed
