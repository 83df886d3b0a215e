"""Source control and toolchain helpers for sfpromoter."""

from typing import Callable, Dict, List, Optional

from packaging.version import InvalidVersion, Version

from sfpromoter.errors import ConfigurationError
from sfpromoter.errors_catalog import actionable_error


class SourceControlService:
    """Wraps the git and toolchain invocations of the pipeline."""

    TOOL_VERSION_COMMANDS = {
        "git": ["git", "--version"],
        "node": ["node", "--version"],
        "npm": ["npm", "--version"],
        "sf": ["sf", "--version"],
    }

    def __init__(self, logger, console, remote: str = "origin"):
        self.logger = logger
        self.console = console
        self.remote = remote

    def describe_checkout(self, run_cmd: Callable) -> Dict[str, Optional[str]]:
        commit = run_cmd(["git", "rev-parse", "HEAD"], check=False, capture_output=True)
        branch = run_cmd(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            check=False,
            capture_output=True,
        )
        return {
            "commit": self._first_line(commit),
            "branch": self._first_line(branch),
        }

    @staticmethod
    def _first_line(result) -> Optional[str]:
        if result.returncode != 0:
            return None
        lines = (result.stdout or "").strip().splitlines()
        return lines[0] if lines else None

    def tool_versions(self, run_cmd: Callable) -> Dict[str, str]:
        versions = {}
        for tool, cmd in self.TOOL_VERSION_COMMANDS.items():
            result = run_cmd(cmd, check=False, capture_output=True)
            versions[tool] = self._first_line(result) or "unavailable"
            self.logger.info("%s: %s", tool, versions[tool])
        return versions

    def latest_commit_message(self, run_cmd: Callable) -> str:
        result = run_cmd(["git", "log", "-1", "--pretty=%B"], check=False, capture_output=True)
        if result.returncode != 0:
            return ""
        return (result.stdout or "").strip()

    @staticmethod
    def validate_version_tag(tag: str) -> str:
        clean_tag = tag.strip()
        try:
            Version(clean_tag[1:] if clean_tag[:1] in ("v", "V") else clean_tag)
        except InvalidVersion:
            raise ConfigurationError(actionable_error("invalid_version_tag", tag=tag)) from None
        return clean_tag

    def create_release_tag(self, tag: str, message: str, run_cmd: Callable) -> List[str]:
        self.console.print(f"[blue]Creating release tag {tag}...[/blue]")
        tag_cmd = ["git", "tag", "-a", tag, "-m", message]
        push_cmd = ["git", "push", self.remote, tag]
        run_cmd(tag_cmd, capture_output=True)
        run_cmd(push_cmd, capture_output=True)
        self.console.print(f"[green]Tag {tag} pushed to {self.remote}.[/green]")
        return [tag_cmd, push_cmd]
