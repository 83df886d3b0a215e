"""Run manifest: the write-once stage result log of a pipeline run."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class ManifestService:
    """Collects stage results and artifacts and writes the run manifest JSON."""

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "RUNNING",
            "description": None,
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "parameters": {},
            "stages": [],
            "warnings": [],
            "artifacts": {},
            "error": None,
        }

    @property
    def stages(self) -> List[Dict[str, Any]]:
        return self.manifest["stages"]

    def start_run(self, run_id: str, parameters: Dict[str, Any], resume: bool = False):
        """Starts a fresh manifest, or continues the manifest of the run being resumed."""
        previous = self._load() if resume else None
        if previous is not None and previous.get("run_id") == run_id:
            self.manifest.update(previous)
            self.manifest["finished_at"] = None
            self.manifest["duration_seconds"] = None
            self.manifest["error"] = None
        else:
            self.manifest["started_at"] = self._now()
        self.manifest["run_id"] = run_id
        self.manifest["status"] = "RUNNING"
        self.manifest["parameters"] = parameters
        self.write()

    def _load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.manifest_file):
            return None
        try:
            with open(self.manifest_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, ValueError) as exc:
            self.logger.warning("Could not read manifest file '%s': %s", self.manifest_file, exc)
            return None
        return data if isinstance(data, dict) else None

    @property
    def warnings(self) -> List[str]:
        return self.manifest["warnings"]

    def stage_status(self, step_name: str) -> Optional[str]:
        for step in reversed(self.manifest["stages"]):
            if step["name"] == step_name:
                return step["status"]
        return None

    def set_description(self, description: str):
        self.manifest["description"] = description
        self.write()

    def step_started(self, step_name: str, details: Optional[Dict[str, Any]] = None):
        self.manifest["stages"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "details": details or {},
                "error": None,
            }
        )
        self.write()

    def step_finished(
        self,
        step_name: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        for step in reversed(self.manifest["stages"]):
            if step["name"] == step_name and step["status"] == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["error"] = error
                if details:
                    step["details"].update(details)
                started_at = datetime.fromisoformat(step["started_at"])
                finished_at = datetime.fromisoformat(step["finished_at"])
                step["duration_seconds"] = (finished_at - started_at).total_seconds()
                break
        self.write()

    def step_skipped(self, step_name: str, reason: str):
        now = self._now()
        self.manifest["stages"].append(
            {
                "name": step_name,
                "status": "skipped",
                "started_at": now,
                "finished_at": now,
                "duration_seconds": 0.0,
                "details": {"reason": reason},
                "error": None,
            }
        )
        self.write()

    def add_warning(self, message: str):
        self.manifest["warnings"].append(message)
        self.write()

    def add_artifact(self, key: str, value: str):
        self.manifest["artifacts"][key] = value
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.manifest["status"] = status
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            started_at = datetime.fromisoformat(self.manifest["started_at"])
            finished_at = datetime.fromisoformat(self.manifest["finished_at"])
            self.manifest["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.manifest["error"] = error
        self.write()

    def write(self):
        manifest_dir = os.path.dirname(self.manifest_file) or "."
        os.makedirs(manifest_dir, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix="run-manifest-", suffix=".json", dir=manifest_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.manifest, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
