"""Filesystem helpers for sfpromoter."""

import logging
import os
import shutil
import sys
from typing import Optional

from rich.console import Console

from sfpromoter.errors import PipelineError
from sfpromoter.errors_catalog import actionable_error


def _process_alive(pid: int) -> bool:
    # signal 0 terminates the target on Windows, so never probe there
    if sys.platform == "win32" or pid == os.getpid():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except Exception as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def write_private_file(self, path: str, content: str, mode: int):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            file_obj.write(content)
        self.set_permissions(path, mode)

    def remove_file(self, path: str) -> bool:
        if not os.path.exists(path):
            return False
        try:
            os.remove(path)
            self.logger.debug("Removed file: %s", path)
            return True
        except OSError as exc:
            message = f"Warning: Could not remove {path}: {exc}"
            self.console.print(f"[yellow]{message}[/yellow]")
            self.logger.warning(message)
            return False

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except Exception as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)

    def acquire_lock(self, path: str, owner: str, reclaimable_owner: Optional[str] = None):
        """Creates the run lock holding the owner id and this process id.

        An existing lock is taken over when its process is gone, or when it
        belongs to ``reclaimable_owner`` (the run being resumed).
        """
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError as exc:
            if not self._is_stale_lock(path, reclaimable_owner):
                raise PipelineError(actionable_error("run_in_progress", path=path)) from exc
            self.logger.warning("Removing stale lock file %s", path)
            self.remove_file(path)
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError as retry_exc:
                raise PipelineError(actionable_error("run_in_progress", path=path)) from retry_exc
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            file_obj.write(f"{owner}\n{os.getpid()}\n")

    def _is_stale_lock(self, path: str, reclaimable_owner: Optional[str]) -> bool:
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                lines = file_obj.read().split()
        except OSError as exc:
            self.logger.warning("Could not read lock file %s: %s", path, exc)
            return False

        lock_owner = lines[0] if lines else None
        if reclaimable_owner and lock_owner == reclaimable_owner:
            return True
        if len(lines) < 2 or not lines[1].isdigit():
            return False
        return not _process_alive(int(lines[1]))

    def release_lock(self, path: str):
        self.remove_file(path)
