import os
import subprocess
import sys

import pytest

from sfpromoter.errors import PipelineError
from sfpromoter.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def _service():
    return FileSystemService(logger=DummyLogger(), console=DummyConsole())


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_write_private_file_restricts_permissions(tmp_path):
    path = tmp_path / "tmp" / "auth.txt"

    _service().write_private_file(str(path), "force://secret", 0o600)

    assert path.read_text(encoding="utf-8") == "force://secret"
    assert os.stat(path).st_mode & 0o777 == 0o600


def test_lock_rejects_second_holder(tmp_path):
    service = _service()
    lock = tmp_path / "run.lock"

    service.acquire_lock(str(lock), "run-1")

    with pytest.raises(PipelineError, match="Another run holds the lock file"):
        service.acquire_lock(str(lock), "run-2")

    service.release_lock(str(lock))
    service.acquire_lock(str(lock), "run-3")
    assert lock.read_text(encoding="utf-8") == f"run-3\n{os.getpid()}\n"


def test_remove_file_and_cleanup_dir_ignore_missing_paths(tmp_path):
    service = _service()

    assert service.remove_file(str(tmp_path / "missing")) is False
    service.cleanup_dir(str(tmp_path / "missing-dir"))


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process probing")
def test_lock_of_exited_process_is_taken_over(tmp_path):
    exited = subprocess.Popen([sys.executable, "-c", "pass"])
    exited.wait()
    lock = tmp_path / "run.lock"
    lock.write_text(f"run-1\n{exited.pid}\n", encoding="utf-8")

    _service().acquire_lock(str(lock), "run-2")

    assert lock.read_text(encoding="utf-8") == f"run-2\n{os.getpid()}\n"


def test_lock_of_resumed_run_is_taken_over(tmp_path):
    service = _service()
    lock = tmp_path / "run.lock"
    service.acquire_lock(str(lock), "run-1")

    service.acquire_lock(str(lock), "run-1", reclaimable_owner="run-1")

    with pytest.raises(PipelineError, match="Another run holds the lock file"):
        service.acquire_lock(str(lock), "run-2", reclaimable_owner="run-2")


def test_lock_without_process_id_is_kept(tmp_path):
    lock = tmp_path / "run.lock"
    lock.write_text("run-1\n", encoding="utf-8")

    with pytest.raises(PipelineError, match="Another run holds the lock file"):
        _service().acquire_lock(str(lock), "run-2")
