import pytest

from sfpromoter.errors import (
    ApprovalRejectedError,
    ApprovalTimeoutError,
    ConfigurationError,
    PipelineError,
)
from sfpromoter.models import Environment
from sfpromoter.services.approval import ApprovalService, required_role
from sfpromoter.services.state import StateService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class DecideOnSleep:
    def __init__(self, service, role, approved=True):
        self.service = service
        self.role = role
        self.approved = approved
        self.calls = 0

    def sleep(self, _seconds):
        self.calls += 1
        if self.calls == 2:
            self.service.decide("alice", self.role, approved=self.approved, comment="checked")


def _setup(tmp_path, timeout_hours=24.0):
    state_service = StateService(str(tmp_path / "run-state.json"), logger=DummyLogger())
    state, _ = state_service.initialize({"environment": "UAT"}, {"run_id": "abc"}, resume=False)
    service = ApprovalService(
        state_service=state_service,
        logger=DummyLogger(),
        console=DummyConsole(),
        timeout_hours=timeout_hours,
        poll_seconds=0,
    )
    return service, state


def test_required_roles():
    assert required_role(Environment.UAT) == "tech-lead"
    assert required_role(Environment.PRODUCTION) == "release-manager"

    with pytest.raises(ConfigurationError):
        required_role(Environment.DEV)


def test_request_persists_pending_record(tmp_path):
    service, state = _setup(tmp_path)

    approval = service.request(state, Environment.PRODUCTION)

    stored = service.state_service.load()["approval"]
    assert stored == approval
    assert stored["status"] == "pending"
    assert stored["required_role"] == "release-manager"


def test_wait_blocks_until_approved(tmp_path):
    service, state = _setup(tmp_path)
    service.time = DecideOnSleep(service, "tech-lead")

    approval = service.wait(state, Environment.UAT)

    assert service.time.calls == 2
    assert approval["status"] == "approved"
    assert approval["approver"] == "alice"
    assert state["approval"]["status"] == "approved"


def test_wait_raises_on_rejection(tmp_path):
    service, state = _setup(tmp_path)
    service.time = DecideOnSleep(service, "tech-lead", approved=False)

    with pytest.raises(ApprovalRejectedError, match="rejected by alice"):
        service.wait(state, Environment.UAT)


def test_wait_times_out(tmp_path):
    service, state = _setup(tmp_path, timeout_hours=0)

    with pytest.raises(ApprovalTimeoutError, match="No approval for UAT"):
        service.wait(state, Environment.UAT)

    assert service.state_service.load()["approval"]["comment"] == "timed out"


def test_pending_request_is_reused_after_restart(tmp_path):
    service, state = _setup(tmp_path)
    first = service.request(state, Environment.UAT)

    reloaded = service.state_service.load()
    second = service.request(reloaded, Environment.UAT)

    assert second["requested_at"] == first["requested_at"]


def test_decide_requires_matching_role(tmp_path):
    service, state = _setup(tmp_path)
    service.request(state, Environment.PRODUCTION)

    with pytest.raises(PipelineError, match="must be approved by a release-manager"):
        service.decide("bob", "tech-lead", approved=True)

    assert service.state_service.load()["approval"]["status"] == "pending"


def test_decide_requires_pending_request(tmp_path):
    service, _ = _setup(tmp_path)

    with pytest.raises(PipelineError, match="no pending approval"):
        service.decide("bob", "tech-lead", approved=True)
