"""Manual approval gate backed by the persisted run-state record.

The pipeline records a pending approval in the run-state file and polls it.
Approvers signal their decision from another process (``sfpromoter approve``
or ``sfpromoter reject``), which writes into the same file. The record
survives restarts, so a run resumed with ``--resume`` keeps waiting on the
same request until it expires.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sfpromoter.errors import (
    ApprovalRejectedError,
    ApprovalTimeoutError,
    ConfigurationError,
    PipelineError,
)
from sfpromoter.errors_catalog import actionable_error
from sfpromoter.models import Environment

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


def required_role(environment: Environment) -> str:
    if environment == Environment.UAT:
        return "tech-lead"
    if environment == Environment.PRODUCTION:
        return "release-manager"
    raise ConfigurationError(f"No approval is configured for {environment.value}.")


class ApprovalService:
    """Requests, waits for and records approval decisions."""

    def __init__(
        self,
        state_service,
        logger,
        console,
        timeout_hours: float = 24.0,
        poll_seconds: float = 30.0,
        time_module=time,
    ):
        self.state_service = state_service
        self.logger = logger
        self.console = console
        self.timeout_hours = timeout_hours
        self.poll_seconds = poll_seconds
        self.time = time_module

    def request(self, state: Dict[str, Any], environment: Environment) -> Dict[str, Any]:
        existing = self.state_service.get_approval(state)
        if existing and existing.get("environment") == environment.value and existing.get("status") != REJECTED:
            self.logger.info("Reusing approval request from %s.", existing.get("requested_at"))
            return existing

        requested_at = self._now()
        approval = {
            "status": PENDING,
            "environment": environment.value,
            "required_role": required_role(environment),
            "requested_at": requested_at.isoformat(),
            "expires_at": (requested_at + timedelta(hours=self.timeout_hours)).isoformat(),
            "approver": None,
            "comment": None,
            "decided_at": None,
        }
        self.state_service.set_approval(state, approval)
        return approval

    def wait(self, state: Dict[str, Any], environment: Environment) -> Dict[str, Any]:
        approval = self.request(state, environment)
        role = approval["required_role"]
        self.console.print(
            f"[bold yellow]Waiting for a {role} to approve deployment to {environment.value} "
            f"(expires {approval['expires_at']}).[/bold yellow]"
        )
        self.console.print(
            f"[dim]Approve with: sfpromoter approve --state-file {self.state_service.state_file} "
            f"--approver <name> --role {role}[/dim]"
        )

        expires_at = datetime.fromisoformat(approval["expires_at"])
        while True:
            current = self._load_approval()
            status = current.get("status")

            if status == APPROVED:
                state["approval"] = current
                self.console.print(f"[green]Approved by {current.get('approver')}.[/green]")
                self.logger.info("Deployment to %s approved by %s", environment.value, current.get("approver"))
                return current

            if status == REJECTED:
                state["approval"] = current
                raise ApprovalRejectedError(
                    actionable_error(
                        "approval_rejected",
                        environment=environment.value,
                        approver=current.get("approver") or "unknown",
                    )
                )

            if self._now() >= expires_at:
                current["status"] = REJECTED
                current["comment"] = "timed out"
                current["decided_at"] = self._now().isoformat()
                self.state_service.set_approval(state, current)
                raise ApprovalTimeoutError(
                    actionable_error(
                        "approval_timeout",
                        environment=environment.value,
                        expires_at=approval["expires_at"],
                        role=role,
                    )
                )

            self.time.sleep(self.poll_seconds)

    def decide(self, approver: str, role: str, approved: bool, comment: Optional[str] = None) -> Dict[str, Any]:
        """Records an approver's decision on the pending request."""
        state = self.state_service.load()
        if state is None:
            raise PipelineError(f"No run state found at {self.state_service.state_file}.")

        approval = self.state_service.get_approval(state)
        if not approval or approval.get("status") != PENDING:
            raise PipelineError("There is no pending approval request for this run.")

        if role != approval["required_role"]:
            raise PipelineError(
                f"Deployment to {approval['environment']} must be approved by a "
                f"{approval['required_role']}, not a {role}."
            )

        approval["status"] = APPROVED if approved else REJECTED
        approval["approver"] = approver
        approval["comment"] = comment
        approval["decided_at"] = self._now().isoformat()
        self.state_service.set_approval(state, approval)
        return approval

    def _load_approval(self) -> Dict[str, Any]:
        state = self.state_service.load() or {}
        return dict(self.state_service.get_approval(state) or {})

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)
