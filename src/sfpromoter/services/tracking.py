"""Tracking ticket updates driven by the latest commit message."""

import os
import re
from typing import Any, Dict, Optional

import requests

from sfpromoter.errors import ConfigurationError
from sfpromoter.models import Environment

TICKET_PATTERN = re.compile(r"\b([A-Z][A-Z0-9]+-\d+)\b")


def extract_ticket_id(message: str) -> Optional[str]:
    match = TICKET_PATTERN.search(message or "")
    return match.group(1) if match else None


def target_ticket_state(environment: Environment) -> str:
    if environment == Environment.DEV:
        return "In Progress"
    if environment == Environment.QA:
        return "Testing"
    if environment == Environment.UAT:
        return "UAT"
    if environment == Environment.PRODUCTION:
        return "Done"
    raise ConfigurationError(f"No ticket state is mapped for {environment}.")


class TrackingService:
    """Posts ticket transitions and comments to the issue tracker.

    Without a tracker URL the update is only logged.
    """

    def __init__(
        self,
        logger,
        console,
        tracker_url: Optional[str] = None,
        token: Optional[str] = None,
        requests_module=requests,
        timeout_seconds: float = 20.0,
    ):
        self.logger = logger
        self.console = console
        self.tracker_url = tracker_url.rstrip("/") if tracker_url else None
        self.token = token or os.getenv("TRACKER_TOKEN")
        self.requests = requests_module
        self.timeout_seconds = timeout_seconds

    def update_ticket(
        self,
        commit_message: str,
        environment: Environment,
        build_description: str,
    ) -> Optional[Dict[str, Any]]:
        ticket_id = extract_ticket_id(commit_message)
        if not ticket_id:
            self.logger.info("No ticket id found in the latest commit message.")
            return None

        state = target_ticket_state(environment)
        comment = f"Deployed to {environment.value}: {build_description}"
        update = {"ticket": ticket_id, "state": state, "comment": comment, "posted": False}

        if not self.tracker_url:
            self.console.print(f"[dim]Ticket {ticket_id} -> {state} (tracker not configured)[/dim]")
            self.logger.info("Would move %s to '%s' and comment: %s", ticket_id, state, comment)
            return update

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        issue_url = f"{self.tracker_url}/rest/api/2/issue/{ticket_id}"
        try:
            response = self.requests.post(
                f"{issue_url}/transitions",
                json={"transition": {"name": state}},
                headers=headers,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            response = self.requests.post(
                f"{issue_url}/comment",
                json={"body": comment},
                headers=headers,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except self.requests.RequestException as exc:
            self.logger.warning("Could not update ticket %s: %s", ticket_id, exc)
            update["error"] = str(exc)
            return update

        update["posted"] = True
        self.console.print(f"[green]Ticket {ticket_id} moved to {state}.[/green]")
        return update
