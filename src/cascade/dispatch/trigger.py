"""Prerelease workflow trigger.

Triggers the release repository's prerelease workflow through
workflow_dispatch, finds the run it started, and polls it to completion.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..errors import DispatchError
from ..release import GitHubClient

DEFAULT_WORKFLOW_FILE = "prerelease.yml"


@dataclass
class WorkflowRunReport:
    """Final state of a triggered workflow run."""

    run_id: Optional[int]
    status: str
    conclusion: Optional[str] = None
    html_url: str = ""
    release_assets: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "completed" and self.conclusion == "success"


class WorkflowTrigger:
    """Starts and monitors the prerelease workflow.

    Example usage:
        trigger = WorkflowTrigger(GitHubClient())
        report = trigger.run("v0.2.0-prerelease", platform="linux")
    """

    def __init__(
        self,
        client: GitHubClient,
        workflow_file: str = DEFAULT_WORKFLOW_FILE,
        start_delay: float = 10,
        find_attempts: int = 5,
        find_interval: float = 5,
        poll_interval: float = 30,
        sleep: Callable[[float], None] = time.sleep,
        on_status: Optional[Callable[[str, Optional[str]], None]] = None,
    ):
        self.client = client
        self.workflow_file = workflow_file
        self.start_delay = start_delay
        self.find_attempts = max(1, find_attempts)
        self.find_interval = find_interval
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.on_status = on_status

    def trigger(self, version_tag: str, platform: str = "linux", ref: str = "main") -> int:
        """Dispatch the workflow.

        Returns:
            Workflow id

        Raises:
            DispatchError: If the workflow file does not exist
            GitHubAPIError: If GitHub rejects the dispatch
        """
        workflow_id = self.client.get_workflow_id(self.workflow_file)
        if workflow_id is None:
            raise DispatchError(f"Workflow {self.workflow_file} not found in {self.client.slug}")
        self.client.dispatch_workflow(
            workflow_id, ref, {"version_tag": version_tag, "platform": platform}
        )
        logging.info(f"Triggered {self.workflow_file} (id={workflow_id}) for {version_tag}")
        return workflow_id

    def find_run(self, workflow_id: int, version_tag: str) -> Optional[int]:
        """Locate the run for a version tag, giving up after find_attempts."""
        for attempt in range(self.find_attempts):
            for run in self.client.list_workflow_runs(workflow_id):
                if version_tag in (run.get("display_title") or ""):
                    return run["id"]
            if attempt < self.find_attempts - 1:
                logging.info(f"Run not visible yet (attempt {attempt + 1}/{self.find_attempts})")
                self.sleep(self.find_interval)
        return None

    def wait(self, run_id: int) -> Dict:
        """Poll a run until its status is 'completed'."""
        last_status = None
        while True:
            run = self.client.get_run(run_id)
            status = run.get("status")
            if status != last_status:
                if self.on_status:
                    self.on_status(status, run.get("conclusion"))
                last_status = status
            if status == "completed":
                return run
            self.sleep(self.poll_interval)

    def release_assets(self, version_tag: str) -> List[str]:
        release = self.client.get_release_by_tag(version_tag)
        if release is None:
            return []
        return [
            asset["name"]
            for asset in release.get("assets", [])
            if "bllvm" in asset["name"] or "experimental" in asset["name"]
        ]

    def run(self, version_tag: str, platform: str = "linux", ref: str = "main") -> WorkflowRunReport:
        """Trigger, locate, and monitor a prerelease workflow run."""
        workflow_id = self.trigger(version_tag, platform, ref)
        self.sleep(self.start_delay)

        run_id = self.find_run(workflow_id, version_tag)
        if run_id is None:
            logging.warning("Workflow triggered but its run could not be located")
            return WorkflowRunReport(run_id=None, status="unknown")

        run = self.wait(run_id)
        report = WorkflowRunReport(
            run_id=run_id,
            status=run.get("status", ""),
            conclusion=run.get("conclusion"),
            html_url=run.get("html_url", ""),
        )
        if report.succeeded:
            report.release_assets = self.release_assets(version_tag)
        return report
