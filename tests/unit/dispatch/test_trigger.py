"""Unit tests for WorkflowTrigger."""

from unittest.mock import Mock

import pytest

from cascade.dispatch import WorkflowTrigger
from cascade.errors import DispatchError


class TestWorkflowTrigger:
    """Test suite for WorkflowTrigger."""

    @pytest.fixture
    def client(self):
        client = Mock()
        client.slug = "BTCDecoded/bllvm"
        client.get_workflow_id.return_value = 42
        client.list_workflow_runs.return_value = [
            {"id": 1, "display_title": "Prerelease v0.1.0"},
            {"id": 2, "display_title": "Prerelease v0.2.0-prerelease"},
        ]
        client.get_run.side_effect = [
            {"status": "queued"},
            {"status": "in_progress"},
            {"status": "in_progress"},
            {"status": "completed", "conclusion": "success", "html_url": "https://github.com/run/2"},
        ]
        client.get_release_by_tag.return_value = {
            "assets": [
                {"name": "bllvm-v0.2.0-prerelease-linux-x86_64.tar.gz"},
                {"name": "SHA256SUMS-experimental-linux-x86_64"},
                {"name": "notes.txt"},
            ]
        }
        return client

    def make_trigger(self, client, statuses=None, sleeps=None):
        return WorkflowTrigger(
            client,
            sleep=(sleeps.append if sleeps is not None else lambda _: None),
            on_status=(lambda s, c: statuses.append((s, c))) if statuses is not None else None,
        )

    def test_run_success(self, client):
        statuses = []
        report = self.make_trigger(client, statuses=statuses).run("v0.2.0-prerelease", platform="linux")

        assert report.run_id == 2
        assert report.succeeded
        assert report.html_url == "https://github.com/run/2"
        assert report.release_assets == [
            "bllvm-v0.2.0-prerelease-linux-x86_64.tar.gz",
            "SHA256SUMS-experimental-linux-x86_64",
        ]
        assert statuses == [("queued", None), ("in_progress", None), ("completed", "success")]
        client.dispatch_workflow.assert_called_once_with(
            42, "main", {"version_tag": "v0.2.0-prerelease", "platform": "linux"}
        )

    def test_poll_interval(self, client):
        sleeps = []
        self.make_trigger(client, sleeps=sleeps).run("v0.2.0-prerelease")
        assert sleeps == [10, 30, 30, 30]

    def test_failed_run(self, client):
        client.get_run.side_effect = [{"status": "completed", "conclusion": "failure", "html_url": "u"}]
        report = self.make_trigger(client).run("v0.2.0-prerelease")
        assert not report.succeeded
        assert report.conclusion == "failure"
        assert report.release_assets == []
        client.get_release_by_tag.assert_not_called()

    def test_run_not_found(self, client):
        client.list_workflow_runs.return_value = []
        sleeps = []
        report = self.make_trigger(client, sleeps=sleeps).run("v9.9.9")
        assert report.run_id is None
        assert client.list_workflow_runs.call_count == 5
        assert sleeps == [10, 5, 5, 5, 5]

    def test_missing_workflow(self, client):
        client.get_workflow_id.return_value = None
        with pytest.raises(DispatchError, match="prerelease.yml"):
            self.make_trigger(client).trigger("v1")
