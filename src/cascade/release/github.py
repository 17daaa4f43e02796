"""GitHub REST API client for releases and cross-repository dispatch.

Covers the calls the pipeline makes:
    - releases: get by tag, create, update, list/delete/upload assets
    - repository_dispatch: cascade triggers and deployment notifications
    - workflow_dispatch: triggering and monitoring the prerelease workflow
"""

import mimetypes
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from ..errors import GitHubAPIError

API_URL = "https://api.github.com"
UPLOAD_URL = "https://uploads.github.com"
DEFAULT_ORG = "BTCDecoded"
DEFAULT_RELEASE_REPO = "bllvm"


class GitHubClient:
    """Thin wrapper over requests.Session for one owner/repository.

    The token comes from the argument or the GITHUB_TOKEN environment variable.
    """

    def __init__(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.owner = owner or os.environ.get("CASCADE_GITHUB_ORG", DEFAULT_ORG)
        self.repo = repo or os.environ.get("CASCADE_RELEASE_REPO", DEFAULT_RELEASE_REPO)
        self.token = token if token is not None else os.environ.get("GITHUB_TOKEN", "")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/vnd.github.v3+json"})
        if self.token:
            self.session.headers.update({"Authorization": f"token {self.token}"})

    @classmethod
    def from_slug(cls, slug: str, **kwargs) -> "GitHubClient":
        """Create a client from an 'owner/repo' string."""
        owner, _, repo = slug.partition("/")
        if not owner or not repo:
            raise ValueError(f"Expected owner/repo, got {slug!r}")
        return cls(owner=owner, repo=repo, **kwargs)

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    def _repo_url(self, path: str = "", repo: Optional[str] = None) -> str:
        return f"{API_URL}/repos/{self.owner}/{repo or self.repo}{path}"

    def _request(
        self,
        method: str,
        url: str,
        expected: Sequence[int] = (200,),
        **kwargs: Any,
    ) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise GitHubAPIError(f"{method} {url} failed: {e}") from e
        if response.status_code not in expected:
            raise GitHubAPIError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        return response

    # Releases

    def get_release_by_tag(self, tag: str) -> Optional[Dict[str, Any]]:
        """Release for a tag, or None if it does not exist."""
        response = self._request(
            "GET", self._repo_url(f"/releases/tags/{tag}"), expected=(200, 404)
        )
        if response.status_code == 404:
            return None
        return response.json()

    def create_release(
        self,
        tag: str,
        name: Optional[str] = None,
        body: str = "",
        prerelease: bool = True,
        target_commitish: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "tag_name": tag,
            "name": name or tag,
            "body": body,
            "prerelease": prerelease,
            "draft": False,
        }
        if target_commitish:
            payload["target_commitish"] = target_commitish
        return self._request(
            "POST", self._repo_url("/releases"), expected=(201,), json=payload
        ).json()

    def update_release(self, release_id: int, **fields: Any) -> Dict[str, Any]:
        return self._request(
            "PATCH", self._repo_url(f"/releases/{release_id}"), json=fields
        ).json()

    def list_assets(self, release_id: int) -> List[Dict[str, Any]]:
        return self._request(
            "GET",
            self._repo_url(f"/releases/{release_id}/assets"),
            params={"per_page": 100},
        ).json()

    def delete_asset(self, asset_id: int) -> None:
        self._request(
            "DELETE", self._repo_url(f"/releases/assets/{asset_id}"), expected=(204, 404)
        )

    def upload_asset(self, release_id: int, path: Path, name: Optional[str] = None) -> Dict[str, Any]:
        """Upload a file as a release asset."""
        path = Path(path)
        name = name or path.name
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        url = f"{UPLOAD_URL}/repos/{self.owner}/{self.repo}/releases/{release_id}/assets"
        with open(path, "rb") as f:
            return self._request(
                "POST",
                url,
                expected=(201,),
                params={"name": name},
                headers={"Content-Type": content_type},
                data=f,
            ).json()

    def asset_download_request(self, asset: Dict[str, Any]) -> Tuple[str, Dict[str, str]]:
        """URL and headers for downloading an asset's bytes."""
        headers = {"Accept": "application/octet-stream"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return asset["url"], headers

    # Dispatch

    def repository_dispatch(
        self,
        event_type: str,
        client_payload: Optional[Dict[str, Any]] = None,
        repo: Optional[str] = None,
    ) -> None:
        """Send a repository_dispatch event (GitHub answers 204 No Content)."""
        self._request(
            "POST",
            self._repo_url("/dispatches", repo=repo),
            expected=(204,),
            json={"event_type": event_type, "client_payload": client_payload or {}},
        )

    def get_workflow_id(self, workflow_file: str) -> Optional[int]:
        data = self._request("GET", self._repo_url("/actions/workflows")).json()
        for workflow in data.get("workflows", []):
            if workflow.get("path") == f".github/workflows/{workflow_file}":
                return workflow["id"]
        return None

    def dispatch_workflow(self, workflow_id: int, ref: str, inputs: Dict[str, str]) -> None:
        self._request(
            "POST",
            self._repo_url(f"/actions/workflows/{workflow_id}/dispatches"),
            expected=(204,),
            json={"ref": ref, "inputs": inputs},
        )

    def list_workflow_runs(self, workflow_id: int, per_page: int = 5) -> List[Dict[str, Any]]:
        data = self._request(
            "GET",
            self._repo_url(f"/actions/workflows/{workflow_id}/runs"),
            params={"per_page": per_page},
        ).json()
        return data.get("workflow_runs", [])

    def get_run(self, run_id: int) -> Dict[str, Any]:
        return self._request("GET", self._repo_url(f"/actions/runs/{run_id}")).json()
