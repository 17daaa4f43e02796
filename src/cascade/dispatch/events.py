"""
Typed dispatch events for cross-repository triggering.

Upstream repositories send a repository_dispatch payload when their CI
finishes:

    {"event_type": "build_protocol", "ref": "refs/heads/main",
     "sha": "abc123...", "repo": "BTCDecoded/blvm-protocol"}

event_type is 'build_<repo>' for a single repository, 'build_all' for a full
rebuild, or 'nightly' for the timer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..config import RepositoryRegistry, short_repo_name
from ..errors import ConfigurationError, DispatchError


class EventKind(Enum):
    """What kind of rebuild an event asks for."""

    BUILD_ONE = "build_one"
    BUILD_ALL = "build_all"
    NIGHTLY = "nightly"


@dataclass(frozen=True)
class DispatchEvent:
    """A signal that triggers a scoped rebuild. Consumed once.

    Attributes:
        trigger_repo: Repository that changed (None for build_all/nightly)
        commit_sha: Commit that triggered the event
        event_kind: build_one, build_all or nightly
        ref: Git ref of the triggering push
    """

    trigger_repo: Optional[str]
    commit_sha: str
    event_kind: EventKind
    ref: str = "refs/heads/main"

    def __post_init__(self):
        if self.event_kind is EventKind.BUILD_ONE and not self.trigger_repo:
            raise DispatchError("build_one events require a trigger repository")

    @property
    def event_type(self) -> str:
        if self.event_kind is EventKind.BUILD_ONE:
            return f"build_{short_repo_name(self.trigger_repo)}"
        return self.event_kind.value

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:7]

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        registry: Optional[RepositoryRegistry] = None,
    ) -> "DispatchEvent":
        """Parse a dispatch payload.

        'build_<name>' accepts short ('protocol') and full ('blvm-protocol')
        repository names.

        Raises:
            DispatchError: If event_type is missing or unrecognized
            ConfigurationError: If the named repository is unknown
        """
        registry = registry or RepositoryRegistry.default()
        event_type = str(payload.get("event_type", "")).strip()
        sha = str(payload.get("sha") or "")
        ref = str(payload.get("ref") or "refs/heads/main")

        if event_type == EventKind.BUILD_ALL.value:
            return cls(None, sha, EventKind.BUILD_ALL, ref)
        if event_type == EventKind.NIGHTLY.value:
            return cls(None, sha, EventKind.NIGHTLY, ref)
        if event_type.startswith("build_") and len(event_type) > len("build_"):
            name = event_type[len("build_"):].replace("_", "-")
            try:
                repo = registry.get(name)
            except ConfigurationError as e:
                raise ConfigurationError(
                    f"Unknown repository in event type {event_type!r}"
                ) from e
            return cls(repo.name, sha, EventKind.BUILD_ONE, ref)
        raise DispatchError(f"Unrecognized dispatch event type: {event_type!r}")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "ref": self.ref,
            "sha": self.commit_sha,
            "repo": self.trigger_repo,
        }
