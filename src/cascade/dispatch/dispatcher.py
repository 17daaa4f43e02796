"""
Orchestration Dispatcher.

Consumes DispatchEvents and drives the cascade:

    IDLE -> SCOPE_DETERMINED -> BUILDING -> ARTIFACTS_COLLECTED -> RELEASED -> IDLE

Any failure in a required repository returns the machine to IDLE without
reaching RELEASED, so a partial release is never published. After RELEASED
a 'deployment' repository_dispatch is sent to the governance app.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..build import Artifact
from ..config import Platform, Variant
from ..errors import DispatchError, GitHubAPIError
from ..pipeline import Pipeline, PipelineResult
from ..release import GitHubClient, ReleasePublisher
from .events import DispatchEvent, EventKind

DEPLOYMENT_EVENT_TYPE = "deployment"
DEFAULT_TERMINAL_REPO = "blvm-commons"


class DispatcherState(Enum):
    """Dispatcher state machine states."""

    IDLE = "idle"
    SCOPE_DETERMINED = "scope_determined"
    BUILDING = "building"
    ARTIFACTS_COLLECTED = "artifacts_collected"
    RELEASED = "released"


ALLOWED_TRANSITIONS: Dict[DispatcherState, Set[DispatcherState]] = {
    DispatcherState.IDLE: {DispatcherState.SCOPE_DETERMINED},
    DispatcherState.SCOPE_DETERMINED: {DispatcherState.BUILDING, DispatcherState.IDLE},
    DispatcherState.BUILDING: {DispatcherState.ARTIFACTS_COLLECTED, DispatcherState.IDLE},
    DispatcherState.ARTIFACTS_COLLECTED: {DispatcherState.RELEASED, DispatcherState.IDLE},
    DispatcherState.RELEASED: {DispatcherState.IDLE},
}


class ScopePolicy(Enum):
    """How much a single-repository event rebuilds.

    AFFECTED rebuilds the trigger and everything downstream of it; FULL
    rebuilds all repositories for every event.
    """

    AFFECTED = "affected"
    FULL = "full"

    @classmethod
    def from_string(cls, value: str) -> "ScopePolicy":
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise DispatchError(f"Invalid scope policy: {value!r}. Expected affected or full") from e


def nightly_tag(now: datetime, commit_sha: str) -> str:
    """Deterministic prerelease tag, e.g. 'nightly-20261019-abc1234'."""
    tag = f"nightly-{now.strftime('%Y%m%d')}"
    if commit_sha:
        tag += f"-{commit_sha[:7]}"
    return tag


@dataclass
class DispatchOutcome:
    """What one handled event produced."""

    event: DispatchEvent
    scope: List[str]
    version_tag: Optional[str] = None
    release_id: Optional[int] = None
    released: bool = False
    notified: bool = False
    skipped: List[str] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    states: List[DispatcherState] = field(default_factory=list)


class Dispatcher:
    """
    Event-driven state machine over the build pipeline.

    Example usage:
        dispatcher = Dispatcher(pipeline, publisher, notifier=GitHubClient())
        event = DispatchEvent.from_payload({"event_type": "build_protocol", "sha": sha})
        outcome = dispatcher.handle(event)
    """

    def __init__(
        self,
        pipeline: Pipeline,
        publisher: Optional[ReleasePublisher] = None,
        notifier: Optional[GitHubClient] = None,
        variants: Sequence[Variant] = (Variant.BASE, Variant.EXPERIMENTAL),
        platforms: Sequence[Platform] = (Platform.NATIVE, Platform.WINDOWS),
        scope_policy: ScopePolicy = ScopePolicy.AFFECTED,
        terminal_repo: str = DEFAULT_TERMINAL_REPO,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        notify_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize dispatcher.

        Args:
            pipeline: Build/collect/package pipeline
            publisher: Release publisher; None stops after ARTIFACTS_COLLECTED (dry run)
            notifier: GitHub client used for the deployment notification
            variants: Variants built for every event
            platforms: Platforms built for every event
            scope_policy: How much a single-repository event rebuilds
            terminal_repo: Repository notified after a release
            clock: Current-time source for the nightly tag
            notify_attempts: Attempts for the deployment notification
            sleep: Sleep function between notification attempts
        """
        self.pipeline = pipeline
        self.registry = pipeline.registry
        self.publisher = publisher
        self.notifier = notifier
        self.variants = list(variants)
        self.platforms = list(platforms)
        self.scope_policy = scope_policy
        self.terminal_repo = terminal_repo
        self.clock = clock
        self.notify_attempts = max(1, notify_attempts)
        self.sleep = sleep
        self._state = DispatcherState.IDLE
        self._history: List[DispatcherState] = []

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def history(self) -> List[DispatcherState]:
        """States visited while handling the most recent event."""
        return list(self._history)

    def _transition(self, new_state: DispatcherState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise DispatchError(
                f"Illegal dispatcher transition {self._state.value} -> {new_state.value}"
            )
        logging.info(f"Dispatcher: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self._history.append(new_state)

    def compute_scope(self, event: DispatchEvent) -> List[str]:
        """Repositories to rebuild for an event, in build order."""
        if event.event_kind in (EventKind.BUILD_ALL, EventKind.NIGHTLY):
            return self.registry.topo_order()
        if self.scope_policy is ScopePolicy.FULL:
            return self.registry.topo_order()
        trigger = self.registry.get(event.trigger_repo).name
        return self.registry.topo_order({trigger} | self.registry.dependents_of(trigger))

    def handle(self, event: DispatchEvent, now: Optional[datetime] = None) -> DispatchOutcome:
        """Run one event through the state machine.

        Args:
            event: Event to handle
            now: Time used for the release tag (defaults to the clock)

        Returns:
            DispatchOutcome describing what was built and released

        Raises:
            DispatchError: If the dispatcher is busy
            BuildFailure, ArtifactIntegrityError, PublishError: Propagated after
                the machine is reset to IDLE
        """
        if self._state is not DispatcherState.IDLE:
            raise DispatchError(f"Dispatcher is busy ({self._state.value})")

        self._history = [DispatcherState.IDLE]
        try:
            return self._handle(event, now)
        finally:
            if self._state is not DispatcherState.IDLE:
                self._transition(DispatcherState.IDLE)

    def _handle(self, event: DispatchEvent, now: Optional[datetime]) -> DispatchOutcome:
        scope = self.compute_scope(event)
        outcome = DispatchOutcome(event=event, scope=scope, states=self._history)
        logging.info(f"Event {event.event_type} ({event.short_sha or 'no sha'}) -> scope {scope}")
        self._transition(DispatcherState.SCOPE_DETERMINED)

        self._transition(DispatcherState.BUILDING)
        results: List[PipelineResult] = []
        for variant in self.variants:
            results.append(self.pipeline.build(scope, variant, self.platforms))

        outcome.version_tag = nightly_tag(now or self.clock(), event.commit_sha)
        outcome.artifacts = [a for r in results for a in r.artifacts]
        outcome.skipped = sorted({name for r in results for name in r.skipped})
        self._transition(DispatcherState.ARTIFACTS_COLLECTED)

        if self.publisher is None:
            logging.info("No publisher configured; stopping before release")
            return outcome

        manifest = self.pipeline.package(outcome.artifacts, outcome.version_tag)
        notes = (
            f"Automated prerelease for {event.event_type} at {event.commit_sha or 'latest'}."
        )
        if outcome.skipped:
            notes += f"\n\nSkipped optional repositories: {', '.join(outcome.skipped)}"
        outcome.release_id = self.publisher.publish(
            manifest, notes, prerelease=True, target_commitish=event.commit_sha or None
        )
        outcome.released = True
        self._transition(DispatcherState.RELEASED)

        outcome.notified = self._notify(outcome)
        return outcome

    def _notify(self, outcome: DispatchOutcome) -> bool:
        """Tell the governance app a new release exists.

        The release is already public at this point, so a failed
        notification is reported but does not undo it.
        """
        if self.notifier is None:
            return False
        payload = {
            "version_tag": outcome.version_tag,
            "sha": outcome.event.commit_sha,
            "trigger": outcome.event.event_type,
        }
        for attempt in range(self.notify_attempts):
            try:
                self.notifier.repository_dispatch(
                    DEPLOYMENT_EVENT_TYPE, payload, repo=self.terminal_repo
                )
                logging.info(f"Sent {DEPLOYMENT_EVENT_TYPE} event to {self.terminal_repo}")
                return True
            except GitHubAPIError as e:
                if attempt < self.notify_attempts - 1:
                    self.sleep(2.0 * (2 ** attempt))
                else:
                    logging.error(
                        f"Failed to notify {self.terminal_repo} of {outcome.version_tag}: {e}"
                    )
        return False
