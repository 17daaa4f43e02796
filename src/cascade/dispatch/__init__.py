"""Cross-repository orchestration: dispatch events, the dispatcher state machine, workflow triggers."""

from .dispatcher import (
    DispatchOutcome,
    Dispatcher,
    DispatcherState,
    ScopePolicy,
    nightly_tag,
)
from .events import DispatchEvent, EventKind
from .trigger import WorkflowRunReport, WorkflowTrigger

__all__ = [
    "DispatchOutcome",
    "Dispatcher",
    "DispatcherState",
    "ScopePolicy",
    "nightly_tag",
    "DispatchEvent",
    "EventKind",
    "WorkflowRunReport",
    "WorkflowTrigger",
]
