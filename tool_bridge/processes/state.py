"""
Tool Server Health States.

State Machine:
    STARTING: Process spawned, waiting for the ping handshake
    RUNNING: Handshake succeeded, calls are accepted
    UNRESPONSIVE: Probe failed or the process exited unexpectedly
    RESTARTING: Waiting out the backoff delay before respawning
    STOPPED: Explicitly shut down; terminal for the handle
    FAILED: Restart budget exhausted; sticky until an explicit restart

    STARTING -> RUNNING -> UNRESPONSIVE -> RESTARTING -> STARTING ...
    any state -> STOPPED
"""

from enum import Enum


class HealthState(str, Enum):
    """Health state of one tool server handle."""

    STARTING = "starting"
    RUNNING = "running"
    UNRESPONSIVE = "unresponsive"
    RESTARTING = "restarting"
    STOPPED = "stopped"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[HealthState, frozenset[HealthState]] = {
    HealthState.STARTING: frozenset(
        {HealthState.RUNNING, HealthState.RESTARTING, HealthState.FAILED, HealthState.STOPPED}
    ),
    # RESTARTING from RUNNING is an explicit restart request
    HealthState.RUNNING: frozenset(
        {HealthState.UNRESPONSIVE, HealthState.RESTARTING, HealthState.STOPPED}
    ),
    HealthState.UNRESPONSIVE: frozenset(
        {HealthState.RESTARTING, HealthState.FAILED, HealthState.STOPPED}
    ),
    HealthState.RESTARTING: frozenset({HealthState.STARTING, HealthState.STOPPED}),
    HealthState.FAILED: frozenset({HealthState.RESTARTING, HealthState.STOPPED}),
    HealthState.STOPPED: frozenset(),
}


class InvalidStateTransitionError(Exception):
    """Raised when a handle is asked to make a transition the table forbids."""

    def __init__(self, server: str, from_state: HealthState, to_state: HealthState) -> None:
        self.server = server
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"InvalidStateTransitionError[{server}]: "
            f"{from_state.value} -> {to_state.value} is not allowed"
        )


def can_transition(from_state: HealthState, to_state: HealthState) -> bool:
    """Check a transition against the table."""
    return to_state in ALLOWED_TRANSITIONS[from_state]
