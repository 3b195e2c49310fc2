from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List

from pydantic import BaseModel, ConfigDict, Field

from stagehand.utils.diagnostics import ProvisionDiagnostic


class ProvisionState(str, Enum):
    """States of one provisioning run, from install through transient configuration."""

    IDLE = "idle"
    INSTALLING = "installing"
    RESOLVING = "resolving"
    PLACED = "placed"
    CONFIGURING_STARTING = "configuring_starting"
    CONFIGURING_PROBING = "configuring_probing"
    CONFIGURING_ACTIVE = "configuring_active"
    CONFIGURING_STOPPED = "configuring_stopped"
    DONE = "done"
    INSTALL_FAILED = "install_failed"
    DOWNLOAD_FAILED = "download_failed"
    SERVICE_START_FAILED = "service_start_failed"
    PROBE_FAILED = "probe_failed"
    CONFIGURE_FAILED = "configure_failed"


TERMINAL_STATES: FrozenSet[ProvisionState] = frozenset(
    {
        ProvisionState.DONE,
        ProvisionState.INSTALL_FAILED,
        ProvisionState.DOWNLOAD_FAILED,
        ProvisionState.SERVICE_START_FAILED,
        ProvisionState.PROBE_FAILED,
        ProvisionState.CONFIGURE_FAILED,
    }
)

# Terminal states that still leave a usable build.
RECOVERABLE_STATES: FrozenSet[ProvisionState] = frozenset(
    {
        ProvisionState.DONE,
        ProvisionState.SERVICE_START_FAILED,
    }
)

_TRANSITIONS: Dict[ProvisionState, FrozenSet[ProvisionState]] = {
    ProvisionState.IDLE: frozenset({ProvisionState.INSTALLING}),
    ProvisionState.INSTALLING: frozenset({ProvisionState.RESOLVING, ProvisionState.INSTALL_FAILED}),
    ProvisionState.RESOLVING: frozenset({ProvisionState.PLACED, ProvisionState.DOWNLOAD_FAILED}),
    ProvisionState.PLACED: frozenset({ProvisionState.DONE, ProvisionState.CONFIGURING_STARTING}),
    ProvisionState.CONFIGURING_STARTING: frozenset(
        {ProvisionState.CONFIGURING_PROBING, ProvisionState.SERVICE_START_FAILED}
    ),
    ProvisionState.CONFIGURING_PROBING: frozenset(
        {ProvisionState.CONFIGURING_ACTIVE, ProvisionState.PROBE_FAILED}
    ),
    ProvisionState.CONFIGURING_ACTIVE: frozenset({ProvisionState.CONFIGURING_STOPPED}),
    ProvisionState.CONFIGURING_STOPPED: frozenset({ProvisionState.DONE, ProvisionState.CONFIGURE_FAILED}),
}


class ProvisionResult(BaseModel):
    """Outcome of one provisioning run."""

    model_config = ConfigDict(extra="forbid")

    state: ProvisionState
    exit_code: int
    configured: bool = False
    artifact_path: str | None = None
    diagnostics: List[ProvisionDiagnostic] = Field(default_factory=list)


def exit_code_for(state: ProvisionState) -> int:
    """Map a terminal state to the process exit code."""
    if state not in TERMINAL_STATES:
        raise ValueError(f"State is not terminal: {state}")
    return 0 if state in RECOVERABLE_STATES else 1


def transition_provision_state(current: ProvisionState, target: ProvisionState) -> ProvisionState:
    """Validate and return the next provisioning state.

    This state machine defines the ordering contract of the lifecycle
    controller: start before probe, probe before configure, configure before
    stop. Invalid transitions raise ValueError.
    """

    if current in TERMINAL_STATES:
        raise ValueError(f"Invalid provision transition from terminal state: {current} -> {target}")

    allowed = _TRANSITIONS.get(current)
    if allowed is None:
        raise ValueError(f"Unknown provision state: {current}")

    if target not in allowed:
        raise ValueError(f"Invalid provision transition: {current} -> {target}")

    return target
