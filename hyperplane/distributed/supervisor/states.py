"""
Per-session supervisor state machine.

States and events are closed sets of frozen dataclasses. ``advance`` is
a pure function of (state, event): it performs no I/O and either
returns the next state or raises.

    Idle        --Assign(e > epoch)-->          Assigning
    Assigning   --Started-->                    Running
    Assigning   --Faulted(retry)-->             Assigning (attempt + 1)
    Running     --Faulted(retry)-->             Assigning (attempt + 1)
    Running     --Stable-->                     Running (attempt 0)
    Assigning   --Faulted(no retry)-->          Errored
    Running     --Faulted(no retry)-->          Errored
    Assigning/Running/Errored --Drain-->        Draining
    any         --TornDown-->                   Terminated
    any         --Assign(e > epoch)-->          Assigning
    any         --Superseded(e > epoch)-->      Terminated(e)
"""

from __future__ import annotations

from dataclasses import dataclass

from hyperplane.distributed.errors import EpochStaleError, InvalidTransitionError
from hyperplane.distributed.models import SessionSpec, SessionState
from hyperplane.distributed.runtime import WorkloadHandle


@dataclass(slots=True, frozen=True)
class Idle:
    session_id: str
    epoch: int = 0


@dataclass(slots=True, frozen=True)
class Assigning:
    session_id: str
    epoch: int
    spec: SessionSpec
    attempt: int = 0


@dataclass(slots=True, frozen=True)
class Running:
    session_id: str
    epoch: int
    spec: SessionSpec
    handle: WorkloadHandle
    backend_address: str | None = None
    attempt: int = 0


@dataclass(slots=True, frozen=True)
class Draining:
    session_id: str
    epoch: int
    spec: SessionSpec
    reason: str
    handle: WorkloadHandle | None = None


@dataclass(slots=True, frozen=True)
class Errored:
    session_id: str
    epoch: int
    spec: SessionSpec
    cause: str
    attempt: int = 0


@dataclass(slots=True, frozen=True)
class Terminated:
    session_id: str
    epoch: int


SupervisorState = Idle | Assigning | Running | Draining | Errored | Terminated


@dataclass(slots=True, frozen=True)
class Assign:
    epoch: int
    spec: SessionSpec


@dataclass(slots=True, frozen=True)
class Started:
    handle: WorkloadHandle


@dataclass(slots=True, frozen=True)
class Stable:
    """The workload stayed up long enough to earn back its restarts."""


@dataclass(slots=True, frozen=True)
class Faulted:
    cause: str
    retry: bool


@dataclass(slots=True, frozen=True)
class Drain:
    reason: str
    epoch: int = 0


@dataclass(slots=True, frozen=True)
class TornDown:
    pass


@dataclass(slots=True, frozen=True)
class Superseded:
    epoch: int


SupervisorEvent = Assign | Started | Stable | Faulted | Drain | TornDown | Superseded


PHASES: dict[type, str] = {
    Idle: "idle",
    Assigning: "assigning",
    Running: "running",
    Draining: "draining",
    Errored: "errored",
    Terminated: "terminated",
}

REPORTED_STATES: dict[type, SessionState] = {
    Idle: SessionState.PENDING,
    Assigning: SessionState.ASSIGNING,
    Running: SessionState.RUNNING,
    Draining: SessionState.DRAINING,
    Errored: SessionState.ERROR,
    Terminated: SessionState.TERMINATED,
}


def phase_of(state: SupervisorState) -> str:
    return PHASES[type(state)]


def reported_state(state: SupervisorState) -> SessionState:
    return REPORTED_STATES[type(state)]


def handle_of(state: SupervisorState) -> WorkloadHandle | None:
    if isinstance(state, (Running, Draining)):
        return state.handle

    return None


def holds_workload(state: SupervisorState) -> bool:
    """True for states whose epoch should have a live workload."""
    return isinstance(state, (Assigning, Running))


def advance(state: SupervisorState, event: SupervisorEvent) -> SupervisorState:
    match event:
        case Assign(epoch=epoch, spec=spec):
            if epoch <= state.epoch:
                raise EpochStaleError(state.session_id, epoch, state.epoch)

            return Assigning(session_id=state.session_id, epoch=epoch, spec=spec)

        case Superseded(epoch=epoch):
            if epoch <= state.epoch:
                raise EpochStaleError(state.session_id, epoch, state.epoch)

            return Terminated(session_id=state.session_id, epoch=epoch)

        case Started(handle=handle):
            if not isinstance(state, Assigning):
                raise InvalidTransitionError(phase_of(state), "started")

            if handle.epoch != state.epoch:
                raise EpochStaleError(state.session_id, handle.epoch, state.epoch)

            return Running(
                session_id=state.session_id,
                epoch=state.epoch,
                spec=state.spec,
                handle=handle,
                backend_address=handle.address,
                attempt=state.attempt,
            )

        case Stable():
            if not isinstance(state, Running):
                raise InvalidTransitionError(phase_of(state), "stable")

            return Running(
                session_id=state.session_id,
                epoch=state.epoch,
                spec=state.spec,
                handle=state.handle,
                backend_address=state.backend_address,
            )

        case Faulted(cause=cause, retry=retry):
            if not isinstance(state, (Assigning, Running)):
                raise InvalidTransitionError(phase_of(state), "faulted")

            if retry:
                return Assigning(
                    session_id=state.session_id,
                    epoch=state.epoch,
                    spec=state.spec,
                    attempt=state.attempt + 1,
                )

            return Errored(
                session_id=state.session_id,
                epoch=state.epoch,
                spec=state.spec,
                cause=cause,
                attempt=state.attempt,
            )

        case Drain(reason=reason, epoch=epoch):
            if epoch not in (0, state.epoch):
                raise EpochStaleError(state.session_id, epoch, state.epoch)

            if isinstance(state, Draining):
                return state

            if not isinstance(state, (Assigning, Running, Errored)):
                raise InvalidTransitionError(phase_of(state), "drain")

            return Draining(
                session_id=state.session_id,
                epoch=state.epoch,
                spec=state.spec,
                reason=reason,
                handle=handle_of(state),
            )

        case TornDown():
            return Terminated(session_id=state.session_id, epoch=state.epoch)

    raise InvalidTransitionError(phase_of(state), type(event).__name__)
