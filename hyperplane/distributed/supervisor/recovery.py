"""
Rebuilds supervisor state from durable log records and produces the
minimal record set used to compact the log.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hyperplane.distributed.ledger import (
    AssignRecord,
    PurgeRecord,
    Record,
    StateRecord,
)
from hyperplane.distributed.models import SessionSpec
from hyperplane.distributed.runtime import WorkloadHandle

from .states import (
    Assigning,
    Draining,
    Errored,
    Running,
    SupervisorState,
    Terminated,
    phase_of,
)


@dataclass(slots=True)
class RecoveredState:
    states: dict[str, SupervisorState] = field(default_factory=dict)
    purged: dict[str, int] = field(default_factory=dict)

    def high_water(self, session_id: str) -> int:
        state = self.states.get(session_id)
        if state is not None:
            return state.epoch

        return self.purged.get(session_id, 0)


def _restore(record: StateRecord, spec: SessionSpec | None) -> SupervisorState | None:
    handle = None
    if record.workload_id is not None:
        handle = WorkloadHandle(
            workload_id=record.workload_id,
            session_id=record.session_id,
            epoch=record.epoch,
            address=record.backend_address,
        )

    if record.phase == "terminated":
        return Terminated(session_id=record.session_id, epoch=record.epoch)

    if spec is None:
        return None

    if record.phase == "assigning":
        return Assigning(
            session_id=record.session_id,
            epoch=record.epoch,
            spec=spec,
            attempt=record.attempt,
        )

    if record.phase == "running" and handle is not None:
        return Running(
            session_id=record.session_id,
            epoch=record.epoch,
            spec=spec,
            handle=handle,
            backend_address=record.backend_address,
            attempt=record.attempt,
        )

    if record.phase == "draining":
        return Draining(
            session_id=record.session_id,
            epoch=record.epoch,
            spec=spec,
            reason=record.cause or "draining",
            handle=handle,
        )

    if record.phase == "errored":
        return Errored(
            session_id=record.session_id,
            epoch=record.epoch,
            spec=spec,
            cause=record.cause or "unknown",
            attempt=record.attempt,
        )

    return None


def rebuild(records: list[Record]) -> RecoveredState:
    """
    Fold records in append order. Records for an epoch below the
    session's current epoch are ignored.
    """
    recovered = RecoveredState()
    specs: dict[tuple[str, int], SessionSpec] = {}

    for record in records:
        session_id = record.session_id
        if record.epoch < recovered.high_water(session_id):
            continue

        match record:
            case AssignRecord():
                specs[(session_id, record.epoch)] = record.spec
                recovered.purged.pop(session_id, None)
                recovered.states[session_id] = Assigning(
                    session_id=session_id,
                    epoch=record.epoch,
                    spec=record.spec,
                )

            case StateRecord():
                state = _restore(record, specs.get((session_id, record.epoch)))
                if state is not None:
                    recovered.purged.pop(session_id, None)
                    recovered.states[session_id] = state

            case PurgeRecord():
                recovered.states.pop(session_id, None)
                recovered.purged[session_id] = record.epoch

    return recovered


def state_record(state: SupervisorState, cause: str | None = None) -> StateRecord:
    workload_id: str | None = None
    backend_address: str | None = None
    attempt = 0

    if isinstance(state, Running):
        workload_id = state.handle.workload_id
        backend_address = state.backend_address
        attempt = state.attempt

    elif isinstance(state, Draining):
        cause = cause or state.reason
        if state.handle is not None:
            workload_id = state.handle.workload_id
            backend_address = state.handle.address

    elif isinstance(state, Errored):
        cause = cause or state.cause
        attempt = state.attempt

    elif isinstance(state, Assigning):
        attempt = state.attempt

    return StateRecord(
        session_id=state.session_id,
        epoch=state.epoch,
        phase=phase_of(state),
        attempt=attempt,
        cause=cause,
        workload_id=workload_id,
        backend_address=backend_address,
    )


def snapshot(
    drone_id: str,
    states: dict[str, SupervisorState],
    purged: dict[str, int],
) -> list[Record]:
    records: list[Record] = []

    for session_id in sorted(states):
        state = states[session_id]
        spec = getattr(state, "spec", None)
        if spec is not None:
            records.append(
                AssignRecord(
                    session_id=session_id,
                    epoch=state.epoch,
                    drone_id=drone_id,
                    spec=spec,
                )
            )

        if not isinstance(state, Assigning) or state.attempt > 0:
            records.append(state_record(state))

    for session_id in sorted(purged):
        records.append(PurgeRecord(session_id=session_id, epoch=purged[session_id]))

    return records
