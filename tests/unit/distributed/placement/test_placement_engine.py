"""
Tests for PlacementEngine.

Tests:
- Placement on the best eligible drone with epoch 1 and a fence status
- CapacityExceededError when no drone has room
- Acceptance timeouts move the session to another drone with a new epoch
- Exhausted attempts mark the session ERROR and publish the cause
- Reassignment away from a dead drone with a strictly higher epoch
- Stale status reports are ignored, terminal reports release capacity
- Duplicate placement requests are no-ops, purge honours retention
"""

import asyncio
from typing import Callable

import pytest

from hyperplane.distributed.channel import LocalChannel, TypedChannel
from hyperplane.distributed.directory import SessionDirectory
from hyperplane.distributed.errors import (
    AssignmentTimeoutError,
    CapacityExceededError,
    TransportUnavailableError,
)
from hyperplane.distributed.models import (
    SessionAssign,
    SessionDrain,
    SessionSpec,
    SessionState,
    SessionStatus,
)
from hyperplane.distributed.placement import PlacementEngine
from hyperplane.distributed.registry import (
    DroneLiveness,
    DroneRegistry,
    LivenessChange,
)
from hyperplane.distributed.reliability import JitterStrategy, RetryConfig


# =============================================================================
# Test Infrastructure
# =============================================================================


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedDrones:
    """
    Answers assignments on behalf of simulated drones.

    Drones in ``responsive`` report RUNNING for every assignment
    addressed to them, drones in ``failing`` report ERROR, all others
    stay silent.
    """

    def __init__(
        self,
        engine: PlacementEngine,
        responsive: set[str],
        failing: set[str] | None = None,
    ) -> None:
        self.engine = engine
        self.responsive = responsive
        self.failing = failing or set()
        self.assignments: list[SessionAssign] = []
        self._task: asyncio.Task | None = None

    async def start(self, channel: TypedChannel) -> None:
        subscription = await channel.subscribe(SessionAssign)
        self._task = asyncio.create_task(self._run(subscription))

    async def _run(self, subscription) -> None:
        async for assignment in subscription:
            self.assignments.append(assignment)
            drone_id = assignment.drone_id

            if drone_id in self.responsive:
                state, address, cause = SessionState.RUNNING, f"addr-{drone_id}", None
            elif drone_id in self.failing:
                state, address, cause = SessionState.ERROR, None, "image pull failed"
            else:
                continue

            await self.engine.observe_status(
                SessionStatus(
                    session_id=assignment.session_id,
                    epoch=assignment.epoch,
                    state=state,
                    reporter=drone_id,
                    drone_id=drone_id,
                    address=address,
                    cause=cause,
                )
            )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)


def fast_retry() -> RetryConfig:
    return RetryConfig(
        max_attempts=2,
        base_delay=0.001,
        max_delay=0.002,
        jitter=JitterStrategy.NONE,
        retryable_exceptions=(TransportUnavailableError,),
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def make_engine(
    channel: LocalChannel,
    drones: dict[str, int],
    clock: FakeClock | None = None,
    **kwargs,
) -> tuple[PlacementEngine, DroneRegistry, SessionDirectory, TypedChannel]:
    clock = clock or FakeClock()
    registry = DroneRegistry(suspect_after=5.0, dead_after=15.0, forget_after=60.0, clock=clock)
    for drone_id, capacity in drones.items():
        registry.observe_heartbeat(drone_id, capacity=capacity, load=0, address=f"addr-{drone_id}")

    directory = SessionDirectory("sessions.test")
    typed = TypedChannel(channel, "controller-1", "controller", retry=fast_retry())

    options = dict(accept_timeout=0.5, max_attempts=3, terminated_retention=30.0)
    options.update(kwargs)

    engine = PlacementEngine(
        "controller-1",
        registry,
        directory,
        typed,
        clock=clock,
        **options,
    )
    return engine, registry, directory, typed


# =============================================================================
# Placement Tests
# =============================================================================


class TestPlace:
    """Test initial placement."""

    @pytest.mark.asyncio
    async def test_place_assigns_epoch_one_to_least_loaded(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, registry, directory, typed = make_engine(
            local_channel, {"drone-a": 4, "drone-b": 4}
        )
        registry.observe_heartbeat("drone-a", capacity=4, load=2)
        drones = ScriptedDrones(engine, responsive={"drone-a", "drone-b"})
        await drones.start(typed)

        session_id = await engine.place(session_spec, session_id="S1")

        record = engine.get("s1")
        assert session_id == "s1"
        assert record.epoch == 1
        assert record.drone_id == "drone-b"
        assert record.state == SessionState.RUNNING
        assert record.address == "addr-drone-b"
        assert registry.sessions_of("drone-b") == ["s1"]
        assert directory.epoch_of("s1") == 1

        fences = [SessionStatus.load(payload) for payload in local_channel.published_on("session.status")]
        assert [(fence.state, fence.reporter, fence.epoch) for fence in fences] == [
            (SessionState.ASSIGNING, "controller-1", 1)
        ]
        await drones.stop()

    @pytest.mark.asyncio
    async def test_place_without_capacity_raises(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, _, _, _ = make_engine(local_channel, {"drone-a": 1})
        big = SessionSpec(image=session_spec.image, slots=2)

        with pytest.raises(CapacityExceededError):
            await engine.place(big, session_id="s1")

        assert engine.get("s1") is None
        assert local_channel.published == []

    @pytest.mark.asyncio
    async def test_acceptance_timeout_moves_to_next_drone(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, registry, _, typed = make_engine(
            local_channel,
            {"drone-a": 4, "drone-b": 4},
            accept_timeout=0.05,
        )
        drones = ScriptedDrones(engine, responsive={"drone-b"})
        await drones.start(typed)

        await engine.place(session_spec, session_id="s1")

        record = engine.get("s1")
        assert [(a.drone_id, a.epoch) for a in drones.assignments] == [
            ("drone-a", 1),
            ("drone-b", 2),
        ]
        assert record.epoch == 2
        assert record.drone_id == "drone-b"
        assert registry.sessions_of("drone-a") == []
        assert registry.sessions_of("drone-b") == ["s1"]
        await drones.stop()

    @pytest.mark.asyncio
    async def test_drone_error_moves_to_next_drone(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, _, _, typed = make_engine(local_channel, {"drone-a": 4, "drone-b": 4})
        drones = ScriptedDrones(engine, responsive={"drone-b"}, failing={"drone-a"})
        await drones.start(typed)

        await engine.place(session_spec, session_id="s1")

        assert engine.get("s1").drone_id == "drone-b"
        assert engine.get("s1").epoch == 2
        await drones.stop()

    @pytest.mark.asyncio
    async def test_exhausted_attempts_mark_error(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, registry, directory, typed = make_engine(
            local_channel,
            {"drone-a": 4},
            accept_timeout=0.02,
            max_attempts=2,
        )
        statuses = await typed.subscribe(SessionStatus)

        with pytest.raises(AssignmentTimeoutError) as raised:
            await engine.place(session_spec, session_id="s1")

        record = engine.get("s1")
        assert raised.value.attempts == 2
        assert record.state == SessionState.ERROR
        assert record.epoch == 2
        assert registry.sessions_of("drone-a") == []

        received = [await statuses.__anext__() for _ in range(3)]
        error = received[-1]
        assert error.state == SessionState.ERROR
        assert error.epoch == 2
        assert "not accepted" in error.cause
        await statuses.close()

    @pytest.mark.asyncio
    async def test_duplicate_place_is_noop(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, _, _, typed = make_engine(local_channel, {"drone-a": 4})
        drones = ScriptedDrones(engine, responsive={"drone-a"})
        await drones.start(typed)

        await engine.place(session_spec, session_id="s1")
        await engine.place(session_spec, session_id="s1")

        assert len(drones.assignments) == 1
        assert engine.get("s1").epoch == 1
        await drones.stop()

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_place_shares_run(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, _, _, typed = make_engine(local_channel, {"drone-a": 4})
        drones = ScriptedDrones(engine, responsive={"drone-a"})
        await drones.start(typed)

        await asyncio.gather(
            engine.place(session_spec, session_id="s1"),
            engine.place(session_spec, session_id="s1"),
        )

        assert len(drones.assignments) == 1
        await drones.stop()


# =============================================================================
# Reassignment Tests
# =============================================================================


class TestReassign:
    """Test reassignment after drone failure."""

    @pytest.mark.asyncio
    async def test_dead_drone_sessions_get_higher_epoch(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, registry, directory, typed = make_engine(
            local_channel, {"drone-a": 4, "drone-b": 4}
        )
        drones = ScriptedDrones(engine, responsive={"drone-a", "drone-b"})
        await drones.start(typed)

        await engine.place(session_spec, session_id="s1")
        assert engine.get("s1").drone_id == "drone-a"

        await engine.handle_liveness(
            LivenessChange(
                drone_id="drone-a",
                previous=DroneLiveness.SUSPECT,
                current=DroneLiveness.DEAD,
                at=200.0,
            )
        )
        await wait_until(lambda: engine.get("s1").state == SessionState.RUNNING and engine.get("s1").epoch == 2)

        record = engine.get("s1")
        assert record.drone_id == "drone-b"
        assert directory.epoch_of("s1") == 2
        assert registry.sessions_of("drone-a") == []

        # The old holder reporting its epoch is stale now.
        late = SessionStatus(
            session_id="s1",
            epoch=1,
            state=SessionState.RUNNING,
            reporter="drone-a",
            address="addr-drone-a",
        )
        assert not await engine.observe_status(late)
        assert engine.get("s1").address == "addr-drone-b"
        await drones.stop()

    @pytest.mark.asyncio
    async def test_reassign_checks_expectations(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, _, _, typed = make_engine(local_channel, {"drone-a": 4, "drone-b": 4})
        drones = ScriptedDrones(engine, responsive={"drone-a", "drone-b"})
        await drones.start(typed)
        await engine.place(session_spec, session_id="s1")

        assert not await engine.reassign("unknown")
        assert not await engine.reassign("s1", expected_epoch=5)
        assert not await engine.reassign("s1", from_drone="drone-b")
        assert engine.get("s1").epoch == 1
        await drones.stop()


# =============================================================================
# Status and Lifecycle Tests
# =============================================================================


class TestStatusHandling:
    """Test drone status reports, drain and purge."""

    @pytest.mark.asyncio
    async def test_terminal_status_releases_capacity_and_purges(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        clock = FakeClock()
        engine, registry, _, typed = make_engine(local_channel, {"drone-a": 1}, clock=clock)
        drones = ScriptedDrones(engine, responsive={"drone-a"})
        await drones.start(typed)
        await engine.place(session_spec, session_id="s1")

        changed = await engine.observe_status(
            SessionStatus(
                session_id="s1",
                epoch=1,
                state=SessionState.TERMINATED,
                reporter="drone-a",
            )
        )

        assert changed
        assert engine.get("s1").state == SessionState.TERMINATED
        assert registry.sessions_of("drone-a") == []

        # Retained for duplicate requests, then purged.
        await engine.place(session_spec, session_id="s1")
        assert engine.get("s1").epoch == 1

        assert engine.purge(clock.now + 10.0) == []
        assert engine.purge(clock.now + 31.0) == ["s1"]
        assert engine.get("s1") is None
        await drones.stop()

    @pytest.mark.asyncio
    async def test_own_statuses_ignored(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, _, _, typed = make_engine(local_channel, {"drone-a": 4})
        drones = ScriptedDrones(engine, responsive={"drone-a"})
        await drones.start(typed)
        await engine.place(session_spec, session_id="s1")

        fence = SessionStatus(
            session_id="s1",
            epoch=1,
            state=SessionState.ASSIGNING,
            reporter="controller-1",
        )
        assert not await engine.observe_status(fence)
        assert engine.get("s1").state == SessionState.RUNNING
        await drones.stop()

    @pytest.mark.asyncio
    async def test_drain_publishes_current_epoch(
        self,
        local_channel: LocalChannel,
        session_spec: SessionSpec,
    ) -> None:
        engine, _, _, typed = make_engine(local_channel, {"drone-a": 4})
        drones = ScriptedDrones(engine, responsive={"drone-a"})
        await drones.start(typed)
        await engine.place(session_spec, session_id="s1")

        assert await engine.drain("s1", reason="operator")
        assert not await engine.drain("missing")

        drains = [SessionDrain.load(payload) for payload in local_channel.published_on("session.drain")]
        assert [(d.session_id, d.epoch, d.reason) for d in drains] == [("s1", 1, "operator")]
        assert engine.get("s1").state == SessionState.DRAINING
        await drones.stop()
