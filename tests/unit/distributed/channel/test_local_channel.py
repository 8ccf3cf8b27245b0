"""
Tests for the message channel.

Tests:
- Subject validation and wildcard matching
- LocalChannel fan-out, FIFO delivery and test hooks
- TypedChannel publish retries and resubscription after a disconnect
"""

import asyncio

import pytest

from hyperplane.distributed.channel import (
    LocalChannel,
    TypedChannel,
    subject_matches,
    validate_subject,
)
from hyperplane.distributed.errors import TransportUnavailableError
from hyperplane.distributed.models import (
    DroneHeartbeat,
    SessionState,
    SessionStatus,
)
from hyperplane.distributed.reliability import JitterStrategy, RetryConfig


def fast_retry(max_attempts: int = 3) -> RetryConfig:
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay=0.001,
        max_delay=0.005,
        jitter=JitterStrategy.NONE,
        retryable_exceptions=(TransportUnavailableError,),
    )


def heartbeat(drone_id: str = "drone-1", load: int = 0) -> DroneHeartbeat:
    return DroneHeartbeat(
        drone_id=drone_id,
        address="10.0.0.1",
        capacity=4,
        current_load=load,
    )


# =============================================================================
# Subject Matching Tests
# =============================================================================


class TestSubjects:
    """Test subject validation and wildcard matching."""

    def test_exact_match(self) -> None:
        assert subject_matches("session.status", "session.status")
        assert not subject_matches("session.status", "session.assign")

    def test_single_token_wildcard(self) -> None:
        assert subject_matches("session.*", "session.status")
        assert not subject_matches("session.*", "session.schedule.abc")
        assert not subject_matches("session.*", "session")

    def test_tail_wildcard(self) -> None:
        assert subject_matches("session.>", "session.schedule.abc")
        assert subject_matches(">", "drone.heartbeat")
        assert not subject_matches("session.>", "session")

    def test_pattern_does_not_match_longer_subject(self) -> None:
        assert not subject_matches("session.schedule", "session.schedule.req-1")

    def test_wildcards_rejected_in_publish_subjects(self) -> None:
        with pytest.raises(ValueError):
            validate_subject("session.*")

    def test_tail_wildcard_must_be_last(self) -> None:
        with pytest.raises(ValueError):
            validate_subject("session.>.status", allow_wildcards=True)

    def test_empty_tokens_rejected(self) -> None:
        with pytest.raises(ValueError):
            validate_subject("session..status")

        with pytest.raises(ValueError):
            validate_subject("")


# =============================================================================
# LocalChannel Tests
# =============================================================================


class TestLocalChannel:
    """Test the in-process broker."""

    @pytest.mark.asyncio
    async def test_fan_out_to_matching_subscribers(self) -> None:
        channel = LocalChannel()
        status = await channel.subscribe("session.status")
        everything = await channel.subscribe("session.>")
        heartbeats = await channel.subscribe("drone.heartbeat")

        await channel.publish("session.status", b"one")

        assert (await status.__anext__()).payload == b"one"
        assert (await everything.__anext__()).payload == b"one"
        assert heartbeats._queue.empty()

    @pytest.mark.asyncio
    async def test_per_subscriber_fifo(self) -> None:
        channel = LocalChannel()
        subscription = await channel.subscribe("session.status")

        for idx in range(5):
            await channel.publish("session.status", str(idx).encode())

        received = [(await subscription.__anext__()).payload for _ in range(5)]
        assert received == [b"0", b"1", b"2", b"3", b"4"]

    @pytest.mark.asyncio
    async def test_injected_failures_are_consumed(self) -> None:
        channel = LocalChannel()
        channel.fail_next(2, pattern="session.*")

        with pytest.raises(TransportUnavailableError):
            await channel.publish("session.status", b"a")

        # Non-matching subjects are unaffected.
        await channel.publish("drone.heartbeat", b"b")

        with pytest.raises(TransportUnavailableError):
            await channel.publish("session.assign", b"c")

        await channel.publish("session.assign", b"d")
        assert [delivery.payload for delivery in channel.published] == [b"b", b"d"]

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self) -> None:
        channel = LocalChannel()
        subscription = await channel.subscribe("session.status")
        channel.duplicate_next(1)

        await channel.publish("session.status", b"dup")
        await channel.publish("session.status", b"once")

        received = [(await subscription.__anext__()).payload for _ in range(3)]
        assert received == [b"dup", b"dup", b"once"]

    @pytest.mark.asyncio
    async def test_disconnect_surfaces_transport_error(self) -> None:
        channel = LocalChannel()
        subscription = await channel.subscribe("session.status")

        channel.disconnect()

        with pytest.raises(TransportUnavailableError):
            await subscription.__anext__()

        with pytest.raises(TransportUnavailableError):
            await channel.publish("session.status", b"lost")

        channel.reconnect()
        await channel.publish("session.status", b"back")
        assert channel.published_on("session.status") == [b"back"]

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self) -> None:
        channel = LocalChannel()
        subscription = await channel.subscribe("session.status")

        await subscription.close()

        with pytest.raises(StopAsyncIteration):
            await subscription.__anext__()

        assert channel.subscriber_count() == 0


# =============================================================================
# TypedChannel Tests
# =============================================================================


class TestTypedChannel:
    """Test typed publish/subscribe over a raw channel."""

    @pytest.mark.asyncio
    async def test_publish_and_decode(self) -> None:
        channel = LocalChannel()
        typed = TypedChannel(channel, "controller-1", "controller", retry=fast_retry())
        subscription = await typed.subscribe(SessionStatus)

        status = SessionStatus(
            session_id="s1",
            epoch=3,
            state=SessionState.RUNNING,
            reporter="drone-1",
            address="10.0.0.1",
        )
        await typed.publish(status)

        received = await subscription.__anext__()
        assert received == status
        assert received.state is SessionState.RUNNING

    @pytest.mark.asyncio
    async def test_publish_retries_transient_failures(self) -> None:
        channel = LocalChannel()
        typed = TypedChannel(channel, "drone-1", "drone", retry=fast_retry(max_attempts=3))
        channel.fail_next(2)

        await typed.publish(heartbeat())

        assert len(channel.published_on("drone.heartbeat")) == 1

    @pytest.mark.asyncio
    async def test_publish_raises_after_retries_exhausted(self) -> None:
        channel = LocalChannel()
        typed = TypedChannel(channel, "drone-1", "drone", retry=fast_retry(max_attempts=2))
        channel.fail_next(5)

        with pytest.raises(TransportUnavailableError):
            await typed.publish(heartbeat())

        assert channel.published == []

    @pytest.mark.asyncio
    async def test_undecodable_payloads_are_skipped(self) -> None:
        channel = LocalChannel()
        typed = TypedChannel(channel, "controller-1", "controller", retry=fast_retry())
        subscription = await typed.subscribe(DroneHeartbeat)

        await channel.publish("drone.heartbeat", b"{not json")
        await channel.publish("drone.heartbeat", b'{"drone_id": 7}')
        await typed.publish(heartbeat(load=2))

        received = await asyncio.wait_for(subscription.__anext__(), timeout=1.0)
        assert received.current_load == 2
        assert subscription.dropped == 2

    @pytest.mark.asyncio
    async def test_resubscribes_after_disconnect(self) -> None:
        channel = LocalChannel()
        typed = TypedChannel(channel, "controller-1", "controller", retry=fast_retry())
        subscription = await typed.subscribe(DroneHeartbeat)

        channel.disconnect()
        pending = asyncio.create_task(subscription.__anext__())
        await asyncio.sleep(0.01)

        channel.reconnect()
        for _ in range(100):
            if channel.subscriber_count("drone.heartbeat"):
                break
            await asyncio.sleep(0.005)

        await typed.publish(heartbeat(drone_id="drone-9"))

        received = await asyncio.wait_for(pending, timeout=1.0)
        assert received.drone_id == "drone-9"
        await subscription.close()
