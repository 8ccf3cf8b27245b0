from __future__ import annotations

import asyncio

from hyperplane.distributed.errors import TransportUnavailableError

from .channel import Channel, Delivery, Subscription
from .subject import subject_matches, validate_subject


_CLOSED = object()
_DISCONNECTED = object()


class LocalSubscription(Subscription):
    def __init__(self, channel: LocalChannel, pattern: str) -> None:
        super().__init__(pattern)
        self._channel = channel
        self._queue: asyncio.Queue[Delivery | object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, delivery: Delivery) -> None:
        if not self._closed:
            self._queue.put_nowait(delivery)

    def disconnect(self) -> None:
        self._closed = True
        self._queue.put_nowait(_DISCONNECTED)

    async def __anext__(self) -> Delivery:
        item = await self._queue.get()

        if item is _CLOSED:
            raise StopAsyncIteration

        if item is _DISCONNECTED:
            raise TransportUnavailableError(self.pattern, "subscription disconnected")

        return item

    async def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._channel.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)


class LocalChannel(Channel):
    """
    In-process broker with one FIFO queue per subscriber.

    Test hooks:
        fail_next(count, pattern) - the next ``count`` publishes matching
            ``pattern`` raise ``TransportUnavailableError``.
        duplicate_next(count, pattern) - the next ``count`` matching
            publishes are delivered twice.
        disconnect() - drops every subscription with a transport error
            and refuses traffic until ``reconnect()``.
    """

    def __init__(self) -> None:
        self._subscriptions: list[LocalSubscription] = []
        self._available = True
        self._closed = False
        self._failures: list[list] = []
        self._duplicates: list[list] = []
        self.published: list[Delivery] = []

    async def publish(self, subject: str, payload: bytes) -> None:
        validate_subject(subject)

        if self._closed or not self._available:
            raise TransportUnavailableError(subject)

        if self._consume(self._failures, subject):
            raise TransportUnavailableError(subject, "injected publish failure")

        delivery = Delivery(subject=subject, payload=payload)
        self.published.append(delivery)

        copies = 2 if self._consume(self._duplicates, subject) else 1
        for subscription in list(self._subscriptions):
            if subject_matches(subscription.pattern, subject):
                for _ in range(copies):
                    subscription.deliver(delivery)

    async def subscribe(self, pattern: str) -> LocalSubscription:
        validate_subject(pattern, allow_wildcards=True)

        if self._closed or not self._available:
            raise TransportUnavailableError(pattern)

        subscription = LocalSubscription(self, pattern)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: LocalSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def fail_next(self, count: int = 1, pattern: str = ">") -> None:
        self._failures.append([pattern, count])

    def duplicate_next(self, count: int = 1, pattern: str = ">") -> None:
        self._duplicates.append([pattern, count])

    def disconnect(self) -> None:
        self._available = False
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.disconnect()

    def reconnect(self) -> None:
        if not self._closed:
            self._available = True

    def subscriber_count(self, pattern: str | None = None) -> int:
        if pattern is None:
            return len(self._subscriptions)

        return len([sub for sub in self._subscriptions if sub.pattern == pattern])

    def published_on(self, subject: str) -> list[bytes]:
        return [
            delivery.payload
            for delivery in self.published
            if subject_matches(subject, delivery.subject)
        ]

    async def close(self) -> None:
        self._closed = True
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.close()

    def _consume(self, injections: list[list], subject: str) -> bool:
        for injection in injections:
            pattern, remaining = injection
            if remaining > 0 and subject_matches(pattern, subject):
                injection[1] = remaining - 1
                if injection[1] == 0:
                    injections.remove(injection)

                return True

        return False
