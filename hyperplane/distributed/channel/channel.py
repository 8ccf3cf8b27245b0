from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Delivery:
    subject: str
    payload: bytes


class Subscription(ABC):
    """
    An infinite, at-least-once stream of deliveries for one pattern.

    Iteration ends only when the subscription (or its channel) is
    closed. A lost transport surfaces as ``TransportUnavailableError``
    from ``__anext__`` so the consumer can resubscribe.
    """

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern

    def __aiter__(self) -> Subscription:
        return self

    @abstractmethod
    async def __anext__(self) -> Delivery:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class Channel(ABC):
    """
    Publish/subscribe transport contract.

    Publishing is fire-and-forget and may fail transiently with
    ``TransportUnavailableError``. Callers retry with backoff. Ordering
    is preserved per publisher and subject only.
    """

    @abstractmethod
    async def publish(self, subject: str, payload: bytes) -> None:
        ...

    @abstractmethod
    async def subscribe(self, pattern: str) -> Subscription:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
