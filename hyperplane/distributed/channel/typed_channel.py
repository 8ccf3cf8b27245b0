from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

import msgspec
import orjson

from hyperplane.distributed.errors import TransportUnavailableError
from hyperplane.distributed.models import Message
from hyperplane.distributed.reliability import (
    RetryConfig,
    RetryExecutor,
    calculate_jittered_delay,
)
from hyperplane.logging import Logger
from hyperplane.logging.hyperplane_logging_models import ServerDebug, ServerWarning

from .channel import Channel, Subscription


M = TypeVar("M", bound=Message)


class TypedSubscription(Generic[M]):
    """
    Decodes deliveries into ``message_type`` and resubscribes with
    backoff when the transport drops the underlying subscription.
    Payloads that fail to decode are logged and skipped.
    """

    def __init__(
        self,
        typed_channel: TypedChannel,
        message_type: type[M],
        pattern: str,
    ) -> None:
        self._typed_channel = typed_channel
        self._message_type = message_type
        self._pattern = pattern
        self._subscription: Subscription | None = None
        self._closed = False
        self.dropped = 0

    @property
    def pattern(self) -> str:
        return self._pattern

    def __aiter__(self) -> TypedSubscription[M]:
        return self

    async def open(self) -> TypedSubscription[M]:
        if self._subscription is None:
            self._subscription = await self._typed_channel.channel.subscribe(self._pattern)

        return self

    async def __anext__(self) -> M:
        attempt = 0

        while not self._closed:
            try:
                await self.open()
                delivery = await self._subscription.__anext__()
                attempt = 0

            except TransportUnavailableError as err:
                self._subscription = None
                delay = self._typed_channel.resubscribe_delay(attempt)
                attempt += 1

                await self._typed_channel.log_warning(
                    f"Subscription to {self._pattern} lost ({err.cause}), retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue

            try:
                return self._message_type.load(delivery.payload)

            except (msgspec.ValidationError, orjson.JSONDecodeError) as err:
                self.dropped += 1
                await self._typed_channel.log_warning(
                    f"Dropped undecodable {self._message_type.__name__} on {delivery.subject}: {err}"
                )

        raise StopAsyncIteration

    async def close(self) -> None:
        self._closed = True
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None


class TypedChannel:
    """
    Publishes and subscribes ``Message`` structs over a raw ``Channel``.

    Publishes are retried on ``TransportUnavailableError`` with
    exponential backoff. Once retries are exhausted the error
    propagates to the caller.
    """

    def __init__(
        self,
        channel: Channel,
        node_id: str,
        node_role: str,
        retry: RetryConfig | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.channel = channel
        self._node_id = node_id
        self._node_role = node_role
        self._logger = logger or Logger()
        self._retry_config = retry or RetryConfig(
            max_attempts=5,
            base_delay=0.1,
            max_delay=5.0,
            retryable_exceptions=(TransportUnavailableError,),
        )
        self._executor = RetryExecutor(
            self._retry_config,
            on_retry=self._log_retry,
        )

    async def publish(self, message: Message, subject: str | None = None) -> None:
        subject = subject or message.subject_for()
        payload = message.dump()

        await self._executor.execute(
            lambda: self.channel.publish(subject, payload),
            operation_name=f"publish {subject}",
        )

    async def subscribe(
        self,
        message_type: type[M],
        pattern: str | None = None,
    ) -> TypedSubscription[M]:
        subscription = TypedSubscription(
            self,
            message_type,
            pattern or message_type.subject,
        )

        return await subscription.open()

    def resubscribe_delay(self, attempt: int) -> float:
        return calculate_jittered_delay(
            attempt,
            base_delay=self._retry_config.base_delay,
            max_delay=self._retry_config.max_delay,
        )

    async def log_warning(self, message: str) -> None:
        await self._logger.log(
            ServerWarning(
                message=message,
                node_id=self._node_id,
                node_role=self._node_role,
            )
        )

    async def _log_retry(
        self,
        operation_name: str,
        attempt: int,
        error: Exception,
        delay: float,
    ) -> None:
        await self._logger.log(
            ServerDebug(
                message=f"Retry {attempt} of {operation_name} in {delay:.2f}s after: {error}",
                node_id=self._node_id,
                node_role=self._node_role,
            )
        )

    async def close(self) -> None:
        await self.channel.close()
