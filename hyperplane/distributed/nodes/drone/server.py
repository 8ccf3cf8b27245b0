from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from hyperplane.distributed.certs import CertificateManager
from hyperplane.distributed.channel import Channel, TypedChannel, TypedSubscription
from hyperplane.distributed.errors import (
    CertificateFailureError,
    HyperplaneError,
    PersistenceFailureError,
    RuntimeFaultError,
    TransportUnavailableError,
)
from hyperplane.distributed.ledger import DurableLog
from hyperplane.distributed.models import (
    DrainDrone,
    DroneHeartbeat,
    Message,
    SessionActivity,
    SessionAssign,
    SessionDrain,
)
from hyperplane.distributed.reliability import add_jitter
from hyperplane.distributed.runtime import RuntimeClient
from hyperplane.distributed.supervisor import SessionSupervisor
from hyperplane.logging import Logger, LoggingConfig
from hyperplane.logging.hyperplane_logging_models import (
    ServerError,
    ServerFatal,
    ServerInfo,
    ServerWarning,
)

from ..shutdown import (
    install_signal_handlers,
    remove_signal_handlers,
    wait_for_shutdown,
    wait_or_cancel,
)
from .config import DroneConfig


M = TypeVar("M", bound=Message)


class DroneServer:
    """
    Worker node: runs the sessions assigned to it through a
    ``SessionSupervisor`` and reports liveness with heartbeats.

    Startup replays the durable log and reconciles the recovered
    sessions against the runtime before any channel message is
    consumed, so a restarted drone adopts the workloads it left
    running instead of creating new ones.
    """

    def __init__(
        self,
        config: DroneConfig,
        channel: Channel,
        runtime: RuntimeClient,
        durable_log: DurableLog,
        certificates: CertificateManager | None = None,
        logger: Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.durable_log = durable_log
        self.certificates = certificates
        self._logger = logger or Logger()

        self.channel = TypedChannel(
            channel,
            config.drone_id,
            "drone",
            retry=config.publish_retry(),
            logger=self._logger,
        )
        self.supervisor = SessionSupervisor(
            config.drone_id,
            config.address,
            runtime,
            durable_log,
            self.channel,
            config=config.supervisor_config(),
            logger=self._logger,
            clock=clock,
        )

        self._shutdown = asyncio.Event()
        self._subscriptions: list[TypedSubscription] = []
        self._tasks: list[asyncio.Task] = []
        self._draining = False
        self._running = False
        self._logging_config: LoggingConfig | None = None

    @property
    def node_id(self) -> str:
        return self.config.drone_id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def draining(self) -> bool:
        return self._draining

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown

    async def start(self) -> None:
        """
        Recover, reconcile, then start consuming.

        Raises:
            PersistenceFailureError: the durable log cannot be replayed.
        """
        if self._running:
            return

        self._shutdown.clear()

        if self._logging_config is None:
            self._logging_config = LoggingConfig()
            self._logging_config.update(
                log_directory=self.config.logs_directory,
                log_level=self.config.log_level,
                log_output=self.config.log_output,
            )

        try:
            recovered = await self.supervisor.recover()

        except PersistenceFailureError as err:
            await self._logger.log(
                ServerFatal(
                    message=f"Durable log {err.path} is unreadable: {err.cause}",
                    node_id=self.node_id,
                    node_role="drone",
                )
            )
            raise

        await self.supervisor.reconcile(wait=True)

        if self.certificates is not None:
            await self._ensure_certificates()

        assignments = await self._subscribe(SessionAssign)
        drains = await self._subscribe(SessionDrain)
        drone_drains = await self._subscribe(DrainDrone)
        activity = await self._subscribe(SessionActivity)

        self._tasks = [
            asyncio.create_task(self._consume(assignments, self.supervisor.handle_assign)),
            asyncio.create_task(self._consume(drains, self.supervisor.handle_drain)),
            asyncio.create_task(self._consume(drone_drains, self._on_drone_drain)),
            asyncio.create_task(self._consume(activity, self._on_activity)),
            asyncio.create_task(self._run_heartbeat_loop()),
            asyncio.create_task(self._run_reconcile_loop()),
            asyncio.create_task(self._watch_failures()),
        ]

        if self.certificates is not None:
            self._tasks.append(
                asyncio.create_task(self.certificates.run(self._shutdown))
            )

        self._running = True

        await self._log_info(
            f"Drone {self.node_id} started with capacity {self.config.capacity} ({recovered} recovered session(s))"
        )

    async def stop(self) -> None:
        """
        Stop consuming, let in-flight drains finish up to the shutdown
        deadline and close the durable log. Workloads are left running
        so the next start can recover them.
        """
        if not self._running:
            return

        self._running = False
        self._shutdown.set()

        for subscription in self._subscriptions:
            await subscription.close()

        self._subscriptions.clear()

        deadline = self.config.shutdown_deadline_seconds
        started = time.monotonic()

        await self.supervisor.close(deadline=deadline)

        remaining = deadline - (time.monotonic() - started)
        cancelled = await wait_or_cancel(self._tasks, remaining)
        if cancelled:
            await self._log_warning(
                f"Cancelled {len(cancelled)} tasks still running after {deadline}s"
            )

        self._tasks.clear()

        await self.durable_log.close()
        await self._log_info(f"Drone {self.node_id} stopped")

    async def run(self) -> None:
        """
        Serve until SIGINT/SIGTERM, ``stop()`` or a durable log failure.

        Raises:
            PersistenceFailureError: the supervisor could not persist
                session state.
        """
        installed = install_signal_handlers(self._shutdown)
        try:
            await self.start()
            await self._shutdown.wait()

        finally:
            remove_signal_handlers(installed)
            await self.stop()

        if self.supervisor.failure is not None:
            raise self.supervisor.failure

    def record_activity(self, session_id: str, epoch: int = 0) -> bool:
        return self.supervisor.record_activity(session_id, epoch=epoch)

    def heartbeat(self) -> DroneHeartbeat:
        return DroneHeartbeat(
            drone_id=self.node_id,
            address=self.config.address,
            capacity=self.config.capacity,
            current_load=self.supervisor.load(),
            ready=not self._draining,
            running_sessions=self.supervisor.running_sessions(),
        )

    async def send_heartbeat(self) -> bool:
        try:
            await self.channel.publish(self.heartbeat())
            return True

        except TransportUnavailableError as err:
            await self._log_warning(f"Heartbeat not delivered: {err}")
            return False

    async def _ensure_certificates(self) -> None:
        for domain in self.config.certified_domains:
            try:
                await self.certificates.ensure(domain)

            except CertificateFailureError as err:
                await self._log_error(
                    f"No certificate for {domain}, serving without TLS for now: {err.cause}"
                )

    async def _subscribe(self, message_type: type[M]) -> TypedSubscription[M]:
        subscription = await self.channel.subscribe(message_type)
        self._subscriptions.append(subscription)
        return subscription

    async def _consume(
        self,
        subscription: TypedSubscription[M],
        handler: Callable[[M], Awaitable[None]],
    ) -> None:
        async for message in subscription:
            try:
                await handler(message)

            except HyperplaneError as err:
                await self._log_error(
                    f"Failed handling {message.subject} message: {err}"
                )

            if self._shutdown.is_set():
                break

    async def _on_drone_drain(self, request: DrainDrone) -> None:
        if request.drone_id != self.node_id or request.drain == self._draining:
            return

        self._draining = request.drain
        await self._log_info(
            "Draining, no new sessions will be placed here"
            if self._draining
            else "Drain cancelled, accepting sessions"
        )
        await self.send_heartbeat()

    async def _on_activity(self, activity: SessionActivity) -> None:
        self.record_activity(activity.session_id, epoch=activity.epoch)

    async def _run_heartbeat_loop(self) -> None:
        interval = self.config.heartbeat_interval_seconds

        await self.send_heartbeat()
        while not await wait_for_shutdown(self._shutdown, add_jitter(interval)):
            await self.send_heartbeat()

    async def _run_reconcile_loop(self) -> None:
        interval = self.config.reconcile_interval_seconds

        while not await wait_for_shutdown(self._shutdown, interval):
            try:
                await self.supervisor.reconcile(wait=False)

            except RuntimeFaultError as err:
                await self._log_warning(f"Could not list workloads: {err.cause}")

    async def _watch_failures(self) -> None:
        failed = asyncio.create_task(self.supervisor.failed.wait())
        shutdown = asyncio.create_task(self._shutdown.wait())

        try:
            await asyncio.wait(
                [failed, shutdown],
                return_when=asyncio.FIRST_COMPLETED,
            )

        finally:
            failed.cancel()
            shutdown.cancel()

        if self.supervisor.failed.is_set():
            await self._log_error("Stopping after durable log failure")
            self._shutdown.set()

    async def _log_info(self, message: str) -> None:
        await self._logger.log(
            ServerInfo(
                message=message,
                node_id=self.node_id,
                node_role="drone",
            )
        )

    async def _log_warning(self, message: str) -> None:
        await self._logger.log(
            ServerWarning(
                message=message,
                node_id=self.node_id,
                node_role="drone",
            )
        )

    async def _log_error(self, message: str) -> None:
        await self._logger.log(
            ServerError(
                message=message,
                node_id=self.node_id,
                node_role="drone",
            )
        )
