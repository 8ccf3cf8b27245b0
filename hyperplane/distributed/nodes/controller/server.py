from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from hyperplane.distributed.channel import Channel, TypedChannel, TypedSubscription
from hyperplane.distributed.directory import SessionDirectory
from hyperplane.distributed.dns import DNSServer, SessionResolver
from hyperplane.distributed.errors import (
    HyperplaneError,
    TransportUnavailableError,
)
from hyperplane.distributed.models import (
    DrainDrone,
    DroneHeartbeat,
    Message,
    ScheduleRequest,
    ScheduleResponse,
    SessionSpec,
    SessionStatus,
)
from hyperplane.distributed.placement import PlacementEngine
from hyperplane.distributed.registry import (
    DroneLiveness,
    DroneRegistry,
    LivenessChange,
    Scorer,
    least_loaded,
)
from hyperplane.logging import Logger, LoggingConfig
from hyperplane.logging.hyperplane_logging_models import (
    ServerDebug,
    ServerError,
    ServerInfo,
    ServerWarning,
)

from ..shutdown import (
    install_signal_handlers,
    remove_signal_handlers,
    wait_for_shutdown,
    wait_or_cancel,
)
from .config import ControllerConfig


M = TypeVar("M", bound=Message)


class ControllerServer:
    """
    Control plane node: drone registry, placement engine, session
    directory and the DNS responder for the cluster domain.

    All controller state lives on one event loop. Channel consumers,
    the liveness sweep and schedule requests are separate tasks that
    never block one another.
    """

    def __init__(
        self,
        config: ControllerConfig,
        channel: Channel,
        logger: Logger | None = None,
        scorer: Scorer = least_loaded,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._logger = logger or Logger()
        self._clock = clock

        self.channel = TypedChannel(
            channel,
            config.controller_id,
            "controller",
            retry=config.publish_retry(),
            logger=self._logger,
        )

        self.registry = DroneRegistry(
            suspect_after=config.suspect_after_seconds,
            dead_after=config.dead_after_seconds,
            forget_after=config.forget_after_seconds,
            scorer=scorer,
            clock=clock,
        )
        self.directory = SessionDirectory(config.cluster_domain)
        self.placement = PlacementEngine(
            config.controller_id,
            self.registry,
            self.directory,
            self.channel,
            accept_timeout=config.accept_timeout_seconds,
            max_attempts=config.placement_attempts,
            terminated_retention=config.terminated_retention_seconds,
            logger=self._logger,
            clock=clock,
        )
        self.registry.add_listener(self._on_liveness)

        self.resolver = SessionResolver(
            self.directory,
            ttl=config.dns_ttl,
            soa_email=config.soa_email,
        )
        self.dns: DNSServer | None = None
        if config.dns_enabled:
            self.dns = DNSServer(
                self.resolver,
                host=config.dns_host,
                port=config.dns_port,
                node_id=config.controller_id,
                logger=self._logger,
            )

        self._shutdown = asyncio.Event()
        self._subscriptions: list[TypedSubscription] = []
        self._tasks: list[asyncio.Task] = []
        self._requests: set[asyncio.Task] = set()
        self._running = False
        self._logging_config: LoggingConfig | None = None

    @property
    def node_id(self) -> str:
        return self.config.controller_id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown

    async def start(self) -> None:
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

        heartbeats = await self._subscribe(DroneHeartbeat)
        statuses = await self._subscribe(SessionStatus)
        schedules = await self._subscribe(ScheduleRequest)
        drone_drains = await self._subscribe(DrainDrone)

        if self.dns is not None:
            await self.dns.start()

        self._tasks = [
            asyncio.create_task(self._consume(heartbeats, self._on_heartbeat)),
            asyncio.create_task(self._consume(statuses, self._on_status)),
            asyncio.create_task(self._consume(schedules, self._on_schedule)),
            asyncio.create_task(self._consume(drone_drains, self._on_drone_drain)),
            asyncio.create_task(self._run_sweep_loop()),
        ]
        self._running = True

        await self._log_info(
            f"Controller {self.node_id} serving zone {self.directory.domain}"
        )

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        self._shutdown.set()

        for subscription in self._subscriptions:
            await subscription.close()

        self._subscriptions.clear()

        deadline = self.config.shutdown_deadline_seconds
        cancelled = await wait_or_cancel(
            [*self._tasks, *self._requests],
            deadline,
        )
        if cancelled:
            await self._log_warning(
                f"Cancelled {len(cancelled)} tasks still running after {deadline}s"
            )

        self._tasks.clear()
        self._requests.clear()

        await self.placement.close()

        if self.dns is not None:
            await self.dns.stop()

        await self._log_info(f"Controller {self.node_id} stopped")

    async def run(self) -> None:
        """
        Serve until SIGINT/SIGTERM or ``stop()``, then shut down.
        """
        installed = install_signal_handlers(self._shutdown)
        try:
            await self.start()
            await self._shutdown.wait()

        finally:
            remove_signal_handlers(installed)
            await self.stop()

    async def place(self, spec: SessionSpec, session_id: str | None = None) -> str:
        return await self.placement.place(spec, session_id=session_id)

    async def drain(self, session_id: str, reason: str = "drain requested") -> bool:
        return await self.placement.drain(session_id, reason=reason)

    async def drain_drone(self, drone_id: str, drain: bool = True) -> None:
        self.registry.set_draining(drone_id, drain)
        await self.channel.publish(DrainDrone(drone_id=drone_id, drain=drain))

    def resolve(self, name: str) -> str | None:
        return self.directory.resolve(name)

    async def sweep(self, now: float | None = None) -> list[LivenessChange]:
        """
        One pass of the liveness sweep: update liveness, run listeners
        for every change and purge expired terminal sessions.
        """
        changes = self.registry.sweep(now)
        await self.registry.notify(changes)
        self.placement.purge(now)
        return changes

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

    async def _on_heartbeat(self, heartbeat: DroneHeartbeat) -> None:
        change = self.registry.observe_heartbeat(
            heartbeat.drone_id,
            heartbeat.capacity,
            heartbeat.current_load,
            address=heartbeat.address,
            ready=heartbeat.ready,
            running_sessions=heartbeat.running_sessions,
        )

        if change is not None:
            await self.registry.notify([change])

    async def _on_status(self, status: SessionStatus) -> None:
        self.directory.apply(status)
        await self.placement.observe_status(status)

    async def _on_schedule(self, request: ScheduleRequest) -> None:
        task = asyncio.create_task(self._schedule(request))
        self._requests.add(task)
        task.add_done_callback(self._requests.discard)

    async def _schedule(self, request: ScheduleRequest) -> None:
        response = ScheduleResponse(request_id=request.request_id, scheduled=False)

        try:
            session_id = await self.placement.place(
                request.spec,
                session_id=request.session_id,
            )
            record = self.placement.get(session_id)

            response.scheduled = True
            response.session_id = session_id
            if record is not None:
                response.drone_id = record.drone_id
                response.epoch = record.epoch

        except HyperplaneError as err:
            response.session_id = getattr(err, "session_id", None) or request.session_id
            response.error = str(err)
            await self._log_warning(
                f"Schedule request {request.request_id} failed: {err}"
            )

        try:
            await self.channel.publish(response)

        except TransportUnavailableError as err:
            await self._log_warning(
                f"Could not answer schedule request {request.request_id}: {err}"
            )

    async def _on_drone_drain(self, request: DrainDrone) -> None:
        if self.registry.set_draining(request.drone_id, request.drain):
            await self._log_info(
                f"Drone {request.drone_id} {'draining' if request.drain else 'accepting sessions'}"
            )

    async def _on_liveness(self, change: LivenessChange) -> None:
        if change.forgotten:
            await self._log_debug(f"Forgot dead drone {change.drone_id}")

        elif change.current == DroneLiveness.HEALTHY:
            await self._log_info(
                f"Drone {change.drone_id} is healthy again (was {change.previous.value})"
            )

        else:
            await self._log_warning(
                f"Drone {change.drone_id} is {change.current.value} (was {change.previous.value})"
            )

        await self.placement.handle_liveness(change)

    async def _run_sweep_loop(self) -> None:
        interval = self.config.sweep_interval_seconds
        while not await wait_for_shutdown(self._shutdown, interval):
            try:
                await self.sweep()

            except HyperplaneError as err:
                await self._log_error(f"Liveness sweep failed: {err}")

    async def _log_debug(self, message: str) -> None:
        await self._logger.log(
            ServerDebug(
                message=message,
                node_id=self.node_id,
                node_role="controller",
            )
        )

    async def _log_info(self, message: str) -> None:
        await self._logger.log(
            ServerInfo(
                message=message,
                node_id=self.node_id,
                node_role="controller",
            )
        )

    async def _log_warning(self, message: str) -> None:
        await self._logger.log(
            ServerWarning(
                message=message,
                node_id=self.node_id,
                node_role="controller",
            )
        )

    async def _log_error(self, message: str) -> None:
        await self._logger.log(
            ServerError(
                message=message,
                node_id=self.node_id,
                node_role="controller",
            )
        )
