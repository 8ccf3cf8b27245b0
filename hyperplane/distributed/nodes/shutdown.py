"""
Shutdown helpers shared by the controller and drone servers.

A node runs until its shutdown event is set, either by ``stop()`` or by
SIGINT/SIGTERM. Background tasks get ``deadline`` seconds to finish the
unit of work they are on before they are cancelled.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Iterable

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM")


def install_signal_handlers(
    shutdown: asyncio.Event,
    loop: asyncio.AbstractEventLoop | None = None,
) -> list[signal.Signals]:
    loop = loop or asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    for signame in SHUTDOWN_SIGNALS:
        signum = getattr(signal, signame)
        try:
            loop.add_signal_handler(signum, shutdown.set)
            installed.append(signum)

        except (NotImplementedError, RuntimeError):
            # Not the main thread, or a loop without signal support.
            continue

    return installed


def remove_signal_handlers(
    installed: Iterable[signal.Signals],
    loop: asyncio.AbstractEventLoop | None = None,
) -> None:
    loop = loop or asyncio.get_running_loop()
    for signum in installed:
        loop.remove_signal_handler(signum)


async def wait_or_cancel(
    tasks: Iterable[asyncio.Task],
    deadline: float,
) -> list[asyncio.Task]:
    """
    Wait up to ``deadline`` seconds for ``tasks`` to finish, then cancel
    what is left. Returns the tasks that had to be cancelled.
    """
    pending = [task for task in tasks if not task.done()]
    if not pending:
        return []

    _, still_running = await asyncio.wait(pending, timeout=max(0.0, deadline))

    for task in still_running:
        task.cancel()

    if still_running:
        await asyncio.gather(*still_running, return_exceptions=True)

    return list(still_running)


async def wait_for_shutdown(shutdown: asyncio.Event, interval: float) -> bool:
    """
    Sleep for ``interval`` seconds or until shutdown. Returns True when
    the node is shutting down.
    """
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=max(0.0, interval))
        return True

    except asyncio.TimeoutError:
        return shutdown.is_set()
