"""
Auto-send driver.

Repeatedly fires the probe's send operation at a fixed cadence until it is
disabled, either by the operator or by the first failed send.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AutoSendDriver:
    """
    Cancellable repeating task around a send coroutine.

    Each tick starts a send without waiting for earlier ones, so several
    sends may be in flight at once. The first failure disables the driver;
    it does not retry and stays off until enabled again.
    """

    def __init__(
        self,
        send: Callable[[], Awaitable[Any]],
        interval: float = 0.15,
        on_error: Optional[Callable[[Exception], None]] = None
    ):
        """
        Initialize the auto-send driver.

        Args:
            send: Coroutine function issuing one transaction
            interval: Seconds between ticks
            on_error: Called once with the exception that disabled the driver
        """
        if interval <= 0:
            raise ValueError(f"Auto-send interval must be positive, got {interval}")

        self.send = send
        self.interval = interval
        self.on_error = on_error

        self.enabled = False
        self.ticks = 0
        self.last_error: Optional[Exception] = None
        # Incremented on every enable; sends remember the run they belong to
        self._run_id = 0

        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def in_flight_tasks(self) -> frozenset[asyncio.Task]:
        return frozenset(self._in_flight)

    def enable(self) -> None:
        """Arm the driver; a no-op when it is already running."""
        if self.enabled:
            return

        self.enabled = True
        self.last_error = None
        self._run_id += 1
        self._loop_task = asyncio.create_task(self._run(self._run_id), name="auto_send")
        logger.info(f"Auto-send enabled (every {self.interval}s)")

    def disable(self) -> None:
        """Stop ticking. Sends already in flight are left to complete."""
        if not self.enabled:
            return

        self.enabled = False
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
        self._loop_task = None
        logger.info("Auto-send disabled")

    async def _run(self, run_id: int) -> None:
        try:
            while self.enabled:
                await asyncio.sleep(self.interval)
                if not self.enabled:
                    break
                self.ticks += 1
                task = asyncio.create_task(self._tick(run_id))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
        except asyncio.CancelledError:
            logger.debug("Auto-send loop cancelled")

    async def _tick(self, run_id: int) -> None:
        try:
            await self.send()
        except Exception as e:
            self._fail(e, run_id)

    def _fail(self, error: Exception, run_id: int) -> None:
        if not self.enabled or run_id != self._run_id:
            # A send that was already in flight when its run was stopped
            logger.debug(f"Discarding auto-send failure after disable: {error}")
            return

        logger.error(f"Auto-send failed: {error}")
        self.last_error = error
        self.disable()

        if self.on_error:
            self.on_error(error)
