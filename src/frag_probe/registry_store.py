"""
Gateway registry store.

Polls the registry for the registered gateway set and the upcoming leader
schedule, and keeps a rolling ping average per gateway.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Dict, Optional

from .models import FutureAssignment, GatewayInfo, RegistrySnapshot
from .stats import mean_ms
from .utils.registry_client import RegistryClient

logger = logging.getLogger(__name__)


class RegistryStore:
    """
    Owns the latest registry snapshot and the per-gateway ping loops.

    The store is constructed explicitly and driven through ``start()`` and
    ``stop()``. A failed poll keeps the previous snapshot.
    """

    def __init__(
        self,
        client: RegistryClient,
        poll_interval: float = 20.0,
        ping_interval: float = 1.0,
        lookahead_slots: int = 60,
        ping_samples: int = 10
    ):
        """
        Initialize the registry store.

        Args:
            client: Registry JSON-RPC client
            poll_interval: Seconds between registry polls
            ping_interval: Seconds between pings of each gateway
            lookahead_slots: Number of future blocks fetched per poll
            ping_samples: Size of the rolling ping window per gateway
        """
        self.client = client
        self.poll_interval = poll_interval
        self.ping_interval = ping_interval
        self.lookahead_slots = lookahead_slots
        self.ping_samples = ping_samples

        self.last_updated_ms = 0
        self.gateways: list[GatewayInfo] = []
        self.future_gateways: list[FutureAssignment] = []

        self._ping_tasks: Dict[str, asyncio.Task] = {}
        self._ping_measurements: Dict[str, deque[int]] = {}
        self._poll_task: Optional[asyncio.Task] = None

        self.polls_succeeded = 0
        self.polls_failed = 0

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def update_data(self) -> bool:
        """
        Fetch the registered set and the lookahead schedule.

        Returns:
            True if the snapshot was replaced, False if the poll failed
        """
        logger.info("Updating registry data")
        try:
            registered, future_results = await asyncio.gather(
                self.client.registered_gateways(),
                asyncio.gather(
                    *(self.client.future_gateway(i) for i in range(self.lookahead_slots))
                ),
            )
        except Exception as e:
            self.polls_failed += 1
            logger.error(f"Failed to fetch registry data: {e}")
            return False

        future_sorted = sorted(future_results, key=lambda f: f.block_number)
        registered_urls = {gateway.url for gateway in registered}

        # Start ping measurements for new gateways
        for gateway in registered:
            if gateway.url not in self._ping_tasks:
                self._start_ping_measurement(gateway.url)

        # Clean up ping measurements for removed gateways
        for url in list(self._ping_tasks):
            if url not in registered_urls:
                self._stop_ping_measurement(url)

        self.gateways = list(registered)
        self.future_gateways = future_sorted
        self.last_updated_ms = int(time.time() * 1000)
        self.polls_succeeded += 1

        logger.debug(
            f"Registry has {len(self.gateways)} gateways, "
            f"{len(self.future_gateways)} future slots"
        )
        return True

    def _start_ping_measurement(self, url: str) -> None:
        self._ping_measurements.setdefault(url, deque(maxlen=self.ping_samples))
        self._ping_tasks[url] = asyncio.create_task(self._ping_loop(url), name=f"ping:{url}")

    def _stop_ping_measurement(self, url: str) -> None:
        task = self._ping_tasks.pop(url, None)
        if task and not task.done():
            task.cancel()
        self._ping_measurements.pop(url, None)

    async def _ping_loop(self, url: str) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                ping = await self.client.measure_ping(url)
            except Exception as e:
                logger.error(f"Ping measurement failed for {url}: {e}")
                continue
            self.record_ping(url, ping)

    def record_ping(self, url: str, ping: Optional[int]) -> None:
        """
        Add a ping sample for a tracked gateway.

        Failed pings (None) and samples for gateways that are no longer
        registered are dropped.
        """
        if ping is None:
            return

        measurements = self._ping_measurements.get(url)
        if measurements is None:
            return
        measurements.append(ping)

    def average_ping(self, url: str) -> Optional[int]:
        measurements = self._ping_measurements.get(url)
        if not measurements:
            return None
        return mean_ms(measurements)

    def get_data(self) -> RegistrySnapshot:
        """Return the latest snapshot with current ping averages."""
        return RegistrySnapshot(
            last_updated_ms=self.last_updated_ms,
            gateways=tuple(
                GatewayInfo(
                    url=gateway.url,
                    address=gateway.address,
                    average_ping_ms=self.average_ping(gateway.url),
                )
                for gateway in self.gateways
            ),
            future_gateways=tuple(self.future_gateways),
        )

    async def _poll_loop(self) -> None:
        # Initial fetch
        await self.update_data()
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.update_data()

    def start(self) -> None:
        """Start polling; the first poll runs immediately."""
        if self.is_running:
            logger.warning("Registry polling already running")
            return

        logger.info(
            f"Starting registry polling on {self.client.url} "
            f"every {self.poll_interval} seconds"
        )
        self._poll_task = asyncio.create_task(self._poll_loop(), name="registry_poll")

    async def stop(self) -> None:
        """Stop polling and all ping loops."""
        logger.info("Stopping registry polling")
        tasks = [t for t in [self._poll_task, *self._ping_tasks.values()] if t]
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass  # Expected when cancelling

        self._poll_task = None
        self._ping_tasks.clear()
        self._ping_measurements.clear()

    def get_status(self) -> Dict[str, Any]:
        """
        Get current status of the registry store.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "last_updated_ms": self.last_updated_ms,
            "gateways": len(self.gateways),
            "future_slots": len(self.future_gateways),
            "polls_succeeded": self.polls_succeeded,
            "polls_failed": self.polls_failed,
            "registry_url": self.client.url,
        }
