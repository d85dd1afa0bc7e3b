"""
Metrics receiver: owns the polling loop and its lifecycle.

Lifecycle: IDLE -> RUNNING -> STOPPING -> STOPPED. An IDLE receiver may go
straight to STOPPED.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum

import structlog

from upcloud_receiver.client import UpCloudClient
from upcloud_receiver.config.settings import ReceiverConfig
from upcloud_receiver.consumers import MetricsConsumer
from upcloud_receiver.core.errors import ReceiverStateError
from upcloud_receiver.logging import bind_cycle_context
from upcloud_receiver.scraper import ScrapeResult, scrape_metrics

logger = structlog.get_logger()


class ReceiverState(StrEnum):
    """Receiver lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


_TRANSITIONS: dict[ReceiverState, frozenset[ReceiverState]] = {
    ReceiverState.IDLE: frozenset({ReceiverState.RUNNING, ReceiverState.STOPPED}),
    ReceiverState.RUNNING: frozenset({ReceiverState.STOPPING}),
    ReceiverState.STOPPING: frozenset({ReceiverState.STOPPED}),
    ReceiverState.STOPPED: frozenset(),
}


class MetricsReceiver:
    """Background task that periodically scrapes UpCloud and forwards batches."""

    def __init__(
        self,
        config: ReceiverConfig,
        client: UpCloudClient,
        consumer: MetricsConsumer,
        *,
        close_client: bool = False,
    ) -> None:
        self.config = config
        self.client = client
        self.consumer = consumer
        self._close_client = close_client
        self._state = ReceiverState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._cycles = 0

    @property
    def state(self) -> ReceiverState:
        return self._state

    def _transition(self, new_state: ReceiverState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise ReceiverStateError(
                f"invalid receiver transition {self._state.value} -> {new_state.value}"
            )
        logger.debug("receiver_state_changed", old=self._state.value, new=new_state.value)
        self._state = new_state

    def start(self) -> None:
        """Start the polling loop. Must be called from a running event loop."""
        self._transition(ReceiverState.RUNNING)
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="upcloud-receiver")
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            "receiver_started",
            collection_interval=self.config.collection_interval,
            initial_delay=self.config.initial_delay,
        )

    async def shutdown(self, timeout: float | None = None) -> None:
        """
        Stop the polling loop and wait for it to exit.

        Args:
            timeout: Seconds to wait for the loop to exit; None waits forever

        Raises:
            asyncio.TimeoutError: If the loop did not exit in time (the loop
                task is then cancelled)
        """
        if self._state is ReceiverState.STOPPED:
            return
        if self._state is ReceiverState.IDLE:
            self._transition(ReceiverState.STOPPED)
            await self._release()
            return
        if self._state is ReceiverState.RUNNING:
            self._transition(ReceiverState.STOPPING)
            self._stop_event.set()

        task = self._task
        try:
            if task is not None and not task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout)
                except asyncio.TimeoutError:
                    logger.warning("receiver_shutdown_timed_out", timeout=timeout)
                    task.cancel()
                    raise
            self._mark_stopped()
        finally:
            await self._release()

    async def scrape_once(self) -> ScrapeResult:
        """Run a single scrape cycle and forward its batch."""
        return await self._scrape_and_consume()

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("receiver_loop_crashed", error=str(task.exception()))
        if self._state is ReceiverState.STOPPING:
            self._mark_stopped()

    def _mark_stopped(self) -> None:
        if self._state is ReceiverState.STOPPING:
            self._transition(ReceiverState.STOPPED)
            logger.info("receiver_stopped")

    async def _release(self) -> None:
        if self._close_client:
            self._close_client = False
            await self.client.aclose()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Wait up to timeout seconds; return True if a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        if self.config.initial_delay > 0 and await self._wait_for_stop(self.config.initial_delay):
            return

        # Immediate first scrape after the initial delay.
        await self._scrape_and_consume()

        loop = asyncio.get_running_loop()
        interval = self.config.collection_interval
        last_tick = loop.time()
        while not self._stop_event.is_set():
            next_tick = last_tick + interval
            now = loop.time()
            if next_tick > now:
                if await self._wait_for_stop(next_tick - now):
                    return
                last_tick = next_tick
            else:
                # Ticks missed while a cycle ran collapse into one pending tick.
                missed = int((now - last_tick) // interval)
                if missed > 1:
                    logger.debug("dropped_ticks", count=missed - 1)
                last_tick += missed * interval
            await self._scrape_and_consume()

    async def _scrape_and_consume(self) -> ScrapeResult:
        self._cycles += 1
        bind_cycle_context(self._cycles)

        try:
            result = await scrape_metrics(self.client, self.config)
        except Exception as exc:
            logger.exception("scrape_cycle_crashed", error=str(exc))
            return ScrapeResult(errors=[exc])

        error = result.error
        if error is not None:
            logger.error("scrape_failed", error=str(error), error_count=len(result.errors))

        if len(result.batch) == 0:
            return result

        try:
            await self.consumer.consume_metrics(result.batch)
        except Exception as exc:
            logger.error("consume_failed", error=str(exc))
        return result
