"""Periodic availability polling of the watch list."""

import asyncio
import logging
from typing import Optional, Set

from alerts import AlertDispatcher, AlertMemory
from config import APP_CONFIG, AppConfig
from errors import TransientQueryError
from inventory.base import InventorySource
from lifecycle import LifecycleController
from logging_config import PerformanceLogger
from memory_monitor import MemoryMonitor
from models import TickReport, WatchItem
from utils import BackoffTracker, format_duration
from watchlist import WatchList


class Poller:
    """
    Drives the watch loop.

    Each tick snapshots the watch list and checks every item concurrently,
    at most ``max_concurrency`` queries in flight. Failures are isolated per
    item and hold that item back with exponential backoff; they never affect
    the other items of the tick.
    """

    def __init__(
        self,
        watchlist: WatchList,
        lifecycle: LifecycleController,
        source: InventorySource,
        dispatcher: AlertDispatcher,
        alert_memory: AlertMemory,
        logger: logging.Logger,
        config: AppConfig = APP_CONFIG,
        max_concurrency: Optional[int] = None,
        backoff: Optional[BackoffTracker] = None,
        memory_monitor: Optional[MemoryMonitor] = None
    ):
        self.watchlist = watchlist
        self.lifecycle = lifecycle
        self.source = source
        self.dispatcher = dispatcher
        self.alert_memory = alert_memory
        self.logger = logger
        self.config = config
        self.memory_monitor = memory_monitor

        self.max_concurrency = max_concurrency or config.max_concurrent_queries
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.backoff = backoff or BackoffTracker(
            base=config.backoff_base_seconds,
            factor=config.backoff_factor,
            max_delay=config.backoff_max_seconds,
        )

        self.tick_count = 0
        self.last_report: Optional[TickReport] = None
        self.running = False
        self.shutdown_event: Optional[asyncio.Event] = None

        # Alerts run as their own tasks, outside the tick deadline
        self._dispatches: Set[asyncio.Task] = set()
        self._backoff_generation = alert_memory.generation

    async def run_tick(self) -> Optional[TickReport]:
        """
        Run one tick of the watch loop.

        Returns:
            TickReport with results, or None if the tick was skipped because
            the engine is paused
        """
        if not self.lifecycle.is_running:
            self.logger.debug("Paused, skipping tick")
            return None

        # Generation first: a clean after this point invalidates the whole snapshot
        generation = self.alert_memory.generation
        items = self.watchlist.get_listen_items()

        # A cleaned list starts over, so re-added items are not held back
        if generation != self._backoff_generation:
            self.backoff.clear()
            self._backoff_generation = generation
        self.backoff.retain(item.key for item in items)

        self.tick_count += 1
        report = TickReport(tick_number=self.tick_count)

        due = []
        for item in items:
            if self.backoff.should_skip(item.key):
                report.items_skipped += 1
            else:
                due.append(item)

        if due:
            with PerformanceLogger(self.logger, f"tick {report.tick_number}"):
                await self._check_items(due, generation, report)

        report.finalize()
        self.last_report = report
        self._log_report(report)

        every = self.config.memory_log_every_n_ticks
        if self.memory_monitor and every > 0 and self.tick_count % every == 0:
            self.memory_monitor.log_memory_stats(self.logger, f"tick {self.tick_count}")

        return report

    async def _check_items(self, items, generation: int, report: TickReport):
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.ensure_future(self._check_single_item(item, semaphore, generation, report))
            for item in items
        ]

        done, pending = await asyncio.wait(tasks, timeout=self.config.tick_timeout)

        if pending:
            self.logger.warning(
                f"Tick {report.tick_number}: abandoning {len(pending)} unfinished checks "
                f"after {self.config.tick_timeout}s, retrying next tick"
            )
            for task in pending:
                task.cancel()
                report.record_error(timed_out=True)
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                self.logger.error(f"Item check crashed: {task.exception()!r}")

    async def _check_single_item(
        self,
        item: WatchItem,
        semaphore: asyncio.Semaphore,
        generation: int,
        report: TickReport
    ):
        """Check one item and hand a new availability episode to the dispatcher."""
        key = item.key

        try:
            async with semaphore:
                result = await asyncio.wait_for(
                    self.source.check(item),
                    timeout=self.config.query_timeout
                )
        except asyncio.TimeoutError:
            delay = self.backoff.record_failure(key)
            report.record_error(timed_out=True)
            self.logger.warning(
                f"Timeout checking {item.label}, next attempt in {format_duration(delay)}"
            )
            return
        except TransientQueryError as e:
            delay = self.backoff.record_failure(key)
            report.record_error()
            self.logger.warning(
                f"Check failed for {item.label}: {e}, next attempt in {format_duration(delay)}"
            )
            return
        except Exception as e:
            self.backoff.record_failure(key)
            report.record_error()
            self.logger.exception(f"Unexpected error checking {item.label}: {e}")
            return

        self.backoff.record_success(key)
        report.record_result(result.available)

        if not result.available:
            self.alert_memory.discard(key, generation)
            return

        if not self.watchlist.claim_alert(key, generation):
            self.logger.debug(f"No new episode for {item.label}, suppressing")
            return

        report.alerts_fired += 1
        self._start_dispatch(item, result.deep_link)

    def _start_dispatch(self, item: WatchItem, deep_link: str):
        task = asyncio.ensure_future(self.dispatcher.fire(item, deep_link))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatch_done)

    def _dispatch_done(self, task: asyncio.Task):
        self._dispatches.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Alert dispatch crashed: {task.exception()!r}")

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatches)

    async def drain_dispatches(self):
        """Wait for alerts that are still being delivered."""
        while self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)
            # Let the done callbacks run
            await asyncio.sleep(0)

    def _log_report(self, report: TickReport):
        summary = (
            f"Tick {report.tick_number}: "
            f"{report.items_checked} checked, "
            f"{report.items_available} available, "
            f"{report.alerts_fired} alerts, "
            f"{report.errors_encountered} errors, "
            f"{report.items_skipped} backing off"
        )
        if report.alerts_fired or report.errors_encountered:
            self.logger.info(summary)
        else:
            self.logger.debug(summary)

    async def run_continuous(self):
        """Run ticks at the configured interval until ``request_stop`` is called."""
        shutdown_event = self._get_shutdown_event()
        self.running = True
        loop = asyncio.get_running_loop()
        self.logger.info(
            f"Starting watch loop with {self.config.tick_interval_seconds}s interval, "
            f"{self.max_concurrency} concurrent queries"
        )

        while not shutdown_event.is_set():
            started = loop.time()
            try:
                await self.run_tick()
            except Exception as e:
                self.logger.exception(f"Error in watch tick: {e}")

            remaining = max(0.0, self.config.tick_interval_seconds - (loop.time() - started))
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                # Normal timeout, continue to next tick
                pass

        if self._dispatches:
            self.logger.info(f"Waiting for {len(self._dispatches)} alerts to finish")
            await self.drain_dispatches()

        self.running = False
        self.logger.info("Watch loop stopped")

    def request_stop(self):
        """Ask the loop to exit. Must be called on the loop's thread."""
        self._get_shutdown_event().set()

    def _get_shutdown_event(self) -> asyncio.Event:
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()
        return self.shutdown_event
