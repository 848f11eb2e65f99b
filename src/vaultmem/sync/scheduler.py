"""
Sync Scheduler - periodic sync with single-flight execution.

The scheduler owns all of its state: the timer task, the in-flight flag,
and the most recent run's timestamp and result. Timer ticks and manual
triggers share the in-flight flag, so two runs never overlap:

- a tick that finds a run in flight is skipped
- a manual trigger that finds a run in flight raises SyncAlreadyRunningError
"""

import asyncio
from datetime import datetime, timedelta

from vaultmem.core.config import get_logger
from vaultmem.core.errors import SyncAlreadyRunningError
from vaultmem.core.types import SchedulerStatus, SyncDirection, SyncResult, utcnow
from vaultmem.sync.orchestrator import SyncOrchestrator

logger = get_logger("sync.scheduler")


class SyncScheduler:
    """Runs the orchestrator every `interval_minutes` while started."""

    def __init__(self, orchestrator: SyncOrchestrator, interval_minutes: int = 5):
        self.orchestrator = orchestrator
        self.interval_minutes = interval_minutes

        self.in_flight = False
        self.last_sync: datetime | None = None
        self.last_result: SyncResult | None = None

        self._timer: asyncio.Task | None = None
        self._runs: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._timer is not None

    # ============================================
    # Lifecycle
    # ============================================

    def start(self) -> None:
        """Start the timer. Must be called from a running event loop."""
        if self._timer is not None:
            logger.warning("Sync scheduler already running")
            return

        self._timer = asyncio.get_running_loop().create_task(self._run_forever())
        logger.info(f"Sync scheduler started: every {self.interval_minutes} minutes")

    def stop(self) -> None:
        """Stop the timer. A run already in flight is left to finish."""
        if self._timer is None:
            return

        self._timer.cancel()
        self._timer = None
        logger.info("Sync scheduler stopped")

    async def _run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_minutes * 60)
            self._spawn(self.tick())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._runs.add(task)
        task.add_done_callback(self._run_finished)
        return task

    def _run_finished(self, task: asyncio.Task) -> None:
        self._runs.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Scheduled sync failed: {task.exception()}")

    # ============================================
    # Runs
    # ============================================

    async def tick(self) -> SyncResult | None:
        """One scheduled run in both directions, skipped if one is in flight."""
        if self.in_flight:
            logger.info("Previous sync still running, skipping")
            return None

        result = await self._run(SyncDirection.BOTH)
        if result.success:
            logger.info(
                f"Scheduled sync completed: "
                f"{result.neo4j_to_obsidian.fetched} fetched, "
                f"{result.obsidian_to_neo4j.changed_files} files pushed, "
                f"{result.duration_ms}ms"
            )
        else:
            logger.warning(f"Scheduled sync completed with {result.error_count} errors")
        return result

    async def trigger_manual_sync(self, direction: SyncDirection | str = SyncDirection.BOTH) -> SyncResult:
        """Run a sync now, failing fast if one is already in flight."""
        if self.in_flight:
            raise SyncAlreadyRunningError()

        logger.info(f"Manual sync triggered: direction={SyncDirection(direction).value}")
        return await self._run(direction)

    def start_manual_sync(self, direction: SyncDirection | str = SyncDirection.BOTH) -> asyncio.Task:
        """
        Claim the in-flight flag and run a manual sync as a background task.

        Raises SyncAlreadyRunningError immediately if a run is in flight.
        The returned task keeps running even if the caller stops waiting.
        """
        if self.in_flight:
            raise SyncAlreadyRunningError()

        direction = SyncDirection(direction)
        self.in_flight = True
        logger.info(f"Manual sync triggered: direction={direction.value}")
        return self._spawn(self._run(direction))

    async def _run(self, direction: SyncDirection | str) -> SyncResult:
        # No await between the caller's in-flight check and this assignment
        self.in_flight = True
        try:
            result = await self.orchestrator.sync(direction)
            self.last_sync = utcnow()
            self.last_result = result
            return result
        finally:
            self.in_flight = False

    async def wait_idle(self) -> None:
        """Wait for every spawned run to finish."""
        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)

    # ============================================
    # Status
    # ============================================

    def status(self) -> SchedulerStatus:
        next_sync = None
        if self.enabled and self.last_sync is not None:
            next_sync = self.last_sync + timedelta(minutes=self.interval_minutes)

        return SchedulerStatus(
            enabled=self.enabled,
            last_sync=self.last_sync,
            next_sync=next_sync,
            interval=self.interval_minutes,
            is_running=self.in_flight,
            last_result=self.last_result,
        )
