"""Tests for the sync scheduler."""

import asyncio
from datetime import timedelta

import pytest

from vaultmem.core.errors import SyncAlreadyRunningError
from vaultmem.core.types import SyncDirection
from vaultmem.sync.scheduler import SyncScheduler


class TestSingleFlight:
    """At most one sync runs at a time."""

    @pytest.mark.asyncio
    async def test_manual_trigger_while_in_flight(self, make_orchestrator):
        """Injected in-flight state makes a manual trigger fail fast."""
        orchestrator = make_orchestrator()
        scheduler = SyncScheduler(orchestrator)
        scheduler.in_flight = True

        with pytest.raises(SyncAlreadyRunningError):
            await scheduler.trigger_manual_sync()

        assert orchestrator.calls == []

    @pytest.mark.asyncio
    async def test_tick_skipped_while_in_flight(self, make_orchestrator):
        orchestrator = make_orchestrator()
        scheduler = SyncScheduler(orchestrator)
        scheduler.in_flight = True

        assert await scheduler.tick() is None
        assert orchestrator.calls == []

    @pytest.mark.asyncio
    async def test_trigger_during_slow_run(self, make_orchestrator):
        """A second trigger during a running sync never starts another run."""
        gate = asyncio.Event()
        orchestrator = make_orchestrator(gate=gate)
        scheduler = SyncScheduler(orchestrator)

        running = asyncio.create_task(scheduler.tick())
        await asyncio.sleep(0)

        assert scheduler.in_flight
        with pytest.raises(SyncAlreadyRunningError):
            await scheduler.trigger_manual_sync(SyncDirection.NEO4J_TO_OBSIDIAN)
        assert await scheduler.tick() is None

        gate.set()
        result = await running

        assert orchestrator.calls == [SyncDirection.BOTH]
        assert scheduler.last_result is result
        assert not scheduler.in_flight

    @pytest.mark.asyncio
    async def test_start_manual_sync_claims_flag_immediately(self, make_orchestrator):
        gate = asyncio.Event()
        scheduler = SyncScheduler(make_orchestrator(gate=gate))

        task = scheduler.start_manual_sync("obsidian_to_neo4j")

        assert scheduler.in_flight
        with pytest.raises(SyncAlreadyRunningError):
            scheduler.start_manual_sync()

        gate.set()
        await task
        assert not scheduler.in_flight

    @pytest.mark.asyncio
    async def test_flag_cleared_on_failure(self, make_orchestrator):
        scheduler = SyncScheduler(make_orchestrator(error=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            await scheduler.trigger_manual_sync()

        assert not scheduler.in_flight
        assert scheduler.last_result is None


class TestLifecycle:
    """Tests for start, stop and status."""

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, make_orchestrator):
        scheduler = SyncScheduler(make_orchestrator())

        scheduler.stop()
        scheduler.start()
        timer = scheduler._timer
        scheduler.start()

        assert scheduler.enabled
        assert scheduler._timer is timer

        scheduler.stop()
        scheduler.stop()
        assert not scheduler.enabled

    @pytest.mark.asyncio
    async def test_timer_runs_ticks(self, make_orchestrator):
        orchestrator = make_orchestrator()
        scheduler = SyncScheduler(orchestrator, interval_minutes=0.0005)

        scheduler.start()
        await asyncio.sleep(0.2)
        scheduler.stop()
        await scheduler.wait_idle()

        assert len(orchestrator.calls) >= 1
        assert set(orchestrator.calls) == {SyncDirection.BOTH}

    @pytest.mark.asyncio
    async def test_status_after_run(self, make_orchestrator):
        scheduler = SyncScheduler(make_orchestrator(), interval_minutes=5)
        scheduler.start()
        try:
            await scheduler.trigger_manual_sync()
            status = scheduler.status()
        finally:
            scheduler.stop()

        assert status.enabled
        assert not status.is_running
        assert status.interval == 5
        assert status.next_sync == status.last_sync + timedelta(minutes=5)
        assert status.last_result is not None

    @pytest.mark.asyncio
    async def test_status_when_disabled(self, make_orchestrator):
        scheduler = SyncScheduler(make_orchestrator())
        await scheduler.trigger_manual_sync()

        status = scheduler.status()

        assert not status.enabled
        assert status.last_sync is not None
        assert status.next_sync is None
