"""Tests for SyncScheduler: periodic ticks, overlap, dirty tracking."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from stockbook.ledger import Ledger
from stockbook.models import CloudBackupReference
from stockbook.scheduler import SyncScheduler
from stockbook.store import MemoryStore
from stockbook.sync_client import SyncResult


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ok(revision: int | None = 0) -> SyncResult:
    return SyncResult(
        success=True,
        reference=CloudBackupReference(date="2026-01-01T00:00:00", file="backup-a.json"),
        revision=revision,
    )


def _mock_client(result: SyncResult | None = None, ledger: Ledger | None = None) -> AsyncMock:
    """Mock client whose upload reports the ledger's current revision."""
    client = AsyncMock()
    if ledger is not None:
        client.upload = AsyncMock(side_effect=lambda: _ok(ledger.revision))
    else:
        client.upload = AsyncMock(return_value=result or _ok())
    return client


# ---------------------------------------------------------------------------
# Ticks
# ---------------------------------------------------------------------------


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_uploads(self) -> None:
        client = _mock_client()
        scheduler = SyncScheduler(client, interval_secs=999)
        await scheduler.tick()
        client.upload.assert_awaited_once()
        assert scheduler.health()["successes"] == 1

    @pytest.mark.asyncio
    async def test_unconditional_by_default(self) -> None:
        ledger = Ledger(MemoryStore())
        client = _mock_client(ledger=ledger)
        scheduler = SyncScheduler(client, interval_secs=999, ledger=ledger)
        await scheduler.tick()
        await scheduler.tick()
        assert client.upload.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_is_counted_not_raised(self) -> None:
        client = _mock_client(SyncResult.failed("network", "offline"))
        scheduler = SyncScheduler(client, interval_secs=999)
        await scheduler.tick()
        assert scheduler.health()["failures"] == 1
        assert scheduler.health()["successes"] == 0

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self) -> None:
        client = AsyncMock()
        client.upload = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = SyncScheduler(client, interval_secs=999)
        await scheduler.tick()
        assert scheduler.health()["failures"] == 1


# ---------------------------------------------------------------------------
# Dirty tracking (skip_unchanged)
# ---------------------------------------------------------------------------


class TestSkipUnchanged:
    @pytest.mark.asyncio
    async def test_idle_ticks_skipped(self) -> None:
        ledger = Ledger(MemoryStore())
        client = _mock_client(ledger=ledger)
        scheduler = SyncScheduler(client, interval_secs=999, ledger=ledger, skip_unchanged=True)
        await scheduler.tick()
        assert scheduler.tick() is None
        assert client.upload.await_count == 1
        assert scheduler.health()["skipped"] == 1

    @pytest.mark.asyncio
    async def test_change_after_upload_is_covered(self) -> None:
        ledger = Ledger(MemoryStore())
        client = _mock_client(ledger=ledger)
        scheduler = SyncScheduler(client, interval_secs=999, ledger=ledger, skip_unchanged=True)
        await scheduler.tick()
        ledger.add_product("A", "c", 1, 1)
        assert scheduler.has_unsynced_changes
        await scheduler.tick()
        assert client.upload.await_count == 2
        assert not scheduler.has_unsynced_changes

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_dirty(self) -> None:
        ledger = Ledger(MemoryStore())
        ledger.add_product("A", "c", 1, 1)
        client = _mock_client(SyncResult.failed("network", "offline", revision=1))
        scheduler = SyncScheduler(client, interval_secs=999, ledger=ledger, skip_unchanged=True)
        await scheduler.tick()
        assert scheduler.has_unsynced_changes
        assert scheduler.tick() is not None
        await scheduler.stop(flush=False)

    @pytest.mark.asyncio
    async def test_out_of_order_completion_keeps_newest(self) -> None:
        ledger = Ledger(MemoryStore())
        results = iter([_ok(5), _ok(3)])
        client = AsyncMock()
        client.upload = AsyncMock(side_effect=lambda: next(results))
        scheduler = SyncScheduler(client, interval_secs=999, ledger=ledger)
        await scheduler.tick()
        await scheduler.tick()
        assert scheduler.health()["last_uploaded_revision"] == 5

    @pytest.mark.asyncio
    async def test_skip_requires_ledger(self) -> None:
        client = _mock_client()
        scheduler = SyncScheduler(client, interval_secs=999, skip_unchanged=True)
        await scheduler.tick()
        await scheduler.tick()
        assert client.upload.await_count == 2


# ---------------------------------------------------------------------------
# Overlap
# ---------------------------------------------------------------------------


class TestOverlap:
    @pytest.mark.asyncio
    async def test_slow_upload_does_not_block_next_tick(self) -> None:
        gate = asyncio.Event()

        async def slow_upload():
            await gate.wait()
            return _ok()

        client = AsyncMock()
        client.upload = AsyncMock(side_effect=slow_upload)
        scheduler = SyncScheduler(client, interval_secs=999)
        first = scheduler.tick()
        second = scheduler.tick()
        await asyncio.sleep(0)
        assert scheduler.in_flight == 2
        gate.set()
        await asyncio.gather(first, second)
        assert scheduler.in_flight == 0
        assert scheduler.health()["successes"] == 2


# ---------------------------------------------------------------------------
# Background loop
# ---------------------------------------------------------------------------


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        client = _mock_client()
        scheduler = SyncScheduler(client, interval_secs=1)
        await scheduler.start()
        assert scheduler.running
        await scheduler.stop(flush=False)
        assert not scheduler.running
        assert scheduler._task is None

    @pytest.mark.asyncio
    async def test_loop_fires_periodically(self) -> None:
        client = _mock_client()
        scheduler = SyncScheduler(client, interval_secs=0.05)
        await scheduler.start()
        await asyncio.sleep(0.3)
        await scheduler.stop(flush=False)
        assert client.upload.await_count >= 2
        assert scheduler.health()["cycles"] >= 2

    @pytest.mark.asyncio
    async def test_double_start_idempotent(self) -> None:
        scheduler = SyncScheduler(_mock_client(), interval_secs=1)
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task
        await scheduler.stop(flush=False)

    @pytest.mark.asyncio
    async def test_stop_uploads_unsynced_changes(self) -> None:
        ledger = Ledger(MemoryStore())
        client = _mock_client(ledger=ledger)
        scheduler = SyncScheduler(client, interval_secs=999, ledger=ledger)
        await scheduler.start()
        ledger.add_product("A", "c", 1, 1)
        await scheduler.stop()
        client.upload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_skips_upload_when_synced(self) -> None:
        ledger = Ledger(MemoryStore())
        client = _mock_client(ledger=ledger)
        scheduler = SyncScheduler(client, interval_secs=999, ledger=ledger)
        await scheduler.tick()
        await scheduler.stop()
        client.upload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight(self) -> None:
        gate = asyncio.Event()

        async def slow_upload():
            await gate.wait()
            return _ok()

        client = AsyncMock()
        client.upload = AsyncMock(side_effect=slow_upload)
        scheduler = SyncScheduler(client, interval_secs=999)
        scheduler.tick()
        await asyncio.sleep(0)
        stopping = asyncio.create_task(scheduler.stop(flush=False))
        await asyncio.sleep(0)
        assert not stopping.done()
        gate.set()
        await stopping
        assert scheduler.health()["successes"] == 1

    @pytest.mark.asyncio
    async def test_health_keys(self) -> None:
        scheduler = SyncScheduler(_mock_client(), interval_secs=90)
        health = scheduler.health()
        assert health["running"] is False
        assert health["interval_secs"] == 90
        assert health["in_flight"] == 0
        assert health["unsynced_changes"] is True
