"""
Query monitor tests.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import START, make_query
from caracol.backends.base import Querier, RawPoint
from caracol.core.exceptions import BackendError, ConflictError, NoDataPointError, NotFoundError
from caracol.core.metrics import sample_value
from caracol.models.schemas.collection import DataPoint
from caracol.services import monitor as monitor_module
from caracol.services.monitor import MonitorState, QueryMonitor

NOW = START + timedelta(hours=3)


def counter_value(name, query_id) -> float:
    return sample_value(name, {"query_id": str(query_id)})


class FakeDispatch:
    """Dispatch stand-in returning seq * 10 unless told to fail."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []

    async def __call__(self, query, seq, secrets):
        self.calls.append(seq)
        if seq in self.failures:
            raise self.failures[seq]
        return DataPoint(seq=seq, time=query.seq_time(seq), value=seq * 10.0)


class RecordingSleep:
    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


def make_monitor(store, query, dispatch, sleep=None, **kwargs):
    return QueryMonitor(
        store,
        query,
        {},
        dispatch=dispatch,
        sleep=sleep or RecordingSleep(),
        now=lambda: NOW,
        initial_delay=0,
        poll_interval=600,
        poll_jitter=0,
        dispatch_delay=3,
        dispatch_jitter=0,
        **kwargs,
    )


class TestMonitorOnce:
    """Tests for a single reconciliation pass."""

    async def test_collects_gaps_oldest_first(self, store, hourly_query):
        dispatch = FakeDispatch()
        sleep = RecordingSleep()
        monitor = make_monitor(store, hourly_query, dispatch, sleep)
        collected_before = counter_value("query_collection_total", hourly_query.id)

        summary = await monitor.monitor_once()

        assert dispatch.calls == [0, 1, 2]
        assert sleep.waits == [3, 3]
        assert (summary.gaps, summary.stored, summary.errors) == (3, 3, 0)
        points = await store.get_collected_values(hourly_query.id)
        assert [(p.seq, p.value) for p in points] == [(0, 0.0), (1, 10.0), (2, 20.0)]
        assert counter_value("query_collection_total", hourly_query.id) == collected_before + 3
        assert monitor.state == MonitorState.IDLE

    async def test_no_gaps(self, store, hourly_query):
        for seq in range(3):
            await store.upsert_collected_value(hourly_query.id, seq, 1.0)
        dispatch = FakeDispatch()
        monitor = make_monitor(store, hourly_query, dispatch)

        summary = await monitor.monitor_once()

        assert summary.gaps == 0
        assert dispatch.calls == []

    async def test_soft_errors_continue_the_batch(self, store, hourly_query):
        dispatch = FakeDispatch({1: BackendError("timeout"), 2: NoDataPointError("no point")})
        monitor = make_monitor(store, hourly_query, dispatch)
        errors_before = counter_value("query_error_total", hourly_query.id)

        summary = await monitor.monitor_once()

        assert dispatch.calls == [0, 1, 2]
        assert (summary.stored, summary.errors) == (1, 2)
        assert counter_value("query_error_total", hourly_query.id) == errors_before + 2

        # Failed sequences stay gaps and are retried on the next pass
        dispatch.failures = {}
        dispatch.calls = []
        summary = await monitor.monitor_once()
        assert dispatch.calls == [1, 2]
        assert summary.errors == 0

    async def test_stop_on_error(self, store, hourly_query):
        dispatch = FakeDispatch({1: BackendError("timeout")})
        monitor = make_monitor(store, hourly_query, dispatch)

        with pytest.raises(BackendError):
            await monitor.monitor_once(stop_on_error=True)

        assert dispatch.calls == [0, 1]

    @pytest.mark.parametrize("error", [
        OperationalError("INSERT", {}, Exception("database is gone")),
        ConflictError(1, 0, 1.0, 2.0),
    ])
    async def test_storage_errors_abort_the_pass(self, error):
        query = make_query()
        store = MagicMock()
        store.get_query = AsyncMock(return_value=query)
        store.existing_sequences = AsyncMock(return_value=set())
        store.upsert_collected_value = AsyncMock(side_effect=error)
        dispatch = FakeDispatch()
        monitor = make_monitor(store, query, dispatch)

        with pytest.raises(type(error)):
            await monitor.monitor_once()

        assert dispatch.calls == [0]
        store.upsert_collected_value.assert_awaited_once_with(query.id, 0, 0.0)


class TestMonitorRun:
    """Tests for the monitor loop."""

    async def test_stops_when_query_is_gone(self):
        store = MagicMock()
        store.get_query = AsyncMock(side_effect=NotFoundError("query 1 not found"))
        monitor = make_monitor(store, make_query(), FakeDispatch())

        await monitor.run()

        assert monitor.state == MonitorState.STOPPED

    async def test_storage_error_does_not_stop_the_loop(self):
        query = make_query()
        store = MagicMock()
        store.get_query = AsyncMock(side_effect=[
            OperationalError("SELECT", {}, Exception("database is gone")),
            NotFoundError("query 1 not found"),
        ])
        sleep = RecordingSleep()
        monitor = make_monitor(store, query, FakeDispatch(), sleep)
        errors_before = counter_value("query_error_total", query.id)

        await monitor.run()

        assert store.get_query.await_count == 2
        assert sleep.waits == [0, 600]
        assert counter_value("query_error_total", query.id) == errors_before + 1

    @pytest.mark.parametrize("error", [
        ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)"),
        asyncio.TimeoutError(),
    ])
    async def test_database_outage_does_not_stop_the_loop(self, error):
        query = make_query()
        store = MagicMock()
        store.get_query = AsyncMock(side_effect=[error, NotFoundError("query 1 not found")])
        sleep = RecordingSleep()
        monitor = make_monitor(store, query, FakeDispatch(), sleep)

        await monitor.run()

        assert store.get_query.await_count == 2
        assert sleep.waits == [0, 600]
        assert monitor.state == MonitorState.STOPPED

    async def test_cancellation_mid_batch(self, store, hourly_query):
        dispatch = FakeDispatch()
        blocked = asyncio.Event()
        waits = []

        async def sleep(seconds):
            waits.append(seconds)
            if len(waits) > 1:
                # The wait before the second dispatch never ends
                blocked.set()
                await asyncio.Event().wait()

        monitor = make_monitor(store, hourly_query, dispatch, sleep)
        task = asyncio.create_task(monitor.run())
        await asyncio.wait_for(blocked.wait(), timeout=5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert monitor.state == MonitorState.CANCELLED
        assert dispatch.calls == [0]
        points = await store.get_collected_values(hourly_query.id)
        assert [p.seq for p in points] == [0]

    async def test_cancellation_during_store_write_leaves_no_row(self, store, hourly_query, monkeypatch):
        writing = asyncio.Event()
        open_session = store.db.session

        @asynccontextmanager
        async def stalled_session():
            async with open_session() as session:
                yield session
                if session.new:
                    # Insert is pending; the commit never starts
                    writing.set()
                    await asyncio.Event().wait()

        monkeypatch.setattr(store.db, "session", stalled_session)
        dispatch = FakeDispatch()
        monitor = make_monitor(store, hourly_query, dispatch)

        task = asyncio.create_task(monitor.run())
        await asyncio.wait_for(writing.wait(), timeout=5)
        assert monitor.state == MonitorState.STORING

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert monitor.state == MonitorState.CANCELLED
        assert dispatch.calls == [0]
        assert await store.get_collected_values(hourly_query.id) == []

    def test_requires_stored_query(self, store):
        with pytest.raises(ValueError):
            make_monitor(store, make_query(id=None), FakeDispatch())


class WindowEndQuerier(Querier):
    """Answers every window with one point at its end."""

    name = "window-end"

    def __init__(self):
        self.calls = 0

    async def execute(self, query, from_time, to_time, interval):
        self.calls += 1
        return [RawPoint(to_time, 1.0)]


class TestMonitorQuerier:
    """Tests for the querier a monitor dispatches through."""

    async def test_querier_is_built_once_per_monitor(self, store, hourly_query, monkeypatch):
        querier = WindowEndQuerier()
        built = MagicMock(return_value=querier)
        monkeypatch.setattr(monitor_module, "build_querier", built)
        monitor = make_monitor(store, hourly_query, None)

        first = await monitor.monitor_once()
        await store.upsert_collected_value(hourly_query.id, 3, 1.0)
        monitor.now = lambda: NOW + timedelta(hours=2)
        second = await monitor.monitor_once()

        assert (first.stored, second.stored) == (3, 1)
        assert querier.calls == 4
        built.assert_called_once_with(hourly_query, {}, None)
