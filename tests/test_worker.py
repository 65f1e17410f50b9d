from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import FakeLedger, make_currency
from economist.worker import RecordWorker, WorkerMessage, materialize, request_halt, start_record_worker

DAY = date(2024, 5, 1)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def _seed(ledger: FakeLedger) -> None:
    ledger.put(make_currency(1, "AAA", reserves=100, circulation=50))
    ledger.put(make_currency(2, "BBB", reserves=0, circulation=10))


def _worker(ledger, exporter=None) -> RecordWorker:
    return RecordWorker(ledger, exporter, asyncio.Queue(maxsize=8), poll_interval=0.01)


async def test_full_day_produces_one_record_per_currency(ledger):
    _seed(ledger)
    exporter = AsyncMock()
    worker = _worker(ledger, exporter)

    assert await worker.tick(at(7)) == []
    assert worker.state.is_open
    ledger.set_amounts(1, reserves=150, circulation=50)

    records = await worker.tick(at(18, 30))
    by_currency = {r.currency_id: r for r in records}

    assert set(by_currency) == {1, 2}
    assert by_currency[1].opening_value == pytest.approx(2.0)
    assert by_currency[1].closing_value == pytest.approx(3.0)
    assert by_currency[1].delta_value == pytest.approx(1.0)
    assert by_currency[1].growth == 1
    assert by_currency[2].opening_value == 0.0
    assert by_currency[2].closing_value == 0.0
    assert by_currency[2].growth == 0
    assert all(r.record_date == DAY for r in records)
    assert exporter.export.await_count == 2
    assert not worker.state.is_open


async def test_repeated_ticks_inside_a_phase_do_nothing(ledger):
    _seed(ledger)
    worker = _worker(ledger)

    await worker.tick(at(7))
    await worker.tick(at(8))
    await worker.tick(at(12))
    assert ledger.list_calls == 1

    first = await worker.tick(at(18, 1))
    second = await worker.tick(at(19))
    assert len(first) == 2
    assert second == []
    assert len(ledger.records) == 2
    assert ledger.list_calls == 2


async def test_boundaries_are_exclusive(ledger):
    _seed(ledger)
    worker = _worker(ledger)

    await worker.tick(at(6, 0))
    assert not worker.state.is_open
    await worker.tick(at(6, 1))
    assert worker.state.is_open

    assert await worker.tick(at(18, 0)) == []
    assert worker.state.is_open
    assert len(await worker.tick(at(18, 1))) == 2


async def test_before_opening_nothing_happens(ledger):
    _seed(ledger)
    worker = _worker(ledger)

    assert await worker.tick(at(3)) == []
    assert await worker.tick(at(20)) == []
    assert ledger.list_calls == 0
    assert ledger.records == []


async def test_currency_missing_at_close_is_skipped(ledger):
    _seed(ledger)
    worker = _worker(ledger)

    await worker.tick(at(7))
    del ledger.currencies[2]
    ledger.put(make_currency(3, "CCC", reserves=10, circulation=10))
    records = await worker.tick(at(18, 30))

    assert [r.currency_id for r in records] == [1]


async def test_one_failed_insert_does_not_stop_the_others(ledger):
    _seed(ledger)
    ledger.fail_insert_for = {1}
    worker = _worker(ledger)

    await worker.tick(at(7))
    records = await worker.tick(at(18, 30))

    assert [r.currency_id for r in records] == [2]
    assert not worker.state.is_open


async def test_export_failure_does_not_undo_records(ledger):
    _seed(ledger)
    exported = []

    async def export(currency, record):
        if currency.currency_code == "AAA":
            raise RuntimeError("chart server down")
        exported.append(currency.currency_code)
        return True

    exporter = AsyncMock()
    exporter.export.side_effect = export

    opening = {c.currency_id: c for c in await ledger.list_currencies(10)}
    records = await materialize(ledger, exporter, opening, dict(opening), DAY)

    assert sorted(r.currency_id for r in records) == [1, 2]
    assert len(ledger.records) == 2
    assert exported == ["BBB"]


async def test_existing_record_for_the_day_is_not_duplicated(ledger):
    _seed(ledger)
    opening = {c.currency_id: c for c in await ledger.list_currencies(10)}

    first = await materialize(ledger, None, opening, opening, DAY)
    second = await materialize(ledger, None, opening, opening, DAY)

    assert len(first) == 2
    assert second == []
    assert len(ledger.records) == 2


async def test_failed_snapshot_is_retried_on_next_poll(ledger):
    _seed(ledger)
    ledger.fail_list = 1
    worker = _worker(ledger)

    await worker.tick(at(7))
    assert not worker.state.is_open
    await worker.tick(at(7, 1))
    assert worker.state.is_open

    ledger.fail_list = 1
    assert await worker.tick(at(18, 30)) == []
    assert worker.state.is_open
    assert len(await worker.tick(at(18, 31))) == 2


async def test_day_without_close_is_abandoned(ledger):
    _seed(ledger)
    worker = _worker(ledger)
    next_day = date(2024, 5, 2)

    await worker.tick(at(7))
    ledger.fail_list = 100
    await worker.tick(at(18, 30))
    assert worker.state.is_open

    ledger.fail_list = 0
    await worker.tick(at(7, day=next_day))
    assert worker.state.is_open
    assert worker.state.opened_on == next_day

    records = await worker.tick(at(18, 30, day=next_day))
    assert len(records) == 2
    assert all(r.record_date == next_day for r in records)


async def test_halt_stops_the_worker(ledger):
    task, inbox = start_record_worker(
        ledger, None, poll_interval=0.01, clock=lambda: at(3),
    )
    await asyncio.sleep(0.03)
    request_halt(inbox)
    await asyncio.wait_for(task, timeout=1.0)
    assert task.done()
    assert task.exception() is None


async def test_tick_errors_do_not_kill_the_worker(ledger):
    calls = []

    def clock():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("clock broke")
        return at(3)

    task, inbox = start_record_worker(ledger, None, poll_interval=0.01, clock=clock)
    await asyncio.sleep(0.05)
    assert not task.done()
    request_halt(inbox)
    await asyncio.wait_for(task, timeout=1.0)
    assert len(calls) > 1


def test_request_halt_on_full_inbox_is_silent():
    inbox = asyncio.Queue(maxsize=1)
    request_halt(inbox)
    request_halt(inbox)
    assert inbox.get_nowait() is WorkerMessage.HALT


async def test_pending_halt_prevents_any_further_tick(ledger):
    _seed(ledger)
    task, inbox = start_record_worker(ledger, None, poll_interval=0.01, clock=lambda: at(18, 30))
    request_halt(inbox)
    await asyncio.wait_for(task, timeout=1.0)

    assert ledger.list_calls == 0
    assert ledger.records == []
