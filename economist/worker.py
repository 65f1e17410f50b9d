"""Background worker that records each currency's value over the trading day.

The market opens at ``OPENING_TIME`` and closes at ``CLOSING_TIME`` (both in
``MARKET_TZ``). On the first poll after opening, every currency is
snapshotted; on the first poll after closing, every currency is snapshotted
again and one record per currency is written with the opening and closing
values. Each new record is then handed to the chart exporter.

The worker polls on a fixed interval and stops when it receives
``WorkerMessage.HALT`` on its inbox.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Callable, Dict, List, Optional, Tuple

from .charts import ChartExporter
from .config import (
    CLOSING_TIME,
    MARKET_TZ,
    OPENING_TIME,
    POLL_INTERVAL_SECONDS,
    SNAPSHOT_LIMIT,
    WORKER_QUEUE_SIZE,
)
from .ledger import CurrencyData, CurrencySort, LedgerRepository, RecordData

logger = logging.getLogger("economist.worker")


class WorkerMessage(enum.Enum):
    HALT = "halt"


@dataclass
class MarketState:
    is_open: bool = False
    opened_on: Optional[date] = None
    opening: Dict[int, CurrencyData] = field(default_factory=dict)
    closing: Dict[int, CurrencyData] = field(default_factory=dict)


def request_halt(inbox: "asyncio.Queue[WorkerMessage]") -> None:
    try:
        inbox.put_nowait(WorkerMessage.HALT)
    except asyncio.QueueFull:
        # a full inbox already holds a halt
        pass


async def materialize(
    ledger: LedgerRepository,
    exporter: Optional[ChartExporter],
    opening: Dict[int, CurrencyData],
    closing: Dict[int, CurrencyData],
    record_date: Optional[date] = None,
) -> List[RecordData]:
    """Write one record per currency present in both snapshots.

    A failed insert is logged and skipped; the remaining currencies are still
    recorded. Export failures never count against the record.
    """
    created: List[RecordData] = []
    for currency_id, opened in opening.items():
        closed = closing.get(currency_id)
        if closed is None:
            logger.info("record_skipped currency=%s reason=missing_at_close", opened.currency_code)
            continue

        try:
            record = await ledger.insert_record(currency_id, opened.value, closed.value, record_date)
        except Exception:
            logger.exception("record_insert_failed currency=%s", opened.currency_code)
            continue

        if record is None:
            logger.warning("record_exists currency=%s date=%s", opened.currency_code, record_date)
            continue

        created.append(record)
        logger.info(
            "record_inserted currency=%s record_id=%s opening=%.3f closing=%.3f growth=%d",
            closed.currency_code, record.record_id, record.opening_value, record.closing_value, record.growth,
        )

        if exporter is None:
            continue
        try:
            await exporter.export(closed, record)
        except Exception:
            logger.exception("chart_export_failed currency=%s record_id=%s", closed.currency_code, record.record_id)

    return created


class RecordWorker:
    def __init__(
        self,
        ledger: LedgerRepository,
        exporter: Optional[ChartExporter],
        inbox: "asyncio.Queue[WorkerMessage]",
        *,
        opening_time: time = OPENING_TIME,
        closing_time: time = CLOSING_TIME,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        snapshot_limit: int = SNAPSHOT_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ledger = ledger
        self.exporter = exporter
        self.inbox = inbox
        self.opening_time = opening_time
        self.closing_time = closing_time
        self.poll_interval = poll_interval
        self.snapshot_limit = snapshot_limit
        self.clock = clock or (lambda: datetime.now(MARKET_TZ))
        self.state = MarketState()

    async def run(self) -> None:
        logger.info(
            "record_worker_started opening=%s closing=%s poll=%ss",
            self.opening_time, self.closing_time, self.poll_interval,
        )
        while True:
            if self._halt_requested():
                logger.warning("record_worker_halting")
                return
            try:
                await self.tick(self.clock())
            except Exception:
                logger.exception("record_worker_tick_failed")
            await asyncio.sleep(self.poll_interval)

    def _halt_requested(self) -> bool:
        try:
            message = self.inbox.get_nowait()
        except asyncio.QueueEmpty:
            return False
        return message is WorkerMessage.HALT

    async def tick(self, now: datetime) -> List[RecordData]:
        """Run one poll at ``now``. Returns the records written on this poll."""
        today = now.date()
        moment = now.time()

        if self.state.is_open and self.state.opened_on is not None and today > self.state.opened_on:
            logger.warning(
                "trading_day_abandoned opened_on=%s reason=no_closing_snapshot currencies=%d",
                self.state.opened_on, len(self.state.opening),
            )
            self.state = MarketState()

        if self.opening_time < moment < self.closing_time and not self.state.is_open:
            await self.open_market(now)
        elif moment > self.closing_time and self.state.is_open:
            return await self.close_market(now)
        return []

    async def _snapshot(self, label: str) -> Optional[Dict[int, CurrencyData]]:
        try:
            currencies = await self.ledger.list_currencies(self.snapshot_limit, CurrencySort.CURRENCY_CODE)
        except Exception:
            logger.exception("snapshot_failed at=%s", label)
            return None
        return {c.currency_id: c for c in currencies}

    async def open_market(self, now: datetime) -> bool:
        snapshot = await self._snapshot("opening")
        if snapshot is None:
            return False
        self.state.opening = snapshot
        self.state.closing = {}
        self.state.opened_on = now.date()
        self.state.is_open = True
        logger.info("market_opened time=%s currencies=%d", now.isoformat(), len(snapshot))
        return True

    async def close_market(self, now: datetime) -> List[RecordData]:
        snapshot = await self._snapshot("closing")
        if snapshot is None:
            return []
        self.state.closing = snapshot
        self.state.is_open = False
        logger.info("market_closed time=%s currencies=%d", now.isoformat(), len(snapshot))
        return await materialize(
            self.ledger,
            self.exporter,
            self.state.opening,
            self.state.closing,
            self.state.opened_on or now.date(),
        )


def start_record_worker(
    ledger: LedgerRepository,
    exporter: Optional[ChartExporter],
    **kwargs,
) -> Tuple["asyncio.Task[None]", "asyncio.Queue[WorkerMessage]"]:
    """Spawn the worker on the running loop. Send a halt with ``request_halt(inbox)``."""
    inbox: "asyncio.Queue[WorkerMessage]" = asyncio.Queue(maxsize=WORKER_QUEUE_SIZE)
    worker = RecordWorker(ledger, exporter, inbox, **kwargs)
    task = asyncio.create_task(worker.run(), name="record-worker")
    return task, inbox
