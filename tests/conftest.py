from __future__ import annotations

import asyncio
import inspect
import pathlib
import sys
from datetime import date
from typing import Dict, List, Optional

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from economist.ledger import CurrencyData, CurrencySort, RecordData, compute_growth, compute_value  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> Optional[bool]:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            argnames = pyfuncitem._fixtureinfo.argnames
            loop.run_until_complete(test_function(**{k: pyfuncitem.funcargs[k] for k in argnames}))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


def make_currency(currency_id: int, code: str, reserves: int, circulation: int, **kw) -> CurrencyData:
    return CurrencyData(
        currency_id=currency_id,
        currency_code=code,
        currency_name=kw.get("name", f"{code} Mark"),
        state=kw.get("state", "Testland"),
        circulation=circulation,
        reserves=reserves,
        owner=kw.get("owner", "alice"),
        value=compute_value(reserves, circulation),
    )


class FakeLedger:
    """In-memory stand-in for LedgerRepository covering what the worker and charts use."""

    def __init__(self) -> None:
        self.currencies: Dict[int, CurrencyData] = {}
        self.records: List[RecordData] = []
        self.list_calls = 0
        self.fail_list = 0
        self.fail_insert_for: set = set()

    def put(self, currency: CurrencyData) -> None:
        self.currencies[currency.currency_id] = currency

    def set_amounts(self, currency_id: int, reserves: int, circulation: int) -> None:
        c = self.currencies[currency_id]
        self.put(make_currency(c.currency_id, c.currency_code, reserves, circulation, name=c.currency_name))

    async def list_currencies(self, limit: int, sort: CurrencySort = CurrencySort.NAME) -> List[CurrencyData]:
        self.list_calls += 1
        if self.fail_list > 0:
            self.fail_list -= 1
            raise ConnectionError("database unavailable")
        ordered = sorted(self.currencies.values(), key=lambda c: c.currency_code)
        return ordered[:limit]

    async def insert_record(
        self,
        currency_id: int,
        opening_value: float,
        closing_value: float,
        record_date: Optional[date] = None,
    ) -> Optional[RecordData]:
        if currency_id in self.fail_insert_for:
            raise ConnectionError("insert failed")
        record_date = record_date or date.today()
        if any(r.currency_id == currency_id and r.record_date == record_date for r in self.records):
            return None
        delta = closing_value - opening_value
        record = RecordData(
            record_id=len(self.records) + 1,
            record_date=record_date,
            currency_id=currency_id,
            opening_value=opening_value,
            closing_value=closing_value,
            delta_value=delta,
            growth=compute_growth(delta),
        )
        self.records.append(record)
        return record

    async def get_recent_records(self, currency_id: int, limit: int) -> List[RecordData]:
        mine = [r for r in self.records if r.currency_id == currency_id]
        mine.sort(key=lambda r: (r.record_date, r.record_id), reverse=True)
        return mine[:limit]


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()
