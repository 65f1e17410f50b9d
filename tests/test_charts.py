from __future__ import annotations

from datetime import date, timedelta
from unittest.mock import MagicMock

import aiohttp
import pytest

from conftest import make_currency
from economist.charts import (
    DECLINE_COLOR,
    GAIN_COLOR,
    NEUTRAL_COLOR,
    ChartExporter,
    axis_upper_bound,
    chart_url,
    render_chart,
    trend_color,
)
from economist.ledger import RecordData

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def _records(*closing: float):
    """Most recent first, one day apart."""
    start = date(2024, 5, 20)
    return [
        RecordData(
            record_id=len(closing) - i,
            record_date=start - timedelta(days=i),
            currency_id=1,
            opening_value=v,
            closing_value=v,
            delta_value=0.0,
            growth=0,
        )
        for i, v in enumerate(closing)
    ]


def test_chart_url_zero_pads_ids():
    assert chart_url("https://charts.example/", 7, 42) == "https://charts.example/00007/00042"
    assert chart_url("https://charts.example", 123456, 1) == "https://charts.example/123456/00001"


@pytest.mark.parametrize(
    "closing, expected",
    [
        ((), NEUTRAL_COLOR),
        ((3.0,), NEUTRAL_COLOR),
        ((3.0, 2.0), GAIN_COLOR),
        ((2.0, 3.0), DECLINE_COLOR),
        ((2.1, 2.0), NEUTRAL_COLOR),
        ((1.9, 2.0), NEUTRAL_COLOR),
    ],
)
def test_trend_color_follows_latest_move(closing, expected):
    assert trend_color(_records(*closing)) == expected


def test_axis_upper_bound_adds_headroom():
    assert axis_upper_bound([]) == pytest.approx(1.0)
    assert axis_upper_bound(_records(0.5, 2.5, 1.0)) == pytest.approx(3.5)


@pytest.mark.parametrize("closing", [(), (1.0,), (1.0, 1.5, 0.75, 2.0)])
def test_render_chart_returns_png(closing):
    image = render_chart(make_currency(1, "AAA", 100, 50), _records(*closing))
    assert image.startswith(PNG_MAGIC)


class StubResponse:
    def __init__(self, status: int) -> None:
        self.status = status

    async def text(self) -> str:
        return "nope"

    async def __aenter__(self) -> "StubResponse":
        return self

    async def __aexit__(self, *exc) -> None:
        return None


class StubSession:
    def __init__(self, status: int = 200, error: Exception = None) -> None:
        self.status = status
        self.error = error
        self.urls = []

    def post(self, url, data=None, timeout=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return StubResponse(self.status)


async def test_publish_posts_to_chart_url():
    session = StubSession()
    exporter = ChartExporter(MagicMock(), session, "https://charts.example")

    assert await exporter.publish(3, 9, PNG_MAGIC)
    assert session.urls == ["https://charts.example/00003/00009"]


@pytest.mark.parametrize(
    "session",
    [StubSession(status=500), StubSession(error=aiohttp.ClientConnectionError("refused"))],
)
async def test_publish_failures_are_reported_not_raised(session):
    exporter = ChartExporter(MagicMock(), session, "https://charts.example")
    assert await exporter.publish(3, 9, PNG_MAGIC) is False


async def test_export_renders_history(ledger):
    currency = make_currency(1, "AAA", 100, 50)
    ledger.put(currency)
    first = await ledger.insert_record(1, 1.0, 2.0, date(2024, 5, 1))
    latest = await ledger.insert_record(1, 2.0, 3.0, date(2024, 5, 2))
    session = StubSession()
    exporter = ChartExporter(ledger, session, "https://charts.example")

    assert first is not None
    assert await exporter.export(currency, latest)
    assert session.urls == [f"https://charts.example/00001/{latest.record_id:05d}"]


async def test_export_survives_history_failure():
    broken = MagicMock()

    async def fail(*args):
        raise ConnectionError("database unavailable")

    broken.get_recent_records = fail
    session = StubSession()
    exporter = ChartExporter(broken, session, "https://charts.example")
    record = _records(1.0)[0]

    assert await exporter.export(make_currency(1, "AAA", 1, 1), record) is False
    assert session.urls == []
