"""End-of-day chart rendering and publishing.

Charts plot closing value against record date for a currency's recent
records. The line colour reflects the latest day-on-day move; the image is
posted to the chart server at ``/{currency_id:05}/{record_id:05}`` so that
``/currency view`` can embed it by URL.
"""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional, Sequence

import aiohttp
import matplotlib

matplotlib.use("Agg")  # headless
import matplotlib.dates as mdates  # noqa: E402
import matplotlib.pyplot as plt  # noqa: E402

from .config import CHART_HEADROOM, CHART_HISTORY, RECORD_ID_WIDTH, TREND_THRESHOLD
from .ledger import CurrencyData, LedgerRepository, RecordData

logger = logging.getLogger("economist.charts")

GAIN_COLOR = "#3BA55C"
DECLINE_COLOR = "#ED4245"
NEUTRAL_COLOR = "#2081C3"


def chart_url(base_url: str, currency_id: int, record_id: int) -> str:
    w = RECORD_ID_WIDTH
    return f"{base_url.rstrip('/')}/{currency_id:0{w}d}/{record_id:0{w}d}"


def trend_color(records: Sequence[RecordData], threshold: float = TREND_THRESHOLD) -> str:
    """Colour for a most-recent-first list of records."""
    if len(records) < 2:
        return NEUTRAL_COLOR
    change = records[0].closing_value - records[1].closing_value
    if change > threshold:
        return GAIN_COLOR
    if change < -threshold:
        return DECLINE_COLOR
    return NEUTRAL_COLOR


def axis_upper_bound(records: Sequence[RecordData], headroom: float = CHART_HEADROOM) -> float:
    if not records:
        return headroom
    return max(r.closing_value for r in records) + headroom


def render_chart(currency: CurrencyData, records: Sequence[RecordData]) -> bytes:
    """Render a PNG line chart. ``records`` are most-recent-first."""
    ordered = list(reversed(records))
    dates = [r.record_date for r in ordered]
    closing = [r.closing_value for r in ordered]

    fig, ax = plt.subplots(figsize=(6, 3))
    try:
        ax.plot(dates, closing, linewidth=1.6, marker="o", markersize=3, color=trend_color(records))
        ax.set_ylim(0, axis_upper_bound(records))
        ax.set_title(f"{currency.currency_name} ({currency.currency_code}) closing value", fontsize=9)
        ax.set_ylabel(f"ingot / {currency.currency_code}", fontsize=8)
        ax.tick_params(labelsize=7)
        ax.grid(True, linewidth=0.4, alpha=0.5)
        if dates:
            ax.xaxis.set_major_formatter(mdates.DateFormatter("%m-%d"))
        fig.tight_layout(pad=1.0)
        buf = io.BytesIO()
        fig.savefig(buf, format="png", dpi=120)
    finally:
        plt.close(fig)
    return buf.getvalue()


class ChartExporter:
    """Renders a currency's recent history and posts it to the chart server.

    ``export`` never raises: every failure is logged and reported as ``False``
    so the record worker can carry on with the next currency.
    """

    def __init__(
        self,
        ledger: LedgerRepository,
        session: aiohttp.ClientSession,
        base_url: str,
        history: int = CHART_HISTORY,
        timeout: float = 30.0,
    ):
        self.ledger = ledger
        self.session = session
        self.base_url = base_url
        self.history = history
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def export(self, currency: CurrencyData, record: RecordData) -> bool:
        code = currency.currency_code
        try:
            records = await self.ledger.get_recent_records(currency.currency_id, self.history)
        except Exception:
            logger.exception("chart_history_failed currency=%s", code)
            return False

        try:
            image = await asyncio.to_thread(render_chart, currency, records)
        except Exception:
            logger.exception("chart_render_failed currency=%s points=%d", code, len(records))
            return False

        return await self.publish(currency.currency_id, record.record_id, image, code=code)

    async def publish(self, currency_id: int, record_id: int, image: bytes, code: Optional[str] = None) -> bool:
        url = chart_url(self.base_url, currency_id, record_id)
        form = aiohttp.FormData()
        form.add_field("file", image, filename="chart.png", content_type="image/png")
        try:
            async with self.session.post(url, data=form, timeout=self.timeout) as resp:
                if resp.status // 100 != 2:
                    body = await resp.text()
                    logger.error("chart_publish_rejected currency=%s url=%s status=%s body=%s", code, url, resp.status, body[:200])
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("chart_publish_failed currency=%s url=%s error=%r", code, url, e)
            return False
        logger.info("chart_published currency=%s url=%s bytes=%d", code, url, len(image))
        return True
