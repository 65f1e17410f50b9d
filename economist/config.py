from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import time, timezone
from typing import FrozenSet, List, Optional


# -------------------------
# Market / worker constants
# -------------------------

OPENING_TIME = time(6, 0, 0)
CLOSING_TIME = time(18, 0, 0)
MARKET_TZ = timezone.utc
POLL_INTERVAL_SECONDS = 10.0
SNAPSHOT_LIMIT = 200
WORKER_QUEUE_SIZE = 8

CHART_HISTORY = 14
TREND_THRESHOLD = 0.2
CHART_HEADROOM = 1.0
RECORD_ID_WIDTH = 5

DEFAULT_CHART_SERVER_URL = "https://economist-image-server.shuttleapp.rs"


# -------------------------
# Env helpers
# -------------------------

def _get(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v != "" else default


def _int(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = _get(name)
    if raw is None:
        return default
    digits = re.sub(r"[^0-9]", "", raw)
    if digits == "":
        return default
    return int(digits)


def _float(name: str, default: float) -> float:
    raw = _get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_list(name: str) -> List[int]:
    raw = _get(name, "")
    parts = [p.strip() for p in str(raw).replace("\n", ",").replace(";", ",").split(",") if p.strip()]
    out: List[int] = []
    for p in parts:
        digits = re.sub(r"[^0-9]", "", p)
        if digits:
            out.append(int(digits))
    # de-dupe stable
    return sorted(list(dict.fromkeys(out)))


@dataclass(frozen=True)
class Settings:
    discord_token: str
    database_url: str
    guild_id: Optional[int] = None
    database_password: str = ""
    staff_role_ids: FrozenSet[int] = field(default_factory=frozenset)
    chart_server_url: str = DEFAULT_CHART_SERVER_URL
    log_level: str = "INFO"
    http_timeout: float = 30.0


def load_settings() -> Settings:
    """Read settings from the environment. Raises RuntimeError when a required value is missing."""
    token = _get("DISCORD_TOKEN")
    database_url = _get("DATABASE_URL")
    if not token:
        raise RuntimeError("Missing DISCORD_TOKEN")
    if not database_url:
        raise RuntimeError("Missing DATABASE_URL")

    return Settings(
        discord_token=token,
        database_url=database_url,
        guild_id=_int("GUILD_ID"),
        database_password=_get("DATABASE_PASSWORD", "") or "",
        staff_role_ids=frozenset(_int_list("STAFF_ROLE_IDS")),
        chart_server_url=(_get("CHART_SERVER_URL", DEFAULT_CHART_SERVER_URL) or "").rstrip("/"),
        log_level=(_get("LOG_LEVEL", "INFO") or "INFO").upper(),
        http_timeout=_float("HTTP_TIMEOUT", 30.0),
    )
