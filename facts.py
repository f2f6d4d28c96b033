"""
Region Spend Recorder – normalize raw insights rows into facts and dedupe a batch.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

import pandas as pd

from config import normalize_account_id

logger = logging.getLogger(__name__)

UNKNOWN_REGION = "Unknown"
_ISO_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DIGIT = re.compile(r"\d")

# Spreadsheet serial dates count days from this epoch (time of day is the fraction)
SERIAL_EPOCH = date(1899, 12, 30)
_MAX_SERIAL = (date.max - SERIAL_EPOCH).days


@dataclass(frozen=True)
class Fact:
    account_id: str
    account_name: str
    region: str
    day: str
    currency: str
    spend: float
    reporting_start: str
    reporting_end: str

    @property
    def key(self) -> str:
        return f"{self.account_id}|{self.region}|{self.day}"

    def values(self) -> List[Any]:
        """The eight sheet columns, in header order."""
        return [
            self.account_id,
            self.account_name,
            self.region,
            self.day,
            self.currency,
            self.spend,
            self.reporting_start,
            self.reporting_end,
        ]


def _format_day(value: datetime, tz: str) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(ZoneInfo(tz))
    return value.strftime("%Y-%m-%d")


def _serial_day(value: float) -> Optional[str]:
    if not math.isfinite(value) or value < 1 or value > _MAX_SERIAL:
        return None
    return (SERIAL_EPOCH + timedelta(days=int(value))).isoformat()


def parse_day(value: Any, tz: str) -> Optional[str]:
    """YYYY-MM-DD for a date-like value, or None when it cannot be read as a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _format_day(value, tz)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _serial_day(value)
    if not isinstance(value, str):
        return None
    s = value.strip()
    # Words like "today" or "now" are dates to pandas but never a stored day
    if not s or not _DIGIT.search(s):
        return None
    if _ISO_DAY.match(s):
        try:
            date.fromisoformat(s)
        except ValueError:
            return None
        return s
    try:
        ts = pd.to_datetime(s, errors="coerce")
    except (ValueError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return _format_day(ts.to_pydatetime(), tz)


def to_day_iso(value: Any, tz: str) -> str:
    """Like parse_day, but unreadable input comes back as the trimmed raw string (last resort)."""
    if value is None or value == "":
        return ""
    parsed = parse_day(value, tz)
    if parsed is not None:
        return parsed
    return str(value).strip()


def _safe_float(v: Any) -> float:
    if v is None or v == "":
        return 0.0
    try:
        return float(v)
    except (TypeError, ValueError):
        return 0.0


def normalize_record(raw: Dict[str, Any], tz: str) -> Fact:
    """One insights row -> Fact. Pure; never raises on missing fields."""
    raw_id = str(raw.get("account_id") or "").strip()
    region = str(raw.get("region") or "").strip() or UNKNOWN_REGION
    day = to_day_iso(raw.get("date_start"), tz)
    return Fact(
        account_id=normalize_account_id(raw_id),
        account_name=str(raw.get("account_name") or raw_id or "").strip(),
        region=region,
        day=day,
        currency=str(raw.get("account_currency") or "").strip(),
        spend=_safe_float(raw.get("spend")),
        reporting_start=day,
        reporting_end=to_day_iso(raw.get("date_stop"), tz),
    )


def normalize_records(rows: Iterable[Dict[str, Any]], tz: str) -> List[Fact]:
    return [normalize_record(r, tz) for r in rows]


def dedupe_facts(facts: Iterable[Fact]) -> List[Fact]:
    """One fact per key; the last one seen wins."""
    seen: Dict[str, Fact] = {}
    total = 0
    for f in facts:
        total += 1
        seen[f.key] = f
    if total != len(seen):
        logger.info("dedupe: %s facts collapsed to %s keys", total, len(seen))
    return list(seen.values())
