"""
Region Spend Recorder – config and credentials (from .env in this folder).
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, List, Optional, Tuple

from dotenv import load_dotenv

# Load .env from this project folder
_ROOT = Path(__file__).resolve().parent
_ENV_FILE = _ROOT / ".env"
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE)


def _csv(value: Optional[str]) -> List[str]:
    return [p.strip() for p in (value or "").split(",") if p.strip()]


# Meta Marketing API
META_ACCESS_TOKEN = os.getenv("META_ACCESS_TOKEN", "")
META_API_VERSION = os.getenv("META_API_VERSION", "v23.0")
META_GRAPH_URL = os.getenv("META_GRAPH_URL", "https://graph.facebook.com")
INSIGHTS_LEVEL = os.getenv("INSIGHTS_LEVEL", "account")
INSIGHTS_FIELDS = os.getenv("INSIGHTS_FIELDS", "account_id,account_name,account_currency,spend,date_start,date_stop")
INSIGHTS_BREAKDOWNS = os.getenv("INSIGHTS_BREAKDOWNS", "region")
TIME_INCREMENT = int(os.getenv("TIME_INCREMENT", "1"))
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60"))

# Ad accounts to sync (comma-separated, with or without act_ prefix)
ALLOW_ACCOUNT_IDS = os.getenv("ALLOW_ACCOUNT_IDS", "")

# Google Sheets (service account key file shared on the spreadsheet)
GSPREAD_SHEET_ID = os.getenv("GSPREAD_SHEET_ID", "")
SHEET_NAME = os.getenv("SHEET_NAME", "Meta Daily Region Spend")
GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", str(_ROOT / ".secrets" / "service-account.json"))

# Reporting window: DAYS_BACK full days ending yesterday in REPORT_TIMEZONE
REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "America/Toronto")
DAYS_BACK = int(os.getenv("DAYS_BACK", "3"))

# Daily sync scheduler (server only): timezone and local time (24h)
SYNC_SCHEDULE_TIMEZONE = os.getenv("SYNC_SCHEDULE_TIMEZONE", REPORT_TIMEZONE)
SYNC_SCHEDULE_HOUR = int(os.getenv("SYNC_SCHEDULE_HOUR", "6"))
SYNC_SCHEDULE_MINUTE = int(os.getenv("SYNC_SCHEDULE_MINUTE", "15"))

ACCOUNT_ID_PREFIX = "act_"


def normalize_account_id(account_id: Any) -> str:
    """Normalize a Meta ad account ID for storage (no act_ prefix)."""
    if account_id is None or isinstance(account_id, bool):
        return ""
    if isinstance(account_id, float) and account_id.is_integer():
        # Sheet cells holding IDs as numbers come back as floats
        account_id = int(account_id)
    s = str(account_id).strip()
    if s.startswith(ACCOUNT_ID_PREFIX):
        s = s[len(ACCOUNT_ID_PREFIX):]
    return s.strip()


def graph_account_id(account_id: str) -> str:
    """Graph endpoints need the act_ prefix."""
    return ACCOUNT_ID_PREFIX + normalize_account_id(account_id)


@dataclass(frozen=True)
class RunConfig:
    """Everything one run needs. Built once from the environment and passed down explicitly."""

    access_token: str = ""
    api_version: str = "v23.0"
    graph_url: str = "https://graph.facebook.com"
    sheet_id: str = ""
    sheet_name: str = "Meta Daily Region Spend"
    service_account_file: str = ""
    timezone: str = "America/Toronto"
    days_back: int = 3
    level: str = "account"
    fields: Tuple[str, ...] = ("account_id", "account_name", "account_currency", "spend", "date_start", "date_stop")
    breakdowns: Tuple[str, ...] = ("region",)
    time_increment: int = 1
    request_timeout: float = 60.0
    account_ids: Tuple[str, ...] = field(default_factory=tuple)

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_run_config(**overrides: Any) -> RunConfig:
    """Build a RunConfig from env settings; keyword overrides (e.g. days_back from CLI) win when not None."""
    cfg = RunConfig(
        access_token=META_ACCESS_TOKEN,
        api_version=META_API_VERSION,
        graph_url=META_GRAPH_URL.rstrip("/"),
        sheet_id=GSPREAD_SHEET_ID,
        sheet_name=SHEET_NAME,
        service_account_file=GOOGLE_SERVICE_ACCOUNT_FILE,
        timezone=REPORT_TIMEZONE,
        days_back=DAYS_BACK,
        level=INSIGHTS_LEVEL,
        fields=tuple(_csv(INSIGHTS_FIELDS)),
        breakdowns=tuple(_csv(INSIGHTS_BREAKDOWNS)),
        time_increment=TIME_INCREMENT,
        request_timeout=REQUEST_TIMEOUT_SECONDS,
        account_ids=tuple(_csv(ALLOW_ACCOUNT_IDS)),
    )
    return cfg.with_overrides(**overrides)
