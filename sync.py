"""
Region Spend Recorder – daily sync: Meta ad spend by region -> Google Sheet upsert.

One row per (account_id, region, day). Safe to re-run with overlapping windows:
rows are updated in place, never duplicated.

  pip install -e .
  copy env.example.txt to .env and set credentials
  python sync.py [--days 3] [--account act_123 ...] [--dry-run]
"""

import argparse
import logging
import sys
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

import httpx

from config import RunConfig, load_run_config
from facts import normalize_records
from meta_insights_client import fetch_insights_for_accounts
from reconcile import upsert_facts
from storage import GoogleSheetStore, InMemoryStore, RowStore

logger = logging.getLogger(__name__)


def get_last_n_days(tz: str, n: int, now: Optional[datetime] = None) -> Tuple[str, str]:
    """(since, until) for the n full days ending yesterday in tz."""
    if n < 1:
        raise ValueError("days_back must be >= 1")
    zone = ZoneInfo(tz)
    if now is None:
        now = datetime.now(zone)
    elif now.tzinfo is not None:
        now = now.astimezone(zone)
    today: date = now.date()
    end = today - timedelta(days=1)
    start = end - timedelta(days=n - 1)
    return start.isoformat(), end.isoformat()


def _check_config(cfg: RunConfig, needs_sheet: bool) -> None:
    if not cfg.access_token:
        raise ValueError("META_ACCESS_TOKEN not set in .env")
    if not cfg.account_ids:
        raise ValueError("No ad accounts configured (ALLOW_ACCOUNT_IDS or --account)")
    if needs_sheet and not cfg.sheet_id:
        raise ValueError("GSPREAD_SHEET_ID not set in .env")


def run_sync(
    cfg: RunConfig,
    store: Optional[RowStore] = None,
    now: Optional[datetime] = None,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Fetch the lookback window for every account and upsert it. Returns a run summary."""
    _check_config(cfg, needs_sheet=store is None)
    since, until = get_last_n_days(cfg.timezone, cfg.days_back, now=now)
    logger.info("sync window %s .. %s (%s) for %s account(s)", since, until, cfg.timezone, len(cfg.account_ids))

    raw = fetch_insights_for_accounts(cfg.account_ids, since, until, cfg, client=client, sleep=sleep)
    facts = normalize_records(raw, cfg.timezone)

    if store is None:
        store = GoogleSheetStore.open(cfg)
    if dry_run:
        # Plan against a copy so the real store is only read
        store = InMemoryStore.snapshot_of(store)

    summary = upsert_facts(store, facts, cfg.timezone)

    result: Dict[str, Any] = {
        "since": since,
        "until": until,
        "accounts": list(cfg.account_ids),
        "fetched": len(raw),
        "dry_run": dry_run,
    }
    result.update(summary)
    return result


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Meta daily spend by region -> Google Sheet (upsert)")
    parser.add_argument("--days", type=int, default=None, help="Days back, excluding today (default: DAYS_BACK)")
    parser.add_argument("--account", action="append", default=None, help="Ad account ID (repeatable; default: ALLOW_ACCOUNT_IDS)")
    parser.add_argument("--dry-run", action="store_true", help="Fetch and plan only, do not write to the sheet")
    args = parser.parse_args()

    cfg = load_run_config(
        days_back=args.days,
        account_ids=tuple(args.account) if args.account else None,
    )
    try:
        result = run_sync(cfg, dry_run=args.dry_run)
    except ValueError as e:
        logger.error("%s", e)
        sys.exit(2)
    except Exception as e:
        logger.exception("Sync failed: %s", e)
        sys.exit(1)
    logger.info(
        "Region spend sync completed for %s .. %s: %s updated, %s promoted, %s appended%s",
        result["since"], result["until"], result["updated"], result["promoted"], result["appended"],
        " (dry run)" if args.dry_run else "",
    )


if __name__ == "__main__":
    main()
