"""
Region Spend Recorder – upsert of facts into the sheet.

Existing rows are indexed two ways:
  - by_id:   account_id|region|day   (rows that carry an Account ID)
  - by_name: account_name|region|day (rows written before the ID was known)
A fact matching a name-keyed row promotes it: the row gets the ID, the ID key is
registered for the rest of the batch and the name key is retired.
classify() is pure; apply_plan() does the writes.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence

from config import normalize_account_id
from facts import Fact, dedupe_facts, parse_day
from storage import (
    COL_ACCOUNT_ID,
    COL_ACCOUNT_NAME,
    COL_AMOUNT,
    COL_DAY,
    COL_REGION,
    FIRST_DATA_ROW,
    RowStore,
)

logger = logging.getLogger(__name__)


def _cell(row: Sequence[Any], col: int) -> str:
    if len(row) < col or row[col - 1] is None:
        return ""
    return str(row[col - 1]).strip()


@dataclass
class RowIndex:
    by_id: Dict[str, int] = field(default_factory=dict)
    by_name: Dict[str, int] = field(default_factory=dict)
    skipped: int = 0


@dataclass
class RowUpdate:
    row_num: int
    values: List[Any]
    promoted: bool = False


@dataclass
class ReconcilePlan:
    updates: List[RowUpdate] = field(default_factory=list)
    appends: List[List[Any]] = field(default_factory=list)
    dropped: int = 0
    invalid_day: int = 0
    skipped_rows: int = 0

    def summary(self) -> Dict[str, int]:
        promoted = sum(1 for u in self.updates if u.promoted)
        return {
            "updated": len(self.updates) - promoted,
            "promoted": promoted,
            "appended": len(self.appends),
            "dropped": self.dropped,
            "invalid_day": self.invalid_day,
            "skipped_rows": self.skipped_rows,
        }


def index_existing_rows(rows: Iterable[Sequence[Any]], tz: str, first_row: int = FIRST_DATA_ROW) -> RowIndex:
    """Map existing data rows to row numbers. Rows whose Day is not a date are left out of both maps."""
    index = RowIndex()
    for i, row in enumerate(rows):
        row_num = first_row + i
        day = parse_day(row[COL_DAY - 1] if len(row) >= COL_DAY else None, tz)
        if not day:
            index.skipped += 1
            continue
        account_id = normalize_account_id(row[COL_ACCOUNT_ID - 1] if len(row) >= COL_ACCOUNT_ID else None)
        account_name = _cell(row, COL_ACCOUNT_NAME)
        region = _cell(row, COL_REGION)
        if account_id:
            index.by_id[f"{account_id}|{region}|{day}"] = row_num
        elif account_name and region:
            index.by_name[f"{account_name}|{region}|{day}"] = row_num
    if index.skipped:
        logger.info("index: %s existing row(s) without a readable Day excluded from matching", index.skipped)
    return index


def classify(facts: Iterable[Fact], existing_rows: Sequence[Sequence[Any]], tz: str, first_row: int = FIRST_DATA_ROW) -> ReconcilePlan:
    """Decide update / promote / append for each fact against a snapshot of the stored rows."""
    index = index_existing_rows(existing_rows, tz, first_row=first_row)
    plan = ReconcilePlan(skipped_rows=index.skipped)

    for fact in facts:
        if not math.isfinite(fact.spend) or fact.spend <= 0:
            plan.dropped += 1
            continue

        account_id = normalize_account_id(fact.account_id)
        account_name = fact.account_name.strip()
        region = fact.region.strip()
        day = parse_day(fact.day, tz)
        if day is None:
            # Could never match a stored row, so it would be re-appended on every run
            logger.warning("skipping fact with unreadable day %r (key=%s)", fact.day, fact.key)
            plan.invalid_day += 1
            continue

        id_key = f"{account_id}|{region}|{day}"
        name_key = f"{account_name}|{region}|{day}"

        row_num = index.by_id.get(id_key)
        if row_num is None and name_key in index.by_name:
            row_num = index.by_name.pop(name_key)
            values = fact.values()
            if not values[COL_ACCOUNT_ID - 1]:
                values[COL_ACCOUNT_ID - 1] = account_id
            plan.updates.append(RowUpdate(row_num, values, promoted=True))
            index.by_id[id_key] = row_num
            continue

        if row_num is not None:
            plan.updates.append(RowUpdate(row_num, fact.values()))
        else:
            plan.appends.append(fact.values())
    return plan


def apply_plan(store: RowStore, plan: ReconcilePlan) -> Dict[str, int]:
    """Write updates in place, append new rows after the last row, then format the amount column."""
    if plan.updates:
        store.write_many([(u.row_num, u.values) for u in plan.updates])
    if plan.appends:
        first_new = store.append_rows(plan.appends)
        logger.info("appended %s row(s) starting at row %s", len(plan.appends), first_new)
    last = store.last_row
    if last >= FIRST_DATA_ROW:
        store.format_column_as_currency(COL_AMOUNT, FIRST_DATA_ROW, last - FIRST_DATA_ROW + 1)
    summary = plan.summary()
    logger.info(
        "upsert: %s updated, %s promoted, %s appended, %s dropped (spend <= 0), %s invalid day",
        summary["updated"], summary["promoted"], summary["appended"], summary["dropped"], summary["invalid_day"],
    )
    return summary


def upsert_facts(store: RowStore, facts: Iterable[Fact], tz: str) -> Dict[str, int]:
    """Dedupe, snapshot the store, classify, apply. The summary also counts the deduped facts."""
    batch = dedupe_facts(facts)
    store.ensure_header()
    existing = store.read_data_rows()
    plan = classify(batch, existing, tz)
    summary = apply_plan(store, plan)
    summary["facts"] = len(batch)
    return summary
