"""
Region Spend Recorder – Storage (Google Sheets). Standalone.
A tab is treated as a grid addressed by 1-based row number; row 1 is the header.
Writes are row-granular (no batch-wide transaction).
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import gspread
from gspread.utils import DateTimeOption, ValueRenderOption, rowcol_to_a1

from config import RunConfig
from sheet_connection import get_client, open_worksheet

logger = logging.getLogger(__name__)

HEADER = [
    "Account ID",
    "Account name",
    "Region",
    "Day",
    "Currency",
    "Amount spent (USD)",
    "Reporting starts",
    "Reporting ends",
]
NUM_COLS = len(HEADER)

# 1-based column positions
COL_ACCOUNT_ID = 1
COL_ACCOUNT_NAME = 2
COL_REGION = 3
COL_DAY = 4
COL_AMOUNT = 6

CURRENCY_PATTERN = "$#,##0.00"
FIRST_DATA_ROW = 2


def _pad(row: Sequence[Any], width: int = NUM_COLS) -> List[Any]:
    out = list(row[:width])
    out.extend([""] * (width - len(out)))
    return out


def _last_col_letter() -> str:
    return rowcol_to_a1(1, NUM_COLS).rstrip("0123456789")


class RowStore(ABC):
    """Minimal tabular store port: header bootstrap, row reads/writes, append, currency format."""

    @abstractmethod
    def ensure_header(self) -> int:
        """Create or repair the header row; return the last used row number."""

    @property
    @abstractmethod
    def last_row(self) -> int:
        ...

    @abstractmethod
    def read_rows(self, from_row: int, count: int) -> List[List[Any]]:
        ...

    @abstractmethod
    def write_rows(self, at_row: int, rows: List[List[Any]]) -> None:
        ...

    @abstractmethod
    def format_column_as_currency(self, col_index: int, from_row: int, count: int) -> None:
        ...

    def append_rows(self, rows: List[List[Any]]) -> int:
        """Write rows contiguously after the last row; return the first new row number."""
        start = self.last_row + 1
        if rows:
            self.write_rows(start, rows)
        return start

    def write_many(self, updates: List[Tuple[int, List[Any]]]) -> None:
        for row_num, values in updates:
            self.write_rows(row_num, [values])

    def read_data_rows(self) -> List[List[Any]]:
        """All rows below the header, padded to the header width."""
        last = self.last_row
        if last < FIRST_DATA_ROW:
            return []
        return self.read_rows(FIRST_DATA_ROW, last - FIRST_DATA_ROW + 1)


class GoogleSheetStore(RowStore):
    def __init__(self, worksheet: gspread.Worksheet):
        self.ws = worksheet
        self._last_row: Optional[int] = None

    @classmethod
    def open(cls, cfg: RunConfig) -> "GoogleSheetStore":
        gc = get_client(cfg.service_account_file)
        return cls(open_worksheet(gc, cfg.sheet_id, cfg.sheet_name, cols=NUM_COLS))

    def ensure_header(self) -> int:
        values = self.ws.get_all_values()
        if not any(any(str(c).strip() for c in row) for row in values):
            self.ws.update([HEADER], f"A1:{_last_col_letter()}1", value_input_option="RAW")
            self._last_row = 1
            logger.info("sheet %r: header created", self.ws.title)
            return self._last_row
        first = str(values[0][0]).strip() if values[0] else ""
        if first != HEADER[0]:
            # Legacy layout without the leading Account ID column
            self.ws.insert_cols([[HEADER[0]]], col=1, value_input_option="RAW")
            logger.warning("sheet %r: header did not start with %r; inserted column A", self.ws.title, HEADER[0])
        self.ws.update([HEADER], f"A1:{_last_col_letter()}1", value_input_option="RAW")
        self._last_row = len(values)
        return self._last_row

    @property
    def last_row(self) -> int:
        if self._last_row is None:
            self._last_row = len(self.ws.get_all_values())
        return self._last_row

    def read_rows(self, from_row: int, count: int) -> List[List[Any]]:
        if count <= 0:
            return []
        to_row = from_row + count - 1
        # Raw cell values: Day as a serial number, IDs as numbers, independent of sheet locale
        values = self.ws.get_values(
            f"A{from_row}:{_last_col_letter()}{to_row}",
            value_render_option=ValueRenderOption.unformatted,
            date_time_render_option=DateTimeOption.serial_number,
        )
        rows = [_pad(r) for r in values]
        # Trailing blank rows are not returned by the API
        rows.extend([_pad([]) for _ in range(count - len(rows))])
        return rows

    def _ensure_grid(self, to_row: int) -> None:
        if to_row > self.ws.row_count:
            self.ws.add_rows(to_row - self.ws.row_count)

    def write_rows(self, at_row: int, rows: List[List[Any]]) -> None:
        if not rows:
            return
        to_row = at_row + len(rows) - 1
        self._ensure_grid(to_row)
        self.ws.update([_pad(r) for r in rows], f"A{at_row}:{_last_col_letter()}{to_row}", value_input_option="RAW")
        self._last_row = max(self.last_row, to_row)

    def write_many(self, updates: List[Tuple[int, List[Any]]]) -> None:
        """Row-addressed writes in one values.batchUpdate call."""
        if not updates:
            return
        col = _last_col_letter()
        data = [{"range": f"A{n}:{col}{n}", "values": [_pad(v)]} for n, v in updates]
        self.ws.batch_update(data, value_input_option="RAW")
        self._last_row = max([self.last_row] + [n for n, _ in updates])

    def format_column_as_currency(self, col_index: int, from_row: int, count: int) -> None:
        if count <= 0:
            return
        rng = f"{rowcol_to_a1(from_row, col_index)}:{rowcol_to_a1(from_row + count - 1, col_index)}"
        self.ws.format(rng, {"numberFormat": {"type": "CURRENCY", "pattern": CURRENCY_PATTERN}})


class InMemoryStore(RowStore):
    """List-of-rows store with the same addressing as a sheet. Row 1 is rows[0]."""

    def __init__(self, rows: Optional[List[List[Any]]] = None):
        self.rows: List[List[Any]] = [list(r) for r in (rows or [])]
        self.number_formats: Dict[Tuple[int, int], str] = {}

    @classmethod
    def snapshot_of(cls, store: RowStore) -> "InMemoryStore":
        """Read-only copy of another store's rows, header included (used for dry runs)."""
        last = store.last_row
        return cls(store.read_rows(1, last) if last else [])

    def ensure_header(self) -> int:
        if not any(any(str(c).strip() for c in r) for r in self.rows):
            self.rows = [list(HEADER)]
            return 1
        if not self.rows[0] or str(self.rows[0][0]).strip() != HEADER[0]:
            self.rows = [[""] + list(r) for r in self.rows]
        self.rows[0] = list(HEADER) + list(self.rows[0][NUM_COLS:])
        return self.last_row

    @property
    def last_row(self) -> int:
        last = len(self.rows)
        while last > 0 and not any(str(c).strip() for c in self.rows[last - 1]):
            last -= 1
        return last

    def read_rows(self, from_row: int, count: int) -> List[List[Any]]:
        if count <= 0:
            return []
        out = []
        for n in range(from_row, from_row + count):
            out.append(_pad(self.rows[n - 1]) if n - 1 < len(self.rows) else _pad([]))
        return out

    def write_rows(self, at_row: int, rows: List[List[Any]]) -> None:
        for offset, values in enumerate(rows):
            idx = at_row - 1 + offset
            while len(self.rows) <= idx:
                self.rows.append([""] * NUM_COLS)
            # Columns past the header width are left as they were
            self.rows[idx] = _pad(values) + list(self.rows[idx][NUM_COLS:])

    def format_column_as_currency(self, col_index: int, from_row: int, count: int) -> None:
        for n in range(from_row, from_row + count):
            self.number_formats[(n, col_index)] = CURRENCY_PATTERN

    def data_rows(self) -> List[List[Any]]:
        return [list(r) for r in self.rows[1:self.last_row]]
