"""
Region Spend Recorder – Google Sheets connection (standalone).
Service-account key file; the spreadsheet must be shared with the service account email.
"""

import logging
from pathlib import Path
from typing import Optional

import gspread
from google.oauth2.service_account import Credentials

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

_client: Optional[gspread.Client] = None
_client_key_file: Optional[str] = None


def get_client(service_account_file: str) -> gspread.Client:
    """Authorized gspread client, cached per key file."""
    global _client, _client_key_file
    if _client is None or _client_key_file != service_account_file:
        key_path = Path(service_account_file)
        if not key_path.exists():
            raise ValueError(f"Google service account key not found: {key_path} (set GOOGLE_SERVICE_ACCOUNT_FILE in .env)")
        creds = Credentials.from_service_account_file(str(key_path), scopes=SCOPES)
        _client = gspread.authorize(creds)
        _client_key_file = service_account_file
        logger.info("gspread client authorized with %s", key_path.name)
    return _client


def open_worksheet(gc: gspread.Client, sheet_id: str, title: str, rows: int = 1000, cols: int = 8) -> gspread.Worksheet:
    """Open tab `title` in spreadsheet `sheet_id`, creating it when missing."""
    if not sheet_id:
        raise ValueError("Spreadsheet ID not set (GSPREAD_SHEET_ID in .env)")
    sh = gc.open_by_key(sheet_id)
    try:
        return sh.worksheet(title)
    except gspread.WorksheetNotFound:
        logger.info("creating worksheet %r in %s", title, sheet_id)
        return sh.add_worksheet(title=title, rows=rows, cols=cols)
