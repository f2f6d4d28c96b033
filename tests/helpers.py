"""Builders shared by the test modules: raw insights rows and a mocked Graph API client."""

from typing import Any, Callable, Dict

import httpx


def insights_row(**overrides: Any) -> Dict[str, Any]:
    row = {
        "account_id": "1",
        "account_name": "Acme",
        "account_currency": "USD",
        "spend": "100.5",
        "date_start": "2024-03-01",
        "date_stop": "2024-03-01",
        "region": "US",
    }
    row.update(overrides)
    return row


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))
