"""Shared fixtures: synthetic run config, recorded sleeps, in-memory sheet."""

from typing import Callable, List

import pytest

from config import RunConfig
from storage import InMemoryStore


@pytest.fixture
def cfg() -> RunConfig:
    return RunConfig(
        access_token="test-token",
        api_version="v23.0",
        graph_url="https://graph.facebook.com",
        sheet_id="sheet-123",
        timezone="UTC",
        days_back=2,
        account_ids=("act_1",),
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps) -> Callable[[float], None]:
    return sleeps.append


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()

