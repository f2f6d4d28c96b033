"""
Region Spend Recorder – Meta Marketing API insights client (standalone).
GET /{act_id}/insights with region breakdown; follows paging.next until exhausted.
Rate-limit codes and 5xx are retried on a fixed wait schedule; anything else non-200 fails the run.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlencode

import httpx

from config import RunConfig, graph_account_id

logger = logging.getLogger(__name__)

# One attempt per entry; the delay is waited before that attempt.
RETRY_WAITS_SECONDS = (0.0, 0.5, 1.5, 3.0, 6.0)

# Graph API error codes: 4 app rate limit, 17 user rate limit, 32 page/account rate limit
TRANSIENT_ERROR_CODES = frozenset({4, 17, 32})


class InsightsClientError(Exception):
    """Base exception for insights fetch failures."""


class InsightsRequestError(InsightsClientError):
    """Non-retryable HTTP response (auth, permissions, bad parameters)."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code} {body}")


class RetriesExhaustedError(InsightsClientError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Retries exhausted: {url}")


def backoff_delay(attempt: int, schedule: Sequence[float] = RETRY_WAITS_SECONDS) -> float:
    """Seconds to wait before attempt number `attempt` (0-based)."""
    if attempt < 0 or attempt >= len(schedule):
        raise IndexError(f"attempt {attempt} outside retry schedule of {len(schedule)}")
    return float(schedule[attempt])


def _safe_json(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _error_code(response: httpx.Response) -> Optional[int]:
    body = _safe_json(response.text)
    if not isinstance(body, dict):
        return None
    err = body.get("error")
    if not isinstance(err, dict):
        return None
    try:
        return int(err.get("code"))
    except (TypeError, ValueError):
        return None


def is_transient(response: httpx.Response) -> bool:
    return 500 <= response.status_code < 600 or _error_code(response) in TRANSIENT_ERROR_CODES


def fetch_with_backoff(
    client: httpx.Client,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    schedule: Sequence[float] = RETRY_WAITS_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """GET url; retry rate limits and 5xx per schedule, raise immediately on other non-200."""
    for attempt in range(len(schedule)):
        delay = backoff_delay(attempt, schedule)
        if delay > 0:
            sleep(delay)
        response = client.get(url, headers=headers)
        if response.status_code == 200:
            return response
        if is_transient(response):
            logger.warning(
                "insights transient error (attempt %s/%s) HTTP %s code=%s",
                attempt + 1, len(schedule), response.status_code, _error_code(response),
            )
            continue
        raise InsightsRequestError(response.status_code, response.text)
    raise RetriesExhaustedError(url)


def _to_query(params: Dict[str, Any]) -> str:
    return urlencode({k: v for k, v in params.items() if v is not None and v != ""})


def build_insights_url(account_id: str, since: str, until: str, cfg: RunConfig) -> str:
    base = f"{cfg.graph_url}/{cfg.api_version}/{graph_account_id(account_id)}/insights"
    query = _to_query({
        "level": cfg.level,
        "fields": ",".join(cfg.fields),
        "breakdowns": ",".join(cfg.breakdowns),
        "time_increment": cfg.time_increment,
        "time_range": json.dumps({"since": since, "until": until}, separators=(",", ":")),
    })
    return f"{base}?{query}"


def _auth_headers(cfg: RunConfig) -> Dict[str, str]:
    return {"Authorization": f"Bearer {cfg.access_token}"}


def fetch_insights(
    account_id: str,
    since: str,
    until: str,
    cfg: RunConfig,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Dict[str, Any]]:
    """Fetch every insights page for one account and date range (YYYY-MM-DD, inclusive)."""
    if client is None:
        with httpx.Client(timeout=httpx.Timeout(cfg.request_timeout)) as own:
            return fetch_insights(account_id, since, until, cfg, client=own, sleep=sleep)

    headers = _auth_headers(cfg)
    out: List[Dict[str, Any]] = []
    url: Optional[str] = build_insights_url(account_id, since, until, cfg)
    pages = 0
    while url:
        response = fetch_with_backoff(client, url, headers=headers, sleep=sleep)
        body = response.json()
        pages += 1
        data = body.get("data") if isinstance(body, dict) else None
        if data:
            out.extend(data)
        paging = body.get("paging") if isinstance(body, dict) else None
        url = paging.get("next") if isinstance(paging, dict) else None
    logger.info("insights: %s rows in %s page(s) for %s (%s .. %s)", len(out), pages, graph_account_id(account_id), since, until)
    return out


def fetch_insights_for_accounts(
    account_ids: Iterable[str],
    since: str,
    until: str,
    cfg: RunConfig,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Dict[str, Any]]:
    """Fetch all accounts one after another and concatenate their rows."""
    if client is None:
        with httpx.Client(timeout=httpx.Timeout(cfg.request_timeout)) as own:
            return fetch_insights_for_accounts(account_ids, since, until, cfg, client=own, sleep=sleep)
    out: List[Dict[str, Any]] = []
    for account_id in account_ids:
        out.extend(fetch_insights(account_id, since, until, cfg, client=client, sleep=sleep))
    return out
