"""Tests for the insights fetcher: retry schedule, error classification, pagination."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from meta_insights_client import (
    RETRY_WAITS_SECONDS,
    InsightsRequestError,
    RetriesExhaustedError,
    backoff_delay,
    build_insights_url,
    fetch_insights,
    fetch_insights_for_accounts,
    fetch_with_backoff,
)
from tests.helpers import insights_row, mock_client

URL = "https://graph.facebook.com/v23.0/act_1/insights"


def _sequence_handler(responses, seen):
    """Serve canned responses in order, recording each request."""
    it = iter(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return next(it)

    return handler


class TestBackoffDelay:
    def test_schedule_starts_without_wait_and_escalates(self):
        delays = [backoff_delay(i) for i in range(len(RETRY_WAITS_SECONDS))]
        assert delays == [0.0, 0.5, 1.5, 3.0, 6.0]
        assert delays == sorted(delays)

    def test_attempt_outside_schedule_raises(self):
        with pytest.raises(IndexError):
            backoff_delay(len(RETRY_WAITS_SECONDS))


class TestFetchWithBackoff:
    def test_200_returns_immediately(self, sleeps, fake_sleep):
        seen = []
        client = mock_client(_sequence_handler([httpx.Response(200, json={"data": []})], seen))
        response = fetch_with_backoff(client, URL, sleep=fake_sleep)
        assert response.status_code == 200
        assert len(seen) == 1
        assert sleeps == []

    def test_server_error_is_retried(self, sleeps, fake_sleep):
        seen = []
        client = mock_client(_sequence_handler([
            httpx.Response(502, text="bad gateway"),
            httpx.Response(200, json={"data": []}),
        ], seen))
        response = fetch_with_backoff(client, URL, sleep=fake_sleep)
        assert response.status_code == 200
        assert len(seen) == 2
        assert sleeps == [0.5]

    @pytest.mark.parametrize("code", [4, 17, 32])
    def test_rate_limit_codes_are_retried(self, code, sleeps, fake_sleep):
        seen = []
        client = mock_client(_sequence_handler([
            httpx.Response(400, json={"error": {"code": code, "message": "limit reached"}}),
            httpx.Response(400, json={"error": {"code": code, "message": "limit reached"}}),
            httpx.Response(200, json={"data": []}),
        ], seen))
        fetch_with_backoff(client, URL, sleep=fake_sleep)
        assert len(seen) == 3
        assert sleeps == [0.5, 1.5]

    def test_other_error_fails_without_retry(self, sleeps, fake_sleep):
        seen = []
        body = {"error": {"code": 190, "message": "Invalid OAuth access token"}}
        client = mock_client(_sequence_handler([httpx.Response(401, json=body)], seen))
        with pytest.raises(InsightsRequestError) as exc_info:
            fetch_with_backoff(client, URL, sleep=fake_sleep)
        assert exc_info.value.status_code == 401
        assert "Invalid OAuth access token" in exc_info.value.body
        assert len(seen) == 1
        assert sleeps == []

    def test_non_json_4xx_is_not_retried(self, fake_sleep):
        seen = []
        client = mock_client(_sequence_handler([httpx.Response(404, text="not found")], seen))
        with pytest.raises(InsightsRequestError):
            fetch_with_backoff(client, URL, sleep=fake_sleep)
        assert len(seen) == 1

    def test_exhausted_schedule_names_url(self, sleeps, fake_sleep):
        seen = []
        client = mock_client(_sequence_handler([httpx.Response(503, text="unavailable")] * 5, seen))
        with pytest.raises(RetriesExhaustedError) as exc_info:
            fetch_with_backoff(client, URL, sleep=fake_sleep)
        assert exc_info.value.url == URL
        assert URL in str(exc_info.value)
        assert len(seen) == 5
        assert sleeps == [0.5, 1.5, 3.0, 6.0]


class TestBuildInsightsUrl:
    def test_query_parameters(self, cfg):
        url = build_insights_url("act_1", "2024-03-01", "2024-03-02", cfg)
        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert parsed.path == "/v23.0/act_1/insights"
        assert params["level"] == "account"
        assert params["fields"] == "account_id,account_name,account_currency,spend,date_start,date_stop"
        assert params["breakdowns"] == "region"
        assert params["time_increment"] == "1"
        assert json.loads(params["time_range"]) == {"since": "2024-03-01", "until": "2024-03-02"}

    def test_prefix_added_for_bare_account_id(self, cfg):
        assert "/act_42/insights" in build_insights_url("42", "2024-03-01", "2024-03-01", cfg)


class TestPagination:
    def test_follows_next_until_absent(self, cfg, fake_sleep):
        seen = []
        next_url = URL + "?after=cursor2"

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.params.get("after") == "cursor2":
                return httpx.Response(200, json={"data": [insights_row(region="CA")]})
            return httpx.Response(200, json={"data": [insights_row()], "paging": {"next": next_url}})

        rows = fetch_insights("act_1", "2024-03-01", "2024-03-01", cfg, client=mock_client(handler), sleep=fake_sleep)
        assert [r["region"] for r in rows] == ["US", "CA"]
        assert len(seen) == 2
        assert all(r.headers["Authorization"] == "Bearer test-token" for r in seen)

    def test_empty_page_contributes_nothing(self, cfg, fake_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": []})

        assert fetch_insights("act_1", "2024-03-01", "2024-03-01", cfg, client=mock_client(handler), sleep=fake_sleep) == []

    def test_accounts_fetched_in_order_and_concatenated(self, cfg, fake_sleep):
        order = []

        def handler(request: httpx.Request) -> httpx.Response:
            account = request.url.path.split("/")[2]
            order.append(account)
            return httpx.Response(200, json={"data": [insights_row(account_id=account[len("act_"):])]})

        rows = fetch_insights_for_accounts(["act_1", "2"], "2024-03-01", "2024-03-01", cfg, client=mock_client(handler), sleep=fake_sleep)
        assert order == ["act_1", "act_2"]
        assert [r["account_id"] for r in rows] == ["1", "2"]

    def test_fatal_error_stops_pagination(self, cfg, fake_sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(403, json={"error": {"code": 200, "message": "Permissions error"}})

        with pytest.raises(InsightsRequestError):
            fetch_insights_for_accounts(["act_1", "act_2"], "2024-03-01", "2024-03-01", cfg, client=mock_client(handler), sleep=fake_sleep)
        assert len(seen) == 1
