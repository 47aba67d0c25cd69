"""Tests for the ad-interest search client, call log and throttle."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from interest_enricher.search import (
    CallContext,
    CallOutcome,
    CallType,
    ErrorType,
    FacebookApiError,
    FacebookInterestSearchClient,
    NetworkError,
    ParseError,
    RateLimitError,
    RequestThrottle,
    SearchCallLog,
    ServerError,
    TokenInvalidError,
    should_retry,
)


def _response(status=200, payload=None, headers=None, json_error=None):
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.headers = headers or {}
    if json_error is not None:
        mock_resp.json = AsyncMock(side_effect=json_error)
    else:
        mock_resp.json = AsyncMock(return_value=payload)
    return mock_resp


def _session(resp=None, error=None):
    mock_session = MagicMock()
    mock_session.closed = False
    if error is not None:
        mock_session.get = MagicMock(side_effect=error)
    else:
        mock_session.get = MagicMock(return_value=_async_context(resp))
    return mock_session


def _client(session, token="test-token", **kwargs):
    return FacebookInterestSearchClient(access_token=token, session=session, **kwargs)


# =============================================================================
# FacebookInterestSearchClient
# =============================================================================


class TestFacebookSearch:
    """Successful searches and request shape."""

    @pytest.mark.asyncio
    async def test_parses_candidates(self):
        payload = {
            "data": [
                {
                    "id": "6003107902433",
                    "name": "Coca-Cola",
                    "audience_size_lower_bound": 1000,
                    "audience_size_upper_bound": 2001,
                    "path": ["Interests", "Food and drink", "Coca-Cola"],
                    "topic": "Food and drink",
                    "type": "interest",
                },
                {"id": "1", "name": ""},
            ]
        }
        session = _session(_response(payload=payload))
        client = _client(session)

        result = await client.search("coca cola", "US")

        assert result.status_code == 200
        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.candidate_id == "6003107902433"
        assert candidate.audience == 1501
        assert candidate.path == ["Interests", "Food and drink", "Coca-Cola"]

    @pytest.mark.asyncio
    async def test_request_params(self):
        session = _session(_response(payload={"data": []}))
        client = _client(session, api_version="v19.0", limit=10, locale="fr_FR")

        await client.search("surf", "FR")

        args, kwargs = session.get.call_args
        assert args[0] == "https://graph.facebook.com/v19.0/search"
        assert kwargs["params"] == {
            "type": "adinterest",
            "q": "surf",
            "limit": "10",
            "access_token": "test-token",
            "locale": "fr_FR",
        }
        assert isinstance(kwargs["timeout"], aiohttp.ClientTimeout)

    @pytest.mark.asyncio
    async def test_empty_result_is_success(self):
        client = _client(_session(_response(payload={"data": []})))
        result = await client.search("zzzz", "US")
        assert result.candidates == []

    @pytest.mark.asyncio
    async def test_missing_token_makes_no_request(self):
        session = _session(_response(payload={"data": []}))
        client = _client(session, token=None)

        with pytest.raises(TokenInvalidError):
            await client.search("surf", "US")
        session.get.assert_not_called()


class TestFacebookErrorClassification:
    """HTTP and Graph API errors map to the error taxonomy."""

    @pytest.mark.asyncio
    async def test_http_429_is_rate_limit(self):
        resp = _response(status=429, payload={"error": {"message": "slow down"}}, headers={"Retry-After": "30"})
        client = _client(_session(resp))

        with pytest.raises(RateLimitError) as exc_info:
            await client.search("surf", "US")

        assert exc_info.value.error_type == ErrorType.RATE_LIMIT
        assert exc_info.value.retry_after == 30.0
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", [4, 17, 32, 613])
    async def test_graph_throttling_codes(self, code):
        resp = _response(status=400, payload={"error": {"code": code, "message": "limit"}})
        client = _client(_session(resp))

        with pytest.raises(RateLimitError):
            await client.search("surf", "US")

    @pytest.mark.asyncio
    async def test_http_401_is_token_invalid(self):
        resp = _response(status=401, payload={"error": {"message": "bad token"}})
        client = _client(_session(resp))

        with pytest.raises(TokenInvalidError) as exc_info:
            await client.search("surf", "US")
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_graph_code_190_is_token_invalid(self):
        resp = _response(status=400, payload={"error": {"code": 190, "message": "expired"}})
        client = _client(_session(resp))

        with pytest.raises(TokenInvalidError):
            await client.search("surf", "US")

    @pytest.mark.asyncio
    async def test_other_4xx_is_api_error(self):
        resp = _response(status=400, payload={"error": {"code": 100, "message": "Invalid parameter"}})
        client = _client(_session(resp))

        with pytest.raises(FacebookApiError) as exc_info:
            await client.search("surf", "US")
        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_5xx_is_server_error(self):
        resp = _response(status=503, payload={"error": {"message": "unavailable"}})
        client = _client(_session(resp))

        with pytest.raises(ServerError):
            await client.search("surf", "US")

    @pytest.mark.asyncio
    async def test_unparsable_5xx_body_is_server_error(self):
        resp = _response(status=502, json_error=ValueError("not json"))
        client = _client(_session(resp))

        with pytest.raises(ServerError):
            await client.search("surf", "US")

    @pytest.mark.asyncio
    async def test_malformed_body_is_parse_error(self):
        resp = _response(status=200, json_error=ValueError("Expecting value"))
        client = _client(_session(resp))

        with pytest.raises(ParseError):
            await client.search("surf", "US")

    @pytest.mark.asyncio
    async def test_missing_data_list_is_parse_error(self):
        client = _client(_session(_response(payload={"data": "oops"})))

        with pytest.raises(ParseError):
            await client.search("surf", "US")

    @pytest.mark.asyncio
    async def test_connection_error_is_network(self):
        client = _client(_session(error=aiohttp.ClientConnectionError("reset")))

        with pytest.raises(NetworkError) as exc_info:
            await client.search("surf", "US")
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_timeout_is_network(self):
        client = _client(_session(error=asyncio.TimeoutError()))

        with pytest.raises(NetworkError):
            await client.search("surf", "US")


# =============================================================================
# Call log
# =============================================================================


class TestSearchCallLog:
    """Every call leaves one structured record."""

    @pytest.mark.asyncio
    async def test_success_record(self):
        call_log = SearchCallLog()
        payload = {"data": [{"id": "1", "name": "Surfing"}]}
        client = _client(_session(_response(payload=payload)), call_log=call_log)

        await client.search("surf", "US", context=CallContext(job_id="job-1"))

        [record] = call_log.records()
        assert record.final_result == CallOutcome.SUCCESS
        assert record.call_type == CallType.AUTO_ENRICHMENT
        assert record.job_id == "job-1"
        assert record.status_code == 200
        assert record.candidate_count == 1
        assert record.processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_retryable_failure_recorded_as_retry(self):
        call_log = SearchCallLog()
        client = _client(_session(_response(status=500, payload={})), call_log=call_log)

        with pytest.raises(ServerError):
            await client.search("surf", "US", context=CallContext(retry_attempt=0, max_retries=3))

        [record] = call_log.records()
        assert record.final_result == CallOutcome.RETRY
        assert record.error_type == "SERVER_ERROR"

    @pytest.mark.asyncio
    async def test_last_attempt_recorded_as_failed(self):
        call_log = SearchCallLog()
        client = _client(_session(_response(status=500, payload={})), call_log=call_log)

        with pytest.raises(ServerError):
            await client.search(
                "surf",
                "US",
                context=CallContext(call_type=CallType.RETRY_ITEM, retry_attempt=2, max_retries=3),
            )

        [record] = call_log.records()
        assert record.final_result == CallOutcome.FAILED
        assert record.call_type == CallType.RETRY_ITEM

    @pytest.mark.asyncio
    async def test_emits_to_call_logger(self, caplog):
        caplog.set_level("INFO", logger="interest_enricher.search.calls")
        client = _client(_session(_response(payload={"data": []})))

        await client.search("surf", "US")

        record = next(r for r in caplog.records if r.name == "interest_enricher.search.calls")
        assert record.search_call["term"] == "surf"

    @pytest.mark.asyncio
    async def test_summary(self):
        call_log = SearchCallLog()
        ok = _client(_session(_response(payload={"data": []})), call_log=call_log)
        bad = _client(_session(_response(status=401, payload={})), call_log=call_log)

        await ok.search("a", "US")
        await ok.search("b", "US", context=CallContext(call_type=CallType.MANUAL_SEARCH))
        with pytest.raises(TokenInvalidError):
            await bad.search("c", "US")

        summary = call_log.summary()
        assert summary["total_requests"] == 3
        assert summary["successful_requests"] == 2
        assert summary["failed_requests"] == 1
        assert summary["by_call_type"]["AUTO_ENRICHMENT"] == 2
        assert summary["by_call_type"]["MANUAL_SEARCH"] == 1
        assert summary["error_types"] == {"TOKEN_INVALID": 1}

    def test_buffer_is_bounded(self):
        call_log = SearchCallLog(max_records=2)
        for _ in range(3):
            call_log.emit(_make_record())
        assert len(call_log.records()) == 2


def _make_record():
    from interest_enricher.search import SearchCallRecord

    return SearchCallRecord(
        call_type=CallType.MANUAL_SEARCH,
        term="surf",
        country="US",
        final_result=CallOutcome.SUCCESS,
        processing_time_ms=1.0,
    )


# =============================================================================
# Retry decision
# =============================================================================


class TestShouldRetry:
    """Retry budget per error type."""

    def test_retryable_until_budget_exhausted(self):
        assert should_retry(ErrorType.RATE_LIMIT, 0, 3)
        assert should_retry(ErrorType.RATE_LIMIT, 1, 3)
        assert not should_retry(ErrorType.RATE_LIMIT, 2, 3)

    @pytest.mark.parametrize("error_type", [ErrorType.TOKEN_INVALID, ErrorType.FACEBOOK_API])
    def test_semantic_errors_never_retry(self, error_type):
        assert not should_retry(error_type, 0, 3)

    def test_parse_retried_once(self):
        assert should_retry(ErrorType.PARSE, 0, 5)
        assert not should_retry(ErrorType.PARSE, 1, 5, previous_error_type=ErrorType.PARSE)
        assert should_retry(ErrorType.PARSE, 1, 5, previous_error_type=ErrorType.NETWORK)


# =============================================================================
# Throttle
# =============================================================================


class TestRequestThrottle:
    """Pause after every batch of requests."""

    @pytest.mark.asyncio
    async def test_pauses_after_batch(self):
        now = [0.0]
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        throttle = RequestThrottle(batch_size=2, pause_seconds=5.0, clock=lambda: now[0], sleep=fake_sleep)

        waits = [await throttle.acquire() for _ in range(5)]

        assert waits == [0.0, 0.0, 5.0, 0.0, 5.0]
        assert sleeps == [5.0, 5.0]
        assert throttle.request_count == 5

    @pytest.mark.asyncio
    async def test_zero_pause_never_sleeps(self):
        sleep = AsyncMock()
        throttle = RequestThrottle(batch_size=1, pause_seconds=0, sleep=sleep)

        for _ in range(3):
            await throttle.acquire()

        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_reset(self):
        throttle = RequestThrottle(batch_size=1, pause_seconds=0)
        await throttle.acquire()
        throttle.reset()
        assert throttle.request_count == 0


# =============================================================================
# Helpers
# =============================================================================


class _async_context:
    """Helper to create an async context manager from a mock response."""

    def __init__(self, resp):
        self.resp = resp

    async def __aenter__(self):
        return self.resp

    async def __aexit__(self, *args):
        pass
