"""
Unit tests for the resilient request executor (`watts_home.api_client.executor`).

The session is a `Mock()` returning real `requests.Response` objects and the
backoff sleep is recorded instead of slept.
"""

from __future__ import annotations

import json
import logging
from unittest.mock import Mock

import pytest
import requests

from watts_home.api_client.envelope import parse_envelope
from watts_home.api_client.executor import RETRYABLE_STATUSES, RequestExecutor, RequestSpec
from watts_home.errors import ApiError, EmptyBodyError, HttpError, NetworkError, NotAuthenticatedError

REASONS = {200: "OK", 400: "Bad Request", 401: "Unauthorized", 404: "Not Found", 500: "Internal Server Error",
           503: "Service Unavailable"}


def _make_response(status_code: int = 200, payload: object = None, *, text: str = "") -> requests.Response:
    resp = requests.Response()
    resp.status_code = status_code
    resp.reason = REASONS.get(status_code, "")
    resp.url = "https://home.watts.com/api/Device/d1"
    resp.encoding = "utf-8"
    if payload is not None:
        resp.headers["Content-Type"] = "application/json"
        resp._content = json.dumps(payload).encode("utf-8")  # noqa: SLF001
    else:
        resp._content = text.encode("utf-8")  # noqa: SLF001
    return resp


def _ok(body: object) -> requests.Response:
    return _make_response(200, {"errorNumber": 0, "errorMessage": None, "body": body})


class _StaticTokens:
    def __init__(self, token: str = "tok") -> None:
        self.token = token
        self.calls = 0

    async def get_valid_token(self) -> str:
        self.calls += 1
        return self.token


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _executor(session: Mock, *, tokens=None, sleep=None) -> RequestExecutor:
    return RequestExecutor(
        tokens or _StaticTokens(),
        session=session,
        base_url="https://home.watts.com/api",
        log=logging.LoggerAdapter(logging.getLogger("test"), {}),
        timeout_seconds=5.0,
        sleep=sleep or _SleepRecorder(),
    )


@pytest.mark.asyncio
async def test_success_returns_body_and_sends_auth_headers() -> None:
    session = Mock()
    session.request.return_value = _ok({"deviceId": "d1"})
    tokens = _StaticTokens("abc123")

    body = await _executor(session, tokens=tokens).request(RequestSpec("GET", "/Device/d1"))

    assert body == {"deviceId": "d1"}
    call = session.request.call_args
    assert call.args == ("GET", "https://home.watts.com/api/Device/d1")
    assert call.kwargs["headers"]["Authorization"] == "Bearer abc123"
    assert call.kwargs["headers"]["Api-Version"] == "2.0"
    assert call.kwargs["timeout"] == 5.0


@pytest.mark.asyncio
async def test_patch_sends_json_payload() -> None:
    session = Mock()
    session.request.return_value = _ok({"deviceId": "d1"})

    await _executor(session).request(RequestSpec("PATCH", "/Device/d1", json={"Settings": {"Heat": 70}}))

    assert session.request.call_args.kwargs["json"] == {"Settings": {"Heat": 70}}


@pytest.mark.asyncio
async def test_retryable_status_is_retried_twice_with_linear_backoff() -> None:
    session = Mock()
    session.request.return_value = _make_response(503, text="unavailable")
    sleep = _SleepRecorder()
    tokens = _StaticTokens()

    with pytest.raises(HttpError) as exc:
        await _executor(session, tokens=tokens, sleep=sleep).request(RequestSpec("GET", "/User"))

    assert exc.value.status == 503
    assert session.request.call_count == 3
    assert sleep.delays == [0.25, 0.5]
    assert sum(sleep.delays) >= 0.75
    # A fresh token is obtained for each attempt.
    assert tokens.calls == 3


@pytest.mark.asyncio
async def test_transient_failure_then_success() -> None:
    session = Mock()
    session.request.side_effect = [_make_response(500, text="oops"), _ok([{"locationId": "l1"}])]

    body = await _executor(session).request(RequestSpec("GET", "/Location"))

    assert body == [{"locationId": "l1"}]
    assert session.request.call_count == 2


@pytest.mark.asyncio
async def test_two_retryable_failures_then_success_uses_both_retries() -> None:
    session = Mock()
    session.request.side_effect = [
        _make_response(503, text="unavailable"),
        _make_response(503, text="unavailable"),
        _ok({"deviceId": "d1"}),
    ]
    sleep = _SleepRecorder()

    body = await _executor(session, sleep=sleep).request(RequestSpec("GET", "/Device/d1"))

    assert body == {"deviceId": "d1"}
    assert session.request.call_count == 3
    assert sleep.delays == [0.25, 0.5]
    assert sum(sleep.delays) >= 0.75


@pytest.mark.asyncio
async def test_timeout_is_retried() -> None:
    session = Mock()
    session.request.side_effect = [requests.Timeout("read timed out"), _ok({"userId": "u1"})]

    assert await _executor(session).request(RequestSpec("GET", "/User")) == {"userId": "u1"}


@pytest.mark.asyncio
async def test_timeouts_exhaust_retries_as_network_error() -> None:
    session = Mock()
    session.request.side_effect = requests.Timeout("read timed out")

    with pytest.raises(NetworkError):
        await _executor(session).request(RequestSpec("GET", "/User"))

    assert session.request.call_count == 3


@pytest.mark.asyncio
async def test_connection_error_is_terminal_network_error() -> None:
    session = Mock()
    session.request.side_effect = requests.ConnectionError("refused")
    sleep = _SleepRecorder()

    with pytest.raises(NetworkError):
        await _executor(session, sleep=sleep).request(RequestSpec("GET", "/User"))

    assert session.request.call_count == 1
    assert sleep.delays == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
async def test_non_retryable_status_fails_after_one_attempt(status: int) -> None:
    session = Mock()
    session.request.return_value = _make_response(status, text="nope")

    with pytest.raises(HttpError):
        await _executor(session).request(RequestSpec("GET", "/User"))

    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_http_error_with_envelope_message_is_api_error() -> None:
    session = Mock()
    session.request.return_value = _make_response(
        404, {"errorNumber": 404, "errorMessage": "Device not found", "body": None}
    )

    with pytest.raises(ApiError) as exc:
        await _executor(session).request(RequestSpec("GET", "/Device/missing"))

    assert str(exc.value) == "Device not found"
    assert exc.value.status == 404
    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_nonzero_error_number_is_api_error() -> None:
    session = Mock()
    session.request.return_value = _make_response(200, {"errorNumber": 17, "errorMessage": None, "body": {}})

    with pytest.raises(ApiError) as exc:
        await _executor(session).request(RequestSpec("GET", "/User"))

    assert exc.value.error_number == 17
    assert "17" in str(exc.value)


@pytest.mark.asyncio
async def test_null_body_is_empty_body_error() -> None:
    session = Mock()
    session.request.return_value = _make_response(200, {"errorNumber": 0, "errorMessage": None, "body": None})

    with pytest.raises(EmptyBodyError):
        await _executor(session).request(RequestSpec("GET", "/User"))

    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_auth_error_propagates_without_request() -> None:
    class _NoTokens:
        async def get_valid_token(self) -> str:
            raise NotAuthenticatedError("run login first")

    session = Mock()

    with pytest.raises(NotAuthenticatedError):
        await _executor(session, tokens=_NoTokens()).request(RequestSpec("GET", "/User"))

    session.request.assert_not_called()


def test_retryable_statuses() -> None:
    assert RETRYABLE_STATUSES == {408, 429, 500, 502, 503, 504}


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"errorNumber": 0, "errorMessage": None, "body": {"a": 1}}, True),
        ({"errorNumber": 0, "errorMessage": None, "body": None}, False),
        ({"errorNumber": 3, "errorMessage": "x", "body": {"a": 1}}, False),
    ],
)
def test_envelope_ok(payload: dict, expected: bool) -> None:
    envelope = parse_envelope(payload)
    assert envelope is not None
    assert envelope.ok is expected


@pytest.mark.parametrize("payload", [None, [], {"body": {}}, {"errorNumber": "x"}])
def test_parse_envelope_rejects_other_shapes(payload: object) -> None:
    assert parse_envelope(payload) is None
