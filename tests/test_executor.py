"""Tests for the HTTP probe and its outcome classification."""

import asyncio

import httpx
import pytest

from config.constants import CheckOutcome
from messaging.messages import MonitorData
from monitoring.executor import CheckExecutor, classify_status


def _monitor_data(**overrides) -> MonitorData:
    fields = dict(
        name="Example API",
        url="https://example.com/health",
        interval_minutes=5,
        timeout_seconds=5,
    )
    fields.update(overrides)
    return MonitorData(**fields)


async def _probe(handler, **overrides):
    executor = CheckExecutor(transport=httpx.MockTransport(handler))
    try:
        return await executor.execute(_monitor_data(**overrides))
    finally:
        await executor.close()


@pytest.mark.parametrize(
    "status_code, expected",
    [
        (200, CheckOutcome.UP),
        (204, CheckOutcome.UP),
        (301, CheckOutcome.UP),
        (399, CheckOutcome.UP),
        (404, CheckOutcome.DOWN),
        (500, CheckOutcome.DOWN),
        (199, CheckOutcome.DOWN),
    ],
)
def test_classify_status(status_code, expected) -> None:
    """2xx and 3xx are up, everything else is down."""
    assert classify_status(status_code) == expected


async def test_ok_response_is_up() -> None:
    """A 200 yields up with the status code and a response time."""
    result = await _probe(lambda request: httpx.Response(200))

    assert result.outcome == CheckOutcome.UP
    assert result.status_code == 200
    assert result.response_time >= 0
    assert result.error_message is None


async def test_redirect_is_not_followed() -> None:
    """A 301 counts as up; the Location target is never requested."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(301, headers={"Location": "https://example.com/moved"})

    result = await _probe(handler)

    assert result.outcome == CheckOutcome.UP
    assert result.status_code == 301
    assert seen == ["https://example.com/health"]


async def test_server_error_is_down() -> None:
    """A 500 is down and carries the status line as the error."""
    result = await _probe(lambda request: httpx.Response(500))

    assert result.outcome == CheckOutcome.DOWN
    assert result.status_code == 500
    assert result.error_message == "HTTP 500: Internal Server Error"


async def test_transport_timeout_is_timeout() -> None:
    """An httpx timeout is classified as timeout."""
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    result = await _probe(handler)

    assert result.outcome == CheckOutcome.TIMEOUT
    assert result.status_code is None
    assert result.error_message == "Request timeout"


async def test_hard_timeout_bounds_the_whole_probe() -> None:
    """A handler slower than timeoutSeconds is cut off and reported as timeout."""
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    result = await _probe(handler, timeout_seconds=1)

    assert result.outcome == CheckOutcome.TIMEOUT
    assert result.response_time < 3000


async def test_connection_error_is_down() -> None:
    """A refused connection is down with a connection error message."""
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await _probe(handler)

    assert result.outcome == CheckOutcome.DOWN
    assert result.status_code is None
    assert result.error_message.startswith("Connection error:")


async def test_headers_and_user_agent_are_sent() -> None:
    """Monitor headers are sent and the User-Agent defaults to the executor's."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(request.headers)
        return httpx.Response(200)

    await _probe(handler, headers={"X-Api-Key": "secret"})

    assert captured["x-api-key"] == "secret"
    assert captured["user-agent"].startswith("Pulse-Engine-Monitor")
