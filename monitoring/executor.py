"""
============================================================================
PULSE ENGINE - CHECK EXECUTOR
============================================================================
Bounded-timeout HTTP probe and outcome classification.

    up       2xx or 3xx response
    down     any other status, or a connection level failure
    timeout  no complete response within timeoutSeconds

A down or timeout outcome is a valid result, never an exception.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from config.constants import CheckOutcome, Defaults, UP_STATUS_RANGE
from messaging.messages import MonitorData
from utils.helpers import StringHelper
from utils.logger import get_logger


logger = get_logger("CheckExecutor")


# ============================================================================
# CHECK RESULT
# ============================================================================

class CheckResult:
    """
    Value object carrying everything a single probe produced.

    ``response_time`` is in milliseconds.
    """
    __slots__ = (
        "outcome", "status_code", "response_time", "error_message", "error_type",
    )

    def __init__(
        self,
        outcome: CheckOutcome,
        status_code: Optional[int] = None,
        response_time: Optional[int] = None,
        error_message: Optional[str] = None,
        error_type: Optional[str] = None,
    ):
        self.outcome = outcome
        self.status_code = status_code
        self.response_time = response_time
        self.error_message = error_message
        self.error_type = error_type

    @property
    def is_up(self) -> bool:
        return self.outcome == CheckOutcome.UP

    def to_dict(self) -> Dict[str, Any]:
        return {slot: getattr(self, slot) for slot in self.__slots__}

    def __repr__(self) -> str:
        return (
            f"CheckResult(outcome={self.outcome.value}, status_code={self.status_code}, "
            f"response_time={self.response_time})"
        )


def classify_status(status_code: int) -> CheckOutcome:
    return CheckOutcome.UP if status_code in UP_STATUS_RANGE else CheckOutcome.DOWN


# ============================================================================
# HTTP EXECUTOR
# ============================================================================

class CheckExecutor:
    """
    Performs monitor probes with a shared httpx.AsyncClient.

    Redirects are not followed: a 3xx answer already counts as up.
    """

    def __init__(
        self,
        user_agent: str = Defaults.USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_connections: int = 100
    ):
        self.user_agent = user_agent
        self._transport = transport
        self._max_connections = max_connections
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=False,
                limits=httpx.Limits(
                    max_connections=self._max_connections,
                    max_keepalive_connections=self._max_connections // 2
                ),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def execute(
        self,
        monitor_data: MonitorData,
        user_agent: Optional[str] = None
    ) -> CheckResult:
        """
        Probe ``monitor_data.url`` under a hard timeout.

        Parameters
        ----------
        monitor_data : MonitorData
            Target description from the check message.
        user_agent : str | None
            Overrides the executor's default User-Agent.

        Returns
        -------
        CheckResult
        """
        timeout = monitor_data.timeout_seconds or Defaults.TIMEOUT_SECONDS
        headers = dict(monitor_data.headers or {})
        headers.setdefault("User-Agent", user_agent or self.user_agent)

        url = monitor_data.url
        start_time = time.perf_counter()

        try:
            # httpx timeouts are per phase; wait_for bounds the whole probe
            response = await asyncio.wait_for(
                self._get_client().get(
                    url,
                    headers=headers,
                    timeout=httpx.Timeout(timeout)
                ),
                timeout=timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            elapsed = self._elapsed_ms(start_time)
            logger.debug(f"[HTTP] {url} timed out after {elapsed}ms")
            return CheckResult(
                outcome=CheckOutcome.TIMEOUT,
                response_time=elapsed,
                error_message="Request timeout",
                error_type=type(e).__name__,
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            elapsed = self._elapsed_ms(start_time)
            logger.debug(f"[HTTP] {url} connection failure: {e}")
            return CheckResult(
                outcome=CheckOutcome.DOWN,
                response_time=elapsed,
                error_message=StringHelper.truncate(
                    f"Connection error: {e or type(e).__name__}", 200
                ),
                error_type=type(e).__name__,
            )

        elapsed = self._elapsed_ms(start_time)
        outcome = classify_status(response.status_code)

        if outcome == CheckOutcome.UP:
            logger.debug(f"[HTTP] {url} → {response.status_code} in {elapsed}ms")
            return CheckResult(
                outcome=outcome,
                status_code=response.status_code,
                response_time=elapsed,
            )

        logger.debug(f"[HTTP] {url} → status {response.status_code}")
        return CheckResult(
            outcome=outcome,
            status_code=response.status_code,
            response_time=elapsed,
            error_message=f"HTTP {response.status_code}: {response.reason_phrase}",
            error_type="HTTPStatus",
        )

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int(round((time.perf_counter() - start_time) * 1000))
