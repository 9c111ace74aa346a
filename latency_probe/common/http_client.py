"""
Measuring HTTP Client Module

Issues a request with a fresh phase tracker attached, drains the response
body and hands back the timings.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import httpx

from latency_probe.common.errors import ProbeRequestError
from latency_probe.common.phase_tracker import PhaseTracker, create_tracker
from latency_probe.config import get_settings
from latency_probe.tracing.trace_hook import attach
from latency_probe.tracing.transport import create_async_client, create_client

logger = logging.getLogger(__name__)


@dataclass
class TimedResponse:
    """
    Timed Response Data Class

    Response metadata and the tracker of the request that produced it.
    """

    # HTTP status code
    status_code: int
    # Tracker holding the phase timings
    tracker: PhaseTracker
    # Response headers
    headers: dict[str, str] = field(default_factory=dict)
    # Response body size (bytes, after content decoding)
    num_bytes: int = 0

    @property
    def durations(self) -> dict[str, timedelta]:
        """Phase durations keyed DNSLookup, Connect, TLSHandshake, ServerProcessing, Total"""
        return self.tracker.durations()


def _request_error(exc: httpx.RequestError, tracker: PhaseTracker) -> ProbeRequestError:
    if isinstance(exc, httpx.TimeoutException):
        return ProbeRequestError(f"Request timeout: {exc}", code="timeout", tracker=tracker)
    return ProbeRequestError(f"Request error: {exc}", tracker=tracker)


def _log_timings(method: str, url: str, status_code: int, tracker: PhaseTracker) -> None:
    report = tracker.report()
    logger.info(
        "%s %s status=%s dns=%.3fms connect=%.3fms tls=%.3fms server=%.3fms total=%.3fms reused=%s",
        method,
        url,
        status_code,
        report.dns_lookup_ms,
        report.connect_ms,
        report.tls_handshake_ms,
        report.server_processing_ms,
        report.total_ms,
        report.connection_reused,
    )


class HttpClient:
    """
    Asynchronous Measuring Client

    Wraps one pooled httpx.AsyncClient, so consecutive requests to the same
    host can reuse connections. Every `measure` call gets its own tracker.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **client_kwargs: Any,
    ):
        """
        Initialize HTTP Client

        Args:
            timeout: Request timeout (seconds), defaults to configuration
            headers: Default request headers
            transport: Custom transport, replaces the tracing transport
            **client_kwargs: Other httpx.AsyncClient parameters
        """
        self.timeout = timeout
        self.default_headers = headers or {}
        self._transport = transport
        self._client_kwargs = client_kwargs
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """
        Get or create HTTP client instance

        Returns:
            httpx.AsyncClient: HTTP client instance
        """
        if self._client is None:
            if self._transport is not None:
                self._client = httpx.AsyncClient(
                    transport=self._transport,
                    timeout=httpx.Timeout(self.timeout or get_settings().HTTP_TIMEOUT),
                    headers=self.default_headers,
                    **self._client_kwargs,
                )
            else:
                self._client = create_async_client(
                    timeout=self.timeout,
                    headers=self.default_headers,
                    **self._client_kwargs,
                )
        return self._client

    async def close(self) -> None:
        """Close HTTP Client"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def measure(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> TimedResponse:
        """
        Send a request and measure its phases

        The response body is drained before returning, so every lifecycle
        event has fired by the time the tracker is read.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            headers: Request headers
            **kwargs: Other httpx parameters

        Returns:
            TimedResponse: Status, headers, body size and tracker

        Raises:
            ProbeRequestError: The request failed in the transport
        """
        client = await self._get_client()
        tracker = create_tracker()
        extensions = attach(kwargs.pop("extensions", None), tracker, is_async=True)

        try:
            async with client.stream(
                method, url, headers=headers, extensions=extensions, **kwargs
            ) as response:
                num_bytes = 0
                async for chunk in response.aiter_bytes():
                    num_bytes += len(chunk)
        except httpx.RequestError as e:
            raise _request_error(e, tracker) from e

        _log_timings(method, url, response.status_code, tracker)
        return TimedResponse(
            status_code=response.status_code,
            tracker=tracker,
            headers=dict(response.headers),
            num_bytes=num_bytes,
        )


def measure(
    url: str,
    method: str = "GET",
    client: Optional[httpx.Client] = None,
    **kwargs: Any,
) -> TimedResponse:
    """
    Send a request synchronously and measure its phases

    Args:
        url: Request URL
        method: HTTP method
        client: Client to send through, reused across calls for keep-alive;
            a short-lived traceable client is created when omitted
        **kwargs: Other httpx parameters

    Returns:
        TimedResponse: Status, headers, body size and tracker

    Raises:
        ProbeRequestError: The request failed in the transport
    """
    owns_client = client is None
    if client is None:
        client = create_client()

    tracker = create_tracker()
    extensions = attach(kwargs.pop("extensions", None), tracker)
    try:
        with client.stream(method, url, extensions=extensions, **kwargs) as response:
            num_bytes = 0
            for chunk in response.iter_bytes():
                num_bytes += len(chunk)
    except httpx.RequestError as e:
        raise _request_error(e, tracker) from e
    finally:
        if owns_client:
            client.close()

    _log_timings(method, url, response.status_code, tracker)
    return TimedResponse(
        status_code=response.status_code,
        tracker=tracker,
        headers=dict(response.headers),
        num_bytes=num_bytes,
    )
