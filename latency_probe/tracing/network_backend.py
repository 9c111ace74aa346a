"""
Resolving Network Backend Module

httpcore resolves host names inside its TCP connect call, so the DNS lookup
is invisible to the trace extension. These backends resolve the host
themselves, report the lookup and the dial separately to the sink of the
connection being dialed, then connect to the resolved addresses in order.

TLS is unaffected: httpcore passes the original host name for SNI and
certificate verification on its own.
"""

import ipaddress
import logging
import socket
from typing import Iterable, Optional

import anyio
import httpcore

from latency_probe.tracing.base import PhaseEventSink
from latency_probe.tracing.trace_hook import get_dialing_sink

logger = logging.getLogger(__name__)


def is_ip_literal(host: str) -> bool:
    """Whether `host` is an IPv4/IPv6 address, which needs no lookup"""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _unique_addresses(infos: Iterable[tuple]) -> list[str]:
    addresses: list[str] = []
    for info in infos:
        address = info[4][0]
        if address not in addresses:
            addresses.append(address)
    return addresses


def _dns_error(host: str, exc: BaseException) -> httpcore.ConnectError:
    return httpcore.ConnectError(f"DNS lookup failed for {host}: {exc}")


class ResolvingNetworkBackend(httpcore.NetworkBackend):
    """
    Synchronous Resolving Backend

    Wraps another backend (httpcore.SyncBackend by default). Outside a traced
    dial it passes every call straight through.
    """

    def __init__(self, backend: Optional[httpcore.NetworkBackend] = None):
        self._backend = backend or httpcore.SyncBackend()

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable[httpcore.SOCKET_OPTION]] = None,
    ) -> httpcore.NetworkStream:
        sink = get_dialing_sink()
        if sink is None:
            return self._backend.connect_tcp(
                host,
                port,
                timeout=timeout,
                local_address=local_address,
                socket_options=socket_options,
            )

        addresses = [host] if is_ip_literal(host) else self._resolve(sink, host, port)
        sink.on_connect_start(address=f"{host}:{port}")

        last_error: Optional[httpcore.ConnectError] = None
        for address in addresses:
            try:
                return self._backend.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except httpcore.ConnectError as exc:
                logger.debug("connect to %s:%s failed: %s", address, port, exc)
                last_error = exc
        assert last_error is not None
        raise last_error

    def _resolve(self, sink: PhaseEventSink, host: str, port: int) -> list[str]:
        sink.on_dns_start(host=host)
        try:
            infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except OSError as exc:
            sink.on_dns_done(error=exc)
            raise _dns_error(host, exc) from exc
        sink.on_dns_done()

        addresses = _unique_addresses(infos)
        if not addresses:
            raise httpcore.ConnectError(f"DNS lookup returned no addresses for {host}")
        logger.debug("resolved %s to %s", host, addresses)
        return addresses

    def connect_unix_socket(
        self,
        path: str,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable[httpcore.SOCKET_OPTION]] = None,
    ) -> httpcore.NetworkStream:
        return self._backend.connect_unix_socket(
            path, timeout=timeout, socket_options=socket_options
        )

    def sleep(self, seconds: float) -> None:
        self._backend.sleep(seconds)


class AsyncResolvingNetworkBackend(httpcore.AsyncNetworkBackend):
    """
    Asynchronous Resolving Backend

    Same as ResolvingNetworkBackend, resolving through anyio so the lookup
    does not block the event loop. The lookup is bounded by the connect timeout. Wraps httpcore.AnyIOBackend by default.
    """

    def __init__(self, backend: Optional[httpcore.AsyncNetworkBackend] = None):
        self._backend = backend or httpcore.AnyIOBackend()

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable[httpcore.SOCKET_OPTION]] = None,
    ) -> httpcore.AsyncNetworkStream:
        sink = get_dialing_sink()
        if sink is None:
            return await self._backend.connect_tcp(
                host,
                port,
                timeout=timeout,
                local_address=local_address,
                socket_options=socket_options,
            )

        if is_ip_literal(host):
            addresses = [host]
        else:
            addresses = await self._resolve(sink, host, port, timeout)
        sink.on_connect_start(address=f"{host}:{port}")

        last_error: Optional[httpcore.ConnectError] = None
        for address in addresses:
            try:
                return await self._backend.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except httpcore.ConnectError as exc:
                logger.debug("connect to %s:%s failed: %s", address, port, exc)
                last_error = exc
        assert last_error is not None
        raise last_error

    async def _resolve(
        self,
        sink: PhaseEventSink,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> list[str]:
        sink.on_dns_start(host=host)
        try:
            # same deadline httpcore's AnyIOBackend puts around its own lookup
            with anyio.fail_after(timeout):
                infos = await anyio.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except TimeoutError as exc:
            sink.on_dns_done(error=exc)
            raise httpcore.ConnectTimeout(f"DNS lookup timed out for {host}") from exc
        except OSError as exc:
            sink.on_dns_done(error=exc)
            raise _dns_error(host, exc) from exc
        sink.on_dns_done()

        addresses = _unique_addresses(infos)
        if not addresses:
            raise httpcore.ConnectError(f"DNS lookup returned no addresses for {host}")
        logger.debug("resolved %s to %s", host, addresses)
        return addresses

    async def connect_unix_socket(
        self,
        path: str,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable[httpcore.SOCKET_OPTION]] = None,
    ) -> httpcore.AsyncNetworkStream:
        return await self._backend.connect_unix_socket(
            path, timeout=timeout, socket_options=socket_options
        )

    async def sleep(self, seconds: float) -> None:
        await self._backend.sleep(seconds)
