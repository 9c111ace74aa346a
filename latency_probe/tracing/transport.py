"""
Tracing Transport Module

httpx transports whose connection pool dials through the resolving network
backends, plus factories building clients on top of them.
"""

import logging
from typing import Any, Optional

import httpcore
import httpx

from latency_probe.config import get_settings
from latency_probe.tracing.network_backend import (
    AsyncResolvingNetworkBackend,
    ResolvingNetworkBackend,
)

logger = logging.getLogger(__name__)

# httpx.Client options that only reach the transport httpx builds itself,
# an explicit transport must receive them directly
_TRANSPORT_OPTIONS = (
    "verify",
    "cert",
    "http1",
    "limits",
    "proxy",
    "retries",
    "local_address",
    "uds",
    "socket_options",
)


def _install_backend(transport: Any, backend_class: type) -> None:
    """
    Wrap the network backend of a transport's connection pool

    httpx offers no public hook for the pool's network backend, so this
    fails loudly instead of tracing nothing when its internals change.
    """
    pool = getattr(transport, "_pool", None)
    pool_classes = (httpcore.ConnectionPool, httpcore.AsyncConnectionPool)
    if not isinstance(pool, pool_classes) or not hasattr(pool, "_network_backend"):
        raise TypeError(
            f"{type(transport).__name__} exposes no httpcore connection pool, "
            "DNS lookup cannot be traced with this httpx version"
        )
    pool._network_backend = backend_class(pool._network_backend)


class TracingTransport(httpx.HTTPTransport):
    """
    httpx.HTTPTransport reporting DNS lookup separately from TCP connect

    Accepts the same arguments as httpx.HTTPTransport.
    """

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        _install_backend(self, ResolvingNetworkBackend)


class AsyncTracingTransport(httpx.AsyncHTTPTransport):
    """Async counterpart of TracingTransport"""

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        _install_backend(self, AsyncResolvingNetworkBackend)


def _client_options(
    timeout: Optional[float],
    http2: Optional[bool],
    resolve_dns: Optional[bool],
) -> tuple[httpx.Timeout, bool, bool]:
    settings = get_settings()
    return (
        httpx.Timeout(timeout or settings.HTTP_TIMEOUT),
        settings.HTTP2 if http2 is None else http2,
        settings.TRACE_RESOLVE_DNS if resolve_dns is None else resolve_dns,
    )


def _split_transport_options(kwargs: dict[str, Any], http2: bool) -> dict[str, Any]:
    """
    Move transport options out of httpx client parameters

    Args:
        kwargs: httpx client parameters, transport options are removed
        http2: Offer HTTP/2

    Returns:
        dict[str, Any]: Transport constructor parameters
    """
    options = {name: kwargs.pop(name) for name in _TRANSPORT_OPTIONS if name in kwargs}
    # trust_env is read by both the client (proxies, .netrc) and the transport (SSL_CERT_FILE)
    if "trust_env" in kwargs:
        options["trust_env"] = kwargs["trust_env"]
    options["http2"] = http2
    return options


def create_client(
    timeout: Optional[float] = None,
    http2: Optional[bool] = None,
    resolve_dns: Optional[bool] = None,
    **kwargs: Any,
) -> httpx.Client:
    """
    Create a traceable httpx.Client

    Proxies picked up from the environment (`trust_env`) are mounted by httpx
    with its own transports: their requests are still traced, but the proxy
    host lookup is folded into the Connect phase.

    Args:
        timeout: Request timeout (seconds), defaults to configuration
        http2: Offer HTTP/2, defaults to configuration
        resolve_dns: Time DNS lookup separately, defaults to configuration
        **kwargs: Other httpx.Client parameters; transport options (verify,
            cert, limits, proxy, retries, local_address, ...) configure the
            tracing transport

    Returns:
        httpx.Client: Client whose requests accept `attach()` extensions
    """
    client_timeout, use_http2, use_resolver = _client_options(timeout, http2, resolve_dns)
    transport_class = TracingTransport if use_resolver else httpx.HTTPTransport
    transport_options = _split_transport_options(kwargs, use_http2)
    logger.debug(
        "creating client transport=%s options=%s",
        transport_class.__name__,
        sorted(transport_options),
    )
    return httpx.Client(
        transport=transport_class(**transport_options),
        timeout=client_timeout,
        **kwargs,
    )


def create_async_client(
    timeout: Optional[float] = None,
    http2: Optional[bool] = None,
    resolve_dns: Optional[bool] = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """
    Create a traceable httpx.AsyncClient

    Same options as `create_client`; attach trackers with `is_async=True`.
    """
    client_timeout, use_http2, use_resolver = _client_options(timeout, http2, resolve_dns)
    transport_class = AsyncTracingTransport if use_resolver else httpx.AsyncHTTPTransport
    transport_options = _split_transport_options(kwargs, use_http2)
    logger.debug(
        "creating async client transport=%s options=%s",
        transport_class.__name__,
        sorted(transport_options),
    )
    return httpx.AsyncClient(
        transport=transport_class(**transport_options),
        timeout=client_timeout,
        **kwargs,
    )
