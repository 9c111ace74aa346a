"""
httpcore Trace Hook Module

Translates httpcore `trace` extension events into phase events on a sink.

httpcore reports events named `<component>.<operation>.<stage>`, e.g.
`connection.connect_tcp.started` or `http11.receive_response_headers.complete`,
to the callable stored under `request.extensions["trace"]`.
"""

import logging
from contextvars import ContextVar, Token
from typing import Any, Mapping, Optional, Union

import httpx

from latency_probe.domain.phase import PhaseEvent
from latency_probe.tracing.base import PhaseEventSink

logger = logging.getLogger(__name__)

# Sink of the connection currently being dialed in this thread / task.
# Set between `connect_*.started` and `connect_*.complete|failed` only.
_dialing_sink: ContextVar[Optional[PhaseEventSink]] = ContextVar(
    "latency_probe_dialing_sink", default=None
)

_DIAL_OPERATIONS = {
    "connection.connect_tcp",
    "connection.connect_unix_socket",
}
_START_TLS_OPERATIONS = {
    "connection.start_tls",
    # TLS to the origin inside a proxy tunnel
    "proxy.start_tls",
}
_SEND_HEADERS_OPERATIONS = {
    "http11.send_request_headers",
    "http2.send_request_headers",
}
_SEND_BODY_OPERATIONS = {
    "http11.send_request_body",
    "http2.send_request_body",
}
_RECEIVE_HEADERS_OPERATIONS = {
    "http11.receive_response_headers",
    "http2.receive_response_headers",
}


def get_dialing_sink() -> Optional[PhaseEventSink]:
    """
    Get the sink of the connection being dialed

    Used by network backends, which only see host and port, to report
    DNS and connect events for the request that triggered the dial.

    Returns:
        Optional[PhaseEventSink]: Sink, or None outside a traced dial
    """
    return _dialing_sink.get()


class _DialSink(PhaseEventSink):
    """Forwards events to the request's sink and remembers what the network backend reported"""

    def __init__(self, target: PhaseEventSink):
        self.target = target
        self.reported = False
        self.connect_started = False

    def now(self) -> float:
        return self.target.now()

    def record(
        self,
        event: PhaseEvent,
        at: Optional[float] = None,
        **info: Any,
    ) -> None:
        self.reported = True
        if event is PhaseEvent.CONNECT_START:
            self.connect_started = True
        self.target.record(event, at, **info)


class TraceHook:
    """
    Synchronous httpcore Trace Hook

    One instance per request. Connection reuse is inferred: the connection is
    obtained when the first request headers start going out, and it was
    reused when no dial happened before that.

    Behind an HTTPS proxy httpcore sends a CONNECT request with the same
    extensions; that exchange is skipped and only the origin request is
    timed. Its TLS handshake to the proxy, if any, is not told apart from
    the handshake to the origin.
    """

    def __init__(self, sink: PhaseEventSink):
        self.sink = sink
        self._dial: Optional[_DialSink] = None
        self._dial_started_at: Optional[float] = None
        self._dial_address: Optional[str] = None
        self._dial_token: Optional[Token] = None
        self._dialed = False
        self._connection_obtained = False
        self._tunneling = False

    def __call__(self, event_name: str, info: Mapping[str, Any]) -> None:
        self.dispatch(event_name, info)

    def dispatch(self, event_name: str, info: Mapping[str, Any]) -> None:
        """
        Handle one httpcore trace event

        Args:
            event_name: Event name, e.g. "connection.start_tls.started"
            info: Event details; "exception" is set on failed events
        """
        operation, _, stage = event_name.rpartition(".")
        logger.debug("trace event=%s", event_name)

        if operation in _DIAL_OPERATIONS:
            self._on_dial(stage, info)
        elif operation in _START_TLS_OPERATIONS:
            if stage == "started":
                self.sink.on_tls_start()
            else:
                self.sink.on_tls_done(error=info.get("exception"))
        elif operation in _SEND_HEADERS_OPERATIONS:
            if stage == "started":
                self._on_send_headers(info)
        elif self._tunneling:
            # proxy CONNECT exchange, the origin request has not started yet
            return
        elif operation in _SEND_BODY_OPERATIONS:
            # httpcore suppresses write errors and still reads the response
            if stage in ("complete", "failed"):
                self.sink.on_request_written()
        elif operation in _RECEIVE_HEADERS_OPERATIONS:
            if stage == "complete":
                self.sink.on_first_byte()

    def _on_send_headers(self, info: Mapping[str, Any]) -> None:
        request = info.get("request")
        self._tunneling = getattr(request, "method", None) == b"CONNECT"
        if self._tunneling or self._connection_obtained:
            return
        self._connection_obtained = True
        self.sink.on_connection_obtained(reused=not self._dialed)

    def _on_dial(self, stage: str, info: Mapping[str, Any]) -> None:
        if stage == "started":
            self._dialed = True
            self._dial = _DialSink(self.sink)
            self._dial_started_at = self.sink.now()
            self._dial_address = info.get("path") or f"{info.get('host')}:{info.get('port')}"
            self._dial_token = _dialing_sink.set(self._dial)
            return

        if self._dial_token is not None:
            _dialing_sink.reset(self._dial_token)
            self._dial_token = None
        dial, self._dial = self._dial, None
        if dial is not None and not dial.connect_started:
            if dial.reported:
                # name lookup failed, no address was dialed
                return
            # No resolving backend: the whole dial, name resolution included,
            # counts as the Connect phase.
            self.sink.record(
                PhaseEvent.CONNECT_START,
                at=self._dial_started_at,
                address=self._dial_address,
            )
        self.sink.on_connect_done(error=info.get("exception"))


class AsyncTraceHook(TraceHook):
    """Asynchronous httpcore Trace Hook, required by httpx.AsyncClient"""

    async def __call__(self, event_name: str, info: Mapping[str, Any]) -> None:
        self.dispatch(event_name, info)


def attach(
    context: Union[httpx.Request, Mapping[str, Any], None],
    sink: PhaseEventSink,
    *,
    is_async: bool = False,
) -> dict[str, Any]:
    """
    Attach a sink to a request execution context

    Builds a new extensions mapping carrying a per-request trace hook bound
    to `sink`. The given context is not modified. Attach a sink to one
    request only; sharing it across concurrent requests is not supported.

    Args:
        context: Request or extensions mapping to derive from, or None
        sink: Sink receiving the request's lifecycle events
        is_async: Install a coroutine hook for httpx.AsyncClient

    Returns:
        dict[str, Any]: Extensions to pass as `extensions=` to httpx

    Example:
        tracker = create_tracker()
        response = client.get(url, extensions=attach(None, tracker))
    """
    if isinstance(context, httpx.Request):
        extensions = dict(context.extensions)
    else:
        extensions = dict(context or {})
    if "trace" in extensions:
        logger.debug("replacing existing trace extension")

    hook_class = AsyncTraceHook if is_async else TraceHook
    extensions["trace"] = hook_class(sink)
    return extensions
