"""
Trace Hook Unit Tests
"""

import inspect
from datetime import timedelta

import httpcore
import httpx
import pytest

from latency_probe.common.phase_tracker import PhaseTracker
from latency_probe.domain.phase import PhaseEvent
from latency_probe.tracing.trace_hook import (
    AsyncTraceHook,
    TraceHook,
    attach,
    get_dialing_sink,
)

DIAL_INFO = {"host": "example.com", "port": 443, "local_address": None, "timeout": 5.0}


def _replay_exchange(hook, clock, protocol="http11"):
    """Replay the request/response events of one exchange"""
    hook(f"{protocol}.send_request_headers.started", {"request": None})
    hook(f"{protocol}.send_request_headers.complete", {"return_value": None})
    hook(f"{protocol}.send_request_body.started", {"request": None})
    hook(f"{protocol}.send_request_body.complete", {"return_value": None})
    hook(f"{protocol}.receive_response_headers.started", {"request": None})
    clock.advance(0.0625)
    hook(f"{protocol}.receive_response_headers.complete", {"return_value": None})
    hook(f"{protocol}.receive_response_body.started", {"request": None})
    hook(f"{protocol}.receive_response_body.complete", {"return_value": None})
    hook(f"{protocol}.response_closed.started", {})
    hook(f"{protocol}.response_closed.complete", {"return_value": None})


class TestTraceHook:
    """Synchronous trace hook tests"""

    def test_fresh_tls_connection_without_resolver(self, clock):
        """Test the dial counts as Connect when no backend reports DNS"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)

        hook("connection.connect_tcp.started", DIAL_INFO)
        clock.advance(0.25)
        hook("connection.connect_tcp.complete", {"return_value": object()})
        hook("connection.start_tls.started", {"server_hostname": "example.com"})
        clock.advance(0.125)
        hook("connection.start_tls.complete", {"return_value": object()})
        _replay_exchange(hook, clock)

        assert tracker.dns_lookup_duration == timedelta(0)
        assert tracker.connect_duration == timedelta(seconds=0.25)
        assert tracker.tls_handshake_duration == timedelta(seconds=0.125)
        assert tracker.server_processing_duration == timedelta(seconds=0.0625)
        assert tracker.total_duration == timedelta(seconds=0.4375)
        assert tracker.total_anchor is PhaseEvent.CONNECT_START
        assert tracker.uses_encrypted_transport is True
        assert tracker.connection_reused is False
        assert tracker.anomalies == []

    def test_reused_connection(self, clock):
        """Test a request without a dial is reported as reused"""
        tracker = PhaseTracker(clock=clock)
        _replay_exchange(TraceHook(tracker), clock)

        assert tracker.connection_reused is True
        assert tracker.connect_duration == timedelta(0)
        assert tracker.server_processing_duration == timedelta(seconds=0.0625)
        assert tracker.total_anchor is PhaseEvent.CONNECTION_OBTAINED
        assert tracker.anomalies == []

    def test_http2_events(self, clock):
        """Test HTTP/2 events map like HTTP/1.1 events"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)
        hook("http2.send_connection_init.started", {"request": None})
        hook("http2.send_connection_init.complete", {"return_value": None})
        _replay_exchange(hook, clock, protocol="http2")

        assert tracker.is_complete is True
        assert tracker.server_processing_duration == timedelta(seconds=0.0625)

    def test_dialing_sink_bound_during_dial(self, clock):
        """Test the sink is visible to network backends only while dialing"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)
        assert get_dialing_sink() is None

        hook("connection.connect_tcp.started", DIAL_INFO)
        assert get_dialing_sink() is not None
        hook("connection.connect_tcp.complete", {"return_value": object()})
        assert get_dialing_sink() is None

    def test_resolver_reported_connect_start_is_kept(self, clock):
        """Test events reported by a resolving backend take precedence"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)

        hook("connection.connect_tcp.started", DIAL_INFO)
        sink = get_dialing_sink()
        sink.on_dns_start("example.com")
        clock.advance(0.5)
        sink.on_dns_done()
        sink.on_connect_start("example.com:443")
        clock.advance(0.25)
        hook("connection.connect_tcp.complete", {"return_value": object()})
        _replay_exchange(hook, clock)

        assert tracker.dns_lookup_duration == timedelta(seconds=0.5)
        assert tracker.connect_duration == timedelta(seconds=0.25)
        assert tracker.total_anchor is PhaseEvent.DNS_START
        assert tracker.total_duration == timedelta(seconds=0.8125)
        assert tracker.anomalies == []

    def test_failed_connect(self, clock):
        """Test a failed dial still closes the Connect phase"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)

        hook("connection.connect_tcp.started", DIAL_INFO)
        clock.advance(0.25)
        hook("connection.connect_tcp.failed", {"exception": OSError("refused")})

        assert tracker.connect_duration == timedelta(seconds=0.25)
        assert tracker.is_complete is False
        assert get_dialing_sink() is None

    def test_failed_tls(self, clock):
        """Test a failed handshake still closes the TLS phase"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)

        hook("connection.start_tls.started", {})
        clock.advance(0.125)
        hook("connection.start_tls.failed", {"exception": OSError("bad certificate")})

        assert tracker.tls_handshake_duration == timedelta(seconds=0.125)
        assert tracker.uses_encrypted_transport is True

    def test_unix_socket_dial(self, clock):
        """Test unix socket dials are reported as Connect"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)

        hook("connection.connect_unix_socket.started", {"path": "/tmp/app.sock"})
        clock.advance(0.25)
        hook("connection.connect_unix_socket.complete", {"return_value": object()})

        assert tracker.connect_duration == timedelta(seconds=0.25)

    def test_proxy_tunnel_exchange_skipped(self, clock):
        """Test the proxy CONNECT exchange is not timed as the request"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)
        connect_request = httpcore.Request("CONNECT", "https://example.com:443")

        hook("connection.connect_tcp.started", {"host": "proxy.test", "port": 3128})
        clock.advance(0.25)
        hook("connection.connect_tcp.complete", {"return_value": object()})
        hook("http11.send_request_headers.started", {"request": connect_request})
        hook("http11.send_request_headers.complete", {"return_value": None})
        hook("http11.send_request_body.started", {"request": connect_request})
        hook("http11.send_request_body.complete", {"return_value": None})
        hook("http11.receive_response_headers.started", {"request": connect_request})
        clock.advance(0.5)
        hook("http11.receive_response_headers.complete", {"return_value": None})
        hook("proxy.start_tls.started", {"server_hostname": "example.com"})
        clock.advance(0.125)
        hook("proxy.start_tls.complete", {"return_value": object()})
        _replay_exchange(hook, clock)

        assert tracker.connection_reused is False
        assert tracker.connect_duration == timedelta(seconds=0.25)
        assert tracker.tls_handshake_duration == timedelta(seconds=0.125)
        assert tracker.server_processing_duration == timedelta(seconds=0.0625)
        assert tracker.total_duration == timedelta(seconds=0.9375)
        assert tracker.uses_encrypted_transport is True
        assert tracker.anomalies == []

    def test_unknown_events_ignored(self, clock):
        """Test unrelated httpcore events leave the tracker untouched"""
        tracker = PhaseTracker(clock=clock)
        hook = TraceHook(tracker)
        hook("connection.retry.started", {})
        hook("http_proxy.connect.started", {})
        hook("connection.close.complete", {})

        assert tracker.durations() == PhaseTracker().durations()
        assert tracker.anomalies == []


class TestAsyncTraceHook:
    """Asynchronous trace hook tests"""

    def test_returns_coroutine(self, clock):
        """Test the async hook satisfies httpcore's coroutine check"""
        hook = AsyncTraceHook(PhaseTracker(clock=clock))
        result = hook("http11.send_request_headers.started", {})
        assert inspect.iscoroutine(result)
        result.close()

    @pytest.mark.asyncio
    async def test_fresh_connection(self, clock):
        """Test the async hook records the same phases"""
        tracker = PhaseTracker(clock=clock)
        hook = AsyncTraceHook(tracker)

        await hook("connection.connect_tcp.started", DIAL_INFO)
        assert get_dialing_sink() is not None
        clock.advance(0.25)
        await hook("connection.connect_tcp.complete", {"return_value": object()})
        assert get_dialing_sink() is None
        await hook("http11.send_request_headers.started", {})
        await hook("http11.send_request_body.complete", {})
        clock.advance(0.0625)
        await hook("http11.receive_response_headers.complete", {})

        assert tracker.connect_duration == timedelta(seconds=0.25)
        assert tracker.server_processing_duration == timedelta(seconds=0.0625)
        assert tracker.connection_reused is False


class TestAttach:
    """attach() tests"""

    def test_does_not_modify_context(self):
        """Test attach returns a new mapping"""
        tracker = PhaseTracker()
        context = {"timeout": {"connect": 5.0}}
        extensions = attach(context, tracker)

        assert context == {"timeout": {"connect": 5.0}}
        assert extensions["timeout"] == {"connect": 5.0}
        assert isinstance(extensions["trace"], TraceHook)
        assert extensions["trace"].sink is tracker

    def test_from_none(self):
        """Test attach works without a context"""
        extensions = attach(None, PhaseTracker())
        assert list(extensions) == ["trace"]

    def test_from_request(self):
        """Test attach derives from an httpx.Request"""
        request = httpx.Request("GET", "https://example.com", extensions={"sni_hostname": "example.com"})
        extensions = attach(request, PhaseTracker())

        assert extensions["sni_hostname"] == "example.com"
        assert "trace" not in request.extensions

    def test_async_hook(self):
        """Test is_async installs the coroutine hook"""
        extensions = attach(None, PhaseTracker(), is_async=True)
        assert isinstance(extensions["trace"], AsyncTraceHook)

    def test_hook_per_attach(self):
        """Test each attach creates its own hook"""
        first = attach(None, PhaseTracker())
        second = attach(None, PhaseTracker())
        assert first["trace"] is not second["trace"]
