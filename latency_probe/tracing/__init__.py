"""
Request tracing module

Connects phase event sinks to the httpx / httpcore transport.
"""

from latency_probe.tracing.base import PhaseEventSink
from latency_probe.tracing.network_backend import (
    AsyncResolvingNetworkBackend,
    ResolvingNetworkBackend,
)
from latency_probe.tracing.trace_hook import AsyncTraceHook, TraceHook, attach
from latency_probe.tracing.transport import (
    AsyncTracingTransport,
    TracingTransport,
    create_async_client,
    create_client,
)

__all__ = [
    "PhaseEventSink",
    "AsyncResolvingNetworkBackend",
    "ResolvingNetworkBackend",
    "AsyncTraceHook",
    "TraceHook",
    "attach",
    "AsyncTracingTransport",
    "TracingTransport",
    "create_async_client",
    "create_client",
]
