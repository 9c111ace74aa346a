"""
latency-probe

Per-request latency breakdown (DNS lookup, TCP connect, TLS handshake,
server processing, total) for httpx requests.
"""

from latency_probe.common.errors import ProbeError, ProbeRequestError
from latency_probe.common.http_client import HttpClient, TimedResponse, measure
from latency_probe.common.phase_tracker import PhaseTracker, create_tracker, durations
from latency_probe.domain.phase import Phase, PhaseEvent, PhaseReport, SequenceAnomaly
from latency_probe.tracing import (
    PhaseEventSink,
    attach,
    create_async_client,
    create_client,
)

__version__ = "0.1.0"

__all__ = [
    "ProbeError",
    "ProbeRequestError",
    "HttpClient",
    "TimedResponse",
    "measure",
    "PhaseTracker",
    "create_tracker",
    "durations",
    "Phase",
    "PhaseEvent",
    "PhaseReport",
    "SequenceAnomaly",
    "PhaseEventSink",
    "attach",
    "create_async_client",
    "create_client",
]
