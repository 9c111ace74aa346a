"""
Phase Domain Model

Defines the request lifecycle phases, the events that open and close them,
and the serializable latency report.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Phase(str, Enum):
    """Measured request phase, valued by its public duration key"""

    DNS = "DNSLookup"
    CONNECT = "Connect"
    TLS = "TLSHandshake"
    SERVER_PROCESSING = "ServerProcessing"


# Duration key of the overall time to first byte
TOTAL_KEY = "Total"

# Public duration keys, in lifecycle order
DURATION_KEYS = (
    Phase.DNS.value,
    Phase.CONNECT.value,
    Phase.TLS.value,
    Phase.SERVER_PROCESSING.value,
    TOTAL_KEY,
)


class PhaseEvent(str, Enum):
    """
    Lifecycle event reported by the transport

    Listed in the logical order they fire for one request. DNS, connect and
    TLS events are skipped on a reused connection, TLS events on plain-text
    connections and DNS events on literal IP hosts.
    """

    CONNECTION_OBTAINED = "connection_obtained"
    DNS_START = "dns_start"
    DNS_DONE = "dns_done"
    CONNECT_START = "connect_start"
    CONNECT_DONE = "connect_done"
    TLS_START = "tls_start"
    TLS_DONE = "tls_done"
    REQUEST_WRITTEN = "request_written"
    FIRST_BYTE = "first_byte"


@dataclass(frozen=True)
class SequenceAnomaly:
    """
    Out-of-order or repeated lifecycle event

    Recorded instead of deriving a meaningless duration.
    """

    event: PhaseEvent
    reason: str

    def __str__(self) -> str:
        return f"{self.event.value}: {self.reason}"


class PhaseReport(BaseModel):
    """Latency breakdown of a single request"""

    # DNS lookup (ms)
    dns_lookup_ms: float = Field(0.0, description="DNS lookup time")
    # TCP connect (ms)
    connect_ms: float = Field(0.0, description="TCP connect time")
    # TLS handshake (ms)
    tls_handshake_ms: float = Field(0.0, description="TLS handshake time")
    # Request written to first response byte (ms)
    server_processing_ms: float = Field(0.0, description="Server processing time")
    # Total time to first byte (ms)
    total_ms: float = Field(0.0, description="Total time")
    # Pooled connection was handed out instead of a new one being dialed
    connection_reused: bool = Field(False, description="Connection reused")
    # TLS handshake started on this request's connection
    uses_encrypted_transport: bool = Field(False, description="Encrypted transport")
    # First response byte observed
    complete: bool = Field(False, description="Lifecycle complete")
    # Event the total is measured from
    total_anchor: Optional[str] = Field(None, description="Total anchor event")
    # Sequence problems detected while recording
    anomalies: list[str] = Field(default_factory=list, description="Sequence anomalies")

    def summary(self) -> str:
        """Render one line per duration, as printed by a command-line probe"""
        rows = [
            (Phase.DNS.value, self.dns_lookup_ms),
            (Phase.CONNECT.value, self.connect_ms),
            (Phase.TLS.value, self.tls_handshake_ms),
            (Phase.SERVER_PROCESSING.value, self.server_processing_ms),
            (TOTAL_KEY, self.total_ms),
        ]
        lines = [f"{name}: {value:.3f}ms" for name, value in rows]
        if self.connection_reused:
            lines.append("(connection reused)")
        return "\n".join(lines)
