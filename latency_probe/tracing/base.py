"""
Phase Event Sink Base Class

Defines the interface through which a transport reports request lifecycle events.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from latency_probe.domain.phase import PhaseEvent


class PhaseEventSink(ABC):
    """
    Phase Event Sink Abstract Base Class

    Receives the lifecycle events of exactly one request attempt. Transports
    take a sink as a parameter; nothing is registered globally.

    Preconditions the caller must honor:
    - every "done" event is preceded by its matching "start" event
    - each event fires at most once per request
    - events for one sink are never reported concurrently from different threads

    Implementations only need `record`; the `on_*` methods are the named
    capability set a transport adapter calls.
    """

    @abstractmethod
    def record(
        self,
        event: PhaseEvent,
        at: Optional[float] = None,
        **info: Any,
    ) -> None:
        """
        Apply a lifecycle event

        Args:
            event: Lifecycle event
            at: Event timestamp from `now()`, defaults to the current time
            **info: Event details (e.g. `reused`, `host`, `error`)
        """
        pass

    def now(self) -> float:
        """Current timestamp on the sink's clock (seconds)"""
        return time.perf_counter()

    def on_connection_obtained(self, reused: bool) -> None:
        self.record(PhaseEvent.CONNECTION_OBTAINED, reused=reused)

    def on_dns_start(self, host: Optional[str] = None) -> None:
        self.record(PhaseEvent.DNS_START, host=host)

    def on_dns_done(self, error: Optional[BaseException] = None) -> None:
        self.record(PhaseEvent.DNS_DONE, error=error)

    def on_connect_start(self, address: Optional[str] = None) -> None:
        self.record(PhaseEvent.CONNECT_START, address=address)

    def on_connect_done(self, error: Optional[BaseException] = None) -> None:
        self.record(PhaseEvent.CONNECT_DONE, error=error)

    def on_tls_start(self) -> None:
        self.record(PhaseEvent.TLS_START)

    def on_tls_done(self, error: Optional[BaseException] = None) -> None:
        self.record(PhaseEvent.TLS_DONE, error=error)

    def on_request_written(self) -> None:
        self.record(PhaseEvent.REQUEST_WRITTEN)

    def on_first_byte(self) -> None:
        self.record(PhaseEvent.FIRST_BYTE)
