"""
Phase Tracker Module

Records the lifecycle events of a single outbound HTTP request and derives
per-phase latency: DNS lookup, TCP connect, TLS handshake, server processing
and the total time to first byte.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from latency_probe.domain.phase import (
    TOTAL_KEY,
    Phase,
    PhaseEvent,
    PhaseReport,
    SequenceAnomaly,
)
from latency_probe.tracing.base import PhaseEventSink

logger = logging.getLogger(__name__)

ZERO = timedelta(0)

# Event -> (phase, opens the phase)
_BOUNDARIES: dict[PhaseEvent, tuple[Phase, bool]] = {
    PhaseEvent.DNS_START: (Phase.DNS, True),
    PhaseEvent.DNS_DONE: (Phase.DNS, False),
    PhaseEvent.CONNECT_START: (Phase.CONNECT, True),
    PhaseEvent.CONNECT_DONE: (Phase.CONNECT, False),
    PhaseEvent.TLS_START: (Phase.TLS, True),
    PhaseEvent.TLS_DONE: (Phase.TLS, False),
    PhaseEvent.REQUEST_WRITTEN: (Phase.SERVER_PROCESSING, True),
    PhaseEvent.FIRST_BYTE: (Phase.SERVER_PROCESSING, False),
}

# Candidate anchors for the total, in order of preference
_TOTAL_ANCHORS = (
    PhaseEvent.DNS_START,
    PhaseEvent.CONNECT_START,
    PhaseEvent.CONNECTION_OBTAINED,
)


@dataclass
class PhaseWindow:
    """Start/end timestamps of one phase, None while unset"""

    start: Optional[float] = None
    end: Optional[float] = None


class PhaseTracker(PhaseEventSink):
    """
    Per-request Phase Tracker

    Accumulates the timestamps of one request attempt and derives a
    non-negative duration for every phase it saw. Phases that never fire
    (DNS/connect/TLS on a reused connection, TLS on plain-text, DNS on a
    literal IP) keep a zero duration; read `connection_reused` and
    `uses_encrypted_transport` to tell "skipped" apart from "took no time".

    Malformed sequences never raise. A "done" without its "start", an end
    before its start or a repeated event leaves the duration at zero and
    appends a SequenceAnomaly to `anomalies`.

    Not synchronized: one tracker serves one request attempt.

    Example:
        tracker = create_tracker()
        extensions = attach(None, tracker)
        with client.stream("GET", url, extensions=extensions) as response:
            response.read()
        print(tracker.durations())
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Initialize Tracker

        Args:
            clock: Monotonic clock in seconds, defaults to time.perf_counter
        """
        self._clock = clock or time.perf_counter
        self.connection_reused = False
        self.uses_encrypted_transport = False
        self.total_duration = ZERO
        self.total_anchor: Optional[PhaseEvent] = None
        self.anomalies: list[SequenceAnomaly] = []
        self._windows = {phase: PhaseWindow() for phase in Phase}
        self._phase_durations = {phase: ZERO for phase in Phase}
        self._seen: dict[PhaseEvent, float] = {}

    def now(self) -> float:
        return self._clock()

    def record(
        self,
        event: PhaseEvent,
        at: Optional[float] = None,
        **info: Any,
    ) -> None:
        """
        Apply a lifecycle event

        The single state transition of the tracker: every callback ends up here.

        Args:
            event: Lifecycle event
            at: Event timestamp, defaults to the tracker's clock
            **info: Event details; `reused` is read from CONNECTION_OBTAINED
        """
        event = PhaseEvent(event)
        now = self.now() if at is None else at

        if event in self._seen:
            self._flag(event, "repeated event ignored")
            return
        self._seen[event] = now
        logger.debug("phase event=%s at=%.6f info=%s", event.value, now, info)

        if event is PhaseEvent.CONNECTION_OBTAINED:
            self.connection_reused = bool(info.get("reused", False))
            return

        phase, opens = _BOUNDARIES[event]
        window = self._windows[phase]
        if opens:
            window.start = now
            if event is PhaseEvent.TLS_START:
                self.uses_encrypted_transport = True
            return

        if window.start is None:
            self._flag(event, f"{phase.value} completed before it started")
        elif now < window.start:
            self._flag(event, f"{phase.value} ends before it starts")
        else:
            window.end = now
            self._phase_durations[phase] = timedelta(seconds=now - window.start)

        if event is PhaseEvent.FIRST_BYTE:
            self._derive_total(now)

    def _derive_total(self, first_byte_at: float) -> None:
        for anchor in _TOTAL_ANCHORS:
            started_at = self._seen.get(anchor)
            if started_at is None:
                continue
            if first_byte_at < started_at:
                self._flag(PhaseEvent.FIRST_BYTE, f"first byte precedes {anchor.value}")
                return
            self.total_anchor = anchor
            self.total_duration = timedelta(seconds=first_byte_at - started_at)
            return
        self._flag(PhaseEvent.FIRST_BYTE, "no event to measure the total from")

    def _flag(self, event: PhaseEvent, reason: str) -> None:
        anomaly = SequenceAnomaly(event=event, reason=reason)
        self.anomalies.append(anomaly)
        logger.warning("phase sequence anomaly: %s", anomaly)

    def window(self, phase: Phase) -> PhaseWindow:
        """Copy of the recorded timestamps of a phase"""
        current = self._windows[phase]
        return PhaseWindow(start=current.start, end=current.end)

    @property
    def dns_lookup_duration(self) -> timedelta:
        return self._phase_durations[Phase.DNS]

    @property
    def connect_duration(self) -> timedelta:
        return self._phase_durations[Phase.CONNECT]

    @property
    def tls_handshake_duration(self) -> timedelta:
        return self._phase_durations[Phase.TLS]

    @property
    def server_processing_duration(self) -> timedelta:
        return self._phase_durations[Phase.SERVER_PROCESSING]

    @property
    def is_complete(self) -> bool:
        """Whether the first response byte has been observed"""
        return PhaseEvent.FIRST_BYTE in self._seen

    def durations(self) -> dict[str, timedelta]:
        """
        Get derived durations

        Pure read, callable at any time; fields not derived yet are zero.

        Returns:
            dict[str, timedelta]: Keyed DNSLookup, Connect, TLSHandshake, ServerProcessing, Total
        """
        result = {phase.value: self._phase_durations[phase] for phase in Phase}
        result[TOTAL_KEY] = self.total_duration
        return result

    def report(self) -> PhaseReport:
        """Snapshot of durations (ms), flags and anomalies"""

        def ms(value: timedelta) -> float:
            return value.total_seconds() * 1000

        return PhaseReport(
            dns_lookup_ms=ms(self.dns_lookup_duration),
            connect_ms=ms(self.connect_duration),
            tls_handshake_ms=ms(self.tls_handshake_duration),
            server_processing_ms=ms(self.server_processing_duration),
            total_ms=ms(self.total_duration),
            connection_reused=self.connection_reused,
            uses_encrypted_transport=self.uses_encrypted_transport,
            complete=self.is_complete,
            total_anchor=self.total_anchor.value if self.total_anchor else None,
            anomalies=[str(anomaly) for anomaly in self.anomalies],
        )


def create_tracker(clock: Optional[Callable[[], float]] = None) -> PhaseTracker:
    """Return a fresh, zero-initialized tracker"""
    return PhaseTracker(clock=clock)


def durations(tracker: PhaseTracker) -> dict[str, timedelta]:
    """Read the five derived durations of a tracker"""
    return tracker.durations()
