"""
Domain model module initialization
"""

from latency_probe.domain.phase import (
    DURATION_KEYS,
    TOTAL_KEY,
    Phase,
    PhaseEvent,
    PhaseReport,
    SequenceAnomaly,
)

__all__ = [
    "DURATION_KEYS",
    "TOTAL_KEY",
    "Phase",
    "PhaseEvent",
    "PhaseReport",
    "SequenceAnomaly",
]
