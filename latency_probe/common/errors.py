"""
Error Definitions

Defines the exceptions raised by the probe's request glue. The phase tracker
itself never raises; sequence problems are recorded as anomalies instead.
"""

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from latency_probe.common.phase_tracker import PhaseTracker


class ProbeError(Exception):
    """
    Probe Base Exception

    Base class for all custom exceptions, containing error message and code.
    """

    def __init__(
        self,
        message: str,
        code: str = "probe_error",
        details: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize exception

        Args:
            message: Error message
            code: Error code
            details: Extra error details
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary format

        Returns:
            dict: Error information dictionary
        """
        result = {
            "error": {
                "message": self.message,
                "code": self.code,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class ProbeRequestError(ProbeError):
    """
    Probe Request Error

    Raised when the measured request fails in the transport (DNS failure,
    connection refused, TLS failure, timeout). Carries the tracker with the
    timings recorded before the failure; later phases are unset.
    """

    def __init__(
        self,
        message: str = "Request failed",
        code: str = "request_error",
        tracker: Optional["PhaseTracker"] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, details=details)
        self.tracker = tracker

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tracker is not None:
            result["error"]["timings"] = self.tracker.report().model_dump()
        return result
