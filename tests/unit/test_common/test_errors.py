"""
Error Definition Tests
"""

from latency_probe.common.errors import ProbeError, ProbeRequestError
from latency_probe.common.phase_tracker import PhaseTracker


class TestProbeError:
    """Base error tests"""

    def test_to_dict(self):
        """Test dictionary format"""
        error = ProbeError("boom", code="custom", details={"url": "https://example.com"})
        assert error.to_dict() == {
            "error": {
                "message": "boom",
                "code": "custom",
                "details": {"url": "https://example.com"},
            }
        }
        assert str(error) == "boom"


class TestProbeRequestError:
    """Request error tests"""

    def test_defaults(self):
        """Test default message and code"""
        error = ProbeRequestError()
        assert error.code == "request_error"
        assert error.tracker is None
        assert "timings" not in error.to_dict()["error"]

    def test_partial_timings(self, clock):
        """Test the partial timings are included"""
        tracker = PhaseTracker(clock=clock)
        tracker.on_dns_start("missing.test")
        clock.advance(0.5)
        tracker.on_dns_done(error=OSError("lookup failed"))

        error = ProbeRequestError("Request error: lookup failed", tracker=tracker)
        timings = error.to_dict()["error"]["timings"]

        assert timings["dns_lookup_ms"] == 500.0
        assert timings["complete"] is False
        assert isinstance(error, ProbeError)
