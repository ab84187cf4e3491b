"""Unit tests for the health monitors."""

import time

from streamforge.exceptions import StreamTimeoutError
from streamforge.telemetry.monitoring import ApplicationMonitor, HealthState, NullMonitor


class AuthenticationError(Exception):
    pass


class TestApplicationMonitor:
    """Tests for ApplicationMonitor."""

    def test_starts_healthy(self):
        status = ApplicationMonitor().get_health_status()

        assert status.overall == HealthState.HEALTHY
        assert status.http_status == 200

    def test_counts_errors_by_type(self):
        monitor = ApplicationMonitor(recovery_threshold=10)
        monitor.record_error(StreamTimeoutError("stalled"))
        monitor.record_error(StreamTimeoutError("stalled again"))
        monitor.record_error("CustomError")

        errors = {error.type: error.count for error in monitor.get_health_status().errors}
        assert errors == {"StreamTimeoutError": 2, "CustomError": 1}

    def test_recovery_threshold_degrades_performance(self):
        """More than threshold timeouts resets the count and degrades health."""
        monitor = ApplicationMonitor(recovery_threshold=2)
        for _ in range(3):
            monitor.record_error(StreamTimeoutError("stalled"))

        status = monitor.get_health_status()
        assert status.overall == HealthState.DEGRADED
        assert status.http_status == 200
        assert [check.name for check in status.checks] == ["performance"]
        assert status.errors == []

    def test_auth_errors_make_service_unhealthy(self):
        monitor = ApplicationMonitor(recovery_threshold=1)
        monitor.record_error(AuthenticationError("bad key"))
        monitor.record_error(AuthenticationError("bad key"))

        status = monitor.get_health_status()
        assert status.overall == HealthState.UNHEALTHY
        assert status.http_status == 503

    def test_unknown_type_degrades_general_check(self):
        monitor = ApplicationMonitor(recovery_threshold=1)
        monitor.record_error("Weird")
        monitor.record_error("Weird")

        assert monitor.get_health_status().checks[0].name == "general"

    def test_many_recent_error_types_degrade(self):
        monitor = ApplicationMonitor(recovery_threshold=10)
        for index in range(6):
            monitor.record_error(f"Error{index}")

        assert monitor.get_health_status().overall == HealthState.DEGRADED

    def test_old_errors_do_not_degrade(self):
        monitor = ApplicationMonitor(recovery_threshold=10, recent_error_window_seconds=60)
        for index in range(6):
            monitor.record_error(f"Error{index}")
        for error in monitor._error_counts.values():
            error.last_occurred = time.time() - 3600

        assert monitor.get_health_status().overall == HealthState.HEALTHY

    def test_response_body(self):
        monitor = ApplicationMonitor()
        monitor.update_health_check("network", HealthState.DEGRADED, "slow")
        monitor.record_error("CustomError")

        body = monitor.get_health_status().to_response_body()
        assert body["status"] == "degraded"
        assert body["checks"][0]["name"] == "network"
        assert body["checks"][0]["details"] == "slow"
        assert body["errorSummary"][0]["type"] == "CustomError"
        assert "timestamp" in body


class TestNullMonitor:
    """Tests for NullMonitor."""

    def test_always_healthy(self):
        monitor = NullMonitor()
        monitor.record_error(RuntimeError("x"))
        monitor.update_health_check("network", HealthState.UNHEALTHY)

        status = monitor.get_health_status()
        assert status.overall == HealthState.HEALTHY
        assert status.to_response_body()["checks"] == []
