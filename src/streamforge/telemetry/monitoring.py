"""Error counting and health checks, injected into the HTTP layer."""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from streamforge.config.settings import settings
from streamforge.utils.logger import logger


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheck:
    name: str
    status: HealthState
    last_check: datetime
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "lastCheck": self.last_check.isoformat(),
            "details": self.details,
        }


@dataclass
class ErrorMetrics:
    type: str
    count: int
    last_occurred: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "count": self.count,
            "lastOccurred": datetime.fromtimestamp(self.last_occurred, tz=timezone.utc).isoformat(),
        }


@dataclass
class HealthStatus:
    overall: HealthState
    checks: List[HealthCheck] = field(default_factory=list)
    errors: List[ErrorMetrics] = field(default_factory=list)

    @property
    def http_status(self) -> int:
        return 503 if self.overall == HealthState.UNHEALTHY else 200

    def to_response_body(self) -> Dict[str, Any]:
        return {
            "status": self.overall.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": [check.to_dict() for check in self.checks],
            "errorSummary": [error.to_dict() for error in self.errors],
        }


class HealthMonitor(Protocol):
    """Capabilities the chat endpoint needs from a monitor."""

    def record_error(self, error: BaseException | str, context: Optional[Dict[str, Any]] = None) -> None:
        ...

    def update_health_check(self, name: str, status: HealthState, details: Optional[str] = None) -> None:
        ...

    def get_health_status(self) -> HealthStatus:
        ...


# Health check degraded when one error type keeps recurring
_RECOVERY_CHECKS = {
    "APIConnectionError": ("network", HealthState.DEGRADED, "High network error rate detected"),
    "ProviderStreamError": ("network", HealthState.DEGRADED, "High provider stream error rate detected"),
    "StreamTimeoutError": ("performance", HealthState.DEGRADED, "High timeout rate detected"),
    "APITimeoutError": ("performance", HealthState.DEGRADED, "High timeout rate detected"),
    "AuthenticationError": ("authentication", HealthState.UNHEALTHY, "API key issues detected"),
}


class ApplicationMonitor:
    """
    In-process monitor shared by all requests.

    Error counts and health checks are guarded by a lock; request handlers
    only ever append through record_error/update_health_check.
    """

    def __init__(
        self,
        recovery_threshold: int = None,
        recent_error_window_seconds: int = None,
    ):
        self.recovery_threshold = recovery_threshold or settings.MONITOR_RECOVERY_THRESHOLD
        self.recent_error_window_seconds = (
            recent_error_window_seconds or settings.MONITOR_RECENT_ERROR_WINDOW_SECONDS
        )
        self._lock = threading.Lock()
        self._error_counts: Dict[str, ErrorMetrics] = {}
        self._health_checks: Dict[str, HealthCheck] = {}
        self.enabled = True

    def record_error(self, error: BaseException | str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Count an error by type and degrade health when one type keeps recurring.

        Args:
            error: The exception (or a pre-computed error type string)
            context: Extra details for the log line
        """
        if not self.enabled:
            return

        error_key = error if isinstance(error, str) else type(error).__name__
        message = error if isinstance(error, str) else str(error)

        with self._lock:
            existing = self._error_counts.get(error_key)
            count = existing.count + 1 if existing else 1
            self._error_counts[error_key] = ErrorMetrics(type=error_key, count=count, last_occurred=time.time())
            trigger_recovery = count > self.recovery_threshold
            if trigger_recovery:
                del self._error_counts[error_key]

        logger.error(f"Error recorded by monitor: type={error_key} count={count} message={message} context={context}")

        if trigger_recovery:
            self._trigger_recovery(error_key)

    def update_health_check(self, name: str, status: HealthState, details: Optional[str] = None) -> None:
        with self._lock:
            self._health_checks[name] = HealthCheck(
                name=name,
                status=HealthState(status),
                last_check=datetime.now(timezone.utc),
                details=details,
            )
        logger.info(f"Health check updated: {name}={HealthState(status).value} ({details})")

    def get_health_status(self) -> HealthStatus:
        with self._lock:
            checks = list(self._health_checks.values())
            errors = list(self._error_counts.values())

        overall = HealthState.HEALTHY
        if any(check.status == HealthState.UNHEALTHY for check in checks):
            overall = HealthState.UNHEALTHY
        elif any(check.status == HealthState.DEGRADED for check in checks):
            overall = HealthState.DEGRADED

        cutoff = time.time() - self.recent_error_window_seconds
        recent_errors = [error for error in errors if error.last_occurred >= cutoff]
        if len(recent_errors) > 5 and overall == HealthState.HEALTHY:
            overall = HealthState.DEGRADED

        return HealthStatus(overall=overall, checks=checks, errors=errors)

    def _trigger_recovery(self, error_type: str) -> None:
        logger.warning(f"Triggering recovery for error type: {error_type}")
        name, status, details = _RECOVERY_CHECKS.get(
            error_type, ("general", HealthState.DEGRADED, f"High error rate for {error_type}")
        )
        self.update_health_check(name, status, details)


class NullMonitor:
    """Monitor that records nothing; always healthy."""

    def record_error(self, error: BaseException | str, context: Optional[Dict[str, Any]] = None) -> None:
        pass

    def update_health_check(self, name: str, status: HealthState, details: Optional[str] = None) -> None:
        pass

    def get_health_status(self) -> HealthStatus:
        return HealthStatus(overall=HealthState.HEALTHY)
