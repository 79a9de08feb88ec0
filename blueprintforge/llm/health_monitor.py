"""
Provider Health Monitoring

This module records the outcome of every provider call and derives live
per-provider health: request counts, latency percentiles, recent error rate,
latency trend and circuit state. Metrics are always recomputed from the
recorded requests; nothing sets a status directly.
"""

import math
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from blueprintforge.utils.logging import get_logger

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState

logger = get_logger(__name__)


class HealthStatus(Enum):
    """Overall health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RequestRecord:
    """One recorded provider call."""

    timestamp: float
    success: bool
    latency: float
    error: Optional[str] = None


@dataclass
class LatencyMetrics:
    """Latency distribution in seconds."""

    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    avg: float = 0.0
    min: float = 0.0
    max: float = 0.0


@dataclass
class ProviderHealthMetrics:
    """Health read-model for one provider."""

    provider: str
    status: HealthStatus
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    latency: LatencyMetrics
    recent_error_rate: float
    latency_trend: float
    circuit_state: CircuitState
    last_request_at: Optional[float] = None
    last_success_at: Optional[float] = None
    last_failure_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["circuit_state"] = self.circuit_state.value
        return data


@dataclass
class HealthConfig:
    """Configuration for health monitoring."""

    max_records: int = 1000  # Ring buffer size per provider
    recent_window: float = 300.0  # Trailing window for the recent error rate
    degraded_threshold: float = 0.8  # Success rate below this is degraded
    unhealthy_threshold: float = 0.5  # Success rate at or below this is unhealthy
    latency_threshold_multiplier: float = 1.5  # Trend above this is degraded
    min_trend_samples: int = 10
    min_recent_trend_samples: int = 5
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)


def percentile(sorted_values: List[float], p: float) -> float:
    """Rank-selection percentile over an ascending list."""
    if not sorted_values:
        return 0.0
    index = max(0, math.ceil(p / 100 * len(sorted_values)) - 1)
    return sorted_values[min(index, len(sorted_values) - 1)]


class HealthMonitor:
    """
    Process-wide health tracking for generation providers.

    Appends are guarded by a lock so concurrent requests never lose records.
    """

    def __init__(
        self,
        config: Optional[HealthConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the health monitor.

        Args:
            config: Health monitoring configuration
            clock: Time source in seconds (tests pass a fake)
        """
        self.config = config or HealthConfig()
        self._clock = clock
        self._records: Dict[str, Deque[RequestRecord]] = {}
        self._lock = threading.Lock()
        self.circuit_breaker = CircuitBreaker(self.config.circuit_breaker, clock=clock)

    def record_request(
        self,
        provider: str,
        success: bool,
        latency: float,
        error: Optional[str] = None,
    ) -> None:
        """
        Record the outcome of one provider call.

        Args:
            provider: Provider id
            success: Whether the call succeeded
            latency: Call duration in seconds
            error: Error text for failed calls
        """
        record = RequestRecord(
            timestamp=self._clock(), success=success, latency=latency, error=error
        )
        with self._lock:
            buffer = self._records.get(provider)
            if buffer is None:
                buffer = self._records[provider] = deque(maxlen=self.config.max_records)
            buffer.append(record)

        if success:
            self.circuit_breaker.record_success(provider)
        else:
            self.circuit_breaker.record_failure(provider)

    def get_records(self, provider: str) -> List[RequestRecord]:
        with self._lock:
            return list(self._records.get(provider, ()))

    def get_providers(self) -> List[str]:
        with self._lock:
            return list(self._records.keys())

    def is_available(self, provider: str) -> bool:
        """Whether the circuit allows a request to the provider."""
        return self.circuit_breaker.allow_request(provider)

    def get_metrics(self, provider: str) -> ProviderHealthMetrics:
        """
        Compute health metrics for a provider from its recorded requests.

        Args:
            provider: Provider id

        Returns:
            ProviderHealthMetrics
        """
        records = self.get_records(provider)
        circuit_state = self.circuit_breaker.get_state(provider)
        now = self._clock()

        total = len(records)
        successes = [r for r in records if r.success]
        failures = [r for r in records if not r.success]
        success_rate = len(successes) / total if total else 0.0

        latencies = sorted(r.latency for r in records)
        all_avg = sum(latencies) / total if total else 0.0
        latency = LatencyMetrics(
            p50=percentile(latencies, 50),
            p95=percentile(latencies, 95),
            p99=percentile(latencies, 99),
            avg=all_avg,
            min=latencies[0] if latencies else 0.0,
            max=latencies[-1] if latencies else 0.0,
        )

        cutoff = now - self.config.recent_window
        recent = [r for r in records if r.timestamp > cutoff]
        recent_error_rate = (
            sum(1 for r in recent if not r.success) / len(recent) if recent else 0.0
        )

        if (
            total < self.config.min_trend_samples
            or len(recent) < self.config.min_recent_trend_samples
            or all_avg == 0
        ):
            latency_trend = 1.0
        else:
            recent_avg = sum(r.latency for r in recent) / len(recent)
            latency_trend = recent_avg / all_avg

        status = self._determine_status(
            total, success_rate, recent_error_rate, latency_trend, circuit_state
        )

        return ProviderHealthMetrics(
            provider=provider,
            status=status,
            total_requests=total,
            successful_requests=len(successes),
            failed_requests=len(failures),
            success_rate=success_rate,
            latency=latency,
            recent_error_rate=recent_error_rate,
            latency_trend=latency_trend,
            circuit_state=circuit_state,
            last_request_at=records[-1].timestamp if records else None,
            last_success_at=successes[-1].timestamp if successes else None,
            last_failure_at=failures[-1].timestamp if failures else None,
        )

    def _determine_status(
        self,
        total: int,
        success_rate: float,
        recent_error_rate: float,
        latency_trend: float,
        circuit_state: CircuitState,
    ) -> HealthStatus:
        if circuit_state == CircuitState.OPEN:
            return HealthStatus.UNHEALTHY
        if total == 0:
            return HealthStatus.UNKNOWN
        if success_rate <= self.config.unhealthy_threshold:
            return HealthStatus.UNHEALTHY
        if (
            recent_error_rate > 1 - self.config.degraded_threshold
            or success_rate < self.config.degraded_threshold
            or latency_trend > self.config.latency_threshold_multiplier
        ):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def get_dashboard_data(self) -> Dict[str, Any]:
        """
        Get dashboard data for all observed providers.

        Returns:
            Dictionary with per-provider metrics and an overall summary
        """
        metrics = {name: self.get_metrics(name) for name in self.get_providers()}
        statuses = [m.status for m in metrics.values()]

        if HealthStatus.UNHEALTHY in statuses:
            overall_status = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall_status = HealthStatus.DEGRADED
        elif HealthStatus.HEALTHY in statuses:
            overall_status = HealthStatus.HEALTHY
        else:
            overall_status = HealthStatus.UNKNOWN

        return {
            "overall_status": overall_status.value,
            "providers": {name: m.to_dict() for name, m in metrics.items()},
            "summary": {
                "total_providers": len(metrics),
                **{
                    status.value: sum(1 for s in statuses if s == status)
                    for status in HealthStatus
                },
            },
            "generated_at": self._clock(),
        }

    def reset(self) -> None:
        """Drop all records and circuit state."""
        with self._lock:
            self._records.clear()
        self.circuit_breaker.reset_all()


_health_monitor: Optional[HealthMonitor] = None
_singleton_lock = threading.Lock()


def get_health_monitor(config: Optional[HealthConfig] = None) -> HealthMonitor:
    """
    Get the process-wide health monitor instance.

    `config` only applies when the instance is first created.
    """
    global _health_monitor
    with _singleton_lock:
        if _health_monitor is None:
            _health_monitor = HealthMonitor(config)
        return _health_monitor


def reset_health_monitor() -> None:
    """Clear the process-wide monitor; intended for test harnesses."""
    with _singleton_lock:
        if _health_monitor is not None:
            _health_monitor.reset()
