"""
Per-provider circuit breaker.

A provider that fails repeatedly inside the monitoring window is marked OPEN
and skipped until the reset timeout passes; it then gets HALF_OPEN trial
requests and closes again after enough consecutive successes.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, Optional

from blueprintforge.utils.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for the circuit breaker."""

    failure_threshold: int = 5  # Failures inside the window before opening
    success_threshold: int = 2  # Consecutive half-open successes before closing
    reset_timeout: float = 300.0  # Seconds OPEN before trying HALF_OPEN
    monitoring_window: float = 60.0  # Seconds of failure history that count


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failures: Deque[float] = field(default_factory=deque)
    half_open_successes: int = 0
    opened_at: Optional[float] = None


class CircuitBreaker:
    """
    Track circuit state for each provider.

    Thread-safe; concurrent requests may record outcomes at the same time.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._circuits: Dict[str, _Circuit] = {}
        self._lock = threading.Lock()

    def _circuit(self, provider: str) -> _Circuit:
        circuit = self._circuits.get(provider)
        if circuit is None:
            circuit = self._circuits[provider] = _Circuit()
        return circuit

    def _advance(self, provider: str, circuit: _Circuit, now: float) -> None:
        """Move OPEN to HALF_OPEN once the reset timeout has elapsed."""
        if (
            circuit.state == CircuitState.OPEN
            and circuit.opened_at is not None
            and now - circuit.opened_at >= self.config.reset_timeout
        ):
            circuit.state = CircuitState.HALF_OPEN
            circuit.half_open_successes = 0
            logger.info(
                f"Circuit for {provider} is half-open after {self.config.reset_timeout}s",
                extra={"event": "circuit.half_open", "provider": provider},
            )

    def get_state(self, provider: str) -> CircuitState:
        with self._lock:
            circuit = self._circuit(provider)
            self._advance(provider, circuit, self._clock())
            return circuit.state

    def allow_request(self, provider: str) -> bool:
        """Whether a request may be sent to the provider right now."""
        return self.get_state(provider) != CircuitState.OPEN

    def record_success(self, provider: str) -> None:
        with self._lock:
            circuit = self._circuit(provider)
            self._advance(provider, circuit, self._clock())

            if circuit.state == CircuitState.HALF_OPEN:
                circuit.half_open_successes += 1
                if circuit.half_open_successes >= self.config.success_threshold:
                    circuit.state = CircuitState.CLOSED
                    circuit.failures.clear()
                    circuit.opened_at = None
                    logger.info(
                        f"Circuit for {provider} closed",
                        extra={"event": "circuit.closed", "provider": provider},
                    )

    def record_failure(self, provider: str) -> None:
        with self._lock:
            now = self._clock()
            circuit = self._circuit(provider)
            self._advance(provider, circuit, now)

            if circuit.state == CircuitState.HALF_OPEN:
                self._open(provider, circuit, now, "failure while half-open")
                return

            circuit.failures.append(now)
            cutoff = now - self.config.monitoring_window
            while circuit.failures and circuit.failures[0] < cutoff:
                circuit.failures.popleft()

            if (
                circuit.state == CircuitState.CLOSED
                and len(circuit.failures) >= self.config.failure_threshold
            ):
                self._open(
                    provider,
                    circuit,
                    now,
                    f"{len(circuit.failures)} failures in {self.config.monitoring_window}s",
                )

    def _open(self, provider: str, circuit: _Circuit, now: float, reason: str) -> None:
        circuit.state = CircuitState.OPEN
        circuit.opened_at = now
        circuit.half_open_successes = 0
        logger.warning(
            f"Circuit for {provider} opened: {reason}",
            extra={"event": "circuit.opened", "provider": provider, "reason": reason},
        )

    def force_open(self, provider: str) -> None:
        """Open the circuit immediately (operator action or tests)."""
        with self._lock:
            self._open(provider, self._circuit(provider), self._clock(), "forced")

    def reset(self, provider: str) -> None:
        with self._lock:
            self._circuits.pop(provider, None)

    def reset_all(self) -> None:
        with self._lock:
            self._circuits.clear()
