"""Per-dependency circuit breaker.

One breaker guards each adapter kind (concept, validation, image, storage,
persist). Every method is synchronous: on the event loop a check and the
mutation that follows it can never be interleaved with another coroutine,
so no lock is needed and none is ever held across the adapter call.

State machine:
    closed    --(failure rate >= threshold over >= min_samples)--> open
    open      --(cooldown elapsed, next caller becomes the probe)--> half_open
    half_open --(probe succeeds)--> closed  (window and cooldown reset)
    half_open --(probe fails)--> open       (cooldown doubled, capped)

Every transition bumps ``generation``. Callers get an Admission from
``try_acquire`` and hand it back with their result, so a slow call admitted
before the circuit opened cannot decide the half-open probe.
"""

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class Admission:
    """Permission for one call, tied to the breaker state that granted it."""

    generation: int
    is_probe: bool = False


class CircuitBreaker:
    """Count-based rolling-window circuit breaker for one adapter kind."""

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        min_samples: int = 5,
        window_size: int = 20,
        cooldown: float = 30.0,
        max_cooldown: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize breaker.

        Args:
            name: Adapter kind guarded by this breaker (used in logs)
            failure_threshold: Failure rate in (0, 1] that opens the circuit
            min_samples: Minimum results in the window before the rate is evaluated
            window_size: Number of most recent results considered
            cooldown: Base open duration in seconds
            max_cooldown: Upper bound for the doubled cooldown
            clock: Monotonic time source (injectable for tests)
        """
        if window_size < min_samples:
            raise ValueError("window_size must be >= min_samples")
        self.name = name
        self.failure_threshold = failure_threshold
        self.min_samples = min_samples
        self.base_cooldown = cooldown
        self.max_cooldown = max_cooldown
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.cooldown = cooldown
        self.opened_at: Optional[float] = None
        self.generation = 0
        self.probe_in_flight = False
        # True = failure, False = success
        self._window: deque[bool] = deque(maxlen=window_size)

    @property
    def failure_count(self) -> int:
        return sum(1 for failed in self._window if failed)

    @property
    def success_count(self) -> int:
        return len(self._window) - self.failure_count

    @property
    def is_degraded(self) -> bool:
        return self.state != CircuitState.CLOSED

    def remaining_cooldown(self) -> float:
        """Seconds until an open circuit admits its next probe (0 when not open)."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.opened_at + self.cooldown - self._clock())

    def try_acquire(self) -> Optional[Admission]:
        """Ask permission to invoke the dependency.

        Returns:
            Admission to hand back to ``record_*`` (possibly marked as the
            half-open probe), or None if the call must be short-circuited
        """
        if self.state == CircuitState.CLOSED:
            return Admission(self.generation)

        if self.state == CircuitState.OPEN:
            if self.remaining_cooldown() > 0:
                return None
            self._transition(CircuitState.HALF_OPEN)
            self.probe_in_flight = True
            logger.info("breaker.half_open", breaker=self.name, cooldown=self.cooldown)
            return Admission(self.generation, is_probe=True)

        # Half-open: exactly one probe at a time, everyone else short-circuits
        if self.probe_in_flight:
            return None
        self.probe_in_flight = True
        return Admission(self.generation, is_probe=True)

    def _is_current_probe(self, admission: Optional[Admission]) -> bool:
        return (
            admission is not None
            and admission.is_probe
            and admission.generation == self.generation
        )

    def _is_stale(self, admission: Optional[Admission]) -> bool:
        return admission is not None and admission.generation != self.generation

    def release_probe(self, admission: Optional[Admission] = None) -> None:
        """Give up the probe slot without a result (caller was cancelled)."""
        if admission is None or self._is_current_probe(admission):
            self.probe_in_flight = False

    def record_success(self, admission: Optional[Admission] = None) -> None:
        """Record a healthy response (ok or fatal outcome).

        Results admitted under an earlier state are ignored; in half-open
        only the probe's result counts.
        """
        if self._is_stale(admission):
            logger.debug("breaker.stale_result", breaker=self.name, success=True)
            return
        if self.state == CircuitState.HALF_OPEN:
            if self._is_current_probe(admission):
                self._close()
            return
        if self.state == CircuitState.CLOSED:
            self._window.append(False)

    def record_failure(self, admission: Optional[Admission] = None) -> None:
        """Record a retryable failure (timeout, transient error, malformed response)."""
        if self._is_stale(admission):
            logger.debug("breaker.stale_result", breaker=self.name, success=False)
            return
        if self.state == CircuitState.HALF_OPEN:
            if self._is_current_probe(admission):
                self._open(min(self.cooldown * 2, self.max_cooldown))
            return
        if self.state == CircuitState.OPEN:
            # Result of a call admitted before the circuit opened
            return

        self._window.append(True)
        samples = len(self._window)
        if samples >= self.min_samples and self.failure_count / samples >= self.failure_threshold:
            self._open(self.base_cooldown)

    def _transition(self, state: CircuitState) -> None:
        self.state = state
        self.generation += 1

    def _open(self, cooldown: float) -> None:
        self._transition(CircuitState.OPEN)
        self.cooldown = cooldown
        self.opened_at = self._clock()
        self.probe_in_flight = False
        logger.warning(
            "breaker.opened",
            breaker=self.name,
            cooldown=cooldown,
            failures=self.failure_count,
            samples=len(self._window),
        )

    def _close(self) -> None:
        self._transition(CircuitState.CLOSED)
        self.cooldown = self.base_cooldown
        self.opened_at = None
        self.probe_in_flight = False
        self._window.clear()
        logger.info("breaker.closed", breaker=self.name)


class BreakerRegistry:
    """Process-wide breakers keyed by adapter kind."""

    def __init__(self, factory: Callable[[str], CircuitBreaker]):
        self._factory = factory
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self._factory(name)
            self._breakers[name] = breaker
        return breaker

    def degraded(self) -> list[str]:
        """Adapter kinds whose breaker is currently open or half-open."""
        return sorted(name for name, breaker in self._breakers.items() if breaker.is_degraded)
