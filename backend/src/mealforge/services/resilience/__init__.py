"""Retry and circuit breaking for external stage calls."""

from mealforge.services.resilience.circuit_breaker import (
    Admission,
    BreakerRegistry,
    CircuitBreaker,
    CircuitState,
)
from mealforge.services.resilience.retry import RetryPolicy, RetryResult

__all__ = [
    "Admission",
    "BreakerRegistry",
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "RetryResult",
]
