"""Retry policy wrapping every external stage call.

Each attempt goes through the circuit breaker first; a short-circuited
attempt counts toward ``max_attempts`` exactly like a real call. Backoff is
exponential with uniform jitter and every stage carries a deadline.
"""

import asyncio
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

import structlog

from mealforge.models.stages import OutcomeStatus, StageOutcome
from mealforge.services.adapters.base import ServiceAdapter
from mealforge.services.resilience.circuit_breaker import CircuitBreaker

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryResult:
    """Terminal outcome of a retried stage.

    ``attempts`` counts every attempt including short-circuited ones;
    ``invocations`` counts only real adapter calls.
    """

    outcome: StageOutcome
    attempts: int
    invocations: int


class RetryPolicy:
    """Bounded exponential-backoff retry with a per-stage deadline."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 20.0,
        jitter: float = 0.5,
        deadline: float = 300.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.deadline = deadline
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    def backoff(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay += self._rng.uniform(-self.jitter, self.jitter)
        return min(max(delay, 0.0), self.max_delay)

    async def execute(
        self,
        breaker: Optional[CircuitBreaker],
        adapter: ServiceAdapter,
        stage_input: Any,
    ) -> RetryResult:
        """Run one stage until it succeeds, fails fatally or runs out of attempts/time.

        Each attempt is capped at the time left before the stage deadline.

        Returns:
            RetryResult whose outcome is ok, fatal or exhausted (never retryable)
        """
        started = self._clock()
        attempt = 0
        invocations = 0
        last = StageOutcome(
            stage=adapter.stage,
            status=OutcomeStatus.RETRYABLE,
            error=f"stage deadline of {self.deadline}s exceeded",
        )

        while attempt < self.max_attempts:
            remaining = self.deadline - (self._clock() - started)
            if remaining <= 0:
                logger.info("retry.deadline_exceeded", adapter=adapter.name, attempt=attempt)
                break
            attempt += 1

            admission = breaker.try_acquire() if breaker is not None else None
            if breaker is not None and admission is None:
                last = StageOutcome(
                    stage=adapter.stage,
                    status=OutcomeStatus.RETRYABLE,
                    error=f"circuit open for {adapter.name}",
                    attempt=attempt,
                    short_circuited=True,
                )
                if breaker.remaining_cooldown() > remaining:
                    logger.info(
                        "retry.short_circuit.drained",
                        adapter=adapter.name,
                        attempt=attempt,
                        cooldown_remaining=round(breaker.remaining_cooldown(), 2),
                    )
                    break
            else:
                invocations += 1
                try:
                    outcome = await adapter.invoke(stage_input, timeout=remaining)
                except asyncio.CancelledError:
                    if breaker is not None:
                        breaker.release_probe(admission)
                    raise
                outcome = replace(outcome, attempt=attempt)

                if breaker is not None:
                    if outcome.status == OutcomeStatus.RETRYABLE:
                        breaker.record_failure(admission)
                    else:
                        breaker.record_success(admission)

                if outcome.status != OutcomeStatus.RETRYABLE:
                    return RetryResult(outcome=outcome, attempts=attempt, invocations=invocations)
                last = outcome

            if attempt >= self.max_attempts:
                break

            delay = self.backoff(attempt)
            if self._clock() - started + delay > self.deadline:
                logger.info("retry.deadline_exceeded", adapter=adapter.name, attempt=attempt)
                break

            logger.debug(
                "retry.backoff",
                adapter=adapter.name,
                attempt=attempt,
                delay=round(delay, 3),
                error=last.error,
            )
            await self._sleep(delay)

        return RetryResult(
            outcome=replace(last, status=OutcomeStatus.EXHAUSTED),
            attempts=attempt,
            invocations=invocations,
        )
