"""Retry policy tests: attempts, backoff, deadlines and breaker interaction."""

import asyncio
import random
import time

import pytest

from mealforge.models.stages import OutcomeStatus, Stage
from mealforge.services.adapters.base import ServiceAdapter
from mealforge.services.exceptions import InvalidProviderInputError, RateLimitError
from mealforge.services.resilience.circuit_breaker import CircuitBreaker, CircuitState
from mealforge.services.resilience.retry import RetryPolicy


class Recorder:
    """Fake sleep + clock pair: sleeping advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


def scripted_adapter(results):
    """Adapter whose call returns/raises the scripted items in order."""
    script = list(results)
    calls = []

    async def _call(stage_input):
        calls.append(stage_input)
        item = script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    adapter = ServiceAdapter(
        name="concept",
        stage=Stage.CONCEPT,
        call=_call,
        normalize=lambda raw, _input: raw,
        timeout=5,
    )
    return adapter, calls


def policy(recorder: Recorder, **overrides) -> RetryPolicy:
    options = dict(max_attempts=3, base_delay=1.0, max_delay=20.0, jitter=0.0, deadline=300.0)
    options.update(overrides)
    return RetryPolicy(sleep=recorder.sleep, clock=recorder.clock, **options)


@pytest.mark.asyncio
async def test_success_after_transient_failures():
    recorder = Recorder()
    adapter, calls = scripted_adapter([RateLimitError("429"), RateLimitError("429"), "ok"])

    result = await policy(recorder).execute(None, adapter, "input")

    assert result.outcome.status == OutcomeStatus.OK
    assert result.outcome.payload == "ok"
    assert result.outcome.attempt == 3
    assert result.attempts == 3
    assert result.invocations == 3
    assert recorder.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_after_max_attempts():
    recorder = Recorder()
    adapter, calls = scripted_adapter([RateLimitError("429")] * 3)

    result = await policy(recorder).execute(None, adapter, "input")

    assert result.outcome.status == OutcomeStatus.EXHAUSTED
    assert "RateLimitError" in result.outcome.error
    assert len(calls) == 3
    assert len(recorder.sleeps) == 2


@pytest.mark.asyncio
async def test_fatal_is_not_retried():
    recorder = Recorder()
    adapter, calls = scripted_adapter([InvalidProviderInputError("bad constraints")])

    result = await policy(recorder).execute(None, adapter, "input")

    assert result.outcome.status == OutcomeStatus.FATAL
    assert len(calls) == 1
    assert recorder.sleeps == []


@pytest.mark.asyncio
async def test_deadline_stops_retrying():
    recorder = Recorder()
    adapter, calls = scripted_adapter([RateLimitError("429")] * 5)

    result = await policy(recorder, max_attempts=5, base_delay=10.0, deadline=25.0).execute(
        None, adapter, "input"
    )

    # 10s + 20s of backoff would pass the 25s deadline
    assert result.outcome.status == OutcomeStatus.EXHAUSTED
    assert len(calls) == 2
    assert recorder.sleeps == [10.0]


def test_backoff_is_capped_and_jittered():
    retry = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.5, rng=random.Random(7))

    for attempt in range(1, 8):
        delay = retry.backoff(attempt)
        assert 0.0 <= delay <= 5.0
        expected = min(5.0, 2 ** (attempt - 1))
        assert abs(delay - expected) <= 0.5


@pytest.mark.asyncio
async def test_short_circuit_counts_as_attempt():
    """An open breaker is never called; the attempts still run out."""
    recorder = Recorder()
    breaker = CircuitBreaker(
        "concept", min_samples=1, window_size=1, cooldown=1.0, clock=recorder.clock
    )
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    adapter, calls = scripted_adapter(["ok"])

    result = await policy(recorder, max_attempts=1).execute(breaker, adapter, "input")

    assert calls == []
    assert result.outcome.status == OutcomeStatus.EXHAUSTED
    assert result.outcome.short_circuited
    assert result.invocations == 0


@pytest.mark.asyncio
async def test_waits_out_short_cooldown_then_probes():
    recorder = Recorder()
    breaker = CircuitBreaker(
        "concept", min_samples=1, window_size=1, cooldown=1.5, clock=recorder.clock
    )
    breaker.record_failure()
    adapter, calls = scripted_adapter(["ok"])

    result = await policy(recorder).execute(breaker, adapter, "input")

    # attempt 1 short-circuits, 1s backoff, attempt 2 short-circuits, 2s backoff, probe
    assert result.outcome.status == OutcomeStatus.OK
    assert result.attempts == 3
    assert result.invocations == 1
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_drains_when_cooldown_exceeds_deadline():
    recorder = Recorder()
    breaker = CircuitBreaker(
        "concept", min_samples=1, window_size=1, cooldown=600.0, clock=recorder.clock
    )
    breaker.record_failure()
    adapter, calls = scripted_adapter(["ok"])

    result = await policy(recorder, deadline=60.0).execute(breaker, adapter, "input")

    assert result.outcome.status == OutcomeStatus.EXHAUSTED
    assert result.attempts == 1
    assert recorder.sleeps == []


@pytest.mark.asyncio
async def test_failures_feed_the_breaker():
    recorder = Recorder()
    breaker = CircuitBreaker(
        "concept", min_samples=2, window_size=2, cooldown=600.0, clock=recorder.clock
    )
    adapter, calls = scripted_adapter([RateLimitError("429")] * 3)

    result = await policy(recorder).execute(breaker, adapter, "input")

    assert breaker.state == CircuitState.OPEN
    assert len(calls) == 2
    assert result.outcome.status == OutcomeStatus.EXHAUSTED


@pytest.mark.asyncio
async def test_hung_call_is_cut_at_stage_deadline():
    """The adapter timeout is longer than the deadline; the deadline wins."""

    async def _hang(stage_input):
        await asyncio.sleep(10)

    adapter = ServiceAdapter(
        name="image",
        stage=Stage.IMAGE,
        call=_hang,
        normalize=lambda raw, _input: raw,
        timeout=5,
    )
    retry = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0, deadline=0.3)

    started = time.monotonic()
    result = await retry.execute(None, adapter, "input")

    assert time.monotonic() - started < 2
    assert result.outcome.status == OutcomeStatus.EXHAUSTED
    assert "timeout" in result.outcome.error
    assert result.invocations >= 1


@pytest.mark.asyncio
async def test_spent_deadline_returns_exhausted_without_calling():
    recorder = Recorder()
    adapter, calls = scripted_adapter(["ok"])

    result = await policy(recorder, deadline=0.0).execute(None, adapter, "input")

    assert calls == []
    assert result.attempts == 0
    assert result.invocations == 0
    assert result.outcome.status == OutcomeStatus.EXHAUSTED
    assert result.outcome.stage == Stage.CONCEPT
    assert "deadline" in result.outcome.error
