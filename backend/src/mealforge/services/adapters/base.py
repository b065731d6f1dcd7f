"""Uniform wrapper around one external provider call.

The adapter turns whatever the provider does (return, raise, hang) into a
StageOutcome. It never retries and never applies business rules; both are
the caller's concern.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError

from mealforge.models.stages import OutcomeStatus, Stage, StageOutcome
from mealforge.services.exceptions import PermanentError, TransientError

logger = structlog.get_logger(__name__)


class ServiceAdapter:
    """One provider call with a hard timeout and outcome classification.

    Args:
        name: Adapter kind (also the circuit breaker key)
        stage: Pipeline stage this adapter serves
        call: Async callable performing exactly one provider request
        normalize: Converts the raw provider result into a typed stage payload;
            raising pydantic ValidationError marks the response malformed
        timeout: Seconds before the call is abandoned
    """

    def __init__(
        self,
        name: str,
        stage: Stage,
        call: Callable[[Any], Awaitable[Any]],
        normalize: Callable[[Any, Any], Any],
        timeout: float,
    ):
        self.name = name
        self.stage = stage
        self._call = call
        self._normalize = normalize
        self.timeout = timeout

    async def invoke(self, stage_input: Any, timeout: float | None = None) -> StageOutcome:
        """Perform one provider call and classify the result.

        Args:
            stage_input: Input handed to the provider call
            timeout: Tighter limit for this call only (never above ``self.timeout``)

        Mapping:
            - success with a valid payload -> ok
            - timeout, TransientError, malformed response, unexpected error -> retryable
            - PermanentError -> fatal
        """
        started = time.perf_counter()
        limit = self.timeout if timeout is None else min(self.timeout, timeout)

        def _outcome(status: OutcomeStatus, payload: Any = None, error: str | None = None):
            return StageOutcome(
                stage=self.stage,
                status=status,
                payload=payload,
                error=error,
                latency_ms=(time.perf_counter() - started) * 1000,
            )

        try:
            raw = await asyncio.wait_for(self._call(stage_input), timeout=limit)
            payload = self._normalize(raw, stage_input)
        except asyncio.TimeoutError:
            logger.warning("adapter.timeout", adapter=self.name, timeout=limit)
            return _outcome(OutcomeStatus.RETRYABLE, error=f"timeout after {limit}s")
        except PermanentError as e:
            logger.warning("adapter.fatal", adapter=self.name, error=str(e))
            return _outcome(OutcomeStatus.FATAL, error=f"{type(e).__name__}: {e}")
        except TransientError as e:
            logger.info("adapter.transient", adapter=self.name, error=str(e))
            return _outcome(OutcomeStatus.RETRYABLE, error=f"{type(e).__name__}: {e}")
        except ValidationError as e:
            logger.warning("adapter.malformed_response", adapter=self.name, errors=e.error_count())
            return _outcome(OutcomeStatus.RETRYABLE, error=f"malformed response: {e.error_count()} errors")
        except Exception as e:
            logger.error("adapter.unexpected_error", adapter=self.name, error=str(e), exc_info=True)
            return _outcome(OutcomeStatus.RETRYABLE, error=f"{type(e).__name__}: {e}")

        return _outcome(OutcomeStatus.OK, payload=payload)
