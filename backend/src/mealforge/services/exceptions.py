"""Service error hierarchy for provider calls and orchestration.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, invalid input)
- Orchestration errors surfaced to callers (quota, unknown job, bad request)
"""

from uuid import UUID


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    - Malformed provider responses
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400, 422)
    - Content policy rejections
    - Configuration errors
    """

    pass


# Provider-specific errors
class ProviderTimeoutError(TransientError):
    """Provider did not answer within the adapter timeout."""

    pass


class RateLimitError(TransientError):
    """Rate limit exceeded (429)."""

    pass


class ProviderUnavailableError(TransientError):
    """Network failure or 5xx response."""

    pass


class MalformedResponseError(TransientError):
    """Provider answered with a body that does not match the expected shape."""

    pass


class ProviderAuthError(PermanentError):
    """Authentication failure (401, 403)."""

    pass


class InvalidProviderInputError(PermanentError):
    """Provider rejected the input deterministically (400, 422, content policy)."""

    pass


class InvalidImageError(PermanentError):
    """Image bytes cannot be decoded."""

    pass


# Orchestration errors
class InvalidRequestError(ServiceError):
    """Generation request failed validation before a job was created."""

    pass


class JobNotFoundError(ServiceError):
    """No job with the given id is known to the orchestrator or the job store."""

    def __init__(self, job_id: UUID):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class QuotaExceededError(ServiceError):
    """Reservation would push an account past its tier limit.

    Carries the current usage so callers can report it.
    """

    def __init__(
        self,
        account_id: str,
        resource_kind: str,
        limit: int,
        used: int,
        reserved: int,
        requested: int,
    ):
        super().__init__(
            f"Quota exceeded for {account_id}/{resource_kind}: "
            f"requested {requested}, used {used}, reserved {reserved}, limit {limit}"
        )
        self.account_id = account_id
        self.resource_kind = resource_kind
        self.limit = limit
        self.used = used
        self.reserved = reserved
        self.requested = requested

    def as_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "resource_kind": self.resource_kind,
            "limit": self.limit,
            "used": self.used,
            "reserved": self.reserved,
            "requested": self.requested,
        }


class ReservationError(PermanentError):
    """Commit or release exceeds what is left on a reservation, or it does not exist."""

    pass
