"""Generation job API endpoints.

- POST /api/jobs - Submit a generation request (202, 429 on quota exhaustion)
- GET /api/jobs/{job_id} - Current progress snapshot
- GET /api/jobs/{job_id}/events - Server-sent events stream of snapshots
- POST /api/jobs/{job_id}/cancel - Request cooperative cancellation
- GET /api/accounts/{account_id}/quota - Current period usage
"""

import json
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from mealforge.api.dependencies import get_orchestrator, get_services
from mealforge.models.request import GenerationRequest
from mealforge.services.exceptions import (
    InvalidRequestError,
    JobNotFoundError,
    QuotaExceededError,
)
from mealforge.services.progress import JobSnapshot

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api", tags=["jobs"])


# Request/Response Models


class SubmitJobRequest(BaseModel):
    """Request model for a generation job."""

    account_id: str = Field(..., min_length=1, max_length=255, description="Requesting account")
    item_count: int = Field(..., ge=1, description="Number of recipes to generate")
    constraints: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque generation constraints (meal types, dietary tags, goals)",
    )


class SubmitJobResponse(BaseModel):
    job_id: UUID


class CancelJobResponse(BaseModel):
    accepted: bool = Field(..., description="False when the job had already finished")


class QuotaUsageResponse(BaseModel):
    account_id: str
    period: str
    resource_kind: str
    limit: int = Field(..., description="-1 means unlimited")
    used: int
    reserved: int
    remaining: int | None


def snapshot_event(snapshot: JobSnapshot) -> dict[str, str]:
    """Format a snapshot as a server-sent event."""
    return {
        "event": "terminal" if snapshot.terminal else "progress",
        "id": str(snapshot.revision),
        "data": json.dumps(snapshot.as_dict()),
    }


@router.post("/jobs", status_code=status.HTTP_202_ACCEPTED, response_model=SubmitJobResponse)
async def submit_job(request: SubmitJobRequest, orchestrator=Depends(get_orchestrator)):
    """Submit a generation request.

    Returns:
        202 with the job id; the job runs in the background

    Raises:
        HTTPException 422: Request fails validation (e.g. too many items)
        429 response: Account quota exhausted (body carries current usage)
    """
    try:
        job_id = await orchestrator.submit(
            GenerationRequest(
                account_id=request.account_id,
                item_count=request.item_count,
                constraints=request.constraints,
            )
        )
    except QuotaExceededError as e:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Quota exceeded", "quota": e.as_dict()},
        )
    except InvalidRequestError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ValueError as e:
        # GenerationRequest validation (e.g. blank account id)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return SubmitJobResponse(job_id=job_id)


@router.get("/jobs/{job_id}")
async def get_job(job_id: UUID, orchestrator=Depends(get_orchestrator)) -> dict[str, Any]:
    """Current progress snapshot of a job."""
    try:
        snapshot = await orchestrator.get_status(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return snapshot.as_dict()


@router.get("/jobs/{job_id}/events")
async def stream_job(job_id: UUID, orchestrator=Depends(get_orchestrator)):
    """Stream snapshots until the job finishes (text/event-stream)."""
    # Fail with 404 before the stream starts
    try:
        await orchestrator.get_status(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    async def event_generator():
        async for snapshot in orchestrator.subscribe(job_id):
            yield snapshot_event(snapshot)

    return EventSourceResponse(event_generator())


@router.post("/jobs/{job_id}/cancel", response_model=CancelJobResponse)
async def cancel_job(job_id: UUID, orchestrator=Depends(get_orchestrator)):
    try:
        accepted = await orchestrator.cancel(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return CancelJobResponse(accepted=accepted)


@router.get("/accounts/{account_id}/quota", response_model=QuotaUsageResponse)
async def get_quota(
    account_id: str,
    resource_kind: str | None = Query(default=None),
    services=Depends(get_services),
):
    kind = resource_kind or services.settings.quota_resource_kind
    usage = await services.ledger.usage(account_id, kind)
    return QuotaUsageResponse(
        account_id=usage.account_id,
        period=usage.period_key,
        resource_kind=usage.resource_kind,
        limit=usage.limit,
        used=usage.used,
        reserved=usage.reserved,
        remaining=usage.remaining,
    )
