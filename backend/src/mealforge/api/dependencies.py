"""FastAPI dependencies shared by the route modules."""

from typing import Callable

from fastapi import Request

from mealforge.services.generation.factory import GenerationServices
from mealforge.services.generation.orchestrator import GenerationOrchestrator
from mealforge.uow import UnitOfWork


def get_services(request: Request) -> GenerationServices:
    """Get the generation services bundle built in the app lifespan."""
    return request.app.state.services


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Get the process-wide orchestrator from app state.

    Example:
        >>> @router.get("/jobs/{job_id}")
        >>> async def endpoint(orchestrator=Depends(get_orchestrator)):
        ...     return (await orchestrator.get_status(job_id)).as_dict()
    """
    return request.app.state.services.orchestrator


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state."""
    return request.app.state.uow_factory
