"""Stage pipeline and job orchestration."""

from mealforge.services.generation.orchestrator import GenerationOrchestrator, aggregate_status
from mealforge.services.generation.pipeline import StagePipeline, TaskContext

__all__ = ["GenerationOrchestrator", "aggregate_status", "StagePipeline", "TaskContext"]
