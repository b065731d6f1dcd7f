"""Background workers for progress snapshots, placeholder healing and recovery."""

from mealforge.workers.healing_worker import heal_batch, run_healing_worker
from mealforge.workers.recovery import recover_orphaned_jobs
from mealforge.workers.snapshot_worker import persist_snapshots, run_snapshot_worker

__all__ = [
    "heal_batch",
    "run_healing_worker",
    "recover_orphaned_jobs",
    "persist_snapshots",
    "run_snapshot_worker",
]
