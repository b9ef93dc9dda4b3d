"""Background workers for async processing tasks."""

from composit.workers.generation_worker import process_generation_job, run_generation_worker
from composit.workers.retention_worker import run_retention_worker

__all__ = [
    "process_generation_job",
    "run_generation_worker",
    "run_retention_worker",
]
