"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from composit.models.asset import PENDING_STORAGE_KEY, Asset, AssetRole
from composit.models.generation import (
    Generation,
    GenerationAsset,
    GenerationStatus,
    GenerationTask,
    InvalidStateTransition,
    TaskState,
)
from composit.models.job_log import JobLog
from composit.models.output import GenerationOutput
from composit.models.queue_job import QueueJob, QueueJobStatus
from composit.models.session import Session

__all__ = [
    "Session",
    "Asset",
    "AssetRole",
    "PENDING_STORAGE_KEY",
    "Generation",
    "GenerationAsset",
    "GenerationStatus",
    "GenerationTask",
    "TaskState",
    "InvalidStateTransition",
    "GenerationOutput",
    "JobLog",
    "QueueJob",
    "QueueJobStatus",
]
