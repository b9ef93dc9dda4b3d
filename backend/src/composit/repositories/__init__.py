"""Repository layer for composit backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from composit.repositories.asset import AssetRepository
from composit.repositories.generation import GenerationRepository
from composit.repositories.job_log import JobLogRepository
from composit.repositories.output import GenerationOutputRepository
from composit.repositories.queue_job import QueueJobRepository
from composit.repositories.session import SessionRepository

__all__ = [
    "SessionRepository",
    "AssetRepository",
    "GenerationRepository",
    "GenerationOutputRepository",
    "JobLogRepository",
    "QueueJobRepository",
]
