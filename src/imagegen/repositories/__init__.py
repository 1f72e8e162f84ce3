"""Repository layer for the imagegen backend.

Provides data access abstractions for all domain entities.
Each repository is self-contained and bound to one session.
"""

from imagegen.repositories.async_task import AsyncTaskRepository
from imagegen.repositories.generation import GenerationRepository
from imagegen.repositories.generation_batch import GenerationBatchRepository

__all__ = [
    "AsyncTaskRepository",
    "GenerationRepository",
    "GenerationBatchRepository",
]
