"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from imagegen.models.async_task import (
    AsyncTask,
    AsyncTaskErrorType,
    AsyncTaskStatus,
    AsyncTaskType,
    InvalidStateTransition,
    build_task_error,
)
from imagegen.models.generation import Generation, GenerationBatch

__all__ = [
    "AsyncTask",
    "AsyncTaskStatus",
    "AsyncTaskType",
    "AsyncTaskErrorType",
    "InvalidStateTransition",
    "build_task_error",
    "Generation",
    "GenerationBatch",
]
