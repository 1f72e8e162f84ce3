"""AsyncTask entity - background unit of work with terminal status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from imagegen.core.timezone import utc_now


class AsyncTaskStatus(str, Enum):
    """AsyncTask lifecycle status.

    Pending is the only non-terminal state.
    """

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class AsyncTaskType(str, Enum):
    """Kind of background work a task tracks."""

    IMAGE_GENERATION = "image_generation"


class AsyncTaskErrorType(str, Enum):
    """Structured error kinds stored on failed tasks."""

    SERVER_ERROR = "ServerError"
    INVALID_PROVIDER_API_KEY = "InvalidProviderAPIKey"
    CONTENT_POLICY_VIOLATION = "ContentPolicyViolation"
    TIMEOUT = "Timeout"
    PROVIDER_ERROR = "ProviderError"


def build_task_error(error_type: AsyncTaskErrorType, detail: str) -> dict:
    """Build the JSON error payload stored in ``AsyncTask.error``."""
    return {"name": error_type.value, "body": {"detail": detail}}


class InvalidStateTransition(Exception):
    """Raised when attempting to move an async task out of a terminal state."""

    pass


class AsyncTask(SQLModel, table=True):
    """AsyncTask tracks the lifecycle of one background unit of work."""

    __tablename__ = "async_tasks"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    type: AsyncTaskType = Field(default=AsyncTaskType.IMAGE_GENERATION)
    status: AsyncTaskStatus = Field(default=AsyncTaskStatus.PENDING, index=True)
    error: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    duration_ms: Optional[int] = Field(default=None, ge=0)
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != AsyncTaskStatus.PENDING

    def mark_success(self, duration_ms: Optional[int] = None) -> None:
        """Transition from pending to success.

        Raises:
            InvalidStateTransition: If the task is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark success from {self.status.value}. Task must be pending."
            )
        self.status = AsyncTaskStatus.SUCCESS
        self.duration_ms = duration_ms
        self.updated_at = utc_now()

    def mark_error(self, error: dict) -> None:
        """Transition from pending to error.

        Args:
            error: Structured error, see ``build_task_error``

        Raises:
            InvalidStateTransition: If the task is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark error from terminal state {self.status.value}."
            )
        self.error = error
        self.status = AsyncTaskStatus.ERROR
        self.updated_at = utc_now()
