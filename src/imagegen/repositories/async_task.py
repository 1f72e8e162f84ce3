"""AsyncTask repository.

Provides data access methods for AsyncTask entities. Status writes are
guarded by the pending status so terminal states never change.
"""

from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from imagegen.core.timezone import utc_now
from imagegen.models.async_task import AsyncTask, AsyncTaskStatus


class AsyncTaskRepository:
    """Repository for AsyncTask entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, task: AsyncTask) -> AsyncTask:
        """Persist new async task and flush to obtain its row.

        Args:
            task: AsyncTask entity to persist

        Returns:
            Persisted task
        """
        self.session.add(task)
        await self.session.flush()
        return task

    async def get_by_id(self, task_id: UUID, user_id: Optional[str] = None) -> AsyncTask | None:
        """Retrieve async task by UUID, optionally scoped to its owner.

        Args:
            task_id: Task's unique identifier
            user_id: Owning user; when given, tasks of other users are not returned

        Returns:
            AsyncTask if found, None otherwise
        """
        query = select(AsyncTask).where(AsyncTask.id == task_id)  # type: ignore[arg-type]
        if user_id is not None:
            query = query.where(AsyncTask.user_id == user_id)  # type: ignore[arg-type]
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_many(self, task_ids: Iterable[UUID]) -> dict[UUID, AsyncTask]:
        """Retrieve several tasks keyed by id. Missing ids are absent from the result."""
        ids = list(task_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(AsyncTask).where(AsyncTask.id.in_(ids))  # type: ignore[union-attr]
        )
        return {task.id: task for task in result.scalars().all()}

    async def update_status(
        self,
        task_id: UUID,
        status: AsyncTaskStatus,
        *,
        user_id: Optional[str] = None,
        error: Optional[dict] = None,
        duration_ms: Optional[int] = None,
    ) -> bool:
        """Move a pending task to a terminal status with a single-row UPDATE.

        Query explanation:
        - WHERE id = :task_id (AND user_id = :user_id): one row, keyed by owner
        - AND status = 'pending': terminal rows are never touched again

        A task that no longer exists, or that is already terminal, is left
        unchanged and the call reports False.

        Args:
            task_id: Task to update
            status: Terminal status to write
            user_id: Owning user, when the caller acts on behalf of one
            error: Structured error for the error status
            duration_ms: Execution time for the success status

        Returns:
            True if the row was updated, False if it was a no-op
        """
        statement = (
            update(AsyncTask)
            .where(AsyncTask.id == task_id)  # type: ignore[arg-type]
            .where(AsyncTask.status == AsyncTaskStatus.PENDING)  # type: ignore[arg-type]
            .values(
                status=status,
                error=error,
                duration_ms=duration_ms,
                updated_at=utc_now(),
            )
        )
        if user_id is not None:
            statement = statement.where(AsyncTask.user_id == user_id)  # type: ignore[arg-type]

        result = await self.session.execute(statement)
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def delete_many(self, task_ids: Iterable[UUID]) -> int:
        """Delete tasks by id. Returns the number of deleted rows."""
        ids = list(task_ids)
        if not ids:
            return 0
        tasks = await self.get_many(ids)
        for task in tasks.values():
            await self.session.delete(task)
        await self.session.flush()
        return len(tasks)
