"""GenerationBatch repository.

Provides data access methods for GenerationBatch entities.
"""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from imagegen.models.generation import Generation, GenerationBatch


class GenerationBatchRepository:
    """Repository for GenerationBatch entities.

    All reads are scoped to the owning user.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, batch: GenerationBatch) -> GenerationBatch:
        """Persist new batch to database.

        Args:
            batch: GenerationBatch entity to persist

        Returns:
            Persisted batch
        """
        self.session.add(batch)
        await self.session.flush()
        return batch

    async def get_by_id(self, batch_id: UUID, user_id: str) -> GenerationBatch | None:
        """Retrieve a batch owned by the given user.

        Args:
            batch_id: Batch's unique identifier
            user_id: Owning user

        Returns:
            GenerationBatch if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationBatch)
            .where(GenerationBatch.id == batch_id)  # type: ignore[arg-type]
            .where(GenerationBatch.user_id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_topic(self, generation_topic_id: str, user_id: str) -> list[GenerationBatch]:
        """Retrieve all batches of a topic, newest first.

        Args:
            generation_topic_id: Topic the batches belong to
            user_id: Owning user

        Returns:
            List of batches ordered by creation time (newest first)
        """
        result = await self.session.execute(
            select(GenerationBatch)
            .where(GenerationBatch.generation_topic_id == generation_topic_id)  # type: ignore[arg-type]
            .where(GenerationBatch.user_id == user_id)  # type: ignore[arg-type]
            .order_by(GenerationBatch.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def delete(self, batch: GenerationBatch) -> list[UUID]:
        """Delete a batch and its generations.

        Returns:
            Async task ids that were linked to the deleted generations, so the
            caller can remove them in the same unit of work
        """
        result = await self.session.execute(
            select(Generation.async_task_id).where(
                Generation.generation_batch_id == batch.id  # type: ignore[arg-type]
            )
        )
        task_ids = [task_id for task_id in result.scalars().all() if task_id is not None]

        await self.session.execute(
            delete(Generation).where(
                Generation.generation_batch_id == batch.id  # type: ignore[arg-type]
            )
        )
        await self.session.delete(batch)
        await self.session.flush()
        return task_ids
