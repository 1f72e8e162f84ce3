"""Generation repository.

Provides data access methods for Generation entities.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from imagegen.models.generation import Generation


class GenerationRepository:
    """Repository for Generation entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add_many(self, generations: list[Generation]) -> list[Generation]:
        """Persist several generations in one flush, preserving order.

        Each generation gets its list index as ``position``, the tiebreaker
        used when reading a batch back.

        Args:
            generations: Generation entities to persist

        Returns:
            The same generations, flushed
        """
        for position, generation in enumerate(generations):
            generation.position = position
        self.session.add_all(generations)
        await self.session.flush()
        return generations

    async def get_by_id(self, generation_id: UUID) -> Generation | None:
        result = await self.session.execute(
            select(Generation).where(Generation.id == generation_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def set_async_task_id(self, generation: Generation, async_task_id: UUID) -> None:
        """Link a generation to the task that produces it.

        Keyed by (generation id, owning user) so a generation can only be
        linked by the user who created it.

        Args:
            generation: Generation to link
            async_task_id: Id of the already-flushed AsyncTask
        """
        await self.session.execute(
            update(Generation)
            .where(Generation.id == generation.id)  # type: ignore[arg-type]
            .where(Generation.user_id == generation.user_id)  # type: ignore[arg-type]
            .values(async_task_id=async_task_id)
        )
        generation.async_task_id = async_task_id

    async def get_by_batch_ids(self, batch_ids: list[UUID]) -> list[Generation]:
        """Retrieve generations of several batches, oldest first.

        Args:
            batch_ids: Owning batch ids

        Returns:
            Generations ordered by creation time, then position within the batch
        """
        if not batch_ids:
            return []
        result = await self.session.execute(
            select(Generation)
            .where(Generation.generation_batch_id.in_(batch_ids))  # type: ignore[union-attr]
            .order_by(
                Generation.created_at.asc(),  # type: ignore[attr-defined]
                Generation.position.asc(),  # type: ignore[attr-defined]
            )
        )
        return list(result.scalars().all())

    async def attach_asset(self, generation_id: UUID, asset: dict) -> bool:
        """Store the produced asset on a generation.

        Returns:
            True if the generation exists and was updated
        """
        result = await self.session.execute(
            update(Generation)
            .where(Generation.id == generation_id)  # type: ignore[arg-type]
            .values(asset=asset)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]
