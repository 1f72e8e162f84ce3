"""Client-side store of generation batches with optimistic updates.

A create request shows up immediately as an OptimisticBatch (temporary ids,
every generation pending). Once the server has committed the batch, the
topic's list is refetched and replaced wholesale by ConfirmedBatch entries;
optimistic entries are never merged field by field.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union
from uuid import uuid4

import structlog

from imagegen.api.schemas import GenerationBatchDTO
from imagegen.client.service import ImageServiceClient
from imagegen.models.async_task import AsyncTaskStatus
from imagegen.services.exceptions import PromptValidationError

logger = structlog.get_logger(__name__)


@dataclass
class OptimisticGeneration:
    id: str
    task_id: str
    status: str = AsyncTaskStatus.PENDING.value


@dataclass
class OptimisticBatch:
    """Locally fabricated batch shown while the create request is in flight."""

    temp_id: str
    provider: str
    model: str
    prompt: str
    config: dict[str, Any]
    width: Optional[int] = None
    height: Optional[int] = None
    generations: list[OptimisticGeneration] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    kind: Literal["optimistic"] = "optimistic"


@dataclass
class ConfirmedBatch:
    """Batch as returned by the server."""

    batch: GenerationBatchDTO
    kind: Literal["confirmed"] = "confirmed"

    @property
    def is_settled(self) -> bool:
        return all(
            g.task is not None and g.task.status != AsyncTaskStatus.PENDING.value
            for g in self.batch.generations
        )


BatchEntry = Union[OptimisticBatch, ConfirmedBatch]


def create_temp_batch(
    provider: str,
    model: str,
    params: dict[str, Any],
    image_num: int,
) -> OptimisticBatch:
    """Build an optimistic batch with ``image_num`` pending generations."""
    temp_id = f"temp-{uuid4().hex}"
    return OptimisticBatch(
        temp_id=temp_id,
        provider=provider,
        model=model,
        prompt=params["prompt"],
        config=dict(params),
        width=params.get("width") or None,
        height=params.get("height") or None,
        generations=[
            OptimisticGeneration(id=f"{temp_id}-gen-{i}", task_id=f"{temp_id}-task-{i}")
            for i in range(image_num)
        ],
    )


class ImageStore:
    """Per-topic batch lists backed by the image API."""

    def __init__(self, service: ImageServiceClient, image_num: int = 4):
        """Initialize store.

        Args:
            service: API client used for all server calls
            image_num: Default number of images per batch
        """
        self.service = service
        self.image_num = image_num
        self.batches_by_topic: dict[str, list[BatchEntry]] = {}
        self.is_creating = False

    def get_batches(self, generation_topic_id: str) -> list[BatchEntry]:
        return list(self.batches_by_topic.get(generation_topic_id, []))

    def get_confirmed_batch(self, batch_id: str) -> Optional[GenerationBatchDTO]:
        for entries in self.batches_by_topic.values():
            for entry in entries:
                if isinstance(entry, ConfirmedBatch) and str(entry.batch.id) == str(batch_id):
                    return entry.batch
        return None

    def add_optimistic_batch(self, generation_topic_id: str, batch: OptimisticBatch) -> None:
        # Newest first, matching server order
        self.batches_by_topic.setdefault(generation_topic_id, []).insert(0, batch)

    def _discard_optimistic_batch(self, generation_topic_id: str, temp_id: str) -> None:
        entries = self.batches_by_topic.get(generation_topic_id, [])
        self.batches_by_topic[generation_topic_id] = [
            e for e in entries if not (isinstance(e, OptimisticBatch) and e.temp_id == temp_id)
        ]

    async def refresh_generation_batches(self, generation_topic_id: str) -> list[BatchEntry]:
        """Replace the topic's entries with the server's batches."""
        batches = await self.service.get_generation_batches(generation_topic_id)
        entries: list[BatchEntry] = [ConfirmedBatch(batch=b) for b in batches]
        self.batches_by_topic[generation_topic_id] = entries
        return entries

    async def create_image(
        self,
        generation_topic_id: str,
        provider: str,
        model: str,
        params: dict[str, Any],
        image_num: Optional[int] = None,
    ) -> None:
        """Create a batch, showing an optimistic placeholder until the server confirms it.

        Raises:
            PromptValidationError: If params has no prompt (nothing is shown or sent)
            ImageServiceError: If the server rejects the request
        """
        if not params.get("prompt"):
            raise PromptValidationError("prompt is empty")

        image_num = image_num or self.image_num
        temp_batch = create_temp_batch(provider, model, params, image_num)
        self.add_optimistic_batch(generation_topic_id, temp_batch)
        self.is_creating = True

        try:
            await self.service.create_image(
                generation_topic_id=generation_topic_id,
                provider=provider,
                model=model,
                image_num=image_num,
                params=params,
            )
            await self.refresh_generation_batches(generation_topic_id)
        except Exception:
            self._discard_optimistic_batch(generation_topic_id, temp_batch.temp_id)
            raise
        finally:
            self.is_creating = False

    async def recreate_image(self, generation_topic_id: str, batch_id: str) -> None:
        """Delete a batch and create a fresh one from its stored configuration.

        Raises:
            KeyError: If the batch is not a confirmed batch of this store
        """
        batch = self.get_confirmed_batch(batch_id)
        if batch is None:
            raise KeyError(f"Unknown generation batch: {batch_id}")

        await self.service.delete_generation_batch(batch.id)
        self.batches_by_topic[generation_topic_id] = [
            e
            for e in self.batches_by_topic.get(generation_topic_id, [])
            if not (isinstance(e, ConfirmedBatch) and e.batch.id == batch.id)
        ]
        logger.info("store.batch.recreating", batch_id=str(batch.id))

        await self.create_image(
            generation_topic_id,
            batch.provider,
            batch.model,
            dict(batch.config or {"prompt": batch.prompt}),
            image_num=len(batch.generations) or None,
        )

    async def poll_until_settled(
        self,
        generation_topic_id: str,
        interval: float = 1.0,
        timeout: Optional[float] = 60.0,
    ) -> bool:
        """Refresh until every task of the topic is terminal.

        Returns:
            True if all batches settled, False if the timeout was reached
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            entries = await self.refresh_generation_batches(generation_topic_id)
            if all(isinstance(e, ConfirmedBatch) and e.is_settled for e in entries):
                return True
            if deadline is not None and loop.time() >= deadline:
                logger.info("store.poll.timeout", generation_topic_id=generation_topic_id)
                return False
            await asyncio.sleep(interval)
