"""Image generation service: batch creation and batch reads.

``create_image`` writes the batch, its generations and their pending tasks in
one transaction, then hands the tasks to the background dispatcher and returns
without waiting for any generation to finish.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

import structlog

from imagegen.core.config import Settings
from imagegen.models.async_task import AsyncTask, AsyncTaskStatus, AsyncTaskType
from imagegen.models.generation import Generation, GenerationBatch
from imagegen.services.image_generation.dispatcher import BackgroundDispatcher, DispatchItem
from imagegen.services.image_generation.prompt_validator import (
    validate_image_num,
    validate_prompt,
)
from imagegen.services.image_generation.seeds import generate_unique_seeds
from imagegen.services.storage.file_service import FileService
from imagegen.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass
class CreateImageResult:
    """Rows committed by one create-image call."""

    batch: GenerationBatch
    generations: list[Generation]


@dataclass
class GenerationWithTask:
    generation: Generation
    task: Optional[AsyncTask]


@dataclass
class BatchWithGenerations:
    batch: GenerationBatch
    generations: list[GenerationWithTask] = field(default_factory=list)

    @property
    def is_settled(self) -> bool:
        """True once every generation's task is terminal."""
        return all(
            item.task is not None and item.task.status != AsyncTaskStatus.PENDING
            for item in self.generations
        )


class ImageGenerationService:
    """Creates, lists and deletes generation batches.

    Constructed once at startup with its collaborators and injected into routes.
    """

    def __init__(
        self,
        settings: Settings,
        uow_factory,
        file_service: FileService,
        dispatcher: BackgroundDispatcher,
    ):
        """Initialize service.

        Args:
            settings: Application settings (limits)
            uow_factory: Factory producing UnitOfWork instances
            file_service: Resolves image URLs to storage keys
            dispatcher: Background dispatcher for create-image calls
        """
        self.settings = settings
        self.uow_factory = uow_factory
        self.file_service = file_service
        self.dispatcher = dispatcher

    async def create_image(
        self,
        *,
        user_id: str,
        generation_topic_id: str,
        provider: str,
        model: str,
        image_num: int,
        params: dict[str, Any],
    ) -> CreateImageResult:
        """Create a batch of ``image_num`` generations and dispatch them.

        Workflow:
        1. Validate prompt and image count (no writes on failure)
        2. Rewrite imageUrls to storage keys for the stored config (best effort)
        3. In one transaction: insert batch, generations, pending tasks, and link
           each generation to its task
        4. After commit: dispatch one background call per task, not awaited

        Args:
            user_id: Authenticated user
            generation_topic_id: Topic the batch belongs to
            provider: Image provider id
            model: Provider model id
            image_num: Number of images to generate
            params: Generation params; ``prompt`` required, passthrough keys kept

        Returns:
            CreateImageResult with the committed batch and generations

        Raises:
            PromptValidationError: If the prompt is missing or invalid
            ImageNumValidationError: If image_num is out of range
            Exception: Any database error; nothing is persisted in that case
        """
        prompt = validate_prompt(params.get("prompt"), self.settings.max_prompt_length)
        validate_image_num(image_num, self.settings.max_image_num)

        logger.info(
            "image.create.started",
            user_id=user_id,
            generation_topic_id=generation_topic_id,
            provider=provider,
            model=model,
            image_num=image_num,
        )

        config_for_database = self._config_for_database(params)
        items: list[DispatchItem] = []

        async with await self.uow_factory() as uow:
            batch, generations = await self._write_batch(
                uow,
                user_id=user_id,
                generation_topic_id=generation_topic_id,
                provider=provider,
                model=model,
                image_num=image_num,
                prompt=prompt,
                params=params,
                config=config_for_database,
            )
            for generation in generations:
                task = await uow.async_tasks.add(
                    AsyncTask(
                        user_id=user_id,
                        type=AsyncTaskType.IMAGE_GENERATION,
                        status=AsyncTaskStatus.PENDING,
                    )
                )
                await uow.generations.set_async_task_id(generation, task.id)
                items.append(
                    DispatchItem(generation_id=generation.id, async_task_id=task.id)
                )

        logger.info(
            "image.create.committed",
            batch_id=str(batch.id),
            generation_ids=[str(g.id) for g in generations],
        )

        await self.dispatcher.dispatch(
            user_id=user_id,
            provider=provider,
            model=model,
            params=params,
            items=items,
        )

        return CreateImageResult(batch=batch, generations=generations)

    async def _write_batch(
        self,
        uow: UnitOfWork,
        *,
        user_id: str,
        generation_topic_id: str,
        provider: str,
        model: str,
        image_num: int,
        prompt: str,
        params: dict[str, Any],
        config: dict[str, Any],
    ) -> tuple[GenerationBatch, list[Generation]]:
        batch = await uow.generation_batches.add(
            GenerationBatch(
                user_id=user_id,
                generation_topic_id=generation_topic_id,
                provider=provider,
                model=model,
                prompt=prompt,
                width=params.get("width"),
                height=params.get("height"),
                config=config,
            )
        )

        # Presence of the key asks for seeds, even when its value is null
        seeds: list[Optional[int]]
        if "seed" in params:
            seeds = list(generate_unique_seeds(image_num))
        else:
            seeds = [None] * image_num

        generations = await uow.generations.add_many(
            [
                Generation(user_id=user_id, generation_batch_id=batch.id, seed=seed)
                for seed in seeds
            ]
        )
        return batch, generations

    def _config_for_database(self, params: dict[str, Any]) -> dict[str, Any]:
        """Return params with imageUrls replaced by storage keys.

        If any URL cannot be resolved, the params are returned unchanged.
        """
        image_urls = params.get("imageUrls")
        if not isinstance(image_urls, list) or not image_urls:
            return dict(params)

        try:
            image_keys = [self.file_service.get_key_from_full_url(url) for url in image_urls]
        except Exception as e:
            logger.warning(
                "image.create.image_keys_failed",
                error=str(e),
                error_type=type(e).__name__,
                url_count=len(image_urls),
            )
            return dict(params)

        return {**params, "imageUrls": image_keys}

    def config_for_client(self, config: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        """Return a stored config with imageUrls keys turned back into public URLs."""
        if not config or not isinstance(config.get("imageUrls"), list):
            return config

        urls = [
            value if "://" in value else self.file_service.get_full_url(value)
            for value in config["imageUrls"]
        ]
        return {**config, "imageUrls": urls}

    async def list_batches(
        self, user_id: str, generation_topic_id: str
    ) -> list[BatchWithGenerations]:
        """Read a topic's batches with their generations and task states, newest first."""
        async with await self.uow_factory() as uow:
            batches = await uow.generation_batches.list_by_topic(generation_topic_id, user_id)
            generations = await uow.generations.get_by_batch_ids([b.id for b in batches])
            tasks = await uow.async_tasks.get_many(
                g.async_task_id for g in generations if g.async_task_id is not None
            )

        views = {batch.id: BatchWithGenerations(batch=batch) for batch in batches}
        for generation in generations:
            task = tasks.get(generation.async_task_id) if generation.async_task_id else None
            views[generation.generation_batch_id].generations.append(
                GenerationWithTask(generation=generation, task=task)
            )
        return list(views.values())

    async def delete_batch(self, user_id: str, batch_id: UUID) -> bool:
        """Delete a batch with its generations and tasks.

        Returns:
            True if the batch existed and was deleted
        """
        async with await self.uow_factory() as uow:
            batch = await uow.generation_batches.get_by_id(batch_id, user_id)
            if batch is None:
                return False
            task_ids = await uow.generation_batches.delete(batch)
            await uow.async_tasks.delete_many(task_ids)

        logger.info("image.batch.deleted", batch_id=str(batch_id), task_count=len(task_ids))
        return True
