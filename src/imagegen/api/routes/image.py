"""Image generation API endpoints.

This module implements REST endpoints for image batches:
- POST /api/image/create - Create a batch and dispatch its generations in the background
- GET /api/image/batches - List a topic's batches with generation and task status
- DELETE /api/image/batches/{batch_id} - Delete a batch (used by "recreate")
- GET /api/image/tasks/{task_id} - Read one async task
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from imagegen.api.dependencies import get_current_user_id, get_image_service, get_uow_factory
from imagegen.api.schemas import (
    AsyncTaskDTO,
    CreateImageData,
    CreateImageRequest,
    CreateImageResponse,
    GenerationBatchDTO,
    GenerationBatchesResponse,
    GenerationDTO,
)
from imagegen.models.async_task import AsyncTask
from imagegen.models.generation import Generation, GenerationBatch
from imagegen.services.image_generation.service import ImageGenerationService

logger = structlog.get_logger()
router = APIRouter(prefix="/api/image", tags=["image"])


def task_to_dto(task: AsyncTask) -> AsyncTaskDTO:
    return AsyncTaskDTO(
        id=task.id,
        status=task.status.value,
        error=task.error,
        duration_ms=task.duration_ms,
    )


def generation_to_dto(generation: Generation, task: Optional[AsyncTask] = None) -> GenerationDTO:
    return GenerationDTO(
        id=generation.id,
        generation_batch_id=generation.generation_batch_id,
        async_task_id=generation.async_task_id,
        seed=generation.seed,
        asset=generation.asset,
        created_at=generation.created_at,
        task=task_to_dto(task) if task is not None else None,
    )


def batch_to_dto(
    batch: GenerationBatch,
    generations: Optional[list[GenerationDTO]] = None,
    config: Optional[dict] = None,
) -> GenerationBatchDTO:
    return GenerationBatchDTO(
        id=batch.id,
        generation_topic_id=batch.generation_topic_id,
        provider=batch.provider,
        model=batch.model,
        prompt=batch.prompt,
        width=batch.width,
        height=batch.height,
        config=config if config is not None else batch.config,
        created_at=batch.created_at,
        generations=generations or [],
    )


@router.post("/create", response_model=CreateImageResponse, response_model_by_alias=True)
async def create_image(
    request: CreateImageRequest,
    user_id: str = Depends(get_current_user_id),
    service: ImageGenerationService = Depends(get_image_service),
) -> CreateImageResponse:
    """Create a generation batch.

    Returns as soon as the batch, its generations and their pending tasks are
    committed. Generation runs in the background; poll GET /api/image/batches
    for progress.

    Returns:
        CreateImageResponse with the committed batch and generations

    Raises:
        HTTPException: 400 Bad Request if the prompt or image count is invalid
    """
    try:
        result = await service.create_image(
            user_id=user_id,
            generation_topic_id=request.generation_topic_id,
            provider=request.provider,
            model=request.model,
            image_num=request.image_num,
            params=request.params.to_params(),
        )
    except ValueError as e:
        logger.info("image.create.rejected", user_id=user_id, reason=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    generations = [generation_to_dto(g) for g in result.generations]
    return CreateImageResponse(
        success=True,
        data=CreateImageData(batch=batch_to_dto(result.batch), generations=generations),
    )


@router.get("/batches", response_model=GenerationBatchesResponse, response_model_by_alias=True)
async def list_generation_batches(
    topic_id: str = Query(..., alias="topicId", min_length=1),
    user_id: str = Depends(get_current_user_id),
    service: ImageGenerationService = Depends(get_image_service),
) -> GenerationBatchesResponse:
    """List a topic's batches, newest first, with each generation's task status."""
    views = await service.list_batches(user_id, topic_id)
    batches = [
        batch_to_dto(
            view.batch,
            [generation_to_dto(item.generation, item.task) for item in view.generations],
            config=service.config_for_client(view.batch.config),
        )
        for view in views
    ]
    return GenerationBatchesResponse(batches=batches)


@router.delete("/batches/{batch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_generation_batch(
    batch_id: UUID,
    user_id: str = Depends(get_current_user_id),
    service: ImageGenerationService = Depends(get_image_service),
) -> None:
    """Delete a batch with its generations and tasks.

    Raises:
        HTTPException: 404 Not Found if the batch does not exist for this user
    """
    deleted = await service.delete_batch(user_id, batch_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")


@router.get("/tasks/{task_id}", response_model=AsyncTaskDTO, response_model_by_alias=True)
async def get_async_task(
    task_id: UUID,
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
) -> AsyncTaskDTO:
    """Read one async task of the current user.

    Raises:
        HTTPException: 404 Not Found if the task does not exist for this user
    """
    async with await uow_factory() as uow:
        task = await uow.async_tasks.get_by_id(task_id, user_id=user_id)

    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task_to_dto(task)
