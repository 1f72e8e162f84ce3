"""Async image endpoint, called by the background dispatcher.

POST /api/async/image/create runs one generation with the provider, attaches
the produced asset and moves the task to its terminal state. Provider errors
are written on the task and answered with 502 so the caller's call fails.
"""

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from imagegen.api.dependencies import (
    get_current_user_id,
    get_settings,
    get_uow_factory,
    verify_async_secret,
)
from imagegen.api.schemas import AsyncCreateImageRequest, AsyncCreateImageResponse
from imagegen.core.config import Settings
from imagegen.models.async_task import AsyncTaskErrorType, AsyncTaskStatus, build_task_error
from imagegen.services.exceptions import PromptValidationError
from imagegen.services.image_generation.prompt_validator import validate_prompt
from imagegen.services.image_generation.replicate_client import (
    PermanentError,
    ReplicateError,
    build_model_input,
    generate_image,
)

logger = structlog.get_logger()
router = APIRouter(
    prefix="/api/async/image",
    tags=["async"],
    dependencies=[Depends(verify_async_secret)],
)

SUPPORTED_PROVIDERS = {"replicate"}


@router.post("/create", response_model=AsyncCreateImageResponse, response_model_by_alias=True)
async def async_create_image(
    request: AsyncCreateImageRequest,
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
    uow_factory=Depends(get_uow_factory),
) -> AsyncCreateImageResponse:
    """Generate one image for a pending task.

    Workflow:
    1. Load the task and its generation (404 if missing)
    2. Return early if the task is already terminal
    3. Run the provider
    4. On success: mark the task success and attach the asset, unless another
       writer already settled the task, whose status is reported instead
    5. On failure: mark the task error with the classified kind, answer 502
    """
    start_time = time.monotonic()

    async with await uow_factory() as uow:
        task = await uow.async_tasks.get_by_id(request.task_id, user_id=user_id)
        generation = await uow.generations.get_by_id(request.generation_id)

    if task is None or generation is None or generation.async_task_id != task.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    if task.is_terminal:
        logger.info("async.image.already_terminal", task_id=str(task.id), status=task.status.value)
        return AsyncCreateImageResponse(success=True, status=task.status.value)

    logger.info(
        "async.image.started",
        task_id=str(task.id),
        generation_id=str(generation.id),
        provider=request.provider,
        model=request.model,
    )

    try:
        if request.provider not in SUPPORTED_PROVIDERS:
            raise PermanentError(f"Unsupported provider: {request.provider}")
        prompt = validate_prompt(request.params.get("prompt"), settings.max_prompt_length)
        model_input = build_model_input({**request.params, "prompt": prompt}, generation.seed)
        image_url = await generate_image(
            model_input, api_token=settings.replicate_api_token, model=request.model
        )

    except (ReplicateError, PromptValidationError) as e:
        error_type = (
            e.error_type if isinstance(e, ReplicateError) else AsyncTaskErrorType.PROVIDER_ERROR
        )
        async with await uow_factory() as uow:
            await uow.async_tasks.update_status(
                task.id,
                AsyncTaskStatus.ERROR,
                user_id=user_id,
                error=build_task_error(error_type, str(e)),
            )
        logger.error(
            "async.image.failed",
            task_id=str(task.id),
            error_type=error_type.value,
            error_message=str(e),
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    duration_ms = int((time.monotonic() - start_time) * 1000)
    current = None
    async with await uow_factory() as uow:
        updated = await uow.async_tasks.update_status(
            task.id, AsyncTaskStatus.SUCCESS, user_id=user_id, duration_ms=duration_ms
        )
        if updated:
            await uow.generations.attach_asset(
                generation.id,
                {
                    "url": image_url,
                    "width": request.params.get("width"),
                    "height": request.params.get("height"),
                },
            )
        else:
            current = await uow.async_tasks.get_by_id(task.id, user_id=user_id)

    if not updated:
        # Another writer settled the task first, its outcome stands
        final_status = current.status.value if current else AsyncTaskStatus.ERROR.value
        logger.warning(
            "async.image.settled_elsewhere",
            task_id=str(task.id),
            status=final_status,
            duration_ms=duration_ms,
        )
        return AsyncCreateImageResponse(
            success=final_status == AsyncTaskStatus.SUCCESS.value, status=final_status
        )

    logger.info(
        "async.image.succeeded",
        task_id=str(task.id),
        image_url=image_url,
        duration_ms=duration_ms,
    )
    return AsyncCreateImageResponse(
        success=True, status=AsyncTaskStatus.SUCCESS.value, image_url=image_url
    )
