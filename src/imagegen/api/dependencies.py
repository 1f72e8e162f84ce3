"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- The acting user (set by the authentication layer in front of this service)
- Async service authentication
- Services constructed at startup and stored on app.state
"""

import hmac
from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from imagegen.core.config import Settings
from imagegen.services.image_generation.service import ImageGenerationService
from imagegen.uow import UnitOfWork


def get_settings(request: Request) -> Settings:
    """Get the settings instance loaded at startup."""
    return request.app.state.settings


def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Return the authenticated user id.

    Session handling happens upstream; it forwards the user in X-User-Id.

    Raises:
        HTTPException: 401 Unauthorized if the header is missing
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id")
    return x_user_id


def verify_async_secret(
    x_async_secret: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Authenticate calls made by the background dispatcher.

    Raises:
        HTTPException: 401 Unauthorized if the secret is missing or wrong
    """
    if not x_async_secret or not settings.async_service_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Async-Secret header"
        )
    # Constant-time comparison
    if not hmac.compare_digest(x_async_secret, settings.async_service_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid async secret")


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.async_tasks.get_by_id(task_id)
    """
    return request.app.state.uow_factory


def get_image_service(request: Request) -> ImageGenerationService:
    """Get the image generation service from app state."""
    return request.app.state.image_service
