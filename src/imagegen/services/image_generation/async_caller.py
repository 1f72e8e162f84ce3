"""HTTP client for invoking the async image endpoint.

The caller is built per dispatch (it carries the acting user) and issues
one POST per task. It never retries: a failed call is reported to the
dispatcher, which records the failure on the task.
"""

import asyncio
from typing import Any, Optional
from uuid import UUID

import httpx
import structlog

from imagegen.core.config import Settings
from imagegen.services.exceptions import (
    AsyncCallError,
    AsyncCallerConfigError,
    DispatchCancelledError,
)

logger = structlog.get_logger(__name__)

CREATE_IMAGE_PATH = "/api/async/image/create"
SECRET_HEADER = "X-Async-Secret"
USER_HEADER = "X-User-Id"


class AsyncCaller:
    """Issues create-image calls to the async service on behalf of one user."""

    def __init__(
        self,
        base_url: str,
        secret: str,
        user_id: str,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize async caller.

        Args:
            base_url: Base URL of the async service (e.g. "http://localhost:8000")
            secret: Shared secret sent in the X-Async-Secret header
            user_id: User the calls are made for
            timeout: Per-call timeout in seconds
            transport: Optional httpx transport (ASGI app or mock in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            SECRET_HEADER: secret,
            USER_HEADER: user_id,
            "Content-Type": "application/json",
        }

    async def create_image(
        self,
        *,
        task_id: UUID,
        generation_id: UUID,
        provider: str,
        model: str,
        params: dict[str, Any],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict:
        """Invoke the async create-image operation for one task.

        Args:
            task_id: AsyncTask driving this generation
            generation_id: Generation that receives the asset
            provider: Image provider id
            model: Provider model id
            params: Original, unmodified request params
            cancel_event: When set before the request is sent, the call is skipped

        Returns:
            Decoded JSON response of the async service

        Raises:
            DispatchCancelledError: If cancel_event was set before sending
            AsyncCallError: If the service answered with a non-2xx status or was unreachable
        """
        if cancel_event is not None and cancel_event.is_set():
            raise DispatchCancelledError(f"Dispatch of task {task_id} cancelled before start")

        payload = {
            "taskId": str(task_id),
            "generationId": str(generation_id),
            "provider": provider,
            "model": model,
            "params": params,
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(CREATE_IMAGE_PATH, json=payload, headers=self.headers)
        except httpx.TimeoutException as e:
            raise AsyncCallError(f"Async service timeout: {e}") from e
        except httpx.HTTPError as e:
            raise AsyncCallError(f"Async service unreachable: {e}") from e

        if response.status_code >= 400:
            raise AsyncCallError(_extract_detail(response), status_code=response.status_code)

        return response.json()


def _extract_detail(response: httpx.Response) -> str:
    """Pull the error detail out of a FastAPI error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        detail = detail.get("message") or detail.get("detail")
    return str(detail) if detail else f"HTTP {response.status_code}"


async def create_async_caller(
    settings: Settings,
    user_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncCaller:
    """Build an AsyncCaller for a user.

    Raises:
        AsyncCallerConfigError: If the async service URL or secret is not configured
    """
    if not settings.async_service_url:
        raise AsyncCallerConfigError("ASYNC_SERVICE_URL not configured")
    if not settings.async_service_secret:
        raise AsyncCallerConfigError("ASYNC_SERVICE_SECRET not configured")

    logger.debug("async_caller.created", user_id=user_id)
    return AsyncCaller(
        base_url=settings.async_service_url,
        secret=settings.async_service_secret,
        user_id=user_id,
        timeout=settings.async_call_timeout_seconds,
        transport=transport,
    )
