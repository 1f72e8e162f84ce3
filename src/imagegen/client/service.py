"""HTTP client for the image API."""

from typing import Any, Optional
from uuid import UUID

import httpx

from imagegen.api.schemas import (
    CreateImageRequest,
    CreateImageResponse,
    GenerationBatchDTO,
    GenerationBatchesResponse,
)


class ImageServiceError(Exception):
    """The image API answered with an error status."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"Image API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class ImageServiceClient:
    """Thin async wrapper over the /api/image endpoints for one user."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            base_url: API base URL (e.g. "http://localhost:8000")
            user_id: Acting user, sent in X-User-Id
            timeout: Request timeout in seconds
            transport: Optional httpx transport (ASGI app or mock in tests)
        """
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"X-User-Id": user_id},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_image(
        self,
        *,
        generation_topic_id: str,
        provider: str,
        model: str,
        image_num: int,
        params: dict[str, Any],
    ) -> CreateImageResponse:
        request = CreateImageRequest.model_validate(
            {
                "generationTopicId": generation_topic_id,
                "provider": provider,
                "model": model,
                "imageNum": image_num,
                "params": params,
            }
        )
        body = {
            **request.model_dump(by_alias=True, exclude={"params"}),
            "params": request.params.to_params(),
        }
        response = await self._client.post("/api/image/create", json=body)
        _raise_for_status(response)
        return CreateImageResponse.model_validate(response.json())

    async def get_generation_batches(self, generation_topic_id: str) -> list[GenerationBatchDTO]:
        response = await self._client.get(
            "/api/image/batches", params={"topicId": generation_topic_id}
        )
        _raise_for_status(response)
        return GenerationBatchesResponse.model_validate(response.json()).batches

    async def delete_generation_batch(self, batch_id: UUID | str) -> None:
        response = await self._client.delete(f"/api/image/batches/{batch_id}")
        _raise_for_status(response)


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = response.text
    raise ImageServiceError(response.status_code, detail)
