"""Request/response models shared by the API routes and the HTTP client.

Field names are camelCase on the wire (``generationTopicId``) and snake_case in Python.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing to camelCase and accepting both spellings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request Models


class CreateImageParams(BaseModel):
    """Generation params. Unknown keys are kept and passed to the provider."""

    model_config = ConfigDict(extra="allow")

    prompt: str = Field(..., description="Text prompt", min_length=1)
    imageUrls: Optional[list[str]] = Field(default=None, description="Input image URLs")
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    seed: Optional[int] = Field(default=None, description="Presence requests seeded outputs")
    steps: Optional[int] = Field(default=None, gt=0)
    cfg: Optional[float] = Field(default=None)

    def to_params(self) -> dict[str, Any]:
        """Params as sent by the client, without keys the client did not send."""
        return self.model_dump(exclude_unset=True)


class CreateImageRequest(CamelModel):
    """Request model for creating an image batch."""

    generation_topic_id: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    image_num: int = Field(..., ge=1)
    params: CreateImageParams


class AsyncCreateImageRequest(CamelModel):
    """Request model of the async create-image endpoint (dispatcher → async service)."""

    task_id: UUID
    generation_id: UUID
    provider: str
    model: str
    params: dict[str, Any]


# Response Models


class AsyncTaskDTO(CamelModel):
    id: UUID
    status: str
    error: Optional[dict] = None
    duration_ms: Optional[int] = None


class GenerationDTO(CamelModel):
    id: UUID
    generation_batch_id: UUID
    async_task_id: Optional[UUID] = None
    seed: Optional[int] = None
    asset: Optional[dict] = None
    created_at: datetime
    task: Optional[AsyncTaskDTO] = None


class GenerationBatchDTO(CamelModel):
    id: UUID
    generation_topic_id: str
    provider: str
    model: str
    prompt: str
    width: Optional[int] = None
    height: Optional[int] = None
    config: Optional[dict] = None
    created_at: datetime
    generations: list[GenerationDTO] = Field(default_factory=list)


class CreateImageData(CamelModel):
    batch: GenerationBatchDTO
    generations: list[GenerationDTO]


class CreateImageResponse(CamelModel):
    """Response model of POST /api/image/create."""

    success: bool
    data: CreateImageData


class GenerationBatchesResponse(CamelModel):
    """Response model of GET /api/image/batches."""

    batches: list[GenerationBatchDTO]


class AsyncCreateImageResponse(CamelModel):
    success: bool
    status: str
    image_url: Optional[str] = None
