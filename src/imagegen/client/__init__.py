"""Async client and optimistic store for the image API."""

from imagegen.client.service import ImageServiceClient, ImageServiceError
from imagegen.client.store import (
    ConfirmedBatch,
    ImageStore,
    OptimisticBatch,
    OptimisticGeneration,
    create_temp_batch,
)

__all__ = [
    "ImageServiceClient",
    "ImageServiceError",
    "ImageStore",
    "OptimisticBatch",
    "OptimisticGeneration",
    "ConfirmedBatch",
    "create_temp_batch",
]
