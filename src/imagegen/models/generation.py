"""GenerationBatch and Generation entities - one request and its output units."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Uuid
from sqlmodel import Field, SQLModel

from imagegen.core.timezone import utc_now


class GenerationBatch(SQLModel, table=True):
    """GenerationBatch holds the shared configuration of one create-image request."""

    __tablename__ = "generation_batches"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    generation_topic_id: str = Field(max_length=255, index=True)
    provider: str = Field(max_length=100)
    model: str = Field(max_length=255)
    prompt: str
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    config: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class Generation(SQLModel, table=True):
    """Generation is one output image of a batch, driven by exactly one async task."""

    __tablename__ = "generations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    generation_batch_id: UUID = Field(
        sa_column=Column(
            Uuid,
            ForeignKey("generation_batches.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    # Index within the batch, keeps creation order when timestamps tie
    position: int = Field(default=0)
    async_task_id: Optional[UUID] = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("async_tasks.id", ondelete="SET NULL"), nullable=True),
    )
    seed: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    asset: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
