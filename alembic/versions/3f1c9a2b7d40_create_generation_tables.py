"""create_generation_tables

Revision ID: 3f1c9a2b7d40
Revises:
Create Date: 2026-10-18 09:12:31.418205

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2b7d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create async_tasks, generation_batches and generations tables."""
    op.create_table(
        "async_tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column(
            "type",
            sa.Enum("IMAGE_GENERATION", name="asynctasktype"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("PENDING", "SUCCESS", "ERROR", name="asynctaskstatus"),
            nullable=False,
        ),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_async_tasks_user_id", "async_tasks", ["user_id"])
    op.create_index("ix_async_tasks_status", "async_tasks", ["status"])

    op.create_table(
        "generation_batches",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("generation_topic_id", sa.String(length=255), nullable=False),
        sa.Column("provider", sa.String(length=100), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_batches_user_id", "generation_batches", ["user_id"])
    op.create_index(
        "ix_generation_batches_generation_topic_id", "generation_batches", ["generation_topic_id"]
    )

    op.create_table(
        "generations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("generation_batch_id", sa.Uuid(), nullable=False),
        sa.Column("async_task_id", sa.Uuid(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("seed", sa.BigInteger(), nullable=True),
        sa.Column("asset", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["generation_batch_id"], ["generation_batches.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["async_task_id"], ["async_tasks.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generations_user_id", "generations", ["user_id"])
    op.create_index("ix_generations_generation_batch_id", "generations", ["generation_batch_id"])


def downgrade() -> None:
    """Drop generation tables and their enum types."""
    op.drop_index("ix_generations_generation_batch_id", table_name="generations")
    op.drop_index("ix_generations_user_id", table_name="generations")
    op.drop_table("generations")

    op.drop_index(
        "ix_generation_batches_generation_topic_id", table_name="generation_batches"
    )
    op.drop_index("ix_generation_batches_user_id", table_name="generation_batches")
    op.drop_table("generation_batches")

    op.drop_index("ix_async_tasks_status", table_name="async_tasks")
    op.drop_index("ix_async_tasks_user_id", table_name="async_tasks")
    op.drop_table("async_tasks")

    sa.Enum(name="asynctaskstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="asynctasktype").drop(op.get_bind(), checkfirst=True)
