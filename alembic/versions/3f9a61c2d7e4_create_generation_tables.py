"""create_generation_tables

Revision ID: 3f9a61c2d7e4
Revises:
Create Date: 2026-10-19 10:12:41.208311

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a61c2d7e4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLModel stores enum member names
generation_job_status = sa.Enum("PROCESSING", "COMPLETED", "FAILED", name="generationjobstatus")
generated_image_status = sa.Enum("COMPLETED", "FAILED", name="generatedimagestatus")
review_status = sa.Enum("PENDING", "APPROVED", "REJECTED", name="reviewstatus")


def upgrade() -> None:
    """Create batch, image, usage and quota tables."""
    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("image_types_requested", sa.JSON(), nullable=False),
        sa.Column("total_images", sa.Integer(), nullable=False),
        sa.Column("completed_images", sa.Integer(), nullable=False),
        sa.Column("failed_images", sa.Integer(), nullable=False),
        sa.Column("status", generation_job_status, nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_generation_jobs_organization_id", "generation_jobs", ["organization_id"]
    )
    op.create_index("ix_generation_jobs_product_id", "generation_jobs", ["product_id"])
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"])

    op.create_table(
        "generated_images",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("source_image_id", sa.String(length=64), nullable=True),
        sa.Column("parent_image_id", sa.Uuid(), nullable=True),
        sa.Column("image_type", sa.String(length=50), nullable=False),
        sa.Column("image_url", sa.String(), nullable=False),
        sa.Column("status", generated_image_status, nullable=False),
        sa.Column("prompt_used", sa.Text(), nullable=True),
        sa.Column("seed", sa.BigInteger(), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("generation_duration_ms", sa.Integer(), nullable=True),
        sa.Column("generation_model", sa.String(length=100), nullable=True),
        sa.Column("review_status", review_status, nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["parent_image_id"], ["generated_images.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_generated_images_organization_id", "generated_images", ["organization_id"]
    )
    op.create_index("ix_generated_images_product_id", "generated_images", ["product_id"])
    op.create_index("ix_generated_images_status", "generated_images", ["status"])

    op.create_table(
        "generation_usage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reserved_count", sa.Integer(), nullable=False),
        sa.Column("completed_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "organization_id", "period_start", name="uq_generation_usage_period"
        ),
    )
    op.create_index(
        "ix_generation_usage_organization_id", "generation_usage", ["organization_id"]
    )

    op.create_table(
        "organization_quotas",
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("monthly_photo_limit", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("organization_id"),
    )


def downgrade() -> None:
    """Drop generation tables and enum types."""
    op.drop_table("organization_quotas")
    op.drop_index("ix_generation_usage_organization_id", table_name="generation_usage")
    op.drop_table("generation_usage")
    op.drop_index("ix_generated_images_status", table_name="generated_images")
    op.drop_index("ix_generated_images_product_id", table_name="generated_images")
    op.drop_index("ix_generated_images_organization_id", table_name="generated_images")
    op.drop_table("generated_images")
    op.drop_index("ix_generation_jobs_status", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_product_id", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_organization_id", table_name="generation_jobs")
    op.drop_table("generation_jobs")

    review_status.drop(op.get_bind(), checkfirst=True)
    generated_image_status.drop(op.get_bind(), checkfirst=True)
    generation_job_status.drop(op.get_bind(), checkfirst=True)
