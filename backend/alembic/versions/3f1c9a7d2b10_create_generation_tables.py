"""create_generation_tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 10:12:41.208311

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a7d2b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

job_status = sa.Enum(
    "PENDING",
    "RUNNING",
    "PARTIALLY_SUCCEEDED",
    "SUCCEEDED",
    "FAILED",
    "CANCELLED",
    name="jobstatus",
)
stage = sa.Enum(
    "QUEUED",
    "CONCEPT",
    "VALIDATION",
    "IMAGE",
    "DEDUPE",
    "STORAGE",
    "PERSIST",
    "DONE",
    name="stage",
)
task_outcome = sa.Enum(
    "SUCCESS",
    "SUCCESS_WITH_PLACEHOLDER",
    "FAILED",
    "CANCELLED",
    name="taskoutcome",
)


def upgrade() -> None:
    """Create jobs, tasks, quota, fingerprint and recipe tables."""
    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("item_count", sa.Integer(), nullable=False),
        sa.Column("constraints", sa.JSON(), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("reservation_id", sa.Uuid(), nullable=True),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False),
        sa.Column("progress_snapshot", sa.JSON(), nullable=True),
        sa.Column("error_data", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_account_id", "generation_jobs", ["account_id"])
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"])

    op.create_table(
        "item_tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("ordinal", sa.Integer(), nullable=False),
        sa.Column("current_stage", stage, nullable=False),
        sa.Column("attempts", sa.JSON(), nullable=True),
        sa.Column("stage_history", sa.JSON(), nullable=True),
        sa.Column("final_outcome", task_outcome, nullable=True),
        sa.Column("image_url", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("is_placeholder", sa.Boolean(), nullable=False),
        sa.Column("error", sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True),
        sa.Column("heal_attempts", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_item_tasks_job_id", "item_tasks", ["job_id"])
    op.create_index("ix_item_tasks_final_outcome", "item_tasks", ["final_outcome"])

    op.create_table(
        "quota_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("period_key", sqlmodel.sql.sqltypes.AutoString(length=16), nullable=False),
        sa.Column("resource_kind", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("quota_limit", sa.Integer(), nullable=False),
        sa.Column("used", sa.Integer(), nullable=False),
        sa.Column("reserved", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "account_id", "period_key", "resource_kind", name="uq_quota_record_key"
        ),
    )
    op.create_index("ix_quota_records_account_id", "quota_records", ["account_id"])

    op.create_table(
        "quota_reservations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("period_key", sqlmodel.sql.sqltypes.AutoString(length=16), nullable=False),
        sa.Column("resource_kind", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("committed", sa.Integer(), nullable=False),
        sa.Column("released", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_quota_reservations_account_id", "quota_reservations", ["account_id"])
    op.create_index("ix_quota_reservations_job_id", "quota_reservations", ["job_id"])

    op.create_table(
        "image_fingerprints",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("scope_key", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("hash", sqlmodel.sql.sqltypes.AutoString(length=16), nullable=False),
        sa.Column("source_task_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_image_fingerprints_scope_key", "image_fingerprints", ["scope_key"])

    op.create_table(
        "generated_recipes",
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("draft", sa.JSON(), nullable=True),
        sa.Column("nutrition", sa.JSON(), nullable=True),
        sa.Column("image_url", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("is_placeholder", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_generated_recipes_job_id", "generated_recipes", ["job_id"])
    op.create_index("ix_generated_recipes_account_id", "generated_recipes", ["account_id"])


def downgrade() -> None:
    """Drop all generation tables."""
    op.drop_table("generated_recipes")
    op.drop_table("image_fingerprints")
    op.drop_table("quota_reservations")
    op.drop_table("quota_records")
    op.drop_table("item_tasks")
    op.drop_table("generation_jobs")

    bind = op.get_bind()
    for enum_type in (task_outcome, stage, job_status):
        enum_type.drop(bind, checkfirst=True)
