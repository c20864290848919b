"""create research and enrichment job tables

Revision ID: 4e1a9c2d7b30
Revises:
Create Date: 2026-10-19 09:12:44.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e1a9c2d7b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_STATUS = sa.Enum(
    "pending", "running", "completed", "failed",
    name="jobstatus", native_enum=False, length=16,
)
_ENTITY_TYPE = sa.Enum(
    "organization", "person", "rfp",
    name="entitytype", native_enum=False, length=16,
)


def _job_columns() -> list:
    return [
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", _ENTITY_TYPE, nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("status", _STATUS, nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("applied_fields", sa.JSON(), nullable=True),
        sa.Column("fields_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    ]


def _job_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_project_id", table, ["project_id"])
    op.create_index(f"ix_{table}_entity_id", table, ["entity_id"])
    op.create_index(
        f"uq_{table}_running_entity",
        table,
        ["entity_type", "entity_id"],
        unique=True,
        sqlite_where=sa.text("status = 'running'"),
        postgresql_where=sa.text("status = 'running'"),
    )


def upgrade() -> None:
    """Create job tables, the usage ledger and per-project research settings."""
    op.create_table(
        "research_jobs",
        *_job_columns(),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("model_used", sa.String(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
    )
    _job_indexes("research_jobs")

    op.create_table(
        "enrichment_jobs",
        *_job_columns(),
        sa.Column("request_payload", sa.JSON(), nullable=False),
        sa.Column("external_job_id", sa.String(), nullable=True),
        sa.Column("credits_used", sa.Integer(), nullable=True),
    )
    _job_indexes("enrichment_jobs")
    op.create_index("ix_enrichment_jobs_external_job_id", "enrichment_jobs", ["external_job_id"])

    op.create_table(
        "provider_usage_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("units", sa.Integer(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_provider_usage_log_provider", "provider_usage_log", ["provider"])
    op.create_index("ix_provider_usage_log_created_at", "provider_usage_log", ["created_at"])

    op.create_table(
        "research_settings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), nullable=False, unique=True),
        sa.Column("system_prompt", sa.Text(), nullable=True),
        sa.Column("user_prompt_template", sa.Text(), nullable=True),
        sa.Column("model_id", sa.String(), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("max_tokens", sa.Integer(), nullable=True),
    )

    # people is owned by the CRM; we only track enrichment state on it
    op.add_column("people", sa.Column("enrichment_status", sa.String(), nullable=True))
    op.add_column("people", sa.Column("enriched_at", sa.DateTime(), nullable=True))


def downgrade() -> None:
    """Drop job tables, the usage ledger and research settings."""
    op.drop_column("people", "enriched_at")
    op.drop_column("people", "enrichment_status")
    op.drop_table("research_settings")
    op.drop_index("ix_provider_usage_log_created_at", table_name="provider_usage_log")
    op.drop_index("ix_provider_usage_log_provider", table_name="provider_usage_log")
    op.drop_table("provider_usage_log")
    for table in ("enrichment_jobs", "research_jobs"):
        op.drop_table(table)
