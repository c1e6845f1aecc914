"""Initial schema - submissions, evaluation_results, process_logs.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STAGE_COLUMNS = (
    "idea_statement",
    "stage2_problem",
    "stage3_technology",
    "stage4_collaboration",
    "stage5_creativity",
    "stage6_speed_scale",
    "stage7_impact",
    "stage8_final_problem",
    "stage8_final_technology",
    "stage8_final_collaboration",
    "stage8_final_creativity",
    "stage8_final_speed_scale",
    "stage8_final_impact",
    "stage10_reflection",
)

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("identity", sa.String(255), unique=True, nullable=False),
        sa.Column("sequence_id", sa.Integer(), unique=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("case_id", sa.Integer(), nullable=True),
        sa.Column("selected_case_id", sa.Integer(), nullable=True),
        *[sa.Column(name, sa.Text(), nullable=True) for name in STAGE_COLUMNS],
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_submissions_sequence_id", "submissions", ["sequence_id"])

    op.create_table(
        "evaluation_results",
        sa.Column("record_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("identity", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("case_id", sa.Integer(), nullable=True),
        sa.Column("aggregate_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category_scores", JSON_TYPE, nullable=False),
        sa.Column("overall_feedback", sa.Text(), nullable=True),
        sa.Column("recommendations", JSON_TYPE, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="success"),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("batch_id", sa.String(100), nullable=True),
        sa.Column("evaluator_model", sa.String(100), nullable=True),
        sa.Column("payload_hash", sa.String(64), nullable=True),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('success', 'error')", name="ck_evaluation_results_status"),
    )
    op.create_index("ix_evaluation_results_identity", "evaluation_results", ["identity"])
    op.create_index("ix_evaluation_results_status", "evaluation_results", ["status"])

    op.create_table(
        "process_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(100), nullable=False),
        sa.Column("batch_id", sa.String(100), nullable=True),
        sa.Column("batch_number", sa.Integer(), nullable=True),
        sa.Column("identity", sa.String(255), nullable=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="INFO"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("detail", JSON_TYPE, nullable=False),
        sa.Column("processing_status", sa.String(20), nullable=True),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("evaluation_ok", sa.Boolean(), nullable=True),
        sa.Column("persisted", sa.Boolean(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("persistence_error", sa.Text(), nullable=True),
        sa.Column("evaluator_model", sa.String(100), nullable=True),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_process_logs_session_id", "process_logs", ["session_id"])
    op.create_index("ix_process_logs_batch_id", "process_logs", ["batch_id"])
    op.create_index("ix_process_logs_identity", "process_logs", ["identity"])
    op.create_index("ix_process_logs_event_type", "process_logs", ["event_type"])
    op.create_index("ix_process_logs_created_at", "process_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("process_logs")
    op.drop_table("evaluation_results")
    op.drop_table("submissions")
