"""Outcome model - one authoritative evaluation per identity."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from batcheval.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class OutcomeRecord(Base):
    """Evaluation results. Error rows are updated in place on retry."""

    __tablename__ = "evaluation_results"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    case_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    aggregate_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category_scores: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    overall_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommendations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default="success"
    )  # success|error
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    evaluator_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payload_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
