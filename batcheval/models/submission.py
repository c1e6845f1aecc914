"""Submission model - the work source."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from batcheval.database import Base


class Submission(Base):
    """Participant submissions, paged by sequence_id."""

    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    sequence_id: Mapped[int] = mapped_column(Integer, unique=True, index=True, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    case_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    selected_case_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    idea_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage2_problem: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage3_technology: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage4_collaboration: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage5_creativity: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage6_speed_scale: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage7_impact: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage8_final_problem: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage8_final_technology: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage8_final_collaboration: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage8_final_creativity: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage8_final_speed_scale: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage8_final_impact: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage10_reflection: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
