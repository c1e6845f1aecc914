"""Submission schemas - validated at work source ingestion."""

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

STAGE_FIELDS = (
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


def _normalize_identity(v: Any) -> str:
    if not isinstance(v, str) or not v.strip():
        raise ValueError("identity must be a non-empty string")
    return v.strip()


class SubmissionPayload(BaseModel):
    """Fixed-shape submission fields plus the case reference."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    user_id: str | None = None
    case_id: int | None = None

    idea_statement: str | None = None
    stage2_problem: str | None = None
    stage3_technology: str | None = None
    stage4_collaboration: str | None = None
    stage5_creativity: str | None = None
    stage6_speed_scale: str | None = None
    stage7_impact: str | None = None
    stage8_final_problem: str | None = None
    stage8_final_technology: str | None = None
    stage8_final_collaboration: str | None = None
    stage8_final_creativity: str | None = None
    stage8_final_speed_scale: str | None = None
    stage8_final_impact: str | None = None
    stage10_reflection: str | None = None

    @model_validator(mode="before")
    @classmethod
    def fall_back_to_selected_case(cls, data: Any) -> Any:
        """Rows sometimes carry only selected_case_id."""
        if isinstance(data, dict) and data.get("case_id") is None:
            selected = data.get("selected_case_id")
            if selected is not None:
                data = {**data, "case_id": selected}
        return data

    @field_validator("user_id", *STAGE_FIELDS, mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        if not isinstance(v, str):
            v = str(v)
        v = v.strip()
        return v or None

    def answered_stages(self) -> list[str]:
        """Names of the stage fields that carry an answer."""
        return [name for name in STAGE_FIELDS if getattr(self, name) is not None]


class WorkItem(BaseModel):
    """One submission as read from the work source."""

    model_config = ConfigDict(frozen=True)

    identity: str
    sequence_id: int
    payload: SubmissionPayload

    @field_validator("identity", mode="before")
    @classmethod
    def normalize_identity(cls, v: Any) -> str:
        return _normalize_identity(v)


class SubmissionIn(SubmissionPayload):
    """Seed input: a payload plus its identity and sequence id."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    identity: str
    sequence_id: int
    selected_case_id: int | None = None

    @field_validator("identity", mode="before")
    @classmethod
    def normalize_identity(cls, v: Any) -> str:
        return _normalize_identity(v)
