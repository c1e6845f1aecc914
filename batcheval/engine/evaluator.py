"""LLM-backed evaluator - scores a submission against its case study."""

import json
import logging
import re
from pathlib import Path
from typing import Any

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from batcheval.config import Settings, settings
from batcheval.engine.contracts import Evaluator
from batcheval.engine.errors import EvaluatorConfigError, EvaluatorError, EvaluatorOutputError
from batcheval.engine.scoring import DEFAULT_RUBRIC, Rubric
from batcheval.schemas.evaluation import CategoryScore, EvaluatorResult
from batcheval.schemas.submission import WorkItem

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response provided"

# (heading, question, payload field)
STAGE_QUESTIONS = [
    ("Stage 1 - Innovation Idea", "I want to solve '___' for '___' by '___'", "idea_statement"),
    ("Stage 2 - Problem Analysis", "What issue or need are you addressing? Who faces this problem?", "stage2_problem"),
    (
        "Stage 3 - Technology",
        "What tool, app, software, machine, or digital aid can make your solution stronger?",
        "stage3_technology",
    ),
    ("Stage 4 - Collaboration", "Who can you team up with to make this idea bigger?", "stage4_collaboration"),
    (
        "Stage 5 - Creativity",
        "What unique feature, design, or new approach makes your idea stand out?",
        "stage5_creativity",
    ),
    ("Stage 6 - Speed & Scale", "How can your solution be applied quickly and scaled?", "stage6_speed_scale"),
    ("Stage 7 - Impact", "How does your idea create value?", "stage7_impact"),
]

FINAL_PITCH_FIELDS = [
    ("Final Problem", "stage8_final_problem"),
    ("Final Technology", "stage8_final_technology"),
    ("Final Collaboration", "stage8_final_collaboration"),
    ("Final Creativity", "stage8_final_creativity"),
    ("Final Speed & Scale", "stage8_final_speed_scale"),
    ("Final Impact", "stage8_final_impact"),
]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class CaseLibrary:
    """Case study texts keyed by case id."""

    def __init__(self, cases: dict[int, str] | None = None):
        self._cases = dict(cases or {})

    @classmethod
    def from_file(cls, path: str | Path) -> "CaseLibrary":
        """
        Load a JSON file holding either {"<id>": "<text>"} or a list of
        {"id": ..., "caseFile": ...} objects.
        """
        with Path(path).open("r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            return cls({int(k): str(v) for k, v in data.items()})
        cases = {}
        for entry in data:
            text = entry.get("caseFile") or entry.get("case_file") or entry.get("text")
            if entry.get("id") is not None and text:
                cases[int(entry["id"])] = str(text)
        return cls(cases)

    def get(self, case_id: int | None) -> str | None:
        if case_id is None:
            return None
        return self._cases.get(case_id)

    def __len__(self) -> int:
        return len(self._cases)


def build_prompt(item: WorkItem, case_text: str | None, rubric: Rubric = DEFAULT_RUBRIC) -> str:
    """Render the evaluation prompt for one submission."""
    payload = item.payload
    lines = [
        "You are evaluating innovation responses written against a case study scenario.",
        "The case study is the primary context; every stage answer should address it.",
        "Score higher for answers that show understanding of the case and offer relevant, feasible solutions.",
        "",
        "CASE STUDY:",
        case_text or "No case study provided",
        "",
        "PARTICIPANT RESPONSES:",
    ]
    for heading, question, field_name in STAGE_QUESTIONS:
        lines += [
            "",
            f"{heading}:",
            f'Question: "{question}"',
            f"Answer: {getattr(payload, field_name) or NO_RESPONSE}",
        ]
    lines += ["", "Stage 8 - Final Pitch:"]
    for label, field_name in FINAL_PITCH_FIELDS:
        lines.append(f"{label}: {getattr(payload, field_name) or NO_RESPONSE}")
    lines += [
        "",
        "Stage 10 - Reflection:",
        'Question: "What did you learn, what would you improve?"',
        f"Answer: {payload.stage10_reflection or NO_RESPONSE}",
        "",
        "Return ONLY a valid JSON object with this structure:",
        _response_format(rubric),
    ]
    return "\n".join(lines)


def _response_format(rubric: Rubric) -> str:
    stages = ",\n".join(
        f'    "{name}": {{"score": <integer 0-{limit}>, '
        f'"status": "excellent|good|needs_improvement|poor", "feedback": "specific feedback"}}'
        for name, limit in rubric.categories.items()
    )
    return (
        "{\n"
        f'  "totalScore": <integer 0-{rubric.max_total}>,\n'
        '  "stageScores": {\n'
        f"{stages}\n"
        "  },\n"
        '  "overallFeedback": "strengths, areas for improvement and suggestions",\n'
        '  "recommendations": ["actionable recommendation", "..."]\n'
        "}"
    )


class _StageScore(BaseModel):
    score: int = Field(ge=0)
    status: str = "needs_improvement"
    feedback: str = ""


class _RawEvaluation(BaseModel):
    """Evaluator reply as written by the model."""

    model_config = ConfigDict(populate_by_name=True)

    total_score: int = Field(alias="totalScore")
    stage_scores: dict[str, _StageScore] = Field(default_factory=dict, alias="stageScores")
    overall_feedback: str | None = Field(default=None, alias="overallFeedback")
    recommendations: list[str] = Field(default_factory=list)


def extract_json(text: str) -> dict[str, Any]:
    """Pull the outermost JSON object out of a model reply."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise EvaluatorOutputError("Invalid response format from evaluator: no JSON object found")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise EvaluatorOutputError(f"Invalid JSON from evaluator: {e}") from e
    if not isinstance(data, dict):
        raise EvaluatorOutputError("Invalid response format from evaluator: expected an object")
    return data


def parse_evaluation(data: dict[str, Any], rubric: Rubric = DEFAULT_RUBRIC) -> EvaluatorResult:
    """Validate a decoded reply into an EvaluatorResult, rubric categories first."""
    try:
        raw = _RawEvaluation.model_validate(data)
    except ValidationError as e:
        raise EvaluatorOutputError(f"Evaluator reply failed validation: {e.error_count()} errors") from e

    order = list(rubric.categories) + [n for n in raw.stage_scores if n not in rubric.categories]
    categories = [
        CategoryScore(
            name=name,
            score=raw.stage_scores[name].score,
            status=raw.stage_scores[name].status,
            rationale=raw.stage_scores[name].feedback,
        )
        for name in order
        if name in raw.stage_scores
    ]
    return EvaluatorResult(
        aggregate=raw.total_score,
        categories=categories,
        overall_feedback=raw.overall_feedback,
        recommendations=raw.recommendations,
    )


class LLMEvaluator(Evaluator):
    """Evaluator calling an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        timeout: float = 60.0,
        temperature: float = 0.3,
        max_tokens: int = 3000,
        cases: CaseLibrary | None = None,
        rubric: Rubric = DEFAULT_RUBRIC,
        client: AsyncOpenAI | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.cases = cases or CaseLibrary()
        self.rubric = rubric
        self._client = client

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "LLMEvaluator":
        cases = CaseLibrary.from_file(s.case_library_path) if s.case_library_path else None
        return cls(
            api_key=s.evaluator_api_key,
            model=s.evaluator_model,
            base_url=s.evaluator_base_url,
            timeout=s.evaluator_timeout,
            temperature=s.evaluator_temperature,
            max_tokens=s.evaluator_max_tokens,
            cases=cases,
        )

    @property
    def model_name(self) -> str:
        return self.model

    def check_ready(self) -> None:
        if self._client is None and not self.api_key:
            raise EvaluatorConfigError("Evaluator API key is not configured; set EVALUATOR_API_KEY")
        if not self.model:
            raise EvaluatorConfigError("Evaluator model is not configured; set EVALUATOR_MODEL")

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def evaluate(self, item: WorkItem) -> EvaluatorResult:
        self.check_ready()
        case_text = self.cases.get(item.payload.case_id)
        if case_text is None and item.payload.case_id is not None:
            logger.warning(f"No case study found for case_id {item.payload.case_id}")
        prompt = build_prompt(item, case_text, self.rubric)

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            raise EvaluatorError(f"Evaluator call failed: {e}") from e

        if not response.choices:
            raise EvaluatorOutputError("Evaluator returned no choices")
        text = response.choices[0].message.content or ""
        logger.debug(f"Evaluator reply for {item.identity}: {text[:500]}")
        return parse_evaluation(extract_json(text), self.rubric)
