"""
Typed records shared by the assessment session, the detectors, and the grade calculator.

Question/assessment definitions come from an external catalog and are frozen.
Response records are modelled as a two-stage tagged variant: an
``AnsweredResponse`` exists from the moment an answer is locked and can be
turned into a ``RationalizedResponse`` exactly once via ``with_rationale``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

# (student, assessment, question, attempt); attempt is None for records imported without one
ResponseKey = Tuple[str, str, str, Optional[str]]

SECTION_MAXIMUMS: Dict[str, int] = {
    "content_mastery": 30,
    "professional_application": 25,
    "teaching_methodology": 25,
    "professional_delivery": 20,
}
MAX_NEGATIVE_DEDUCTION = 20.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def new_attempt_id() -> str:
    return _new_id("attempt")


# ---------------------------------------------------------------------------
# Catalog content


class AnswerOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str = ""
    order: int = 0


class Rationale(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str = ""
    is_correct: bool = False
    explanation: Optional[str] = None
    distractor_type: Optional[Literal["plausible", "partial", "common_misconception", "opposite"]] = None


class Question(BaseModel):
    """A single two-phase item: answer options plus a rationale set."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: str
    correct_answer_id: str
    content: str = ""
    assessment_id: Optional[str] = None
    difficulty: Optional[Literal["easy", "medium", "hard"]] = None
    options: List[AnswerOption] = Field(default_factory=list)
    rationales: List[Rationale] = Field(default_factory=list)
    time_estimate: Optional[int] = Field(default=None, ge=0, description="Expected seconds on task.")

    @model_validator(mode="after")
    def check_answer_key(self) -> "Question":
        if self.options and not self.has_option(self.correct_answer_id):
            raise ValueError(f"correct_answer_id {self.correct_answer_id!r} is not an option of question {self.id!r}")
        return self

    @property
    def ordered_options(self) -> List[AnswerOption]:
        return sorted(self.options, key=lambda option: option.order)

    def has_option(self, option_id: str) -> bool:
        return any(option.id == option_id for option in self.options)

    def has_rationale(self, rationale_id: str) -> bool:
        return any(rationale.id == rationale_id for rationale in self.rationales)

    def is_correct_answer(self, answer_id: str) -> bool:
        return answer_id == self.correct_answer_id

    def is_correct_rationale(self, rationale_id: Optional[str]) -> bool:
        if rationale_id is None:
            return False
        for rationale in self.rationales:
            if rationale.id == rationale_id:
                return rationale.is_correct
        return False


class AssessmentType(str, Enum):
    QUIZ = "quiz"
    EXAM = "exam"
    FINAL = "final"


class Assessment(BaseModel):
    """Definition of one assessment attempt: ordered questions, time limit, pass mark."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    type: AssessmentType = AssessmentType.QUIZ
    week_number: int = Field(default=1, ge=1)
    question_ids: List[str] = Field(default_factory=list)
    time_limit: int = Field(default=3600, ge=0, description="Seconds available for the whole attempt.")
    passing_score: float = Field(default=70.0, ge=0.0, le=100.0)


# ---------------------------------------------------------------------------
# Response ledger records


class _ResponseBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: _new_id("response"))
    student_id: str
    question_id: str
    assessment_id: str
    attempt_id: Optional[str] = None
    answer_id: str
    answer_locked_at: datetime
    time_on_question: int = Field(..., ge=0)
    flagged_for_review: bool = False

    @property
    def key(self) -> ResponseKey:
        return (self.student_id, self.assessment_id, self.question_id, self.attempt_id)


class AnsweredResponse(_ResponseBase):
    """Record created at answer lock; rationale fields do not exist yet."""

    stage: Literal["answered"] = "answered"

    @property
    def rationale_id(self) -> None:
        return None

    @property
    def has_rationale(self) -> bool:
        return False

    def flag(self) -> "AnsweredResponse":
        return self.model_copy(update={"flagged_for_review": True})

    def with_rationale(
        self,
        rationale_id: str,
        submitted_at: datetime,
        time_on_rationale: int,
    ) -> "RationalizedResponse":
        payload = self.model_dump(exclude={"stage"})
        return RationalizedResponse(
            **payload,
            rationale_id=rationale_id,
            rationale_submitted_at=submitted_at,
            time_on_rationale=time_on_rationale,
        )


class RationalizedResponse(_ResponseBase):
    """Terminal record: answer and rationale both committed."""

    stage: Literal["rationalized"] = "rationalized"
    rationale_id: str
    rationale_submitted_at: datetime
    time_on_rationale: int = Field(..., ge=0)

    @property
    def has_rationale(self) -> bool:
        return True

    def flag(self) -> "RationalizedResponse":
        return self.model_copy(update={"flagged_for_review": True})


ResponseRecord = Annotated[Union[AnsweredResponse, RationalizedResponse], Field(discriminator="stage")]
_RESPONSE_ADAPTER: TypeAdapter = TypeAdapter(ResponseRecord)


def parse_response(payload: Any) -> Union[AnsweredResponse, RationalizedResponse]:
    """Validate a response payload, inferring ``stage`` for records that predate the tag."""

    if isinstance(payload, (AnsweredResponse, RationalizedResponse)):
        return payload
    if not isinstance(payload, Mapping):
        raise ValueError(f"Expected mapping for response record, received {type(payload).__name__}")
    data = dict(payload)
    if "stage" not in data:
        data["stage"] = "rationalized" if data.get("rationale_id") else "answered"
    return _RESPONSE_ADAPTER.validate_python(data)


def parse_responses(items: Iterable[Any]) -> List[Union[AnsweredResponse, RationalizedResponse]]:
    return [parse_response(item) for item in items]


# ---------------------------------------------------------------------------
# Integrity patterns and alerts


class PatternType(str, Enum):
    """Integrity pattern tags emitted by the detectors."""

    RATIONALE_MINING = "rationale_mining"
    RECIPROCAL_INFLATION = "reciprocal_inflation"
    NO_VARIANCE = "no_variance"
    ANSWER_RATIONALE_MISMATCH = "answer_rationale_mismatch"
    RAPID_RESPONSE = "rapid_response"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]


class GamingPattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    student_id: str
    pattern_type: PatternType
    confidence: float = Field(..., ge=0.0, le=1.0)
    detected_at: datetime = Field(default_factory=utcnow)
    details: Dict[str, Any] = Field(default_factory=dict, description="Diagnostic numbers; never used for scoring.")


AlertPriority = Literal["low", "medium", "high", "critical"]
AlertStatus = Literal["pending", "acknowledged", "resolved"]


class InterventionAlert(BaseModel):
    """Faculty-facing alert raised when high-confidence patterns are present."""

    id: str = Field(default_factory=lambda: _new_id("alert"))
    type: Literal["individual", "group"] = "individual"
    target_id: str
    reason: str
    priority: AlertPriority = "medium"
    status: AlertStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    faculty_notes: Optional[str] = None
    pattern_types: List[PatternType] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Peer evaluation


class NegativeIndicator(BaseModel):
    item: str
    deduction: float = Field(default=2.0, ge=0.0)
    applied: bool = True


def _indicator_deduction(indicator: Any) -> float:
    if isinstance(indicator, NegativeIndicator):
        return indicator.deduction if indicator.applied else 0.0
    if isinstance(indicator, Mapping):
        if not indicator.get("applied", True):
            return 0.0
        return float(indicator.get("deduction", 2.0))
    return 0.0


class RubricScores(BaseModel):
    """Four weighted teaching sections (max 30/25/25/20) minus applied negative indicators."""

    content_mastery: float = Field(..., ge=0, le=SECTION_MAXIMUMS["content_mastery"])
    professional_application: float = Field(..., ge=0, le=SECTION_MAXIMUMS["professional_application"])
    teaching_methodology: float = Field(..., ge=0, le=SECTION_MAXIMUMS["teaching_methodology"])
    professional_delivery: float = Field(..., ge=0, le=SECTION_MAXIMUMS["professional_delivery"])
    negative_indicators: List[NegativeIndicator] = Field(default_factory=list)
    total_score: float = Field(..., ge=0)

    @model_validator(mode="before")
    @classmethod
    def fill_total(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or data.get("total_score") is not None:
            return data
        payload = dict(data)
        positive = sum(float(payload.get(name) or 0.0) for name in SECTION_MAXIMUMS)
        deductions = sum(_indicator_deduction(item) for item in payload.get("negative_indicators") or [])
        payload["total_score"] = max(0.0, positive - min(deductions, MAX_NEGATIVE_DEDUCTION))
        return payload

    @property
    def section_scores(self) -> List[float]:
        return [
            self.content_mastery,
            self.professional_application,
            self.teaching_methodology,
            self.professional_delivery,
        ]


class PeerEvaluation(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("evaluation"))
    evaluator_id: str
    teacher_id: str = Field(..., description="Student whose teaching session was evaluated.")
    week_number: int = Field(default=1, ge=1)
    rubric_scores: RubricScores
    comments: str = ""
    submitted_at: Optional[datetime] = None

    @field_validator("comments", mode="before")
    @classmethod
    def coerce_comments(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def total_score(self) -> float:
        return self.rubric_scores.total_score


# ---------------------------------------------------------------------------
# Derived outputs


class ReflectionStats(BaseModel):
    count: int = Field(default=4, ge=0)
    quality: float = Field(default=75.0, ge=0.0, le=100.0)


class GradeComponents(BaseModel):
    quizzes: float = 0.0
    exams: float = 0.0
    final: float = 0.0
    teaching: float = 0.0
    group_performance: float = 0.0
    engagement: float = 0.0
    feedback_quality: float = 0.0
    reflection: float = 0.0


class GradeAdjustments(BaseModel):
    gaming_penalty: float = 0.0
    peer_evaluation_adjustment: Optional[float] = None


class GradeCalculation(BaseModel):
    model_config = ConfigDict(frozen=True)

    student_id: str
    components: GradeComponents
    adjustments: GradeAdjustments = Field(default_factory=GradeAdjustments)
    weighted_total: float
    final_grade: float
    letter_grade: str


AttemptOutcome = Literal["complete", "abandoned"]


class AttemptResult(BaseModel):
    """Summary persisted when an attempt reaches a terminal phase."""

    id: str = Field(default_factory=lambda: _new_id("result"))
    attempt_id: Optional[str] = None
    assessment_id: str
    student_id: str
    student_name: Optional[str] = None
    responses: List[ResponseRecord] = Field(default_factory=list)
    patterns: List[GamingPattern] = Field(default_factory=list)
    started_at: datetime
    ended_at: datetime
    total_time_spent: int = Field(default=0, ge=0)
    score: float = 0.0
    answer_accuracy: float = 0.0
    rationale_accuracy: float = 0.0
    passed: bool = False
    suspicious_behavior: bool = False
    outcome: AttemptOutcome = "complete"


__all__ = [
    "AlertPriority",
    "AlertStatus",
    "AnswerOption",
    "AnsweredResponse",
    "Assessment",
    "AssessmentType",
    "AttemptResult",
    "GamingPattern",
    "GradeAdjustments",
    "GradeCalculation",
    "GradeComponents",
    "InterventionAlert",
    "NegativeIndicator",
    "PatternType",
    "PeerEvaluation",
    "Question",
    "Rationale",
    "RationalizedResponse",
    "ReflectionStats",
    "ResponseKey",
    "ResponseRecord",
    "RubricScores",
    "parse_response",
    "new_attempt_id",
    "parse_responses",
    "utcnow",
]
