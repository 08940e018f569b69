"""Data model for questions, batches and graded evaluations.

Field names follow the JSON contract stored in ``auto_grade_status.evaluation_result``
(snake_case, ``score`` as an ``[earned, possible]`` pair).
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

import config

MAIN_SECTION = "Main Section"


class QuestionRecord(BaseModel):
    """One question from the paper, joined with its answer-key entry."""
    model_config = ConfigDict(frozen=True)

    number: int
    section: str = MAIN_SECTION
    text: str
    expected_answer: str = ""
    max_marks: float = config.DEFAULT_MAX_MARKS
    marks_declared: bool = False
    warnings: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[str, int]:
        return (self.section, self.number)

    @property
    def label(self) -> str:
        return f"Q{self.number} ({self.section})"


class StudentAnswer(BaseModel):
    question_number: int
    section: str = MAIN_SECTION
    raw_extracted_text: str = ""
    answer_text: str = ""


class GradedAnswer(BaseModel):
    """A single graded question as returned by the model, after validation."""
    model_config = ConfigDict(extra="ignore")

    question_no: int
    section: str = MAIN_SECTION
    question: str = ""
    expected_answer: str = ""
    answer: str = ""
    raw_extracted_text: str = ""
    score: Tuple[float, float]
    remarks: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    concepts: List[str] = Field(default_factory=list)
    missing_elements: List[str] = Field(default_factory=list)
    answer_matches: bool = False
    personalized_feedback: str = ""
    alignment_notes: str = ""

    @field_validator("section", mode="before")
    @classmethod
    def _default_section(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return MAIN_SECTION
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, value):
        # The model sometimes sends null instead of omitting the field
        return 0.5 if value is None else value

    @field_validator("question", "expected_answer", "answer", "raw_extracted_text",
                     "remarks", "personalized_feedback", "alignment_notes", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("concepts", "missing_elements", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return [] if value is None else value

    @property
    def earned(self) -> float:
        return self.score[0]

    @property
    def possible(self) -> float:
        return self.score[1]

    def to_student_answer(self) -> StudentAnswer:
        return StudentAnswer(
            question_number=self.question_no,
            section=self.section,
            raw_extracted_text=self.raw_extracted_text,
            answer_text=self.answer,
        )


class OverallPerformance(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    areas_for_improvement: List[str] = Field(default_factory=list)
    study_recommendations: List[str] = Field(default_factory=list)
    personalized_summary: str = ""


class StudentInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = "Unknown Student"
    roll_number: str = "N/A"
    class_name: str = Field(default="N/A", alias="class")
    subject: str = "N/A"


class EvaluationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_name: str
    roll_no: str
    class_name: str = Field(alias="class")
    subject: str
    total_questions_detected: int
    questions_by_section: Dict[str, int]
    answers: List[GradedAnswer]
    overall_performance: OverallPerformance

    def total_score(self) -> Tuple[float, float]:
        earned = sum(a.earned for a in self.answers)
        possible = sum(a.possible for a in self.answers)
        return earned, possible

    def to_json_dict(self) -> dict:
        """Serializes with the wire keys (``class`` rather than ``class_name``)."""
        return self.model_dump(mode="json", by_alias=True)


class PlanningLimits(BaseModel):
    max_input_tokens: int = Field(default=config.MAX_INPUT_TOKENS, gt=0)
    max_output_tokens: int = Field(default=config.MAX_OUTPUT_TOKENS, gt=0)
    max_questions_per_batch: int = Field(default=config.MAX_QUESTIONS_PER_BATCH, gt=0)


class Batch(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    questions: Tuple[QuestionRecord, ...]
    student_answer_text: str
    estimated_input_tokens: int
    max_output_tokens: int

    @property
    def sections(self) -> List[str]:
        seen: List[str] = []
        for q in self.questions:
            if q.section not in seen:
                seen.append(q.section)
        return seen


class RawModelResponse(BaseModel):
    batch_index: int
    text: str


class ProgressKind(str, Enum):
    BATCH_STARTED = "batch-started"
    BATCH_RETRY = "batch-retry"
    BATCH_COMPLETED = "batch-completed"
    BATCH_FAILED = "batch-failed"


class ProgressEvent(BaseModel):
    kind: ProgressKind
    batch_index: int
    total_batches: int
    message: Optional[str] = None


class GradingStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
